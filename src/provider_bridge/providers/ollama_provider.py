import httpx
import logging
from typing import List, Optional

from pydantic import ValidationError

from ..converters import to_ollama_request
from ..dto.ollama_models import OllamaChatResponse, OllamaTagsResponse
from ..error_handler import ProviderError
from ..models import AiModel, ProviderConfig, ProviderMessage, ProviderType, ReasoningEffort, Role
from ..sse_parser import parse_ollama_event
from ..streaming_event import StreamingEvent
from .provider_interface import Credentials, ProviderInterface, StreamRequest, normalize_base_url

lib_logger = logging.getLogger("provider_bridge")


def format_ollama_model_name(name: str) -> str:
    # ":latest" is the default tag and only adds noise
    if name.endswith(":latest"):
        return name[: -len(":latest")]
    return name


class OllamaProvider(ProviderInterface):
    """Native Ollama API: /api/chat streaming newline-delimited JSON."""

    provider_type = ProviderType.OLLAMA

    @staticmethod
    def chat_url(base_url: str) -> str:
        return f"{normalize_base_url(base_url)}/api/chat"

    @staticmethod
    def tags_url(base_url: str) -> str:
        return f"{normalize_base_url(base_url)}/api/tags"

    async def build_stream_request(
        self,
        client: httpx.AsyncClient,
        provider: ProviderConfig,
        credentials: Credentials,
        messages: List[ProviderMessage],
        model: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        reasoning_effort: ReasoningEffort = ReasoningEffort.HIGH,
    ) -> StreamRequest:
        request = to_ollama_request(
            messages,
            model,
            system_prompt=system_prompt,
            temperature=temperature,
            reasoning_effort=reasoning_effort,
        )
        headers = self.auth_headers(provider, credentials)
        headers["Accept"] = "application/x-ndjson"
        return StreamRequest(url=self.chat_url(provider.base_url), payload=request.to_payload(), headers=headers)

    def parse_line(self, line: str) -> Optional[StreamingEvent]:
        return parse_ollama_event(line)

    async def get_models(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> List[AiModel]:
        data = await self._get_json(
            client, self.tags_url(provider.base_url), self.auth_headers(provider, credentials), "models"
        )
        try:
            tags = OllamaTagsResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"Failed to parse models response: {e}", is_recoverable=False) from e

        models = [
            AiModel(
                id=m.name,
                name=format_ollama_model_name(m.name),
                provider_id=provider.id,
            )
            for m in tags.models
        ]
        return sorted(models, key=lambda m: m.id)

    async def simple_completion(
        self,
        client: httpx.AsyncClient,
        provider: ProviderConfig,
        credentials: Credentials,
        prompt: str,
        model: str,
    ) -> str:
        request = to_ollama_request(
            [ProviderMessage(role=Role.USER, content=prompt)], model, stream=False
        )
        data = await self._post_json(
            client, self.chat_url(provider.base_url), request.to_payload(), self.auth_headers(provider, credentials)
        )
        try:
            response = OllamaChatResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"Unexpected completion response: {e}", is_recoverable=False) from e

        content = response.message.content if response.message else None
        if not content:
            raise ProviderError("No content in response", is_recoverable=False)
        return content.strip()
