import httpx
import logging
from typing import List, Optional

from pydantic import ValidationError

from ..converters import to_openai_request
from ..dto.openai_models import OpenAiChatResponse, OpenAiModelsResponse
from ..error_handler import ProviderError
from ..models import AiModel, ProviderConfig, ProviderMessage, ProviderType, ReasoningEffort, Role
from ..sse_parser import parse_openai_event
from ..streaming_event import StreamingEvent
from .provider_interface import Credentials, ProviderInterface, StreamRequest, normalize_base_url

lib_logger = logging.getLogger("provider_bridge")


class OpenAICompatibleProvider(ProviderInterface):
    """
    Generic adapter for any OpenAI-compatible API (OpenAI, OpenRouter,
    LiteLLM gateways, vLLM, LM Studio...). Streams Server-Sent Events.
    """

    provider_type = ProviderType.OPENAI_COMPATIBLE

    @staticmethod
    def chat_url(base_url: str) -> str:
        return f"{normalize_base_url(base_url)}/v1/chat/completions"

    @staticmethod
    def models_url(base_url: str) -> str:
        return f"{normalize_base_url(base_url)}/v1/models"

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
        request = to_openai_request(
            messages, model, system_prompt=system_prompt, temperature=temperature
        )
        headers = self.auth_headers(provider, credentials)
        headers["Accept"] = "text/event-stream"
        return StreamRequest(url=self.chat_url(provider.base_url), payload=request.to_payload(), headers=headers)

    def parse_line(self, line: str) -> Optional[StreamingEvent]:
        return parse_openai_event(line)

    async def get_models(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> List[AiModel]:
        data = await self._get_json(
            client, self.models_url(provider.base_url), self.auth_headers(provider, credentials), "models"
        )
        try:
            models_response = OpenAiModelsResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"Failed to parse models response: {e}", is_recoverable=False) from e

        models = [
            AiModel(id=m.id, name=m.id, provider_id=provider.id, owned_by=m.owned_by)
            for m in models_response.data
        ]
        lib_logger.debug(f"Fetched {len(models)} models for '{provider.id}'")
        return sorted(models, key=lambda m: m.id)

    async def simple_completion(
        self,
        client: httpx.AsyncClient,
        provider: ProviderConfig,
        credentials: Credentials,
        prompt: str,
        model: str,
    ) -> str:
        request = to_openai_request(
            [ProviderMessage(role=Role.USER, content=prompt)], model, stream=False, max_tokens=1024
        )
        data = await self._post_json(
            client, self.chat_url(provider.base_url), request.to_payload(), self.auth_headers(provider, credentials)
        )
        try:
            response = OpenAiChatResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"Unexpected completion response: {e}", is_recoverable=False) from e

        message = response.choices[0].message if response.choices else None
        if message is None or not message.content:
            raise ProviderError("No content in response", is_recoverable=False)
        return message.content.strip()
