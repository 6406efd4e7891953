import httpx
import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..auth.antigravity_oauth import MODELS, AntigravityOAuth, ProjectInfo, map_model_id
from ..converters import to_antigravity_request
from ..dto.antigravity_models import AntigravityResponse
from ..error_handler import AuthError, ProviderError
from ..models import AiModel, ProviderConfig, ProviderMessage, ProviderType, ReasoningEffort, Role
from ..sse_parser import parse_antigravity_event
from ..streaming_event import StreamingEvent
from .provider_interface import ConnectionResult, Credentials, ProviderInterface, StreamRequest

lib_logger = logging.getLogger("provider_bridge")


class AntigravityProvider(ProviderInterface):
    """
    Gemini-style Cloud Code backend behind Google OAuth.

    The endpoint and billing project are resolved once per provider and
    cached until the backend rejects the credentials.
    """

    provider_type = ProviderType.ANTIGRAVITY
    emits_connected_on_response = True
    base_instruction: Optional[str] = None

    def __init__(self):
        self._project_cache: Dict[str, ProjectInfo] = {}

    async def _project_info(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> ProjectInfo:
        if not credentials.access_token:
            raise AuthError("Antigravity requires an OAuth access token")

        cached = self._project_cache.get(provider.id)
        if cached is not None:
            return cached

        info = await AntigravityOAuth(client).resolve_project_info(credentials.access_token)
        # A project stored with the tokens wins over the resolved default
        if credentials.project_id:
            info = ProjectInfo(project_id=credentials.project_id, endpoint=info.endpoint)
        self._project_cache[provider.id] = info
        return info

    def on_auth_failure(self, provider: ProviderConfig) -> None:
        if self._project_cache.pop(provider.id, None) is not None:
            lib_logger.info(f"Cleared cached Antigravity project info for '{provider.id}'")

    def _headers(self, provider: ProviderConfig, credentials: Credentials, info: ProjectInfo) -> Dict[str, str]:
        headers = dict(provider.headers)
        headers.update(AntigravityOAuth.build_request_headers(credentials.access_token, info.project_id))
        return headers

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
        info = await self._project_info(client, provider, credentials)
        request = to_antigravity_request(
            messages,
            system_prompt=system_prompt,
            temperature=temperature,
            reasoning_effort=reasoning_effort,
            base_instruction=self.base_instruction,
        )
        url = AntigravityOAuth.build_streaming_chat_url(info.endpoint, info.project_id, map_model_id(model))
        headers = self._headers(provider, credentials, info)
        headers["Accept"] = "text/event-stream"
        return StreamRequest(url=url, payload=request.to_payload(), headers=headers)

    def parse_line(self, line: str) -> Optional[StreamingEvent]:
        return parse_antigravity_event(line)

    async def get_models(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> List[AiModel]:
        # The backend has no model listing; the catalogue is fixed.
        models = [m.model_copy(update={"provider_id": provider.id}) for m in MODELS]
        return sorted(models, key=lambda m: m.id)

    async def test_connection(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> ConnectionResult:
        # Listing is static, so probe the endpoint instead.
        try:
            info = await self._project_info(client, provider, credentials)
        except AuthError as e:
            return ConnectionResult(ok=False, message=e.message)
        return ConnectionResult(ok=True, message=f"Connected to {info.endpoint} (project {info.project_id})")

    async def simple_completion(
        self,
        client: httpx.AsyncClient,
        provider: ProviderConfig,
        credentials: Credentials,
        prompt: str,
        model: str,
    ) -> str:
        info = await self._project_info(client, provider, credentials)
        request = to_antigravity_request(
            [ProviderMessage(role=Role.USER, content=prompt)],
            temperature=0.7,
            reasoning_effort=ReasoningEffort.NONE,
            max_output_tokens=1024,
        )
        url = AntigravityOAuth.build_chat_url(info.endpoint, info.project_id, map_model_id(model))
        try:
            data = await self._post_json(client, url, request.to_payload(), self._headers(provider, credentials, info))
        except ProviderError as e:
            if e.status_code in (401, 403):
                self.on_auth_failure(provider)
            raise

        if isinstance(data, dict) and isinstance(data.get("response"), dict):
            data = data["response"]
        try:
            response = AntigravityResponse.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"Unexpected completion response: {e}", is_recoverable=False) from e

        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts:
                if part.text and not part.thought:
                    return part.text.strip()
        raise ProviderError("No content in response", is_recoverable=False)
