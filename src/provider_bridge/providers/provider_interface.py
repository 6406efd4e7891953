from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..error_handler import ProviderError, TransportError, extract_error_message
from ..models import AiModel, ProviderConfig, ProviderMessage, ProviderType, ReasoningEffort
from ..streaming_event import StreamingEvent


def normalize_base_url(url: str) -> str:
    """
    Strips a trailing slash and API version suffix so endpoint paths can be
    appended without duplication ("https://host/v1/" -> "https://host").
    """
    url = url.strip().rstrip("/")
    for suffix in ("/v1", "/api"):
        if url.endswith(suffix):
            url = url[: -len(suffix)]
    return url.rstrip("/")


@dataclass
class Credentials:
    """Resolved authentication material for one request."""

    api_key: Optional[str] = None
    access_token: Optional[str] = None
    project_id: Optional[str] = None

    def bearer(self) -> Optional[str]:
        return self.access_token or self.api_key


@dataclass
class StreamRequest:
    url: str
    payload: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ConnectionResult:
    ok: bool
    message: str


class ProviderInterface(ABC):
    """
    Adapter for one wire protocol: builds requests, parses the stream and
    knows where the protocol keeps its model list.
    """

    provider_type: ProviderType = None

    # True when the adapter itself signals Connected as soon as the HTTP
    # response is accepted, rather than waiting for a role-only chunk.
    emits_connected_on_response: bool = False

    @abstractmethod
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
        pass

    @abstractmethod
    def parse_line(self, line: str) -> Optional[StreamingEvent]:
        """Parses one transport line with this protocol's stateless parser."""
        pass

    @abstractmethod
    async def get_models(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> List[AiModel]:
        """
        Fetches the list of available models from the provider's API.

        Raises ProviderError for HTTP failures or unusable bodies and
        TransportError when the server cannot be reached.
        """
        pass

    @abstractmethod
    async def simple_completion(
        self,
        client: httpx.AsyncClient,
        provider: ProviderConfig,
        credentials: Credentials,
        prompt: str,
        model: str,
    ) -> str:
        """Runs a single non-streaming completion and returns its text."""
        pass

    async def test_connection(
        self, client: httpx.AsyncClient, provider: ProviderConfig, credentials: Credentials
    ) -> ConnectionResult:
        try:
            models = await self.get_models(client, provider, credentials)
        except (ProviderError, TransportError) as e:
            return ConnectionResult(ok=False, message=e.message)
        return ConnectionResult(ok=True, message=f"Connected, {len(models)} models available")

    def auth_headers(self, provider: ProviderConfig, credentials: Credentials) -> Dict[str, str]:
        """Custom provider headers plus the bearer token when one is available."""
        headers = dict(provider.headers)
        token = credentials.bearer()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def on_auth_failure(self, provider: ProviderConfig) -> None:
        """Hook for adapters that cache data derived from the credentials."""
        pass

    # --- Helpers shared by adapters ---

    @staticmethod
    async def _get_json(
        client: httpx.AsyncClient, url: str, headers: Dict[str, str], what: str
    ) -> Any:
        try:
            response = await client.get(url, headers={"Accept": "application/json", **headers})
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out fetching {what}: {e}", code="timeout") from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(
                f"Failed to fetch {what}: {extract_error_message(response.text, response.status_code)}",
                status_code=response.status_code,
            )

        body = response.text
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type and body.lstrip().startswith("<"):
            raise ProviderError(
                f"Provider returned HTML instead of JSON while fetching {what}. "
                f"Check that the base URL is correct.",
                status_code=response.status_code,
                is_recoverable=False,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"Failed to parse {what} response: {e}",
                status_code=response.status_code,
                is_recoverable=False,
            ) from e

    @staticmethod
    async def _post_json(
        client: httpx.AsyncClient, url: str, payload: Dict[str, Any], headers: Dict[str, str]
    ) -> Any:
        try:
            response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e}", code="timeout") from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e
        if response.status_code >= 400:
            raise ProviderError(
                extract_error_message(response.text, response.status_code),
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON response: {e}", status_code=response.status_code, is_recoverable=False) from e
