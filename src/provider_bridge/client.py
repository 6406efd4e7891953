import asyncio
import logging
from typing import AsyncGenerator, Dict, List, Optional

import httpx

from .auth.oauth_manager import OAuthManager
from .auth.token_store import TokenStore
from .config import BridgeSettings, env_api_key
from .error_handler import AuthError, BridgeError, ProviderError, classify_error, extract_error_message
from .failure_logger import log_failure
from .models import AiModel, AuthType, ProviderConfig, ProviderMessage, ReasoningEffort
from .providers import PROVIDER_PLUGINS
from .providers.provider_interface import ConnectionResult, Credentials, ProviderInterface
from .streaming_event import (
    CONNECTED,
    Connected,
    Content,
    Done,
    Error,
    ErrorCode,
    KeepAlive,
    StreamingEvent,
    error_from_exception,
    error_from_http_status,
)

lib_logger = logging.getLogger("provider_bridge")
lib_logger.addHandler(logging.NullHandler())


class ChatClient:
    """
    Streams chat completions from any configured provider as a sequence of
    StreamingEvent values.

    One pooled httpx.AsyncClient is shared by every request. Each stream_chat
    call owns its own response and event state, so any number of streams can
    run concurrently and each can be cancelled on its own.
    """

    def __init__(
        self,
        token_store: TokenStore,
        oauth_manager: Optional[OAuthManager] = None,
        settings: Optional[BridgeSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_store = token_store
        self.oauth_manager = oauth_manager
        self.settings = settings or BridgeSettings()
        self.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=self.settings.connect_timeout,
                read=self.settings.read_timeout,
                write=self.settings.write_timeout,
                pool=self.settings.pool_timeout,
            ),
            transport=transport,
        )
        self._provider_plugins = PROVIDER_PLUGINS
        self._provider_instances: Dict[str, ProviderInterface] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        """Close the HTTP client to prevent resource leaks."""
        await self.http_client.aclose()

    def _get_provider_instance(self, provider: ProviderConfig) -> ProviderInterface:
        """Lazily creates the adapter for the provider's wire protocol."""
        name = provider.provider_type.value
        if name not in self._provider_instances:
            plugin = self._provider_plugins.get(name)
            if plugin is None:
                raise ProviderError(f"No adapter registered for protocol '{name}'", is_recoverable=False)
            self._provider_instances[name] = plugin()
        return self._provider_instances[name]

    async def _resolve_credentials(self, provider: ProviderConfig) -> Optional[Credentials]:
        """
        Returns the credentials to send, or None when the provider needs
        credentials that are not available.
        """
        if provider.auth_type == AuthType.NONE:
            return Credentials()

        if provider.auth_type == AuthType.API_KEY:
            api_key = self.token_store.get_api_key(provider.id) or env_api_key(provider.id)
            if not api_key:
                return None
            return Credentials(api_key=api_key)

        if self.oauth_manager is None:
            lib_logger.warning(f"Provider '{provider.id}' uses OAuth but no OAuth manager is configured")
            return None
        record = await self.oauth_manager.get_token_record(provider.id)
        if record is None:
            return None
        return Credentials(access_token=record.access_token, project_id=record.project_id)

    def _resolve_model(self, provider: ProviderConfig, model: Optional[str]) -> str:
        resolved = model or provider.default_model
        if not resolved:
            raise ProviderError(
                f"No model given and provider '{provider.id}' has no default model",
                is_recoverable=False,
            )
        return resolved

    async def stream_chat(
        self,
        provider: ProviderConfig,
        messages: List[ProviderMessage],
        model: Optional[str] = None,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        reasoning_effort: ReasoningEffort = ReasoningEffort.HIGH,
    ) -> AsyncGenerator[StreamingEvent, None]:
        """
        Streams one chat completion.

        Every stream ends with exactly one Done or Error event. Failures are
        reported as Error events and never raised. Closing the generator (or
        cancelling the task consuming it) closes the HTTP connection.
        """
        try:
            adapter = self._get_provider_instance(provider)
            model = self._resolve_model(provider, model)
        except BridgeError as e:
            yield error_from_exception(e)
            return

        credentials = await self._resolve_credentials(provider)
        if credentials is None:
            yield Error(
                message=f"Authentication required for provider '{provider.name}'",
                code=ErrorCode.AUTH_REQUIRED,
                is_recoverable=True,
            )
            return

        connected_sent = False
        first_content = True
        pending_finish: Optional[str] = None

        try:
            request = await adapter.build_stream_request(
                self.http_client,
                provider,
                credentials,
                messages,
                model,
                system_prompt=system_prompt,
                temperature=temperature,
                reasoning_effort=reasoning_effort,
            )
            lib_logger.info(f"Streaming chat from '{provider.id}' with model {model}")

            async with self.http_client.stream(
                "POST", request.url, json=request.payload, headers=request.headers
            ) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    message = extract_error_message(body, response.status_code)
                    if response.status_code in (401, 403):
                        adapter.on_auth_failure(provider)
                    log_failure(
                        provider.id,
                        model,
                        ProviderError(message, status_code=response.status_code),
                        status_code=response.status_code,
                        raw_response_text=body,
                        credential=credentials.bearer(),
                    )
                    yield error_from_http_status(response.status_code, message)
                    return

                if adapter.emits_connected_on_response:
                    connected_sent = True
                    yield CONNECTED

                async for line in response.aiter_lines():
                    if self.settings.debug_stream_lines:
                        lib_logger.debug(f"[{provider.id}] {line}")

                    event = adapter.parse_line(line)
                    if event is None or isinstance(event, KeepAlive):
                        continue

                    if isinstance(event, Connected):
                        if not connected_sent:
                            connected_sent = True
                            yield event
                        continue

                    if isinstance(event, Content):
                        if event.finish_reason is not None:
                            pending_finish = event.finish_reason
                        if first_content:
                            first_content = False
                            event = event.model_copy(update={"is_first": True})
                        yield event
                        continue

                    if isinstance(event, Done):
                        if event.finish_reason is None and pending_finish is not None:
                            event = event.model_copy(update={"finish_reason": pending_finish})
                        lib_logger.info(f"Stream from '{provider.id}' finished: {event.finish_reason}")
                        yield event
                        return

                    if isinstance(event, Error):
                        lib_logger.warning(f"Stream from '{provider.id}' reported an error: {event.message}")
                        yield event
                        return

            if pending_finish is not None:
                yield Done(finish_reason=pending_finish, model=model)
            else:
                lib_logger.warning(f"Stream from '{provider.id}' closed without a finish signal")
                yield Error(
                    message="Stream ended unexpectedly",
                    code=ErrorCode.STREAM_INCOMPLETE,
                    is_recoverable=True,
                )

        except asyncio.CancelledError:
            lib_logger.info(f"Stream from '{provider.id}' cancelled")
            raise
        except Exception as e:
            classified = classify_error(e)
            lib_logger.error(f"Stream from '{provider.id}' failed ({classified.error_type}): {e}")
            log_failure(provider.id, model, e, status_code=classified.status_code, credential=credentials.bearer())
            yield error_from_exception(e)

    async def _credentials_or_raise(self, provider: ProviderConfig) -> Credentials:
        credentials = await self._resolve_credentials(provider)
        if credentials is None:
            raise AuthError(f"Authentication required for provider '{provider.name}'")
        return credentials

    async def fetch_models(self, provider: ProviderConfig) -> List[AiModel]:
        """Returns the provider's models sorted by id. Raises BridgeError on failure."""
        adapter = self._get_provider_instance(provider)
        credentials = await self._credentials_or_raise(provider)
        models = await adapter.get_models(self.http_client, provider, credentials)
        lib_logger.info(f"Got {len(models)} models for provider: {provider.id}")
        return models

    async def test_connection(self, provider: ProviderConfig) -> ConnectionResult:
        try:
            adapter = self._get_provider_instance(provider)
            credentials = await self._credentials_or_raise(provider)
        except BridgeError as e:
            lib_logger.warning(f"Connection test for '{provider.id}' failed: {e.message}")
            return ConnectionResult(ok=False, message=e.message)

        result = await adapter.test_connection(self.http_client, provider, credentials)
        if result.ok:
            lib_logger.info(f"Connection test for '{provider.id}' succeeded: {result.message}")
        else:
            lib_logger.warning(f"Connection test for '{provider.id}' failed: {result.message}")
        return result

    async def generate_simple_completion(
        self, provider: ProviderConfig, prompt: str, model: Optional[str] = None
    ) -> str:
        """
        Non-streaming single-turn completion, e.g. for conversation titles.
        Raises BridgeError on failure.
        """
        adapter = self._get_provider_instance(provider)
        model = self._resolve_model(provider, model)
        credentials = await self._credentials_or_raise(provider)
        try:
            return await adapter.simple_completion(self.http_client, provider, credentials, prompt, model)
        except BridgeError as e:
            log_failure(provider.id, model, e, status_code=getattr(e, "status_code", None), credential=credentials.bearer())
            raise
