# src/provider_bridge/auth/oauth_manager.py

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from ..error_handler import extract_error_message, mask_credential
from ..models import AuthType, ProviderConfig, ProviderType
from .antigravity_oauth import AntigravityOAuth, OAuthProviderConfig, antigravity_oauth_config
from .oauth_exceptions import (
    InvalidCallbackError,
    InvalidStateError,
    OAuthError,
    OAuthNetworkError,
    PkceExpiredError,
    RefreshFailedError,
    TokenExchangeFailedError,
    UnsupportedProviderError,
    UserCancelledError,
    UserInfoError,
)
from .pkce import (
    CODE_CHALLENGE_METHOD,
    DEFAULT_MAX_AGE_MS,
    PkceState,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from .token_store import TokenRecord, TokenStore

lib_logger = logging.getLogger("provider_bridge")

DEFAULT_EXPIRES_IN_SECONDS = 3600

# (access_token, project_id hint) -> (email, project_id)
Enricher = Callable[[str, Optional[str]], Awaitable[Tuple[Optional[str], Optional[str]]]]


class AuthStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


@dataclass
class AuthState:
    status: AuthStatus
    email: Optional[str] = None
    expires_at: Optional[int] = None
    message: Optional[str] = None


@dataclass
class AuthorizationRequest:
    url: str
    state: str
    provider_id: str


class OAuthManager:
    """
    Drives the PKCE authorization-code flow and keeps OAuth tokens fresh.

    Pending flows live in memory, one per provider; starting a new flow
    replaces the previous one. Every read-check-refresh-write on a provider's
    token record runs under that provider's lock, so concurrent callers wait
    for the one in-flight refresh instead of issuing their own.
    """

    def __init__(
        self,
        token_store: TokenStore,
        client: httpx.AsyncClient,
        redirect_uri: str,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        max_refresh_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.token_store = token_store
        self.redirect_uri = redirect_uri
        self.max_age_ms = max_age_ms
        self.max_refresh_retries = max_refresh_retries
        self.retry_base_delay = retry_base_delay
        self._client = client

        self._configs: Dict[str, OAuthProviderConfig] = {}
        self._enrichers: Dict[str, Enricher] = {}
        self._pending: Dict[str, PkceState] = {}
        self._states: Dict[str, AuthState] = {}
        self._listeners: List[Callable[[str, AuthState], None]] = []

        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()  # Protects the locks dict

    # --- Provider registration ---

    def register_provider(
        self,
        provider: ProviderConfig,
        oauth_config: Optional[OAuthProviderConfig] = None,
        enricher: Optional[Enricher] = None,
    ) -> None:
        if provider.auth_type != AuthType.OAUTH:
            raise UnsupportedProviderError(provider.name)

        if oauth_config is None:
            if provider.provider_type != ProviderType.ANTIGRAVITY:
                raise UnsupportedProviderError(
                    provider.name, f"No OAuth configuration known for provider '{provider.name}'"
                )
            oauth_config = antigravity_oauth_config(self.redirect_uri)
            if enricher is None:
                enricher = self._antigravity_enricher

        self._configs[provider.id] = oauth_config
        if enricher is not None:
            self._enrichers[provider.id] = enricher

    def _config_for(self, provider_id: str) -> OAuthProviderConfig:
        config = self._configs.get(provider_id)
        if config is None:
            raise UnsupportedProviderError(provider_id, f"Provider '{provider_id}' is not registered for OAuth")
        return config

    async def _get_lock(self, provider_id: str) -> asyncio.Lock:
        async with self._locks_lock:
            if provider_id not in self._refresh_locks:
                self._refresh_locks[provider_id] = asyncio.Lock()
            return self._refresh_locks[provider_id]

    # --- Auth state ---

    def add_listener(self, listener: Callable[[str, AuthState], None]) -> None:
        self._listeners.append(listener)

    def _set_state(self, provider_id: str, state: AuthState) -> None:
        self._states[provider_id] = state
        for listener in self._listeners:
            try:
                listener(provider_id, state)
            except Exception as e:
                lib_logger.error(f"Auth state listener failed for '{provider_id}': {e}")

    async def get_auth_state(self, provider_id: str) -> AuthState:
        record = self.token_store.load(provider_id)
        if self.token_store.is_record_valid(record):
            return AuthState(AuthStatus.AUTHENTICATED, email=record.email, expires_at=record.expires_at)

        if record is not None and record.refresh_token and provider_id in self._configs:
            if await self.get_valid_access_token(provider_id):
                record = self.token_store.load(provider_id)
                return AuthState(AuthStatus.AUTHENTICATED, email=record.email, expires_at=record.expires_at)

        pending = self._pending.get(provider_id)
        if pending is not None and not pending.is_expired(self.max_age_ms, now_ms=self.token_store.now_ms()):
            return AuthState(AuthStatus.AUTHENTICATING)

        current = self._states.get(provider_id)
        if current is not None and current.status == AuthStatus.ERROR:
            return current
        return AuthState(AuthStatus.UNAUTHENTICATED)

    # --- Authorization flow ---

    def begin_flow(self, provider: ProviderConfig, project_id: Optional[str] = None) -> AuthorizationRequest:
        """Starts a new PKCE flow and returns the URL the user must open."""
        if provider.id not in self._configs:
            self.register_provider(provider)
        config = self._configs[provider.id]

        code_verifier = generate_code_verifier()
        pkce_state = PkceState(
            code_verifier=code_verifier,
            state=generate_state(),
            provider_id=provider.id,
            project_id=project_id,
            created_at=self.token_store.now_ms(),
        )
        if provider.id in self._pending:
            lib_logger.debug(f"Superseding pending OAuth flow for '{provider.id}'")
        self._pending[provider.id] = pkce_state
        self._set_state(provider.id, AuthState(AuthStatus.AUTHENTICATING))

        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(config.scopes),
            "state": pkce_state.state,
            "code_challenge": generate_code_challenge(code_verifier),
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        params.update(config.additional_params)

        lib_logger.info(f"Started OAuth flow for '{provider.id}'")
        return AuthorizationRequest(
            url=f"{config.authorization_url}?{urlencode(params)}",
            state=pkce_state.state,
            provider_id=provider.id,
        )

    def pending_flow(self, provider_id: str) -> Optional[PkceState]:
        return self._pending.get(provider_id)

    def find_provider_for_state(self, state: str) -> Optional[str]:
        for provider_id, pending in self._pending.items():
            if pending.validate_state(state):
                return provider_id
        return None

    async def complete_flow_from_url(self, callback_url: str) -> TokenRecord:
        params = {k: v[0] for k, v in parse_qs(urlparse(callback_url).query).items()}
        provider_id = self.find_provider_for_state(params.get("state", ""))
        if provider_id is None:
            raise InvalidStateError()
        return await self.complete_flow(provider_id, params)

    async def complete_flow(self, provider_id: str, params: Mapping[str, str]) -> TokenRecord:
        """
        Validates a callback and exchanges the code. State and expiry are
        checked before any network call.
        """
        error = params.get("error")
        if error:
            pending = self._pending.get(provider_id)
            if pending is None or not pending.validate_state(params.get("state")):
                # Only the flow's own callback may end it.
                lib_logger.warning(f"Ignoring OAuth error callback for '{provider_id}': state mismatch")
                raise InvalidStateError()
            del self._pending[provider_id]
            if error == "access_denied":
                self._set_state(provider_id, AuthState(AuthStatus.UNAUTHENTICATED))
                raise UserCancelledError()
            description = params.get("error_description") or error
            self._set_state(provider_id, AuthState(AuthStatus.ERROR, message=description))
            raise TokenExchangeFailedError(description)

        code = params.get("code")
        state = params.get("state")
        if not code:
            raise InvalidCallbackError("Missing authorization code")
        if not state:
            raise InvalidCallbackError("Missing state parameter")

        pending = self._pending.get(provider_id)
        if pending is None:
            raise InvalidStateError(f"No pending authorization for '{provider_id}'")

        if pending.is_expired(self.max_age_ms, now_ms=self.token_store.now_ms()):
            del self._pending[provider_id]
            self._set_state(provider_id, AuthState(AuthStatus.ERROR, message="Authorization expired"))
            raise PkceExpiredError(provider_id)

        if not pending.validate_state(state):
            # The pending flow stays so the genuine callback can still complete.
            lib_logger.warning(f"Rejected OAuth callback for '{provider_id}': state mismatch")
            raise InvalidStateError()

        del self._pending[provider_id]
        config = self._config_for(provider_id)

        async with await self._get_lock(provider_id):
            try:
                token_data = await self._exchange_code(config, code, pending.code_verifier)
                access_token, refresh_token, expires_at = self._parse_token_response(
                    token_data, TokenExchangeFailedError
                )
                email, project_id = await self._enrich(provider_id, access_token, pending.project_id)
            except OAuthError as e:
                self._set_state(provider_id, AuthState(AuthStatus.ERROR, message=e.message))
                raise
            except Exception as e:
                lib_logger.error(f"Unexpected error completing OAuth for '{provider_id}': {e}")
                failure = TokenExchangeFailedError(f"Authorization failed: {e}")
                self._set_state(provider_id, AuthState(AuthStatus.ERROR, message=failure.message))
                raise failure from e

            record = TokenRecord(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                email=email,
                project_id=project_id,
            )
            self.token_store.save(provider_id, record)

        self._set_state(
            provider_id,
            AuthState(AuthStatus.AUTHENTICATED, email=email, expires_at=expires_at),
        )
        lib_logger.info(f"OAuth completed for '{provider_id}' ({email or 'unknown account'})")
        return record

    async def _exchange_code(self, config: OAuthProviderConfig, code: str, code_verifier: str) -> Dict[str, Any]:
        data = {
            "client_id": config.client_id,
            "code": code.strip(),
            "code_verifier": code_verifier,
            "grant_type": "authorization_code",
            "redirect_uri": config.redirect_uri,
        }
        if config.client_secret:
            data["client_secret"] = config.client_secret

        response = await self._post_token(config, data)
        if response.status_code >= 400:
            raise TokenExchangeFailedError(
                f"Token exchange failed: {extract_error_message(response.text, response.status_code)}"
            )
        return self._json_body(response, TokenExchangeFailedError)

    async def _enrich(
        self, provider_id: str, access_token: str, project_id: Optional[str]
    ) -> Tuple[Optional[str], Optional[str]]:
        enricher = self._enrichers.get(provider_id)
        if enricher is None:
            return None, project_id
        return await enricher(access_token, project_id)

    async def _antigravity_enricher(
        self, access_token: str, project_id: Optional[str]
    ) -> Tuple[Optional[str], Optional[str]]:
        antigravity = AntigravityOAuth(self._client)
        email = None
        try:
            email = (await antigravity.fetch_user_info(access_token)).email
        except UserInfoError as e:
            lib_logger.warning(f"Could not fetch Antigravity account email: {e}")
        if project_id is None:
            project_id = (await antigravity.resolve_project_info(access_token)).project_id
        return email, project_id

    # --- Tokens ---

    async def get_valid_access_token(self, provider_id: str) -> Optional[str]:
        """
        Returns a usable bearer token, refreshing it first if it is expired or
        about to expire. None means the authorization flow must be run again.
        """
        async with await self._get_lock(provider_id):
            record = self.token_store.load(provider_id)
            if record is None:
                return None
            if self.token_store.is_record_valid(record):
                return record.access_token

            if not record.refresh_token:
                lib_logger.warning(f"OAuth token for '{provider_id}' expired and no refresh token is stored")
                self._set_state(provider_id, AuthState(AuthStatus.UNAUTHENTICATED))
                return None

            try:
                record = await self._refresh_locked(provider_id, record)
            except OAuthError as e:
                lib_logger.error(f"Token refresh for '{provider_id}' failed: {e}")
                self._set_state(provider_id, AuthState(AuthStatus.ERROR, message=e.message))
                return None
            return record.access_token

    async def get_token_record(self, provider_id: str) -> Optional[TokenRecord]:
        """Like get_valid_access_token, but returns the whole (fresh) record."""
        if await self.get_valid_access_token(provider_id) is None:
            return None
        return self.token_store.load(provider_id)

    async def refresh_tokens(self, provider_id: str) -> TokenRecord:
        """Forces a refresh regardless of expiry."""
        async with await self._get_lock(provider_id):
            record = self.token_store.load(provider_id)
            if record is None or not record.refresh_token:
                raise RefreshFailedError("No refresh token available")
            try:
                return await self._refresh_locked(provider_id, record)
            except OAuthError as e:
                self._set_state(provider_id, AuthState(AuthStatus.ERROR, message=e.message))
                raise

    async def _refresh_locked(self, provider_id: str, record: TokenRecord) -> TokenRecord:
        """Caller must hold the provider's lock."""
        config = self._config_for(provider_id)
        lib_logger.debug(f"Refreshing OAuth token for '{provider_id}' (refresh token {mask_credential(record.refresh_token)})")

        data = {
            "client_id": config.client_id,
            "refresh_token": record.refresh_token,
            "grant_type": "refresh_token",
        }
        if config.client_secret:
            data["client_secret"] = config.client_secret

        response = None
        for attempt in range(self.max_refresh_retries):
            try:
                response = await self._post_token(config, data)
            except OAuthNetworkError:
                if attempt < self.max_refresh_retries - 1:
                    wait_time = self.retry_base_delay * 2**attempt
                    lib_logger.warning(
                        f"Network error during refresh, retry {attempt + 1}/{self.max_refresh_retries} in {wait_time}s"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise

            if response.status_code >= 500 and attempt < self.max_refresh_retries - 1:
                wait_time = self.retry_base_delay * 2**attempt
                lib_logger.warning(
                    f"Server error (HTTP {response.status_code}) during refresh, retry {attempt + 1}/{self.max_refresh_retries} in {wait_time}s"
                )
                await asyncio.sleep(wait_time)
                continue
            break

        if response.status_code >= 400:
            raise RefreshFailedError(
                f"Token refresh failed: {extract_error_message(response.text, response.status_code)}"
            )

        token_data = self._json_body(response, RefreshFailedError)
        access_token, refresh_token, expires_at = self._parse_token_response(token_data, RefreshFailedError)

        # Enrichment is not repeated on refresh; carry it over.
        refreshed = TokenRecord(
            access_token=access_token,
            refresh_token=refresh_token or record.refresh_token,
            expires_at=expires_at,
            email=record.email,
            project_id=record.project_id,
        )
        self.token_store.save(provider_id, refreshed)
        self._set_state(
            provider_id,
            AuthState(AuthStatus.AUTHENTICATED, email=refreshed.email, expires_at=expires_at),
        )
        lib_logger.debug(f"Refreshed OAuth token for '{provider_id}'")
        return refreshed

    async def _post_token(self, config: OAuthProviderConfig, data: Dict[str, str]) -> httpx.Response:
        try:
            return await self._client.post(
                config.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=30.0,
            )
        except httpx.RequestError as e:
            raise OAuthNetworkError(e) from e

    @staticmethod
    def _json_body(response: httpx.Response, error_cls) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise error_cls("Token endpoint returned a non-JSON response")
        if not isinstance(body, dict):
            raise error_cls("Token endpoint returned an unexpected response")
        return body

    def _parse_token_response(self, data: Dict[str, Any], error_cls) -> Tuple[str, Optional[str], int]:
        access_token = data.get("access_token")
        if not access_token:
            raise error_cls("Missing access_token in response")
        try:
            expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_SECONDS
        expires_at = self.token_store.now_ms() + expires_in * 1000
        return access_token, data.get("refresh_token"), expires_at

    async def logout(self, provider_id: str) -> None:
        async with await self._get_lock(provider_id):
            self.token_store.clear(provider_id)
            self._pending.pop(provider_id, None)
        self._set_state(provider_id, AuthState(AuthStatus.UNAUTHENTICATED))
        lib_logger.info(f"Logged out of '{provider_id}'")
