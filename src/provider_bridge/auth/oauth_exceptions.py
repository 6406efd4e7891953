# src/provider_bridge/auth/oauth_exceptions.py

from typing import Optional

from ..error_handler import AuthError


class OAuthError(AuthError):
    """Base class for failures of the PKCE authorization flow and token refresh."""
    code = "oauth_error"


class InvalidStateError(OAuthError):
    """No pending flow matches, or the returned state differs (possible CSRF)."""
    code = "invalid_state"

    def __init__(self, message: str = "OAuth state mismatch or no pending authorization"):
        super().__init__(message)


class PkceExpiredError(OAuthError):
    code = "pkce_expired"

    def __init__(self, provider_id: str):
        super().__init__(f"Authorization for '{provider_id}' expired. Please start again.")
        self.provider_id = provider_id


class TokenExchangeFailedError(OAuthError):
    code = "token_exchange_failed"


class RefreshFailedError(OAuthError):
    code = "refresh_failed"


class OAuthNetworkError(OAuthError):
    code = "network_error"
    is_recoverable = True

    def __init__(self, cause: Exception):
        super().__init__(f"Network error during OAuth: {cause}")
        self.__cause__ = cause


class UserCancelledError(OAuthError):
    code = "user_cancelled"
    is_recoverable = True

    def __init__(self, message: str = "Authorization was cancelled"):
        super().__init__(message)


class InvalidCallbackError(OAuthError):
    code = "invalid_callback"


class UnsupportedProviderError(OAuthError):
    code = "unsupported_provider"

    def __init__(self, provider_name: str, reason: Optional[str] = None):
        super().__init__(reason or f"Provider '{provider_name}' does not support OAuth")
        self.provider_name = provider_name


class UserInfoError(OAuthError):
    code = "user_info_failed"
    is_recoverable = True
