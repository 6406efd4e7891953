from .credential_vault import CredentialVault, EncryptedFileVault, InMemoryVault
from .oauth_manager import AuthorizationRequest, AuthState, AuthStatus, OAuthManager
from .pkce import PkceState
from .token_store import TokenRecord, TokenStore

__all__ = [
    "CredentialVault",
    "EncryptedFileVault",
    "InMemoryVault",
    "AuthorizationRequest",
    "AuthState",
    "AuthStatus",
    "OAuthManager",
    "PkceState",
    "TokenRecord",
    "TokenStore",
]
