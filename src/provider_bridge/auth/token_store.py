# src/provider_bridge/auth/token_store.py

import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .credential_vault import CredentialVault

lib_logger = logging.getLogger("provider_bridge")

# A token this close to expiry is treated as already expired.
EXPIRY_BUFFER_MS = 60_000

API_KEY_PREFIX = "api_key_"
ACCESS_TOKEN_PREFIX = "oauth_access_"
REFRESH_TOKEN_PREFIX = "oauth_refresh_"
EXPIRY_PREFIX = "oauth_expiry_"
EMAIL_PREFIX = "oauth_email_"
PROJECT_PREFIX = "oauth_project_"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TokenRecord:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    email: Optional[str] = None
    project_id: Optional[str] = None


class TokenStore:
    """
    Typed view of the credential vault. One record per provider id, split
    over one vault entry per field.
    """

    def __init__(self, vault: CredentialVault, clock: Optional[Callable[[], int]] = None):
        self.vault = vault
        self._clock = clock or _now_ms

    def now_ms(self) -> int:
        return self._clock()

    # --- API keys ---

    def get_api_key(self, provider_id: str) -> Optional[str]:
        return self.vault.get_secret(API_KEY_PREFIX + provider_id)

    def set_api_key(self, provider_id: str, api_key: str) -> None:
        self.vault.set_secret(API_KEY_PREFIX + provider_id, api_key)

    def delete_api_key(self, provider_id: str) -> None:
        self.vault.delete_secret(API_KEY_PREFIX + provider_id)

    # --- OAuth records ---

    def load(self, provider_id: str) -> Optional[TokenRecord]:
        access_token = self.vault.get_secret(ACCESS_TOKEN_PREFIX + provider_id)
        if not access_token:
            return None

        expires_at = None
        raw_expiry = self.vault.get_secret(EXPIRY_PREFIX + provider_id)
        if raw_expiry:
            try:
                expires_at = int(raw_expiry)
            except ValueError:
                # Unparseable expiry: force a refresh rather than trust the token forever.
                lib_logger.warning(f"Invalid token expiry stored for '{provider_id}'")
                expires_at = 0

        return TokenRecord(
            access_token=access_token,
            refresh_token=self.vault.get_secret(REFRESH_TOKEN_PREFIX + provider_id),
            expires_at=expires_at,
            email=self.vault.get_secret(EMAIL_PREFIX + provider_id),
            project_id=self.vault.get_secret(PROJECT_PREFIX + provider_id),
        )

    def save(self, provider_id: str, record: TokenRecord) -> None:
        self.vault.set_secret(ACCESS_TOKEN_PREFIX + provider_id, record.access_token)
        self._set_or_delete(REFRESH_TOKEN_PREFIX + provider_id, record.refresh_token)
        self._set_or_delete(
            EXPIRY_PREFIX + provider_id,
            str(record.expires_at) if record.expires_at is not None else None,
        )
        self._set_or_delete(EMAIL_PREFIX + provider_id, record.email)
        self._set_or_delete(PROJECT_PREFIX + provider_id, record.project_id)

    def clear(self, provider_id: str) -> None:
        for prefix in (
            ACCESS_TOKEN_PREFIX,
            REFRESH_TOKEN_PREFIX,
            EXPIRY_PREFIX,
            EMAIL_PREFIX,
            PROJECT_PREFIX,
        ):
            self.vault.delete_secret(prefix + provider_id)

    def _set_or_delete(self, key: str, value: Optional[str]) -> None:
        if value:
            self.vault.set_secret(key, value)
        else:
            self.vault.delete_secret(key)

    def is_record_valid(self, record: Optional[TokenRecord]) -> bool:
        if record is None or not record.access_token:
            return False
        if record.expires_at is None:
            return True
        return self.now_ms() < record.expires_at - EXPIRY_BUFFER_MS

    def has_valid_tokens(self, provider_id: str) -> bool:
        return self.is_record_valid(self.load(provider_id))
