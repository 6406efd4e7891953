# src/provider_bridge/auth/pkce.py

import base64
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

CODE_CHALLENGE_METHOD = "S256"
VERIFIER_BYTES = 64
STATE_BYTES = 32
DEFAULT_MAX_AGE_MS = 600_000


def _now_ms() -> int:
    return int(time.time() * 1000)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """64 random bytes, base64url encoded without padding (86 characters)."""
    return _b64url(secrets.token_bytes(VERIFIER_BYTES))


def generate_code_challenge(verifier: str) -> str:
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def generate_state() -> str:
    return _b64url(secrets.token_bytes(STATE_BYTES))


def create_pkce_pair() -> Tuple[str, str]:
    """Returns (verifier, challenge)."""
    verifier = generate_code_verifier()
    return verifier, generate_code_challenge(verifier)


@dataclass
class PkceState:
    """
    One in-flight authorization attempt.

    The verifier never leaves the process; the state token travels through the
    browser and must come back unchanged on the callback.
    """

    code_verifier: str
    state: str
    provider_id: str
    project_id: Optional[str] = None
    created_at: int = field(default_factory=_now_ms)

    def is_expired(self, max_age_ms: int = DEFAULT_MAX_AGE_MS, now_ms: Optional[int] = None) -> bool:
        now = _now_ms() if now_ms is None else now_ms
        return now - self.created_at > max_age_ms

    def validate_state(self, candidate: Optional[str]) -> bool:
        # Exact and case-sensitive.
        if candidate is None:
            return False
        return hmac.compare_digest(self.state.encode("utf-8"), candidate.encode("utf-8"))
