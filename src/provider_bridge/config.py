# src/provider_bridge/config.py

import os
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

from .models import BUILTIN_PROVIDERS, AuthType, ProviderConfig, ProviderType

lib_logger = logging.getLogger("provider_bridge")


def _env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    return os.getenv(key, str(default).lower()).lower() in ("true", "1", "yes")


def _env_int(key: str, default: int) -> int:
    """Get integer from environment variable."""
    return int(os.getenv(key, str(default)))


def _env_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    return float(os.getenv(key, str(default)))


def _env_key(provider_id: str) -> str:
    return provider_id.upper().replace("-", "_")


class BridgeSettings:
    """
    Runtime settings, read from the environment (and therefore from .env once
    the app has called load_dotenv).
    """

    def __init__(
        self,
        connect_timeout: float = 30.0,
        read_timeout: float = 120.0,
        write_timeout: float = 30.0,
        pool_timeout: float = 30.0,
        vault_path: Path = Path("oauth_creds") / "vault.json",
        vault_key: Optional[str] = None,
        pkce_max_age_ms: int = 600_000,
        oauth_redirect_uri: Optional[str] = None,
        callback_port: int = 8085,
        debug_stream_lines: bool = False,
    ):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.pool_timeout = pool_timeout
        self.vault_path = Path(vault_path)
        self.vault_key = vault_key
        self.pkce_max_age_ms = pkce_max_age_ms
        self.oauth_redirect_uri = oauth_redirect_uri or f"http://localhost:{callback_port}/oauth2callback"
        self.callback_port = callback_port
        self.debug_stream_lines = debug_stream_lines

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        return cls(
            connect_timeout=_env_float("BRIDGE_CONNECT_TIMEOUT", 30.0),
            read_timeout=_env_float("BRIDGE_READ_TIMEOUT", 120.0),
            write_timeout=_env_float("BRIDGE_WRITE_TIMEOUT", 30.0),
            pool_timeout=_env_float("BRIDGE_POOL_TIMEOUT", 30.0),
            vault_path=Path(os.getenv("BRIDGE_VAULT_PATH", str(Path("oauth_creds") / "vault.json"))),
            vault_key=os.getenv("BRIDGE_VAULT_KEY") or None,
            pkce_max_age_ms=_env_int("BRIDGE_PKCE_MAX_AGE_MS", 600_000),
            oauth_redirect_uri=os.getenv("BRIDGE_OAUTH_REDIRECT_URI") or None,
            callback_port=_env_int("BRIDGE_CALLBACK_PORT", 8085),
            debug_stream_lines=_env_bool("BRIDGE_DEBUG_STREAM_LINES", False),
        )


def load_provider_configs(environ: Optional[Mapping[str, str]] = None) -> Dict[str, ProviderConfig]:
    """
    Builds the provider table from the built-in templates plus the environment.

    - BRIDGE_PROVIDERS limits which templates are enabled (comma separated ids).
    - <ID>_API_BASE overrides a template's base URL.
    - <NAME>_API_BASE for an unknown NAME adds a custom OpenAI-compatible
      provider using API key auth.
    """
    environ = os.environ if environ is None else environ

    enabled = environ.get("BRIDGE_PROVIDERS", "").strip()
    if enabled:
        wanted = [p.strip() for p in enabled.split(",") if p.strip()]
        unknown = [p for p in wanted if p not in BUILTIN_PROVIDERS]
        if unknown:
            lib_logger.warning(f"Ignoring unknown providers in BRIDGE_PROVIDERS: {unknown}")
        templates = [BUILTIN_PROVIDERS[p] for p in wanted if p in BUILTIN_PROVIDERS]
    else:
        templates = list(BUILTIN_PROVIDERS.values())

    providers: Dict[str, ProviderConfig] = {}
    template_keys = {_env_key(t.id): t for t in BUILTIN_PROVIDERS.values()}

    for template in templates:
        base_override = environ.get(f"{_env_key(template.id)}_API_BASE")
        if base_override:
            template = template.model_copy(update={"base_url": base_override})
        providers[template.id] = template

    for key, value in environ.items():
        if not key.endswith("_API_BASE") or not value:
            continue
        name = key[: -len("_API_BASE")]
        if name in template_keys or not name:
            continue
        provider_id = name.lower()
        providers[provider_id] = ProviderConfig(
            id=provider_id,
            name=name.replace("_", " ").title(),
            provider_type=ProviderType.OPENAI_COMPATIBLE,
            auth_type=AuthType.API_KEY,
            base_url=value,
            default_model=environ.get(f"{name}_DEFAULT_MODEL", ""),
        )
        lib_logger.debug(f"Registered custom OpenAI-compatible provider '{provider_id}' at {value}")

    return providers


def env_api_key(provider_id: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """<ID>_API_KEY from the environment, used when the vault holds no key."""
    environ = os.environ if environ is None else environ
    return environ.get(f"{_env_key(provider_id)}_API_KEY") or None
