from pathlib import Path

from provider_bridge.config import BridgeSettings, env_api_key, load_provider_configs
from provider_bridge.models import AuthType, ProviderType


def test_all_templates_enabled_by_default():
    providers = load_provider_configs({})
    assert set(providers) == {"openai", "openrouter", "ollama-local", "antigravity"}


def test_bridge_providers_limits_templates():
    providers = load_provider_configs({"BRIDGE_PROVIDERS": "openai, antigravity, nonsense"})
    assert set(providers) == {"openai", "antigravity"}


def test_base_url_override():
    providers = load_provider_configs({"OLLAMA_LOCAL_API_BASE": "http://gpu-box:11434"})
    assert providers["ollama-local"].base_url == "http://gpu-box:11434"
    assert providers["ollama-local"].provider_type == ProviderType.OLLAMA


def test_custom_openai_compatible_provider():
    providers = load_provider_configs(
        {"MY_GATEWAY_API_BASE": "https://gateway.internal/v1", "MY_GATEWAY_DEFAULT_MODEL": "qwen3"}
    )
    custom = providers["my_gateway"]
    assert custom.name == "My Gateway"
    assert custom.provider_type == ProviderType.OPENAI_COMPATIBLE
    assert custom.auth_type == AuthType.API_KEY
    assert custom.base_url == "https://gateway.internal/v1"
    assert custom.default_model == "qwen3"


def test_env_api_key():
    environ = {"OPENROUTER_API_KEY": "sk-or", "OLLAMA_LOCAL_API_KEY": ""}
    assert env_api_key("openrouter", environ) == "sk-or"
    assert env_api_key("ollama-local", environ) is None
    assert env_api_key("openai", environ) is None


def test_settings_defaults():
    settings = BridgeSettings()
    assert settings.read_timeout == 120.0
    assert settings.pkce_max_age_ms == 600_000
    assert settings.oauth_redirect_uri == "http://localhost:8085/oauth2callback"
    assert settings.vault_path == Path("oauth_creds") / "vault.json"


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("BRIDGE_READ_TIMEOUT", "5")
    monkeypatch.setenv("BRIDGE_CALLBACK_PORT", "9000")
    monkeypatch.setenv("BRIDGE_DEBUG_STREAM_LINES", "yes")
    monkeypatch.setenv("BRIDGE_VAULT_PATH", "/tmp/vault.json")
    monkeypatch.delenv("BRIDGE_OAUTH_REDIRECT_URI", raising=False)

    settings = BridgeSettings.from_env()
    assert settings.read_timeout == 5.0
    assert settings.callback_port == 9000
    assert settings.oauth_redirect_uri == "http://localhost:9000/oauth2callback"
    assert settings.debug_stream_lines is True
    assert settings.vault_path == Path("/tmp/vault.json")
