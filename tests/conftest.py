import json
import os

import pytest

from provider_bridge.auth.credential_vault import InMemoryVault
from provider_bridge.auth.token_store import TokenStore
from provider_bridge.models import AuthType, ProviderConfig, ProviderType


@pytest.fixture(autouse=True, scope="session")
def _failure_log_dir(tmp_path_factory):
    os.environ["BRIDGE_LOG_DIR"] = str(tmp_path_factory.mktemp("logs"))
    yield


@pytest.fixture
def clock():
    return {"now": 1_700_000_000_000}


@pytest.fixture
def token_store(clock):
    return TokenStore(InMemoryVault(), clock=lambda: clock["now"])


@pytest.fixture
def openai_provider():
    return ProviderConfig(
        id="testai",
        name="Test AI",
        provider_type=ProviderType.OPENAI_COMPATIBLE,
        auth_type=AuthType.API_KEY,
        base_url="https://api.test.example/v1/",
        default_model="gpt-test",
        headers={"X-Title": "bridge"},
    )


@pytest.fixture
def ollama_provider():
    return ProviderConfig(
        id="ollama-local",
        name="Ollama (Local)",
        provider_type=ProviderType.OLLAMA,
        auth_type=AuthType.NONE,
        base_url="http://ollama.test:11434",
        default_model="llama3.2",
    )


@pytest.fixture
def antigravity_provider():
    return ProviderConfig(
        id="antigravity",
        name="Antigravity",
        provider_type=ProviderType.ANTIGRAVITY,
        auth_type=AuthType.OAUTH,
        base_url="https://cloudcode-pa.googleapis.com",
        default_model="antigravity-gemini-3-pro",
        supports_images=True,
    )


def sse_body(*payloads) -> bytes:
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode()


def ndjson_body(*payloads) -> bytes:
    return "".join(json.dumps(p) + "\n" for p in payloads).encode()
