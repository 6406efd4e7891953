"""Tests for the PKCE flow and serialized token refresh."""

import asyncio
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from provider_bridge.auth.oauth_exceptions import (
    InvalidCallbackError,
    InvalidStateError,
    PkceExpiredError,
    RefreshFailedError,
    TokenExchangeFailedError,
    UnsupportedProviderError,
    UserCancelledError,
)
from provider_bridge.auth.oauth_manager import AuthStatus, OAuthManager
from provider_bridge.auth.token_store import TokenRecord
from provider_bridge.models import AuthType, ProviderConfig, ProviderType

TOKEN_URL = "https://oauth2.googleapis.com/token"


async def fake_enricher(access_token, project_id):
    return "me@example.com", project_id or "proj-123"


def make_manager(token_store, provider, handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    manager = OAuthManager(
        token_store,
        client,
        redirect_uri="http://localhost:8085/oauth2callback",
        retry_base_delay=0,
        **kwargs,
    )
    manager.register_provider(provider, enricher=fake_enricher)
    return manager, client


def token_response(access="access-1", refresh="refresh-1", expires_in=3600):
    body = {"access_token": access, "expires_in": expires_in, "token_type": "Bearer"}
    if refresh:
        body["refresh_token"] = refresh
    return httpx.Response(200, json=body)


def test_begin_flow_builds_authorization_url(token_store, antigravity_provider):
    manager, _ = make_manager(token_store, antigravity_provider, lambda r: httpx.Response(500))
    request = manager.begin_flow(antigravity_provider)

    params = {k: v[0] for k, v in parse_qs(urlparse(request.url).query).items()}
    assert request.url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert params["response_type"] == "code"
    assert params["code_challenge_method"] == "S256"
    assert params["state"] == request.state
    assert params["redirect_uri"] == "http://localhost:8085/oauth2callback"
    assert params["access_type"] == "offline"
    assert params["prompt"] == "consent"
    assert "cloud-platform" in params["scope"]
    assert manager.pending_flow("antigravity").state == request.state


def test_new_flow_supersedes_pending(token_store, antigravity_provider):
    manager, _ = make_manager(token_store, antigravity_provider, lambda r: httpx.Response(500))
    first = manager.begin_flow(antigravity_provider)
    second = manager.begin_flow(antigravity_provider)
    assert first.state != second.state
    assert manager.pending_flow("antigravity").state == second.state
    assert manager.find_provider_for_state(first.state) is None


def test_state_mismatch_rejected_without_network(token_store, antigravity_provider):
    calls = []

    def handler(request):
        calls.append(request)
        return token_response()

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, handler)
        request = manager.begin_flow(antigravity_provider)
        with pytest.raises(InvalidStateError):
            await manager.complete_flow("antigravity", {"code": "abc", "state": request.state + "x"})
        # Genuine callback can still complete
        assert manager.pending_flow("antigravity") is not None
        await client.aclose()

    asyncio.run(run())
    assert calls == []


def test_expired_flow_rejected_without_network(token_store, antigravity_provider, clock):
    calls = []

    def handler(request):
        calls.append(request)
        return token_response()

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, handler, max_age_ms=600_000)
        request = manager.begin_flow(antigravity_provider)
        clock["now"] += 600_001
        with pytest.raises(PkceExpiredError):
            await manager.complete_flow("antigravity", {"code": "abc", "state": request.state})
        assert manager.pending_flow("antigravity") is None
        await client.aclose()

    asyncio.run(run())
    assert calls == []


def test_callback_errors(token_store, antigravity_provider):
    async def run():
        manager, client = make_manager(token_store, antigravity_provider, lambda r: token_response())

        request = manager.begin_flow(antigravity_provider)
        with pytest.raises(UserCancelledError):
            await manager.complete_flow("antigravity", {"error": "access_denied", "state": request.state})
        assert manager.pending_flow("antigravity") is None

        request = manager.begin_flow(antigravity_provider)
        with pytest.raises(InvalidCallbackError):
            await manager.complete_flow("antigravity", {"state": request.state})
        with pytest.raises(InvalidCallbackError):
            await manager.complete_flow("antigravity", {"code": "abc"})

        with pytest.raises(TokenExchangeFailedError):
            await manager.complete_flow(
                "antigravity", {"error": "server_error", "error_description": "boom", "state": request.state}
            )
        assert (await manager.get_auth_state("antigravity")).status == AuthStatus.ERROR
        await client.aclose()

    asyncio.run(run())


def test_no_pending_flow_is_invalid_state(token_store, antigravity_provider):
    async def run():
        manager, client = make_manager(token_store, antigravity_provider, lambda r: token_response())
        with pytest.raises(InvalidStateError):
            await manager.complete_flow("antigravity", {"code": "abc", "state": "whatever"})
        await client.aclose()

    asyncio.run(run())


def test_successful_flow_stores_enriched_tokens(token_store, antigravity_provider, clock):
    seen = {}

    def handler(request):
        assert str(request.url) == TOKEN_URL
        seen.update({k: v[0] for k, v in parse_qs(request.content.decode()).items()})
        return token_response(expires_in=1800)

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, handler)
        states = []
        manager.add_listener(lambda provider_id, state: states.append(state.status))

        request = manager.begin_flow(antigravity_provider)
        verifier = manager.pending_flow("antigravity").code_verifier
        record = await manager.complete_flow_from_url(
            f"http://localhost:8085/oauth2callback?code=auth-code&state={request.state}"
        )
        await client.aclose()
        return record, verifier, states

    record, verifier, states = asyncio.run(run())

    assert seen["grant_type"] == "authorization_code"
    assert seen["code"] == "auth-code"
    assert seen["code_verifier"] == verifier
    assert record.access_token == "access-1"
    assert record.refresh_token == "refresh-1"
    assert record.email == "me@example.com"
    assert record.project_id == "proj-123"
    assert record.expires_at == clock["now"] + 1800 * 1000
    assert token_store.load("antigravity") == record
    assert states == [AuthStatus.AUTHENTICATING, AuthStatus.AUTHENTICATED]


def test_concurrent_callers_share_one_refresh(token_store, antigravity_provider, clock):
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(0.05)
        return token_response(access="fresh", refresh=None)

    token_store.save(
        "antigravity",
        TokenRecord(access_token="stale", refresh_token="keep-me", expires_at=clock["now"] - 1, email="me@example.com"),
    )

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, handler)
        tokens = await asyncio.gather(*[manager.get_valid_access_token("antigravity") for _ in range(5)])
        await client.aclose()
        return tokens

    tokens = asyncio.run(run())
    assert tokens == ["fresh"] * 5
    assert len(calls) == 1
    stored = token_store.load("antigravity")
    assert stored.refresh_token == "keep-me"
    assert stored.email == "me@example.com"


def test_valid_token_needs_no_refresh(token_store, antigravity_provider, clock):
    calls = []
    token_store.save("antigravity", TokenRecord(access_token="good", expires_at=clock["now"] + 3_600_000))

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, lambda r: calls.append(r))
        token = await manager.get_valid_access_token("antigravity")
        await client.aclose()
        return token

    assert asyncio.run(run()) == "good"
    assert calls == []


def test_refresh_retries_server_errors(token_store, antigravity_provider, clock):
    responses = [httpx.Response(503), token_response(access="after-retry")]

    def handler(request):
        return responses.pop(0)

    token_store.save("antigravity", TokenRecord(access_token="old", refresh_token="r", expires_at=clock["now"] - 1))

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, handler)
        token = await manager.get_valid_access_token("antigravity")
        await client.aclose()
        return token

    assert asyncio.run(run()) == "after-retry"
    assert responses == []


def test_refresh_failure_returns_none_and_sets_error(token_store, antigravity_provider, clock):
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Token has been revoked"})

    token_store.save("antigravity", TokenRecord(access_token="old", refresh_token="r", expires_at=clock["now"] - 1))

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, handler)
        token = await manager.get_valid_access_token("antigravity")
        state = await manager.get_auth_state("antigravity")
        with pytest.raises(RefreshFailedError):
            await manager.refresh_tokens("antigravity")
        await client.aclose()
        return token, state

    token, state = asyncio.run(run())
    assert token is None
    assert state.status == AuthStatus.ERROR


def test_expired_without_refresh_token(token_store, antigravity_provider, clock):
    token_store.save("antigravity", TokenRecord(access_token="old", expires_at=clock["now"] - 1))

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, lambda r: token_response())
        token = await manager.get_valid_access_token("antigravity")
        await client.aclose()
        return token

    assert asyncio.run(run()) is None


def test_logout_clears_tokens(token_store, antigravity_provider, clock):
    token_store.save("antigravity", TokenRecord(access_token="a", refresh_token="r", expires_at=clock["now"] + 3_600_000))

    async def run():
        manager, client = make_manager(token_store, antigravity_provider, lambda r: token_response())
        assert (await manager.get_auth_state("antigravity")).status == AuthStatus.AUTHENTICATED
        await manager.logout("antigravity")
        state = await manager.get_auth_state("antigravity")
        await client.aclose()
        return state

    assert asyncio.run(run()).status == AuthStatus.UNAUTHENTICATED
    assert token_store.load("antigravity") is None


def test_register_non_oauth_provider_rejected(token_store, openai_provider):
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    manager = OAuthManager(token_store, client, redirect_uri="http://localhost/cb")
    with pytest.raises(UnsupportedProviderError):
        manager.register_provider(openai_provider)

    custom = ProviderConfig(
        id="other",
        name="Other",
        provider_type=ProviderType.OPENAI_COMPATIBLE,
        auth_type=AuthType.OAUTH,
    )
    with pytest.raises(UnsupportedProviderError):
        manager.register_provider(custom)


def test_error_callback_with_forged_state_keeps_pending_flow(token_store, antigravity_provider):
    async def run():
        manager, client = make_manager(token_store, antigravity_provider, lambda r: token_response())
        request = manager.begin_flow(antigravity_provider)

        for params in ({"error": "server_error", "state": "forged"}, {"error": "access_denied"}):
            with pytest.raises(InvalidStateError):
                await manager.complete_flow("antigravity", params)

        assert manager.pending_flow("antigravity").state == request.state
        assert (await manager.get_auth_state("antigravity")).status == AuthStatus.AUTHENTICATING

        record = await manager.complete_flow("antigravity", {"code": "abc", "state": request.state})
        await client.aclose()
        return record

    assert asyncio.run(run()).access_token == "access-1"


def test_malformed_userinfo_does_not_block_sign_in(token_store, antigravity_provider):
    def handler(request):
        if str(request.url) == TOKEN_URL:
            return token_response()
        if "userinfo" in str(request.url):
            return httpx.Response(200, text="<html>oops</html>")
        if request.method == "HEAD":
            return httpx.Response(200)
        return httpx.Response(200, json={"name": "projects/p-1"})

    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        manager = OAuthManager(token_store, client, redirect_uri="http://localhost:8085/oauth2callback")
        manager.register_provider(antigravity_provider)
        request = manager.begin_flow(antigravity_provider)
        record = await manager.complete_flow("antigravity", {"code": "abc", "state": request.state})
        await client.aclose()
        return record

    # A missing email does not block sign-in
    record = asyncio.run(run())
    assert record.email is None
    assert record.project_id == "p-1"


def test_unexpected_enrichment_failure_becomes_exchange_error(token_store, antigravity_provider):
    async def broken_enricher(access_token, project_id):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: token_response()))
        manager = OAuthManager(token_store, client, redirect_uri="http://localhost:8085/oauth2callback")
        manager.register_provider(antigravity_provider, enricher=broken_enricher)
        states = []
        manager.add_listener(lambda provider_id, state: states.append(state.status))

        request = manager.begin_flow(antigravity_provider)
        with pytest.raises(TokenExchangeFailedError) as excinfo:
            await manager.complete_flow("antigravity", {"code": "abc", "state": request.state})
        state = await manager.get_auth_state("antigravity")
        await client.aclose()
        return excinfo.value, state, states

    error, state, states = asyncio.run(run())
    assert isinstance(error.__cause__, ValueError)
    assert state.status == AuthStatus.ERROR
    assert states[-1] == AuthStatus.ERROR
    assert token_store.load("antigravity") is None
