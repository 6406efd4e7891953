import argparse
import html
import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Optional

import colorlog
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from provider_bridge.auth.oauth_exceptions import InvalidCallbackError, InvalidStateError, OAuthError
from provider_bridge.auth.oauth_manager import OAuthManager
from provider_bridge.auth.token_store import TokenStore
from provider_bridge.client import ChatClient
from provider_bridge.config import BridgeSettings, load_provider_configs
from provider_bridge.error_handler import AuthError, BridgeError, ProviderError
from provider_bridge.failure_logger import setup_failure_logger
from provider_bridge.models import AuthType, ProviderConfig, ProviderMessage, ReasoningEffort
from provider_bridge.streaming_event import StreamingEvent

from bridge_app.credential_tool import open_token_store, run_login, set_api_key
from bridge_app.request_logger import log_request_to_console

_root_dir = Path.cwd()


def setup_logging(log_dir: Path) -> None:
    """Console (colored, INFO), bridge.log (INFO) and bridge_debug.log (library DEBUG only)."""
    log_dir.mkdir(parents=True, exist_ok=True)

    info_file_handler = logging.FileHandler(log_dir / "bridge.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    debug_file_handler = logging.FileHandler(log_dir / "bridge_debug.log", encoding="utf-8")
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    class BridgeDebugFilter(logging.Filter):
        def filter(self, record):
            return record.levelno == logging.DEBUG and record.name.startswith("provider_bridge")

    debug_file_handler.addFilter(BridgeDebugFilter())

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(info_file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(debug_file_handler)

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    os.environ.setdefault("BRIDGE_LOG_DIR", str(log_dir))
    setup_failure_logger()


class ChatRequestBody(BaseModel):
    messages: List[ProviderMessage]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: float = 0.7
    reasoning_effort: ReasoningEffort = ReasoningEffort.HIGH


_CALLBACK_PAGE = "<html><body><h1>{title}</h1><p>{detail}</p></body></html>"

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_chat_client(request: Request) -> ChatClient:
    """Dependency to get the chat client instance from the app state."""
    return request.app.state.chat_client


def get_oauth_manager(request: Request) -> OAuthManager:
    manager = request.app.state.oauth_manager
    if manager is None:
        raise HTTPException(status_code=503, detail="OAuth is not configured")
    return manager


def get_provider(provider_id: str, request: Request) -> ProviderConfig:
    provider = request.app.state.providers.get(provider_id)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider_id}'")
    return provider


async def verify_api_key(request: Request, auth: str = Depends(api_key_header)):
    """Dependency to verify the proxy API key."""
    proxy_api_key = request.app.state.proxy_api_key
    # No PROXY_API_KEY means open access
    if not proxy_api_key:
        return auth
    if not auth or auth != f"Bearer {proxy_api_key}":
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")
    return auth


def _bridge_http_error(e: BridgeError) -> HTTPException:
    if isinstance(e, OAuthError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, AuthError):
        return HTTPException(status_code=401, detail=e.message)
    if isinstance(e, ProviderError) and e.status_code in (401, 403):
        return HTTPException(status_code=401, detail=e.message)
    return HTTPException(status_code=502, detail=e.message)


async def streaming_response_wrapper(
    request: Request, events: AsyncGenerator[StreamingEvent, None]
) -> AsyncGenerator[str, None]:
    """
    Frames each event as an SSE data line and stops pulling from the provider
    as soon as the client goes away.
    """
    try:
        async for event in events:
            if await request.is_disconnected():
                logging.warning("Client disconnected, stopping stream.")
                break
            yield f"data: {event.model_dump_json()}\n\n"
    finally:
        await events.aclose()


def create_app(
    settings: Optional[BridgeSettings] = None,
    providers: Optional[Dict[str, ProviderConfig]] = None,
    token_store: Optional[TokenStore] = None,
    chat_client: Optional[ChatClient] = None,
    oauth_manager: Optional[OAuthManager] = None,
    proxy_api_key: Optional[str] = None,
    enable_request_logging: bool = False,
) -> FastAPI:
    """
    Builds the HTTP app. Anything not passed in is created from the
    environment when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage the ChatClient's lifecycle with the app's lifespan."""
        owns_client = app.state.chat_client is None
        if owns_client:
            store = app.state.token_store or open_token_store(app.state.settings)
            client = ChatClient(store, settings=app.state.settings)
            if app.state.oauth_manager is None:
                app.state.oauth_manager = OAuthManager(
                    store,
                    client.http_client,
                    redirect_uri=app.state.settings.oauth_redirect_uri,
                    max_age_ms=app.state.settings.pkce_max_age_ms,
                )
            client.oauth_manager = app.state.oauth_manager
            app.state.chat_client = client

        if app.state.oauth_manager is not None:
            for provider in app.state.providers.values():
                if provider.auth_type == AuthType.OAUTH:
                    app.state.oauth_manager.register_provider(provider)

        logging.info(f"Provider bridge ready with {len(app.state.providers)} providers.")
        yield

        if owns_client:
            await app.state.chat_client.aclose()
            app.state.chat_client = None
            logging.info("ChatClient closed.")

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings or BridgeSettings.from_env()
    app.state.providers = providers if providers is not None else load_provider_configs()
    app.state.token_store = token_store
    app.state.chat_client = chat_client
    app.state.oauth_manager = oauth_manager
    app.state.proxy_api_key = proxy_api_key if proxy_api_key is not None else os.getenv("PROXY_API_KEY")
    app.state.enable_request_logging = enable_request_logging

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {"Status": "Provider bridge is running"}

    @app.get("/v1/providers")
    async def list_providers(request: Request, _=Depends(verify_api_key)):
        """Returns the configured providers (custom headers omitted)."""
        return [
            p.model_dump(mode="json", exclude={"headers"})
            for p in request.app.state.providers.values()
        ]

    @app.get("/v1/providers/{provider_id}/models")
    async def list_models(
        provider: ProviderConfig = Depends(get_provider),
        client: ChatClient = Depends(get_chat_client),
        _=Depends(verify_api_key),
    ):
        try:
            models = await client.fetch_models(provider)
        except BridgeError as e:
            raise _bridge_http_error(e)
        return {"object": "list", "data": [m.model_dump(mode="json") for m in models]}

    @app.post("/v1/providers/{provider_id}/test")
    async def test_provider(
        provider: ProviderConfig = Depends(get_provider),
        client: ChatClient = Depends(get_chat_client),
        _=Depends(verify_api_key),
    ):
        result = await client.test_connection(provider)
        return {"ok": result.ok, "message": result.message}

    @app.post("/v1/providers/{provider_id}/chat")
    async def chat(
        request: Request,
        body: ChatRequestBody,
        provider: ProviderConfig = Depends(get_provider),
        client: ChatClient = Depends(get_chat_client),
        _=Depends(verify_api_key),
    ):
        """Streams the completion as text/event-stream frames of StreamingEvent JSON."""
        if request.app.state.enable_request_logging:
            log_request_to_console(
                path=request.url.path,
                client_info=(request.client.host, request.client.port) if request.client else None,
                provider_id=provider.id,
                model=body.model,
                message_count=len(body.messages),
            )
        events = client.stream_chat(
            provider,
            body.messages,
            model=body.model,
            system_prompt=body.system_prompt,
            temperature=body.temperature,
            reasoning_effort=body.reasoning_effort,
        )
        return StreamingResponse(
            streaming_response_wrapper(request, events),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/v1/oauth/{provider_id}/start")
    async def oauth_start(
        provider: ProviderConfig = Depends(get_provider),
        manager: OAuthManager = Depends(get_oauth_manager),
        _=Depends(verify_api_key),
    ):
        try:
            authorization = manager.begin_flow(provider)
        except OAuthError as e:
            raise _bridge_http_error(e)
        return {"url": authorization.url, "state": authorization.state}

    @app.get("/oauth/callback")
    @app.get("/oauth2callback")
    async def oauth_callback(request: Request, manager: OAuthManager = Depends(get_oauth_manager)):
        params = dict(request.query_params)
        try:
            if not params.get("state"):
                raise InvalidCallbackError("Missing state parameter")
            provider_id = manager.find_provider_for_state(params["state"])
            if provider_id is None:
                raise InvalidStateError()
            record = await manager.complete_flow(provider_id, params)
        except OAuthError as e:
            logging.warning(f"OAuth callback rejected: {e.message}")
            return HTMLResponse(
                _CALLBACK_PAGE.format(title="Authentication Failed", detail=html.escape(e.message)),
                status_code=400,
            )
        return HTMLResponse(
            _CALLBACK_PAGE.format(
                title="Authentication successful!",
                detail=f"Signed in as {html.escape(record.email or 'unknown account')}. You can close this window.",
            )
        )

    @app.get("/v1/oauth/{provider_id}/status")
    async def oauth_status(
        provider: ProviderConfig = Depends(get_provider),
        manager: OAuthManager = Depends(get_oauth_manager),
        _=Depends(verify_api_key),
    ):
        state = await manager.get_auth_state(provider.id)
        return {
            "status": state.status.value,
            "email": state.email,
            "expires_at": state.expires_at,
            "message": state.message,
        }

    @app.post("/v1/oauth/{provider_id}/logout")
    async def oauth_logout(
        provider: ProviderConfig = Depends(get_provider),
        manager: OAuthManager = Depends(get_oauth_manager),
        _=Depends(verify_api_key),
    ):
        await manager.logout(provider.id)
        return {"status": "logged_out"}

    return app


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Multi-provider chat bridge")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind the server to.")
    parser.add_argument("--port", type=int, default=8000, help="Port to run the server on.")
    parser.add_argument(
        "--enable-request-logging", action="store_true", help="Enable request logging."
    )
    parser.add_argument("--login", metavar="PROVIDER", help="Sign in to an OAuth provider and exit.")
    parser.add_argument("--set-api-key", metavar="PROVIDER", help="Store an API key in the vault and exit.")
    args = parser.parse_args(argv)

    load_dotenv(_root_dir / ".env")

    if args.login:
        return 0 if run_login(args.login) else 1
    if args.set_api_key:
        return 0 if set_api_key(args.set_api_key) else 1

    setup_logging(_root_dir / "logs")
    app = create_app(enable_request_logging=args.enable_request_logging)

    key_display = "✓ set" if app.state.proxy_api_key else "✗ Not Set (anyone can access!)"
    print("━" * 70)
    print(f"Starting provider bridge on {args.host}:{args.port}")
    print(f"Proxy API Key: {key_display}")
    print(f"Providers: {', '.join(app.state.providers)}")
    print("━" * 70)
    if args.enable_request_logging:
        logging.info("Request logging is enabled.")

    import uvicorn

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
