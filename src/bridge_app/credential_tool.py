# src/bridge_app/credential_tool.py

import asyncio
import webbrowser
from typing import Optional

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.text import Text

from provider_bridge.auth.callback_server import CallbackServer
from provider_bridge.auth.credential_vault import EncryptedFileVault
from provider_bridge.auth.oauth_exceptions import OAuthError
from provider_bridge.auth.oauth_manager import OAuthManager
from provider_bridge.auth.token_store import TokenStore
from provider_bridge.config import BridgeSettings, load_provider_configs
from provider_bridge.models import AuthType

console = Console()


def open_token_store(settings: BridgeSettings) -> TokenStore:
    """Opens the encrypted vault configured in the settings."""
    settings.vault_path.parent.mkdir(parents=True, exist_ok=True)
    vault = EncryptedFileVault(settings.vault_path, master_key=settings.vault_key)
    return TokenStore(vault)


async def login(provider_id: str, settings: Optional[BridgeSettings] = None, timeout: float = 300.0) -> bool:
    """
    Runs the browser OAuth flow for one provider, catching the redirect on the
    loopback callback server. Returns True once tokens are stored.
    """
    settings = settings or BridgeSettings.from_env()
    providers = load_provider_configs()
    provider = providers.get(provider_id)
    if provider is None or provider.auth_type != AuthType.OAUTH:
        oauth_ids = [p.id for p in providers.values() if p.auth_type == AuthType.OAUTH]
        console.print(
            Panel(
                f"'{provider_id}' is not an OAuth provider. Available: {', '.join(oauth_ids) or 'none'}",
                style="bold red",
                title="Error",
            )
        )
        return False

    token_store = open_token_store(settings)
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.connect_timeout)) as client:
        manager = OAuthManager(
            token_store,
            client,
            redirect_uri=settings.oauth_redirect_uri,
            max_age_ms=settings.pkce_max_age_ms,
        )
        manager.register_provider(provider)

        async with CallbackServer(port=settings.callback_port) as server:
            request = manager.begin_flow(provider)
            console.print(
                Panel(
                    Text.from_markup(
                        f"Opening your browser to sign in to [bold cyan]{provider.name}[/bold cyan].\n"
                        f"If it does not open, visit:\n[link={request.url}]{request.url}[/link]"
                    ),
                    title="OAuth Login",
                    style="bold blue",
                )
            )
            webbrowser.open(request.url)

            try:
                with console.status("Waiting for the authorization callback...", spinner="dots"):
                    params = await server.wait_for_callback(timeout=timeout)
                record = await manager.complete_flow(provider.id, params)
            except asyncio.TimeoutError:
                console.print(Panel("Timed out waiting for the browser callback.", style="bold red", title="Error"))
                return False
            except OAuthError as e:
                console.print(Panel(f"Login failed: {e.message}", style="bold red", title="Error"))
                return False

    success_text = Text.from_markup(
        f"Signed in to [bold cyan]{provider.name}[/bold cyan] as [bold yellow]{record.email or 'unknown account'}[/bold yellow]."
    )
    if record.project_id:
        success_text.append(f"\nProject: {record.project_id}")
    console.print(Panel(success_text, style="bold green", title="Success"))
    return True


def set_api_key(provider_id: str, settings: Optional[BridgeSettings] = None, api_key: Optional[str] = None) -> bool:
    """Stores an API key for a provider in the encrypted vault."""
    settings = settings or BridgeSettings.from_env()
    provider = load_provider_configs().get(provider_id)
    if provider is None:
        console.print(Panel(f"Unknown provider '{provider_id}'", style="bold red", title="Error"))
        return False
    if provider.auth_type != AuthType.API_KEY:
        console.print(
            Panel(f"'{provider.name}' does not use API keys", style="bold yellow", title="Nothing to do")
        )
        return False

    if api_key is None:
        api_key = Prompt.ask(f"Enter the API key for {provider.name}", password=True)
    api_key = api_key.strip()
    if not api_key:
        console.print("[bold red]No API key entered.[/bold red]")
        return False

    open_token_store(settings).set_api_key(provider.id, api_key)
    console.print(
        Panel(
            Text.from_markup(f"Stored API key for [bold yellow]{provider.name}[/bold yellow] in the vault."),
            style="bold green",
            title="Success",
        )
    )
    return True


def run_login(provider_id: str) -> bool:
    try:
        return asyncio.run(login(provider_id))
    except KeyboardInterrupt:
        console.print("\n[bold yellow]Login cancelled.[/bold yellow]")
        return False
