# src/provider_bridge/auth/callback_server.py

import asyncio
import logging
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse

lib_logger = logging.getLogger("provider_bridge")

_SUCCESS_PAGE = (
    b"<html><body><h1>Authentication successful!</h1>"
    b"<p>You can close this window.</p></body></html>"
)


class CallbackServer:
    """
    One-shot loopback HTTP listener for the OAuth redirect.

    It captures the query parameters of the first request to ``path`` and
    leaves validation to OAuthManager.complete_flow.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8085, path: str = "/oauth2callback"):
        self.host = host
        self.port = port
        self.path = path
        self._server: Optional[asyncio.AbstractServer] = None
        self._result: Optional[asyncio.Future] = None

    async def start(self) -> None:
        self._result = asyncio.get_running_loop().create_future()
        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        lib_logger.debug(f"OAuth callback server listening on {self.host}:{self.port}{self.path}")

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            request_line = await reader.readline()
            if not request_line:
                return
            parts = request_line.decode("utf-8", errors="replace").strip().split(" ")
            target = parts[1] if len(parts) > 1 else "/"
            # Drain headers
            while True:
                header = await reader.readline()
                if not header or header in (b"\r\n", b"\n"):
                    break

            parsed = urlparse(target)
            if parsed.path != self.path:
                writer.write(b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\n\r\n")
                await writer.drain()
                return

            params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
            writer.write(b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n\r\n")
            if "error" in params:
                writer.write(
                    f"<html><body><h1>Authentication Failed</h1><p>Error: {params['error']}. Please try again.</p></body></html>".encode()
                )
            else:
                writer.write(_SUCCESS_PAGE)
            await writer.drain()

            if self._result is not None and not self._result.done():
                self._result.set_result(params)
        except Exception as e:
            lib_logger.error(f"Error in OAuth callback handler: {e}")
        finally:
            writer.close()

    async def wait_for_callback(self, timeout: float = 300.0) -> Dict[str, str]:
        if self._result is None:
            raise RuntimeError("Callback server is not running")
        return await asyncio.wait_for(self._result, timeout=timeout)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def __aenter__(self) -> "CallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def run_callback_server(
    host: str = "127.0.0.1",
    port: int = 8085,
    path: str = "/oauth2callback",
    timeout: float = 300.0,
) -> Dict[str, str]:
    """Listens until one redirect arrives and returns its query parameters."""
    async with CallbackServer(host, port, path) as server:
        return await server.wait_for_callback(timeout=timeout)
