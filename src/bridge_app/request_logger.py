import logging
from datetime import datetime
from typing import Optional, Tuple


def log_request_to_console(
    path: str,
    client_info: Optional[Tuple[str, int]],
    provider_id: str,
    model: Optional[str],
    message_count: int,
):
    """
    Logs a concise, single-line summary of an incoming chat request to the console.
    """
    time_str = datetime.now().strftime("%H:%M")
    host, port = client_info if client_info else ("unknown", 0)
    log_message = (
        f"{time_str} - {host}:{port} - provider: {provider_id}, "
        f"model: {model or 'default'}, messages: {message_count} - {path}"
    )
    logging.info(log_message)
