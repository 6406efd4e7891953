import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

from .error_handler import mask_credential

_file_handler = None
_fallback_mode = False


class JsonFormatter(logging.Formatter):
    def format(self, record):
        # The message is already a dict
        return json.dumps(record.msg)


def _log_dir() -> str:
    return os.getenv("BRIDGE_LOG_DIR", "logs")


def _create_file_handler():
    """Create file handler with directory auto-recreation."""
    global _file_handler, _fallback_mode
    log_dir = _log_dir()

    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(
            os.path.join(log_dir, "failures.log"),
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=2,
        )
        handler.setFormatter(JsonFormatter())
        _file_handler = handler
        _fallback_mode = False
        return handler
    except OSError as e:
        logging.warning(f"Cannot create failure log file handler: {e}")
        _fallback_mode = True
        return None


def setup_failure_logger():
    """Sets up a dedicated JSON logger for writing detailed failure logs."""
    logger = logging.getLogger("failure_logger")
    logger.setLevel(logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    handler = _create_file_handler()
    if handler:
        logger.addHandler(handler)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def _ensure_handler_valid():
    if _file_handler is None or _fallback_mode:
        setup_failure_logger()


failure_logger = logging.getLogger("failure_logger")

main_lib_logger = logging.getLogger("provider_bridge")


def _error_chain(error: Exception):
    chain = []
    visited = set()
    current = error
    while current is not None and id(current) not in visited and len(chain) <= 5:
        visited.add(id(current))
        chain.append({"type": type(current).__name__, "message": str(current)[:2000]})
        current = current.__cause__ or current.__context__
    return chain


def log_failure(
    provider_id: str,
    model: Optional[str],
    error: Exception,
    status_code: Optional[int] = None,
    raw_response_text: Optional[str] = None,
    credential: Optional[str] = None,
):
    """
    Logs a detailed failure record to failures.log and a one-line summary to
    the library logger.

    Args:
        provider_id: Provider the request was sent to
        model: The model that was requested
        error: The exception describing the failure
        status_code: HTTP status when the provider answered
        raw_response_text: Response body, if one was read
        credential: Credential used; only its masked form is written
    """
    chain = _error_chain(error)
    detailed_log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "provider": provider_id,
        "model": model,
        "credential_ending": mask_credential(credential) if credential else None,
        "status_code": status_code,
        "error_type": type(error).__name__,
        "error_message": str(error)[:5000],
        "raw_response": raw_response_text[:10000] if raw_response_text else None,
        "error_chain": chain if len(chain) > 1 else None,
    }

    summary_message = (
        f"Request to '{provider_id}' failed for model {model}. "
        f"Error: {type(error).__name__}. See failures.log for details."
    )

    _ensure_handler_valid()
    try:
        failure_logger.error(detailed_log_data)
    except OSError as e:
        global _fallback_mode
        _fallback_mode = True
        logging.error(f"Failed to write to failures.log: {e}")
        logging.error(f"Failure summary: {summary_message}")

    main_lib_logger.error(summary_message)
