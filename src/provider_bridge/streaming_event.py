# src/provider_bridge/streaming_event.py
"""
The normalized event stream shared by every provider adapter.

Each protocol parser turns one transport line into at most one event. The
variants form a discriminated union on the ``type`` field so callers can
dispatch on the tag and the app can serialize events straight to JSON.
"""

from typing import Annotated, Literal, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .error_handler import BridgeError, classify_error


class FinishReason:
    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    TOOL_CALLS = "tool_calls"
    FUNCTION_CALL = "function_call"

    ALL = (STOP, LENGTH, CONTENT_FILTER, TOOL_CALLS, FUNCTION_CALL)


class ErrorCode:
    UNAUTHORIZED = "401"
    FORBIDDEN = "403"
    NOT_FOUND = "404"
    RATE_LIMITED = "429"
    SERVER_ERROR = "500"
    SERVICE_UNAVAILABLE = "503"
    CONNECTION_FAILED = "connection_failed"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    CANCELLED = "cancelled"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    STREAM_INCOMPLETE = "stream_incomplete"


_RECOVERABLE_CODES = {
    ErrorCode.TIMEOUT,
    ErrorCode.CONNECTION_FAILED,
    ErrorCode.RATE_LIMITED,
    ErrorCode.SERVER_ERROR,
    ErrorCode.SERVICE_UNAVAILABLE,
}


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class Connected(_Event):
    type: Literal["connected"] = "connected"


class Content(_Event):
    type: Literal["content"] = "content"
    text: str = ""
    thinking: Optional[str] = None
    is_first: bool = False
    # Set when the same wire chunk also carried a finish signal.
    finish_reason: Optional[str] = None


class Done(_Event):
    type: Literal["done"] = "done"
    finish_reason: Optional[str] = None
    model: Optional[str] = None


class Error(_Event):
    type: Literal["error"] = "error"
    message: str
    code: Optional[str] = None
    is_recoverable: bool = False


class KeepAlive(_Event):
    type: Literal["keep_alive"] = "keep_alive"


StreamingEvent = Annotated[
    Union[Connected, Content, Done, Error, KeepAlive],
    Field(discriminator="type"),
]

streaming_event_adapter = TypeAdapter(StreamingEvent)

CONNECTED = Connected()
KEEP_ALIVE = KeepAlive()


def is_terminal(event) -> bool:
    return isinstance(event, (Done, Error))


def error_from_http_status(status_code: int, message: str) -> Error:
    """Rate limits and server-side failures can be retried, everything else cannot."""
    return Error(
        message=message,
        code=str(status_code),
        is_recoverable=status_code == 429 or status_code >= 500,
    )


def error_from_exception(exc: Exception) -> Error:
    """Maps a raised exception onto a terminal error event."""
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, BridgeError):
        return Error(message=exc.message or message, code=exc.code, is_recoverable=exc.is_recoverable)

    if isinstance(exc, httpx.TimeoutException):
        return Error(message=f"Request timed out: {message}", code=ErrorCode.TIMEOUT, is_recoverable=True)

    classified = classify_error(exc)
    if classified.error_type == "api_connection":
        code = ErrorCode.CONNECTION_FAILED
    elif classified.status_code is not None:
        code = str(classified.status_code)
    else:
        code = None
    return Error(message=message, code=code, is_recoverable=code in _RECOVERABLE_CODES)
