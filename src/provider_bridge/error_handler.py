import re
import json
from typing import Optional, Any

import httpx


class BridgeError(Exception):
    """Base class for failures raised inside the provider boundary layer."""

    code: Optional[str] = None
    is_recoverable: bool = False

    def __init__(self, message: str, code: Optional[str] = None, is_recoverable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if is_recoverable is not None:
            self.is_recoverable = is_recoverable


class ParseError(BridgeError):
    """A payload could not be decoded. Never retried."""
    code = "parse_error"
    is_recoverable = False


class ProviderError(BridgeError):
    """A structured error returned by the provider API."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None, is_recoverable: Optional[bool] = None):
        if code is None and status_code is not None:
            code = str(status_code)
        if is_recoverable is None:
            is_recoverable = status_code is not None and (status_code == 429 or status_code >= 500)
        super().__init__(message, code=code, is_recoverable=is_recoverable)
        self.status_code = status_code


class TransportError(BridgeError):
    """Connection reset, refused or timed out. Retrying the whole request may succeed."""
    code = "connection_failed"
    is_recoverable = True


class AuthError(BridgeError):
    """Credentials are missing, expired or rejected. Requires re-authentication."""
    code = "AUTH_REQUIRED"
    is_recoverable = False


class ClassifiedError:
    """A structured representation of a classified error."""
    def __init__(self, error_type: str, original_exception: Exception, status_code: Optional[int] = None, retry_after: Optional[int] = None):
        self.error_type = error_type
        self.original_exception = original_exception
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_recoverable(self) -> bool:
        return self.error_type in ("rate_limit", "server_error", "api_connection", "timeout")

    def __str__(self):
        return f"ClassifiedError(type={self.error_type}, status={self.status_code}, retry_after={self.retry_after}, original_exc={self.original_exception})"


def get_retry_after(error: Exception) -> Optional[int]:
    """
    Extracts the 'retry-after' duration in seconds from an exception.
    Checks the response header first, then common message patterns.
    """
    response = getattr(error, "response", None)
    if response is not None:
        header = response.headers.get("Retry-After")
        if header and header.strip().isdigit():
            return int(header.strip())

    error_str = str(error).lower()
    patterns = [
        r'retry after:?\s*(\d+)',
        r'retry_after:?\s*(\d+)',
        r'retry in\s*(\d+)\s*seconds',
        r'"retrydelay":\s*"(\d+)s"',
    ]
    for pattern in patterns:
        match = re.search(pattern, error_str)
        if match:
            return int(match.group(1))

    value = getattr(error, 'retry_after', None)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def classify_error(e: Exception) -> ClassifiedError:
    """
    Classifies an exception into a structured ClassifiedError object.
    Handles httpx exceptions and the bridge error taxonomy.
    """
    status_code = getattr(e, 'status_code', None)
    if isinstance(e, httpx.HTTPStatusError):
        status_code = e.response.status_code
        if status_code in (401, 403):
            return ClassifiedError(error_type='authentication', original_exception=e, status_code=status_code)
        if status_code == 429:
            retry_after = get_retry_after(e)
            return ClassifiedError(error_type='rate_limit', original_exception=e, status_code=status_code, retry_after=retry_after)
        if 400 <= status_code < 500:
            return ClassifiedError(error_type='invalid_request', original_exception=e, status_code=status_code)
        if 500 <= status_code:
            return ClassifiedError(error_type='server_error', original_exception=e, status_code=status_code)

    if isinstance(e, httpx.TimeoutException):
        return ClassifiedError(error_type='timeout', original_exception=e)

    if isinstance(e, (httpx.ConnectError, httpx.NetworkError, TransportError)):
        return ClassifiedError(error_type='api_connection', original_exception=e)

    if isinstance(e, AuthError):
        return ClassifiedError(error_type='authentication', original_exception=e, status_code=status_code or 401)

    if isinstance(e, ParseError):
        return ClassifiedError(error_type='parse_error', original_exception=e)

    if isinstance(e, ProviderError):
        if e.status_code == 429:
            return ClassifiedError(error_type='rate_limit', original_exception=e, status_code=429, retry_after=get_retry_after(e))
        if e.is_recoverable:
            return ClassifiedError(error_type='server_error', original_exception=e, status_code=e.status_code)
        return ClassifiedError(error_type='invalid_request', original_exception=e, status_code=e.status_code)

    # Fallback for any other unclassified errors
    return ClassifiedError(
        error_type='unknown',
        original_exception=e,
        status_code=status_code
    )


def extract_error_message(body: Any, status_code: int) -> str:
    """
    Builds a human readable message from an error response body.

    Understands the OpenAI/Gemini envelope ({"error": {"message": ...}}) and the
    Ollama one ({"error": "..."}). Falls back to "HTTP <status>: <body>".
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    text = (body or "").strip()
    try:
        data = json.loads(text) if text else None
    except json.JSONDecodeError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if isinstance(data.get("message"), str):
            return data["message"]
    return f"HTTP {status_code}: {text or 'Unknown error'}"


def mask_credential(credential: Optional[str]) -> str:
    """Returns a log-safe rendition of a secret, keeping only its last characters."""
    if not credential:
        return "<none>"
    if len(credential) <= 8:
        return "..." + credential[-2:]
    return "..." + credential[-6:]
