# src/provider_bridge/sse_parser.py
"""
Stateless line parsers for the three streaming protocols.

Each ``parse_*_event`` call looks at exactly one transport line and returns
at most one StreamingEvent (``None`` means the line carried nothing). No state
survives between calls, so a single parser can serve any number of
concurrent streams. Decoding failures never raise: they come back as a
terminal ``Error`` event so one bad chunk cannot crash the consumer.
"""

import json
import logging
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from .dto.antigravity_models import AntigravityErrorResponse, AntigravityResponse
from .dto.ollama_models import OllamaChatResponse
from .dto.openai_models import OpenAiErrorResponse, OpenAiStreamChunk
from .streaming_event import (
    CONNECTED,
    KEEP_ALIVE,
    Content,
    Done,
    Error,
    ErrorCode,
    FinishReason,
    KeepAlive,
    StreamingEvent,
)

lib_logger = logging.getLogger("provider_bridge")

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"

ANTIGRAVITY_FINISH_REASON_MAP = {
    "STOP": FinishReason.STOP,
    "MAX_TOKENS": FinishReason.LENGTH,
    "SAFETY": FinishReason.CONTENT_FILTER,
    "RECITATION": FinishReason.CONTENT_FILTER,
    "OTHER": FinishReason.STOP,
}


def _parse_error(protocol: str, exc: Exception) -> Error:
    lib_logger.debug(f"Failed to parse {protocol} event: {exc}")
    return Error(
        message=f"Failed to parse {protocol} event: {exc}",
        code=ErrorCode.PARSE_ERROR,
        is_recoverable=False,
    )


def _sse_payload(line: str):
    """
    Applies SSE framing rules. Returns an event when the framing alone decides
    the outcome, ``None`` for non-data lines, otherwise the raw payload string.
    """
    trimmed = line.strip()
    if not trimmed or trimmed.startswith(":"):
        return KEEP_ALIVE
    if not trimmed.startswith(DATA_PREFIX):
        return None
    data = trimmed[len(DATA_PREFIX):].strip()
    if not data:
        return KEEP_ALIVE
    if data == DONE_MARKER:
        return Done()
    return data


# --- OpenAI-compatible SSE ---

def _openai_error(payload: Any) -> Optional[Error]:
    if not isinstance(payload, dict) or "error" not in payload:
        return None
    if isinstance(payload["error"], str):
        return Error(message=payload["error"], code=None, is_recoverable=False)
    try:
        wrapper = OpenAiErrorResponse.model_validate(payload)
    except ValidationError:
        return None
    if wrapper.error is None:
        return None
    return Error(
        message=wrapper.error.message or "Unknown OpenAI error",
        code=wrapper.error.code or wrapper.error.type,
        is_recoverable=False,
    )


def _openai_chunk_event(chunk: OpenAiStreamChunk) -> StreamingEvent:
    if not chunk.choices:
        return KEEP_ALIVE

    choice = chunk.choices[0]
    delta, message = choice.delta, choice.message

    content = (delta.content if delta else None) or (message.content if message else None)
    thinking = (delta.reasoning_text if delta else None) or (
        message.reasoning_text if message else None
    )

    # Content wins even when the same chunk carries finish_reason.
    if content or thinking:
        return Content(text=content or "", thinking=thinking, finish_reason=choice.finish_reason)
    if choice.finish_reason:
        return Done(finish_reason=choice.finish_reason, model=chunk.model)
    if delta is not None and delta.role is not None:
        return CONNECTED
    return KEEP_ALIVE


def parse_openai_event(line: str) -> Optional[StreamingEvent]:
    framed = _sse_payload(line)
    if not isinstance(framed, str):
        return framed

    try:
        payload = json.loads(framed)
    except json.JSONDecodeError as e:
        return _parse_error("SSE", e)

    error = _openai_error(payload)
    if error is not None:
        return error
    try:
        return _openai_chunk_event(OpenAiStreamChunk.model_validate(payload))
    except ValidationError as e:
        return _parse_error("SSE", e)


# --- Ollama NDJSON ---

def _ollama_error(payload: Any) -> Optional[Error]:
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return Error(message=payload["error"], code=None, is_recoverable=False)
    return None


def parse_ollama_event(line: str) -> Optional[StreamingEvent]:
    trimmed = line.strip()
    if not trimmed:
        return KEEP_ALIVE

    try:
        payload = json.loads(trimmed)
    except json.JSONDecodeError as e:
        return _parse_error("NDJSON", e)

    error = _ollama_error(payload)
    if error is not None:
        return error
    try:
        response = OllamaChatResponse.model_validate(payload)
    except ValidationError as e:
        return _parse_error("NDJSON", e)

    if response.done:
        finish_reason = FinishReason.LENGTH if response.done_reason == "length" else FinishReason.STOP
        return Done(finish_reason=finish_reason, model=response.model)

    content = response.message.content if response.message else None
    thinking = response.message.thinking if response.message else None
    if not content and not thinking:
        return KEEP_ALIVE
    return Content(text=content or "", thinking=thinking or None)


# --- Antigravity (Gemini-style) SSE ---

def map_antigravity_finish_reason(reason: Optional[str]) -> Optional[str]:
    if reason is None:
        return None
    return ANTIGRAVITY_FINISH_REASON_MAP.get(reason.upper(), FinishReason.STOP)


def _antigravity_error(payload: Any) -> Optional[Error]:
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), dict):
        return None
    try:
        detail = AntigravityErrorResponse.model_validate(payload).error
    except ValidationError:
        return None
    code = detail.code
    return Error(
        message=detail.message or "Unknown Antigravity error",
        code=detail.status or (str(code) if code is not None else None),
        is_recoverable=code is not None and 500 <= code <= 599,
    )


def _antigravity_chunk_event(chunk: AntigravityResponse) -> StreamingEvent:
    if not chunk.candidates:
        return KEEP_ALIVE

    candidate = chunk.candidates[0]
    finish_reason = map_antigravity_finish_reason(candidate.finish_reason)
    content = candidate.content

    text, thinking = "", ""
    if content is not None:
        for part in content.parts:
            if part.text is None:
                continue
            if part.thought:
                thinking += part.text
            else:
                text += part.text

    if text or thinking:
        return Content(text=text, thinking=thinking or None, finish_reason=finish_reason)
    if finish_reason is not None:
        return Done(finish_reason=finish_reason, model=chunk.model_version)
    if content is not None and content.role == "model" and not content.parts:
        return CONNECTED
    return KEEP_ALIVE


def parse_antigravity_event(line: str) -> Optional[StreamingEvent]:
    framed = _sse_payload(line)
    if not isinstance(framed, str):
        return framed

    try:
        payload = json.loads(framed)
    except json.JSONDecodeError as e:
        return _parse_error("Antigravity SSE", e)

    # The Cloud Code endpoints wrap the Gemini payload in {"response": ...}
    if isinstance(payload, dict) and isinstance(payload.get("response"), dict):
        payload = payload["response"]

    error = _antigravity_error(payload)
    if error is not None:
        return error
    try:
        return _antigravity_chunk_event(AntigravityResponse.model_validate(payload))
    except ValidationError as e:
        return _parse_error("Antigravity SSE", e)


# --- Bulk helpers ---

def _parse_buffer(
    buffer: str, parse_line: Callable[[str], Optional[StreamingEvent]]
) -> List[StreamingEvent]:
    events = []
    for line in buffer.splitlines():
        event = parse_line(line)
        if event is None or isinstance(event, KeepAlive):
            continue
        events.append(event)
    return events


def parse_openai_events(buffer: str) -> List[StreamingEvent]:
    return _parse_buffer(buffer, parse_openai_event)


def parse_ollama_events(buffer: str) -> List[StreamingEvent]:
    return _parse_buffer(buffer, parse_ollama_event)


def parse_antigravity_events(buffer: str) -> List[StreamingEvent]:
    return _parse_buffer(buffer, parse_antigravity_event)
