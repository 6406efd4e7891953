"""Tests for the stateless protocol line parsers."""

import json

from provider_bridge.sse_parser import (
    map_antigravity_finish_reason,
    parse_antigravity_event,
    parse_antigravity_events,
    parse_ollama_event,
    parse_ollama_events,
    parse_openai_event,
    parse_openai_events,
)
from provider_bridge.streaming_event import Connected, Content, Done, Error, KeepAlive


def sse(payload) -> str:
    return f"data: {json.dumps(payload)}"


# --- OpenAI-compatible ---

def test_openai_content_delta():
    event = parse_openai_event(sse({"choices": [{"delta": {"content": "Hello"}}]}))
    assert isinstance(event, Content)
    assert event.text == "Hello"
    assert event.thinking is None
    assert event.finish_reason is None


def test_openai_reasoning_fields_become_thinking():
    for field in ("reasoning", "reasoning_content", "thinking"):
        event = parse_openai_event(sse({"choices": [{"delta": {field: "hmm"}}]}))
        assert isinstance(event, Content)
        assert event.text == ""
        assert event.thinking == "hmm"


def test_openai_done_marker():
    event = parse_openai_event("data: [DONE]")
    assert isinstance(event, Done)
    assert event.finish_reason is None


def test_openai_finish_reason_without_content_is_done():
    event = parse_openai_event(sse({"model": "gpt-4o", "choices": [{"delta": {}, "finish_reason": "stop"}]}))
    assert event == Done(finish_reason="stop", model="gpt-4o")


def test_openai_content_wins_over_finish_reason_in_same_chunk():
    event = parse_openai_event(sse({"choices": [{"delta": {"content": "end"}, "finish_reason": "length"}]}))
    assert isinstance(event, Content)
    assert event.text == "end"
    assert event.finish_reason == "length"


def test_openai_role_only_delta_is_connected():
    event = parse_openai_event(sse({"choices": [{"delta": {"role": "assistant"}}]}))
    assert isinstance(event, Connected)


def test_openai_empty_choices_is_keep_alive():
    assert isinstance(parse_openai_event(sse({"choices": []})), KeepAlive)


def test_openai_blank_and_comment_lines_are_keep_alive():
    assert isinstance(parse_openai_event(""), KeepAlive)
    assert isinstance(parse_openai_event("   "), KeepAlive)
    assert isinstance(parse_openai_event(": ping"), KeepAlive)
    assert isinstance(parse_openai_event("data:"), KeepAlive)


def test_openai_non_data_lines_are_ignored():
    assert parse_openai_event("event: message") is None
    assert parse_openai_event("id: 42") is None


def test_openai_error_envelope():
    event = parse_openai_event(sse({"error": {"message": "Rate limit reached", "type": "requests", "code": 429}}))
    assert isinstance(event, Error)
    assert event.message == "Rate limit reached"
    assert event.code == "429"
    assert event.is_recoverable is False


def test_openai_malformed_json_is_parse_error():
    event = parse_openai_event("data: {not json")
    assert isinstance(event, Error)
    assert event.code == "parse_error"
    assert event.is_recoverable is False
    assert event.message.startswith("Failed to parse SSE event")


def test_openai_parser_is_stateless():
    line = sse({"choices": [{"delta": {"content": "x"}}]})
    assert parse_openai_event(line) == parse_openai_event(line)


def test_parse_openai_events_filters_keep_alive():
    buffer = "\n".join(
        [
            sse({"choices": [{"delta": {"role": "assistant"}}]}),
            "",
            ": keep-alive",
            sse({"choices": [{"delta": {"content": "Hi"}}]}),
            sse({"choices": [{"delta": {"content": " there"}}]}),
            "data: [DONE]",
        ]
    )
    events = parse_openai_events(buffer)
    assert [type(e) for e in events] == [Connected, Content, Content, Done]
    assert "".join(e.text for e in events if isinstance(e, Content)) == "Hi there"


# --- Ollama NDJSON ---

def test_ollama_content_line():
    event = parse_ollama_event(json.dumps({"model": "llama3.2", "message": {"role": "assistant", "content": "Hey"}, "done": False}))
    assert isinstance(event, Content)
    assert event.text == "Hey"


def test_ollama_thinking_line():
    event = parse_ollama_event(json.dumps({"message": {"role": "assistant", "content": "", "thinking": "let me see"}, "done": False}))
    assert isinstance(event, Content)
    assert event.text == ""
    assert event.thinking == "let me see"


def test_ollama_done_line():
    event = parse_ollama_event(json.dumps({"model": "llama3.2", "done": True, "done_reason": "stop"}))
    assert event == Done(finish_reason="stop", model="llama3.2")


def test_ollama_done_length():
    event = parse_ollama_event(json.dumps({"model": "llama3.2", "done": True, "done_reason": "length"}))
    assert isinstance(event, Done)
    assert event.finish_reason == "length"


def test_ollama_empty_message_is_keep_alive():
    event = parse_ollama_event(json.dumps({"message": {"role": "assistant", "content": ""}, "done": False}))
    assert isinstance(event, KeepAlive)
    assert isinstance(parse_ollama_event(""), KeepAlive)


def test_ollama_error_line():
    event = parse_ollama_event(json.dumps({"error": "model 'nope' not found"}))
    assert isinstance(event, Error)
    assert event.message == "model 'nope' not found"


def test_ollama_malformed_line():
    event = parse_ollama_event("{oops")
    assert isinstance(event, Error)
    assert event.code == "parse_error"


def test_parse_ollama_events():
    buffer = "\n".join(
        [
            json.dumps({"message": {"role": "assistant", "content": "A"}, "done": False}),
            json.dumps({"message": {"role": "assistant", "content": "B"}, "done": False}),
            json.dumps({"done": True, "done_reason": "stop"}),
        ]
    )
    events = parse_ollama_events(buffer)
    assert [type(e) for e in events] == [Content, Content, Done]


# --- Antigravity ---

def test_antigravity_text_and_thought_parts():
    payload = {
        "candidates": [
            {
                "content": {
                    "role": "model",
                    "parts": [{"text": "pondering", "thought": True}, {"text": "Answer"}],
                }
            }
        ]
    }
    event = parse_antigravity_event(sse(payload))
    assert isinstance(event, Content)
    assert event.text == "Answer"
    assert event.thinking == "pondering"


def test_antigravity_unwraps_response_envelope():
    payload = {"response": {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hi"}]}}]}}
    event = parse_antigravity_event(sse(payload))
    assert isinstance(event, Content)
    assert event.text == "Hi"


def test_antigravity_finish_reason_camel_case():
    payload = {"candidates": [{"finishReason": "MAX_TOKENS"}], "modelVersion": "gemini-3.0-pro"}
    event = parse_antigravity_event(sse(payload))
    assert event == Done(finish_reason="length", model="gemini-3.0-pro")


def test_antigravity_content_with_finish_reason():
    payload = {"candidates": [{"content": {"role": "model", "parts": [{"text": "bye"}]}, "finish_reason": "STOP"}]}
    event = parse_antigravity_event(sse(payload))
    assert isinstance(event, Content)
    assert event.finish_reason == "stop"


def test_antigravity_error_envelope_recoverable_for_server_errors():
    event = parse_antigravity_event(sse({"error": {"code": 503, "message": "Overloaded", "status": "UNAVAILABLE"}}))
    assert isinstance(event, Error)
    assert event.message == "Overloaded"
    assert event.code == "UNAVAILABLE"
    assert event.is_recoverable is True


def test_antigravity_error_envelope_client_error_not_recoverable():
    event = parse_antigravity_event(sse({"error": {"code": 400, "message": "Bad request"}}))
    assert isinstance(event, Error)
    assert event.code == "400"
    assert event.is_recoverable is False


def test_antigravity_done_marker_and_malformed():
    assert isinstance(parse_antigravity_event("data: [DONE]"), Done)
    event = parse_antigravity_event("data: [1, 2")
    assert isinstance(event, Error)
    assert event.code == "parse_error"


def test_map_antigravity_finish_reason():
    assert map_antigravity_finish_reason("STOP") == "stop"
    assert map_antigravity_finish_reason("MAX_TOKENS") == "length"
    assert map_antigravity_finish_reason("SAFETY") == "content_filter"
    assert map_antigravity_finish_reason("RECITATION") == "content_filter"
    assert map_antigravity_finish_reason("SOMETHING_NEW") == "stop"
    assert map_antigravity_finish_reason(None) is None


def test_parse_antigravity_events():
    buffer = "\n".join(
        [
            sse({"candidates": [{"content": {"role": "model", "parts": [{"text": "One"}]}}]}),
            "",
            sse({"candidates": [{"content": {"role": "model", "parts": [{"text": "Two"}]}}]}),
            sse({"candidates": [{"finishReason": "STOP"}]}),
        ]
    )
    events = parse_antigravity_events(buffer)
    assert [type(e) for e in events] == [Content, Content, Done]
