# src/provider_bridge/converters.py
"""
Translate provider-agnostic messages into each wire format.

OpenAI and Ollama requests are close to the protocol-agnostic model and only
need field renaming. The Gemini-style request used by Antigravity needs a
structural rewrite: system turns are lifted into ``system_instruction``,
roles are renamed and images become inline-data parts.
"""

import logging
import re
from typing import List, Optional

from .dto.antigravity_models import (
    PERMISSIVE_SAFETY_SETTINGS,
    AntigravityContent,
    AntigravityGenerationConfig,
    AntigravityInlineData,
    AntigravityPart,
    AntigravityRequest,
    AntigravitySystemInstruction,
    AntigravityThinkingConfig,
)
from .dto.ollama_models import OllamaChatRequest, OllamaMessage, OllamaOptions
from .dto.openai_models import (
    OpenAiChatRequest,
    OpenAiImageUrl,
    OpenAiImageUrlPart,
    OpenAiMessage,
    OpenAiTextPart,
)
from .models import ImagePart, ProviderMessage, ReasoningEffort, Role, TextPart

lib_logger = logging.getLogger("provider_bridge")

DATA_URL_PATTERN = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

THINKING_BUDGETS = {
    ReasoningEffort.LOW: 8192,
    ReasoningEffort.MEDIUM: 16384,
    ReasoningEffort.HIGH: 32768,
}

DEFAULT_MAX_OUTPUT_TOKENS = 64000


def convert_image_url(url: str) -> Optional[AntigravityInlineData]:
    """
    Turns a base64 data URL into inline data. External URLs and malformed
    data URLs yield None; the Gemini-style protocol cannot fetch images.
    """
    match = DATA_URL_PATTERN.match(url.strip())
    if not match:
        if url.startswith("data:"):
            lib_logger.warning("Dropping malformed image data URL")
        else:
            lib_logger.debug(f"Dropping external image URL: {url[:80]}")
        return None
    return AntigravityInlineData(mime_type=match.group(1), data=match.group(2))


def _image_url_of(part) -> str:
    if isinstance(part, ImagePart):
        return part.data_url
    return part.url


def _antigravity_role(role: Role) -> str:
    if role == Role.ASSISTANT:
        return AntigravityContent.ROLE_MODEL
    return AntigravityContent.ROLE_USER


def to_antigravity_content(message: ProviderMessage) -> Optional[AntigravityContent]:
    """Converts one non-system turn. Turns that end up with no parts yield None."""
    parts: List[AntigravityPart] = []
    if isinstance(message.content, str):
        if message.content:
            parts.append(AntigravityPart(text=message.content))
    else:
        for part in message.content:
            if isinstance(part, TextPart):
                parts.append(AntigravityPart(text=part.text))
            else:
                inline_data = convert_image_url(_image_url_of(part))
                if inline_data is not None:
                    parts.append(AntigravityPart(inline_data=inline_data))

    if not parts:
        return None
    return AntigravityContent(role=_antigravity_role(message.role), parts=parts)


def build_thinking_config(effort: ReasoningEffort) -> Optional[AntigravityThinkingConfig]:
    budget = THINKING_BUDGETS.get(effort)
    if budget is None:
        return None
    return AntigravityThinkingConfig(thinking_budget=budget, include_thoughts=True)


def to_antigravity_request(
    messages: List[ProviderMessage],
    system_prompt: Optional[str] = None,
    temperature: float = 0.7,
    reasoning_effort: ReasoningEffort = ReasoningEffort.HIGH,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
    base_instruction: Optional[str] = None,
) -> AntigravityRequest:
    system_texts = [base_instruction] if base_instruction else []
    if system_prompt:
        system_texts.append(system_prompt)

    contents = []
    for message in messages:
        if message.role == Role.SYSTEM:
            text = message.text_of()
            if text:
                system_texts.append(text)
            continue
        content = to_antigravity_content(message)
        if content is not None:
            contents.append(content)

    system_instruction = None
    if system_texts:
        system_instruction = AntigravitySystemInstruction.from_text("\n\n".join(system_texts))

    return AntigravityRequest(
        contents=contents,
        system_instruction=system_instruction,
        generation_config=AntigravityGenerationConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            thinking_config=build_thinking_config(reasoning_effort),
        ),
        safety_settings=list(PERMISSIVE_SAFETY_SETTINGS),
    )


def _with_system_prompt(
    messages: List[ProviderMessage], system_prompt: Optional[str]
) -> List[ProviderMessage]:
    if not system_prompt:
        return list(messages)
    return [ProviderMessage(role=Role.SYSTEM, content=system_prompt)] + list(messages)


def to_openai_message(message: ProviderMessage) -> OpenAiMessage:
    images = message.images()
    if not images:
        return OpenAiMessage(role=message.role.value, content=message.text_of())

    parts = []
    for part in message.content:
        if isinstance(part, TextPart):
            parts.append(OpenAiTextPart(text=part.text))
        else:
            parts.append(OpenAiImageUrlPart(image_url=OpenAiImageUrl(url=_image_url_of(part))))
    return OpenAiMessage(role=message.role.value, content=parts)


def to_openai_request(
    messages: List[ProviderMessage],
    model: str,
    system_prompt: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
    stream: bool = True,
) -> OpenAiChatRequest:
    return OpenAiChatRequest(
        model=model,
        messages=[to_openai_message(m) for m in _with_system_prompt(messages, system_prompt)],
        stream=stream,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def to_ollama_message(message: ProviderMessage) -> OllamaMessage:
    images = []
    for image in message.images():
        if isinstance(image, ImagePart):
            images.append(image.data)
            continue
        inline_data = convert_image_url(image.url)
        if inline_data is not None:
            images.append(inline_data.data)
    return OllamaMessage(
        role=message.role.value,
        content=message.text_of(),
        images=images or None,
    )


def to_ollama_request(
    messages: List[ProviderMessage],
    model: str,
    system_prompt: Optional[str] = None,
    temperature: float = 0.7,
    reasoning_effort: Optional[ReasoningEffort] = None,
    stream: bool = True,
) -> OllamaChatRequest:
    think = None
    if reasoning_effort is not None:
        think = reasoning_effort.enables_thinking
    return OllamaChatRequest(
        model=model,
        messages=[to_ollama_message(m) for m in _with_system_prompt(messages, system_prompt)],
        stream=stream,
        think=think,
        options=OllamaOptions(temperature=temperature),
    )
