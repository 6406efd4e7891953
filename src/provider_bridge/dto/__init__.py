from .openai_models import (
    OpenAiChatRequest,
    OpenAiChatResponse,
    OpenAiMessage,
    OpenAiModelsResponse,
    OpenAiStreamChunk,
)
from .ollama_models import (
    OllamaChatRequest,
    OllamaChatResponse,
    OllamaMessage,
    OllamaTagsResponse,
)
from .antigravity_models import (
    AntigravityRequest,
    AntigravityResponse,
    PERMISSIVE_SAFETY_SETTINGS,
)

__all__ = [
    "OpenAiChatRequest",
    "OpenAiChatResponse",
    "OpenAiMessage",
    "OpenAiModelsResponse",
    "OpenAiStreamChunk",
    "OllamaChatRequest",
    "OllamaChatResponse",
    "OllamaMessage",
    "OllamaTagsResponse",
    "AntigravityRequest",
    "AntigravityResponse",
    "PERMISSIVE_SAFETY_SETTINGS",
]
