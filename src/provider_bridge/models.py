# src/provider_bridge/models.py

from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    OAUTH = "oauth"


class ProviderType(str, Enum):
    OPENAI_COMPATIBLE = "openai_compatible"
    OLLAMA = "ollama"
    ANTIGRAVITY = "antigravity"


class ReasoningEffort(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def enables_thinking(self) -> bool:
        return self is not ReasoningEffort.NONE


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    """An inline image: mime type plus the base64 payload (no data: prefix)."""

    type: Literal["image"] = "image"
    mime_type: str
    data: str

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class ImageUrlPart(BaseModel):
    """An image referenced by URL. Only base64 data URLs survive conversion."""

    type: Literal["image_url"] = "image_url"
    url: str


MessagePart = Annotated[Union[TextPart, ImagePart, ImageUrlPart], Field(discriminator="type")]


class ProviderMessage(BaseModel):
    """A protocol-agnostic chat turn."""

    role: Role
    content: Union[str, List[MessagePart]] = ""

    def text_of(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "\n".join(part.text for part in self.content if isinstance(part, TextPart))

    def images(self) -> List[Union[ImagePart, ImageUrlPart]]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if isinstance(part, (ImagePart, ImageUrlPart))]


class ProviderConfig(BaseModel):
    """Read-only description of a configured provider."""

    id: str
    name: str
    provider_type: ProviderType
    auth_type: AuthType = AuthType.NONE
    base_url: str = ""
    default_model: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    supports_streaming: bool = True
    supports_images: bool = False


class AiModel(BaseModel):
    id: str
    name: str
    provider_id: str
    context_window: Optional[int] = None
    max_output_tokens: Optional[int] = None
    supports_thinking: bool = False
    supports_images: bool = False
    owned_by: Optional[str] = None


# --- Built-in provider templates ---

OPENAI_TEMPLATE = ProviderConfig(
    id="openai",
    name="OpenAI",
    provider_type=ProviderType.OPENAI_COMPATIBLE,
    auth_type=AuthType.API_KEY,
    base_url="https://api.openai.com",
    default_model="gpt-4o",
    supports_images=True,
)

OPENROUTER_TEMPLATE = ProviderConfig(
    id="openrouter",
    name="OpenRouter",
    provider_type=ProviderType.OPENAI_COMPATIBLE,
    auth_type=AuthType.API_KEY,
    base_url="https://openrouter.ai/api",
    default_model="openai/gpt-4o",
    headers={
        "HTTP-Referer": "https://github.com/provider-bridge/provider-bridge",
        "X-Title": "provider-bridge",
    },
    supports_images=True,
)

OLLAMA_TEMPLATE = ProviderConfig(
    id="ollama-local",
    name="Ollama (Local)",
    provider_type=ProviderType.OLLAMA,
    auth_type=AuthType.NONE,
    base_url="http://localhost:11434",
    default_model="llama3.2",
)

ANTIGRAVITY_TEMPLATE = ProviderConfig(
    id="antigravity",
    name="Antigravity",
    provider_type=ProviderType.ANTIGRAVITY,
    auth_type=AuthType.OAUTH,
    base_url="https://cloudcode-pa.googleapis.com",
    default_model="antigravity-gemini-3-pro",
    supports_images=True,
)

BUILTIN_PROVIDERS: Dict[str, ProviderConfig] = {
    template.id: template
    for template in (OPENAI_TEMPLATE, OPENROUTER_TEMPLATE, OLLAMA_TEMPLATE, ANTIGRAVITY_TEMPLATE)
}
