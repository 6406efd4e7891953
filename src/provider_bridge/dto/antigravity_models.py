# src/provider_bridge/dto/antigravity_models.py
"""
Gemini-style request and response shapes used by the Antigravity backend.

The backend answers in camelCase while the documented request format is
snake_case, so every model accepts both spellings on input and always
serializes snake_case.
"""

from typing import Any, ClassVar, Dict, List, Optional

from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _snake_or_camel(field_name: str) -> AliasChoices:
    return AliasChoices(field_name, to_camel(field_name))


class _GeminiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=_snake_or_camel),
        populate_by_name=True,
    )

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class AntigravityInlineData(_GeminiModel):
    mime_type: str
    data: str


class AntigravityPart(_GeminiModel):
    text: Optional[str] = None
    inline_data: Optional[AntigravityInlineData] = None
    thought: Optional[bool] = None


class AntigravityContent(_GeminiModel):
    ROLE_USER: ClassVar[str] = "user"
    ROLE_MODEL: ClassVar[str] = "model"

    role: Optional[str] = None
    parts: List[AntigravityPart] = Field(default_factory=list)


class AntigravitySystemInstruction(_GeminiModel):
    parts: List[AntigravityPart] = Field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> "AntigravitySystemInstruction":
        return cls(parts=[AntigravityPart(text=text)])


class AntigravityThinkingConfig(_GeminiModel):
    thinking_budget: Optional[int] = None
    include_thoughts: Optional[bool] = None


class AntigravityGenerationConfig(_GeminiModel):
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_output_tokens: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    response_mime_type: Optional[str] = None
    thinking_config: Optional[AntigravityThinkingConfig] = None


class AntigravitySafetySetting(_GeminiModel):
    category: str
    threshold: str


PERMISSIVE_SAFETY_SETTINGS: List[AntigravitySafetySetting] = [
    AntigravitySafetySetting(category=category, threshold="BLOCK_ONLY_HIGH")
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


class AntigravityRequest(_GeminiModel):
    contents: List[AntigravityContent]
    system_instruction: Optional[AntigravitySystemInstruction] = None
    generation_config: Optional[AntigravityGenerationConfig] = None
    safety_settings: Optional[List[AntigravitySafetySetting]] = None


class AntigravitySafetyRating(_GeminiModel):
    category: Optional[str] = None
    probability: Optional[str] = None
    blocked: Optional[bool] = None


class AntigravityCandidate(_GeminiModel):
    content: Optional[AntigravityContent] = None
    finish_reason: Optional[str] = None
    safety_ratings: Optional[List[AntigravitySafetyRating]] = None
    index: Optional[int] = None


class AntigravityUsageMetadata(_GeminiModel):
    prompt_token_count: Optional[int] = None
    candidates_token_count: Optional[int] = None
    total_token_count: Optional[int] = None
    thoughts_token_count: Optional[int] = None


class AntigravityResponse(_GeminiModel):
    """A streamed chunk or a complete generateContent response."""

    candidates: Optional[List[AntigravityCandidate]] = None
    usage_metadata: Optional[AntigravityUsageMetadata] = None
    model_version: Optional[str] = None


class AntigravityErrorDetail(_GeminiModel):
    code: Optional[int] = None
    message: Optional[str] = None
    status: Optional[str] = None


class AntigravityErrorResponse(_GeminiModel):
    error: Optional[AntigravityErrorDetail] = None
