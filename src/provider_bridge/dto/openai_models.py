# src/provider_bridge/dto/openai_models.py
"""
Wire shapes for OpenAI-compatible chat completion APIs.

Message content is polymorphic: a plain string for text-only turns, or an
array of typed parts once images are attached. The JSON value kind decides
which variant is decoded.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class OpenAiTextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class OpenAiImageUrl(BaseModel):
    url: str
    detail: str = "auto"


class OpenAiImageUrlPart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: OpenAiImageUrl


OpenAiContentPart = Annotated[
    Union[OpenAiTextPart, OpenAiImageUrlPart], Field(discriminator="type")
]


class OpenAiMessage(BaseModel):
    role: str
    content: Union[str, List[OpenAiContentPart]]

    @field_validator("content", mode="before")
    @classmethod
    def _decode_content(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (str, list)):
            return value
        raise ValueError(
            f"message content must be a string or a list of parts, got {type(value).__name__}"
        )


class OpenAiChatRequest(BaseModel):
    model: str
    messages: List[OpenAiMessage]
    stream: bool = True
    temperature: float = 0.7
    max_tokens: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class OpenAiDelta(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    reasoning: Optional[str] = None
    reasoning_content: Optional[str] = None
    thinking: Optional[str] = None

    @property
    def reasoning_text(self) -> Optional[str]:
        # Gateways disagree on the field name for reasoning output.
        return self.thinking or self.reasoning or self.reasoning_content or None


class OpenAiResponseMessage(OpenAiDelta):
    pass


class OpenAiChoice(BaseModel):
    index: int = 0
    message: Optional[OpenAiResponseMessage] = None
    delta: Optional[OpenAiDelta] = None
    finish_reason: Optional[str] = None


class OpenAiUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class OpenAiStreamChunk(BaseModel):
    id: Optional[str] = None
    object: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[OpenAiChoice] = Field(default_factory=list)


class OpenAiChatResponse(OpenAiStreamChunk):
    usage: Optional[OpenAiUsage] = None


class OpenAiModelData(BaseModel):
    id: str
    object: Optional[str] = None
    created: Optional[int] = None
    owned_by: Optional[str] = None


class OpenAiModelsResponse(BaseModel):
    object: Optional[str] = None
    data: List[OpenAiModelData] = Field(default_factory=list)


class OpenAiError(BaseModel):
    message: Optional[str] = None
    type: Optional[str] = None
    param: Optional[str] = None
    code: Optional[str] = None

    @field_validator("code", mode="before")
    @classmethod
    def _stringify_code(cls, value: Any) -> Any:
        # Some gateways send numeric codes.
        if value is None or isinstance(value, str):
            return value
        return str(value)


class OpenAiErrorResponse(BaseModel):
    error: Optional[OpenAiError] = None
