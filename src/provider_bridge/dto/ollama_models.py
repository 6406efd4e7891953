# src/provider_bridge/dto/ollama_models.py

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OllamaMessage(BaseModel):
    role: str
    content: str = ""
    # Base64 payloads without a data: prefix
    images: Optional[List[str]] = None
    thinking: Optional[str] = None


class OllamaOptions(BaseModel):
    temperature: Optional[float] = None
    num_predict: Optional[int] = None
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    seed: Optional[int] = None


class OllamaChatRequest(BaseModel):
    model: str
    messages: List[OllamaMessage]
    stream: bool = True
    think: Optional[bool] = None
    options: Optional[OllamaOptions] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class OllamaResponseMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    thinking: Optional[str] = None


class OllamaChatResponse(BaseModel):
    """One NDJSON line of a streaming /api/chat response, or the whole non-streaming body."""

    model: Optional[str] = None
    created_at: Optional[str] = None
    message: Optional[OllamaResponseMessage] = None
    done: bool = False
    done_reason: Optional[str] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None


class OllamaModelDetails(BaseModel):
    format: Optional[str] = None
    family: Optional[str] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None


class OllamaModel(BaseModel):
    name: str
    model: Optional[str] = None
    modified_at: Optional[str] = None
    size: Optional[int] = None
    digest: Optional[str] = None
    details: Optional[OllamaModelDetails] = None


class OllamaTagsResponse(BaseModel):
    models: List[OllamaModel] = Field(default_factory=list)


class OllamaErrorResponse(BaseModel):
    error: str
