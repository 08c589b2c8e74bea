"""
Canonical request schemas.

Callers speak the OpenAI API; these models validate the incoming body for
each function before anything is sent upstream. Unknown fields are kept so
provider-specific extras (`top_k`, `thinking`, `safe_prompt`, ...) reach the
parameter tables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from idk_gateway.gateway.constants import STREAM_FUNCTIONS, FunctionName
from idk_gateway.gateway.errors import ValidationError


# ============== Request Schemas ==============

class ChatMessage(BaseModel):
    """One chat message."""
    role: str
    content: Optional[Any] = None
    name: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class ChatCompletionRequest(BaseModel):
    """Body of /v1/chat/completions."""
    model: Optional[str] = None
    messages: List[ChatMessage] = Field(min_length=1)
    stream: Optional[bool] = False
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    n: Optional[int] = None
    max_tokens: Optional[int] = None
    max_completion_tokens: Optional[int] = None
    stop: Optional[Union[str, List[str]]] = None
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Union[str, Dict[str, Any]]] = None
    response_format: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")


class CompletionRequest(BaseModel):
    """Body of /v1/completions."""
    model: Optional[str] = None
    prompt: Union[str, List[str], List[int], List[List[int]]]
    stream: Optional[bool] = False
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    stop: Optional[Union[str, List[str]]] = None

    model_config = ConfigDict(extra="allow")


class EmbeddingRequest(BaseModel):
    """Body of /v1/embeddings."""
    model: Optional[str] = None
    input: Union[str, List[str], List[int], List[List[int]]]
    encoding_format: Optional[str] = None
    dimensions: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class ResponsesRequest(BaseModel):
    """Body of POST /v1/responses."""
    model: Optional[str] = None
    input: Union[str, List[Dict[str, Any]]]
    instructions: Optional[str] = None
    stream: Optional[bool] = False

    model_config = ConfigDict(extra="allow")


class ImageGenerationRequest(BaseModel):
    """Body of /v1/images/generations."""
    model: Optional[str] = None
    prompt: str = Field(min_length=1)
    n: Optional[int] = None
    size: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be blank")
        return v


REQUEST_SCHEMAS: Dict[FunctionName, Type[BaseModel]] = {
    FunctionName.CHAT_COMPLETE: ChatCompletionRequest,
    FunctionName.STREAM_CHAT_COMPLETE: ChatCompletionRequest,
    FunctionName.COMPLETE: CompletionRequest,
    FunctionName.STREAM_COMPLETE: CompletionRequest,
    FunctionName.EMBED: EmbeddingRequest,
    FunctionName.GENERATE_IMAGE: ImageGenerationRequest,
    FunctionName.CREATE_MODEL_RESPONSE: ResponsesRequest,
}


def validate_request_body(function_name: FunctionName, body: Any) -> Dict[str, Any]:
    """
    Validate a canonical request body.

    Functions without a schema (proxy, responses lookups) only need a JSON
    object or no body at all.

    Args:
        function_name: Function the body is for
        body: Decoded JSON body

    Returns:
        The body, unchanged

    Raises:
        ValidationError: If the body does not match the function's schema
    """
    if body is None:
        body = {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    schema = REQUEST_SCHEMAS.get(function_name)
    if schema is None:
        return body

    try:
        schema.model_validate(body)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "body"
        raise ValidationError(f"Invalid request body: {location}: {first['msg']}", param=location)
    return body


# ============== Request Data ==============

@dataclass
class RequestData:
    """A canonical request as handed to the dispatcher."""

    function_name: FunctionName
    method: str
    url: str
    request_body: Dict[str, Any] = field(default_factory=dict)
    request_headers: Dict[str, str] = field(default_factory=dict)

    @property
    def stream(self) -> bool:
        if self.function_name in STREAM_FUNCTIONS:
            return True
        return bool(self.request_body.get("stream"))
