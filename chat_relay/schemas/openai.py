from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


# Minimal OpenAI chat.completions schema (non-streaming response side)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str
    # Either plain text or an array of content parts; forwarded untouched
    content: Union[str, List[Dict[str, Any]], None] = None


class ChatCompletionRequest(BaseModel):
    # Unknown fields (stream, temperature, network, ...) pass through to upstream
    model_config = ConfigDict(extra="allow")

    model: str
    messages: List[ChatMessage]


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str = ""


class Choice(BaseModel):
    index: int = 0
    message: AssistantMessage = Field(default_factory=AssistantMessage)
    finish_reason: Literal["stop"] = "stop"


class Usage(BaseModel):
    # Token accounting is not performed; counters stay at zero.
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage = Field(default_factory=Usage)


class ErrorBody(BaseModel):
    type: str
    message: str
    code: Optional[int] = None


class ErrorResponse(BaseModel):
    error: ErrorBody
