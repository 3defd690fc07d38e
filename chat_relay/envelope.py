from __future__ import annotations

import time
import uuid
from typing import Optional

from .aggregate import AggregationState
from .config import settings
from .schemas.openai import AssistantMessage, ChatCompletionResponse, Choice, Usage


def now_unix() -> int:
    return int(time.time())


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def build_envelope(state: AggregationState, default_model: Optional[str] = None) -> ChatCompletionResponse:
    """Assemble the non-streaming chat.completion response from a finished aggregation.

    ``finish_reason`` is always "stop" and usage is always zero; neither is derived
    from the upstream stream.
    """
    model = state.model or default_model or settings.default_model
    return ChatCompletionResponse(
        id=new_completion_id(),
        created=now_unix(),
        model=model,
        choices=[Choice(index=0, message=AssistantMessage(content=state.content))],
        usage=Usage(),
    )
