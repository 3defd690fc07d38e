from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Callable, Deque, List, Optional

from .errors import RecordParseError
from .sse import UpstreamEvent

ErrorCallback = Callable[[RecordParseError], None]


@dataclass(frozen=True)
class ParsedDelta:
    content: Optional[str] = None
    finish_reason: Optional[str] = None


@dataclass
class AggregationState:
    parts: List[str] = field(default_factory=list)
    # Model name reported by upstream metadata (response header), if any
    model: Optional[str] = None
    finish_reason: Optional[str] = None
    records: int = 0
    skipped: int = 0
    errors: Deque[RecordParseError] = field(default_factory=lambda: deque(maxlen=16))
    done: bool = False

    @property
    def content(self) -> str:
        return "".join(self.parts)


def parse_delta(event: UpstreamEvent) -> ParsedDelta:
    """Decode one SSE payload into the first choice's delta.

    Raises RecordParseError when the payload is not JSON or has no ``choices[0]`` object.
    """
    try:
        data = json.loads(event.data)
    except (TypeError, ValueError) as e:
        raise RecordParseError(f"invalid JSON in SSE record: {e}", event.data) from e
    if not isinstance(data, dict):
        raise RecordParseError("SSE record is not a JSON object", event.data)
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise RecordParseError("SSE record has no choices[0]", event.data)
    first = choices[0]
    delta: Any = first.get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    fr = first.get("finish_reason")
    return ParsedDelta(
        content=content if isinstance(content, str) else None,
        finish_reason=fr if isinstance(fr, str) else None,
    )


class Aggregator:
    def __init__(
        self,
        state: Optional[AggregationState] = None,
        stop_on_done: bool = True,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.state = state if state is not None else AggregationState()
        self.stop_on_done = stop_on_done
        self.on_error = on_error

    def consume(self, event: UpstreamEvent) -> bool:
        """Fold one event into the state. Returns False once the stream is finished."""
        st = self.state
        if st.done:
            return False
        st.records += 1
        if event.is_done and self.stop_on_done:
            st.done = True
            return False
        try:
            delta = parse_delta(event)
        except RecordParseError as e:
            st.skipped += 1
            st.errors.append(e)
            if self.on_error is not None:
                self.on_error(e)
            return True
        if delta.content:
            st.parts.append(delta.content)
        if delta.finish_reason:
            st.finish_reason = delta.finish_reason
        return True


async def aggregate(
    events: AsyncIterable[UpstreamEvent],
    state: Optional[AggregationState] = None,
    stop_on_done: bool = True,
    on_error: Optional[ErrorCallback] = None,
) -> AggregationState:
    agg = Aggregator(state, stop_on_done=stop_on_done, on_error=on_error)
    async for ev in events:
        if not agg.consume(ev):
            break
    return agg.state
