"""Incremental decoding of an upstream ``text/event-stream`` body.

Network reads are not aligned to SSE records: one read may end in the middle
of a line, or even in the middle of a multi-byte UTF-8 character. ``SSEDecoder``
keeps a carry-over buffer across reads and only emits lines once their
terminator has arrived.
"""
from __future__ import annotations

import codecs
import re
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

_LINE_END_RE = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class UpstreamEvent:
    """Payload of one ``data:`` line, marker removed and whitespace trimmed."""

    data: str

    @property
    def is_done(self) -> bool:
        return self.data == DONE_SENTINEL


def event_from_line(line: str) -> Optional[UpstreamEvent]:
    if not line.startswith(DATA_PREFIX):
        return None
    return UpstreamEvent(line[len(DATA_PREFIX):].strip())


class SSEDecoder:
    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._closed = False

    @property
    def pending(self) -> str:
        """Partial line still waiting for its terminator."""
        return self._buffer

    def feed(self, chunk: bytes) -> List[UpstreamEvent]:
        if self._closed:
            raise RuntimeError("SSEDecoder already flushed")
        if not chunk:
            return []
        self._buffer += self._decoder.decode(chunk)
        return self._drain(final=False)

    def flush(self) -> List[UpstreamEvent]:
        if self._closed:
            return []
        self._closed = True
        self._buffer += self._decoder.decode(b"", final=True)
        events = self._drain(final=True)
        residue, self._buffer = self._buffer, ""
        if residue:
            ev = event_from_line(residue)
            if ev is not None:
                events.append(ev)
        return events

    def _drain(self, final: bool) -> List[UpstreamEvent]:
        text = self._buffer
        events: List[UpstreamEvent] = []
        pos = 0
        for m in _LINE_END_RE.finditer(text):
            # A trailing "\r" may be the first half of a "\r\n" split across reads
            if not final and m.group() == "\r" and m.end() == len(text):
                break
            ev = event_from_line(text[pos:m.start()])
            if ev is not None:
                events.append(ev)
            pos = m.end()
        self._buffer = text[pos:]
        return events


async def iter_events(chunks: AsyncIterable[bytes], decoder: Optional[SSEDecoder] = None) -> AsyncIterator[UpstreamEvent]:
    """Lazily turn an async stream of byte chunks into UpstreamEvents.

    Single pass: the underlying chunk stream is consumed as events are pulled.
    """
    dec = decoder or SSEDecoder()
    async for chunk in chunks:
        for ev in dec.feed(chunk):
            yield ev
    for ev in dec.flush():
        yield ev
