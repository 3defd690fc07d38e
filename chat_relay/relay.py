from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import AsyncIterable, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from .aggregate import AggregationState, ErrorCallback, aggregate
from .config import settings
from .errors import ClientDisconnected, MethodNotAllowed
from .sse import iter_events
from .upstream import iter_body, open_upstream

T = TypeVar("T")


def require_post(method: str) -> None:
    if (method or "").upper() != "POST":
        raise MethodNotAllowed(method)


async def collapse_stream(
    chunks: AsyncIterable[bytes],
    state: Optional[AggregationState] = None,
    stop_on_done: Optional[bool] = None,
    on_error: Optional[ErrorCallback] = None,
) -> AggregationState:
    """Decode an SSE byte stream and fold its deltas into one AggregationState."""
    if stop_on_done is None:
        stop_on_done = settings.stop_on_done
    events = iter_events(chunks)
    try:
        return await aggregate(events, state, stop_on_done=stop_on_done, on_error=on_error)
    finally:
        # Stopping at [DONE] leaves the generator suspended mid-stream
        await events.aclose()


async def relay_completion(
    client: httpx.AsyncClient,
    headers: Dict[str, str],
    body: bytes,
    url: Optional[str] = None,
    on_error: Optional[ErrorCallback] = None,
) -> AggregationState:
    """Forward one chat request upstream and aggregate the streamed reply.

    TransportError propagates; whatever was aggregated before the failure is dropped.
    """
    state = AggregationState()
    async with open_upstream(client, headers, body, url=url) as upstream:
        model = upstream.headers.get(settings.model_header)
        if model and model.strip():
            state.model = model.strip()
        async with aclosing(iter_body(upstream)) as chunks:
            await collapse_stream(chunks, state, on_error=on_error)
    return state


async def run_until_disconnected(
    work: Awaitable[T],
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: Optional[float] = None,
) -> T:
    """Await ``work`` while polling the inbound connection.

    If the client goes away first the work task is cancelled, which aborts any
    in-flight upstream read, and ClientDisconnected is raised.
    """
    interval = poll_interval if poll_interval is not None else settings.disconnect_poll_interval
    task = asyncio.ensure_future(work)
    finished = asyncio.Event()
    task.add_done_callback(lambda _: finished.set())

    # The watcher is never cancelled: Starlette's is_disconnected() runs receive()
    # inside an already-cancelled anyio scope that absorbs outside cancellation.
    async def _watch() -> bool:
        while not finished.is_set():
            if await is_disconnected():
                return True
            try:
                await asyncio.wait_for(finished.wait(), interval)
            except asyncio.TimeoutError:
                pass
        return False

    watcher = asyncio.ensure_future(_watch())
    try:
        await asyncio.shield(watcher)
    finally:
        # Disconnect, watcher failure, or cancellation of the caller
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
    if task.cancelled():
        raise ClientDisconnected("client disconnected before upstream stream completed")
    return task.result()
