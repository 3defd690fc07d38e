from __future__ import annotations

import json
import sys
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional, Tuple

import httpx

from .config import settings
from .errors import TransportError

# Managed by httpx for the outbound connection; never copied from the inbound request.
_CONNECTION_HEADERS = frozenset(
    {
        "host",
        "content-length",
        "transfer-encoding",
        "connection",
        "keep-alive",
        "te",
        "trailer",
        "upgrade",
        "proxy-connection",
        "accept-encoding",
    }
)
_SECRET_HEADERS = ("authorization", "x-api-key", "cookie", "proxy-authorization")


def forward_headers(
    headers: Iterable[Tuple[str, str]], allow: Optional[Iterable[str]] = None
) -> Dict[str, str]:
    """Copy inbound headers for the upstream request.

    Without an allow-list this is a full passthrough, credentials included.
    """
    allowed = {h.lower() for h in allow} if allow else None
    out: Dict[str, str] = {}
    for k, v in headers:
        lk = k.lower()
        if lk in _CONNECTION_HEADERS:
            continue
        if allowed is not None and lk not in allowed:
            continue
        out[lk] = v
    return out


def redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    return {k: ("<redacted>" if k.lower() in _SECRET_HEADERS else v) for k, v in headers.items()}


def _error_message(status: int, body_bytes: Optional[bytes]) -> str:
    body_text = body_bytes.decode("utf-8", errors="ignore") if body_bytes else ""
    try:
        j = json.loads(body_text) if body_text else {}
        err = j.get("error") if isinstance(j, dict) else None
        if isinstance(err, dict):
            message = err.get("message")
        elif isinstance(err, str):
            message = err
        else:
            message = j.get("message") if isinstance(j, dict) else None
        if not message:
            message = json.dumps(j, ensure_ascii=False) if j else ""
    except ValueError:
        message = body_text
    return message or f"Upstream returned HTTP {status} without body"


@asynccontextmanager
async def open_upstream(
    client: httpx.AsyncClient,
    headers: Dict[str, str],
    body: bytes,
    url: Optional[str] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> AsyncIterator[httpx.Response]:
    """POST the inbound body to the upstream URL and yield the streaming response.

    Connection failures, timeouts and upstream error statuses raise TransportError.
    The upstream response is closed when the block exits, including on cancellation.
    """
    target = url or settings.upstream_url
    if timeout is None:
        timeout = httpx.Timeout(settings.upstream_timeout, connect=settings.upstream_connect_timeout)
    if settings.debug:
        print(
            "[relay] upstream request:",
            json.dumps({"url": target, "headers": redact_headers(headers)}, ensure_ascii=False),
            file=sys.stderr,
        )
    try:
        async with client.stream("POST", target, content=body, headers=headers, timeout=timeout) as upstream:
            if settings.debug:
                print(f"[relay] upstream opened, status: {upstream.status_code}", file=sys.stderr)
            if upstream.status_code >= 400:
                try:
                    body_bytes = await upstream.aread()
                except httpx.RequestError:
                    body_bytes = None
                raise TransportError(
                    f"Upstream returned HTTP {upstream.status_code}: {_error_message(upstream.status_code, body_bytes)}",
                    status_code=upstream.status_code,
                )
            yield upstream
    except httpx.RequestError as e:
        raise TransportError(f"Upstream request failed: {type(e).__name__}: {e}") from e


async def iter_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Raw body chunks as they arrive; a dropped connection raises TransportError."""
    try:
        async with aclosing(upstream.aiter_bytes()) as body:
            async for chunk in body:
                yield chunk
    except httpx.RequestError as e:
        raise TransportError(f"Upstream stream interrupted: {type(e).__name__}: {e}") from e
