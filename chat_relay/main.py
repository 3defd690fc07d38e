from __future__ import annotations

import json
import sys
import uuid
from collections import deque
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .envelope import build_envelope
from .errors import ClientDisconnected, MethodNotAllowed, RecordParseError, TransportError
from .relay import relay_completion, require_post, run_until_disconnected
from .schemas.openai import ChatCompletionRequest, ErrorBody, ErrorResponse
from .upstream import forward_headers


app = FastAPI(title="SSE-to-JSON Chat Relay")

# Shared HTTP client (HTTP/1.1 + optional HTTP/2) with connection pooling
_HTTPX_CLIENT: Optional[httpx.AsyncClient] = None


def _get_httpx_client() -> httpx.AsyncClient:
    global _HTTPX_CLIENT
    if _HTTPX_CLIENT is None:
        limits = httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20,
            keepalive_expiry=30.0,
        )
        http2_flag = bool(getattr(settings, "http2", True))
        try:
            _HTTPX_CLIENT = httpx.AsyncClient(
                http2=http2_flag,
                limits=limits,
            )
        except ImportError:
            # If http2 extras not installed, gracefully fall back to HTTP/1.1
            _HTTPX_CLIENT = httpx.AsyncClient(
                http2=False,
                limits=limits,
            )
    return _HTTPX_CLIENT


# Per-request diagnostics (no payloads, no headers) for /_debug/last
_RECENT = deque(maxlen=64)


def _error_response(status: int, err_type: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorBody(type=err_type, message=message, code=status)).model_dump(),
    )


CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
CHAT_COMPLETIONS_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


def _method_not_allowed(_rec: Dict[str, Any]) -> PlainTextResponse:
    _rec["phase"] = "method_not_allowed"
    _RECENT.append(_rec)
    return PlainTextResponse("Method Not Allowed", status_code=405, headers={"Allow": "POST"})


@app.exception_handler(StarletteHTTPException)
async def _http_exception(request: Request, exc: StarletteHTTPException):
    # Verbs outside CHAT_COMPLETIONS_METHODS never reach the route handler
    if exc.status_code == 405 and request.url.path == CHAT_COMPLETIONS_PATH:
        try:
            require_post(request.method)
        except MethodNotAllowed:
            return _method_not_allowed({"id": uuid.uuid4().hex[:8], "method": request.method})
    return await http_exception_handler(request, exc)


@app.api_route(CHAT_COMPLETIONS_PATH, methods=CHAT_COMPLETIONS_METHODS)
async def chat_completions(request: Request):
    req_id = uuid.uuid4().hex[:8]
    _rec: Dict[str, Any] = {"id": req_id, "phase": "start", "method": request.method}
    try:
        require_post(request.method)
    except MethodNotAllowed:
        return _method_not_allowed(_rec)

    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError:
        _rec["phase"] = "invalid_json"
        _RECENT.append(_rec)
        return _error_response(400, "invalid_request_error", "Invalid JSON body")
    try:
        parsed = ChatCompletionRequest.model_validate(body)
    except ValidationError as e:
        _rec["phase"] = "invalid_request"
        _RECENT.append(_rec)
        return _error_response(400, "invalid_request_error", str(e))
    _rec["request_model"] = parsed.model
    _rec["messages"] = len(parsed.messages)

    def _on_record_error(err: RecordParseError) -> None:
        if settings.debug:
            payload = str(err.payload or "")[:100]
            print(f"[relay][{req_id}] skipped record: {err} ({payload!r})", file=sys.stderr)

    headers = forward_headers(request.headers.items(), allow=settings.header_allow_list())
    client = _get_httpx_client()
    try:
        state = await run_until_disconnected(
            relay_completion(client, headers, raw, on_error=_on_record_error),
            request.is_disconnected,
        )
    except TransportError as e:
        print(f"[relay][{req_id}] upstream failure: {e}", file=sys.stderr)
        _rec["phase"] = "upstream_error"
        _rec["message"] = str(e)
        if e.status_code is not None:
            _rec["upstream_status"] = e.status_code
        _RECENT.append(_rec)
        return _error_response(502, "upstream_error", str(e))
    except ClientDisconnected:
        print(f"[relay][{req_id}] client disconnected; upstream fetch aborted", file=sys.stderr)
        _rec["phase"] = "client_disconnected"
        _RECENT.append(_rec)
        return Response(status_code=499)

    envelope = build_envelope(state)
    _rec.update(
        {
            "phase": "ok",
            "model": envelope.model,
            "content_length": len(state.content),
            "records": state.records,
            "skipped_records": state.skipped,
            "recent_record_errors": [str(e) for e in state.errors],
            "upstream_finish_reason": state.finish_reason,
            "done_sentinel": state.done,
        }
    )
    _RECENT.append(_rec)
    if settings.debug:
        print(f"[relay][{req_id}] completed: {json.dumps(_rec, ensure_ascii=False)}", file=sys.stderr)
    return JSONResponse(content=envelope.model_dump())


@app.get("/")
async def root():
    return {"ok": True, "upstream": settings.upstream_url}


@app.get("/_debug/last")
async def debug_last():
    return _RECENT[-1] if _RECENT else {}


@app.on_event("startup")
async def _startup_noop():
    # Initialize shared HTTP client eagerly to establish pools
    _ = _get_httpx_client()
    return None


@app.on_event("shutdown")
async def _shutdown_close_client():
    global _HTTPX_CLIENT
    if _HTTPX_CLIENT is not None:
        try:
            await _HTTPX_CLIENT.aclose()
        except Exception:
            ...
        _HTTPX_CLIENT = None
