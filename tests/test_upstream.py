import httpx
import pytest

from chat_relay.errors import TransportError
from chat_relay.upstream import forward_headers, iter_body, open_upstream, redact_headers


def test_forward_headers_passes_everything_but_connection_headers():
    inbound = [
        ("Host", "relay.example"),
        ("Content-Length", "42"),
        ("Connection", "keep-alive"),
        ("Accept-Encoding", "gzip, br"),
        ("Authorization", "Bearer sk-secret"),
        ("Content-Type", "application/json"),
        ("X-Custom", "1"),
    ]
    out = forward_headers(inbound)
    assert out == {
        "authorization": "Bearer sk-secret",
        "content-type": "application/json",
        "x-custom": "1",
    }


def test_forward_headers_allow_list():
    out = forward_headers([("Authorization", "Bearer x"), ("Content-Type", "application/json")], allow=["Content-Type"])
    assert out == {"content-type": "application/json"}


def test_redact_headers():
    assert redact_headers({"authorization": "Bearer x", "accept": "*/*"}) == {
        "authorization": "<redacted>",
        "accept": "*/*",
    }


@pytest.mark.asyncio
async def test_open_upstream_posts_body_and_streams():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"data: x\n\n")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        async with open_upstream(client, {"x-test": "1"}, b'{"a":1}', url="http://up.test/c") as resp:
            chunks = [c async for c in iter_body(resp)]
    assert b"".join(chunks) == b"data: x\n\n"
    assert seen[0].method == "POST"
    assert seen[0].content == b'{"a":1}'
    assert seen[0].headers["x-test"] == "1"


@pytest.mark.asyncio
async def test_open_upstream_error_status_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(TransportError) as exc:
            async with open_upstream(client, {}, b"{}", url="http://up.test/c"):
                pytest.fail("body should not run for an error status")
    assert exc.value.status_code == 401
    assert "bad key" in str(exc.value)
