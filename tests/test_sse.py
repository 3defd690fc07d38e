import pytest

from chat_relay.sse import SSEDecoder, UpstreamEvent, event_from_line, iter_events


def _feed_all(chunks):
    dec = SSEDecoder()
    out = []
    for c in chunks:
        out.extend(dec.feed(c))
    out.extend(dec.flush())
    return [e.data for e in out]


def test_data_lines_become_events_and_other_lines_are_ignored():
    body = (
        b": keep-alive comment\n"
        b"event: message\n"
        b"id: 7\n"
        b"data: {\"a\":1}\n"
        b"\n"
        b"data:{\"b\":2}\n\n"
    )
    assert _feed_all([body]) == ['{"a":1}', '{"b":2}']


def test_line_split_across_reads_is_held_until_terminated():
    dec = SSEDecoder()
    assert dec.feed(b'data: {"choices":[{"delta":{"content":"Hel') == []
    assert dec.pending == 'data: {"choices":[{"delta":{"content":"Hel'
    events = dec.feed(b'lo"}}]}\n\n')
    assert events == [UpstreamEvent('{"choices":[{"delta":{"content":"Hello"}}]}')]
    assert dec.pending == ""


def test_crlf_split_between_reads_counts_once():
    assert _feed_all([b"data: one\r", b"\ndata: two\r\n", b"\r\n"]) == ["one", "two"]


def test_lone_carriage_return_terminates_line():
    assert _feed_all([b"data: one\rdata: two\r"]) == ["one", "two"]


def test_multibyte_character_split_across_reads():
    raw = 'data: {"c":"héllo 你好"}\n'.encode("utf-8")
    cut = raw.index("你".encode("utf-8")) + 1
    assert _feed_all([raw[:cut], raw[cut:]]) == ['{"c":"héllo 你好"}']


def test_flush_emits_unterminated_residual_line():
    dec = SSEDecoder()
    assert dec.feed(b'data: {"x":1}') == []
    assert [e.data for e in dec.flush()] == ['{"x":1}']
    # second flush is a no-op
    assert dec.flush() == []


def test_flush_with_empty_residue_yields_nothing():
    dec = SSEDecoder()
    dec.feed(b"data: a\n")
    assert dec.flush() == []


def test_feed_after_flush_is_rejected():
    dec = SSEDecoder()
    dec.flush()
    with pytest.raises(RuntimeError):
        dec.feed(b"data: late\n")


def test_event_from_line_requires_marker_at_start():
    assert event_from_line(" data: x") is None
    assert event_from_line("data:   padded  ").data == "padded"
    assert event_from_line("data: [DONE]").is_done


@pytest.mark.asyncio
async def test_iter_events_is_lazy_over_async_chunks():
    pulled = []

    async def chunks():
        for c in (b"data: 1\nda", b"ta: 2\n", b"data: 3"):
            pulled.append(c)
            yield c

    gen = iter_events(chunks())
    first = await gen.__anext__()
    assert first.data == "1"
    assert len(pulled) == 1
    rest = [e.data async for e in gen]
    assert rest == ["2", "3"]
