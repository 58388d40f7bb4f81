"""
Tests for the streaming pull transport.

HTTP is served by httpx.MockTransport; streaming bodies are async generators
so chunk boundaries, stalls and mid-stream failures can be staged exactly.
"""

import asyncio
import json

import httpx
import pytest

from model_lifecycle.acquisition.transport import (
    CancellationToken,
    NDJSONDecoder,
    PullTransport,
    parse_progress_record,
)
from model_lifecycle.errors import AcquisitionCancelled, StallTimeout, TransportError
from tests.conftest import mock_client, ndjson


def _body(*parts: bytes, pause_after: float = 0.0, fail_with: Exception = None):
    async def gen():
        for part in parts:
            yield part
        if fail_with is not None:
            raise fail_with
        if pause_after:
            await asyncio.sleep(pause_after)
    return gen()


def _pull_request(client: httpx.AsyncClient) -> httpx.Request:
    return client.build_request(
        "POST", "/api/pull", json={"model": "llama3", "stream": True}
    )


async def _drain(transport, request, token=None, into=None):
    events = [] if into is None else into
    async for event in transport.stream(request, token):
        events.append(event)
    return events


# ---------------------------------------------------------------------------
# NDJSONDecoder / parse_progress_record
# ---------------------------------------------------------------------------

def test_decoder_buffers_partial_lines():
    decoder = NDJSONDecoder()
    assert list(decoder.feed(b'{"status": "pull')) == []
    records = list(decoder.feed(b'ing manifest"}\n{"status"'))
    assert records == [{"status": "pulling manifest"}]
    assert list(decoder.feed(b': "success"}\n')) == [{"status": "success"}]


def test_decoder_handles_split_multibyte_character():
    line = json.dumps({"status": "téléchargement"}, ensure_ascii=False)
    data = line.encode("utf-8") + b"\n"
    split = data.index(b"\xc3") + 1
    decoder = NDJSONDecoder()
    assert list(decoder.feed(data[:split])) == []
    assert list(decoder.feed(data[split:])) == [{"status": "téléchargement"}]


def test_decoder_skips_malformed_and_non_object_lines():
    decoder = NDJSONDecoder()
    records = list(decoder.feed(b'not json\n[1, 2]\n\n{"status": "ok"}\n'))
    assert records == [{"status": "ok"}]


def test_decoder_flush_returns_trailing_record():
    decoder = NDJSONDecoder()
    assert list(decoder.feed(b'{"status": "success"}')) == []
    assert list(decoder.flush()) == [{"status": "success"}]
    assert list(decoder.flush()) == []


def test_parse_record_maps_digest_to_layer():
    event = parse_progress_record(
        {"status": "pulling abc", "digest": "sha256:abc", "completed": 5, "total": 10}
    )
    assert event.layer_id == "sha256:abc"
    assert event.completed == 5
    assert event.total == 10
    assert event.has_bytes


def test_parse_record_without_counters():
    event = parse_progress_record({"status": "verifying sha256 digest"})
    assert event.layer_id is None
    assert not event.has_bytes


def test_parse_record_error_raises():
    with pytest.raises(TransportError, match="file does not exist"):
        parse_progress_record({"error": "pull model manifest: file does not exist"})


# ---------------------------------------------------------------------------
# PullTransport.stream
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stream_yields_events_across_chunk_boundaries():
    body = ndjson(
        {"status": "pulling manifest"},
        {"status": "pulling abc", "digest": "abc", "completed": 10, "total": 100},
        {"status": "success"},
    )
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, content=_body(body[:9], body[9:40], body[40:]))

    async with mock_client(handler) as client:
        events = await _drain(PullTransport(client), _pull_request(client))

    assert sent == [{"model": "llama3", "stream": True}]
    assert [e.status for e in events] == ["pulling manifest", "pulling abc", "success"]
    assert events[1].completed == 10


@pytest.mark.asyncio
async def test_stream_skips_malformed_lines():
    body = b'{"status": "pulling manifest"}\n<html>oops</html>\n{"status": "success"}\n'

    def handler(request):
        return httpx.Response(200, content=_body(body))

    async with mock_client(handler) as client:
        events = await _drain(PullTransport(client), _pull_request(client))

    assert [e.status for e in events] == ["pulling manifest", "success"]


@pytest.mark.asyncio
async def test_stream_decodes_unterminated_last_line():
    def handler(request):
        return httpx.Response(200, content=_body(b'{"status": "success"}'))

    async with mock_client(handler) as client:
        events = await _drain(PullTransport(client), _pull_request(client))

    assert [e.status for e in events] == ["success"]


@pytest.mark.asyncio
async def test_stream_error_record_raises_transport_error():
    body = ndjson({"status": "pulling manifest"}, {"error": "max retries exceeded"})

    def handler(request):
        return httpx.Response(200, content=_body(body))

    events = []
    async with mock_client(handler) as client:
        with pytest.raises(TransportError, match="max retries exceeded"):
            await _drain(PullTransport(client), _pull_request(client), into=events)

    assert [e.status for e in events] == ["pulling manifest"]


@pytest.mark.asyncio
async def test_stream_http_error_status():
    def handler(request):
        return httpx.Response(500, content=b"internal failure")

    async with mock_client(handler) as client:
        with pytest.raises(TransportError, match="HTTP 500: internal failure"):
            await _drain(PullTransport(client), _pull_request(client))


@pytest.mark.asyncio
async def test_stream_connection_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    async with mock_client(handler) as client:
        with pytest.raises(TransportError, match="ConnectError"):
            await _drain(PullTransport(client), _pull_request(client))


@pytest.mark.asyncio
async def test_stream_read_failure_mid_transfer():
    body = ndjson({"status": "pulling abc", "digest": "abc", "completed": 1, "total": 2})

    def handler(request):
        return httpx.Response(
            200, content=_body(body, fail_with=httpx.ReadError("connection reset"))
        )

    events = []
    async with mock_client(handler) as client:
        with pytest.raises(TransportError, match="connection reset"):
            await _drain(PullTransport(client), _pull_request(client), into=events)

    assert len(events) == 1


@pytest.mark.asyncio
async def test_stream_stall_after_progress():
    body = ndjson({"status": "pulling manifest"})

    def handler(request):
        return httpx.Response(200, content=_body(body, pause_after=10))

    events = []
    async with mock_client(handler) as client:
        transport = PullTransport(client, stall_timeout=0.05)
        with pytest.raises(StallTimeout):
            await _drain(transport, _pull_request(client), into=events)

    assert [e.status for e in events] == ["pulling manifest"]


@pytest.mark.asyncio
async def test_stream_stall_before_first_record():
    def handler(request):
        return httpx.Response(200, content=_body(pause_after=10))

    async with mock_client(handler) as client:
        transport = PullTransport(client, stall_timeout=0.05)
        with pytest.raises(StallTimeout) as exc_info:
            await _drain(transport, _pull_request(client))

    assert exc_info.value.timeout == 0.05


@pytest.mark.asyncio
async def test_stream_cancel_mid_transfer():
    body = ndjson({"status": "pulling abc", "digest": "abc", "completed": 1, "total": 9})

    def handler(request):
        return httpx.Response(200, content=_body(body, pause_after=10))

    token = CancellationToken()
    events = []
    async with mock_client(handler) as client:
        transport = PullTransport(client, stall_timeout=5)
        stream = transport.stream(_pull_request(client), token)
        events.append(await stream.__anext__())
        token.cancel()
        with pytest.raises(AcquisitionCancelled):
            await stream.__anext__()

    assert len(events) == 1


@pytest.mark.asyncio
async def test_stream_already_cancelled_sends_nothing():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=b"")

    token = CancellationToken()
    token.cancel()
    async with mock_client(handler) as client:
        with pytest.raises(AcquisitionCancelled):
            await _drain(PullTransport(client), _pull_request(client), token)

    assert calls == []
