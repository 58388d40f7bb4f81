"""
Streaming transport for model downloads.

Sends one streaming HTTP request per attempt and turns the newline-delimited
JSON body into ``ProgressEvent`` objects. The event sequence ends with:

- normal exhaustion when the server closes the stream
- ``TransportError`` on a network failure, a non-2xx status or an
  ``error`` record
- ``StallTimeout`` when no record arrives within the stall window
- ``AcquisitionCancelled`` as soon as the cancellation token is signalled

The sequence is lazy and single-use; a retry needs a new ``stream()`` call.
"""

import asyncio
import json
import time
from typing import AsyncIterator, Callable, Iterator, Optional

import httpx

from ..errors import AcquisitionCancelled, StallTimeout, TransportError
from ..utils.logging_config import get_logger
from .progress import ProgressEvent

logger = get_logger(__name__)

DEFAULT_STALL_TIMEOUT_SECONDS = 30.0


class CancellationToken:
    """Cooperative cancellation flag that can also be awaited."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class NDJSONDecoder:
    """
    Incremental newline-delimited JSON decoder.

    Chunks can split a record anywhere (including inside a multi-byte UTF-8
    sequence), so bytes are buffered until a newline completes the line.
    """

    def __init__(self) -> None:
        self._buffer = b""

    def feed(self, chunk: bytes) -> Iterator[dict]:
        """Add *chunk* and yield every record it completes."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        for line in lines:
            record = self._decode_line(line)
            if record is not None:
                yield record

    def flush(self) -> Iterator[dict]:
        """Decode whatever is left once the stream has ended."""
        remainder, self._buffer = self._buffer, b""
        record = self._decode_line(remainder)
        if record is not None:
            yield record

    @staticmethod
    def _decode_line(line: bytes) -> Optional[dict]:
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            record = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("[Pull] Skipping malformed progress line: %.200s", text)
            return None
        if not isinstance(record, dict):
            logger.debug("[Pull] Skipping non-object progress record: %.200s", text)
            return None
        return record


def _as_count(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return None


def parse_progress_record(record: dict) -> ProgressEvent:
    """
    Convert a decoded record into a ``ProgressEvent``.

    Raises:
        TransportError: If the record carries an ``error`` field.
    """
    error = record.get("error")
    if error:
        raise TransportError(str(error))
    digest = record.get("digest")
    return ProgressEvent(
        status=str(record.get("status") or ""),
        layer_id=str(digest) if digest else None,
        completed=_as_count(record.get("completed")),
        total=_as_count(record.get("total")),
    )


class PullTransport:
    """Execute a streaming pull request and yield decoded progress events."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            client: HTTP client used to send the request. Not closed here.
            stall_timeout: Seconds without a decoded record before the
                stream is abandoned with ``StallTimeout``.
            clock: Monotonic time source (injectable for tests).
        """
        self._client = client
        self.stall_timeout = stall_timeout
        self._clock = clock

    async def stream(
        self,
        request: httpx.Request,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """
        Send *request* and yield one ``ProgressEvent`` per decoded record.

        Args:
            request: Prepared streaming request (e.g. ``POST /api/pull``).
            cancel_token: Signalled by the caller to abort the transfer.

        Raises:
            TransportError: Network failure, HTTP error status or error record.
            StallTimeout: No record within ``stall_timeout`` seconds.
            AcquisitionCancelled: ``cancel_token`` was signalled.
        """
        token = cancel_token or CancellationToken()
        if token.cancelled:
            raise AcquisitionCancelled()

        last_record_at = self._clock()
        response = await self._race(
            self._client.send(request, stream=True), token, last_record_at
        )
        try:
            if response.status_code >= 400:
                body = await response.aread()
                raise TransportError(
                    f"HTTP {response.status_code}: "
                    f"{body.decode('utf-8', errors='replace').strip()[:200]}"
                )

            decoder = NDJSONDecoder()
            chunks = response.aiter_bytes().__aiter__()
            while True:
                try:
                    chunk = await self._race(chunks.__anext__(), token, last_record_at)
                except StopAsyncIteration:
                    break
                for record in decoder.feed(chunk):
                    last_record_at = self._clock()
                    yield parse_progress_record(record)

            for record in decoder.flush():
                yield parse_progress_record(record)
        finally:
            await response.aclose()

    async def _race(self, awaitable, token: CancellationToken, last_record_at: float):
        """
        Await *awaitable* unless the token fires or the stall window closes.

        Network errors from ``httpx`` are converted to ``TransportError``.
        """
        remaining = self.stall_timeout - (self._clock() - last_record_at)
        if remaining <= 0:
            raise StallTimeout(self.stall_timeout)

        work = asyncio.ensure_future(awaitable)
        cancel_wait = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait(
                {work, cancel_wait},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            cancel_wait.cancel()

        if cancel_wait in done or token.cancelled:
            await self._discard(work)
            raise AcquisitionCancelled()
        if work not in done:
            await self._discard(work)
            raise StallTimeout(self.stall_timeout)

        try:
            return work.result()
        except httpx.HTTPError as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc

    @staticmethod
    async def _discard(task: asyncio.Future) -> None:
        """Cancel *task* and release whatever it produced if it won the race."""
        task.cancel()
        await asyncio.wait({task})
        if task.cancelled() or task.exception() is not None:
            return
        result = task.result()
        if isinstance(result, httpx.Response):
            await result.aclose()
