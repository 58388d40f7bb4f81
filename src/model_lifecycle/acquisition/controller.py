"""
Acquisition Controller - download a model with retries, cleanup and cancel.

Wraps a model source's pull stream with:

- bounded retries with exponential backoff (tenacity), 2s then 4s by default
- best-effort deletion of the partial download after every failed attempt
- per-attempt progress aggregation (progress restarts at 0 on a retry since
  the retried attempt downloads from scratch)
- cooperative cancellation through a ``CancellationToken``
- a guard against concurrent downloads of the same model

Usage:
    from model_lifecycle.acquisition import AcquisitionController
    from model_lifecycle.providers import OllamaModelSource

    async with OllamaModelSource() as source:
        controller = AcquisitionController(source)
        result = await controller.acquire(
            "nomic-embed-text",
            on_progress=lambda p: print(f"{p.percent:3d}% {p.status}"),
        )
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import (
    RETRYABLE_ERRORS,
    AcquisitionCancelled,
    DuplicateAcquisition,
    ExhaustedRetries,
)
from ..utils.logging_config import get_logger
from .progress import LayerProgress, ProgressAggregator, ProgressEvent, TransferPhase
from .transport import DEFAULT_STALL_TIMEOUT_SECONDS, CancellationToken

if TYPE_CHECKING:
    from ..providers.base import BaseModelSource

logger = get_logger(__name__)

MAX_RETRIES = 3
RETRY_STATUS = "Download failed/stalled. Retrying (attempt {attempt})..."


@dataclass
class PullProgress:
    """
    Progress update handed to ``on_progress`` callbacks.

    Attributes:
        model_id: Model being downloaded
        phase: Transfer phase after this record
        status: Raw status string from the record
        layer_id: Digest of the layer this record is about, if any
        completed: Raw ``completed`` byte count of the record, if any
        total: Raw ``total`` byte count of the record, if any
        aggregate_completed: Bytes completed over all known layers
        aggregate_total: Bytes expected over all known layers
        percent: Monotonic 0-100 value for display
        raw_percent: Plain ratio over the layers seen so far
        attempt: 1-based attempt number
    """
    model_id: str
    phase: TransferPhase
    status: str
    layer_id: Optional[str]
    completed: Optional[int]
    total: Optional[int]
    aggregate_completed: int
    aggregate_total: int
    percent: int
    raw_percent: int
    attempt: int


ProgressCallback = Callable[[PullProgress], None]


@dataclass
class TransferState:
    """Book-keeping for one in-flight acquisition."""

    model_id: str
    cancel_token: CancellationToken
    phase: TransferPhase = TransferPhase.PENDING
    attempt: int = 0
    last_event_time: Optional[float] = None
    aggregator: ProgressAggregator = field(default_factory=ProgressAggregator)

    @property
    def layers(self) -> dict[str, LayerProgress]:
        return self.aggregator.layers

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_token.cancelled


@dataclass
class AcquisitionResult:
    """Outcome of a successful ``acquire`` call."""

    model_id: str
    attempts: int
    elapsed_seconds: float


class AcquisitionController:
    """
    Drive model downloads to completion.

    Only ``AcquisitionCancelled``, ``ExhaustedRetries`` and
    ``DuplicateAcquisition`` leave ``acquire()``; transport failures and
    stalls are retried internally.
    """

    def __init__(
        self,
        source: "BaseModelSource",
        max_retries: int = MAX_RETRIES,
        stall_timeout: float = DEFAULT_STALL_TIMEOUT_SECONDS,
        initial_wait: float = 2.0,
        max_wait: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            source: Model source that provides pull streams and deletion.
            max_retries: Total number of attempts (default: 3).
            stall_timeout: Seconds without a progress record before an
                attempt is abandoned (default: 30).
            initial_wait: Backoff after the first failure; doubles after
                each further failure (default: 2.0).
            max_wait: Upper bound for a single backoff (default: 60.0).
            sleep: Coroutine used for backoff waits (injectable for tests).
            clock: Monotonic time source (injectable for tests).
        """
        self.source = source
        self.max_retries = max_retries
        self.stall_timeout = stall_timeout
        self.initial_wait = initial_wait
        self.max_wait = max_wait
        self._sleep = sleep
        self._clock = clock
        self._transfers: dict[str, TransferState] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, source: "BaseModelSource", acquisition_config) -> "AcquisitionController":
        return cls(
            source,
            max_retries=acquisition_config.max_retries,
            stall_timeout=acquisition_config.stall_timeout,
            initial_wait=acquisition_config.initial_wait,
            max_wait=acquisition_config.max_wait,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def acquire(
        self,
        model_id: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AcquisitionResult:
        """
        Download *model_id*, retrying transient failures.

        Args:
            model_id: Model to download.
            on_progress: Called with a ``PullProgress`` for every decoded
                record, plus once at the start of each retry.
            cancel_token: Token the caller can signal to abort. One is
                created when omitted; ``cancel(model_id)`` signals it.

        Returns:
            AcquisitionResult with the number of attempts used.

        Raises:
            DuplicateAcquisition: *model_id* is already being downloaded.
            AcquisitionCancelled: The token was signalled.
            ExhaustedRetries: Every attempt failed with a retryable error.
        """
        state = await self._register(model_id, cancel_token or CancellationToken())
        started = self._clock()
        try:
            await self._run(state, on_progress)
        except AcquisitionCancelled:
            state.phase = TransferPhase.CANCELLED
            logger.info("[Pull] Download of '%s' cancelled.", model_id)
            raise AcquisitionCancelled(model_id)
        except RETRYABLE_ERRORS as exc:
            state.phase = TransferPhase.FAILED
            logger.error(
                "[Pull] Giving up on '%s' after %d attempts: %s",
                model_id,
                state.attempt,
                exc,
            )
            raise ExhaustedRetries(model_id, state.attempt, exc.reason) from exc
        finally:
            async with self._lock:
                self._transfers.pop(model_id, None)

        state.phase = TransferPhase.SUCCEEDED
        elapsed = self._clock() - started
        logger.info(
            "[Pull] Model '%s' downloaded in %.1fs (%d attempt(s)).",
            model_id,
            elapsed,
            state.attempt,
        )
        return AcquisitionResult(model_id, state.attempt, elapsed)

    def cancel(self, model_id: str) -> bool:
        """Signal the in-flight download of *model_id*. Returns ``False`` if none."""
        state = self._transfers.get(model_id)
        if state is None:
            return False
        state.cancel_token.cancel()
        return True

    def get_state(self, model_id: str) -> Optional[TransferState]:
        return self._transfers.get(model_id)

    def active_transfers(self) -> list[str]:
        return sorted(self._transfers)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _register(self, model_id: str, token: CancellationToken) -> TransferState:
        async with self._lock:
            if model_id in self._transfers:
                raise DuplicateAcquisition(model_id)
            state = TransferState(model_id=model_id, cancel_token=token)
            self._transfers[model_id] = state
            return state

    async def _run(self, state: TransferState, on_progress: Optional[ProgressCallback]) -> None:
        """Attempt loop; re-raises the last retryable error once attempts run out."""

        async def backoff(seconds: float) -> None:
            await self._backoff(seconds, state)

        def log_backoff(retry_state) -> None:
            logger.warning(
                "[Pull] Retrying '%s' in %.1fs (attempt %d/%d).",
                state.model_id,
                retry_state.next_action.sleep,
                retry_state.attempt_number + 1,
                self.max_retries,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.initial_wait, max=self.max_wait),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            sleep=backoff,
            before_sleep=log_backoff,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                state.attempt = attempt.retry_state.attempt_number
                await self._run_attempt(state, on_progress)

    async def _backoff(self, seconds: float, state: TransferState) -> None:
        """Wait between attempts; a cancel ends the wait immediately."""
        pause = asyncio.ensure_future(self._sleep(seconds))
        cancel_wait = asyncio.ensure_future(state.cancel_token.wait())
        try:
            await asyncio.wait({pause, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (pause, cancel_wait):
                if not task.done():
                    task.cancel()
        if state.cancel_requested:
            raise AcquisitionCancelled(state.model_id)
        pause.result()

    async def _run_attempt(
        self, state: TransferState, on_progress: Optional[ProgressCallback]
    ) -> None:
        if state.cancel_requested:
            raise AcquisitionCancelled(state.model_id)
        state.aggregator.reset()
        state.phase = TransferPhase.PENDING
        state.last_event_time = self._clock()
        logger.info(
            "[Pull] Pulling model '%s' (attempt %d/%d)...",
            state.model_id,
            state.attempt,
            self.max_retries,
        )
        if state.attempt > 1:
            self._emit(state, ProgressEvent(status=RETRY_STATUS.format(attempt=state.attempt)), on_progress)

        try:
            stream = self.source.pull(
                state.model_id, state.cancel_token, stall_timeout=self.stall_timeout
            )
            async for event in stream:
                state.last_event_time = self._clock()
                self._emit(state, event, on_progress)
        except RETRYABLE_ERRORS as exc:
            logger.warning(
                "[Pull] Attempt %d for '%s' failed: %s",
                state.attempt,
                state.model_id,
                exc,
            )
            await self._cleanup(state.model_id)
            raise

    def _emit(
        self,
        state: TransferState,
        event: ProgressEvent,
        on_progress: Optional[ProgressCallback],
    ) -> None:
        aggregate = state.aggregator.update(event)
        state.phase = aggregate.phase
        if on_progress is None:
            return
        on_progress(
            PullProgress(
                model_id=state.model_id,
                phase=aggregate.phase,
                status=event.status,
                layer_id=event.layer_id,
                completed=event.completed,
                total=event.total,
                aggregate_completed=aggregate.completed,
                aggregate_total=aggregate.total,
                percent=aggregate.percent,
                raw_percent=aggregate.raw_percent,
                attempt=state.attempt,
            )
        )

    async def _cleanup(self, model_id: str) -> None:
        """Delete the partial download; failures are logged and ignored."""
        try:
            deleted = await self.source.delete(model_id)
        except Exception as exc:  # noqa: BLE001 - cleanup is best-effort
            logger.warning("[Pull] Cleanup of '%s' failed: %s", model_id, exc)
            return
        if not deleted:
            logger.warning("[Pull] Cleanup of '%s' was not confirmed.", model_id)
