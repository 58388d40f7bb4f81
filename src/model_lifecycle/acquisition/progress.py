"""
Progress aggregation for multi-layer model downloads.

A model pull reports progress per layer (content-addressed blob), and the set
of layers is only revealed as the stream goes on. ``ProgressAggregator`` folds
those per-layer counters into a single 0-100 value.

Because the total grows each time a new layer shows up, the plain
``completed / total`` ratio can drop (50% of one layer becomes 25% of two).
The aggregator therefore reports two values:

- ``raw_percent``: the plain ratio over the layers seen so far
- ``percent``: the running maximum of ``raw_percent``; this is what progress
  bars should show since it never moves backwards within an attempt
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

UNKNOWN_LAYER_ID = "unknown"


class TransferPhase(Enum):
    """Lifecycle phase of one acquisition."""

    PENDING = "pending"
    TRANSFERRING = "transferring"
    VERIFYING = "verifying"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Phases reported after every byte has arrived; they carry no byte totals.
POST_TRANSFER_PHASES = frozenset(
    {TransferPhase.VERIFYING, TransferPhase.FINALIZING, TransferPhase.SUCCEEDED}
)

_FINALIZING_PREFIXES = ("writing manifest", "removing", "finalizing")


def phase_from_status(
    status: str,
    has_bytes: bool = False,
    current: Optional[TransferPhase] = None,
) -> TransferPhase:
    """
    Map a wire status string to a ``TransferPhase``.

    Args:
        status: Free-form status from the progress record
                (e.g. ``"pulling 6a0746a1ec1a"``, ``"verifying sha256 digest"``).
        has_bytes: Whether the record carried byte counters.
        current: Phase before this record; unknown statuses keep it.

    Returns:
        The phase the transfer is in after this record.
    """
    text = (status or "").strip().lower()
    if text == "success":
        return TransferPhase.SUCCEEDED
    if text.startswith("verifying"):
        return TransferPhase.VERIFYING
    if text.startswith(_FINALIZING_PREFIXES):
        return TransferPhase.FINALIZING
    if has_bytes:
        return TransferPhase.TRANSFERRING
    if text == "pulling manifest":
        return TransferPhase.PENDING
    if text.startswith(("pulling ", "downloading")):
        return TransferPhase.TRANSFERRING
    return current or TransferPhase.PENDING


@dataclass
class ProgressEvent:
    """One decoded progress record from the wire."""

    status: str = ""
    layer_id: Optional[str] = None
    completed: Optional[int] = None
    total: Optional[int] = None

    @property
    def has_bytes(self) -> bool:
        return self.completed is not None or self.total is not None


@dataclass
class LayerProgress:
    """Byte counters for a single layer within one attempt."""

    layer_id: str
    completed: int = 0
    total: int = 0


@dataclass
class AggregateProgress:
    """Snapshot returned by ``ProgressAggregator.update``."""

    phase: TransferPhase
    completed: int
    total: int
    percent: int
    raw_percent: int
    layer_count: int


@dataclass
class ProgressAggregator:
    """Fold per-layer progress events into one monotonic percentage."""

    layers: dict[str, LayerProgress] = field(default_factory=dict)
    phase: TransferPhase = TransferPhase.PENDING
    _high_water: int = field(default=0, init=False, repr=False)

    def reset(self) -> None:
        """Forget every layer; used when a new attempt begins."""
        self.layers.clear()
        self.phase = TransferPhase.PENDING
        self._high_water = 0

    @property
    def completed(self) -> int:
        return sum(layer.completed for layer in self.layers.values())

    @property
    def total(self) -> int:
        return sum(layer.total for layer in self.layers.values())

    def raw_percent(self) -> int:
        """Plain ratio over the known layers, pinned to 100 after transfer."""
        if self.phase in POST_TRANSFER_PHASES:
            return 100
        total = self.total
        if total <= 0:
            return 0
        return min(100, round(100 * self.completed / total))

    @property
    def percent(self) -> int:
        return self._high_water

    def update(self, event: ProgressEvent) -> AggregateProgress:
        """Apply one event and return the new aggregate."""
        self.phase = phase_from_status(event.status, event.has_bytes, self.phase)

        if event.has_bytes:
            layer_id = event.layer_id or UNKNOWN_LAYER_ID
            completed = max(0, event.completed or 0)
            total = max(0, event.total or 0)
            layer = self.layers.get(layer_id)
            if layer is None:
                self.layers[layer_id] = LayerProgress(layer_id, completed, total)
            else:
                layer.completed = max(layer.completed, completed)
                layer.total = total

        raw = self.raw_percent()
        self._high_water = max(self._high_water, raw)
        return AggregateProgress(
            phase=self.phase,
            completed=self.completed,
            total=self.total,
            percent=self._high_water,
            raw_percent=raw,
            layer_count=len(self.layers),
        )
