"""
Model acquisition: streaming download, progress aggregation, retries.

- ``ProgressAggregator`` turns per-layer counters into one percentage
- ``PullTransport`` streams and decodes one download attempt
- ``AcquisitionController`` retries, cleans up and exposes cancel
"""

from .controller import (
    AcquisitionController,
    AcquisitionResult,
    PullProgress,
    TransferState,
)
from .progress import (
    AggregateProgress,
    LayerProgress,
    ProgressAggregator,
    ProgressEvent,
    TransferPhase,
)
from .transport import CancellationToken, NDJSONDecoder, PullTransport

__all__ = [
    "AcquisitionController",
    "AcquisitionResult",
    "PullProgress",
    "TransferState",
    "AggregateProgress",
    "LayerProgress",
    "ProgressAggregator",
    "ProgressEvent",
    "TransferPhase",
    "CancellationToken",
    "NDJSONDecoder",
    "PullTransport",
]
