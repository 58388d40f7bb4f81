"""
Base classes for inference engine abstraction.

An engine is an expensive, stateful object bound to one model at a time.
``EngineLifecycleManager`` only relies on this interface, so a different
runtime can be plugged in by providing a ``BaseInferenceEngine`` subclass and
an ``EngineFactory`` that creates it.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol


@dataclass
class EngineInitProgress:
    """Incremental load report.

    Attributes:
        progress: Fraction between 0.0 and 1.0
        text: Human-readable description of the current step
    """
    progress: float
    text: str


InitProgressCallback = Callable[[EngineInitProgress], None]


class BaseInferenceEngine(ABC):
    """Abstract base class for a loaded inference engine."""

    model_id: Optional[str] = None

    @abstractmethod
    async def reload(
        self,
        model_id: str,
        on_progress: Optional[InitProgressCallback] = None,
    ) -> None:
        """Swap the bound model in place, keeping the engine's resources.

        Raises:
            Exception: Any failure; the caller falls back to recreating
                       the engine.
        """

    @abstractmethod
    async def unload(self) -> None:
        """Release the model and every resource the engine holds."""


class EngineFactory(Protocol):
    """Creates an engine already bound to *model_id*."""

    def __call__(
        self,
        model_id: str,
        on_progress: Optional[InitProgressCallback] = None,
    ) -> Awaitable[BaseInferenceEngine]: ...
