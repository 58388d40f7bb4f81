"""
Engine Lifecycle Manager - one engine, bound to the model the user wants.

``activate(model_id)`` guarantees that, on return, exactly one usable engine
is bound to *model_id*:

- no engine yet: create one
- engine bound to another model: try an in-place ``reload`` first; if that
  fails, unload the engine (best-effort), wait ``settle_delay`` seconds for
  GPU state to reset and create a fresh engine
- engine already bound to *model_id*: nothing to do

Reload is purely a latency optimisation: everything still works if reload
always fails. Calls are serialized by an ``asyncio.Lock``, so a second
``activate()`` issued while one is running waits its turn instead of being
dropped. Activation has no cancellation contract: cancelling a caller while
the engine is loading leaves the manager in whatever state the interrupted
step reached, and the next ``activate()`` recovers from there.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..errors import EngineCreationFailed, EngineReloadFailed
from ..utils.logging_config import get_logger
from .base import BaseInferenceEngine, EngineFactory, InitProgressCallback

logger = get_logger(__name__)

DEFAULT_SETTLE_DELAY_SECONDS = 0.5


class EngineState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class EngineLifecycleManager:
    """Owns the single inference engine handle of the process."""

    def __init__(
        self,
        factory: EngineFactory,
        settle_delay: float = DEFAULT_SETTLE_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            factory: Creates an engine bound to a model id.
            settle_delay: Seconds to wait between tearing down a broken
                engine and creating a new one (default: 0.5).
            sleep: Coroutine used for the settle delay (injectable for tests).
        """
        self._factory = factory
        self.settle_delay = settle_delay
        self._sleep = sleep
        self._engine: Optional[BaseInferenceEngine] = None
        self._active_model_id: Optional[str] = None
        self._loading = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> EngineState:
        if self._loading:
            return EngineState.LOADING
        if self._engine is not None and self._active_model_id is not None:
            return EngineState.LOADED
        return EngineState.UNLOADED

    @property
    def active_model_id(self) -> Optional[str]:
        return self._active_model_id

    @property
    def engine(self) -> Optional[BaseInferenceEngine]:
        return self._engine

    async def activate(
        self,
        model_id: str,
        on_progress: Optional[InitProgressCallback] = None,
    ) -> BaseInferenceEngine:
        """
        Bind the engine to *model_id*, creating or reloading as needed.

        Args:
            model_id: Model to serve.
            on_progress: Receives ``EngineInitProgress`` reports while loading.

        Returns:
            The engine, bound to *model_id*.

        Raises:
            EngineCreationFailed: A fresh engine could not be created. The
                manager is left ``UNLOADED`` and the call can be retried.
        """
        async with self._lock:
            if self._engine is not None and self._active_model_id == model_id:
                logger.debug("[Engine] '%s' already active.", model_id)
                return self._engine

            self._loading = True
            try:
                if self._engine is not None:
                    try:
                        await self._reload(model_id, on_progress)
                        return self._engine
                    except EngineReloadFailed as exc:
                        logger.warning(
                            "[Engine] %s; recreating engine.", exc
                        )
                        await self._discard_engine()
                        await self._sleep(self.settle_delay)

                return await self._create(model_id, on_progress)
            finally:
                self._loading = False

    async def teardown(self) -> None:
        """Unload the engine if present; unload errors are logged and ignored."""
        async with self._lock:
            await self._discard_engine()

    # ------------------------------------------------------------------
    # Internals (called with the lock held)
    # ------------------------------------------------------------------

    async def _reload(
        self, model_id: str, on_progress: Optional[InitProgressCallback]
    ) -> None:
        previous = self._active_model_id
        logger.info("[Engine] Reloading engine: '%s' -> '%s'", previous, model_id)
        try:
            await self._engine.reload(model_id, on_progress)
        except Exception as exc:
            raise EngineReloadFailed(model_id, str(exc)) from exc
        self._active_model_id = model_id
        logger.info("[Engine] Engine ready (reloaded) for '%s'.", model_id)

    async def _create(
        self, model_id: str, on_progress: Optional[InitProgressCallback]
    ) -> BaseInferenceEngine:
        logger.info("[Engine] Creating new engine for '%s'.", model_id)
        try:
            engine = await self._factory(model_id, on_progress)
        except Exception as exc:
            logger.error("[Engine] Failed to load '%s': %s", model_id, exc)
            self._engine = None
            self._active_model_id = None
            raise EngineCreationFailed(model_id, str(exc)) from exc
        self._engine = engine
        self._active_model_id = model_id
        logger.info("[Engine] Engine ready (new) for '%s'.", model_id)
        return engine

    async def _discard_engine(self) -> None:
        engine, self._engine = self._engine, None
        previous, self._active_model_id = self._active_model_id, None
        if engine is None:
            return
        try:
            await engine.unload()
            logger.info("[Engine] Unloaded engine for '%s'.", previous)
        except Exception as exc:  # noqa: BLE001 - unload is best-effort
            logger.warning("[Engine] Unload of '%s' failed: %s", previous, exc)

    # Context-manager support
    async def __aenter__(self) -> "EngineLifecycleManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.teardown()
