"""
Model Lifecycle Service - "make model X ready" for the rest of the application.

Sits on top of the registry, the acquisition controller and the engine
manager, and runs them in the right order:

1. ask the registry whether the model is installed
2. if not, download it through ``AcquisitionController`` and mark it installed
3. optionally bind the inference engine to it

Usage:
    from model_lifecycle.services import ModelLifecycleService

    async with ModelLifecycleService.from_config("ollama", with_engine=True) as svc:
        engine = await svc.ensure_ready(
            "llama3:8b",
            on_progress=lambda p: print(f"{p.percent}% {p.status}"),
        )
        print(await engine.complete("Hello"))
"""

from typing import Optional

from ..acquisition.controller import (
    AcquisitionController,
    AcquisitionResult,
    ProgressCallback,
)
from ..acquisition.transport import CancellationToken
from ..config import Config
from ..config import config as default_config
from ..engine.base import BaseInferenceEngine, InitProgressCallback
from ..engine.manager import EngineLifecycleManager
from ..engine.ollama import OllamaEngineFactory
from ..providers.base import BaseModelSource, ModelDescriptor
from ..providers.factory import ProviderFactory
from ..utils.logging_config import get_logger
from .model_registry import ModelRegistry

logger = get_logger(__name__)


class ModelLifecycleService:
    """
    Orchestrates install, delete, cancel and activation for one provider.
    """

    def __init__(
        self,
        source: BaseModelSource,
        registry: ModelRegistry,
        controller: Optional[AcquisitionController] = None,
        engine_manager: Optional[EngineLifecycleManager] = None,
    ) -> None:
        """
        Args:
            source: Provider the models come from.
            registry: Catalog with installed flags.
            controller: Download driver; a default one is built for *source*.
            engine_manager: Engine owner; ``None`` disables activation.
        """
        self.source = source
        self.registry = registry
        self.controller = controller or AcquisitionController(source)
        self.engine_manager = engine_manager

    @classmethod
    def from_config(
        cls,
        provider_name: str = "ollama",
        config: Optional[Config] = None,
        with_engine: bool = False,
    ) -> "ModelLifecycleService":
        """Build a service (and its collaborators) from application config."""
        config = config or default_config
        factory = ProviderFactory(config)
        source = factory.create_from_config(provider_name)
        registry = ModelRegistry(
            factory=factory,
            sources={provider_name: source},
            cache_path=config.registry.cache_path,
            ttl_seconds=config.registry.ttl_seconds,
        )
        controller = AcquisitionController.from_config(source, config.acquisition)
        engine_manager = None
        if with_engine:
            provider_config = config.get_provider_config(provider_name)
            engine_manager = EngineLifecycleManager(
                OllamaEngineFactory(
                    endpoint=provider_config.endpoint, api_key=provider_config.api_key
                ),
                settle_delay=config.engine.settle_delay,
            )
        return cls(source, registry, controller, engine_manager)

    @property
    def provider_name(self) -> str:
        return self.source.get_provider_name()

    async def list_models(self, refresh: bool = False) -> list[ModelDescriptor]:
        if refresh:
            await self.registry.refresh_provider(self.provider_name)
        return await self.registry.list_models(self.provider_name)

    async def is_installed(self, model_id: str) -> bool:
        """Check the registry, refreshing the catalog once if the model is unknown."""
        if self.registry.get(model_id, self.provider_name) is None:
            await self.registry.refresh_provider(self.provider_name)
        return self.registry.is_installed(model_id, self.provider_name)

    async def install(
        self,
        model_id: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AcquisitionResult:
        """Download *model_id* and record it as installed."""
        result = await self.controller.acquire(model_id, on_progress, cancel_token)
        self.registry.mark_installed(model_id, self.provider_name)
        return result

    async def ensure_ready(
        self,
        model_id: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_engine_progress: Optional[InitProgressCallback] = None,
    ) -> Optional[BaseInferenceEngine]:
        """
        Make sure *model_id* is installed and, with an engine manager, active.

        Returns:
            The engine bound to *model_id*, or ``None`` without engine manager.

        Raises:
            AcquisitionError: The download was cancelled or failed.
            EngineCreationFailed: The model was installed but could not load.
        """
        if self.source.supports_pull and not await self.is_installed(model_id):
            logger.info("Model '%s' not installed; downloading.", model_id)
            await self.install(model_id, on_progress, cancel_token)

        if self.engine_manager is None:
            return None
        return await self.engine_manager.activate(model_id, on_engine_progress)

    async def delete(self, model_id: str) -> bool:
        """
        Delete an installed model at the user's request.

        If the engine is serving *model_id* it is torn down first so the
        backend does not hold the files open.
        """
        if (
            self.engine_manager is not None
            and self.engine_manager.active_model_id == model_id
        ):
            await self.engine_manager.teardown()

        deleted = await self.source.delete(model_id)
        if deleted:
            self.registry.mark_uninstalled(model_id, self.provider_name)
        return deleted

    def cancel(self, model_id: str) -> bool:
        """Cancel an in-flight download of *model_id*."""
        return self.controller.cancel(model_id)

    async def close(self) -> None:
        if self.engine_manager is not None:
            await self.engine_manager.teardown()
        await self.source.close()

    async def __aenter__(self) -> "ModelLifecycleService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
