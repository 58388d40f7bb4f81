"""
Tests for ModelLifecycleService: install-then-activate, delete and cancel.
"""

import asyncio

import pytest

from model_lifecycle.acquisition.controller import AcquisitionController
from model_lifecycle.acquisition.progress import ProgressEvent
from model_lifecycle.config import Config
from model_lifecycle.engine.manager import EngineLifecycleManager, EngineState
from model_lifecycle.engine.ollama import OllamaEngineFactory
from model_lifecycle.errors import AcquisitionCancelled, EngineCreationFailed, ExhaustedRetries, TransportError
from model_lifecycle.providers.base import ModelDescriptor, ModelKind
from model_lifecycle.providers.ollama import OllamaModelSource
from model_lifecycle.services.lifecycle_service import ModelLifecycleService
from model_lifecycle.services.model_registry import ModelRegistry
from tests.conftest import WAIT_FOR_CANCEL, FakeModelSource

CATALOG = [
    ModelDescriptor(id="llama3:latest", kind=ModelKind.CHAT, provider="ollama", installed=True),
    ModelDescriptor(id="phi3", kind=ModelKind.CHAT, provider="ollama"),
]


def _service(source, cache_path, sleep, engine_factory=None):
    registry = ModelRegistry(sources={"ollama": source}, cache_path=cache_path)
    controller = AcquisitionController(source, sleep=sleep)
    engine_manager = None
    if engine_factory is not None:
        engine_manager = EngineLifecycleManager(engine_factory, sleep=sleep)
    return ModelLifecycleService(source, registry, controller, engine_manager)


@pytest.fixture
def source():
    return FakeModelSource(catalog=CATALOG, label="ollama")


# ---------------------------------------------------------------------------
# ensure_ready
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ensure_ready_downloads_missing_model_then_activates(
    source, registry_cache, sleep_recorder, engine_factory
):
    service = _service(source, registry_cache, sleep_recorder, engine_factory)
    updates = []

    engine = await service.ensure_ready("phi3", on_progress=updates.append)

    assert source.pull_calls == ["phi3"]
    assert updates and updates[-1].status == "success"
    assert service.registry.is_installed("phi3")
    assert engine.model_id == "phi3"
    assert service.engine_manager.state == EngineState.LOADED


@pytest.mark.asyncio
async def test_ensure_ready_skips_download_when_installed(
    source, registry_cache, sleep_recorder, engine_factory
):
    service = _service(source, registry_cache, sleep_recorder, engine_factory)

    await service.ensure_ready("llama3")

    assert source.pull_calls == []
    assert engine_factory.log == [("create", "llama3")]


@pytest.mark.asyncio
async def test_ensure_ready_downloads_model_missing_from_catalog(
    source, registry_cache, sleep_recorder
):
    service = _service(source, registry_cache, sleep_recorder)

    result = await service.ensure_ready("qwen2.5:7b")

    assert result is None
    assert source.pull_calls == ["qwen2.5:7b"]
    assert service.registry.is_installed("qwen2.5:7b")


@pytest.mark.asyncio
async def test_ensure_ready_rechecks_fresh_cache_for_unknown_model(
    source, registry_cache, sleep_recorder
):
    service = _service(source, registry_cache, sleep_recorder)
    await service.list_models()
    # Installed outside the app after the catalog was cached.
    source.catalog.append(
        ModelDescriptor(id="qwen2.5:7b", kind=ModelKind.CHAT, provider="ollama", installed=True)
    )

    await service.ensure_ready("qwen2.5:7b")

    assert source.pull_calls == []
    assert service.registry.is_installed("qwen2.5:7b")


@pytest.mark.asyncio
async def test_ensure_ready_download_failure_skips_activation(
    source, registry_cache, sleep_recorder, engine_factory
):
    source.attempts = [[TransportError("reset")]] * 3
    service = _service(source, registry_cache, sleep_recorder, engine_factory)

    with pytest.raises(ExhaustedRetries):
        await service.ensure_ready("phi3")

    assert not service.registry.is_installed("phi3")
    assert engine_factory.log == []


@pytest.mark.asyncio
async def test_ensure_ready_engine_failure_keeps_install(
    source, registry_cache, sleep_recorder, engine_factory
):
    engine_factory.failures = 1
    service = _service(source, registry_cache, sleep_recorder, engine_factory)

    with pytest.raises(EngineCreationFailed):
        await service.ensure_ready("phi3")

    assert service.registry.is_installed("phi3")
    # A retry only needs the engine.
    await service.ensure_ready("phi3")
    assert source.pull_calls == ["phi3"]


@pytest.mark.asyncio
async def test_ensure_ready_for_catalog_only_source(registry_cache, sleep_recorder):
    source = FakeModelSource(catalog=CATALOG, label="ollama")
    source.supports_pull = False
    service = _service(source, registry_cache, sleep_recorder)

    await service.ensure_ready("phi3")

    assert source.pull_calls == []


# ---------------------------------------------------------------------------
# install / cancel
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_install_returns_result_and_marks_installed(source, registry_cache, sleep_recorder):
    service = _service(source, registry_cache, sleep_recorder)
    result = await service.install("phi3")
    assert result.attempts == 1
    assert service.registry.is_installed("phi3")


@pytest.mark.asyncio
async def test_cancel_in_flight_install(source, registry_cache, sleep_recorder):
    source.attempts = [[ProgressEvent("pulling manifest"), WAIT_FOR_CANCEL]]
    service = _service(source, registry_cache, sleep_recorder)

    task = asyncio.create_task(service.install("phi3"))
    await asyncio.sleep(0)
    assert service.cancel("phi3") is True

    with pytest.raises(AcquisitionCancelled):
        await task
    assert not service.registry.is_installed("phi3")
    assert service.cancel("phi3") is False


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delete_active_model_tears_down_engine_first(
    source, registry_cache, sleep_recorder, engine_factory
):
    service = _service(source, registry_cache, sleep_recorder, engine_factory)
    await service.ensure_ready("llama3:latest")

    assert await service.delete("llama3:latest") is True

    assert engine_factory.log[-1] == ("unload", "llama3:latest")
    assert service.engine_manager.state == EngineState.UNLOADED
    assert source.deleted == ["llama3:latest"]
    assert not service.registry.is_installed("llama3:latest")


@pytest.mark.asyncio
async def test_delete_other_model_keeps_engine(
    source, registry_cache, sleep_recorder, engine_factory
):
    service = _service(source, registry_cache, sleep_recorder, engine_factory)
    await service.ensure_ready("llama3:latest")
    service.registry.mark_installed("phi3")

    await service.delete("phi3")

    assert service.engine_manager.active_model_id == "llama3:latest"
    assert not service.registry.is_installed("phi3")


@pytest.mark.asyncio
async def test_failed_delete_keeps_installed_flag(source, registry_cache, sleep_recorder):
    source.delete_result = False
    service = _service(source, registry_cache, sleep_recorder)
    await service.list_models()

    assert await service.delete("llama3:latest") is False
    assert service.registry.is_installed("llama3:latest")


# ---------------------------------------------------------------------------
# Construction / shutdown
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_close_tears_down_engine_and_source(
    source, registry_cache, sleep_recorder, engine_factory
):
    async with _service(source, registry_cache, sleep_recorder, engine_factory) as service:
        await service.ensure_ready("llama3:latest")

    assert source.closed
    assert service.engine_manager.engine is None


@pytest.mark.asyncio
async def test_list_models_refresh(source, registry_cache, sleep_recorder):
    service = _service(source, registry_cache, sleep_recorder)
    models = await service.list_models(refresh=True)
    assert {m.id for m in models} == {"llama3:latest", "phi3"}


@pytest.mark.asyncio
async def test_from_config(monkeypatch, tmp_path):
    monkeypatch.setenv("OLLAMA_ENDPOINT", "http://gpu-box:11434")
    monkeypatch.setenv("MODEL_PULL_MAX_RETRIES", "5")
    monkeypatch.setenv("ENGINE_SETTLE_DELAY", "1.5")
    monkeypatch.setenv("MODEL_REGISTRY_CACHE", str(tmp_path / "cache.json"))

    service = ModelLifecycleService.from_config("ollama", Config(), with_engine=True)
    try:
        assert isinstance(service.source, OllamaModelSource)
        assert service.source.endpoint == "http://gpu-box:11434"
        assert service.controller.max_retries == 5
        assert service.engine_manager.settle_delay == 1.5
        assert isinstance(service.engine_manager._factory, OllamaEngineFactory)
        assert service.registry.cache_path == tmp_path / "cache.json"
    finally:
        await service.close()
