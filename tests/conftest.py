"""
Pytest configuration and shared fixtures.

This file is automatically discovered by pytest and provides fixtures
available to all test modules. Nothing here touches the network: HTTP is
served by ``httpx.MockTransport`` and sleeps are recorded, not awaited.
"""

import json
from typing import Optional

import httpx
import pytest

from model_lifecycle.acquisition.progress import ProgressEvent
from model_lifecycle.acquisition.transport import CancellationToken
from model_lifecycle.engine.base import BaseInferenceEngine
from model_lifecycle.errors import AcquisitionCancelled
from model_lifecycle.providers.base import BaseModelSource, ModelDescriptor

# Script step: block until the cancellation token fires.
WAIT_FOR_CANCEL = object()

OLLAMA_TEST_URL = "http://ollama.test"


def ndjson(*records: dict) -> bytes:
    """Encode records the way ``/api/pull`` streams them."""
    return b"".join(json.dumps(r).encode("utf-8") + b"\n" for r in records)


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by *handler*."""
    return httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=OLLAMA_TEST_URL
    )


class FakeModelSource(BaseModelSource):
    """
    Scripted model source.

    Each pull attempt consumes the next script from *attempts*. A script is a
    list of steps: a ``ProgressEvent`` is yielded, an exception is raised and
    ``WAIT_FOR_CANCEL`` blocks until the token is signalled.
    """

    supports_pull = True

    def __init__(
        self,
        attempts: Optional[list] = None,
        catalog: Optional[list[ModelDescriptor]] = None,
        delete_result=True,
        label: str = "fake",
    ):
        self.attempts = list(attempts or [])
        self.catalog = list(catalog or [])
        self.delete_result = delete_result
        self.label = label
        self.pull_calls = []
        self.deleted = []
        self.closed = False

    def get_provider_name(self) -> str:
        return self.label

    async def list_models(self) -> list[ModelDescriptor]:
        return list(self.catalog)

    async def close(self) -> None:
        self.closed = True

    async def delete(self, model_id: str) -> bool:
        self.deleted.append(model_id)
        if isinstance(self.delete_result, BaseException):
            raise self.delete_result
        return self.delete_result

    def pull(self, model_id, cancel_token=None, stall_timeout=30.0):
        self.pull_calls.append(model_id)
        script = (
            self.attempts.pop(0) if self.attempts else [ProgressEvent("success")]
        )
        return self._play(script, cancel_token or CancellationToken())

    async def _play(self, script, token):
        for step in script:
            if step is WAIT_FOR_CANCEL:
                await token.wait()
                raise AcquisitionCancelled()
            if isinstance(step, BaseException):
                raise step
            yield step


class FakeEngine(BaseInferenceEngine):
    def __init__(self, model_id: str, log: list, fail_reload: bool = False,
                 fail_unload: bool = False):
        self.model_id = model_id
        self.log = log
        self.fail_reload = fail_reload
        self.fail_unload = fail_unload

    async def reload(self, model_id, on_progress=None):
        self.log.append(("reload", model_id))
        if self.fail_reload:
            raise RuntimeError("device context lost")
        self.model_id = model_id

    async def unload(self):
        self.log.append(("unload", self.model_id))
        if self.fail_unload:
            raise RuntimeError("unload failed")


class FakeEngineFactory:
    """Records every engine creation; ``failures`` makes the next N fail."""

    def __init__(self):
        self.log = []
        self.engines = []
        self.failures = 0
        self.fail_reload = False
        self.fail_unload = False

    async def __call__(self, model_id, on_progress=None):
        self.log.append(("create", model_id))
        if self.failures:
            self.failures -= 1
            raise RuntimeError("out of memory")
        engine = FakeEngine(
            model_id, self.log, fail_reload=self.fail_reload,
            fail_unload=self.fail_unload,
        )
        self.engines.append(engine)
        return engine


@pytest.fixture
def fake_source():
    """A model source whose pulls succeed immediately unless scripted."""
    return FakeModelSource()


@pytest.fixture
def engine_factory():
    return FakeEngineFactory()


@pytest.fixture
def sleep_recorder():
    """
    Replacement for ``asyncio.sleep`` that returns immediately.

    The requested delays are available as ``sleep_recorder.delays``.
    """
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    fake_sleep.delays = delays
    return fake_sleep


@pytest.fixture
def registry_cache(tmp_path):
    """Path for a throwaway registry cache file."""
    return tmp_path / "model_registry.json"
