"""
Ollama inference engine - keeps one model resident in GPU VRAM.

Loads / unloads models via the Ollama REST API so that VRAM is
deterministically reclaimed when the active model changes, and exposes an
OpenAI-compatible client for inference against the bound model.

Typical usage:

    from model_lifecycle.engine import EngineLifecycleManager, OllamaEngineFactory

    manager = EngineLifecycleManager(OllamaEngineFactory())
    engine = await manager.activate("llama3:8b")
    reply = await engine.complete("Summarise this text.")
    await manager.teardown()   # model unloaded, VRAM freed

Prerequisites:
- Ollama installed and running (``ollama serve`` or system service)
- Model already pulled (see ``AcquisitionController``)
"""

import time
from typing import Any, Optional

import httpx
from openai import AsyncOpenAI

from ..config import DEFAULT_OLLAMA_ENDPOINT
from ..providers.base import ModelKind
from ..providers.ollama import classify_model
from ..utils.logging_config import get_logger
from .base import BaseInferenceEngine, EngineInitProgress, InitProgressCallback

logger = get_logger(__name__)

DEFAULT_KEEP_ALIVE = "30m"
# Loading a large model from disk into VRAM can take minutes.
_LOAD_TIMEOUT = httpx.Timeout(300.0, connect=10.0)


class OllamaEngine(BaseInferenceEngine):
    """Ollama-backed engine bound to one model at a time.

    ``load()`` warm-loads the model so it is ready for inference.
    ``reload()`` evicts the current model and warm-loads another one on the
    same HTTP/OpenAI clients. ``unload()`` evicts via ``keep_alive=0`` and
    closes the clients.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_OLLAMA_ENDPOINT,
        api_key: str = "",
        keep_alive: str = DEFAULT_KEEP_ALIVE,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            endpoint: Ollama API root (no ``/v1`` suffix).
            api_key: Optional bearer token for authenticated proxies.
            keep_alive: How long Ollama keeps the model resident after the
                last request (Ollama duration string).
            client: Pre-built HTTP client, mainly for tests.
        """
        self.model_id: Optional[str] = None
        self.keep_alive = keep_alive
        self._endpoint = endpoint.rstrip("/")
        self._api_key = api_key
        self._owns_client = client is None
        if client is None:
            headers = {"Content-Type": "application/json"}
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            client = httpx.AsyncClient(
                base_url=self._endpoint, headers=headers, timeout=_LOAD_TIMEOUT
            )
        self._client = client
        self._openai: Optional[AsyncOpenAI] = None

    @property
    def endpoint_url(self) -> str:
        """OpenAI-compatible root, e.g. ``http://localhost:11434/v1``."""
        return f"{self._endpoint}/v1"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _api_request(self, path: str, payload: dict) -> dict:
        """POST to the Ollama API and return the decoded JSON body."""
        response = await self._client.post(path, json=payload)
        if response.is_error:
            try:
                detail = response.json().get("error") or response.text
            except ValueError:
                detail = response.text
            raise RuntimeError(
                f"Ollama {path} returned HTTP {response.status_code}: {detail}"
            )
        return response.json() if response.content else {}

    async def _warm_load(
        self, model_id: str, on_progress: Optional[InitProgressCallback]
    ) -> None:
        """Force Ollama to load the model into VRAM.

        Chat models get a minimal ``/api/chat`` request; embedding models
        cannot chat, so they get an ``/api/embed`` request with empty input.
        Ollama loads the model on first use; this call ensures it is
        resident before any real inference request arrives.
        """
        logger.info("[Ollama] Warm-loading model '%s' into VRAM ...", model_id)
        if on_progress:
            on_progress(EngineInitProgress(0.0, f"Loading {model_id} into memory"))
        t0 = time.time()
        if classify_model(model_id) == ModelKind.EMBEDDING:
            await self._api_request(
                "/api/embed",
                {"model": model_id, "input": "", "keep_alive": self.keep_alive},
            )
        else:
            await self._api_request(
                "/api/chat",
                {
                    "model": model_id,
                    "messages": [],
                    "keep_alive": self.keep_alive,
                    "stream": False,
                },
            )
        elapsed = time.time() - t0
        self.model_id = model_id
        if on_progress:
            on_progress(EngineInitProgress(1.0, f"{model_id} ready ({elapsed:.1f}s)"))
        logger.info("[Ollama] Model '%s' loaded in %.1fs.", model_id, elapsed)

    async def _evict(self, model_id: str) -> None:
        """Unload *model_id* from VRAM via ``keep_alive: 0``."""
        await self._api_request(
            "/api/chat",
            {
                "model": model_id,
                "messages": [],
                "keep_alive": 0,
                "stream": False,
            },
        )
        logger.info("[Ollama] Unloaded model '%s'.", model_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(
        self, model_id: str, on_progress: Optional[InitProgressCallback] = None
    ) -> None:
        await self._warm_load(model_id, on_progress)

    async def reload(
        self, model_id: str, on_progress: Optional[InitProgressCallback] = None
    ) -> None:
        previous = self.model_id
        if previous is not None and previous != model_id:
            await self._evict(previous)
            self.model_id = None
        await self._warm_load(model_id, on_progress)

    async def unload(self) -> None:
        try:
            if self.model_id is not None:
                await self._evict(self.model_id)
        finally:
            self.model_id = None
            await self.close()

    async def close(self) -> None:
        """Close the HTTP and OpenAI clients without touching VRAM."""
        if self._openai is not None:
            await self._openai.close()
            self._openai = None
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    @property
    def openai_client(self) -> AsyncOpenAI:
        """Lazily created OpenAI-compatible client pointed at ``/v1``."""
        if self._openai is None:
            self._openai = AsyncOpenAI(
                base_url=self.endpoint_url, api_key=self._api_key or "not-needed"
            )
        return self._openai

    def _require_model(self) -> str:
        if self.model_id is None:
            raise RuntimeError("No model loaded. Activate a model first.")
        return self.model_id

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        **kwargs: Any,
    ) -> str:
        """Run one chat completion against the bound model and return the text."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        response = await self.openai_client.chat.completions.create(
            model=self._require_model(),
            messages=messages,
            temperature=temperature,
            **kwargs,
        )
        return response.choices[0].message.content or ""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* with the bound model, preserving input order."""
        response = await self.openai_client.embeddings.create(
            model=self._require_model(), input=texts
        )
        return [item.embedding for item in sorted(response.data, key=lambda e: e.index)]


class OllamaEngineFactory:
    """``EngineFactory`` that creates warm-loaded ``OllamaEngine`` instances."""

    def __init__(
        self,
        endpoint: str = DEFAULT_OLLAMA_ENDPOINT,
        api_key: str = "",
        keep_alive: str = DEFAULT_KEEP_ALIVE,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.keep_alive = keep_alive

    def build(self) -> OllamaEngine:
        return OllamaEngine(self.endpoint, self.api_key, self.keep_alive)

    async def __call__(
        self, model_id: str, on_progress: Optional[InitProgressCallback] = None
    ) -> OllamaEngine:
        engine = self.build()
        try:
            await engine.load(model_id, on_progress)
        except BaseException:
            await engine.close()
            raise
        return engine
