"""
Ollama model source.

Talks to the Ollama REST API:

- ``GET  /api/tags``    installed models (also used as a health probe)
- ``POST /api/pull``    streaming NDJSON download progress
- ``DELETE /api/delete`` remove an installed model

The catalog is the installed list merged with a short list of recommended
chat and embedding models, so the caller can offer "click to install" entries.

Typical usage:

    async with OllamaModelSource("http://localhost:11434") as source:
        models = await source.list_models()
        async for event in source.pull("nomic-embed-text"):
            print(event.status, event.completed, event.total)
"""

from typing import Any, Iterable, Optional

import httpx

from ..config import DEFAULT_OLLAMA_ENDPOINT, ProviderConfig
from ..utils.logging_config import get_logger
from .base import BaseModelSource, ModelDescriptor, ModelKind

logger = get_logger(__name__)

# Curated models offered for installation when they are not installed yet.
RECOMMENDED_CHAT_MODELS = [
    "llama3",
    "llama3:8b",
    "phi3",
    "mistral",
    "gemma:2b",
    "gemma:7b",
    "neural-chat",
    "starling-lm",
    "codellama",
]

RECOMMENDED_EMBEDDING_MODELS = [
    "nomic-embed-text",
    "mxbai-embed-large",
    "all-minilm",
]

_EMBEDDING_NAME_MARKERS = ("embed", "bert")
_EMBEDDING_FAMILIES = {"bert", "nomic-bert", "embedding"}

# Non-streaming calls get a normal timeout; pulls rely on stall detection.
_REQUEST_TIMEOUT = httpx.Timeout(30.0)
_PULL_TIMEOUT = httpx.Timeout(30.0, read=None)


def normalize_model_name(name: str) -> str:
    """Strip the tag so ``llama3:latest`` and ``llama3`` compare equal."""
    return name.split(":", 1)[0]


def classify_model(name: str, families: Optional[Iterable[str]] = None) -> ModelKind:
    """Decide whether *name* is an embedding or a chat model."""
    lowered = name.lower()
    if any(marker in lowered for marker in _EMBEDDING_NAME_MARKERS):
        return ModelKind.EMBEDDING
    if families and _EMBEDDING_FAMILIES.intersection(f.lower() for f in families):
        return ModelKind.EMBEDDING
    return ModelKind.CHAT


class OllamaModelSource(BaseModelSource):
    """Model source backed by a local or remote Ollama server."""

    supports_pull = True

    def __init__(
        self,
        endpoint: str = DEFAULT_OLLAMA_ENDPOINT,
        api_key: str = "",
        provider_label: str = "ollama",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Args:
            endpoint: Ollama API root (no ``/api`` suffix).
            api_key: Optional bearer token for authenticated proxies.
            provider_label: Name returned by ``get_provider_name()``.
            client: Pre-built HTTP client (tests inject one backed by
                ``httpx.MockTransport``). Owned by the caller when given.
        """
        self.endpoint = endpoint.rstrip("/")
        self._provider_label = provider_label
        self._owns_client = client is None
        if client is None:
            headers = {"Content-Type": "application/json"}
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            client = httpx.AsyncClient(
                base_url=self.endpoint, headers=headers, timeout=_REQUEST_TIMEOUT
            )
        self._client = client

    @classmethod
    def from_config(cls, provider_config: ProviderConfig) -> "OllamaModelSource":
        return cls(
            endpoint=provider_config.endpoint or DEFAULT_OLLAMA_ENDPOINT,
            api_key=provider_config.api_key,
            provider_label=provider_config.name,
        )

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._client

    def get_provider_name(self) -> str:
        return self._provider_label

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        try:
            response = await self._client.get("/api/tags")
        except httpx.HTTPError:
            return False
        return response.is_success

    async def list_installed(self) -> list[dict[str, Any]]:
        """Return the raw ``/api/tags`` entries."""
        response = await self._client.get("/api/tags")
        response.raise_for_status()
        return list(response.json().get("models") or [])

    async def list_models(self) -> list[ModelDescriptor]:
        installed = [self._descriptor_from_tag(m) for m in await self.list_installed()]
        installed_names = {normalize_model_name(m.id) for m in installed}

        catalog = list(installed)
        recommendations = [
            (name, ModelKind.CHAT) for name in RECOMMENDED_CHAT_MODELS
        ] + [
            (name, ModelKind.EMBEDDING) for name in RECOMMENDED_EMBEDDING_MODELS
        ]
        for name, kind in recommendations:
            base_name = normalize_model_name(name)
            if base_name in installed_names:
                continue
            installed_names.add(base_name)
            catalog.append(
                ModelDescriptor(
                    id=name,
                    kind=kind,
                    provider=self._provider_label,
                    installed=False,
                    name=f"{name} (Click to Install)",
                    details={"recommended": True},
                )
            )

        logger.debug(
            "[Ollama] Catalog: %d installed, %d total", len(installed), len(catalog)
        )
        return catalog

    def _descriptor_from_tag(self, tag: dict[str, Any]) -> ModelDescriptor:
        name = tag.get("name") or tag.get("model") or ""
        details = tag.get("details") or {}
        parameter_size = details.get("parameter_size") or "Unknown"
        return ModelDescriptor(
            id=name,
            kind=classify_model(name, details.get("families") or []),
            provider=self._provider_label,
            installed=True,
            name=f"{name} ({parameter_size})",
            size_bytes=tag.get("size"),
            details={
                "digest": tag.get("digest"),
                "family": details.get("family"),
                "families": details.get("families") or [],
                "quantization_level": details.get("quantization_level"),
            },
        )

    # ------------------------------------------------------------------
    # Pull / delete
    # ------------------------------------------------------------------

    def build_pull_request(self, model_id: str) -> httpx.Request:
        return self._client.build_request(
            "POST",
            "/api/pull",
            json={"model": model_id, "stream": True},
            timeout=_PULL_TIMEOUT,
        )

    async def delete(self, model_id: str) -> bool:
        try:
            response = await self._client.request(
                "DELETE", "/api/delete", json={"model": model_id}
            )
        except httpx.HTTPError as exc:
            logger.warning("[Ollama] Failed to delete model '%s': %s", model_id, exc)
            return False
        if not response.is_success:
            logger.warning(
                "[Ollama] Delete of '%s' returned HTTP %s",
                model_id,
                response.status_code,
            )
            return False
        logger.info("[Ollama] Deleted model '%s'.", model_id)
        return True
