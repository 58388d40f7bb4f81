"""
Base classes for model source (provider) abstraction.

A model source is a backend that hosts models: it can list its catalog, and
depending on the backend it can download (pull) and delete models. The
acquisition layer only depends on this interface, so adding a backend means
implementing ``BaseModelSource`` and registering it in ``ProviderFactory``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

import httpx

from ..acquisition.progress import ProgressEvent
from ..acquisition.transport import CancellationToken, PullTransport
from ..errors import ProviderNotSupported


class ModelKind(Enum):
    """What a model is used for."""

    CHAT = "chat"
    EMBEDDING = "embedding"


@dataclass
class ModelDescriptor:
    """
    Provider-neutral description of a model in a catalog.

    Attributes:
        id: Identifier the provider expects (e.g. ``"llama3:8b"``)
        kind: Chat or embedding model
        provider: Name of the source that lists this model
        installed: Whether the model is available without downloading
        name: Human-readable label
        size_bytes: Size on disk, if known
        details: Provider-specific extras (family, quantization, ...)
    """
    id: str
    kind: ModelKind
    provider: str
    installed: bool = False
    name: Optional[str] = None
    size_bytes: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "provider": self.provider,
            "installed": self.installed,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelDescriptor":
        return cls(
            id=data["id"],
            kind=ModelKind(data.get("kind", ModelKind.CHAT.value)),
            provider=data.get("provider", ""),
            installed=bool(data.get("installed", False)),
            name=data.get("name"),
            size_bytes=data.get("size_bytes"),
            details=dict(data.get("details") or {}),
        )


class BaseModelSource(ABC):
    """
    Abstract base class for all model sources.

    Sources that can download models set ``supports_pull = True`` and
    implement ``build_pull_request``; the streaming itself is shared and
    lives in ``PullTransport``.
    """

    supports_pull: bool = False

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for this source (e.g. ``'ollama'``)."""

    @abstractmethod
    async def list_models(self) -> list[ModelDescriptor]:
        """Return the catalog with ``installed`` flags filled in."""

    @abstractmethod
    async def close(self) -> None:
        """Release any underlying resources (HTTP clients, etc.)."""

    # ------------------------------------------------------------------
    # Optional capabilities
    # ------------------------------------------------------------------

    async def is_available(self) -> bool:
        """Return ``True`` if the backend is reachable."""
        return True

    async def delete(self, model_id: str) -> bool:
        """Remove *model_id* from the backend. Returns ``True`` on success."""
        raise ProviderNotSupported(
            f"Provider '{self.get_provider_name()}' does not support deleting models"
        )

    def build_pull_request(self, model_id: str) -> httpx.Request:
        """Return the streaming request that downloads *model_id*."""
        raise ProviderNotSupported(
            f"Provider '{self.get_provider_name()}' does not support downloading models"
        )

    def pull(
        self,
        model_id: str,
        cancel_token: Optional[CancellationToken] = None,
        stall_timeout: float = 30.0,
    ) -> AsyncIterator[ProgressEvent]:
        """Open a new progress stream for one download attempt of *model_id*."""
        transport = PullTransport(self.http_client, stall_timeout=stall_timeout)
        return transport.stream(self.build_pull_request(model_id), cancel_token)

    @property
    def http_client(self) -> httpx.AsyncClient:
        raise ProviderNotSupported(
            f"Provider '{self.get_provider_name()}' has no streaming HTTP client"
        )

    # Context-manager support
    async def __aenter__(self) -> "BaseModelSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
