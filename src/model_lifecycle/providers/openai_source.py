"""
OpenAI model source.

Lists models through the vanilla ``AsyncOpenAI`` client with a configurable
``base_url``, so it also works with any endpoint that implements the OpenAI
``/models`` route. Remote models need no download, so every entry is reported
as installed and pull/delete are not supported.
"""

from typing import Optional

from openai import AsyncOpenAI

from ..config import ProviderConfig
from ..utils.logging_config import get_logger
from .base import BaseModelSource, ModelDescriptor, ModelKind

logger = get_logger(__name__)


class OpenAIModelSource(BaseModelSource):
    """Catalog-only source for OpenAI-protocol endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        provider_label: str = "openai",
    ) -> None:
        """
        Args:
            api_key: API key / bearer token.
            base_url: Optional endpoint override (``None`` uses OpenAI).
            provider_label: Name returned by ``get_provider_name()``.
        """
        self._provider_label = provider_label
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        logger.info(
            "Initialized OpenAIModelSource (base_url=%s, label=%s)",
            base_url or "default",
            provider_label,
        )

    @classmethod
    def from_config(cls, provider_config: ProviderConfig) -> "OpenAIModelSource":
        return cls(
            api_key=provider_config.api_key,
            base_url=provider_config.endpoint,
            provider_label=provider_config.name,
        )

    def get_provider_name(self) -> str:
        return self._provider_label

    async def list_models(self) -> list[ModelDescriptor]:
        page = await self._client.models.list()
        models = []
        for model in page.data:
            kind = ModelKind.EMBEDDING if "embedding" in model.id else ModelKind.CHAT
            models.append(
                ModelDescriptor(
                    id=model.id,
                    kind=kind,
                    provider=self._provider_label,
                    installed=True,
                    name=model.id,
                    details={"owned_by": getattr(model, "owned_by", None)},
                )
            )
        return sorted(models, key=lambda m: m.id)

    async def close(self) -> None:
        await self._client.close()
