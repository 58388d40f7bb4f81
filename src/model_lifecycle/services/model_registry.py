"""
Model Registry Service

Keeps a cached, up-to-date catalog of models per provider, including which
ones are installed. The lifecycle service reads it to decide whether a model
must be downloaded, and updates it after successful installs and deletions.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..config import config as default_config
from ..providers.base import ModelDescriptor, ModelKind
from ..providers.factory import ProviderFactory
from ..providers.ollama import classify_model
from ..utils.logging_config import get_logger

if TYPE_CHECKING:
    from ..providers.base import BaseModelSource

logger = get_logger(__name__)

# Default cache TTL in seconds
DEFAULT_CACHE_TTL_SECONDS = 3600


def _canonical_model_id(model_id: str) -> str:
    """``llama3`` and ``llama3:latest`` name the same model."""
    return model_id if ":" in model_id else f"{model_id}:latest"


class ModelRegistry:
    """
    Cache and refresh model catalogs and installed flags per provider.
    """

    def __init__(
        self,
        factory: Optional[ProviderFactory] = None,
        sources: Optional[dict[str, "BaseModelSource"]] = None,
        cache_path: Optional[Path] = None,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        """
        Args:
            factory: Creates sources on demand for providers not in *sources*.
            sources: Already-open sources keyed by provider name.
            cache_path: JSON file holding the cached catalogs.
            ttl_seconds: Age after which a provider's catalog is refreshed.
        """
        if factory is None and not sources:
            factory = ProviderFactory(default_config)
        self.factory = factory
        self.sources = {name.lower(): src for name, src in (sources or {}).items()}
        self.ttl_seconds = ttl_seconds
        if cache_path is None:
            cache_path = default_config.registry.cache_path
        self.cache_path = Path(cache_path)

    def _load_cache(self) -> dict:
        if not self.cache_path.exists():
            return {"version": 1, "providers": {}}
        try:
            with self.cache_path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, json.JSONDecodeError):
            return {"version": 1, "providers": {}}

    def _write_cache(self, data: dict) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        with self.cache_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)

    def _is_stale(self, provider_data: dict) -> bool:
        updated_at = provider_data.get("updated_at")
        if not updated_at:
            return True
        try:
            parsed = datetime.fromisoformat(updated_at)
        except ValueError:
            return True
        age_seconds = (datetime.now(timezone.utc) - parsed).total_seconds()
        is_stale = age_seconds >= self.ttl_seconds
        if is_stale:
            logger.debug("Cache is stale (age: %.0fs, TTL: %ss)", age_seconds, self.ttl_seconds)
        return is_stale

    async def _fetch_catalog(self, provider_key: str) -> list[ModelDescriptor]:
        source = self.sources.get(provider_key)
        if source is not None:
            return await source.list_models()
        if self.factory is None:
            raise ValueError(f"No source registered for provider '{provider_key}'")
        return await self.factory.list_provider_models(provider_key)

    async def refresh_provider(self, provider_name: str) -> dict:
        cache = self._load_cache()
        provider_key = provider_name.lower()
        provider_data = cache["providers"].get(provider_key, {})

        try:
            models = await self._fetch_catalog(provider_key)
            provider_data = {
                "models": [m.to_dict() for m in sorted(models, key=lambda m: m.id)],
                "updated_at": datetime.now(timezone.utc).isoformat(),
                "error": None,
            }
            logger.info("[Registry] Refreshed '%s': %d models", provider_key, len(models))
        except Exception as exc:  # noqa: BLE001 - surface error in cache
            provider_data = {
                **provider_data,
                "updated_at": datetime.now(timezone.utc).isoformat(),
                "error": str(exc),
            }
            logger.warning("[Registry] Failed to refresh '%s': %s", provider_key, exc)

        cache["providers"][provider_key] = provider_data
        self._write_cache(cache)
        return provider_data

    async def list_models(
        self,
        provider_name: str = "ollama",
        refresh_if_stale: bool = True,
    ) -> list[ModelDescriptor]:
        cache = self._load_cache()
        provider_key = provider_name.lower()
        provider_data = cache["providers"].get(provider_key)

        if provider_data is None or (refresh_if_stale and self._is_stale(provider_data)):
            provider_data = await self.refresh_provider(provider_key)

        return [ModelDescriptor.from_dict(m) for m in provider_data.get("models", [])]

    async def refresh_all(self, provider_names: Optional[list[str]] = None) -> dict:
        if provider_names is None:
            if self.factory is not None:
                provider_names = self.factory.get_configured_providers()
            else:
                provider_names = sorted(self.sources)

        results = {}
        for provider_name in provider_names:
            results[provider_name] = await self.refresh_provider(provider_name)
        return results

    def list_models_sync(
        self,
        provider_name: str = "ollama",
        refresh_if_stale: bool = True,
    ) -> list[ModelDescriptor]:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.list_models(provider_name, refresh_if_stale))
        raise RuntimeError("list_models_sync called from a running event loop.")

    # ------------------------------------------------------------------
    # Installed flags
    # ------------------------------------------------------------------

    def get(self, model_id: str, provider_name: str = "ollama") -> Optional[ModelDescriptor]:
        """Return the cached descriptor for *model_id*, if any."""
        wanted = _canonical_model_id(model_id)
        provider_data = self._load_cache()["providers"].get(provider_name.lower(), {})
        for entry in provider_data.get("models", []):
            if _canonical_model_id(entry["id"]) == wanted:
                return ModelDescriptor.from_dict(entry)
        return None

    def is_installed(self, model_id: str, provider_name: str = "ollama") -> bool:
        descriptor = self.get(model_id, provider_name)
        return descriptor is not None and descriptor.installed

    def mark_installed(
        self,
        model_id: str,
        provider_name: str = "ollama",
        kind: Optional[ModelKind] = None,
    ) -> ModelDescriptor:
        return self._set_installed(model_id, provider_name, True, kind)

    def mark_uninstalled(self, model_id: str, provider_name: str = "ollama") -> ModelDescriptor:
        return self._set_installed(model_id, provider_name, False, None)

    def _set_installed(
        self,
        model_id: str,
        provider_name: str,
        installed: bool,
        kind: Optional[ModelKind],
    ) -> ModelDescriptor:
        cache = self._load_cache()
        provider_key = provider_name.lower()
        provider_data = cache["providers"].setdefault(provider_key, {"models": []})
        models = provider_data.setdefault("models", [])

        wanted = _canonical_model_id(model_id)
        entry = next(
            (m for m in models if _canonical_model_id(m["id"]) == wanted), None
        )
        if entry is None:
            descriptor = ModelDescriptor(
                id=model_id,
                kind=kind or classify_model(model_id),
                provider=provider_key,
                installed=installed,
                name=model_id,
            )
            models.append(descriptor.to_dict())
        else:
            entry["installed"] = installed
            if kind is not None:
                entry["kind"] = kind.value
            descriptor = ModelDescriptor.from_dict(entry)

        self._write_cache(cache)
        logger.info(
            "[Registry] Marked '%s' as %s (%s).",
            model_id,
            "installed" if installed else "not installed",
            provider_key,
        )
        return descriptor
