"""
Provider Factory - Creates model source instances by name.

This factory enables dynamic source creation and switching without
needing to import source classes directly.
"""

from typing import Optional

from ..config import Config, ProviderConfig
from .base import BaseModelSource
from .ollama import OllamaModelSource
from .openai_source import OpenAIModelSource


class ProviderFactory:
    """
    Factory for creating model source instances.

    Usage:
        # From config
        factory = ProviderFactory()
        source = factory.create_from_config("ollama")

        # With explicit config
        provider_config = ProviderConfig(name="ollama", endpoint="http://gpu-box:11434")
        source = factory.create("ollama", provider_config)
    """

    def __init__(self, config: Optional[Config] = None):
        """
        Initialize the factory.

        Args:
            config: Optional Config instance. If not provided, creates a new one.
        """
        self.config = config or Config()

    def create(
        self,
        provider_name: str,
        provider_config: ProviderConfig,
    ) -> BaseModelSource:
        """
        Create a source instance from a ProviderConfig.

        Args:
            provider_name: Name of provider ('ollama', 'openai')
            provider_config: ProviderConfig instance with endpoint and credentials

        Returns:
            BaseModelSource instance

        Raises:
            ValueError: If provider_name is unknown
        """
        provider_name = provider_name.lower()

        if provider_name == "ollama":
            return OllamaModelSource.from_config(provider_config)
        elif provider_name == "openai":
            return OpenAIModelSource.from_config(provider_config)
        else:
            available = self.get_available_providers()
            raise ValueError(
                f"Unknown provider: {provider_name}. "
                f"Available providers: {', '.join(available)}"
            )

    def create_from_config(self, provider_name: str) -> BaseModelSource:
        """
        Create a source instance from application configuration.

        Args:
            provider_name: Name of provider ('ollama', 'openai')

        Returns:
            BaseModelSource instance

        Raises:
            ValueError: If provider_name is unknown or not configured
        """
        provider_config = self.config.get_provider_config(provider_name)
        return self.create(provider_name, provider_config)

    async def list_provider_models(self, provider_name: str) -> list:
        """Create a source, fetch its catalog and close it again."""
        source = self.create_from_config(provider_name)
        async with source:
            return await source.list_models()

    @staticmethod
    def get_available_providers() -> list[str]:
        """
        Return list of supported provider names.

        Returns:
            List of provider names that can be created by this factory
        """
        return ["ollama", "openai"]

    def get_configured_providers(self) -> list[str]:
        """
        Return list of providers that are configured and ready to use.
        """
        return self.config.get_available_providers()
