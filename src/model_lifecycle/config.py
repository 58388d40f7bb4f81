"""
Configuration management for Model Lifecycle.

Loads configuration from environment variables (typically from a .env file).
Uses python-dotenv to load .env automatically.

Usage:
    from model_lifecycle.config import config

    # Access provider configs
    ollama_config = config.get_provider_config("ollama")

    # Access download / engine tuning
    retries = config.acquisition.max_retries
    delay = config.engine.settle_delay
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Look for .env in project root (parent of src/)
_env_path = Path(__file__).parent.parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


DEFAULT_OLLAMA_ENDPOINT = "http://localhost:11434"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class ProviderConfig:
    """Configuration for a specific model provider."""
    name: str
    endpoint: Optional[str] = None
    api_key: str = ""
    require_api_key: bool = False

    def __post_init__(self):
        """Validate that required fields are present."""
        if self.require_api_key and not self.api_key:
            raise ValueError(
                f"API key not set for {self.name} provider. "
                f"Please set the appropriate environment variable."
            )
        if self.endpoint:
            self.endpoint = self.endpoint.rstrip("/")


@dataclass
class AcquisitionConfig:
    """Download retry and stall-detection settings."""
    max_retries: int = 3
    stall_timeout: float = 30.0
    initial_wait: float = 2.0
    max_wait: float = 60.0

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.stall_timeout <= 0:
            raise ValueError("stall_timeout must be positive")


@dataclass
class EngineConfig:
    """Inference engine lifecycle settings."""
    settle_delay: float = 0.5


@dataclass
class RegistryConfig:
    """Model registry cache settings."""
    cache_path: Path = Path(".cache") / "model_registry.json"
    ttl_seconds: int = 3600


class Config:
    """
    Application configuration loaded from environment variables.

    Environment variables can be set:
    1. In a .env file in the project root
    2. In the system environment
    3. In a container/deployment environment
    """

    def __init__(self):
        """Load configuration from environment."""
        self.acquisition = AcquisitionConfig(
            max_retries=_env_int("MODEL_PULL_MAX_RETRIES", 3),
            stall_timeout=_env_float("MODEL_PULL_STALL_TIMEOUT", 30.0),
            initial_wait=_env_float("MODEL_PULL_INITIAL_WAIT", 2.0),
            max_wait=_env_float("MODEL_PULL_MAX_WAIT", 60.0),
        )
        self.engine = EngineConfig(
            settle_delay=_env_float("ENGINE_SETTLE_DELAY", 0.5),
        )
        self.registry = RegistryConfig(
            cache_path=Path(
                os.getenv("MODEL_REGISTRY_CACHE", "")
                or Path(".cache") / "model_registry.json"
            ),
            ttl_seconds=_env_int("MODEL_REGISTRY_TTL", 3600),
        )

        # Provider configurations (lazy-loaded to avoid requiring all keys)
        self._provider_configs = {}

    def get_provider_config(self, provider_name: str) -> ProviderConfig:
        """
        Get configuration for a specific provider.

        Args:
            provider_name: Name of provider ('ollama', 'openai')

        Returns:
            ProviderConfig with endpoint and credentials

        Raises:
            ValueError: If required environment variables are missing
        """
        provider_name = provider_name.lower()

        # Return cached config if already loaded
        if provider_name in self._provider_configs:
            return self._provider_configs[provider_name]

        if provider_name == "ollama":
            provider_config = ProviderConfig(
                name="ollama",
                endpoint=os.getenv("OLLAMA_ENDPOINT", DEFAULT_OLLAMA_ENDPOINT),
                api_key=os.getenv("OLLAMA_API_KEY", ""),
            )
        elif provider_name == "openai":
            provider_config = ProviderConfig(
                name="openai",
                endpoint=os.getenv("OPENAI_BASE_URL") or None,
                api_key=os.getenv("OPENAI_API_KEY", ""),
                require_api_key=True,
            )
        else:
            raise ValueError(f"Unknown provider: {provider_name}")

        # Cache for future use
        self._provider_configs[provider_name] = provider_config
        return provider_config

    def get_available_providers(self) -> list[str]:
        """
        Get list of providers whose configuration is complete.

        Returns:
            List of provider names that can be created
        """
        available = []
        for provider in ["ollama", "openai"]:
            try:
                self.get_provider_config(provider)
                available.append(provider)
            except ValueError:
                # API key not set - skip this provider
                pass
        return available


# Global config instance
config = Config()


def require_provider(provider_name: str) -> ProviderConfig:
    """
    Get provider config, raising helpful error if not configured.

    Args:
        provider_name: Name of provider to load

    Returns:
        ProviderConfig

    Raises:
        ValueError: With instructions on how to configure the provider
    """
    try:
        return config.get_provider_config(provider_name)
    except ValueError as e:
        raise ValueError(
            f"\n{'='*60}\n"
            f"Provider '{provider_name}' is not configured.\n\n"
            f"To use {provider_name}, set these environment variables:\n"
            f"{_get_provider_instructions(provider_name)}\n"
            f"You can set these in a .env file in the project root.\n"
            f"See .env.example for a template.\n"
            f"{'='*60}\n"
        ) from e


def _get_provider_instructions(provider_name: str) -> str:
    """Get environment variable instructions for a provider."""
    instructions = {
        "ollama": """
  OLLAMA_ENDPOINT=http://localhost:11434
  OLLAMA_API_KEY=optional-bearer-token
        """,
        "openai": """
  OPENAI_API_KEY=your-api-key
  OPENAI_BASE_URL=https://api.openai.com/v1
        """,
    }
    return instructions.get(provider_name, "  (Unknown provider)")
