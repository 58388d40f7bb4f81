"""
Model Source Abstraction Layer

This package provides a unified interface over the backends that host
models (Ollama, OpenAI-compatible endpoints, ...).

All sources implement the BaseModelSource interface and describe their
catalog with ModelDescriptor objects.
"""

from .base import BaseModelSource, ModelDescriptor, ModelKind
from .factory import ProviderFactory
from .ollama import OllamaModelSource
from .openai_source import OpenAIModelSource

__all__ = [
    "BaseModelSource",
    "ModelDescriptor",
    "ModelKind",
    "ProviderFactory",
    "OllamaModelSource",
    "OpenAIModelSource",
]
