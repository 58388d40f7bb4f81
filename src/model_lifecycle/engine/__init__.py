"""
Inference engine lifecycle.

Provides the ``BaseInferenceEngine`` interface, the Ollama-backed engine and
the ``EngineLifecycleManager`` that owns the single engine handle.
"""

from .base import BaseInferenceEngine, EngineFactory, EngineInitProgress
from .manager import EngineLifecycleManager, EngineState
from .ollama import OllamaEngine, OllamaEngineFactory

__all__ = [
    "BaseInferenceEngine",
    "EngineFactory",
    "EngineInitProgress",
    "EngineLifecycleManager",
    "EngineState",
    "OllamaEngine",
    "OllamaEngineFactory",
]
