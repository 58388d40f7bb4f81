"""
Model Lifecycle - Core Package

Acquisition and lifecycle management for externally hosted AI models.

This package provides:
- Model source abstraction over providers (Ollama, OpenAI-compatible)
- Streaming downloads with aggregated progress, retries and cancellation
- A single managed inference engine with reload/recreate activation
- A cached registry of which models are installed
"""

__version__ = "0.1.0"

from .acquisition import AcquisitionController, CancellationToken, PullProgress
from .engine import EngineLifecycleManager
from .errors import (
    AcquisitionCancelled,
    AcquisitionError,
    EngineCreationFailed,
    ExhaustedRetries,
    ModelLifecycleError,
)
from .services import ModelLifecycleService, ModelRegistry

__all__ = [
    "AcquisitionController",
    "CancellationToken",
    "PullProgress",
    "EngineLifecycleManager",
    "AcquisitionCancelled",
    "AcquisitionError",
    "EngineCreationFailed",
    "ExhaustedRetries",
    "ModelLifecycleError",
    "ModelLifecycleService",
    "ModelRegistry",
]
