"""
Business Logic Layer (Services)

Services sit between the provider/engine layers and the application:

- ModelRegistry: cached catalogs and installed flags
- ModelLifecycleService: install, delete, cancel and activate models
"""

from .lifecycle_service import ModelLifecycleService
from .model_registry import ModelRegistry

__all__ = [
    "ModelLifecycleService",
    "ModelRegistry",
]
