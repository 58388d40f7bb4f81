"""
Error taxonomy for model acquisition and engine lifecycle.

Only a subset of these cross component boundaries:

- Acquisition: ``TransportError`` and ``StallTimeout`` are retried inside
  ``AcquisitionController``; callers only ever see ``AcquisitionCancelled``,
  ``ExhaustedRetries`` or ``DuplicateAcquisition``.
- Engine: ``EngineReloadFailed`` triggers the recreate fallback inside
  ``EngineLifecycleManager``; callers only ever see ``EngineCreationFailed``.

Every error carries a ``user_message`` suitable for display.
"""

from typing import Optional


class ModelLifecycleError(Exception):
    """Base class for all errors raised by this package."""

    @property
    def user_message(self) -> str:
        return str(self)


class TransportError(ModelLifecycleError):
    """Network or protocol failure while streaming a download. Retryable."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class StallTimeout(ModelLifecycleError):
    """No progress record arrived within the stall window. Retryable."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"Download stalled: no progress for {timeout:g}s")
        self.timeout = timeout
        self.reason = str(self)


# Errors the acquisition controller recovers from by retrying.
RETRYABLE_ERRORS = (TransportError, StallTimeout)


class AcquisitionError(ModelLifecycleError):
    """Base class for acquisition errors that reach the caller."""


class AcquisitionCancelled(AcquisitionError):
    """The user cancelled the download. Never retried."""

    def __init__(self, model_id: Optional[str] = None) -> None:
        message = "Download cancelled"
        if model_id:
            message = f"Download of '{model_id}' cancelled"
        super().__init__(message)
        self.model_id = model_id


class ExhaustedRetries(AcquisitionError):
    """Every attempt failed with a retryable error."""

    def __init__(self, model_id: str, attempts: int, last_reason: str) -> None:
        super().__init__(
            f"Failed to download '{model_id}' after {attempts} attempts: {last_reason}"
        )
        self.model_id = model_id
        self.attempts = attempts
        self.last_reason = last_reason


class DuplicateAcquisition(AcquisitionError):
    """A download of the same model is already in flight."""

    def __init__(self, model_id: str) -> None:
        super().__init__(f"A download of '{model_id}' is already in progress")
        self.model_id = model_id


class EngineCreationFailed(ModelLifecycleError):
    """The engine could not be created for the requested model."""

    def __init__(self, model_id: str, reason: str) -> None:
        super().__init__(f"Failed to create engine for '{model_id}': {reason}")
        self.model_id = model_id
        self.reason = reason

    @property
    def user_message(self) -> str:
        return f"Model '{self.model_id}' failed to load, please retry."


class EngineReloadFailed(ModelLifecycleError):
    """In-place reload failed. Internal to ``EngineLifecycleManager``."""

    def __init__(self, model_id: str, reason: str) -> None:
        super().__init__(f"Reload to '{model_id}' failed: {reason}")
        self.model_id = model_id
        self.reason = reason


class ProviderNotSupported(ModelLifecycleError):
    """The provider cannot perform the requested operation."""
