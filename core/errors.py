"""Failure taxonomy of the progress engine.

Only InsufficientResource, StoreUnavailable and ConcurrentModification
cross the engine boundary. Absent records are initialised lazily and
invariant violations are clamped, so neither reaches a caller.
"""

from datetime import datetime


class EngineError(Exception):
    """Base class for engine failures."""

    code = 'engine_error'
    retryable = False


class InsufficientResource(EngineError):
    """Consumption requested while the counter is at zero."""

    code = 'insufficient_resource'

    def __init__(self, resource_key: str, next_available_at: datetime | None = None):
        self.resource_key = resource_key
        self.next_available_at = next_available_at
        message = f"No {resource_key} left"
        if next_available_at is not None:
            message += f", next one at {next_available_at.isoformat()}"
        super().__init__(message)


class InvalidState(EngineError):
    """A stored value violates an invariant. Recovered by clamping."""

    code = 'invalid_state'


class StoreUnavailable(EngineError):
    """Transient persistence failure. Safe to retry."""

    code = 'store_unavailable'
    retryable = True


class ConcurrentModification(EngineError):
    """A conditional update kept losing races after all retries."""

    code = 'concurrent_modification'
    retryable = True
