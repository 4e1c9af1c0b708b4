"""Abstract base classes for dependency injection."""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import Row


class Clock(ABC):
    """Abstract base class for the wall-clock time source."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current instant as a timezone-aware UTC datetime."""
        pass


class RowStore(ABC):
    """Abstract base class for the per-user keyed row store.

    Every successful write bumps the row version by one. Implementations
    raise StoreUnavailable for transport or IO failures.
    """

    @abstractmethod
    def load_config(self) -> dict:
        """Load engine overrides. Returns an empty dict when none are configured."""
        pass

    @abstractmethod
    def get(self, user_id: str, key: str) -> Row | None:
        """Get a row. Returns None if the row does not exist."""
        pass

    @abstractmethod
    def upsert(self, user_id: str, key: str, fields: dict) -> Row:
        """Write a row unconditionally. Returns the stored row."""
        pass

    @abstractmethod
    def conditional_update(self, user_id: str, key: str, expected_version: int,
                           fields: dict) -> bool:
        """Write a row only if its version equals expected_version.
        expected_version 0 means "create only if absent".
        Returns False when another writer got there first."""
        pass

    @abstractmethod
    def list_rows(self, user_id: str, prefix: str) -> list[Row]:
        """List a user's rows whose key starts with prefix, ordered by key."""
        pass

    def list_users(self) -> list[str]:
        """List user IDs with stored rows. Stores that cannot enumerate return []."""
        return []
