"""Shared read-recompute-write cycle over a RowStore.

Every engine mutation follows the same shape: read the row (creating it on
first access), recompute from the row and the current instant, then write
back guarded by the row version. A lost race repeats the whole cycle from a
fresh read; nothing is cached between attempts.
"""

import logging
from typing import Callable, TypeVar

from .config import MAX_CONFLICT_RETRIES
from .errors import ConcurrentModification
from .interfaces import RowStore
from .models import Row

logger = logging.getLogger(__name__)

T = TypeVar('T')


class VersionConflict(Exception):
    """Raised inside a cycle when a conditional update loses a race."""


class Ledger:
    """Versioned access to one user's rows."""

    def __init__(self, store: RowStore, max_attempts: int = MAX_CONFLICT_RETRIES):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.max_attempts = max_attempts

    def load(self, user_id: str, key: str, default: Callable[[], dict]) -> Row:
        """Get a row, creating it from default() if absent."""
        row = self.store.get(user_id, key)
        if row is not None:
            return row
        fields = default()
        if self.store.conditional_update(user_id, key, 0, fields):
            logger.info(f"Initialized {key} for {user_id}")
            return Row(key, fields, 1)
        # Another writer created it between our read and insert
        row = self.store.get(user_id, key)
        if row is None:
            raise VersionConflict(f"{key} vanished after concurrent creation")
        return row

    def write(self, user_id: str, row: Row, fields: dict) -> Row:
        """Write fields over row if nobody else has written since it was read."""
        if not self.store.conditional_update(user_id, row.key, row.version, fields):
            raise VersionConflict(f"{row.key} changed since version {row.version}")
        return Row(row.key, fields, row.version + 1)

    def run(self, description: str, cycle: Callable[[], T]) -> T:
        """Run cycle, repeating it on version conflicts up to max_attempts times."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return cycle()
            except VersionConflict as e:
                logger.warning(f"{description}: attempt {attempt}/{self.max_attempts} lost a race ({e})")
        raise ConcurrentModification(
            f"{description} still conflicting after {self.max_attempts} attempts"
        )
