"""Regeneration engine for hearts and other capped, slowly refilling counters."""

import logging
from datetime import datetime, timedelta

from .config import (
    DEFAULT_MAX_HEARTS, DEFAULT_HEART_REGEN_MINUTES, MIN_REGEN_PERIOD_SECONDS,
    MAX_CONFLICT_RETRIES
)
from .errors import InsufficientResource
from .interfaces import Clock, RowStore
from .ledger import Ledger
from .models import ResourceState, Row

logger = logging.getLogger(__name__)


def regenerate(state: ResourceState, now: datetime) -> ResourceState:
    """Return the state as of now. Pure; the input is not modified.

    Whole regeneration periods since last_update become units, capped at
    what is missing. last_update advances by exactly the periods consumed so
    the partial progress toward the next unit carries over; once the counter
    is full it snaps to now.
    """
    result = state.copy()
    elapsed = now - state.last_update
    if elapsed < timedelta(0):
        # Clock skew: keep what is stored rather than risk losing units
        return result
    if state.is_full:
        result.last_update = now
        return result

    units = min(elapsed // state.regen_period, state.max - state.current)
    if units <= 0:
        return result

    result.current = state.current + units
    if result.is_full:
        result.last_update = now
    else:
        result.last_update = state.last_update + state.regen_period * units
    return result


class HeartsEngine:
    """Lazily recomputed, rate-limited counters (hearts, energy)."""

    def __init__(self, store: RowStore, clock: Clock,
                 max_units: int = DEFAULT_MAX_HEARTS,
                 regen_period: timedelta = timedelta(minutes=DEFAULT_HEART_REGEN_MINUTES),
                 max_attempts: int = MAX_CONFLICT_RETRIES):
        self.ledger = Ledger(store, max_attempts)
        self.clock = clock
        self.max_units = max_units
        self.regen_period = max(regen_period, timedelta(seconds=MIN_REGEN_PERIOD_SECONDS))

    def _load(self, user_id: str, resource_key: str, now: datetime) -> tuple[Row, ResourceState]:
        def default() -> dict:
            return ResourceState(resource_key, self.max_units, self.max_units,
                                 now, self.regen_period).to_dict()
        row = self.ledger.load(user_id, resource_key, default)
        return row, ResourceState.from_dict(row.fields)

    def get_state(self, user_id: str, resource_key: str) -> ResourceState:
        """Current state of the counter, persisting any regenerated units."""
        now = self.clock.now()

        def cycle() -> ResourceState:
            row, stored = self._load(user_id, resource_key, now)
            state = regenerate(stored, now)
            if state.current != stored.current:
                self.ledger.write(user_id, row, state.to_dict())
                logger.info(f"{user_id} regenerated {state.current - stored.current} {resource_key} "
                            f"({stored.current} -> {state.current})")
            return state

        return self.ledger.run(f"get_state {resource_key} for {user_id}", cycle)

    def consume(self, user_id: str, resource_key: str) -> ResourceState:
        """Spend one unit. Raises InsufficientResource at zero without writing."""
        now = self.clock.now()

        def cycle() -> ResourceState:
            row, stored = self._load(user_id, resource_key, now)
            state = regenerate(stored, now)
            if state.current <= 0:
                raise InsufficientResource(resource_key, state.next_unit_at)
            state.current -= 1
            self.ledger.write(user_id, row, state.to_dict())
            return state

        return self.ledger.run(f"consume {resource_key} for {user_id}", cycle)

    def refill_full(self, user_id: str, resource_key: str) -> ResourceState:
        """Top the counter up to max, e.g. after a purchase or reward."""
        now = self.clock.now()

        def cycle() -> ResourceState:
            row, stored = self._load(user_id, resource_key, now)
            state = stored.copy()
            state.current = state.max
            state.last_update = max(now, stored.last_update)
            self.ledger.write(user_id, row, state.to_dict())
            return state

        state = self.ledger.run(f"refill {resource_key} for {user_id}", cycle)
        logger.info(f"Refilled {resource_key} for {user_id} to {state.max}")
        return state

    def increase_capacity(self, user_id: str, resource_key: str, amount: int,
                          fill: bool = True) -> ResourceState:
        """Raise max by amount. With fill, current rises by the same amount."""
        if amount < 1:
            raise ValueError(f"Capacity increase must be positive, got {amount}")
        now = self.clock.now()

        def cycle() -> ResourceState:
            row, stored = self._load(user_id, resource_key, now)
            state = regenerate(stored, now)
            state.max += amount
            if fill:
                state.current += amount
            self.ledger.write(user_id, row, state.to_dict())
            return state

        return self.ledger.run(f"increase_capacity {resource_key} for {user_id}", cycle)

    def adjust_regen_rate(self, user_id: str, resource_key: str, delta: timedelta) -> ResourceState:
        """Lengthen (positive delta) or shorten (negative delta) the regen period.

        Units earned at the old rate are settled first. The period never
        drops below one minute.
        """
        now = self.clock.now()
        floor = timedelta(seconds=MIN_REGEN_PERIOD_SECONDS)

        def cycle() -> ResourceState:
            row, stored = self._load(user_id, resource_key, now)
            state = regenerate(stored, now)
            state.regen_period = max(floor, state.regen_period + delta)
            self.ledger.write(user_id, row, state.to_dict())
            return state

        return self.ledger.run(f"adjust_regen_rate {resource_key} for {user_id}", cycle)
