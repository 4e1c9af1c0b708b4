"""Skill mastery: strength that decays without practice and rises with it."""

import logging
import math
import uuid
from datetime import datetime, timedelta

from .config import (
    MIN_STRENGTH, MAX_STRENGTH, DEFAULT_DECAY_RATE_PER_DAY, DEFAULT_PRACTICE_INTERVAL_HOURS,
    PRACTICE_BASE_INCREASE, SPEED_BONUS_MAX, SPEED_BONUS_WINDOW_SECONDS, MISTAKE_PENALTY,
    WEAK_SKILL_THRESHOLD, MAX_CONFLICT_RETRIES, SKILL_KEY_PREFIX, PRACTICE_KEY_PREFIX
)
from .interfaces import Clock, RowStore
from .ledger import Ledger
from .models import PracticeResult, Row, SkillMasteryState, SkillSummary
from .utils import whole_days

logger = logging.getLogger(__name__)


def decay(state: SkillMasteryState, now: datetime) -> SkillMasteryState:
    """Return the state as of now. Only strength changes.

    Decay is measured in whole days from the last practice, so reading the
    same state twice at the same instant yields the same strength.
    """
    result = state.copy()
    days = whole_days(now - state.last_practiced_at)
    decayed = max(MIN_STRENGTH, state.practiced_strength - days * state.decay_rate_per_day)
    result.strength = min(state.strength, decayed)
    return result


def speed_bonus(time_spent_seconds: float) -> int:
    """Up to SPEED_BONUS_MAX points, shrinking linearly to zero at the window's end."""
    fraction = max(0.0, 1 - time_spent_seconds / SPEED_BONUS_WINDOW_SECONDS)
    return math.floor(SPEED_BONUS_MAX * fraction)


def mistake_penalty(mistakes: int) -> int:
    return MISTAKE_PENALTY * mistakes


def strength_increase(strength: int, time_spent_seconds: float, mistakes: int) -> int:
    raw = PRACTICE_BASE_INCREASE + speed_bonus(time_spent_seconds) - mistake_penalty(mistakes)
    return min(MAX_STRENGTH - strength, max(0, raw))


def skill_key(skill_id: str) -> str:
    return f"{SKILL_KEY_PREFIX}{skill_id}"


def practice_key(skill_id: str, session_id: str) -> str:
    return f"{PRACTICE_KEY_PREFIX}{skill_id}:{session_id}"


def due_order(state: SkillMasteryState) -> tuple:
    """Weakest first, then longest overdue, then by id."""
    return (state.strength, state.next_due_at, state.skill_id)


class MasteryEngine:
    """Tracks per-skill strength for each user."""

    def __init__(self, store: RowStore, clock: Clock,
                 decay_rate_per_day: int = DEFAULT_DECAY_RATE_PER_DAY,
                 practice_interval: timedelta = timedelta(hours=DEFAULT_PRACTICE_INTERVAL_HOURS),
                 max_attempts: int = MAX_CONFLICT_RETRIES):
        self.store = store
        self.ledger = Ledger(store, max_attempts)
        self.clock = clock
        self.decay_rate_per_day = decay_rate_per_day
        self.practice_interval = practice_interval

    def _load(self, user_id: str, skill_id: str, now: datetime) -> tuple[Row, SkillMasteryState]:
        def default() -> dict:
            return SkillMasteryState(
                skill_id, MAX_STRENGTH, MAX_STRENGTH, now, now + self.practice_interval,
                self.decay_rate_per_day, self.practice_interval
            ).to_dict()
        row = self.ledger.load(user_id, skill_key(skill_id), default)
        return row, SkillMasteryState.from_dict(row.fields)

    def _refresh(self, user_id: str, skill_id: str, now: datetime) -> SkillMasteryState:
        def cycle() -> SkillMasteryState:
            row, stored = self._load(user_id, skill_id, now)
            state = decay(stored, now)
            if state.strength != stored.strength:
                self.ledger.write(user_id, row, state.to_dict())
                logger.info(f"Skill {skill_id} for {user_id} decayed {stored.strength} -> {state.strength}")
            return state

        return self.ledger.run(f"get_strength {skill_id} for {user_id}", cycle)

    def get_strength(self, user_id: str, skill_id: str) -> SkillMasteryState:
        return self._refresh(user_id, skill_id, self.clock.now())

    def record_practice(self, user_id: str, skill_id: str, score: int,
                        time_spent_seconds: float, mistakes: int,
                        session_id: str = None) -> PracticeResult:
        """Apply a finished practice session and keep an audit record of it.

        The audit row is written before the skill row, and the skill row
        remembers the session that last changed it. Retrying a failed call
        with the same session_id therefore applies the increase at most once.
        """
        if not 0 <= score <= 100:
            raise ValueError(f"Score must be between 0 and 100, got {score}")
        if time_spent_seconds < 0:
            raise ValueError(f"Time spent cannot be negative, got {time_spent_seconds}")
        if mistakes < 0:
            raise ValueError(f"Mistakes cannot be negative, got {mistakes}")

        now = self.clock.now()
        session_id = session_id or uuid.uuid4().hex
        key = practice_key(skill_id, session_id)

        def cycle() -> tuple[PracticeResult, bool]:
            row, stored = self._load(user_id, skill_id, now)
            if stored.last_session_id == session_id:
                audit = self.store.get(user_id, key)
                if audit is not None:
                    return PracticeResult.from_dict(audit.fields), False
            state = decay(stored, now)
            before = state.strength
            state.strength += strength_increase(before, time_spent_seconds, mistakes)
            state.practiced_strength = state.strength
            state.last_practiced_at = max(now, stored.last_practiced_at)
            state.next_due_at = state.last_practiced_at + state.practice_interval
            state.last_session_id = session_id
            result = PracticeResult(session_id, skill_id, score, time_spent_seconds, mistakes,
                                    before, state.strength, now)
            self.store.upsert(user_id, key, result.to_dict())
            self.ledger.write(user_id, row, state.to_dict())
            return result, True

        result, applied = self.ledger.run(f"record_practice {skill_id} for {user_id}", cycle)
        if applied:
            logger.info(f"{user_id} practiced {skill_id}: score={score}, "
                        f"strength {result.strength_before} -> {result.strength}")
        else:
            logger.info(f"Session {session_id} for {user_id} already applied to {skill_id}")
        return result

    def _all_skills(self, user_id: str) -> list[SkillMasteryState]:
        """Every skill of the user, with decay persisted as of the clock."""
        now = self.clock.now()
        rows = self.store.list_rows(user_id, SKILL_KEY_PREFIX)
        return [self._refresh(user_id, row.key[len(SKILL_KEY_PREFIX):], now) for row in rows]

    def list_due(self, user_id: str, now: datetime = None) -> list[SkillMasteryState]:
        """Skills due for practice at now, weakest and longest overdue first.

        A now ahead of the clock is a preview: strengths are projected to it
        but only decay up to the clock is stored.
        """
        now = now or self.clock.now()
        projected = [decay(s, now) for s in self._all_skills(user_id)]
        due = [s for s in projected if s.next_due_at <= now]
        return sorted(due, key=due_order)

    def skill_summary(self, user_id: str) -> SkillSummary:
        states = self._all_skills(user_id)
        if not states:
            return SkillSummary(0, 0.0, 0, 0)
        strengths = [s.strength for s in states]
        return SkillSummary(
            total_skills=len(states),
            average_strength=sum(strengths) / len(strengths),
            needing_practice=sum(1 for s in strengths if s < WEAK_SKILL_THRESHOLD),
            perfect=sum(1 for s in strengths if s == MAX_STRENGTH),
        )

    def practice_history(self, user_id: str, skill_id: str) -> list[PracticeResult]:
        rows = self.store.list_rows(user_id, practice_key(skill_id, ''))
        results = [PracticeResult.from_dict(row.fields) for row in rows]
        return sorted(results, key=lambda r: (r.completed_at, r.session_id))
