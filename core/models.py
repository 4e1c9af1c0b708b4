"""Domain models for the progress engine."""

import logging
from datetime import date, datetime, timedelta

from .config import (
    MIN_STRENGTH, MAX_STRENGTH, MIN_REGEN_PERIOD_SECONDS, DEFAULT_DAILY_GOAL_XP
)
from .errors import InvalidState
from .utils import to_iso, parse_instant, parse_date

logger = logging.getLogger(__name__)


class Row:
    """A stored record: its key, JSON-serialisable fields and write version."""

    def __init__(self, key: str, fields: dict, version: int):
        self.key = key
        self.fields = fields
        self.version = version

    def __repr__(self) -> str:
        return f"Row({self.key!r}, version={self.version})"


def _recover(state, context: str):
    """Clamp a freshly loaded state that fails validation."""
    try:
        state.validate()
    except InvalidState as e:
        logger.warning(f"Clamping invalid {context}: {e}")
        state.clamp()
    return state


class ResourceState:
    """A capped counter that regenerates one unit per regen_period."""

    def __init__(self, resource_key: str, current: int, max: int,
                 last_update: datetime, regen_period: timedelta):
        self.resource_key = resource_key
        self.current = current
        self.max = max
        self.last_update = last_update
        self.regen_period = regen_period

    @property
    def is_full(self) -> bool:
        return self.current >= self.max

    @property
    def next_unit_at(self) -> datetime | None:
        """When the next unit regenerates, or None when full."""
        if self.is_full:
            return None
        return self.last_update + self.regen_period

    @property
    def full_at(self) -> datetime | None:
        if self.is_full:
            return None
        return self.last_update + self.regen_period * (self.max - self.current)

    def validate(self) -> None:
        problems = []
        if self.max < 1:
            problems.append(f"max={self.max} below 1")
        if self.current < 0:
            problems.append(f"current={self.current} is negative")
        if self.current > self.max:
            problems.append(f"current={self.current} exceeds max={self.max}")
        if self.regen_period < timedelta(seconds=MIN_REGEN_PERIOD_SECONDS):
            problems.append(f"regen_period={self.regen_period} below minimum")
        if problems:
            raise InvalidState('; '.join(problems))

    def clamp(self) -> None:
        self.max = max(1, self.max)
        self.current = min(self.max, max(0, self.current))
        self.regen_period = max(timedelta(seconds=MIN_REGEN_PERIOD_SECONDS), self.regen_period)

    def copy(self) -> 'ResourceState':
        return ResourceState(self.resource_key, self.current, self.max,
                             self.last_update, self.regen_period)

    def to_dict(self) -> dict:
        return {
            'resource_key': self.resource_key,
            'current': self.current,
            'max': self.max,
            'last_update': to_iso(self.last_update),
            'regen_period_seconds': int(self.regen_period.total_seconds()),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ResourceState':
        state = cls(
            data['resource_key'],
            int(data['current']),
            int(data['max']),
            parse_instant(data['last_update']),
            timedelta(seconds=int(data['regen_period_seconds'])),
        )
        return _recover(state, f"resource {state.resource_key}")


class SkillMasteryState:
    """Per-skill strength that decays daily and rises with practice.

    practiced_strength is the strength right after the last practice. Decay
    is always measured from it and last_practiced_at, so repeated reads at
    the same instant agree. last_session_id names the practice session that
    set practiced_strength, so a retried session is applied only once.
    """

    def __init__(self, skill_id: str, strength: int, practiced_strength: int,
                 last_practiced_at: datetime, next_due_at: datetime,
                 decay_rate_per_day: int, practice_interval: timedelta,
                 last_session_id: str = None):
        self.skill_id = skill_id
        self.strength = strength
        self.practiced_strength = practiced_strength
        self.last_practiced_at = last_practiced_at
        self.next_due_at = next_due_at
        self.decay_rate_per_day = decay_rate_per_day
        self.practice_interval = practice_interval
        self.last_session_id = last_session_id

    def validate(self) -> None:
        problems = []
        for name in ('strength', 'practiced_strength'):
            value = getattr(self, name)
            if not MIN_STRENGTH <= value <= MAX_STRENGTH:
                problems.append(f"{name}={value} outside [{MIN_STRENGTH}, {MAX_STRENGTH}]")
        if self.strength > self.practiced_strength:
            problems.append(f"strength={self.strength} above practiced_strength={self.practiced_strength}")
        if self.decay_rate_per_day < 0:
            problems.append(f"decay_rate_per_day={self.decay_rate_per_day} is negative")
        if self.next_due_at < self.last_practiced_at:
            problems.append("next_due_at precedes last_practiced_at")
        if problems:
            raise InvalidState('; '.join(problems))

    def clamp(self) -> None:
        self.strength = min(MAX_STRENGTH, max(MIN_STRENGTH, self.strength))
        self.practiced_strength = min(MAX_STRENGTH, max(self.strength, self.practiced_strength))
        self.decay_rate_per_day = max(0, self.decay_rate_per_day)
        self.next_due_at = max(self.next_due_at, self.last_practiced_at)

    def copy(self) -> 'SkillMasteryState':
        return SkillMasteryState(self.skill_id, self.strength, self.practiced_strength,
                                 self.last_practiced_at, self.next_due_at,
                                 self.decay_rate_per_day, self.practice_interval,
                                 self.last_session_id)

    def to_dict(self) -> dict:
        return {
            'skill_id': self.skill_id,
            'strength': self.strength,
            'practiced_strength': self.practiced_strength,
            'last_practiced_at': to_iso(self.last_practiced_at),
            'next_due_at': to_iso(self.next_due_at),
            'decay_rate_per_day': self.decay_rate_per_day,
            'practice_interval_seconds': int(self.practice_interval.total_seconds()),
            'last_session_id': self.last_session_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SkillMasteryState':
        strength = int(data['strength'])
        state = cls(
            data['skill_id'],
            strength,
            int(data.get('practiced_strength', strength)),
            parse_instant(data['last_practiced_at']),
            parse_instant(data['next_due_at']),
            int(data['decay_rate_per_day']),
            timedelta(seconds=int(data['practice_interval_seconds'])),
            data.get('last_session_id'),
        )
        return _recover(state, f"skill {state.skill_id}")


class StreakState:
    """Consecutive days with a completed daily goal."""

    def __init__(self, current_streak: int = 0, longest_streak: int = 0,
                 last_activity_date: date = None, freezes_available: int = 0,
                 claimed_milestones: list[int] = None,
                 daily_target_xp: int = DEFAULT_DAILY_GOAL_XP):
        self.current_streak = current_streak
        self.longest_streak = longest_streak
        self.last_activity_date = last_activity_date
        self.freezes_available = freezes_available
        self.claimed_milestones = claimed_milestones if claimed_milestones is not None else []
        self.daily_target_xp = daily_target_xp

    def validate(self) -> None:
        problems = []
        if self.current_streak < 0:
            problems.append(f"current_streak={self.current_streak} is negative")
        if self.longest_streak < self.current_streak:
            problems.append(f"longest_streak={self.longest_streak} below current_streak={self.current_streak}")
        if self.freezes_available < 0:
            problems.append(f"freezes_available={self.freezes_available} is negative")
        if self.daily_target_xp < 1:
            problems.append(f"daily_target_xp={self.daily_target_xp} below 1")
        if problems:
            raise InvalidState('; '.join(problems))

    def clamp(self) -> None:
        self.current_streak = max(0, self.current_streak)
        self.longest_streak = max(self.longest_streak, self.current_streak)
        self.freezes_available = max(0, self.freezes_available)
        if self.daily_target_xp < 1:
            self.daily_target_xp = DEFAULT_DAILY_GOAL_XP

    def to_dict(self) -> dict:
        return {
            'current_streak': self.current_streak,
            'longest_streak': self.longest_streak,
            'last_activity_date': self.last_activity_date.isoformat() if self.last_activity_date else None,
            'freezes_available': self.freezes_available,
            'claimed_milestones': sorted(self.claimed_milestones),
            'daily_target_xp': self.daily_target_xp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'StreakState':
        last = data.get('last_activity_date')
        state = cls(
            current_streak=int(data.get('current_streak', 0)),
            longest_streak=int(data.get('longest_streak', 0)),
            last_activity_date=parse_date(last) if last else None,
            freezes_available=int(data.get('freezes_available', 0)),
            claimed_milestones=[int(m) for m in data.get('claimed_milestones', [])],
            daily_target_xp=int(data.get('daily_target_xp', DEFAULT_DAILY_GOAL_XP)),
        )
        return _recover(state, "streak")


class DailyGoalState:
    """XP progress toward one calendar day's target.

    reward_granted is a one-way latch: once set it is never cleared.
    """

    def __init__(self, date: date, target_xp: int, current_xp: int = 0,
                 completed: bool = False, reward_granted: bool = False):
        self.date = date
        self.target_xp = target_xp
        self.current_xp = current_xp
        self.completed = completed
        self.reward_granted = reward_granted

    @property
    def status(self) -> str:
        """'no_activity', 'in_progress' or 'completed' for the day."""
        if self.completed:
            return 'completed'
        if self.current_xp > 0:
            return 'in_progress'
        return 'no_activity'

    def validate(self) -> None:
        problems = []
        if self.target_xp < 1:
            problems.append(f"target_xp={self.target_xp} below 1")
        if self.current_xp < 0:
            problems.append(f"current_xp={self.current_xp} is negative")
        if self.reward_granted and not self.completed:
            problems.append("reward granted for an incomplete goal")
        if self.completed and self.current_xp < self.target_xp:
            problems.append(f"completed with current_xp={self.current_xp} < target_xp={self.target_xp}")
        if problems:
            raise InvalidState('; '.join(problems))

    def clamp(self) -> None:
        self.target_xp = max(1, self.target_xp)
        self.current_xp = max(0, self.current_xp)
        # Never reopen a granted reward: move XP up to the target instead
        if self.reward_granted:
            self.completed = True
        if self.completed and self.current_xp < self.target_xp:
            self.current_xp = self.target_xp

    def to_dict(self) -> dict:
        return {
            'date': self.date.isoformat(),
            'target_xp': self.target_xp,
            'current_xp': self.current_xp,
            'completed': self.completed,
            'reward_granted': self.reward_granted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'DailyGoalState':
        state = cls(
            parse_date(data['date']),
            int(data['target_xp']),
            int(data.get('current_xp', 0)),
            bool(data.get('completed', False)),
            bool(data.get('reward_granted', False)),
        )
        return _recover(state, f"daily goal {state.date}")


class PracticeResult:
    """Audit record of one completed practice session."""

    def __init__(self, session_id: str, skill_id: str, score: int, time_spent_seconds: int,
                 mistakes: int, strength_before: int, strength: int, completed_at: datetime):
        self.session_id = session_id
        self.skill_id = skill_id
        self.score = score
        self.time_spent_seconds = time_spent_seconds
        self.mistakes = mistakes
        self.strength_before = strength_before
        self.strength = strength
        self.completed_at = completed_at

    @property
    def increase(self) -> int:
        return self.strength - self.strength_before

    def to_dict(self) -> dict:
        return {
            'session_id': self.session_id,
            'skill_id': self.skill_id,
            'score': self.score,
            'time_spent_seconds': self.time_spent_seconds,
            'mistakes': self.mistakes,
            'strength_before': self.strength_before,
            'strength': self.strength,
            'completed_at': to_iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'PracticeResult':
        return cls(
            data['session_id'], data['skill_id'], int(data['score']),
            int(data['time_spent_seconds']), int(data['mistakes']),
            int(data['strength_before']), int(data['strength']),
            parse_instant(data['completed_at']),
        )


class RewardOutcome:
    """Economy effects for the caller to apply to the user's ledger."""

    def __init__(self, xp_delta: int = 0, currency_delta: int = 0,
                 unlocked_reward_ids: list[str] = None):
        self.xp_delta = xp_delta
        self.currency_delta = currency_delta
        self.unlocked_reward_ids = unlocked_reward_ids or []

    @property
    def is_empty(self) -> bool:
        return not (self.xp_delta or self.currency_delta or self.unlocked_reward_ids)

    def to_dict(self) -> dict:
        return {
            'xp_delta': self.xp_delta,
            'currency_delta': self.currency_delta,
            'unlocked_reward_ids': list(self.unlocked_reward_ids),
        }


class EarnResult:
    """Outcome of earning XP: the updated goal and the reward granted by this call, if any."""

    def __init__(self, goal: DailyGoalState, reward: RewardOutcome | None):
        self.goal = goal
        self.reward = reward


class GoalProgress:
    """Read view of today's goal for display."""

    def __init__(self, goal: DailyGoalState, multiplier, next_reward: RewardOutcome):
        self.goal = goal
        self.multiplier = multiplier
        self.next_reward = next_reward

    @property
    def percent(self) -> float:
        return min(100.0, self.goal.current_xp * 100.0 / self.goal.target_xp)

    @property
    def remaining_xp(self) -> int:
        return max(0, self.goal.target_xp - self.goal.current_xp)


class SkillSummary:
    """Aggregate mastery figures across a user's skills."""

    def __init__(self, total_skills: int, average_strength: float,
                 needing_practice: int, perfect: int):
        self.total_skills = total_skills
        self.average_strength = average_strength
        self.needing_practice = needing_practice
        self.perfect = perfect

    def to_dict(self) -> dict:
        return {
            'total_skills': self.total_skills,
            'average_strength': self.average_strength,
            'needing_practice': self.needing_practice,
            'perfect': self.perfect,
        }
