from .models import (
    Row, ResourceState, SkillMasteryState, StreakState, DailyGoalState,
    PracticeResult, RewardOutcome, EarnResult, GoalProgress, SkillSummary
)
from .interfaces import Clock, RowStore
from .clock import SystemClock, ManualClock
from .errors import (
    EngineError, InsufficientResource, InvalidState, StoreUnavailable, ConcurrentModification
)
from .ledger import Ledger
from .hearts import HeartsEngine, regenerate
from .mastery import MasteryEngine, decay
from .streaks import StreakEngine, streak_multiplier, next_milestone
from .config import (
    DEFAULT_RESOURCE_KEY, DEFAULT_MAX_HEARTS, DEFAULT_HEART_REGEN_MINUTES,
    DEFAULT_DAILY_GOAL_XP, DEFAULT_DECAY_RATE_PER_DAY, DEFAULT_PRACTICE_INTERVAL_HOURS,
    MAX_CONFLICT_RETRIES
)

__all__ = [
    'Row', 'ResourceState', 'SkillMasteryState', 'StreakState', 'DailyGoalState',
    'PracticeResult', 'RewardOutcome', 'EarnResult', 'GoalProgress', 'SkillSummary',
    'Clock', 'RowStore', 'SystemClock', 'ManualClock',
    'EngineError', 'InsufficientResource', 'InvalidState', 'StoreUnavailable',
    'ConcurrentModification',
    'Ledger', 'HeartsEngine', 'regenerate', 'MasteryEngine', 'decay',
    'StreakEngine', 'streak_multiplier', 'next_milestone',
    'DEFAULT_RESOURCE_KEY', 'DEFAULT_MAX_HEARTS', 'DEFAULT_HEART_REGEN_MINUTES',
    'DEFAULT_DAILY_GOAL_XP', 'DEFAULT_DECAY_RATE_PER_DAY', 'DEFAULT_PRACTICE_INTERVAL_HOURS',
    'MAX_CONFLICT_RETRIES'
]
