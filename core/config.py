"""Configuration constants for the dushi progress engine."""

from decimal import Decimal

# Hearts (regenerating resources)
DEFAULT_RESOURCE_KEY = 'hearts'
DEFAULT_MAX_HEARTS = 5
DEFAULT_HEART_REGEN_MINUTES = 30   # Minutes to regenerate one heart
MIN_REGEN_PERIOD_SECONDS = 60      # Regeneration can never be faster than one unit per minute

# Skill mastery
MIN_STRENGTH = 0
MAX_STRENGTH = 100
DEFAULT_DECAY_RATE_PER_DAY = 5     # Strength points lost per full day without practice
DEFAULT_PRACTICE_INTERVAL_HOURS = 24
PRACTICE_BASE_INCREASE = 20
SPEED_BONUS_MAX = 10               # Points for an instant session
SPEED_BONUS_WINDOW_SECONDS = 300   # No speed bonus at or beyond five minutes
MISTAKE_PENALTY = 2                # Points per mistake
WEAK_SKILL_THRESHOLD = 50          # Below this a skill counts as "needing practice"

# Daily goal
DEFAULT_DAILY_GOAL_XP = 50
COINS_PER_XP_DIVISOR = 10          # coins = reward xp // 10
STREAK_FREEZE_MULTIPLIER = Decimal('2.0')  # Completion at this multiplier also unlocks a freeze
STREAK_FREEZE_REWARD_ID = 'streak_freeze'

# Streak multiplier steps, highest threshold first: (min streak days, multiplier)
STREAK_MULTIPLIERS = (
    (30, Decimal('2.0')),
    (14, Decimal('1.5')),
    (7, Decimal('1.3')),
    (3, Decimal('1.2')),
)
BASE_MULTIPLIER = Decimal('1.0')

# Streak milestones: days -> (xp reward, badge id)
STREAK_MILESTONES = {
    7: (50, 'streak_seaworthy'),
    14: (100, 'streak_island_legend'),
    30: (250, 'streak_caribbean_king'),
}

# Optimistic concurrency
MAX_CONFLICT_RETRIES = 5           # Attempts per read-recompute-write cycle

# Row keys
STREAK_KEY = 'streak'
SKILL_KEY_PREFIX = 'skill:'
DAILY_GOAL_KEY_PREFIX = 'daily_goal:'
PRACTICE_KEY_PREFIX = 'practice:'
