"""Streaks, daily XP goals and the rewards tied to them.

Days are calendar days in one fixed timezone (UTC unless configured) with
midnight as a hard boundary. Before any streak or goal read the engine rolls
the stored streak forward to today, judging each skipped day by whether its
goal was completed.
"""

import logging
from datetime import date, datetime, timezone, tzinfo
from decimal import Decimal, ROUND_FLOOR

from .config import (
    DEFAULT_DAILY_GOAL_XP, STREAK_MULTIPLIERS, BASE_MULTIPLIER, STREAK_MILESTONES,
    COINS_PER_XP_DIVISOR, STREAK_FREEZE_MULTIPLIER, STREAK_FREEZE_REWARD_ID,
    MAX_CONFLICT_RETRIES, STREAK_KEY, DAILY_GOAL_KEY_PREFIX
)
from .interfaces import Clock, RowStore
from .ledger import Ledger
from .models import (
    DailyGoalState, EarnResult, GoalProgress, RewardOutcome, Row, StreakState
)
from .utils import ensure_utc, local_date

logger = logging.getLogger(__name__)


def streak_multiplier(current_streak: int) -> Decimal:
    """Reward multiplier for a streak length. Non-decreasing step function."""
    for threshold, multiplier in STREAK_MULTIPLIERS:
        if current_streak >= threshold:
            return multiplier
    return BASE_MULTIPLIER


def next_milestone(current_streak: int) -> int | None:
    """The next milestone above current_streak, or None past the last one."""
    for milestone in sorted(STREAK_MILESTONES):
        if milestone > current_streak:
            return milestone
    return None


def completion_reward(target_xp: int, multiplier: Decimal) -> RewardOutcome:
    xp = int((Decimal(target_xp) * multiplier).to_integral_value(rounding=ROUND_FLOOR))
    unlocked = [STREAK_FREEZE_REWARD_ID] if multiplier >= STREAK_FREEZE_MULTIPLIER else []
    return RewardOutcome(xp, xp // COINS_PER_XP_DIVISOR, unlocked)


def roll_forward(streak: StreakState, today: date, last_day_completed: bool) -> None:
    """Advance streak from its last activity date to today, in place.

    Every day in the gap without a completed goal is a missed day. Missed
    days are covered one freeze each, but only when all of them can be
    covered; otherwise the streak resets and no freeze is spent.
    """
    gap = (today - streak.last_activity_date).days
    missed = (gap - 1) + (0 if last_day_completed else 1)

    if missed == 0:
        streak.current_streak += 1
    elif (streak.current_streak > 0 or last_day_completed) and streak.freezes_available >= missed:
        streak.freezes_available -= missed
        if last_day_completed:
            streak.current_streak += 1
    else:
        streak.current_streak = 0

    streak.longest_streak = max(streak.longest_streak, streak.current_streak)
    streak.last_activity_date = today


def goal_key(day: date) -> str:
    return f"{DAILY_GOAL_KEY_PREFIX}{day.isoformat()}"


class StreakEngine:
    """Per-user streak and daily-goal bookkeeping."""

    def __init__(self, store: RowStore, clock: Clock, tz: tzinfo = timezone.utc,
                 default_target_xp: int = DEFAULT_DAILY_GOAL_XP,
                 max_attempts: int = MAX_CONFLICT_RETRIES):
        self.store = store
        self.ledger = Ledger(store, max_attempts)
        self.clock = clock
        self.tz = tz
        self.default_target_xp = default_target_xp

    def today(self, now: datetime = None) -> date:
        return local_date(now or self.clock.now(), self.tz)

    def _load_streak(self, user_id: str, today: date) -> tuple[Row, StreakState]:
        def default() -> dict:
            return StreakState(last_activity_date=today,
                               daily_target_xp=self.default_target_xp).to_dict()
        row = self.ledger.load(user_id, STREAK_KEY, default)
        return row, StreakState.from_dict(row.fields)

    def _load_goal(self, user_id: str, day: date, target_xp: int) -> tuple[Row, DailyGoalState]:
        row = self.ledger.load(user_id, goal_key(day),
                               lambda: DailyGoalState(day, target_xp).to_dict())
        return row, DailyGoalState.from_dict(row.fields)

    def _was_completed(self, user_id: str, day: date) -> bool:
        row = self.store.get(user_id, goal_key(day))
        return row is not None and DailyGoalState.from_dict(row.fields).completed

    def rollover_if_needed(self, user_id: str, now: datetime = None) -> StreakState:
        """Bring the streak up to today, creating today's goal on a new day.

        The streak is never rolled past the clock's today; a later now is
        treated as the clock's current instant.
        """
        clock_now = self.clock.now()
        today = self.today(min(ensure_utc(now), clock_now) if now else clock_now)
        rolled = []

        def cycle() -> StreakState:
            rolled.clear()
            row, streak = self._load_streak(user_id, today)
            last = streak.last_activity_date
            if last == today:
                return streak
            if last is not None and last > today:
                logger.warning(f"Streak for {user_id} dated {last}, ahead of today {today}; leaving it")
                return streak
            before = streak.current_streak
            if last is None:
                streak.last_activity_date = today
            else:
                roll_forward(streak, today, self._was_completed(user_id, last))
            self.ledger.write(user_id, row, streak.to_dict())
            rolled.append(before)
            return streak

        streak = self.ledger.run(f"rollover for {user_id}", cycle)
        if rolled:
            logger.info(f"Rolled {user_id} over to {today}: streak {rolled[0]} -> {streak.current_streak}")
            self.ledger.run(f"create goal {today} for {user_id}",
                            lambda: self._load_goal(user_id, today, streak.daily_target_xp))
        return streak

    def get_streak(self, user_id: str) -> StreakState:
        return self.rollover_if_needed(user_id)

    def earn_xp(self, user_id: str, amount: int) -> EarnResult:
        """Add XP to today's goal and grant the completion reward at most once."""
        if amount < 0:
            raise ValueError(f"XP amount cannot be negative, got {amount}")
        now = self.clock.now()
        today = self.today(now)
        streak = self.rollover_if_needed(user_id, now)
        multiplier = streak_multiplier(streak.current_streak)

        def cycle() -> EarnResult:
            row, goal = self._load_goal(user_id, today, streak.daily_target_xp)
            goal.current_xp += amount
            if not goal.completed and goal.current_xp >= goal.target_xp:
                goal.completed = True
            reward = None
            # The latch is re-read on every attempt, so a retried write never grants twice
            if goal.completed and not goal.reward_granted:
                reward = completion_reward(goal.target_xp, multiplier)
                goal.reward_granted = True
            if amount == 0 and reward is None:
                return EarnResult(goal, None)
            self.ledger.write(user_id, row, goal.to_dict())
            return EarnResult(goal, reward)

        result = self.ledger.run(f"earn_xp for {user_id}", cycle)
        if result.reward is not None:
            logger.info(f"{user_id} completed daily goal {today} "
                        f"(x{multiplier}): +{result.reward.xp_delta} xp, +{result.reward.currency_delta} coins")
        return result

    def goal_progress(self, user_id: str) -> GoalProgress:
        now = self.clock.now()
        today = self.today(now)
        streak = self.rollover_if_needed(user_id, now)
        _, goal = self.ledger.run(f"load goal {today} for {user_id}",
                                  lambda: self._load_goal(user_id, today, streak.daily_target_xp))
        multiplier = streak_multiplier(streak.current_streak)
        return GoalProgress(goal, multiplier, completion_reward(goal.target_xp, multiplier))

    def adjust_daily_goal(self, user_id: str, target_xp: int) -> DailyGoalState:
        """Change the XP target for today (unless already completed) and future days."""
        if target_xp < 1:
            raise ValueError(f"Daily goal must be at least 1 XP, got {target_xp}")
        now = self.clock.now()
        today = self.today(now)
        self.rollover_if_needed(user_id, now)

        def update_preference() -> None:
            row, streak = self._load_streak(user_id, today)
            if streak.daily_target_xp != target_xp:
                streak.daily_target_xp = target_xp
                self.ledger.write(user_id, row, streak.to_dict())

        def update_today() -> DailyGoalState:
            row, goal = self._load_goal(user_id, today, target_xp)
            if goal.completed or goal.target_xp == target_xp:
                return goal
            goal.target_xp = target_xp
            self.ledger.write(user_id, row, goal.to_dict())
            return goal

        self.ledger.run(f"adjust goal preference for {user_id}", update_preference)
        return self.ledger.run(f"adjust goal {today} for {user_id}", update_today)

    def grant_streak_freeze(self, user_id: str, count: int = 1) -> StreakState:
        if count < 1:
            raise ValueError(f"Freeze count must be positive, got {count}")
        now = self.clock.now()
        today = self.today(now)
        self.rollover_if_needed(user_id, now)

        def cycle() -> StreakState:
            row, streak = self._load_streak(user_id, today)
            streak.freezes_available += count
            self.ledger.write(user_id, row, streak.to_dict())
            return streak

        streak = self.ledger.run(f"grant freeze for {user_id}", cycle)
        logger.info(f"Granted {count} streak freeze(s) to {user_id}, now {streak.freezes_available}")
        return streak

    def claim_streak_milestones(self, user_id: str) -> RewardOutcome:
        """Reward every reached milestone not claimed before. Each pays out once."""
        now = self.clock.now()
        today = self.today(now)
        self.rollover_if_needed(user_id, now)

        def cycle() -> RewardOutcome:
            row, streak = self._load_streak(user_id, today)
            reached = [m for m in sorted(STREAK_MILESTONES)
                       if streak.current_streak >= m and m not in streak.claimed_milestones]
            if not reached:
                return RewardOutcome()
            streak.claimed_milestones = streak.claimed_milestones + reached
            self.ledger.write(user_id, row, streak.to_dict())
            return RewardOutcome(
                xp_delta=sum(STREAK_MILESTONES[m][0] for m in reached),
                unlocked_reward_ids=[STREAK_MILESTONES[m][1] for m in reached],
            )

        reward = self.ledger.run(f"claim milestones for {user_id}", cycle)
        if not reward.is_empty:
            logger.info(f"{user_id} claimed streak milestones: {reward.unlocked_reward_ids}")
        return reward
