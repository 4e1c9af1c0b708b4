"""Unit tests for streaks, daily goals and their rewards."""

import unittest
from datetime import date, timedelta, timezone
from decimal import Decimal

from core.clock import ManualClock
from core.models import DailyGoalState, StreakState
from core.streaks import (
    StreakEngine, completion_reward, goal_key, next_milestone, roll_forward, streak_multiplier
)

from mocks import MockRowStore, RaceOnce, T0

TODAY = date(2024, 3, 10)
YESTERDAY = TODAY - timedelta(days=1)


class TestStreakMultiplier(unittest.TestCase):
    """Tests for the streak multiplier steps."""

    def test_steps(self):
        expected = {
            0: '1.0', 2: '1.0', 3: '1.2', 6: '1.2', 7: '1.3', 13: '1.3',
            14: '1.5', 29: '1.5', 30: '2.0', 365: '2.0',
        }
        for streak, multiplier in expected.items():
            self.assertEqual(streak_multiplier(streak), Decimal(multiplier), f"streak {streak}")

    def test_non_decreasing(self):
        values = [streak_multiplier(n) for n in range(0, 100)]
        self.assertEqual(values, sorted(values))

    def test_next_milestone(self):
        self.assertEqual(next_milestone(0), 7)
        self.assertEqual(next_milestone(7), 14)
        self.assertEqual(next_milestone(20), 30)
        self.assertIsNone(next_milestone(30))


class TestCompletionReward(unittest.TestCase):
    """Tests for the daily goal completion reward."""

    def test_base_reward(self):
        reward = completion_reward(50, Decimal('1.0'))
        self.assertEqual(reward.xp_delta, 50)
        self.assertEqual(reward.currency_delta, 5)
        self.assertEqual(reward.unlocked_reward_ids, [])

    def test_multiplied_reward_is_floored(self):
        reward = completion_reward(33, Decimal('1.5'))
        self.assertEqual(reward.xp_delta, 49)
        self.assertEqual(reward.currency_delta, 4)

    def test_top_multiplier_unlocks_freeze(self):
        reward = completion_reward(50, Decimal('2.0'))
        self.assertEqual(reward.xp_delta, 100)
        self.assertEqual(reward.unlocked_reward_ids, ['streak_freeze'])


class TestRollForward(unittest.TestCase):
    """Tests for advancing a streak over skipped days."""

    def test_completed_yesterday_extends(self):
        streak = StreakState(6, 6, YESTERDAY)
        roll_forward(streak, TODAY, last_day_completed=True)
        self.assertEqual(streak.current_streak, 7)
        self.assertEqual(streak.longest_streak, 7)
        self.assertEqual(streak.last_activity_date, TODAY)

    def test_incomplete_yesterday_resets(self):
        streak = StreakState(6, 9, YESTERDAY)
        roll_forward(streak, TODAY, last_day_completed=False)
        self.assertEqual(streak.current_streak, 0)
        self.assertEqual(streak.longest_streak, 9)

    def test_freeze_covers_incomplete_day(self):
        streak = StreakState(6, 6, YESTERDAY, freezes_available=1)
        roll_forward(streak, TODAY, last_day_completed=False)
        self.assertEqual(streak.current_streak, 6)
        self.assertEqual(streak.freezes_available, 0)

    def test_freezes_cover_gap(self):
        streak = StreakState(4, 4, TODAY - timedelta(days=3), freezes_available=2)
        roll_forward(streak, TODAY, last_day_completed=True)
        self.assertEqual(streak.current_streak, 5)
        self.assertEqual(streak.freezes_available, 0)

    def test_too_few_freezes_are_not_spent(self):
        streak = StreakState(4, 4, TODAY - timedelta(days=3), freezes_available=1)
        roll_forward(streak, TODAY, last_day_completed=True)
        self.assertEqual(streak.current_streak, 0)
        self.assertEqual(streak.freezes_available, 1)

    def test_no_streak_to_protect(self):
        streak = StreakState(0, 3, YESTERDAY, freezes_available=3)
        roll_forward(streak, TODAY, last_day_completed=False)
        self.assertEqual(streak.current_streak, 0)
        self.assertEqual(streak.freezes_available, 3)

    def test_long_absence_resets(self):
        streak = StreakState(20, 20, TODAY - timedelta(days=40))
        roll_forward(streak, TODAY, last_day_completed=True)
        self.assertEqual(streak.current_streak, 0)
        self.assertEqual(streak.longest_streak, 20)


class TestStreakEngine(unittest.TestCase):
    """Tests for StreakEngine against the mock store."""

    def setUp(self):
        self.store = MockRowStore()
        self.clock = ManualClock(T0)
        self.engine = StreakEngine(self.store, self.clock)

    def seed_streak(self, current, last_date, freezes=0, target=50):
        state = StreakState(current, current, last_date, freezes, daily_target_xp=target)
        self.store.seed('ana', 'streak', state.to_dict())

    def seed_goal(self, day, current_xp, target=50, granted=None):
        completed = current_xp >= target
        goal = DailyGoalState(day, target, current_xp, completed,
                              completed if granted is None else granted)
        self.store.seed('ana', goal_key(day), goal.to_dict())

    def goal(self, day=TODAY):
        return DailyGoalState.from_dict(self.store.fields('ana', goal_key(day)))

    def test_new_user(self):
        streak = self.engine.get_streak('ana')
        self.assertEqual(streak.current_streak, 0)
        self.assertEqual(streak.last_activity_date, TODAY)

        progress = self.engine.goal_progress('ana')
        self.assertEqual(progress.goal.target_xp, 50)
        self.assertEqual(progress.goal.status, 'no_activity')
        self.assertEqual(progress.percent, 0.0)
        self.assertEqual(progress.multiplier, Decimal('1.0'))
        self.assertEqual(progress.next_reward.xp_delta, 50)

    def test_completed_yesterday_extends_streak(self):
        self.seed_streak(6, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        streak = self.engine.get_streak('ana')
        self.assertEqual(streak.current_streak, 7)
        self.assertEqual(streak_multiplier(streak.current_streak), Decimal('1.3'))
        # Today's goal row exists after the rollover
        self.assertEqual(self.goal().current_xp, 0)

    def test_rollover_happens_once_per_day(self):
        self.seed_streak(6, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        self.engine.get_streak('ana')
        self.clock.advance(hours=5)
        self.assertEqual(self.engine.get_streak('ana').current_streak, 7)

    def test_missed_day_resets_streak(self):
        self.seed_streak(6, YESTERDAY)
        self.seed_goal(YESTERDAY, 30)
        self.assertEqual(self.engine.get_streak('ana').current_streak, 0)

    def test_freeze_covers_missing_day(self):
        self.seed_streak(5, TODAY - timedelta(days=2), freezes=1)
        self.seed_goal(TODAY - timedelta(days=2), 50)
        streak = self.engine.get_streak('ana')
        self.assertEqual(streak.current_streak, 6)
        self.assertEqual(streak.freezes_available, 0)

    def test_earning_completes_goal_once(self):
        self.seed_streak(0, TODAY)
        self.seed_goal(TODAY, 40)

        result = self.engine.earn_xp('ana', 15)
        self.assertEqual(result.goal.current_xp, 55)
        self.assertTrue(result.goal.completed)
        self.assertTrue(result.goal.reward_granted)
        self.assertEqual(result.reward.xp_delta, 50)
        self.assertEqual(result.reward.currency_delta, 5)

        writes = len(self.store.writes)
        again = self.engine.earn_xp('ana', 0)
        self.assertIsNone(again.reward)
        self.assertTrue(again.goal.reward_granted)
        self.assertEqual(len(self.store.writes), writes)

        more = self.engine.earn_xp('ana', 10)
        self.assertIsNone(more.reward)
        self.assertEqual(self.goal().current_xp, 65)

    def test_reward_uses_streak_multiplier(self):
        self.seed_streak(6, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        reward = self.engine.earn_xp('ana', 50).reward
        self.assertEqual(reward.xp_delta, 65)
        self.assertEqual(reward.currency_delta, 6)
        self.assertEqual(reward.unlocked_reward_ids, [])

    def test_long_streak_unlocks_freeze(self):
        self.seed_streak(29, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        reward = self.engine.earn_xp('ana', 50).reward
        self.assertEqual(reward.xp_delta, 100)
        self.assertEqual(reward.unlocked_reward_ids, ['streak_freeze'])

    def test_week_of_practice(self):
        for _ in range(7):
            self.engine.earn_xp('ana', 50)
            self.clock.advance(days=1)
        streak = self.engine.get_streak('ana')
        self.assertEqual(streak.current_streak, 7)
        self.assertEqual(streak.longest_streak, 7)

        reward = self.engine.claim_streak_milestones('ana')
        self.assertEqual(reward.xp_delta, 50)
        self.assertEqual(reward.unlocked_reward_ids, ['streak_seaworthy'])
        self.assertTrue(self.engine.claim_streak_milestones('ana').is_empty)

    def test_claims_all_reached_milestones(self):
        self.seed_streak(13, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        reward = self.engine.claim_streak_milestones('ana')
        self.assertEqual(reward.xp_delta, 150)
        self.assertEqual(reward.unlocked_reward_ids, ['streak_seaworthy', 'streak_island_legend'])

    def test_negative_xp_is_rejected(self):
        with self.assertRaises(ValueError):
            self.engine.earn_xp('ana', -5)

    def test_retried_earn_rereads_reward_latch(self):
        self.seed_streak(0, TODAY)
        self.seed_goal(TODAY, 40)

        def granted_elsewhere(fields):
            fields.update(current_xp=50, completed=True, reward_granted=True)
            return fields

        self.store.before_conditional_update = RaceOnce(self.store, goal_key(TODAY), granted_elsewhere)
        result = self.engine.earn_xp('ana', 15)
        self.assertIsNone(result.reward)
        self.assertEqual(result.goal.current_xp, 65)
        self.assertEqual(self.store.conflicts, 1)

    def test_adjust_daily_goal(self):
        goal = self.engine.adjust_daily_goal('ana', 30)
        self.assertEqual(goal.target_xp, 30)
        self.assertEqual(self.engine.get_streak('ana').daily_target_xp, 30)

        self.clock.advance(days=1)
        self.assertEqual(self.engine.goal_progress('ana').goal.target_xp, 30)

    def test_adjust_keeps_completed_goal(self):
        self.engine.earn_xp('ana', 50)
        goal = self.engine.adjust_daily_goal('ana', 100)
        self.assertEqual(goal.target_xp, 50)
        self.assertTrue(goal.completed)
        self.assertEqual(self.engine.get_streak('ana').daily_target_xp, 100)

    def test_lowering_goal_below_progress(self):
        self.engine.earn_xp('ana', 40)
        goal = self.engine.adjust_daily_goal('ana', 30)
        self.assertFalse(goal.completed)
        result = self.engine.earn_xp('ana', 0)
        self.assertTrue(result.goal.completed)
        self.assertEqual(result.reward.xp_delta, 30)

    def test_adjust_rejects_non_positive_target(self):
        with self.assertRaises(ValueError):
            self.engine.adjust_daily_goal('ana', 0)

    def test_grant_streak_freeze(self):
        self.assertEqual(self.engine.grant_streak_freeze('ana', 2).freezes_available, 2)
        with self.assertRaises(ValueError):
            self.engine.grant_streak_freeze('ana', 0)

    def test_future_dated_streak_is_left_alone(self):
        tomorrow = TODAY + timedelta(days=1)
        self.seed_streak(4, tomorrow)
        with self.assertLogs('core.streaks', level='WARNING'):
            streak = self.engine.get_streak('ana')
        self.assertEqual(streak.current_streak, 4)
        self.assertEqual(streak.last_activity_date, tomorrow)

    def test_rollover_never_moves_past_the_clock(self):
        self.seed_streak(6, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        streak = self.engine.rollover_if_needed('ana', now=T0 + timedelta(days=3))
        self.assertEqual(streak.last_activity_date, TODAY)
        self.assertEqual(streak.current_streak, 7)

        streak = self.engine.get_streak('ana')
        self.assertEqual(streak.current_streak, 7)
        self.assertEqual(streak.last_activity_date, TODAY)
        self.clock.advance(days=1)
        self.assertEqual(self.engine.get_streak('ana').current_streak, 0)

    def test_rollover_at_an_earlier_instant(self):
        self.seed_streak(2, YESTERDAY)
        self.seed_goal(YESTERDAY, 50)
        streak = self.engine.rollover_if_needed('ana', now=T0 - timedelta(days=1))
        self.assertEqual(streak.current_streak, 2)
        self.assertEqual(streak.last_activity_date, YESTERDAY)

    def test_day_boundary_follows_timezone(self):
        engine = StreakEngine(self.store, self.clock, tz=timezone(timedelta(hours=10)))
        # 12:00 UTC is 22:00 at UTC+10
        self.assertEqual(engine.today(), TODAY)
        engine.earn_xp('ana', 50)
        self.clock.advance(hours=2)
        self.assertEqual(engine.today(), TODAY + timedelta(days=1))
        self.assertEqual(engine.get_streak('ana').current_streak, 1)
        # Still the 10th in UTC
        self.assertEqual(self.engine.today(), TODAY)

    def test_midnight_is_a_hard_boundary(self):
        self.clock.set(T0.replace(hour=23, minute=59))
        self.engine.earn_xp('ana', 20)
        self.clock.advance(minutes=2)
        result = self.engine.earn_xp('ana', 40)
        self.assertEqual(result.goal.date, TODAY + timedelta(days=1))
        self.assertEqual(result.goal.current_xp, 40)
        self.assertEqual(self.engine.get_streak('ana').current_streak, 0)


if __name__ == '__main__':
    unittest.main()
