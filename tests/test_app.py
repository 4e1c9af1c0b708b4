"""Tests for the HTTP API."""

import os
import tempfile
import unittest

from fastapi.testclient import TestClient

from core.clock import ManualClock
from server.app import create_app
from server.file_storage import FileStorage

from mocks import MockRowStore, RaceOnce, T0


class TestApi(unittest.TestCase):
    """Tests for the API routes against the mock store."""

    def setUp(self):
        self.store = MockRowStore()
        self.clock = ManualClock(T0)
        self.client = TestClient(create_app(self.store, self.clock))

    def test_resource_lifecycle(self):
        response = self.client.get("/api/users/ana/resources/hearts")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['current'], 5)
        self.assertIsNone(response.json()['next_unit_at'])

        response = self.client.post("/api/users/ana/resources/hearts/consume")
        self.assertEqual(response.json()['current'], 4)
        self.assertIsNotNone(response.json()['next_unit_at'])

        response = self.client.post("/api/users/ana/resources/hearts/refill")
        self.assertEqual(response.json()['current'], 5)

    def test_out_of_hearts(self):
        for _ in range(5):
            self.client.post("/api/users/ana/resources/hearts/consume")
        response = self.client.post("/api/users/ana/resources/hearts/consume")
        self.assertEqual(response.status_code, 409)
        body = response.json()
        self.assertEqual(body['error_code'], 'insufficient_resource')
        self.assertFalse(body['retryable'])
        self.assertEqual(body['details']['resource'], 'hearts')
        self.assertIsNotNone(body['details']['next_available_at'])

    def test_capacity_and_regen_rate(self):
        response = self.client.post("/api/users/ana/resources/hearts/capacity", json={'amount': 2})
        self.assertEqual(response.json()['max'], 7)
        self.assertEqual(response.json()['current'], 7)

        response = self.client.post("/api/users/ana/resources/hearts/regen-rate",
                                    json={'delta_seconds': -600})
        self.assertEqual(response.json()['regen_period_seconds'], 1200)

        response = self.client.post("/api/users/ana/resources/hearts/capacity", json={'amount': 0})
        self.assertEqual(response.status_code, 422)

    def test_store_outage_is_503(self):
        self.store.unavailable = True
        response = self.client.get("/api/users/ana/resources/hearts")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.headers['Retry-After'], '1')
        self.assertEqual(response.json()['error_code'], 'store_unavailable')
        self.assertTrue(response.json()['retryable'])

    def test_conflict_exhaustion_is_409(self):
        self.client.get("/api/users/ana/resources/hearts")
        self.store.before_conditional_update = RaceOnce(self.store, 'hearts', times=100)
        response = self.client.post("/api/users/ana/resources/hearts/consume")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['error_code'], 'concurrent_modification')
        self.assertTrue(response.json()['retryable'])

    def test_skill_practice(self):
        response = self.client.get("/api/users/ana/skills/greetings")
        self.assertEqual(response.json()['strength'], 100)

        self.clock.advance(days=4)
        response = self.client.get("/api/users/ana/skills/greetings")
        self.assertEqual(response.json()['strength'], 80)

        response = self.client.get("/api/users/ana/skills/due")
        self.assertEqual([s['skill_id'] for s in response.json()], ['greetings'])

        response = self.client.post("/api/users/ana/skills/greetings/practice",
                                    json={'score': 90, 'time_spent_seconds': 300, 'mistakes': 0})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['strength_before'], 80)
        self.assertEqual(response.json()['strength'], 100)
        self.assertEqual(response.json()['increase'], 20)

        history = self.client.get("/api/users/ana/skills/greetings/history").json()
        self.assertEqual(len(history), 1)

        summary = self.client.get("/api/users/ana/skills/summary").json()
        self.assertEqual(summary['total_skills'], 1)
        self.assertEqual(summary['perfect'], 1)

    def test_invalid_practice(self):
        response = self.client.post("/api/users/ana/skills/greetings/practice",
                                    json={'score': 120, 'time_spent_seconds': 10, 'mistakes': 0})
        self.assertEqual(response.status_code, 422)

    def test_resent_practice_session_is_applied_once(self):
        self.client.get("/api/users/ana/skills/greetings")
        self.clock.advance(days=4)
        body = {'score': 90, 'time_spent_seconds': 300, 'mistakes': 0, 'session_id': 'abc123'}
        first = self.client.post("/api/users/ana/skills/greetings/practice", json=body).json()
        again = self.client.post("/api/users/ana/skills/greetings/practice", json=body).json()
        self.assertEqual(first, again)
        self.assertEqual(first['increase'], 20)
        self.assertEqual(self.client.get("/api/users/ana/skills/greetings").json()['strength'], 100)

        body['session_id'] = 'bad id!'
        response = self.client.post("/api/users/ana/skills/greetings/practice", json=body)
        self.assertEqual(response.status_code, 422)

    def test_daily_goal_flow(self):
        response = self.client.get("/api/users/ana/daily-goal")
        self.assertEqual(response.json()['goal']['status'], 'no_activity')
        self.assertEqual(response.json()['next_reward']['xp_delta'], 50)

        response = self.client.post("/api/users/ana/xp", json={'amount': 30})
        self.assertIsNone(response.json()['reward'])
        self.assertEqual(response.json()['goal']['status'], 'in_progress')

        response = self.client.post("/api/users/ana/xp", json={'amount': 25})
        self.assertEqual(response.json()['reward']['xp_delta'], 50)
        self.assertEqual(response.json()['reward']['currency_delta'], 5)

        response = self.client.post("/api/users/ana/xp", json={'amount': 0})
        self.assertIsNone(response.json()['reward'])

        self.clock.advance(days=1)
        streak = self.client.get("/api/users/ana/streak").json()
        self.assertEqual(streak['current_streak'], 1)
        self.assertEqual(streak['multiplier'], 1.0)
        self.assertEqual(streak['next_milestone'], 7)

    def test_adjust_goal_and_freezes(self):
        response = self.client.put("/api/users/ana/daily-goal", json={'target_xp': 20})
        self.assertEqual(response.json()['target_xp'], 20)

        response = self.client.post("/api/users/ana/streak/freezes", json={'count': 2})
        self.assertEqual(response.json()['freezes_available'], 2)

        response = self.client.post("/api/users/ana/streak/milestones/claim")
        self.assertEqual(response.json(), {'xp_delta': 0, 'currency_delta': 0, 'unlocked_reward_ids': []})

    def test_negative_xp_is_rejected(self):
        response = self.client.post("/api/users/ana/xp", json={'amount': -1})
        self.assertEqual(response.status_code, 422)

    def test_streak_multiplier(self):
        response = self.client.get("/api/streak-multiplier/14")
        self.assertEqual(response.json(), {'streak': 14, 'multiplier': 1.5, 'next_milestone': 30})
        self.assertEqual(self.client.get("/api/streak-multiplier/-1").status_code, 422)

    def test_list_users_defaults_to_empty(self):
        self.assertEqual(self.client.get("/api/users").json(), {'users': []})

    def test_list_users_from_file_storage(self):
        with tempfile.TemporaryDirectory() as state_dir:
            store = FileStorage(config_file=os.path.join(state_dir, 'config.json'),
                                state_dir=state_dir)
            client = TestClient(create_app(store, self.clock))
            client.post("/api/users/ana/resources/hearts/consume")
            client.post("/api/users/bo/xp", json={'amount': 5})
            self.assertEqual(client.get("/api/users").json(), {'users': ['ana', 'bo']})


if __name__ == '__main__':
    unittest.main()
