import os
import sys
import datetime
import tempfile
import unittest
from unittest import mock
from zoneinfo import ZoneInfo

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms import TIMEFRAMES
from db import ExerciseRepository, UserRepository, WorkoutRepository
from models import DashboardScope, ROLE_ADMIN, dashboard_to_dict
from stats_service import StatisticsService

UTC = datetime.timezone.utc
# Wednesday noon
NOW = datetime.datetime(2024, 5, 15, 12, 0, tzinfo=UTC)


class StatisticsServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmp.name, "stats.db")
        self.users = UserRepository(db_path)
        self.exercises = ExerciseRepository(db_path)
        self.workouts = WorkoutRepository(db_path)
        self.service = StatisticsService(self.workouts, self.users)
        joined = datetime.datetime(2024, 1, 10, tzinfo=UTC)
        self.athlete = self.users.create("Alice", "alice@example.com", created_at=joined)
        self.other = self.users.create("Bob", "bob@example.com", created_at=joined)
        self.running = self.exercises.add("Running", 10)
        self.cycling = self.exercises.add("Cycling", 8)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def log(self, exercise_id: int, duration: int, when: datetime.datetime, athlete=None) -> int:
        return self.workouts.create(athlete or self.athlete, exercise_id, duration, when)

    def test_today_running_and_cycling(self) -> None:
        first = self.log(self.running, 30, NOW - datetime.timedelta(hours=2))
        self.log(self.cycling, 30, NOW - datetime.timedelta(hours=1))
        dashboard = self.service.dashboard(DashboardScope.athlete(self.athlete), NOW)
        today = dashboard["today"]
        self.assertEqual(today.total_calories, 540)
        self.assertEqual(today.total_duration_minutes, 60)
        self.assertEqual(today.top_calorie_workout.id, first)
        self.assertEqual(today.most_time_spent_exercise_name, "Running")
        self.assertEqual(
            [
                (s.exercise_name, s.total_duration_minutes, s.percentage_of_total_duration)
                for s in today.exercise_breakdown
            ],
            [("Running", 30, 50.0), ("Cycling", 30, 50.0)],
        )
        self.assertIsNone(today.new_athletes)

    def test_yesterday_only_counts_for_week(self) -> None:
        self.log(self.running, 45, datetime.datetime(2024, 5, 14, 18, 0, tzinfo=UTC))
        self.log(self.cycling, 20, datetime.datetime(2024, 5, 12, 9, 0, tzinfo=UTC))
        dashboard = self.service.dashboard(DashboardScope.athlete(self.athlete), NOW)
        self.assertEqual(dashboard["today"].total_calories, 0)
        self.assertIsNone(dashboard["today"].top_calorie_workout)
        self.assertEqual(dashboard["today"].exercise_breakdown, [])
        self.assertEqual(dashboard["week"].total_duration_minutes, 45)
        self.assertEqual(dashboard["week"].most_time_spent_exercise_name, "Running")
        self.assertEqual(dashboard["month"].total_duration_minutes, 65)

    def test_admin_counts_new_athletes(self) -> None:
        self.users.create(
            "Carol", "carol@example.com", created_at=datetime.datetime(2024, 5, 2, tzinfo=UTC)
        )
        self.users.create(
            "Dan", "dan@example.com", created_at=datetime.datetime(2024, 5, 10, tzinfo=UTC)
        )
        self.users.create(
            "Root",
            "root@example.com",
            role=ROLE_ADMIN,
            created_at=datetime.datetime(2024, 5, 14, tzinfo=UTC),
        )
        dashboard = self.service.dashboard(DashboardScope.admin(), NOW)
        self.assertEqual(dashboard["today"].new_athletes, 0)
        self.assertEqual(dashboard["week"].new_athletes, 0)
        self.assertEqual(dashboard["month"].new_athletes, 2)
        self.assertEqual(dashboard["year"].new_athletes, 4)
        self.assertEqual(dashboard["all"].new_athletes, 4)
        self.assertEqual(dashboard["all"].total_athletes, 4)
        for name in ("today", "week", "month", "year"):
            self.assertIsNone(dashboard[name].total_athletes)
            self.assertNotIn("totalAthletes", dashboard[name].to_dict())

    def test_admin_scope_covers_every_athlete(self) -> None:
        self.log(self.running, 30, NOW - datetime.timedelta(hours=1))
        self.log(self.cycling, 60, NOW - datetime.timedelta(hours=1), athlete=self.other)
        admin = self.service.dashboard(DashboardScope.admin(), NOW)
        alice = self.service.dashboard(DashboardScope.athlete(self.athlete), NOW)
        self.assertEqual(admin["today"].total_duration_minutes, 90)
        self.assertEqual(admin["today"].most_time_spent_exercise_name, "Cycling")
        self.assertEqual(alice["today"].total_duration_minutes, 30)
        self.assertEqual(alice["today"].most_time_spent_exercise_name, "Running")

    def test_deleted_exercise_still_counts(self) -> None:
        self.log(self.running, 30, NOW - datetime.timedelta(days=40))
        self.exercises.soft_delete(self.running)
        dashboard = self.service.dashboard(DashboardScope.athlete(self.athlete), NOW)
        self.assertEqual(dashboard["year"].total_calories, 300)
        self.assertEqual(
            [s.exercise_name for s in dashboard["all"].exercise_breakdown], ["Running"]
        )
        self.assertEqual(dashboard["month"].total_calories, 0)

    def test_timeframes_nest(self) -> None:
        for days in (0, 1, 3, 20, 100, 500):
            self.log(self.running, 10 + days % 50, NOW - datetime.timedelta(days=days, minutes=5))
        dashboard = self.service.dashboard(DashboardScope.athlete(self.athlete), NOW)
        self.assertEqual(list(dashboard), list(TIMEFRAMES))
        totals = [dashboard[n].total_duration_minutes for n in TIMEFRAMES]
        self.assertEqual(totals, sorted(totals))
        self.assertEqual(dashboard["all"].total_duration_minutes, 10 + 11 + 13 + 30 + 10 + 10)

    def test_all_includes_early_workouts_west_of_utc(self) -> None:
        self.log(self.running, 30, datetime.datetime(1970, 1, 1, 3, 0, tzinfo=UTC))
        now = datetime.datetime(2024, 5, 15, 9, 0, tzinfo=ZoneInfo("America/Los_Angeles"))
        dashboard = self.service.dashboard(DashboardScope.athlete(self.athlete), now)
        self.assertEqual(len(self.workouts.fetch_history(self.athlete)), 1)
        self.assertEqual(dashboard["all"].total_duration_minutes, 30)

    def test_dashboard_is_idempotent(self) -> None:
        self.log(self.running, 25, NOW - datetime.timedelta(days=2))
        self.log(self.cycling, 25, NOW - datetime.timedelta(days=2))
        scope = DashboardScope.admin()
        first = dashboard_to_dict(self.service.dashboard(scope, NOW))
        second = dashboard_to_dict(self.service.dashboard(scope, NOW))
        self.assertEqual(first, second)
        self.assertEqual(self.service.dashboard(scope, NOW), self.service.dashboard(scope, NOW))

    def test_calorie_tie_prefers_earliest_workout(self) -> None:
        later = self.log(self.running, 20, NOW - datetime.timedelta(hours=1))
        earlier = self.log(self.running, 20, NOW - datetime.timedelta(hours=3))
        today = self.service.timeframe_summary(
            DashboardScope.athlete(self.athlete), "today", NOW
        )
        self.assertEqual(today.top_calorie_workout.id, earlier)
        self.assertNotEqual(today.top_calorie_workout.id, later)

    def test_collaborator_failure_propagates(self) -> None:
        repo = mock.Mock()
        repo.fetch_for_stats.side_effect = RuntimeError("database unavailable")
        service = StatisticsService(repo, self.users)
        with self.assertRaises(RuntimeError):
            service.dashboard(DashboardScope.admin(), NOW)

        users = mock.Mock()
        users.count_athletes.side_effect = RuntimeError("count failed")
        service = StatisticsService(self.workouts, users)
        with self.assertRaises(RuntimeError):
            service.dashboard(DashboardScope.admin(), NOW)

    def test_invalid_scope(self) -> None:
        with self.assertRaises(ValueError):
            self.service.dashboard(DashboardScope("athlete"), NOW)
        with self.assertRaises(ValueError):
            self.service.dashboard(DashboardScope("coach", 1), NOW)
        with self.assertRaises(ValueError):
            StatisticsService(self.workouts).dashboard(DashboardScope.admin(), NOW)

    def test_unknown_timeframe(self) -> None:
        with self.assertRaises(ValueError):
            self.service.timeframe_summary(
                DashboardScope.athlete(self.athlete), "decade", NOW
            )


if __name__ == "__main__":
    unittest.main()
