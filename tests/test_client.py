import unittest
import sys
import os
from unittest import mock

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from client import AthleteTrackClient


class ClientTest(unittest.TestCase):
    def setUp(self) -> None:
        self.client = AthleteTrackClient(base_url="http://testserver/", user_id=7)

    @mock.patch("client.requests.get")
    def test_dashboard_sends_user_header(self, get) -> None:
        get.return_value.json.return_value = {"today": {}}
        self.assertEqual(self.client.athlete_dashboard(), {"today": {}})
        get.assert_called_once_with(
            "http://testserver/athlete/dashboard-stats",
            params=None,
            headers={"X-User-Id": "7"},
            timeout=10.0,
        )
        get.return_value.raise_for_status.assert_called_once()

    @mock.patch("client.requests.get")
    def test_admin_dashboard_with_reference_time(self, get) -> None:
        self.client.admin_dashboard(now="2024-05-15T12:00:00Z")
        get.assert_called_once_with(
            "http://testserver/admin/dashboard-stats",
            params={"now": "2024-05-15T12:00:00Z"},
            headers={"X-User-Id": "7"},
            timeout=10.0,
        )

    @mock.patch("client.requests.post")
    def test_register_and_log_workout(self, post) -> None:
        post.return_value.json.return_value = {"id": 3}
        anonymous = AthleteTrackClient(base_url="http://testserver")
        self.assertEqual(anonymous.register("Alice", "alice@example.com"), 3)
        self.assertEqual(
            post.call_args.kwargs["params"],
            {"name": "Alice", "email": "alice@example.com", "role": "athlete"},
        )

        self.client.log_workout(2, 30, notes="tempo run")
        args, kwargs = post.call_args
        self.assertEqual(args[0], "http://testserver/athlete/workouts")
        self.assertEqual(
            kwargs["params"], {"exercise_id": 2, "duration": 30, "notes": "tempo run"}
        )
        self.assertEqual(kwargs["headers"], {"X-User-Id": "7"})

    @mock.patch("client.requests.get")
    def test_http_errors_propagate(self, get) -> None:
        get.return_value.raise_for_status.side_effect = RuntimeError("403")
        with self.assertRaises(RuntimeError):
            self.client.list_exercises()


if __name__ == "__main__":
    unittest.main()
