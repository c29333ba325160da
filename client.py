import requests
from typing import Optional


class AthleteTrackClient:
    """Simple REST client for the athlete track API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        user_id: Optional[int] = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout

    def _headers(self) -> dict:
        if self.user_id is None:
            return {}
        return {"X-User-Id": str(self.user_id)}

    def _get(self, path: str, **params):
        resp = requests.get(
            f"{self.base_url}{path}",
            params=params or None,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def register(self, name: str, email: str, role: str = "athlete") -> int:
        resp = requests.post(
            f"{self.base_url}/users",
            params={"name": name, "email": email, "role": role},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()["id"]

    def list_exercises(self):
        return self._get("/athlete/exercises")

    def log_workout(
        self,
        exercise_id: int,
        duration: int,
        occurred_at: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict:
        params = {"exercise_id": exercise_id, "duration": duration}
        if occurred_at is not None:
            params["occurred_at"] = occurred_at
        if notes is not None:
            params["notes"] = notes
        resp = requests.post(
            f"{self.base_url}/athlete/workouts",
            params=params,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def athlete_dashboard(self, now: Optional[str] = None) -> dict:
        if now is None:
            return self._get("/athlete/dashboard-stats")
        return self._get("/athlete/dashboard-stats", now=now)

    def admin_dashboard(self, now: Optional[str] = None) -> dict:
        if now is None:
            return self._get("/admin/dashboard-stats")
        return self._get("/admin/dashboard-stats", now=now)
