import datetime
import logging
from zoneinfo import ZoneInfo

from fastapi import (
    FastAPI,
    HTTPException,
    APIRouter,
    Header,
    Depends,
)
from fastapi.concurrency import run_in_threadpool
from db import (
    UserRepository,
    AsyncUserRepository,
    ExerciseRepository,
    WorkoutRepository,
    AsyncWorkoutRepository,
    SettingsRepository,
    NotFoundError,
    ConflictError,
)
from models import ROLE_ADMIN, ROLE_ATHLETE, DashboardScope, dashboard_to_dict
from stats_service import StatisticsService
from config import APP_VERSION, DEFAULT_DB_PATH

logger = logging.getLogger(__name__)


def _http_error(e: ValueError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _user_json(user: dict) -> dict:
    return {**user, "created_at": user["created_at"].isoformat()}


class AthleteTrackAPI:
    """Provides REST endpoints for workout logging and dashboards."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.users = UserRepository(db_path)
        self.exercises = ExerciseRepository(db_path)
        self.workouts = WorkoutRepository(db_path)
        self.statistics = StatisticsService(
            self.workouts,
            self.users,
            AsyncWorkoutRepository(db_path),
            AsyncUserRepository(db_path),
        )
        self.app = FastAPI(
            title="Athlete Track API",
            description="REST API for workout logging and dashboard statistics",
            version=APP_VERSION,
        )
        self._setup_routes()

    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.settings.get_text("timezone", "UTC"))

    def parse_datetime(self, text: str) -> datetime.datetime:
        """Parse ISO 8601 text; naive values use the configured timezone."""
        try:
            value = datetime.datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"invalid ISO 8601 timestamp: {text}")
        if value.tzinfo is None:
            value = value.replace(tzinfo=self.timezone())
        return value

    def reference_time(self, now: str | None = None) -> datetime.datetime:
        if now is None:
            return datetime.datetime.now(self.timezone())
        return self.parse_datetime(now)

    def _occurred_at(self, text: str | None) -> datetime.datetime | None:
        if text is None:
            return None
        value = self.parse_datetime(text)
        if value > datetime.datetime.now(datetime.timezone.utc):
            raise ValueError("date cannot be in the future")
        return value

    def _setup_routes(self) -> None:
        athlete_router = APIRouter(prefix="/athlete", tags=["Athlete"])
        admin_router = APIRouter(prefix="/admin", tags=["Admin"])

        def current_user(x_user_id: int | None = Header(None)) -> dict:
            if x_user_id is None:
                raise HTTPException(status_code=401, detail="authentication required")
            try:
                return self.users.fetch_detail(x_user_id)
            except NotFoundError:
                raise HTTPException(status_code=401, detail="unknown user")

        def require_athlete(user: dict = Depends(current_user)) -> dict:
            if user["role"] != ROLE_ATHLETE:
                raise HTTPException(status_code=403, detail="Access denied")
            return user

        def require_admin(user: dict = Depends(current_user)) -> dict:
            if user["role"] != ROLE_ADMIN:
                raise HTTPException(status_code=403, detail="Access denied")
            return user

        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.users.count_athletes()
                return {"status": "ok"}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.post("/users", summary="Register user")
        def register_user(
            name: str,
            email: str,
            role: str = ROLE_ATHLETE,
            height: float | None = None,
            weight: float | None = None,
        ):
            try:
                uid = self.users.create(name, email, role, height, weight)
            except ValueError as e:
                raise _http_error(e)
            return {"id": uid}

        @self.app.get("/users/me")
        def get_me(user: dict = Depends(current_user)):
            return _user_json(user)

        @self.app.put("/users/me", summary="Update profile")
        def update_me(
            name: str | None = None,
            email: str | None = None,
            height: float | None = None,
            weight: float | None = None,
            user: dict = Depends(current_user),
        ):
            try:
                updated = self.users.update_profile(
                    user["id"], name, email, height, weight
                )
            except ValueError as e:
                raise _http_error(e)
            return _user_json(updated)

        @athlete_router.get("/exercises")
        def list_active_exercises(user: dict = Depends(require_athlete)):
            return self.exercises.fetch_all_exercises(include_deleted=False)

        @athlete_router.post("/workouts", summary="Log workout")
        def log_workout(
            exercise_id: int,
            duration: int,
            occurred_at: str | None = None,
            notes: str | None = None,
            user: dict = Depends(require_athlete),
        ):
            try:
                wid = self.workouts.create(
                    user["id"],
                    exercise_id,
                    duration,
                    self._occurred_at(occurred_at),
                    notes,
                )
                return self.workouts.fetch_detail(wid).to_dict()
            except ValueError as e:
                raise _http_error(e)

        @athlete_router.get("/workouts", summary="Workout history")
        def athlete_history(user: dict = Depends(require_athlete)):
            return [w.to_dict() for w in self.workouts.fetch_history(user["id"])]

        def _own_workout(workout_id: int, user: dict):
            try:
                workout = self.workouts.fetch_detail(workout_id)
            except ValueError as e:
                raise _http_error(e)
            if workout.athlete_id != user["id"]:
                raise HTTPException(status_code=404, detail="Workout not found")
            return workout

        @athlete_router.put("/workouts/{workout_id}")
        def update_workout(
            workout_id: int,
            exercise_id: int | None = None,
            duration: int | None = None,
            occurred_at: str | None = None,
            notes: str | None = None,
            user: dict = Depends(require_athlete),
        ):
            _own_workout(workout_id, user)
            try:
                workout = self.workouts.update(
                    workout_id,
                    exercise_id,
                    duration,
                    self._occurred_at(occurred_at),
                    notes,
                )
            except ValueError as e:
                raise _http_error(e)
            return workout.to_dict()

        @athlete_router.delete("/workouts/{workout_id}")
        def delete_own_workout(workout_id: int, user: dict = Depends(require_athlete)):
            _own_workout(workout_id, user)
            self.workouts.delete(workout_id)
            return {"status": "deleted"}

        @athlete_router.get(
            "/dashboard-stats",
            summary="Athlete dashboard",
            description="Calories, duration and exercise breakdown for today, this week, month, year and all time.",
        )
        def athlete_dashboard(now: str | None = None, user: dict = Depends(require_athlete)):
            try:
                ref = self.reference_time(now)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            try:
                data = self.statistics.dashboard(DashboardScope.athlete(user["id"]), ref)
            except Exception:
                logger.exception("athlete dashboard failed for user %s", user["id"])
                raise HTTPException(
                    status_code=500, detail="Failed to fetch dashboard stats"
                )
            return dashboard_to_dict(data)

        @admin_router.get("/exercises")
        def list_exercises(show_deleted: bool = False, user: dict = Depends(require_admin)):
            return self.exercises.fetch_all_exercises(include_deleted=show_deleted)

        @admin_router.post("/exercises", status_code=201)
        def create_exercise(
            name: str, calories_per_min: float, user: dict = Depends(require_admin)
        ):
            try:
                eid = self.exercises.add(name, calories_per_min)
            except ValueError as e:
                raise _http_error(e)
            return {"id": eid}

        @admin_router.put("/exercises/{exercise_id}")
        def update_exercise(
            exercise_id: int,
            name: str,
            calories_per_min: float,
            user: dict = Depends(require_admin),
        ):
            try:
                self.exercises.update(exercise_id, name, calories_per_min)
                return self.exercises.fetch_detail(exercise_id)
            except ValueError as e:
                raise _http_error(e)

        @admin_router.delete("/exercises/{exercise_id}")
        def delete_exercise(exercise_id: int, user: dict = Depends(require_admin)):
            try:
                self.exercises.soft_delete(exercise_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @admin_router.patch("/exercises/{exercise_id}/restore")
        def restore_exercise(
            exercise_id: int,
            calories_per_min: float | None = None,
            user: dict = Depends(require_admin),
        ):
            try:
                return self.exercises.restore(exercise_id, calories_per_min)
            except ValueError as e:
                raise _http_error(e)

        @admin_router.get("/athletes")
        def list_athletes(user: dict = Depends(require_admin)):
            return [_user_json(u) for u in self.users.fetch_all_users(ROLE_ATHLETE)]

        @admin_router.get("/workouts")
        def all_workouts(user: dict = Depends(require_admin)):
            athletes = {u["id"]: u for u in self.users.fetch_all_users()}
            result = []
            for workout in self.workouts.fetch_history():
                athlete = athletes.get(workout.athlete_id, {})
                item = workout.to_dict()
                item["athlete"] = {
                    "id": workout.athlete_id,
                    "name": athlete.get("name"),
                    "email": athlete.get("email"),
                }
                result.append(item)
            return {"count": len(result), "data": result}

        @admin_router.delete("/workouts/{workout_id}")
        def delete_any_workout(workout_id: int, user: dict = Depends(require_admin)):
            try:
                self.workouts.delete(workout_id)
            except ValueError as e:
                raise _http_error(e)
            return {"status": "deleted"}

        @admin_router.get(
            "/dashboard-stats",
            summary="Admin dashboard",
            description="Platform-wide workout statistics plus athlete join counts per timeframe.",
        )
        async def admin_dashboard(now: str | None = None, user: dict = Depends(require_admin)):
            try:
                ref = await run_in_threadpool(self.reference_time, now)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            try:
                data = await self.statistics.dashboard_async(DashboardScope.admin(), ref)
            except Exception:
                logger.exception("admin dashboard failed")
                raise HTTPException(
                    status_code=500, detail="Failed to fetch admin dashboard stats"
                )
            return dashboard_to_dict(data)

        self.app.include_router(athlete_router)
        self.app.include_router(admin_router)


def create_app(db_path: str = DEFAULT_DB_PATH, yaml_path: str = "settings.yaml") -> FastAPI:
    api = AthleteTrackAPI(db_path=db_path, yaml_path=yaml_path)
    logging.basicConfig(level=api.settings.get_text("log_level", "INFO").upper())
    return api.app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app())
