from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from typing import List, Optional


ROLE_ATHLETE = "athlete"
ROLE_ADMIN = "admin"
ROLES = (ROLE_ATHLETE, ROLE_ADMIN)


def format_timestamp(value: datetime.datetime) -> str:
    """Return ``value`` as ISO 8601 text, appending ``Z`` for UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    text = value.isoformat()
    return text.replace("+00:00", "Z")


@dataclass(frozen=True)
class Workout:
    """A logged workout with its exercise name and calories resolved."""

    id: int
    athlete_id: int
    exercise_id: int
    exercise_name: str
    duration_minutes: int
    calories_burned: float
    occurred_at: datetime.datetime
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "athleteId": self.athlete_id,
            "exerciseId": self.exercise_id,
            "exerciseName": self.exercise_name,
            "durationMinutes": self.duration_minutes,
            "caloriesBurned": self.calories_burned,
            "occurredAt": format_timestamp(self.occurred_at),
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ExerciseShare:
    """Time spent on one exercise within a timeframe."""

    exercise_name: str
    total_duration_minutes: int
    percentage_of_total_duration: float

    def to_dict(self) -> dict:
        return {
            "exerciseName": self.exercise_name,
            "totalDurationMinutes": self.total_duration_minutes,
            "percentageOfTotalDuration": self.percentage_of_total_duration,
        }


@dataclass
class TimeframeSummary:
    """Aggregated statistics for one timeframe.

    ``new_athletes`` and ``total_athletes`` are only filled in for the
    admin dashboard; ``total_athletes`` only for the ``all`` timeframe.
    """

    total_calories: float = 0
    total_duration_minutes: int = 0
    top_calorie_workout: Optional[Workout] = None
    most_time_spent_exercise_name: Optional[str] = None
    exercise_breakdown: List[ExerciseShare] = field(default_factory=list)
    new_athletes: Optional[int] = None
    total_athletes: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "totalCalories": self.total_calories,
            "totalDurationMinutes": self.total_duration_minutes,
            "topCalorieWorkout": (
                self.top_calorie_workout.to_dict()
                if self.top_calorie_workout is not None
                else None
            ),
            "mostTimeSpentExerciseName": self.most_time_spent_exercise_name,
            "exerciseBreakdown": [s.to_dict() for s in self.exercise_breakdown],
        }
        if self.new_athletes is not None:
            data["newAthletes"] = self.new_athletes
        if self.total_athletes is not None:
            data["totalAthletes"] = self.total_athletes
        return data


@dataclass(frozen=True)
class DashboardScope:
    """Whose workouts a dashboard covers."""

    role: str
    athlete_id: Optional[int] = None

    @classmethod
    def athlete(cls, athlete_id: int) -> "DashboardScope":
        return cls(ROLE_ATHLETE, athlete_id)

    @classmethod
    def admin(cls) -> "DashboardScope":
        return cls(ROLE_ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def validate(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"unknown role: {self.role}")
        if self.role == ROLE_ATHLETE and self.athlete_id is None:
            raise ValueError("athlete scope requires an athlete id")


def dashboard_to_dict(dashboard: dict[str, TimeframeSummary]) -> dict:
    """Return a JSON serializable copy of a dashboard mapping."""
    return {name: summary.to_dict() for name, summary in dashboard.items()}
