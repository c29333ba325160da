from typing import Dict, Iterable, Optional

from models import ExerciseShare, TimeframeSummary, Workout


class WorkoutAggregator:
    """Reduce a pre-filtered workout sequence into a timeframe summary."""

    PERCENT_DIGITS: int = 2

    @staticmethod
    def _check(workout: Workout) -> None:
        if workout.duration_minutes < 0:
            raise ValueError(f"workout {workout.id}: duration must be non-negative")
        if workout.calories_burned < 0:
            raise ValueError(f"workout {workout.id}: calories must be non-negative")
        if not workout.exercise_name:
            raise ValueError(f"workout {workout.id}: exercise name is required")

    @classmethod
    def percentage(cls, part: float, total: float) -> float:
        """Return ``part`` as a percentage of ``total``, 0 when total is 0."""
        if total <= 0:
            return 0
        return round(part / total * 100, cls.PERCENT_DIGITS)

    @staticmethod
    def most_time_spent(durations: Dict[str, int]) -> Optional[str]:
        """Return the key with the largest duration; earlier keys win ties."""
        best: Optional[str] = None
        for name, minutes in durations.items():
            if best is None or minutes > durations[best]:
                best = name
        return best

    @classmethod
    def summarize(cls, workouts: Iterable[Workout]) -> TimeframeSummary:
        """Return totals, top workout and per-exercise breakdown.

        Ties are resolved in favour of whatever was encountered first, so
        the result depends on input order only when values tie.
        """
        total_calories: float = 0
        total_duration = 0
        top: Optional[Workout] = None
        durations: Dict[str, int] = {}
        for workout in workouts:
            cls._check(workout)
            total_calories += workout.calories_burned
            total_duration += workout.duration_minutes
            if top is None or workout.calories_burned > top.calories_burned:
                top = workout
            name = workout.exercise_name
            durations[name] = durations.get(name, 0) + workout.duration_minutes

        breakdown = [
            ExerciseShare(
                exercise_name=name,
                total_duration_minutes=minutes,
                percentage_of_total_duration=cls.percentage(minutes, total_duration),
            )
            for name, minutes in durations.items()
        ]
        return TimeframeSummary(
            total_calories=total_calories,
            total_duration_minutes=total_duration,
            top_calorie_workout=top,
            most_time_spent_exercise_name=cls.most_time_spent(durations),
            exercise_breakdown=breakdown,
        )
