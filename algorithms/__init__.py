from .timeframes import TIMEFRAMES, TimeframeResolver
from .workout_aggregator import WorkoutAggregator

__all__ = ["TIMEFRAMES", "TimeframeResolver", "WorkoutAggregator"]
