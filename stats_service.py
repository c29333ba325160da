from __future__ import annotations
import asyncio
import datetime
import logging
from typing import Dict, List

from algorithms import TIMEFRAMES, TimeframeResolver, WorkoutAggregator
from db import (
    AsyncUserRepository,
    AsyncWorkoutRepository,
    UserRepository,
    WorkoutRepository,
)
from models import DashboardScope, TimeframeSummary

logger = logging.getLogger(__name__)


class StatisticsService:
    """Compute dashboard statistics over the fixed reporting timeframes.

    ``now`` is always supplied by the caller; nothing here reads the clock.
    Every call recomputes from the repositories, there is no caching.
    """

    def __init__(
        self,
        workout_repo: WorkoutRepository,
        user_repo: UserRepository | None = None,
        async_workout_repo: AsyncWorkoutRepository | None = None,
        async_user_repo: AsyncUserRepository | None = None,
    ) -> None:
        self.workouts = workout_repo
        self.users = user_repo
        self.async_workouts = async_workout_repo
        self.async_users = async_user_repo

    def _check_scope(self, scope: DashboardScope, users) -> None:
        scope.validate()
        if scope.is_admin and users is None:
            raise ValueError("admin dashboard requires a user repository")

    def timeframe_summary(
        self,
        scope: DashboardScope,
        timeframe: str,
        now: datetime.datetime,
    ) -> TimeframeSummary:
        """Return the summary of a single timeframe for ``scope``."""
        self._check_scope(scope, self.users)
        start = TimeframeResolver.start_of(timeframe, now)
        rows = self.workouts.fetch_for_stats(start, scope.athlete_id)
        summary = WorkoutAggregator.summarize(rows)
        if scope.is_admin:
            summary.new_athletes = self.users.count_athletes(created_since=start)
            if timeframe == "all":
                summary.total_athletes = self.users.count_athletes()
        return summary

    def dashboard(
        self, scope: DashboardScope, now: datetime.datetime
    ) -> Dict[str, TimeframeSummary]:
        """Return summaries for every timeframe, ordered today to all."""
        self._check_scope(scope, self.users)
        logger.debug("computing %s dashboard at %s", scope.role, now.isoformat())
        return {name: self.timeframe_summary(scope, name, now) for name in TIMEFRAMES}

    async def _timeframe_summary_async(
        self, scope: DashboardScope, timeframe: str, now: datetime.datetime
    ) -> TimeframeSummary:
        start = TimeframeResolver.start_of(timeframe, now)
        rows = await self.async_workouts.fetch_for_stats(start, scope.athlete_id)
        summary = WorkoutAggregator.summarize(rows)
        if scope.is_admin:
            summary.new_athletes = await self.async_users.count_athletes(
                created_since=start
            )
            if timeframe == "all":
                summary.total_athletes = await self.async_users.count_athletes()
        return summary

    async def dashboard_async(
        self, scope: DashboardScope, now: datetime.datetime
    ) -> Dict[str, TimeframeSummary]:
        """Concurrent variant of :meth:`dashboard` over the async repositories.

        The timeframes are fetched in parallel; the result keeps the fixed
        timeframe order. Any failure is raised and no partial result is returned.
        """
        if self.async_workouts is None:
            raise ValueError("async dashboard requires an async workout repository")
        self._check_scope(scope, self.async_users)
        summaries: List[TimeframeSummary] = await asyncio.gather(
            *(self._timeframe_summary_async(scope, name, now) for name in TIMEFRAMES)
        )
        return dict(zip(TIMEFRAMES, summaries))

