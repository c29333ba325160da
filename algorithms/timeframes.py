import datetime
from typing import Dict

TIMEFRAMES = ("today", "week", "month", "year", "all")


class TimeframeResolver:
    """Map timeframe names to the inclusive start instant of their window."""

    EPOCH = datetime.datetime(1970, 1, 1)

    @staticmethod
    def _midnight(now: datetime.datetime, day: datetime.date) -> datetime.datetime:
        return datetime.datetime.combine(day, datetime.time(0, 0), tzinfo=now.tzinfo)

    @classmethod
    def start_of(cls, name: str, now: datetime.datetime) -> datetime.datetime:
        """Return the start of timeframe ``name`` relative to ``now``.

        Boundaries use the calendar of ``now``'s timezone and keep its
        tzinfo. Weeks start on Monday. ``all`` starts at the UTC epoch.
        """
        today = now.date()
        if name == "today":
            return cls._midnight(now, today)
        if name == "week":
            return cls._midnight(now, today - datetime.timedelta(days=today.weekday()))
        if name == "month":
            return cls._midnight(now, today.replace(day=1))
        if name == "year":
            return cls._midnight(now, today.replace(month=1, day=1))
        if name == "all":
            if now.tzinfo is None:
                return cls.EPOCH
            return cls.EPOCH.replace(tzinfo=datetime.timezone.utc).astimezone(now.tzinfo)
        raise ValueError(f"unknown timeframe: {name}")

    @classmethod
    def resolve_all(cls, now: datetime.datetime) -> Dict[str, datetime.datetime]:
        """Return the start instant of every timeframe in fixed order."""
        return {name: cls.start_of(name, now) for name in TIMEFRAMES}
