import datetime
from typing import Iterable

from .sydney_time import APP_TZ, SydneyTime


class Adherence:
    """Training streaks and weekly counts over a set of trained day keys."""

    @staticmethod
    def compute_streak(
        trained_days: Iterable[str],
        today: datetime.datetime,
        max_lookback_days: int = 365,
        timezone: str = APP_TZ,
    ) -> int:
        days = set(trained_days)
        streak = 0
        for i in range(max_lookback_days):
            key = SydneyTime.day_key(today - datetime.timedelta(days=i), timezone)
            if key not in days:
                break
            streak += 1
        return streak

    @staticmethod
    def compute_week_count(
        trained_days: Iterable[str], week_start: datetime.date
    ) -> int:
        days = set(trained_days)
        return sum(
            1
            for i in range(7)
            if (week_start + datetime.timedelta(days=i)).isoformat() in days
        )
