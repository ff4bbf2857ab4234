import os
import sys
import datetime

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from algorithms import Adherence


UTC = datetime.timezone.utc


def test_streak_counts_consecutive_local_days():
    # 02:00 UTC on the 15th is the afternoon of the 15th in Sydney
    now = datetime.datetime(2024, 1, 15, 2, 0, tzinfo=UTC)
    days = {"2024-01-15", "2024-01-14", "2024-01-12"}
    assert Adherence.compute_streak(days, now) == 2


def test_streak_is_zero_without_training_today():
    now = datetime.datetime(2024, 1, 15, 2, 0, tzinfo=UTC)
    assert Adherence.compute_streak({"2024-01-14"}, now) == 0


def test_streak_respects_lookback_limit():
    now = datetime.datetime(2024, 1, 15, 2, 0, tzinfo=UTC)
    days = {
        (datetime.date(2024, 1, 15) - datetime.timedelta(days=i)).isoformat()
        for i in range(30)
    }
    assert Adherence.compute_streak(days, now, max_lookback_days=10) == 10


def test_week_count_only_counts_days_in_week():
    days = {"2024-01-14", "2024-01-15", "2024-01-17", "2024-01-21", "2024-01-22"}
    assert Adherence.compute_week_count(days, datetime.date(2024, 1, 15)) == 3
