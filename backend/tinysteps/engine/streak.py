"""
Streak tracking — pure functions, no DB access.
"""
from datetime import date, timedelta
from typing import Iterable

from ..models import StreakRecord


def advance_streak(record: StreakRecord, today: date) -> StreakRecord:
    """
    Returns the record after one completion event on `today`.
    Same-day completions count toward the total but not the streak.
    """
    yesterday = today - timedelta(days=1)

    if record.last_completion_date == yesterday:
        new_streak = record.current_streak + 1
    elif record.last_completion_date == today:
        new_streak = record.current_streak
    else:
        new_streak = 1

    return StreakRecord(
        current_streak=new_streak,
        longest_streak=max(record.longest_streak, new_streak),
        last_completion_date=today,
        total_completions=record.total_completions + 1,
    )


def replay_completions(days: Iterable[date]) -> StreakRecord:
    """Rebuild a record from completion days given in chronological order."""
    record = StreakRecord()
    for day in days:
        record = advance_streak(record, day)
    return record
