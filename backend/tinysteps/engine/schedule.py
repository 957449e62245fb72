"""
Scheduling rules for the 7-day planner.
"""
from datetime import date, timedelta

MAX_TASKS_PER_DAY = 3
SCHEDULE_WINDOW_DAYS = 7


def schedule_window(today: date) -> list[date]:
    return [today + timedelta(days=i) for i in range(SCHEDULE_WINDOW_DAYS)]


def in_window(day: date, today: date) -> bool:
    return today <= day < today + timedelta(days=SCHEDULE_WINDOW_DAYS)


def _scheduled_on(tasks: list[dict], day: date) -> list[dict]:
    iso = day.isoformat()
    return [
        t for t in tasks
        if (t.get("scheduled_date") or "")[:10] == iso and not t.get("completed_at")
    ]


def is_day_full(tasks: list[dict], day: date) -> bool:
    return len(_scheduled_on(tasks, day)) >= MAX_TASKS_PER_DAY


def group_by_day(tasks: list[dict], today: date) -> list[dict]:
    groups = []
    for day in schedule_window(today):
        day_tasks = _scheduled_on(tasks, day)
        groups.append({
            "date": day.isoformat(),
            "tasks": day_tasks,
            "count": len(day_tasks),
            "limit": MAX_TASKS_PER_DAY,
            "full": len(day_tasks) >= MAX_TASKS_PER_DAY,
        })
    return groups
