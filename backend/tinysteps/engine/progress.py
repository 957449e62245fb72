"""
Weekly progress summary over completed tasks.
"""
from datetime import datetime, timezone


def completion_day(completed_at: str) -> str:
    ts = datetime.fromisoformat(completed_at.replace("Z", "+00:00"))
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.date().isoformat()


def weekly_summary(completed_tasks: list[dict]) -> dict:
    """
    Aggregate tasks completed in the last 7 days.
    Category comes from the linked project; unlinked tasks are 'uncategorized'.
    """
    category_count: dict[str, int] = {}
    days: set[str] = set()

    for task in completed_tasks:
        category = (task.get("projects") or {}).get("category") or "uncategorized"
        category_count[category] = category_count.get(category, 0) + 1
        if task.get("completed_at"):
            days.add(completion_day(task["completed_at"]))

    ranked = sorted(category_count.items(), key=lambda x: x[1], reverse=True)
    return {
        "total_tasks": len(completed_tasks),
        "days_with_tasks": len(days),
        "category_count": category_count,
        "top_category": ranked[0][0] if ranked else "none",
    }
