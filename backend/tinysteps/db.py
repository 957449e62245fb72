import os
import logging
from datetime import date, datetime, timezone
from functools import lru_cache
from supabase import create_client, Client

from .errors import PersistenceError
from .models import StreakRecord

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_client() -> Client:
    url = os.environ["SUPABASE_URL"]
    key = os.environ["SUPABASE_SERVICE_KEY"]
    return create_client(url, key)


def _execute(query, what: str):
    try:
        return query.execute()
    except Exception as e:
        raise PersistenceError(f"{what} failed: {e}") from e


def _is_unique_violation(e: BaseException) -> bool:
    err_str = str(e).lower()
    return "duplicate" in err_str or "unique" in err_str or "23505" in err_str


def get_user_id(db: Client, access_token: str) -> str | None:
    """Resolve a Supabase Auth access token to a user id, or None if it is invalid."""
    try:
        res = db.auth.get_user(access_token)
    except Exception as e:
        logger.info("Token rejected by auth: %s", e)
        return None
    if not res or not res.user:
        return None
    return res.user.id


# ── Streak record ─────────────────────────────────────────────────────────────

def get_streak(db: Client, user_id: str) -> StreakRecord | None:
    res = _execute(
        db.table("streak_data").select("*").eq("user_id", user_id),
        "streak read",
    )
    return StreakRecord.from_row(res.data[0]) if res.data else None


def put_streak(db: Client, user_id: str, record: StreakRecord, expected: StreakRecord | None) -> bool:
    """
    Write `record` only if the stored row still matches `expected`.

    total_completions grows by one on every write, so it doubles as the row
    version. Returns False when another writer got there first.
    """
    row = {**record.to_row(), "updated_at": datetime.now(timezone.utc).isoformat()}

    if expected is None:
        try:
            db.table("streak_data").insert({"user_id": user_id, **row}).execute()
            return True
        except Exception as e:
            if _is_unique_violation(e):
                return False
            raise PersistenceError(f"streak insert failed: {e}") from e

    query = db.table("streak_data").update(row).eq("user_id", user_id)
    if expected.total_completions == 0:
        query = query.or_("total_completions.is.null,total_completions.eq.0")
    else:
        query = query.eq("total_completions", expected.total_completions)
    res = _execute(query, "streak update")
    return bool(res.data)


# ── Tasks ─────────────────────────────────────────────────────────────────────

def get_task(db: Client, user_id: str, task_id: str) -> dict | None:
    res = _execute(
        db.table("tasks").select("*").eq("id", task_id).eq("user_id", user_id),
        "task read",
    )
    return res.data[0] if res.data else None


def mark_task_completed(db: Client, user_id: str, task_id: str, completed_at: datetime) -> bool:
    """Set completed_at only if it is still empty. Returns False if another request got there first."""
    res = _execute(
        db.table("tasks")
        .update({"completed_at": completed_at.isoformat(), "task_status": "done"})
        .eq("id", task_id)
        .eq("user_id", user_id)
        .is_("completed_at", "null"),
        "task completion",
    )
    return bool(res.data)


def set_task_stage(db: Client, user_id: str, task_id: str, stage: str, clear_completion: bool = False) -> None:
    updates: dict = {"task_status": stage}
    if clear_completion:
        updates["completed_at"] = None
    _execute(
        db.table("tasks").update(updates).eq("id", task_id).eq("user_id", user_id),
        "task stage update",
    )


def get_today_tasks(db: Client, user_id: str, limit: int = 3) -> list[dict]:
    res = _execute(
        db.table("tasks")
        .select("*, projects(outcome, category)")
        .eq("user_id", user_id)
        .eq("task_status", "today")
        .is_("completed_at", "null")
        .order("created_at")
        .limit(limit),
        "today tasks read",
    )
    return res.data or []


def get_scheduled_tasks(db: Client, user_id: str, start: date, end: date) -> list[dict]:
    res = _execute(
        db.table("tasks")
        .select("*, projects(outcome, category)")
        .eq("user_id", user_id)
        .gte("scheduled_date", start.isoformat())
        .lte("scheduled_date", end.isoformat())
        .is_("completed_at", "null")
        .order("scheduled_date"),
        "scheduled tasks read",
    )
    return res.data or []


def insert_task(db: Client, user_id: str, fields: dict) -> dict:
    res = _execute(db.table("tasks").insert({"user_id": user_id, **fields}), "task insert")
    return res.data[0] if res.data else {}


def get_completed_tasks_since(db: Client, user_id: str, since: datetime) -> list[dict]:
    res = _execute(
        db.table("tasks")
        .select("id, completed_at, projects(category)")
        .eq("user_id", user_id)
        .gte("completed_at", since.isoformat()),
        "completed tasks read",
    )
    return res.data or []


# ── Projects ──────────────────────────────────────────────────────────────────

def get_project(db: Client, user_id: str, project_id: str) -> dict | None:
    res = _execute(
        db.table("projects").select("id, outcome, category, status").eq("id", project_id).eq("user_id", user_id),
        "project read",
    )
    return res.data[0] if res.data else None


def count_active_projects(db: Client, user_id: str) -> int:
    res = _execute(
        db.table("projects").select("id", count="exact").eq("user_id", user_id).eq("status", "active"),
        "project count",
    )
    return res.count or 0


def insert_project(db: Client, user_id: str, fields: dict) -> dict:
    res = _execute(db.table("projects").insert({"user_id": user_id, **fields}), "project insert")
    return res.data[0] if res.data else {}


# ── Inbox ─────────────────────────────────────────────────────────────────────

def insert_inbox_item(db: Client, user_id: str, content: str, item_type: str) -> dict:
    res = _execute(
        db.table("inbox_items").insert({"user_id": user_id, "content": content, "type": item_type}),
        "inbox insert",
    )
    return res.data[0] if res.data else {}


def get_inbox_items(db: Client, user_id: str, newest_first: bool = True) -> list[dict]:
    res = _execute(
        db.table("inbox_items")
        .select("*")
        .eq("user_id", user_id)
        .eq("status", "inbox")
        .order("created_at", desc=newest_first),
        "inbox read",
    )
    return res.data or []


def set_inbox_status(db: Client, user_id: str, item_id: str, status: str, from_status: str = "inbox") -> bool:
    """Move an item out of `from_status`. Returns False if no such item is in that status."""
    res = _execute(
        db.table("inbox_items")
        .update({"status": status})
        .eq("id", item_id)
        .eq("user_id", user_id)
        .eq("status", from_status),
        "inbox status update",
    )
    return bool(res.data)


def delete_inbox_item(db: Client, user_id: str, item_id: str) -> bool:
    res = _execute(
        db.table("inbox_items").delete().eq("id", item_id).eq("user_id", user_id),
        "inbox delete",
    )
    return bool(res.data)
