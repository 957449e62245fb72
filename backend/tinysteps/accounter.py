"""
Streak accounting — the single place a completion event turns into new
streak counters.

Both completion paths (checkbox and kanban drag to "done") call
record_completion. The read-modify-write is serialised per user inside this
process and guarded by a compare-and-swap write against the store, so two
workers racing on the same user re-run instead of overwriting each other.
"""
import logging
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone

from supabase import Client

from .db import get_streak, put_streak
from .engine.streak import advance_streak
from .errors import NotAuthenticated, PersistenceError
from .models import StreakRecord, TaskCompleted

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BACKOFF_SECONDS = 0.05

# user_id -> [lock, holders]; an entry is dropped once nobody holds or waits on it
_locks: dict[str, list] = {}
_locks_guard = threading.Lock()


@contextmanager
def _user_lock(user_id: str):
    with _locks_guard:
        entry = _locks.setdefault(user_id, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _locks[user_id]


def utc_day(ts: datetime) -> date:
    """UTC calendar day of a timestamp. Naive timestamps are read as UTC."""
    if ts.tzinfo is None:
        return ts.date()
    return ts.astimezone(timezone.utc).date()


def record_completion(db: Client, user_id: str | None, today: date) -> StreakRecord:
    """
    Count one completion on `today` for `user_id` and persist the new record.

    Raises NotAuthenticated without touching the store when there is no user,
    and PersistenceError when the store fails or the write keeps losing races.
    """
    if not user_id:
        raise NotAuthenticated("no user for completion event")

    with _user_lock(user_id):
        for attempt in range(MAX_ATTEMPTS):
            current = get_streak(db, user_id)
            updated = advance_streak(current or StreakRecord(), today)
            if put_streak(db, user_id, updated, expected=current):
                logger.info("Streak for %s...: %d (longest %d, total %d)",
                            user_id[:8], updated.current_streak,
                            updated.longest_streak, updated.total_completions)
                return updated
            logger.warning("Streak write conflict for %s... (attempt %d)", user_id[:8], attempt + 1)
            if attempt < MAX_ATTEMPTS - 1:
                time.sleep(BACKOFF_SECONDS * (2 ** attempt))

    raise PersistenceError(f"streak update for {user_id[:8]}... lost {MAX_ATTEMPTS} races")


def handle_task_completed(db: Client, event: TaskCompleted) -> StreakRecord:
    return record_completion(db, event.user_id, utc_day(event.completion_timestamp))
