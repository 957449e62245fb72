"""
Rebuild a user's streak_data row from the completion timestamps on their tasks.

Useful after a streak write was lost (the completion path treats the streak
update as best effort). Only tasks that are still completed are counted, so
total_completions can come out lower than the stored value if tasks were
reopened; the script never lowers it.

Usage:
    cd backend
    SUPABASE_URL=... SUPABASE_SERVICE_KEY=... python scripts/backfill_streaks.py <user_id> [--dry-run]

A .env file in the working directory is loaded if present.
"""
import sys
from datetime import date

from dotenv import load_dotenv

from tinysteps.db import get_client, get_streak, put_streak
from tinysteps.engine.progress import completion_day
from tinysteps.engine.streak import replay_completions
from tinysteps.models import StreakRecord

load_dotenv()

PAGE_SIZE = 1000  # Supabase row limit per request
MAX_ATTEMPTS = 3


def fetch_completion_timestamps(db, user_id: str) -> list[str]:
    """Fetch completed_at for every completed task of a user, oldest first."""
    stamps: list[str] = []
    offset = 0
    while True:
        res = (
            db.table("tasks")
            .select("completed_at")
            .eq("user_id", user_id)
            .not_.is_("completed_at", "null")
            .order("completed_at")
            .range(offset, offset + PAGE_SIZE - 1)
            .execute()
        )
        batch = res.data or []
        stamps.extend(row["completed_at"] for row in batch if row.get("completed_at"))
        print(f"  fetched {len(stamps)} completions...", end="\r")
        if len(batch) < PAGE_SIZE:
            break
        offset += PAGE_SIZE
    print(f"  fetched {len(stamps)} completions total          ")
    return stamps


def compute_backfill(stamps: list[str], current: StreakRecord) -> StreakRecord:
    """
    Replay completions day by day. Streak fields come from the replay;
    longest_streak and total_completions keep the stored value when it is higher.
    """
    days = sorted(date.fromisoformat(completion_day(ts)) for ts in stamps)
    replayed = replay_completions(days)
    return StreakRecord(
        current_streak=replayed.current_streak,
        longest_streak=max(replayed.longest_streak, current.longest_streak),
        last_completion_date=replayed.last_completion_date,
        total_completions=max(replayed.total_completions, current.total_completions),
    )


def run(user_id: str, dry_run: bool = False) -> bool:
    print(f"\nBackfilling streak for user: {user_id[:8]}...\n")

    db = get_client()

    print("  Fetching completions...")
    stamps = fetch_completion_timestamps(db, user_id)
    if not stamps:
        print("  No completed tasks found — nothing to backfill.")
        return False

    # Same compare-and-swap as the live accounter: a completion landing
    # between our read and write makes the write miss, and we start over.
    for _ in range(MAX_ATTEMPTS):
        current = get_streak(db, user_id)
        old = (current or StreakRecord()).model_dump(mode="json")
        new_record = compute_backfill(stamps, current or StreakRecord())

        print(f"\n  Computed record (from {len(stamps)} completions):")
        for k, v in new_record.model_dump(mode="json").items():
            marker = "" if v == old[k] else f" (was {old[k]})"
            print(f"    {k}: {v}{marker}")

        if dry_run:
            print("\n  DRY RUN — no changes written.")
            return False

        if put_streak(db, user_id, new_record, expected=current):
            print(f"\nStreak updated for {user_id[:8]}...\n")
            return True
        print("  Streak changed while backfilling, re-reading...")

    print(f"\nGave up after {MAX_ATTEMPTS} attempts; run again later.")
    sys.exit(1)


if __name__ == "__main__":
    args = [a for a in sys.argv[1:] if a != "--dry-run"]
    dry = "--dry-run" in sys.argv

    if not args:
        print("Usage: python scripts/backfill_streaks.py <user_id> [--dry-run]")
        sys.exit(1)

    run(args[0], dry_run=dry)
