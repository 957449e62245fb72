"""
Record store helpers against a mocked Supabase client.
"""
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from tinysteps.db import (
    get_inbox_items, get_streak, get_user_id, mark_task_completed, put_streak, set_inbox_status,
)
from tinysteps.errors import PersistenceError
from tinysteps.models import StreakRecord

USER = "7a1c0de2-5b4e-4c1a-9f00-0123456789ab"
RECORD = StreakRecord(current_streak=2, longest_streak=4,
                      last_completion_date=date(2026, 3, 10), total_completions=9)


def _result(data):
    res = MagicMock()
    res.data = data
    return res


class TestGetStreak:
    def test_absent_row_is_none(self):
        db = MagicMock()
        db.table.return_value.select.return_value.eq.return_value.execute.return_value = _result([])
        assert get_streak(db, USER) is None

    def test_row_is_parsed(self):
        db = MagicMock()
        db.table.return_value.select.return_value.eq.return_value.execute.return_value = _result([{
            "user_id": USER, "current_streak": 2, "longest_streak": 4,
            "last_completion_date": "2026-03-10", "total_completions": 9,
        }])
        assert get_streak(db, USER) == RECORD

    def test_client_error_becomes_persistence_error(self):
        db = MagicMock()
        db.table.return_value.select.return_value.eq.return_value.execute.side_effect = RuntimeError("timeout")
        with pytest.raises(PersistenceError):
            get_streak(db, USER)


class TestPutStreak:
    def test_first_record_is_inserted(self):
        db = MagicMock()
        assert put_streak(db, USER, RECORD, expected=None) is True
        row = db.table.return_value.insert.call_args.args[0]
        assert row["user_id"] == USER
        assert row["total_completions"] == 9
        assert row["last_completion_date"] == "2026-03-10"
        assert "updated_at" in row

    def test_insert_losing_to_unique_constraint_returns_false(self):
        db = MagicMock()
        db.table.return_value.insert.return_value.execute.side_effect = Exception(
            "duplicate key value violates unique constraint (23505)"
        )
        assert put_streak(db, USER, RECORD, expected=None) is False

    def test_other_insert_error_raises(self):
        db = MagicMock()
        db.table.return_value.insert.return_value.execute.side_effect = Exception("connection reset")
        with pytest.raises(PersistenceError):
            put_streak(db, USER, RECORD, expected=None)

    def test_update_is_conditional_on_prior_total(self):
        db = MagicMock()
        by_user = db.table.return_value.update.return_value.eq.return_value
        by_user.eq.return_value.execute.return_value = _result([{"user_id": USER}])
        prior = StreakRecord(current_streak=1, longest_streak=4,
                             last_completion_date=date(2026, 3, 9), total_completions=8)

        assert put_streak(db, USER, RECORD, expected=prior) is True
        by_user.eq.assert_called_once_with("total_completions", 8)

    def test_update_matching_no_row_returns_false(self):
        db = MagicMock()
        by_user = db.table.return_value.update.return_value.eq.return_value
        by_user.eq.return_value.execute.return_value = _result([])
        prior = StreakRecord(total_completions=8)
        assert put_streak(db, USER, RECORD, expected=prior) is False

    def test_zero_total_also_matches_null_column(self):
        db = MagicMock()
        by_user = db.table.return_value.update.return_value.eq.return_value
        by_user.or_.return_value.execute.return_value = _result([{"user_id": USER}])
        assert put_streak(db, USER, RECORD, expected=StreakRecord()) is True
        by_user.or_.assert_called_once_with("total_completions.is.null,total_completions.eq.0")


class TestGetUserId:
    def test_valid_token(self):
        db = MagicMock()
        db.auth.get_user.return_value.user.id = USER
        assert get_user_id(db, "jwt") == USER

    def test_rejected_token(self):
        db = MagicMock()
        db.auth.get_user.side_effect = Exception("invalid JWT")
        assert get_user_id(db, "jwt") is None

    def test_no_user_in_response(self):
        db = MagicMock()
        db.auth.get_user.return_value = None
        assert get_user_id(db, "jwt") is None


class TestMarkTaskCompleted:
    NOW = datetime(2026, 3, 10, 8, 0, tzinfo=timezone.utc)

    def _chain(self, db):
        return db.table.return_value.update.return_value.eq.return_value.eq.return_value

    def test_only_open_tasks_are_claimed(self):
        db = MagicMock()
        self._chain(db).is_.return_value.execute.return_value = _result([{"id": "t1"}])
        assert mark_task_completed(db, USER, "t1", self.NOW) is True
        self._chain(db).is_.assert_called_once_with("completed_at", "null")
        fields = db.table.return_value.update.call_args.args[0]
        assert fields == {"completed_at": self.NOW.isoformat(), "task_status": "done"}

    def test_already_completed_task_is_not_claimed(self):
        db = MagicMock()
        self._chain(db).is_.return_value.execute.return_value = _result([])
        assert mark_task_completed(db, USER, "t1", self.NOW) is False


class TestInboxHelpers:
    def test_pending_items_newest_first(self):
        db = MagicMock()
        pending = db.table.return_value.select.return_value.eq.return_value.eq.return_value
        pending.order.return_value.execute.return_value = _result([{"id": "a"}])
        assert get_inbox_items(db, USER) == [{"id": "a"}]
        db.table.return_value.select.return_value.eq.return_value.eq.assert_called_once_with("status", "inbox")
        pending.order.assert_called_once_with("created_at", desc=True)

    def test_pending_items_oldest_first(self):
        db = MagicMock()
        pending = db.table.return_value.select.return_value.eq.return_value.eq.return_value
        pending.order.return_value.execute.return_value = _result(None)
        assert get_inbox_items(db, USER, newest_first=False) == []
        pending.order.assert_called_once_with("created_at", desc=False)

    def test_status_change_is_conditional_on_current_status(self):
        db = MagicMock()
        by_owner = db.table.return_value.update.return_value.eq.return_value.eq.return_value
        by_owner.eq.return_value.execute.return_value = _result([{"id": "item-1"}])
        assert set_inbox_status(db, USER, "item-1", "converted") is True
        by_owner.eq.assert_called_once_with("status", "inbox")

    def test_status_change_on_handled_item_returns_false(self):
        db = MagicMock()
        by_owner = db.table.return_value.update.return_value.eq.return_value.eq.return_value
        by_owner.eq.return_value.execute.return_value = _result([])
        assert set_inbox_status(db, USER, "item-1", "inbox", from_status="converted") is False
        by_owner.eq.assert_called_once_with("status", "converted")
