"""
Tiny Steps — FastAPI backend
"""
import logging
import os
from datetime import datetime, timedelta, timezone

from typing import Literal

from fastapi import FastAPI, Header, HTTPException, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .accounter import handle_task_completed
from .db import (
    get_client, get_user_id, get_streak, get_task,
    mark_task_completed, set_task_stage, get_today_tasks,
    get_scheduled_tasks, insert_task, get_completed_tasks_since,
    get_project, count_active_projects, insert_project,
    insert_inbox_item, get_inbox_items, set_inbox_status, delete_inbox_item,
)
from .engine.progress import weekly_summary
from .engine.schedule import (
    MAX_TASKS_PER_DAY, schedule_window, in_window, is_day_full, group_by_day,
)
from .errors import NotAuthenticated, PersistenceError
from .models import (
    DONE_STAGE, InboxCapture, ProjectConvert, ScheduleTask, StageMove, StreakRecord, TaskCompleted,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title="Tiny Steps API")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = [
    o.strip()
    for o in os.environ.get("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:8080").split(",")
    if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(NotAuthenticated)
def not_authenticated_handler(request: Request, exc: NotAuthenticated):
    return JSONResponse(status_code=401, content={"detail": "Not authenticated"})


@app.exception_handler(PersistenceError)
def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


@app.get("/health")
def health():
    try:
        db = get_client()
        db.table("streak_data").select("user_id").limit(1).execute()
        return {"status": "ok", "db": "ok"}
    except Exception as e:
        logger.error("Health check DB failure: %s", e)
        raise HTTPException(status_code=503, detail="DB unavailable")


# ── Auth ──────────────────────────────────────────────────────────────────────

def get_access_token(authorization: str = Header(...)) -> str:
    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing Bearer token")
    return authorization.removeprefix("Bearer ").strip()


def require_user(token: str = Depends(get_access_token)) -> str:
    user_id = get_user_id(get_client(), token)
    if not user_id:
        raise NotAuthenticated("session could not be resolved")
    return user_id


def _today():
    return datetime.now(timezone.utc).date()


def _load_streak(db, user_id: str) -> dict:
    return (get_streak(db, user_id) or StreakRecord()).model_dump(mode="json")


# ── Streak ────────────────────────────────────────────────────────────────────

@app.get("/api/streak")
def read_streak(user_id: str = Depends(require_user)):
    return _load_streak(get_client(), user_id)


# ── Inbox ─────────────────────────────────────────────────────────────────────

@app.post("/api/inbox", status_code=201)
@limiter.limit("60/minute")
def capture(request: Request, body: InboxCapture, user_id: str = Depends(require_user)):
    item = insert_inbox_item(get_client(), user_id, body.content, body.type)
    logger.info("Captured %s for %s...", body.type, user_id[:8])
    return {"status": "captured", "item": item}


@app.get("/api/inbox")
def read_inbox(
    order: Literal["newest", "oldest"] = Query("newest"),
    user_id: str = Depends(require_user),
):
    """Pending items; the clarify flow walks them oldest first."""
    return {"items": get_inbox_items(get_client(), user_id, newest_first=order == "newest")}


@app.post("/api/inbox/{item_id}/archive")
def archive_item(item_id: str, user_id: str = Depends(require_user)):
    if not set_inbox_status(get_client(), user_id, item_id, "archived"):
        raise HTTPException(status_code=404, detail="Inbox item not found")
    return {"status": "archived"}


@app.delete("/api/inbox/{item_id}")
def delete_item(item_id: str, user_id: str = Depends(require_user)):
    if not delete_inbox_item(get_client(), user_id, item_id):
        raise HTTPException(status_code=404, detail="Inbox item not found")
    return {"status": "deleted"}


@app.post("/api/inbox/{item_id}/convert", status_code=201)
@limiter.limit("60/minute")
def convert_item(request: Request, item_id: str, body: ProjectConvert, user_id: str = Depends(require_user)):
    db = get_client()
    # Claim the item first so two converts cannot both create a project.
    if not set_inbox_status(db, user_id, item_id, "converted"):
        raise HTTPException(status_code=404, detail="Inbox item not found")
    try:
        project = insert_project(db, user_id, {
            "outcome": body.outcome,
            "category": body.category,
            "tiny_next_step": body.tiny_next_step,
        })
    except PersistenceError:
        set_inbox_status(db, user_id, item_id, "inbox", from_status="converted")
        raise
    logger.info("Inbox item converted to project for %s...", user_id[:8])
    return {"status": "converted", "project": project}


# ── Today ─────────────────────────────────────────────────────────────────────

@app.get("/api/today")
def read_today(user_id: str = Depends(require_user)):
    db = get_client()
    return {
        "tasks": get_today_tasks(db, user_id, limit=MAX_TASKS_PER_DAY),
        "streak": _load_streak(db, user_id),
    }


# ── Completion ────────────────────────────────────────────────────────────────

@app.post("/api/tasks/{task_id}/complete")
@limiter.limit("60/minute")
def complete_task(request: Request, task_id: str, user_id: str = Depends(require_user)):
    db = get_client()
    task = get_task(db, user_id, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return _complete_task(db, user_id, task)


@app.patch("/api/tasks/{task_id}/stage")
@limiter.limit("60/minute")
def move_task(request: Request, task_id: str, body: StageMove, user_id: str = Depends(require_user)):
    db = get_client()
    task = get_task(db, user_id, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    if body.stage == DONE_STAGE:
        return {**_complete_task(db, user_id, task), "stage": DONE_STAGE}

    # Leaving "done" clears the timestamp; streak counters are never rolled back.
    reopened = bool(task.get("completed_at"))
    set_task_stage(db, user_id, task_id, body.stage, clear_completion=reopened)
    return {"status": "reopened" if reopened else "moved", "stage": body.stage}


# ── Schedule ──────────────────────────────────────────────────────────────────

@app.get("/api/schedule")
def read_schedule(user_id: str = Depends(require_user)):
    db = get_client()
    today = _today()
    window = schedule_window(today)
    tasks = get_scheduled_tasks(db, user_id, window[0], window[-1])
    return {"days": group_by_day(tasks, today)}


@app.post("/api/tasks", status_code=201)
@limiter.limit("60/minute")
def schedule_task(request: Request, body: ScheduleTask, user_id: str = Depends(require_user)):
    db = get_client()
    today = _today()
    day = body.scheduled_date
    if not in_window(day, today):
        raise HTTPException(status_code=422, detail="scheduled_date must be within the next 7 days")

    if is_day_full(get_scheduled_tasks(db, user_id, day, day), day):
        raise HTTPException(status_code=409, detail=f"Maximum {MAX_TASKS_PER_DAY} tasks per day")

    category = None
    if body.project_id:
        project = get_project(db, user_id, body.project_id)
        if not project:
            raise HTTPException(status_code=404, detail="Project not found")
        category = project.get("category")

    task = insert_task(db, user_id, {
        "content": body.content,
        "project_id": body.project_id,
        "category": category,
        "scheduled_date": day.isoformat(),
        "estimated_minutes": body.estimated_minutes,
        "task_status": "today" if day == today else "backlog",
    })
    logger.info("Task scheduled for %s... on %s", user_id[:8], day.isoformat())
    return {"status": "scheduled", "task": task}


# ── Progress ──────────────────────────────────────────────────────────────────

@app.get("/api/progress")
def read_progress(user_id: str = Depends(require_user)):
    db = get_client()
    week_ago = datetime.now(timezone.utc) - timedelta(days=7)
    return {
        "streak": _load_streak(db, user_id),
        "active_projects": count_active_projects(db, user_id),
        "this_week": weekly_summary(get_completed_tasks_since(db, user_id, week_ago)),
    }


# ── Helpers ───────────────────────────────────────────────────────────────────

def _complete_task(db, user_id: str, task: dict) -> dict:
    """Shared by the checkbox and the kanban "done" column."""
    if task.get("completed_at"):
        return {"status": "already_completed", "completed_at": task["completed_at"], "streak": None}

    now = datetime.now(timezone.utc)
    if not mark_task_completed(db, user_id, task["id"], now):
        return {"status": "already_completed", "completed_at": None, "streak": None}
    streak = _record_streak(db, TaskCompleted(user_id=user_id, task_id=task["id"], completion_timestamp=now))
    return {"status": "completed", "completed_at": now.isoformat(), "streak": streak}


def _record_streak(db, event: TaskCompleted) -> dict | None:
    """Best effort: the task stays completed even if the streak write fails."""
    try:
        record = handle_task_completed(db, event)
    except (NotAuthenticated, PersistenceError) as e:
        logger.warning("Streak not updated for task %s: %s", event.task_id, e)
        return None
    return record.model_dump(mode="json")
