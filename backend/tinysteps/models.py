from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

TaskStage = Literal["backlog", "today", "in_progress", "done"]
DONE_STAGE = "done"

ItemType = Literal["idea", "task", "note"]
Category = Literal["design", "fitness", "english", "money", "relationships", "personal"]


class StreakRecord(BaseModel):
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_completion_date: Optional[date] = None
    total_completions: int = Field(default=0, ge=0)
    model_config = {"extra": "ignore"}

    @field_validator("current_streak", "longest_streak", "total_completions", mode="before")
    @classmethod
    def null_counts_as_zero(cls, v):
        # streak_data columns are nullable in the database
        return 0 if v is None else v

    @classmethod
    def from_row(cls, row: dict) -> "StreakRecord":
        return cls.model_validate(row)

    def to_row(self) -> dict:
        return {
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_completion_date": self.last_completion_date.isoformat() if self.last_completion_date else None,
            "total_completions": self.total_completions,
        }


class TaskCompleted(BaseModel):
    user_id: str
    task_id: str
    completion_timestamp: datetime


class StageMove(BaseModel):
    stage: TaskStage


class ScheduleTask(BaseModel):
    content: str = Field(min_length=1, max_length=500)
    scheduled_date: date
    project_id: Optional[str] = None
    estimated_minutes: Optional[int] = Field(default=None, ge=1, le=480)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("content must not be blank")
        return v


class InboxCapture(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    type: ItemType = "idea"

    @field_validator("content")
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("content must not be blank")
        return v


class ProjectConvert(BaseModel):
    outcome: str = Field(min_length=1, max_length=200)
    category: Category
    tiny_next_step: str = Field(min_length=1, max_length=300)
