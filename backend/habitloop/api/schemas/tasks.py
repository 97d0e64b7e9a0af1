"""Schemas for today's tasks and task history."""
from __future__ import annotations

from typing import List, Optional

from habitloop.api.schemas.common import ApiModel
from habitloop.domain.models import DailyTask, DailyTaskHistory


class TodayResponse(ApiModel):
    day: Optional[int]
    tasks: List[DailyTask]
    completed: int
    total: int
    percentage: float
    summary: Optional[str] = None
    upcoming: List[DailyTask]
    request_id: str = ""


class TaskNotesRequest(ApiModel):
    notes: str


class HistoryResponse(ApiModel):
    entries: List[DailyTaskHistory]
    request_id: str = ""
