"""Daily task API routes."""
from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, Request

from habitloop.api.deps import get_engine
from habitloop.api.schemas.tasks import HistoryResponse, TaskNotesRequest, TodayResponse
from habitloop.domain.models import DailyTask
from habitloop.observability.metrics import log_metric
from habitloop.observability.tracing import trace
from habitloop.services.lifecycle import LifecycleEngine

router = APIRouter()


@router.get("/tasks/today", response_model=TodayResponse, tags=["tasks"])
def todays_tasks(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> TodayResponse:
    """Return today's tasks, generating them on the first call of the day."""
    request_id = getattr(request.state, "request_id", None)
    metadata: Dict[str, Any] = {"route": "/tasks/today", "request_id": request_id}

    with trace("tasks.today", metadata=metadata, request_id=request_id):
        tasks = engine.ensure_todays_tasks()
        stats = engine.completion_stats()

    log_metric("tasks.today.count", len(tasks))
    return TodayResponse(
        day=engine.current_day(),
        tasks=tasks,
        completed=stats.completed,
        total=stats.total,
        percentage=stats.percentage,
        summary=engine.daily_summary(),
        upcoming=engine.upcoming_tasks(),
        request_id=request_id or "",
    )


@router.post("/tasks/{task_id}/toggle", response_model=DailyTask, tags=["tasks"])
def toggle_task(task_id: UUID, request: Request, engine: LifecycleEngine = Depends(get_engine)) -> DailyTask:
    request_id = getattr(request.state, "request_id", None)
    with trace("tasks.toggle", metadata={"task_id": str(task_id)}, request_id=request_id):
        return engine.toggle_task(task_id)


@router.patch("/tasks/{task_id}/notes", response_model=DailyTask, tags=["tasks"])
def update_notes(
    task_id: UUID,
    payload: TaskNotesRequest,
    engine: LifecycleEngine = Depends(get_engine),
) -> DailyTask:
    return engine.update_task_notes(task_id, payload.notes.strip())


@router.get("/tasks/history", response_model=HistoryResponse, tags=["tasks"])
def task_history(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> HistoryResponse:
    """Retained daily history, newest first."""
    return HistoryResponse(
        entries=engine.history(),
        request_id=getattr(request.state, "request_id", None) or "",
    )
