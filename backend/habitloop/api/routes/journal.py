"""Journal and weekly summary API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from habitloop.api.deps import get_engine
from habitloop.api.schemas.journal import (
    JournalEntryRequest,
    JournalListResponse,
    WeeklySummaryListResponse,
)
from habitloop.domain.models import JournalEntry
from habitloop.observability.metrics import log_metric
from habitloop.observability.tracing import trace
from habitloop.services.lifecycle import LifecycleEngine

router = APIRouter()


@router.post("/journal", response_model=JournalEntry, status_code=status.HTTP_201_CREATED, tags=["journal"])
def create_entry(
    payload: JournalEntryRequest,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
) -> JournalEntry:
    """Store an entry; weekly analysis, when due, runs in the background."""
    request_id = getattr(request.state, "request_id", None)
    with trace("journal.create", metadata={"task_count": len(payload.completed_tasks)}, request_id=request_id):
        entry = engine.append_journal_entry(
            payload.content,
            payload.completed_tasks,
            entry_date=payload.date,
        )
    log_metric("journal.create.success", 1)
    return entry


@router.get("/journal", response_model=JournalListResponse, tags=["journal"])
def list_entries(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> JournalListResponse:
    return JournalListResponse(
        current_week=engine.current_week_entries(),
        visible=engine.visible_entries(),
        request_id=getattr(request.state, "request_id", None) or "",
    )


@router.get("/journal/summaries", response_model=WeeklySummaryListResponse, tags=["journal"])
def list_summaries(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> WeeklySummaryListResponse:
    return WeeklySummaryListResponse(
        summaries=engine.weekly_summaries(),
        request_id=getattr(request.state, "request_id", None) or "",
    )
