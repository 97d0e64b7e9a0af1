"""Schemas for journal entries and weekly summaries."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from habitloop.api.schemas.common import ApiModel
from habitloop.domain.models import JournalEntry, WeeklySummary


class JournalEntryRequest(ApiModel):
    content: str = Field(..., min_length=1)
    completed_tasks: List[str] = Field(default_factory=list)
    date: Optional[datetime] = None


class JournalListResponse(ApiModel):
    current_week: List[JournalEntry]
    visible: List[JournalEntry]
    request_id: str = ""


class WeeklySummaryListResponse(ApiModel):
    summaries: List[WeeklySummary]
    request_id: str = ""
