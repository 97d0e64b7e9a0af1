"""Schemas for goal selection and plan lifecycle endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from habitloop.api.schemas.common import ApiModel
from habitloop.domain.models import Goal, PastChallenge
from habitloop.services.lifecycle import PlanState


class CatalogGoal(ApiModel):
    title: str
    emoji: str


class GoalInput(ApiModel):
    title: str = Field(..., min_length=1, max_length=200)
    emoji: str = ""
    is_custom: bool = False


class GoalSelectionRequest(ApiModel):
    goals: List[GoalInput]


class SubPlanUpdateRequest(ApiModel):
    old_plan: str
    new_plan: str = Field(..., min_length=1)


class DurationRequest(ApiModel):
    days: int = Field(..., ge=1, le=365)


class PlanResponse(ApiModel):
    state: PlanState
    current_day: Optional[int] = None
    plan_duration: int
    plan_start_date: Optional[datetime] = None
    last_completed_day: Optional[int] = None
    is_completed: bool
    goals: List[Goal]
    request_id: str = ""


class ResetResponse(ApiModel):
    archived: Optional[PastChallenge] = None
    request_id: str = ""
