"""Goal selection and plan lifecycle API routes."""
from __future__ import annotations

from time import perf_counter
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from habitloop.api.deps import get_engine
from habitloop.api.schemas.plan import (
    CatalogGoal,
    DurationRequest,
    GoalInput,
    GoalSelectionRequest,
    PlanResponse,
    ResetResponse,
    SubPlanUpdateRequest,
)
from habitloop.domain.goals import predefined_goals
from habitloop.domain.models import Goal, PastChallenge
from habitloop.observability.metrics import log_metric
from habitloop.observability.tracing import trace
from habitloop.services.lifecycle import LifecycleEngine

router = APIRouter()


@router.get("/goals/catalog", response_model=List[CatalogGoal], tags=["goals"])
def goal_catalog() -> List[CatalogGoal]:
    return [CatalogGoal(title=goal.title, emoji=goal.emoji) for goal in predefined_goals()]


@router.put("/plan/goals", response_model=PlanResponse, tags=["plan"])
def select_goals(
    payload: GoalSelectionRequest,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
) -> PlanResponse:
    """Replace the selected goals (done before generating a plan)."""
    engine.set_goals(_to_goal(item) for item in payload.goals)
    return _plan_response(engine, request)


@router.post("/plan/goals", response_model=Goal, status_code=status.HTTP_201_CREATED, tags=["plan"])
def add_goal(payload: GoalInput, engine: LifecycleEngine = Depends(get_engine)) -> Goal:
    return engine.add_goal(_to_goal(payload))


@router.delete("/plan/goals/{goal_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["plan"])
def remove_goal(goal_id: UUID, engine: LifecycleEngine = Depends(get_engine)) -> None:
    if not engine.remove_goal(goal_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")


@router.patch("/plan/goals/{goal_id}/sub-plans", response_model=PlanResponse, tags=["plan"])
def update_sub_plan(
    goal_id: UUID,
    payload: SubPlanUpdateRequest,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
) -> PlanResponse:
    if not engine.update_sub_plan(goal_id, payload.old_plan, payload.new_plan):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal or sub-plan not found")
    return _plan_response(engine, request)


@router.put("/plan/duration", response_model=PlanResponse, tags=["plan"])
def set_duration(
    payload: DurationRequest,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
) -> PlanResponse:
    engine.set_plan_duration(payload.days)
    return _plan_response(engine, request)


@router.post("/plan/generate", response_model=PlanResponse, tags=["plan"])
def generate_plan(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> PlanResponse:
    """Ask the coach for strategies and start the plan today.

    Coach failures surface as 502/503 and leave the stored plan untouched.
    """
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("plan.generate", metadata={"route": "/plan/generate"}, request_id=request_id):
        engine.generate_plan()
    log_metric("plan.generate.latency_ms", (perf_counter() - start) * 1000)
    return _plan_response(engine, request)


@router.get("/plan", response_model=PlanResponse, tags=["plan"])
def get_plan(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> PlanResponse:
    return _plan_response(engine, request)


@router.post("/plan/reset", response_model=ResetResponse, tags=["plan"])
def reset_plan(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> ResetResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("plan.reset", metadata={"route": "/plan/reset"}, request_id=request_id):
        archived = engine.reset_plan()
    return ResetResponse(archived=archived, request_id=request_id or "")


@router.get("/challenges", response_model=List[PastChallenge], tags=["plan"])
def past_challenges(engine: LifecycleEngine = Depends(get_engine)) -> List[PastChallenge]:
    return engine.past_challenges()


def _to_goal(item: GoalInput) -> Goal:
    return Goal(title=item.title.strip(), emoji=item.emoji, is_custom=item.is_custom)


def _plan_response(engine: LifecycleEngine, request: Request) -> PlanResponse:
    data = engine.snapshot()
    return PlanResponse(
        state=engine.state(),
        current_day=engine.current_day(),
        plan_duration=data.plan_duration,
        plan_start_date=data.plan_start_date,
        last_completed_day=data.last_completed_day,
        is_completed=engine.is_completed(),
        goals=data.goals,
        request_id=getattr(request.state, "request_id", None) or "",
    )
