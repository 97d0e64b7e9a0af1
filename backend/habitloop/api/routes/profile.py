"""Profile and preference API routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from habitloop.api.deps import get_engine
from habitloop.api.schemas.profile import ProfileResponse, ProfileUpdateRequest
from habitloop.domain.models import UserData
from habitloop.observability.metrics import log_metric
from habitloop.observability.tracing import trace
from habitloop.services.lifecycle import LifecycleEngine

router = APIRouter()


@router.get("/profile", response_model=ProfileResponse, tags=["profile"])
def get_profile(request: Request, engine: LifecycleEngine = Depends(get_engine)) -> ProfileResponse:
    request_id = getattr(request.state, "request_id", None)
    return _serialize_profile(engine.snapshot(), request_id)


@router.put("/profile", response_model=ProfileResponse, tags=["profile"])
def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    engine: LifecycleEngine = Depends(get_engine),
) -> ProfileResponse:
    """Update the fields present in the body; omitted fields keep their value."""
    request_id = getattr(request.state, "request_id", None)
    changes = payload.model_dump(exclude_unset=True)
    preference = changes.pop("notification_preference", None)

    with trace("profile.update", metadata={"fields": sorted(changes)}, request_id=request_id):
        if changes:
            engine.update_profile(**changes)
        if preference is not None:
            engine.update_notification_preference(preference)

    log_metric("profile.update.success", 1, metadata={"field_count": len(changes)})
    return _serialize_profile(engine.snapshot(), request_id)


def _serialize_profile(data: UserData, request_id: str | None) -> ProfileResponse:
    return ProfileResponse(
        name=data.name,
        sex=data.sex,
        age=data.age,
        height=data.height,
        weight=data.weight,
        wake_time=data.wake_time,
        sleep_time=data.sleep_time,
        formatted_wake_time=data.formatted_wake_time,
        formatted_sleep_time=data.formatted_sleep_time,
        notification_preference=data.notification_preference,
        request_id=request_id or "",
    )
