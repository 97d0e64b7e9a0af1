"""Schemas for the profile endpoints."""
from __future__ import annotations

from datetime import time
from typing import Optional

from pydantic import Field

from habitloop.api.schemas.common import ApiModel
from habitloop.domain.models import NotificationPreference


class ProfileResponse(ApiModel):
    name: Optional[str] = None
    sex: Optional[str] = None
    age: Optional[int] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    wake_time: Optional[time] = None
    sleep_time: Optional[time] = None
    formatted_wake_time: str
    formatted_sleep_time: str
    notification_preference: NotificationPreference
    request_id: str = ""


class ProfileUpdateRequest(ApiModel):
    name: Optional[str] = None
    sex: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=150)
    height: Optional[float] = Field(default=None, gt=0)
    weight: Optional[float] = Field(default=None, gt=0)
    wake_time: Optional[time] = None
    sleep_time: Optional[time] = None
    notification_preference: Optional[NotificationPreference] = None
