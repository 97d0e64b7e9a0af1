"""Error taxonomy shared by the engine, the coach client and the API layer."""
from __future__ import annotations


class HabitLoopError(Exception):
    """Base class for expected, user-facing failures."""


class LifecycleError(HabitLoopError):
    """A plan/task operation was invoked in a state that does not allow it."""


class NoActivePlan(LifecycleError):
    """The operation needs a started plan (plan_start_date is unset)."""

    def __init__(self, message: str = "No active plan; generate a plan first.") -> None:
        super().__init__(message)


class TaskNotFound(LifecycleError):
    def __init__(self, task_id: object) -> None:
        super().__init__(f"Task {task_id} is not part of today's list")
        self.task_id = task_id


class CoachServiceError(HabitLoopError):
    """Any failure of the AI coach during plan, task or summary generation."""


class NetworkFailure(CoachServiceError):
    """Transport error, timeout, non-2xx status or missing credentials."""


class InvalidResponseShape(CoachServiceError):
    """The completion was empty, not JSON, or not the expected JSON object."""


class DecodingFailure(CoachServiceError):
    """The JSON parsed but its fields do not match the expected schema."""
