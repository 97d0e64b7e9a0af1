"""LLM-backed coach: plan, daily task, daily summary and weekly journal calls."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Type, TypeVar

import openai
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from habitloop.core.config import settings
from habitloop.domain.models import DailyTask, Goal, JournalEntry
from habitloop.errors import DecodingFailure, InvalidResponseShape, NetworkFailure
from habitloop.observability.metrics import log_metric, timed
from habitloop.observability.tracing import trace
from habitloop.services import prompts
from habitloop.services.prompts import DifficultyAdjustment

logger = logging.getLogger(__name__)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GeneratedGoal(_Payload):
    title: str
    strategy: str
    sub_plans: List[str]


class PlanResponse(_Payload):
    goals: List[GeneratedGoal]


class TaskSuggestion(_Payload):
    description: str
    emoji: str = "📝"
    time: Optional[str] = None


class GoalTasks(_Payload):
    goal_title: str
    tasks: List[TaskSuggestion]


class DailyTasksResponse(_Payload):
    daily_tasks: List[GoalTasks]


class WeeklyAnalysis(_Payload):
    analysis: str
    suggested_goals: List[str] = Field(default_factory=list)


@dataclass
class TaskRequest:
    goals: List[Goal]
    day: int
    total_days: int
    previous_tasks: List[DailyTask]
    wake_time: str
    sleep_time: str
    profile: str = "No specific user data available"
    progress: Dict[str, str] = field(default_factory=dict)
    previous_completion_rate: Optional[float] = None
    adjustment: DifficultyAdjustment = DifficultyAdjustment.START


@dataclass
class SummaryRequest:
    day: int
    total_days: int
    goals: List[Goal]
    name: Optional[str] = None
    previous_day_completion_rate: Optional[float] = None


class CoachService(Protocol):
    """Request/response contract of the AI coach; errors are ``CoachServiceError`` subclasses."""

    def generate_plan(self, goal_titles: Sequence[str], duration: int) -> PlanResponse: ...

    def generate_daily_tasks(self, request: TaskRequest) -> DailyTasksResponse: ...

    def generate_daily_summary(self, request: SummaryRequest) -> str: ...

    def analyze_weekly_journal(self, entries: Sequence[JournalEntry]) -> WeeklyAnalysis: ...


PayloadT = TypeVar("PayloadT", bound=BaseModel)


class OpenAICoach:
    """Coach backed by OpenAI chat completions with a bounded timeout and no retries."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        client: Optional[openai.OpenAI] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._model = model or settings.openai_model
        self._timeout = timeout if timeout is not None else settings.ai_timeout_seconds
        self._client = client

    def generate_plan(self, goal_titles: Sequence[str], duration: int) -> PlanResponse:
        with trace("coach.generate_plan", metadata={"goal_count": len(goal_titles), "duration": duration}):
            return self._complete_json(
                "generate_plan",
                prompts.PLAN_SYSTEM_PROMPT,
                prompts.build_plan_prompt(goal_titles, duration),
                PlanResponse,
                temperature=0.7,
            )

    def generate_daily_tasks(self, request: TaskRequest) -> DailyTasksResponse:
        metadata = {
            "day": request.day,
            "total_days": request.total_days,
            "goal_count": len(request.goals),
            "adjustment": request.adjustment.value,
        }
        with trace("coach.generate_daily_tasks", metadata=metadata):
            user_prompt = prompts.build_tasks_prompt(
                goals=request.goals,
                day=request.day,
                previous_tasks=request.previous_tasks,
                wake_time=request.wake_time,
                sleep_time=request.sleep_time,
                profile=request.profile,
                progress=request.progress,
                adjustment=request.adjustment,
            )
            return self._complete_json(
                "generate_daily_tasks",
                prompts.TASKS_SYSTEM_PROMPT,
                user_prompt,
                DailyTasksResponse,
                temperature=0.8,
            )

    def generate_daily_summary(self, request: SummaryRequest) -> str:
        with trace("coach.generate_daily_summary", metadata={"day": request.day}):
            content = self._complete(
                "generate_daily_summary",
                prompts.SUMMARY_SYSTEM_PROMPT,
                prompts.build_summary_prompt(
                    day=request.day,
                    total_days=request.total_days,
                    name=request.name,
                    goals=request.goals,
                    previous_day_completion_rate=request.previous_day_completion_rate,
                ),
                json_mode=False,
                temperature=0.7,
                max_tokens=100,
            )
            return clean_summary(content)

    def analyze_weekly_journal(self, entries: Sequence[JournalEntry]) -> WeeklyAnalysis:
        with trace("coach.analyze_weekly_journal", metadata={"entry_count": len(entries)}):
            return self._complete_json(
                "analyze_weekly_journal",
                prompts.WEEKLY_SYSTEM_PROMPT,
                prompts.build_weekly_prompt(entries),
                WeeklyAnalysis,
                temperature=0.7,
            )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get_client(self) -> openai.OpenAI:
        if self._client is None:
            if not self._api_key:
                raise NetworkFailure("OPENAI_API_KEY is not configured")
            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    def _complete(
        self,
        call: str,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool,
        temperature: float,
        max_tokens: int = 2000,
    ) -> str:
        client = self._get_client()
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            with timed(f"coach.{call}", metadata={"model": self._model}):
                completion = client.chat.completions.create(
                    model=self._model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=self._timeout,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    **kwargs,
                )
        except (openai.APIConnectionError, openai.APIStatusError) as exc:
            logger.warning("Coach call %s failed: %s", call, exc)
            log_metric("coach.failure", 1, metadata={"call": call, "kind": "network"})
            raise NetworkFailure(f"{call} failed: {exc}") from exc
        except openai.APIError as exc:
            logger.warning("Coach call %s returned an unusable response: %s", call, exc)
            log_metric("coach.failure", 1, metadata={"call": call, "kind": "invalid"})
            raise InvalidResponseShape(f"{call} returned an unusable response: {exc}") from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content or not content.strip():
            log_metric("coach.failure", 1, metadata={"call": call, "kind": "empty"})
            raise InvalidResponseShape(f"{call} returned an empty completion")
        return content

    def _complete_json(
        self,
        call: str,
        system_prompt: str,
        user_prompt: str,
        schema: Type[PayloadT],
        *,
        temperature: float,
    ) -> PayloadT:
        content = self._complete(call, system_prompt, user_prompt, json_mode=True, temperature=temperature)
        return parse_payload(call, content, schema)


def parse_payload(call: str, content: str, schema: Type[PayloadT]) -> PayloadT:
    """Decode a completion into ``schema`` with the typed error taxonomy."""
    try:
        payload = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as exc:
        logger.warning("Coach call %s returned non-JSON content", call)
        raise InvalidResponseShape(f"{call} did not return JSON") from exc
    if not isinstance(payload, dict):
        raise InvalidResponseShape(f"{call} returned {type(payload).__name__}, expected an object")
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Coach call %s returned an unexpected schema: %s", call, exc.error_count())
        raise DecodingFailure(f"{call} response did not match {schema.__name__}") from exc


def clean_summary(content: str) -> str:
    return content.strip().strip('"“”').strip()


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
