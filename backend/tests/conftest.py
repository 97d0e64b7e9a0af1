from __future__ import annotations

from concurrent.futures import Future
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitloop.db.models.user_data_record import UserDataRecord
from habitloop.domain.models import JournalEntry
from habitloop.errors import CoachServiceError
from habitloop.services.coach import (
    DailyTasksResponse,
    GeneratedGoal,
    GoalTasks,
    PlanResponse,
    SummaryRequest,
    TaskRequest,
    TaskSuggestion,
    WeeklyAnalysis,
)
from habitloop.services.job_runner import InlineJobRunner
from habitloop.services.lifecycle import LifecycleEngine
from habitloop.services.store import UserDataStore

START = datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeCoach:
    """Deterministic coach: two tasks per goal, counters for every call."""

    def __init__(self) -> None:
        self.plan_calls = 0
        self.task_requests: List[TaskRequest] = []
        self.summary_requests: List[SummaryRequest] = []
        self.weekly_batches: List[List[JournalEntry]] = []
        self.fail_with: Optional[CoachServiceError] = None
        self.fail_weekly_with: Optional[CoachServiceError] = None
        self.fail_summary_with: Optional[CoachServiceError] = None
        self.plan_titles: Optional[List[str]] = None
        self.before_return = None

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def generate_plan(self, goal_titles: Sequence[str], duration: int) -> PlanResponse:
        self.plan_calls += 1
        self._maybe_fail()
        if self.before_return:
            self.before_return()
        titles = self.plan_titles if self.plan_titles is not None else list(goal_titles)
        return PlanResponse(
            goals=[
                GeneratedGoal(
                    title=title,
                    strategy=f"Build {title} gradually",
                    sub_plans=[f"{title} step 1", f"{title} step 2", f"{title} step 3"],
                )
                for title in titles
            ]
        )

    def generate_daily_tasks(self, request: TaskRequest) -> DailyTasksResponse:
        self.task_requests.append(request)
        self._maybe_fail()
        if self.before_return:
            self.before_return()
        return DailyTasksResponse(
            daily_tasks=[
                GoalTasks(
                    goal_title=goal.title,
                    tasks=[
                        TaskSuggestion(description=f"{goal.title} morning day {request.day}", time="9:00 AM", emoji="🌅"),
                        TaskSuggestion(description=f"{goal.title} evening day {request.day}", time="7:30 PM"),
                    ],
                )
                for goal in request.goals
            ]
        )

    def generate_daily_summary(self, request: SummaryRequest) -> str:
        self.summary_requests.append(request)
        self._maybe_fail()
        if self.fail_summary_with is not None:
            raise self.fail_summary_with
        return f"Day {request.day} of {request.total_days}: keep going."

    def analyze_weekly_journal(self, entries: Sequence[JournalEntry]) -> WeeklyAnalysis:
        self.weekly_batches.append(list(entries))
        if self.fail_weekly_with is not None:
            raise self.fail_weekly_with
        return WeeklyAnalysis(
            analysis=f"{len(entries)} entries reviewed",
            suggested_goals=["Sleep earlier", "Walk daily", "Read more"],
        )


class DeferredJobRunner(InlineJobRunner):
    """Queues jobs until `run_pending` so tests can interleave other operations."""

    def __init__(self) -> None:
        super().__init__()
        self.queued: List[tuple] = []

    def submit(self, name, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        self.queued.append((name, future, fn, args, kwargs))
        return future

    def run_pending(self) -> List[str]:
        names = []
        while self.queued:
            name, future, fn, args, kwargs = self.queued.pop(0)
            future.set_result(fn(*args, **kwargs))
            names.append(name)
        return names


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    UserDataRecord.__table__.create(bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture()
def store(session_factory) -> UserDataStore:
    return UserDataStore(session_factory, key="userData")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def coach() -> FakeCoach:
    return FakeCoach()


@pytest.fixture()
def deferred_jobs() -> DeferredJobRunner:
    return DeferredJobRunner()


@pytest.fixture()
def make_engine(store, coach, clock):
    def _make(**overrides) -> LifecycleEngine:
        kwargs: Dict = {
            "store": store,
            "coach": coach,
            "jobs": InlineJobRunner(),
            "clock": clock,
            "timezone_name": "UTC",
        }
        kwargs.update(overrides)
        return LifecycleEngine(**kwargs)

    return _make


@pytest.fixture()
def engine(make_engine) -> LifecycleEngine:
    return make_engine()
