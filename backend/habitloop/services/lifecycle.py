"""Plan/task lifecycle engine: the single owner of the live UserData aggregate."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from habitloop.core.config import settings
from habitloop.domain.goals import match_generated_goals, titles_match
from habitloop.domain.models import (
    DailyTask,
    DailyTaskHistory,
    Goal,
    JournalEntry,
    NotificationPreference,
    PastChallenge,
    TaskIntensity,
    UserData,
    WeeklySummary,
    as_aware,
    local_date,
    utcnow,
)
from habitloop.errors import CoachServiceError, LifecycleError, NoActivePlan, TaskNotFound
from habitloop.observability.metrics import log_metric
from habitloop.observability.tracing import trace
from habitloop.services import prompts
from habitloop.services.coach import CoachService, DailyTasksResponse, SummaryRequest, TaskRequest
from habitloop.services.job_runner import JobRunner
from habitloop.services.store import UserDataStore
from habitloop.services.weekly_analysis import WeeklyAnalysisTrigger, WeeklyBatch

logger = logging.getLogger(__name__)

Observer = Callable[[str, Any], None]

PROFILE_FIELDS = {"name", "sex", "age", "height", "weight", "wake_time", "sleep_time"}


class PlanState(str, Enum):
    NO_PLAN = "no_plan"
    PLAN_REQUESTED = "plan_requested"
    PLAN_READY = "plan_ready"
    DAY_ACTIVE = "day_active"
    PLAN_COMPLETED = "plan_completed"


@dataclass
class CompletionStats:
    completed: int
    total: int

    @property
    def percentage(self) -> float:
        return self.completed / self.total if self.total else 0.0


class LifecycleEngine:
    """Decides when to generate plans and daily tasks and merges coach responses.

    All state lives in one ``UserData`` plus the in-memory list of today's
    tasks, which mirrors the last history entry. Every mutation happens under
    ``_lock`` and is persisted before the lock is released. Coach calls run
    outside the lock; their results are applied only if the plan epoch has not
    moved since the call started (a reset or ``cancel_pending`` bumps it).
    """

    def __init__(
        self,
        store: UserDataStore,
        coach: CoachService,
        jobs: JobRunner,
        *,
        clock: Callable[[], datetime] = utcnow,
        timezone_name: str | None = None,
        history_retention: int | None = None,
        weekly_trigger: WeeklyAnalysisTrigger | None = None,
    ) -> None:
        self._store = store
        self._coach = coach
        self._jobs = jobs
        self._clock = clock
        self._tz = resolve_timezone(timezone_name or settings.app_timezone)
        self._retention = history_retention or settings.history_retention_days
        self._weekly = weekly_trigger or WeeklyAnalysisTrigger(coach, jobs)

        self._lock = threading.RLock()
        self._generation_lock = threading.Lock()
        self._epoch = 0
        self._plan_requested = False
        self._summary_pending_day: Optional[date] = None
        self._observers: List[Observer] = []
        self.last_weekly_job: Optional[Future] = None
        self.last_summary_job: Optional[Future] = None

        loaded = store.load()
        self._data = loaded or UserData(plan_duration=settings.default_plan_duration)
        last = self._data.last_entry()
        self._todays_tasks: List[DailyTask] = _copy_tasks(last.tasks) if last else []
        logger.info("Lifecycle engine ready (saved_state=%s)", loaded is not None)

    # ------------------------------------------------------------------
    # Time helpers
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return as_aware(self._clock())

    def _today(self) -> date:
        return local_date(self._now(), self._tz)

    def _persist(self) -> bool:
        return self._store.save(self._data)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> UserData:
        with self._lock:
            return self._data.model_copy(deep=True)

    def current_day(self) -> Optional[int]:
        with self._lock:
            return self._data.current_day(self._now(), self._tz)

    def is_completed(self) -> bool:
        with self._lock:
            return self._data.is_completed(self._now(), self._tz)

    def state(self) -> PlanState:
        with self._lock:
            if self._data.plan_start_date is None:
                return PlanState.PLAN_REQUESTED if self._plan_requested else PlanState.NO_PLAN
            if self._data.is_completed(self._now(), self._tz):
                return PlanState.PLAN_COMPLETED
            if not self._data.daily_task_history:
                return PlanState.PLAN_READY
            return PlanState.DAY_ACTIVE

    def todays_tasks(self) -> List[DailyTask]:
        with self._lock:
            return _copy_tasks(self._live_tasks())

    def today_entry(self) -> Optional[DailyTaskHistory]:
        with self._lock:
            entry = self._data.today_entry(self._today())
            return entry.model_copy(deep=True) if entry else None

    def daily_summary(self) -> Optional[str]:
        entry = self.today_entry()
        return entry.summary if entry else None

    def completion_stats(self) -> CompletionStats:
        with self._lock:
            tasks = self._live_tasks()
            completed = sum(1 for task in tasks if task.is_completed)
            return CompletionStats(completed=completed, total=len(tasks))

    def history(self) -> List[DailyTaskHistory]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._data.history_newest_first()]

    def task_history(self, goal_title: str) -> List[DailyTask]:
        with self._lock:
            return _copy_tasks(self._data.task_history(goal_title))

    def tasks_for_date(self, on: date) -> List[DailyTask]:
        with self._lock:
            return _copy_tasks(self._data.tasks_for_date(on))

    def upcoming_tasks(self, limit: int = 3) -> List[DailyTask]:
        """Next incomplete tasks whose scheduled time is still ahead."""
        with self._lock:
            now = self._now()
            upcoming = [
                task
                for task in self._live_tasks()
                if not task.is_completed and task.scheduled_time and as_aware(task.scheduled_time) > now
            ]
            upcoming.sort(key=lambda task: as_aware(task.scheduled_time))
            return _copy_tasks(upcoming[:limit])

    def current_tasks(self) -> List[DailyTask]:
        """Incomplete tasks inside their one-hour scheduling window right now."""
        with self._lock:
            now = self._now()
            current = [task for task in self._live_tasks() if not task.is_completed and task.is_in_time_window(now)]
            current.sort(key=lambda task: as_aware(task.scheduled_time))
            return _copy_tasks(current)

    # ------------------------------------------------------------------
    # Profile and goal setup
    # ------------------------------------------------------------------

    def update_profile(self, **changes: Any) -> UserData:
        unknown = set(changes) - PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
        with self._lock:
            merged = {**self._data.model_dump(), **changes}
            self._data = UserData.model_validate(merged)
            self._persist()
            return self._data.model_copy(deep=True)

    def update_notification_preference(self, preference: NotificationPreference) -> None:
        with self._lock:
            self._data.notification_preference = NotificationPreference(preference)
            self._persist()

    def set_plan_duration(self, days: int) -> None:
        if days < 1:
            raise ValueError("Plan duration must be at least one day")
        with self._lock:
            self._data.plan_duration = days
            self._persist()

    def set_goals(self, goals: Iterable[Goal]) -> List[Goal]:
        with self._lock:
            self._data.goals = [goal.model_copy(deep=True) for goal in goals]
            self._persist()
            return [goal.model_copy(deep=True) for goal in self._data.goals]

    def add_goal(self, goal: Goal) -> Goal:
        with self._lock:
            self._data.add_goal(goal.model_copy(deep=True))
            self._persist()
            return goal

    def remove_goal(self, goal_id: UUID) -> bool:
        with self._lock:
            removed = self._data.remove_goal(goal_id)
            if removed:
                self._persist()
            return removed

    def update_sub_plan(self, goal_id: UUID, old_plan: str, new_plan: str) -> bool:
        with self._lock:
            updated = self._data.update_sub_plan(goal_id, old_plan, new_plan)
            if updated:
                self._persist()
            return updated

    # ------------------------------------------------------------------
    # Plan generation
    # ------------------------------------------------------------------

    def generate_plan(self) -> List[Goal]:
        """Ask the coach for a strategy per goal and start the plan today.

        On any coach failure nothing is written and the typed error propagates;
        retrying is simply calling this again.
        """
        with self._lock:
            if not self._data.goals:
                raise LifecycleError("Select at least one goal before generating a plan")
            titles = [goal.title for goal in self._data.goals]
            duration = self._data.plan_duration
            epoch = self._epoch
            self._plan_requested = True

        try:
            with trace("lifecycle.generate_plan", metadata={"goal_count": len(titles), "duration": duration}):
                response = self._coach.generate_plan(titles, duration)
        except CoachServiceError as exc:
            log_metric("lifecycle.plan_failed", 1, metadata={"error": type(exc).__name__})
            raise
        finally:
            with self._lock:
                self._plan_requested = False

        with self._lock:
            if epoch != self._epoch:
                raise LifecycleError("The plan was reset while it was being generated")
            goals = self._data.goals
            matched = 0
            for goal, generated in zip(goals, match_generated_goals(goals, response.goals)):
                if generated is None:
                    continue
                goal.strategy = generated.strategy
                goal.sub_plans = list(generated.sub_plans)
                matched += 1
            self._data.plan_start_date = self._now()
            self._data.last_completed_day = None
            self._data.daily_task_history = []
            self._todays_tasks = []
            self._summary_pending_day = None
            self._persist()
            logger.info("Plan generated: %s/%s goals matched, %s days", matched, len(goals), duration)
            log_metric("lifecycle.plan_generated", 1, metadata={"matched": matched, "goals": len(goals)})
            return [goal.model_copy(deep=True) for goal in goals]

    # ------------------------------------------------------------------
    # Daily tasks
    # ------------------------------------------------------------------

    def ensure_todays_tasks(self) -> List[DailyTask]:
        """Return today's tasks, generating them on the first call of a calendar day.

        Same-day calls never reach the coach. On a new day the previous day is
        closed out first (its completion state written to history), then the
        coach is asked for the new day's tasks.
        """
        with self._generation_lock:
            with self._lock:
                now = self._now()
                today = local_date(now, self._tz)
                day = self._data.current_day(now, self._tz)
                if day is None:
                    raise NoActivePlan()

                entry = self._data.today_entry(today) or self._adopt_saved_day(day, today)
                if entry is not None:
                    tasks = _copy_tasks(self._todays_tasks)
                    needs_summary = entry.summary is None
                else:
                    last = self._data.last_entry()
                    if last is not None:
                        finished = last.day >= self._data.plan_duration
                        self._close_previous_day(last.day if finished else day - 1)
                        self._todays_tasks = []
                        if finished:
                            logger.info("Plan finished on day %s; no further tasks", last.day)
                            return []
                    previous = _copy_tasks(last.tasks) if last else []
                    previous_rate = prompts.completion_rate(previous)
                    request = self._task_request(day, previous, previous_rate)
                    epoch = self._epoch

            if entry is not None:
                if needs_summary:
                    self.request_daily_summary()
                return tasks

            with trace("lifecycle.generate_tasks", metadata={"day": day, "adjustment": request.adjustment.value}):
                response = self._coach.generate_daily_tasks(request)

            with self._lock:
                if epoch != self._epoch or self._data.plan_start_date is None:
                    logger.info("Dropping day %s tasks generated for a superseded plan", day)
                    return _copy_tasks(self._todays_tasks)
                tasks = self._build_tasks(response, day, now)
                self._data.append_daily_history(day, tasks, on=today, retention=self._retention)
                self._todays_tasks = _copy_tasks(tasks)
                self._persist()
                log_metric("lifecycle.tasks_generated", len(tasks), metadata={"day": day})

        self.request_daily_summary(previous_completion=previous_rate)
        return _copy_tasks(tasks)

    def _adopt_saved_day(self, day: int, today: date) -> Optional[DailyTaskHistory]:
        """Take over today's entry when the rollover worker already generated and saved it.

        Only the new history entry is taken from the saved document; everything
        else in memory stays as it is and is written back with the entry.
        """
        saved = self._store.load()
        if saved is None or saved.plan_start_date != self._data.plan_start_date:
            return None
        entry = saved.today_entry(today)
        if entry is None or entry.day != day:
            return None
        if self._data.last_entry() is not None:
            self._close_previous_day(day - 1)
        adopted = self._data.append_daily_history(day, entry.tasks, on=today, retention=self._retention)
        adopted.summary = entry.summary
        self._todays_tasks = _copy_tasks(adopted.tasks)
        self._persist()
        logger.info("Adopted day %s tasks saved by the rollover worker", day)
        return adopted

    def _close_previous_day(self, target: int) -> None:
        if self._data.last_completed_day == target:
            return
        self._data.last_completed_day = target
        if self._todays_tasks:
            self._data.replace_today_tasks(self._todays_tasks)
        self._persist()
        logger.info("Day rollover: closed day %s", target)
        log_metric("lifecycle.day_rollover", 1, metadata={"closed_day": target})

    def _task_request(self, day: int, previous: List[DailyTask], previous_rate: Optional[float]) -> TaskRequest:
        data = self._data
        return TaskRequest(
            goals=[goal.model_copy(deep=True) for goal in data.goals],
            day=day,
            total_days=data.plan_duration,
            previous_tasks=previous,
            wake_time=data.formatted_wake_time,
            sleep_time=data.formatted_sleep_time,
            profile=prompts.profile_section(data),
            progress={goal.title: prompts.goal_progress(data, goal.title) for goal in data.goals},
            previous_completion_rate=previous_rate,
            adjustment=prompts.difficulty_adjustment(previous_rate),
        )

    def _build_tasks(self, response: DailyTasksResponse, day: int, now: datetime) -> List[DailyTask]:
        intensity = TaskIntensity.for_day(day, self._data.plan_duration)
        tasks: List[DailyTask] = []
        for group in response.daily_tasks:
            goal_title = self._local_goal_title(group.goal_title)
            for suggestion in group.tasks:
                tasks.append(
                    DailyTask(
                        goal_title=goal_title,
                        task=suggestion.description,
                        emoji=suggestion.emoji or "📝",
                        intensity=intensity,
                        scheduled_time=DailyTask.parse_time(suggestion.time, now, self._tz),
                    )
                )
        return tasks

    def _local_goal_title(self, generated_title: str) -> str:
        for goal in self._data.goals:
            if titles_match(goal.title, generated_title):
                return goal.title
        return generated_title

    def toggle_task(self, task_id: UUID) -> DailyTask:
        with self._lock:
            task = self._find_today_task(task_id)
            task.toggle(self._now())
            self._data.replace_today_tasks(self._todays_tasks)
            self._persist()
            log_metric("lifecycle.task_toggled", 1, metadata={"completed": task.is_completed})
            return task.model_copy(deep=True)

    def update_task_notes(self, task_id: UUID, notes: str) -> DailyTask:
        with self._lock:
            task = self._find_today_task(task_id)
            task.notes = notes
            self._data.replace_today_tasks(self._todays_tasks)
            self._persist()
            return task.model_copy(deep=True)

    def _live_tasks(self) -> List[DailyTask]:
        """Today's tasks, or nothing while the new day's entry has not been generated."""
        if self._data.today_entry(self._today()) is None:
            return []
        return self._todays_tasks

    def _find_today_task(self, task_id: UUID) -> DailyTask:
        if self._data.today_entry(self._today()) is None:
            raise LifecycleError("Today's tasks have not been generated yet")
        for task in self._todays_tasks:
            if task.id == task_id:
                return task
        raise TaskNotFound(task_id)

    # ------------------------------------------------------------------
    # Daily summary
    # ------------------------------------------------------------------

    def request_daily_summary(self, previous_completion: Optional[float] = None) -> Optional[Future]:
        """Start a background summary for today's entry unless one is cached or running."""
        with self._lock:
            now = self._now()
            today = local_date(now, self._tz)
            entry = self._data.today_entry(today)
            if entry is None or entry.summary is not None or self._summary_pending_day == today:
                return None
            request = SummaryRequest(
                day=entry.day,
                total_days=self._data.plan_duration,
                goals=[goal.model_copy(deep=True) for goal in self._data.goals],
                name=self._data.name,
                previous_day_completion_rate=previous_completion,
            )
            self._summary_pending_day = today
            epoch = self._epoch
        self.last_summary_job = self._jobs.submit("daily_summary", self._run_daily_summary, request, today, epoch)
        return self.last_summary_job

    def _run_daily_summary(self, request: SummaryRequest, today: date, epoch: int) -> Optional[str]:
        try:
            summary = self._coach.generate_daily_summary(request)
        except CoachServiceError as exc:
            logger.warning("Daily summary for day %s failed: %s", request.day, exc)
            with self._lock:
                if self._summary_pending_day == today:
                    self._summary_pending_day = None
            return None

        with self._lock:
            if self._summary_pending_day == today:
                self._summary_pending_day = None
            entry = self._data.today_entry(today)
            if epoch != self._epoch or entry is None or entry.day != request.day:
                logger.info("Dropping stale daily summary for day %s", request.day)
                return None
            entry.summary = summary
            self._persist()
        self._notify("daily_summary", summary)
        return summary

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def append_journal_entry(
        self,
        content: str,
        completed_tasks: Iterable[str] = (),
        *,
        entry_date: Optional[datetime] = None,
    ) -> JournalEntry:
        """Store a journal entry, then kick off weekly analysis if a batch is due.

        Never waits for the coach; the analysis job is exposed as ``last_weekly_job``.
        """
        with self._lock:
            now = self._now()
            entry = JournalEntry(
                content=content,
                completed_tasks=list(completed_tasks),
                date=as_aware(entry_date) if entry_date else now,
            )
            self._data.append_journal_entry(entry)
            self._persist()
            batch = self._weekly.claim(self._data.journal_entries, now, self._epoch)
            stored = entry.model_copy(deep=True)

        if batch is not None:
            self.last_weekly_job = self._weekly.dispatch(batch, self._apply_weekly_batch)
        return stored

    def _apply_weekly_batch(self, summary: WeeklySummary, batch: WeeklyBatch) -> bool:
        with self._lock:
            if batch.epoch != self._epoch:
                return False
            marked = self._data.apply_weekly_summary(summary, batch.entry_ids)
            self._persist()
            logger.info("Weekly summary stored; %s journal entries revealed", marked)
        self._notify("weekly_summary", summary.model_copy(deep=True))
        return True

    def apply_weekly_summary(self, summary: WeeklySummary, entry_ids: Iterable[UUID]) -> int:
        with self._lock:
            marked = self._data.apply_weekly_summary(summary, entry_ids)
            self._persist()
            logger.info("Weekly summary stored; %s journal entries revealed", marked)
        self._notify("weekly_summary", summary.model_copy(deep=True))
        return marked

    def journal_entries(self) -> List[JournalEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._data.journal_entries]

    def weekly_summaries(self) -> List[WeeklySummary]:
        with self._lock:
            return [summary.model_copy(deep=True) for summary in self._data.weekly_summaries]

    def current_week_entries(self) -> List[JournalEntry]:
        with self._lock:
            entries = self._data.current_week_entries(self._now(), self._weekly.window)
            return [entry.model_copy(deep=True) for entry in entries]

    def visible_entries(self) -> List[JournalEntry]:
        with self._lock:
            return [entry.model_copy(deep=True) for entry in self._data.visible_entries()]

    # ------------------------------------------------------------------
    # Reset and cancellation
    # ------------------------------------------------------------------

    def reset_plan(self) -> Optional[PastChallenge]:
        """Archive the plan as a past challenge (when it had goals) and clear it."""
        with self._lock:
            challenge = self._data.reset_plan(self._now())
            self._invalidate_in_flight()
            self._todays_tasks = []
            self._persist()
            log_metric("lifecycle.plan_reset", 1, metadata={"archived": challenge is not None})
            return challenge.model_copy(deep=True) if challenge else None

    def cancel_pending(self) -> None:
        """Discard the results of coach calls that are still running."""
        with self._lock:
            self._invalidate_in_flight()

    def _invalidate_in_flight(self) -> None:
        self._epoch += 1
        self._summary_pending_day = None
        self._weekly.release_all()

    def past_challenges(self) -> List[PastChallenge]:
        with self._lock:
            return [challenge.model_copy(deep=True) for challenge in self._data.past_challenges]

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _notify(self, event: str, payload: Any) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event, payload)
            except Exception:
                logger.exception("Observer failed while handling %s", event)


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _copy_tasks(tasks: Iterable[DailyTask]) -> List[DailyTask]:
    return [task.model_copy(deep=True) for task in tasks]

