"""Domain model for plans, goals, daily tasks and the journal.

Everything here is pure: no I/O, no clock reads. Callers pass ``now``/``today``
explicitly so the lifecycle engine (and tests) control time. The aggregate
root is :class:`UserData`; it is persisted as a single JSON document using the
camelCase field aliases.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Iterable, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_HISTORY_RETENTION = 7
DEFAULT_WAKE_TIME = time(hour=6, minute=0)
DEFAULT_SLEEP_TIME = time(hour=22, minute=0)
ON_TIME_TOLERANCE_MINUTES = 15
TIME_WINDOW = timedelta(hours=1)
_TIME_FORMATS = ("%I:%M %p", "%I:%M%p", "%H:%M")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_date(value: datetime, tz: tzinfo = timezone.utc) -> date:
    return as_aware(value).astimezone(tz).date()


def format_clock_time(value: time) -> str:
    """Render a time as ``h:mm AM`` without a leading zero."""
    return value.strftime("%I:%M %p").lstrip("0")


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskIntensity(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def for_day(cls, day: int, total_days: int) -> "TaskIntensity":
        """Tier for ``day`` of ``total_days``; a boundary value belongs to the lower band."""
        if total_days <= 0:
            return cls.BEGINNER
        progress = day / total_days
        if progress <= 0.3:
            return cls.BEGINNER
        if progress <= 0.7:
            return cls.INTERMEDIATE
        return cls.ADVANCED


class CompletionStatus(str, Enum):
    PENDING = "pending"
    EARLY = "early"
    ON_TIME = "on_time"
    LATE = "late"


class NotificationPreference(str, Enum):
    NEVER = "Never"
    OCCASIONALLY = "Occasionally"
    OFTEN = "Often"


class Goal(_Model):
    id: UUID = Field(default_factory=uuid4)
    title: str
    emoji: str = ""
    is_custom: bool = False
    strategy: str = ""
    sub_plans: List[str] = Field(default_factory=list)
    generated_plan: Optional[List[str]] = None


class DailyTask(_Model):
    id: UUID = Field(default_factory=uuid4)
    goal_title: str
    task: str
    emoji: str = "📝"
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    intensity: TaskIntensity = TaskIntensity.BEGINNER
    notes: str = ""
    scheduled_time: Optional[datetime] = None

    def toggle(self, now: datetime) -> None:
        self.is_completed = not self.is_completed
        self.completed_at = now if self.is_completed else None

    @property
    def completion_status(self) -> CompletionStatus:
        if self.completed_at is None:
            return CompletionStatus.PENDING
        if self.scheduled_time is None:
            return CompletionStatus.ON_TIME
        delta = as_aware(self.completed_at) - as_aware(self.scheduled_time)
        minutes = int(delta.total_seconds() / 60)
        if abs(minutes) <= ON_TIME_TOLERANCE_MINUTES:
            return CompletionStatus.ON_TIME
        if minutes < 0:
            return CompletionStatus.EARLY
        return CompletionStatus.LATE

    def is_in_time_window(self, now: datetime) -> bool:
        if self.scheduled_time is None:
            return False
        scheduled = as_aware(self.scheduled_time)
        return scheduled - TIME_WINDOW <= as_aware(now) <= scheduled + TIME_WINDOW

    @staticmethod
    def parse_time(value: str | None, now: datetime, tz: tzinfo = timezone.utc) -> Optional[datetime]:
        """Parse ``"9:00 AM"`` onto the calendar day of ``now`` in ``tz``."""
        if not value:
            return None
        text = value.strip().upper()
        for fmt in _TIME_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt).time()
            except ValueError:
                continue
            return datetime.combine(local_date(now, tz), parsed, tzinfo=tz)
        return None


class DailyTaskHistory(_Model):
    day: int = Field(..., ge=1)
    date: date
    tasks: List[DailyTask] = Field(default_factory=list)
    summary: Optional[str] = None

    def completion_counts(self) -> tuple[int, int]:
        completed = sum(1 for task in self.tasks if task.is_completed)
        return completed, len(self.tasks)


class JournalEntry(_Model):
    id: UUID = Field(default_factory=uuid4)
    date: datetime = Field(default_factory=utcnow)
    content: str
    completed_tasks: List[str] = Field(default_factory=list)
    is_visible: bool = False


class WeeklySummary(_Model):
    id: UUID = Field(default_factory=uuid4)
    week_start_date: datetime
    week_end_date: datetime
    ai_analysis: str = ""
    suggested_goals: List[str] = Field(default_factory=list)


class PastChallenge(_Model):
    id: UUID = Field(default_factory=uuid4)
    completed_date: datetime
    duration: int
    goals: List[Goal] = Field(default_factory=list)
    completion_rate: float = 0.0
    journal_entries: List[JournalEntry] = Field(default_factory=list)

    @classmethod
    def snapshot(cls, user_data: "UserData", now: datetime) -> "PastChallenge":
        tasks = [task for entry in user_data.daily_task_history for task in entry.tasks]
        completed = sum(1 for task in tasks if task.is_completed)
        return cls(
            completed_date=now,
            duration=user_data.plan_duration,
            goals=[goal.model_copy(deep=True) for goal in user_data.goals],
            completion_rate=completed / max(1, len(tasks)),
            journal_entries=[entry.model_copy(deep=True) for entry in user_data.journal_entries],
        )


class UserData(_Model):
    name: Optional[str] = None
    sex: Optional[str] = None
    age: Optional[int] = None
    height: Optional[float] = None
    weight: Optional[float] = None
    wake_time: Optional[time] = None
    sleep_time: Optional[time] = None
    notification_preference: NotificationPreference = NotificationPreference.OCCASIONALLY
    plan_duration: int = Field(default=21, ge=1)
    goals: List[Goal] = Field(default_factory=list)
    plan_start_date: Optional[datetime] = None
    last_completed_day: Optional[int] = None
    daily_task_history: List[DailyTaskHistory] = Field(default_factory=list)
    journal_entries: List[JournalEntry] = Field(default_factory=list)
    weekly_summaries: List[WeeklySummary] = Field(default_factory=list)
    past_challenges: List[PastChallenge] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Plan progress
    # ------------------------------------------------------------------

    def current_day(self, now: datetime, tz: tzinfo = timezone.utc) -> Optional[int]:
        """1-based plan day, clamped to ``plan_duration``; ``None`` without a plan."""
        if self.plan_start_date is None:
            return None
        elapsed = (local_date(now, tz) - local_date(self.plan_start_date, tz)).days
        return max(1, min(elapsed + 1, self.plan_duration))

    def is_completed(self, now: datetime, tz: tzinfo = timezone.utc) -> bool:
        day = self.current_day(now, tz)
        if day is None:
            return False
        return day >= self.plan_duration

    @property
    def formatted_wake_time(self) -> str:
        return format_clock_time(self.wake_time or DEFAULT_WAKE_TIME)

    @property
    def formatted_sleep_time(self) -> str:
        return format_clock_time(self.sleep_time or DEFAULT_SLEEP_TIME)

    # ------------------------------------------------------------------
    # Daily history
    # ------------------------------------------------------------------

    def append_daily_history(
        self,
        day: int,
        tasks: Iterable[DailyTask],
        on: date,
        retention: int = DEFAULT_HISTORY_RETENTION,
    ) -> DailyTaskHistory:
        entry = DailyTaskHistory(day=day, date=on, tasks=list(tasks))
        self.daily_task_history.append(entry)
        overflow = len(self.daily_task_history) - retention
        if overflow > 0:
            del self.daily_task_history[:overflow]
        return entry

    def last_entry(self) -> Optional[DailyTaskHistory]:
        return self.daily_task_history[-1] if self.daily_task_history else None

    def today_entry(self, today: date) -> Optional[DailyTaskHistory]:
        """The history entry for ``today``, if a plan is active and one was generated."""
        if self.plan_start_date is None:
            return None
        last = self.last_entry()
        if last is None or last.date != today:
            return None
        return last

    def replace_today_tasks(self, tasks: Iterable[DailyTask]) -> bool:
        last = self.last_entry()
        if last is None:
            return False
        last.tasks = [task.model_copy(deep=True) for task in tasks]
        return True

    def task_history(self, goal_title: str) -> List[DailyTask]:
        return [
            task
            for entry in self.daily_task_history
            for task in entry.tasks
            if task.goal_title == goal_title
        ]

    def tasks_for_date(self, on: date) -> List[DailyTask]:
        for entry in self.daily_task_history:
            if entry.date == on:
                return list(entry.tasks)
        return []

    def history_newest_first(self) -> List[DailyTaskHistory]:
        return sorted(self.daily_task_history, key=lambda entry: entry.date, reverse=True)

    # ------------------------------------------------------------------
    # Journal
    # ------------------------------------------------------------------

    def append_journal_entry(self, entry: JournalEntry) -> JournalEntry:
        self.journal_entries.append(entry)
        return entry

    def apply_weekly_summary(self, summary: WeeklySummary, entry_ids: Iterable[UUID]) -> int:
        """Store ``summary`` and reveal the analysed entries; unknown ids are skipped."""
        self.weekly_summaries.append(summary)
        wanted = set(entry_ids)
        marked = 0
        for entry in self.journal_entries:
            if entry.id in wanted:
                entry.is_visible = True
                marked += 1
        return marked

    def current_week_entries(self, now: datetime, window: timedelta = timedelta(days=7)) -> List[JournalEntry]:
        cutoff = as_aware(now) - window
        return [entry for entry in self.journal_entries if as_aware(entry.date) > cutoff]

    def visible_entries(self) -> List[JournalEntry]:
        return [entry for entry in self.journal_entries if entry.is_visible]

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def add_goal(self, goal: Goal) -> Goal:
        self.goals.append(goal)
        return goal

    def remove_goal(self, goal_id: UUID) -> bool:
        before = len(self.goals)
        self.goals = [goal for goal in self.goals if goal.id != goal_id]
        return len(self.goals) != before

    def update_sub_plan(self, goal_id: UUID, old_plan: str, new_plan: str) -> bool:
        for goal in self.goals:
            if goal.id != goal_id:
                continue
            if old_plan not in goal.sub_plans:
                return False
            goal.sub_plans[goal.sub_plans.index(old_plan)] = new_plan
            return True
        return False

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset_plan(self, now: datetime) -> Optional[PastChallenge]:
        challenge = None
        if self.goals:
            challenge = PastChallenge.snapshot(self, now)
            self.past_challenges.append(challenge)
        self.plan_start_date = None
        self.last_completed_day = None
        self.goals = []
        self.daily_task_history = []
        self.journal_entries = []
        self.weekly_summaries = []
        return challenge
