"""Weekly journal analysis: batch entries older than a week, summarise each batch once."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Collection, List, Optional, Set
from uuid import UUID

from habitloop.core.config import settings
from habitloop.domain.models import JournalEntry, WeeklySummary, as_aware
from habitloop.errors import CoachServiceError
from habitloop.observability.metrics import log_metric
from habitloop.services.coach import CoachService
from habitloop.services.job_runner import JobRunner

logger = logging.getLogger(__name__)

ApplySummary = Callable[[WeeklySummary, "WeeklyBatch"], bool]


@dataclass
class WeeklyBatch:
    entries: List[JournalEntry]
    week_start_date: datetime
    week_end_date: datetime
    entry_ids: List[UUID] = field(default_factory=list)
    epoch: int = 0


def prepare_batch(
    entries: Collection[JournalEntry],
    now: datetime,
    *,
    window: timedelta = timedelta(days=7),
    exclude_ids: Collection[UUID] = (),
) -> Optional[WeeklyBatch]:
    """Collect unprocessed entries dated at or before ``now - window``.

    The week window is anchored on the first eligible entry in journal order:
    it ends at that entry's date and starts ``window`` earlier. Entries are
    addressed by id so later appends cannot shift which entries get marked.
    """
    cutoff = as_aware(now) - window
    old_entries = [
        entry.model_copy(deep=True)
        for entry in entries
        if not entry.is_visible and entry.id not in exclude_ids and as_aware(entry.date) <= cutoff
    ]
    if not old_entries:
        return None
    anchor = old_entries[0].date
    return WeeklyBatch(
        entries=old_entries,
        week_start_date=anchor - window,
        week_end_date=anchor,
        entry_ids=[entry.id for entry in old_entries],
    )


class WeeklyAnalysisTrigger:
    """Claims eligible batches and runs their analysis on the job runner.

    Entries of a batch stay claimed while its analysis is in flight, so a
    second journal append cannot start a duplicate batch. Failed analyses
    release their claim and are retried on the next qualifying append.
    """

    def __init__(self, coach: CoachService, jobs: JobRunner, *, window_days: int | None = None) -> None:
        self._coach = coach
        self._jobs = jobs
        self.window = timedelta(days=window_days or settings.weekly_analysis_window_days)
        self._in_flight: Set[UUID] = set()
        self._lock = threading.Lock()

    def claim(self, entries: Collection[JournalEntry], now: datetime, epoch: int = 0) -> Optional[WeeklyBatch]:
        with self._lock:
            batch = prepare_batch(entries, now, window=self.window, exclude_ids=self._in_flight)
            if batch is None:
                return None
            batch.epoch = epoch
            self._in_flight.update(batch.entry_ids)
        logger.info("Weekly analysis batch claimed (%s entries)", len(batch.entry_ids))
        return batch

    def dispatch(self, batch: WeeklyBatch, apply: ApplySummary) -> Future:
        return self._jobs.submit("weekly_analysis", self.run_batch, batch, apply)

    def run_batch(self, batch: WeeklyBatch, apply: ApplySummary) -> Optional[WeeklySummary]:
        try:
            try:
                analysis = self._coach.analyze_weekly_journal(batch.entries)
            except CoachServiceError as exc:
                logger.warning("Weekly analysis failed, will retry on next journal entry: %s", exc)
                log_metric("weekly_analysis.failed", 1, metadata={"error": type(exc).__name__})
                return None

            summary = WeeklySummary(
                week_start_date=batch.week_start_date,
                week_end_date=batch.week_end_date,
                ai_analysis=analysis.analysis,
                suggested_goals=list(analysis.suggested_goals),
            )
            if not apply(summary, batch):
                logger.info("Discarding weekly analysis for a plan that has since been reset")
                return None
            log_metric("weekly_analysis.applied", 1, metadata={"entries": len(batch.entry_ids)})
            return summary
        finally:
            self.release(batch.entry_ids)

    def release(self, entry_ids: Collection[UUID]) -> None:
        with self._lock:
            self._in_flight.difference_update(entry_ids)

    def release_all(self) -> None:
        with self._lock:
            self._in_flight.clear()

    @property
    def in_flight(self) -> Set[UUID]:
        with self._lock:
            return set(self._in_flight)
