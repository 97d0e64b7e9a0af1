"""Dedicated APScheduler worker process: rolls the plan over to the new day."""
from __future__ import annotations

import logging
import signal
import threading
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from habitloop.core.config import settings
from habitloop.core.context import bound_request_id
from habitloop.core.logging import configure_logging
from habitloop.db.session import SessionLocal
from habitloop.errors import CoachServiceError, NoActivePlan
from habitloop.observability.client import init_opik
from habitloop.observability.metrics import log_metric
from habitloop.services.coach import OpenAICoach
from habitloop.services.job_runner import InlineJobRunner
from habitloop.services.lifecycle import LifecycleEngine
from habitloop.services.store import UserDataStore

logger = logging.getLogger(__name__)


def run_daily_rollover(engine: LifecycleEngine) -> Optional[int]:
    """Close out yesterday and generate today's tasks; returns the task count.

    Returns ``None`` when there is no plan or the coach failed; the next client
    call to ``ensure_todays_tasks`` retries in that case.
    """
    with bound_request_id("job:daily_rollover"):
        try:
            tasks = engine.ensure_todays_tasks()
        except NoActivePlan:
            logger.debug("Daily rollover skipped: no active plan")
            return None
        except CoachServiceError as exc:
            logger.warning("Daily rollover could not generate tasks: %s", exc)
            log_metric("worker.rollover.failed", 1, metadata={"error": type(exc).__name__})
            return None
    logger.info("Daily rollover complete: day=%s tasks=%s", engine.current_day(), len(tasks))
    log_metric("worker.rollover.success", 1, metadata={"tasks": len(tasks)})
    return len(tasks)


def build_engine() -> LifecycleEngine:
    return LifecycleEngine(store=UserDataStore(SessionLocal), coach=OpenAICoach(), jobs=InlineJobRunner())


def _run_daily_rollover_job(engine_factory: Callable[[], LifecycleEngine] = build_engine) -> Optional[int]:
    """Load the saved state fresh for every run; the worker keeps nothing between runs."""
    return run_daily_rollover(engine_factory())


def main() -> None:
    configure_logging(log_level=settings.log_level)
    init_opik()
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        _register_jobs(scheduler)
        scheduler.start()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        _run_daily_rollover_job,
        trigger="cron",
        hour=settings.rollover_job_hour,
        minute=settings.rollover_job_minute,
        id="daily_rollover_job",
        replace_existing=True,
    )
    logger.info(
        "Registered daily rollover job (time=%02d:%02d %s)",
        settings.rollover_job_hour,
        settings.rollover_job_minute,
        settings.scheduler_timezone,
    )


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
