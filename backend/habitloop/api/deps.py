"""FastAPI dependencies: the process-wide lifecycle engine."""
from __future__ import annotations

import logging
from functools import lru_cache

from habitloop.core.config import settings
from habitloop.db.session import SessionLocal
from habitloop.services.coach import OpenAICoach
from habitloop.services.job_runner import JobRunner
from habitloop.services.lifecycle import LifecycleEngine
from habitloop.services.store import UserDataStore

logger = logging.getLogger(__name__)


@lru_cache
def get_job_runner() -> JobRunner:
    return JobRunner(max_workers=settings.background_workers)


@lru_cache
def get_engine() -> LifecycleEngine:
    """Build the engine once per process; tests replace it via ``app.dependency_overrides``."""
    logger.info("Creating lifecycle engine (model=%s, tz=%s)", settings.openai_model, settings.app_timezone)
    return LifecycleEngine(
        store=UserDataStore(SessionLocal),
        coach=OpenAICoach(),
        jobs=get_job_runner(),
    )
