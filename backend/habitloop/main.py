"""Main FastAPI application for the HabitLoop backend."""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request

from habitloop.api.deps import get_job_runner
from habitloop.api.errors import register_error_handlers
from habitloop.api.routes.journal import router as journal_router
from habitloop.api.routes.plan import router as plan_router
from habitloop.api.routes.profile import router as profile_router
from habitloop.api.routes.tasks import router as tasks_router
from habitloop.core.config import settings
from habitloop.core.logging import configure_logging
from habitloop.core.middleware import RequestIDMiddleware
from habitloop.observability.client import init_opik
from habitloop.observability.tracing import trace

configure_logging(log_level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize observability once the loop starts; drain background jobs on exit."""
    init_opik()
    yield
    get_job_runner().shutdown(wait=True)


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestIDMiddleware)
register_error_handlers(app)
app.include_router(profile_router)
app.include_router(plan_router)
app.include_router(tasks_router)
app.include_router(journal_router)


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
