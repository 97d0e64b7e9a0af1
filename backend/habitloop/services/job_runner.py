"""Background job runners for coach calls that must not block the caller."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Set

from habitloop.core.context import bound_request_id, get_request_id

logger = logging.getLogger(__name__)


class JobRunner:
    """Thread pool whose submissions stay observable until they finish.

    Jobs inherit the submitting request id so their log lines can be traced back
    to the client call that started them. Failures are logged with the job name
    and re-raised into the returned future.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="habitloop-job")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        request_id = get_request_id() or f"job:{name}"

        def _run() -> Any:
            with bound_request_id(request_id):
                try:
                    return fn(*args, **kwargs)
                except Exception:
                    logger.exception("Background job %s failed", name)
                    raise

        future = self._executor.submit(_run)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every submitted job (including ones they submit) has finished."""
        while True:
            with self._lock:
                pending = {future for future in self._pending if not future.done()}
            if not pending:
                return True
            _, not_done = wait(pending, timeout=timeout)
            if not_done:
                return False

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)


class InlineJobRunner(JobRunner):
    """Runs jobs synchronously on submission; used by the worker and tests."""

    def __init__(self) -> None:
        self._pending = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            logger.exception("Inline job %s failed", name)
            future.set_exception(exc)
        return future

    def wait_idle(self, timeout: float | None = None) -> bool:
        return True

    def shutdown(self, wait: bool = True) -> None:
        return None
