"""Lightweight IO task executor for offloading webhook calls."""
from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, Future
from typing import Callable, Any

from flask import current_app, has_app_context

_logger = logging.getLogger(__name__)

_max_workers = int(os.getenv("TASK_QUEUE_MAX_WORKERS", "4") or 4)
_executor = ThreadPoolExecutor(max_workers=_max_workers, thread_name_prefix="gestor-io")


def submit_io_task(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
    """Submit a blocking IO task to the shared executor.

    When called inside an application context the task runs inside a fresh
    context of the same app, so it can use the database session. Errors are
    logged asynchronously instead of reaching the request thread.
    """
    app = current_app._get_current_object() if has_app_context() else None

    def _run() -> Any:
        if app is None:
            return func(*args, **kwargs)
        with app.app_context():
            return func(*args, **kwargs)

    future = _executor.submit(_run)

    def _log_outcome(fut: Future) -> None:
        exc = fut.exception()
        if exc:
            _logger.error("Background task %s failed: %s", getattr(func, '__name__', func), exc, exc_info=exc)

    future.add_done_callback(_log_outcome)
    return future
