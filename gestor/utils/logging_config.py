"""Structured logging configuration for production monitoring."""

import json
import logging
import os
import tempfile
import time
from logging.handlers import TimedRotatingFileHandler
from time import perf_counter
from typing import Optional

from sqlalchemy import event

TASK_AUDIT_LOGGER = "task_audit"
JOBS_LOGGER = "gestor.scheduler"


class JsonFormatter(logging.Formatter):
    """JSON formatter for machine-parsable logs."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "timestamp": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        for attr in ("request_id", "user_id", "empresa_id", "task_id"):
            if hasattr(record, attr):
                payload[attr] = getattr(record, attr)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class SafeTimedRotatingFileHandler(TimedRotatingFileHandler):
    """TimedRotatingFileHandler that tolerates Windows file-lock rollover failures.

    When the log file is held open by another process (the Werkzeug
    reloader, usually) ``os.rename`` fails with WinError 32. The rollover is
    then skipped for this interval and the base file is reopened.
    """

    def doRollover(self) -> None:  # type: ignore[override]
        try:
            super().doRollover()
        except PermissionError as exc:
            if getattr(exc, "winerror", None) != 32:
                raise

            try:
                self.stream = self._open()
            except OSError:
                self.stream = None

            self.rolloverAt = int(time.time()) + self.interval


def _daily_handler(path: str, level: int, formatter: logging.Formatter, backup_count: int):
    handler = SafeTimedRotatingFileHandler(
        path,
        when='midnight',
        interval=1,
        backupCount=backup_count,
        encoding='utf-8',
        delay=True,
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _clear_logger_handlers(logger_name: str) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    return logger


def _resolve_log_dir(app) -> str:
    """Resolve a writable log directory, falling back to the temp dir."""
    log_dir = os.getenv("APP_LOG_DIR")
    if not log_dir:
        root_dir = os.path.abspath(os.path.join(app.root_path, ".."))
        log_dir = os.path.join(root_dir, "logs")

    try:
        os.makedirs(log_dir, exist_ok=True)
        test_path = os.path.join(log_dir, ".write-test")
        with open(test_path, "w", encoding="utf-8") as test_file:
            test_file.write("ok")
        os.remove(test_path)
        return log_dir
    except OSError:
        fallback_dir = os.path.join(tempfile.gettempdir(), "gestor-logs")
        os.makedirs(fallback_dir, exist_ok=True)
        return fallback_dir


def _register_slow_query_listener(engine, slow_query_logger: logging.Logger, threshold_ms: float) -> None:
    """Attach SQLAlchemy listeners that report slow statements."""

    @event.listens_for(engine, "before_cursor_execute")
    def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        context._query_start_time = perf_counter()

    @event.listens_for(engine, "after_cursor_execute")
    def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        start = getattr(context, "_query_start_time", None)
        if start is None:
            return
        duration_ms = (perf_counter() - start) * 1000
        if duration_ms < threshold_ms:
            return
        slow_query_logger.warning(
            "SLOW QUERY (%.0f ms): %s",
            duration_ms,
            statement.replace("\n", " "),
        )


def setup_logging(app, engine: Optional[object] = None):
    """Configure structured logging with rotation.

    Files written to the log directory:
    - app.log / app.jsonl: general application logs (daily, 60 days)
    - error.log: ERROR and above (daily, 90 days)
    - jobs.log: scheduler and notification jobs (daily, 60 days)
    - task_audit.jsonl: task changes made through the API (daily, 180 days)
    - slow_queries.log: statements slower than SLOW_QUERY_THRESHOLD_MS
    """
    log_dir = _resolve_log_dir(app)

    app.logger.handlers.clear()
    app.logger.setLevel(logging.INFO)

    text_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s (%(funcName)s:%(lineno)d): %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    json_formatter = JsonFormatter()

    app.logger.addHandler(
        _daily_handler(os.path.join(log_dir, 'app.log'), logging.INFO, text_formatter, 60)
    )
    app.logger.addHandler(
        _daily_handler(os.path.join(log_dir, 'app.jsonl'), logging.INFO, json_formatter, 60)
    )
    app.logger.addHandler(
        _daily_handler(os.path.join(log_dir, 'error.log'), logging.ERROR, text_formatter, 90)
    )

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(text_formatter)
        app.logger.addHandler(console_handler)

    # Scheduler and service loggers share the jobs file.
    jobs_logger = _clear_logger_handlers(JOBS_LOGGER)
    jobs_logger.setLevel(logging.INFO)
    jobs_logger.addHandler(
        _daily_handler(os.path.join(log_dir, 'jobs.log'), logging.INFO, text_formatter, 60)
    )
    services_logger = _clear_logger_handlers("gestor.services")
    services_logger.setLevel(logging.INFO)
    for handler in jobs_logger.handlers:
        services_logger.addHandler(handler)

    audit_logger = _clear_logger_handlers(TASK_AUDIT_LOGGER)
    audit_logger.setLevel(logging.INFO)
    audit_logger.addHandler(
        _daily_handler(os.path.join(log_dir, 'task_audit.jsonl'), logging.INFO, json_formatter, 180)
    )
    audit_logger.propagate = False

    slow_query_logger = _clear_logger_handlers('sqlalchemy.slow_queries')
    slow_query_logger.setLevel(logging.WARNING)
    slow_query_logger.addHandler(
        SafeTimedRotatingFileHandler(
            os.path.join(log_dir, 'slow_queries.log'),
            when='W0',
            interval=1,
            backupCount=12,
            encoding='utf-8',
            delay=True,
        )
    )
    slow_query_logger.propagate = False
    slow_query_threshold_ms = float(
        app.config.get("SLOW_QUERY_THRESHOLD_MS", os.getenv("SLOW_QUERY_THRESHOLD_MS", "1000"))
    )
    if engine is not None:
        _register_slow_query_listener(engine, slow_query_logger, slow_query_threshold_ms)

    app.logger.info(
        "Gestor de tarefas iniciado (modo=%s, logs=%s, consultas lentas >= %.0f ms)",
        "desenvolvimento" if app.debug else "produção",
        log_dir,
        slow_query_threshold_ms,
        extra={"request_id": "startup"},
    )

    return app.logger


def log_task_action(action: str, user_id, empresa_id, task_id=None, **details):
    """Write one entry of the task audit trail."""
    logger = logging.getLogger(TASK_AUDIT_LOGGER)
    suffix = " ".join(f"{key}={value}" for key, value in sorted(details.items()))
    logger.info(
        "%s %s",
        action,
        suffix,
        extra={"user_id": user_id, "empresa_id": empresa_id, "task_id": task_id},
    )


def _request_user_extra(request_id=None) -> dict:
    """Identify the API user of the current request for the JSON log."""
    from flask import g, has_app_context

    extra = {"request_id": request_id}
    user = getattr(g, "api_user", None) if has_app_context() else None
    if user is not None:
        extra["user_id"] = user.id
        extra["empresa_id"] = user.empresa_id
    return extra


def log_request_info(request, response, duration_ms, request_id=None):
    """Log slow, failed and rate limited requests.

    Args:
        request: Flask request object
        response: Flask response object
        duration_ms: Request duration in milliseconds
        request_id: Optional correlation identifier
    """
    from flask import current_app

    logger = current_app.logger
    extra = _request_user_extra(request_id)
    status = response.status_code
    route = f"{request.method} {request.path}"

    if duration_ms > 2000:
        logger.warning("[req=%s] Requisição lenta (%.0f ms): %s -> %s", request_id, duration_ms, route, status, extra=extra)
    elif status >= 500:
        logger.error("[req=%s] Erro %s em %s (ip=%s)", request_id, status, route, request.remote_addr, extra=extra)
    elif status == 429:
        logger.warning("[req=%s] Limite de requisições atingido: %s (ip=%s)", request_id, route, request.remote_addr, extra=extra)
    elif current_app.debug:
        logger.debug("[req=%s] %s -> %s (%.0f ms)", request_id, route, status, duration_ms, extra=extra)


def log_exception(error, request=None):
    """Log ``error`` with its stack trace and the request that raised it."""
    from flask import current_app, g, has_app_context

    request_id = getattr(g, "request_id", None) if has_app_context() else None
    route = f"{request.method} {request.path}" if request else "fora de requisição"
    current_app.logger.error(
        "Exceção %s em %s: %s",
        type(error).__name__,
        route,
        error,
        exc_info=error if isinstance(error, BaseException) else None,
        extra=_request_user_extra(request_id),
    )
