"""Servidor de produção do gestor de tarefas (Waitress)."""
import logging
import os

from waitress import serve

from gestor import app

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """Read an integer setting, ignoring empty or malformed values."""
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning("%s=%r inválido; usando %s", name, raw, default)
        return default


def main():
    logging.getLogger("waitress").setLevel(os.getenv("WAITRESS_LOG_LEVEL", "info").upper())

    options = {
        "host": os.getenv("WAITRESS_HOST", "127.0.0.1"),
        "port": _env_int("WAITRESS_PORT", 5000),
        "threads": _env_int("WAITRESS_THREADS", 16),
        "connection_limit": _env_int("WAITRESS_CONNECTION_LIMIT", 128),
        "channel_timeout": _env_int("WAITRESS_CHANNEL_TIMEOUT", 60),
    }
    logger.info(
        "Servidor em %(host)s:%(port)s (threads=%(threads)s, timeout=%(channel_timeout)ss)",
        options,
    )
    if not app.config.get("SCHEDULER_ENABLED"):
        logger.info("Agendador desligado neste processo; rode um worker com SCHEDULER_ENABLED=1")

    serve(
        app,
        clear_untrusted_proxy_headers=True,
        expose_tracebacks=app.debug or os.getenv("WAITRESS_EXPOSE_TRACEBACKS", "0") == "1",
        **options,
    )


if __name__ == "__main__":
    main()
