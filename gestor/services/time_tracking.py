"""Time tracking sessions of users working on tasks."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from gestor import db
from gestor.constants import TaskStatus
from gestor.models.tables import Task, TaskTimeSession, User
from gestor.utils.datetime_utils import now_naive

logger = logging.getLogger(__name__)

# Iniciar o cronômetro coloca a tarefa em execução
_STARTABLE_STATUSES = frozenset({TaskStatus.CREATED, TaskStatus.ACCEPTED})


class TimeTrackingError(ValueError):
    """Raised when a session cannot be started or stopped."""


def open_session(task: Task, user: User) -> Optional[TaskTimeSession]:
    return (
        TaskTimeSession.query.filter_by(tarefa_id=task.id, usuario_id=user.id, fim=None)
        .order_by(TaskTimeSession.inicio.desc())
        .first()
    )


def start_session(task: Task, user: User, when: Optional[datetime] = None) -> TaskTimeSession:
    """Open a session for ``user`` on ``task``; only one may be open at a time."""
    if open_session(task, user) is not None:
        raise TimeTrackingError("session_already_open")

    session = TaskTimeSession(usuario_id=user.id, inicio=when or now_naive())
    task.tempo_sessoes.append(session)
    if task.status in _STARTABLE_STATUSES:
        task.set_status(TaskStatus.EXECUTING)
    db.session.flush()
    logger.info("Sessão de tempo iniciada: tarefa=%s usuario=%s", task.id, user.id)
    return session


def stop_session(task: Task, user: User, when: Optional[datetime] = None) -> TaskTimeSession:
    """Close the open session of ``user`` and record the elapsed minutes."""
    session = open_session(task, user)
    if session is None:
        raise TimeTrackingError("no_open_session")

    finished = when or now_naive()
    if finished < session.inicio:
        raise TimeTrackingError("end_before_start")
    session.fim = finished
    session.minutos_trabalhados = int((finished - session.inicio).total_seconds() // 60)
    db.session.flush()
    logger.info(
        "Sessão de tempo encerrada: tarefa=%s usuario=%s minutos=%s",
        task.id,
        user.id,
        session.minutos_trabalhados,
    )
    return session


def total_minutes(task: Task) -> int:
    """Minutes of closed sessions of ``task``."""
    return task.minutes_spent
