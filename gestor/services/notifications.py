"""
Notificações via webhook do n8n.

Cada evento de tarefa monta um payload JSON com a tarefa, os responsáveis
(membros de equipes expandidos), os gestores da empresa e a própria empresa;
usuários, empresas e reuniões têm payloads próprios. O envio é feito uma
única vez para a URL configurada em ``configuracoes_sistema`` e fica
registrado em ``notificacoes_logs``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

import requests
from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from gestor import db
from gestor.constants import (
    AssigneeKind,
    OPEN_STATUSES,
    Role,
    SETTING_NOTIFY_OVERDUE_1DAY,
    SETTING_NOTIFY_OVERDUE_5DAYS,
    SETTING_NOTIFY_REMINDER_TODAY,
    SETTING_NOTIFY_TASK_CREATED,
    SETTING_WEBHOOK_URL,
)
from gestor.extensions.task_queue import submit_io_task
from gestor.models.tables import Empresa, Equipe, NotificationLog, Reuniao, SystemSetting, Task, User
from gestor.utils.datetime_utils import today_local

logger = logging.getLogger(__name__)


# =============================================================================
# EVENTOS
# =============================================================================

class NotificationEvent(str, Enum):
    """Actions understood by the n8n workflow."""

    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    TASK_RESPONSIBLE_ADDED = "task_responsible_added"
    TASK_REMINDER_TODAY = "task_reminder_today"
    TASK_OVERDUE_1DAY = "task_overdue_1day"
    TASK_OVERDUE_5DAYS = "task_overdue_5days"
    USER_CREATED = "user_created"
    USER_DELETED = "user_deleted"
    USER_REACTIVATED = "user_reactivated"
    COMPANY_DEACTIVATED = "company_deactivated"
    COMPANY_REACTIVATED = "company_reactivated"
    COMPANY_DELETED = "company_deleted"
    MEETING_CREATED = "meeting_created"

    @property
    def toggle_key(self) -> Optional[str]:
        """Setting that must be ``'true'`` for the event to be sent, if any."""
        return _TOGGLE_KEYS.get(self)


_TOGGLE_KEYS = {
    NotificationEvent.TASK_CREATED: SETTING_NOTIFY_TASK_CREATED,
    NotificationEvent.TASK_REMINDER_TODAY: SETTING_NOTIFY_REMINDER_TODAY,
    NotificationEvent.TASK_OVERDUE_1DAY: SETTING_NOTIFY_OVERDUE_1DAY,
    NotificationEvent.TASK_OVERDUE_5DAYS: SETTING_NOTIFY_OVERDUE_5DAYS,
}

_OVERDUE_EVENTS = {
    1: NotificationEvent.TASK_OVERDUE_1DAY,
    5: NotificationEvent.TASK_OVERDUE_5DAYS,
}


class WebhookNotConfigured(RuntimeError):
    """Raised when no webhook URL is available."""


@dataclass
class NotificationResult:
    event: NotificationEvent
    sent: bool
    skipped: bool = False
    status_code: Optional[int] = None
    error: Optional[str] = None


# =============================================================================
# PAYLOADS
# =============================================================================

def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _task_data(task: Task, **extra) -> dict:
    data = {
        "id": task.id,
        "titulo": task.titulo,
        "descricao": task.descricao,
        "prioridade": task.prioridade.value if task.prioridade else None,
        "status": task.status.value if task.status else None,
        "data_conclusao": _iso(task.data_conclusao),
        "horario_conclusao": task.horario_conclusao.strftime("%H:%M") if task.horario_conclusao else None,
    }
    data.update(extra)
    return data


def _expand_people(links) -> list[dict]:
    people: list[dict] = []
    seen: set[int] = set()
    for link in links:
        kind, _ = link.key
        if kind is AssigneeKind.USER:
            members = [(link.usuario, None)] if link.usuario else []
        else:
            team = link.equipe
            members = [(member, team.nome) for member in team.membros] if team else []
        for member, team_name in members:
            if member.id in seen or not member.ativo:
                continue
            seen.add(member.id)
            entry = member.contact_payload()
            entry["tipo"] = kind.value
            if team_name is not None:
                entry["nome_equipe"] = team_name
            people.append(entry)
    return people


def expand_responsibles(task: Task) -> list[dict]:
    """
    Return the people responsible for ``task``.

    Team assignments are expanded to their members (``tipo`` ``equipe`` with
    ``nome_equipe``). A person reached more than once is listed once, with
    the first assignment found.
    """
    return _expand_people(task.responsaveis)


def company_managers(empresa_id) -> list[dict]:
    """Return contacts of the company's managers and owners."""
    managers = (
        User.query.filter(
            User.empresa_id == empresa_id,
            User.tipo_usuario.in_([Role.MANAGER, Role.OWNER]),
            User.ativo.is_(True),
        )
        .order_by(User.nome.asc())
        .all()
    )
    return [manager.contact_payload() for manager in managers]


def build_task_payload(event: NotificationEvent, task: Task, **task_extra) -> dict:
    """Build the webhook body of a task event."""
    empresa = db.session.get(Empresa, task.empresa_id)
    return {
        "action": event.value,
        "timestamp": _timestamp(),
        "task": _task_data(task, **task_extra),
        "responsibles": expand_responsibles(task),
        "managers": company_managers(task.empresa_id),
        "company": empresa.to_payload() if empresa else None,
    }


def build_user_payload(event: NotificationEvent, user: User, actor: Optional[User] = None) -> dict:
    """Build the webhook body of a user lifecycle event."""
    celular = user.celular
    # n8n espera o número sem o DDI 55
    if celular and celular.startswith("55") and len(celular) == 13:
        celular = celular[2:]
    empresa = db.session.get(Empresa, user.empresa_id) if user.empresa_id else None
    return {
        "action": event.value,
        "timestamp": _timestamp(),
        "user": {
            "id": user.id,
            "nome": user.nome,
            "email": user.email,
            "celular": celular,
            "tipo_usuario": user.tipo_usuario.value,
        },
        "company": empresa.to_payload() if empresa else None,
        "action_by": actor.contact_payload() if actor else None,
    }


def build_company_payload(event: NotificationEvent, empresa: Empresa, actor: Optional[User] = None) -> dict:
    """Build the webhook body of a company lifecycle event."""
    owner = (
        User.query.filter_by(empresa_id=empresa.id, tipo_usuario=Role.OWNER)
        .order_by(User.id.asc())
        .first()
    )
    active_users = User.query.filter_by(empresa_id=empresa.id, ativo=True).count()
    company = empresa.to_payload()
    company.update({"cnpj": empresa.cnpj, "ativo": empresa.ativo})
    return {
        "action": event.value,
        "timestamp": _timestamp(),
        "company": company,
        "owner": owner.contact_payload() if owner else None,
        "action_by": actor.contact_payload() if actor else None,
        "metadata": {"total_users_affected": active_users},
    }


def build_company_deleted_payload(empresa: Empresa, actor: Optional[User] = None) -> dict:
    """
    Build the body of a company deletion.

    Must run before the rows are removed: it reads the owner and counts
    everything the deletion is about to take with it.
    """
    payload = build_company_payload(NotificationEvent.COMPANY_DELETED, empresa, actor)
    payload["metadata"].update(
        {
            "total_users_affected": User.query.filter_by(empresa_id=empresa.id).count(),
            "total_tasks_affected": Task.query.filter_by(empresa_id=empresa.id).count(),
            "total_teams_affected": Equipe.query.filter_by(empresa_id=empresa.id).count(),
        }
    )
    return payload


def build_meeting_payload(meeting: Reuniao) -> dict:
    """Build the webhook body announcing a new meeting."""
    empresa = db.session.get(Empresa, meeting.empresa_id)
    teams = [part.equipe for part in meeting.participantes if part.equipe is not None]
    return {
        "action": NotificationEvent.MEETING_CREATED.value,
        "timestamp": _timestamp(),
        "meeting": {
            "id": meeting.id,
            "titulo": meeting.titulo,
            "descricao": meeting.descricao,
            "data_reuniao": _iso(meeting.data_reuniao),
            "horario_inicio": meeting.horario_inicio.strftime("%H:%M"),
            "duracao_minutos": meeting.duracao_minutos,
            "link_reuniao": meeting.link_reuniao,
            "created_at": _iso(meeting.created_at),
        },
        "participants": _expand_people(meeting.participantes),
        "teams": [{"id": team.id, "nome": team.nome} for team in teams],
        "company": empresa.to_payload() if empresa else None,
        "action_by": meeting.criador.contact_payload() if meeting.criador else None,
    }


# =============================================================================
# ENVIO
# =============================================================================

def webhook_url() -> Optional[str]:
    """Return the webhook URL, preferring the system setting over the env."""
    url = SystemSetting.get_value(SETTING_WEBHOOK_URL)
    if not url and has_app_context():
        url = current_app.config.get("N8N_WEBHOOK_URL")
    return (url or "").strip() or None


def is_event_enabled(event: NotificationEvent) -> bool:
    key = event.toggle_key
    return key is None or SystemSetting.is_enabled(key)


def _response_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"text": response.text[:500]}


def _record_log(event: NotificationEvent, success: bool, reference: dict, returned: Any, error: str | None = None) -> None:
    try:
        db.session.add(
            NotificationLog(
                acao=event.value,
                sucesso=success,
                dados_entrada=reference,
                dados_retorno=returned,
                erro=(error or None) and error[:255],
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Falha ao registrar log da notificação %s", event.value)


def send_notification(
    event: NotificationEvent,
    payload: dict,
    *,
    reference: Optional[dict] = None,
    session: Optional[requests.Session] = None,
) -> NotificationResult:
    """
    POST ``payload`` to the webhook once.

    Disabled events are skipped without touching the network. A missing URL
    raises :class:`WebhookNotConfigured`; transport failures and non-2xx
    answers are logged and reported in the result.
    """
    if not is_event_enabled(event):
        logger.info("Notificação %s desativada; envio ignorado", event.value)
        return NotificationResult(event=event, sent=False, skipped=True)

    url = webhook_url()
    if not url:
        raise WebhookNotConfigured("Webhook URL não configurado")

    reference = reference or {}
    timeout = current_app.config.get("WEBHOOK_TIMEOUT_SECONDS", 15) if has_app_context() else 15
    http = session or requests.Session()
    try:
        response = http.post(url, json=payload, timeout=timeout)
    except requests.RequestException as exc:
        logger.warning("Falha ao enviar notificação %s: %s", event.value, exc)
        _record_log(event, False, reference, None, str(exc))
        return NotificationResult(event=event, sent=False, error=str(exc))
    finally:
        if session is None:
            http.close()

    body = _response_body(response)
    if not response.ok:
        logger.warning(
            "Webhook respondeu %s para %s", response.status_code, event.value
        )
        _record_log(event, False, reference, body, f"HTTP {response.status_code}")
        return NotificationResult(
            event=event, sent=False, status_code=response.status_code, error=f"HTTP {response.status_code}"
        )

    logger.info("Notificação %s enviada (%s)", event.value, reference)
    _record_log(event, True, reference, body)
    return NotificationResult(event=event, sent=True, status_code=response.status_code)


# =============================================================================
# PONTOS DE ENTRADA
# =============================================================================

def _load(model, object_id, label: str):
    obj = db.session.get(model, object_id)
    if obj is None:
        logger.warning("%s %s não encontrado; notificação descartada", label, object_id)
    return obj


def _notify_task(event: NotificationEvent, task_id: int, **task_extra) -> Optional[NotificationResult]:
    task = _load(Task, task_id, "Tarefa")
    if task is None:
        return None
    payload = build_task_payload(event, task, **task_extra)
    return send_notification(event, payload, reference={"taskId": task.id})


def notify_task_created(task_id: int) -> Optional[NotificationResult]:
    return _notify_task(NotificationEvent.TASK_CREATED, task_id)


def notify_task_completed(task_id: int) -> Optional[NotificationResult]:
    return _notify_task(NotificationEvent.TASK_COMPLETED, task_id)


def notify_task_responsible_added(task_id: int) -> Optional[NotificationResult]:
    return _notify_task(NotificationEvent.TASK_RESPONSIBLE_ADDED, task_id)


def _notify_user(event: NotificationEvent, user_id: int, actor_id: Optional[int]) -> Optional[NotificationResult]:
    user = _load(User, user_id, "Usuário")
    if user is None:
        return None
    actor = db.session.get(User, actor_id) if actor_id else None
    payload = build_user_payload(event, user, actor)
    return send_notification(event, payload, reference={"userId": user.id})


def notify_user_created(user_id: int, actor_id: Optional[int] = None) -> Optional[NotificationResult]:
    return _notify_user(NotificationEvent.USER_CREATED, user_id, actor_id)


def notify_user_deleted(user_id: int, actor_id: Optional[int] = None) -> Optional[NotificationResult]:
    return _notify_user(NotificationEvent.USER_DELETED, user_id, actor_id)


def notify_user_reactivated(user_id: int, actor_id: Optional[int] = None) -> Optional[NotificationResult]:
    return _notify_user(NotificationEvent.USER_REACTIVATED, user_id, actor_id)


def _notify_company(event: NotificationEvent, empresa_id: int, actor_id: Optional[int]) -> Optional[NotificationResult]:
    empresa = _load(Empresa, empresa_id, "Empresa")
    if empresa is None:
        return None
    actor = db.session.get(User, actor_id) if actor_id else None
    payload = build_company_payload(event, empresa, actor)
    return send_notification(event, payload, reference={"empresaId": empresa.id})


def notify_company_deactivated(empresa_id: int, actor_id: Optional[int] = None) -> Optional[NotificationResult]:
    return _notify_company(NotificationEvent.COMPANY_DEACTIVATED, empresa_id, actor_id)


def notify_company_reactivated(empresa_id: int, actor_id: Optional[int] = None) -> Optional[NotificationResult]:
    return _notify_company(NotificationEvent.COMPANY_REACTIVATED, empresa_id, actor_id)


def notify_company_deleted(payload: dict) -> NotificationResult:
    """Send a deletion whose payload was built while the company still existed."""
    company = payload.get("company") or {}
    return send_notification(
        NotificationEvent.COMPANY_DELETED, payload, reference={"empresaId": company.get("id")}
    )


def notify_meeting_created(meeting_id: int) -> Optional[NotificationResult]:
    meeting = _load(Reuniao, meeting_id, "Reunião")
    if meeting is None:
        return None
    payload = build_meeting_payload(meeting)
    return send_notification(
        NotificationEvent.MEETING_CREATED, payload, reference={"reuniaoId": meeting.id}
    )


def dispatch_async(notify_func: Callable[..., Any], *args: Any, **kwargs: Any):
    """Run a ``notify_*`` function on the IO pool, out of the request thread."""

    def _run():
        try:
            return notify_func(*args, **kwargs)
        except WebhookNotConfigured:
            logger.warning("Webhook não configurado; %s não enviado", notify_func.__name__)
            return None

    _run.__name__ = getattr(notify_func, "__name__", "notify")
    return submit_io_task(_run)


# =============================================================================
# LOTES DO AGENDADOR
# =============================================================================

def _open_tasks_due_on(day: date) -> list[Task]:
    return (
        Task.query.filter(
            Task.data_conclusao == day,
            Task.status.in_(list(OPEN_STATUSES)),
            Task.arquivada.is_(False),
        )
        .order_by(Task.id.asc())
        .all()
    )


def _send_batch(event: NotificationEvent, tasks: list[Task], **task_extra) -> int:
    sent = 0
    with requests.Session() as http:
        for task in tasks:
            payload = build_task_payload(event, task, **task_extra)
            result = send_notification(event, payload, reference={"taskId": task.id}, session=http)
            if result.sent:
                sent += 1
    return sent


def send_overdue_notifications(days_late: int, today: Optional[date] = None) -> int:
    """
    Notify open tasks that are exactly ``days_late`` days past due.

    Only 1 and 5 days are supported. Returns how many notifications were
    delivered.
    """
    event = _OVERDUE_EVENTS.get(days_late)
    if event is None:
        raise ValueError(f"Unsupported overdue window: {days_late}")
    if not is_event_enabled(event):
        logger.info("Notificação %s desativada", event.value)
        return 0

    today = today or today_local()
    tasks = _open_tasks_due_on(today - timedelta(days=days_late))
    logger.info("Encontradas %s tarefas com %s dia(s) de atraso", len(tasks), days_late)
    if not tasks:
        return 0
    sent = _send_batch(event, tasks, dias_atraso=days_late)
    logger.info("%s notificações de atraso enviadas", sent)
    return sent


def send_due_today_reminders(today: Optional[date] = None) -> int:
    """Remind the responsibles of open tasks due today."""
    event = NotificationEvent.TASK_REMINDER_TODAY
    if not is_event_enabled(event):
        logger.info("Notificação %s desativada", event.value)
        return 0

    tasks = _open_tasks_due_on(today or today_local())
    if not tasks:
        return 0
    sent = _send_batch(event, tasks)
    logger.info("%s lembretes enviados", sent)
    return sent
