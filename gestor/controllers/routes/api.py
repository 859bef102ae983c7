"""JSON API consumed by the web frontend and integrations."""

from __future__ import annotations

from functools import wraps

from flask import Blueprint, jsonify, request, g, current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gestor import db, limiter
from gestor.constants import FINISHED_STATUSES, Role, TaskPriority, TaskStatus, TaskType
from gestor.controllers.routes._decorators import manager_required, master_required
from gestor.controllers.routes._validators import json_object, parse_date, parse_ids, parse_time
from gestor.extensions.cache import (
    cache,
    dashboard_cache_key,
    get_cache_timeout,
    invalidate_company_dashboards,
)
from gestor.models.tables import (
    Empresa,
    Equipe,
    RecurringTask,
    Task,
    TaskChecklist,
    TaskChecklistItem,
    TaskResponsavel,
    User,
)
from gestor.services.companies import CompanyError, create_company, purge_company
from gestor.services.notifications import (
    build_company_deleted_payload,
    dispatch_async,
    notify_company_deactivated,
    notify_company_deleted,
    notify_company_reactivated,
    notify_task_completed,
    notify_task_created,
    notify_task_responsible_added,
    notify_user_created,
    notify_user_deleted,
    notify_user_reactivated,
)
from gestor.services.recurrence import (
    InvalidRule,
    RecurrenceRule,
    describe_rule,
    next_occurrences,
)
from gestor.services.recurring_tasks import attach_recurrence
from gestor.services.task_stats import (
    compute_task_stats,
    status_distribution,
    team_ranking,
    user_ranking,
    weekly_productivity,
)
from gestor.services.time_tracking import TimeTrackingError, start_session, stop_session
from gestor.utils.datetime_utils import now_aware, today_local
from gestor.utils.logging_config import log_task_action
from gestor.utils.permissions import (
    RoleContext,
    can_manage_company,
    can_view_task,
    visible_tasks,
)

api_bp = Blueprint("api_v1", __name__, url_prefix="/api/v1")

# Papéis que cada administrador pode cadastrar
_CREATABLE_ROLES = {
    Role.OWNER: frozenset({Role.MANAGER, Role.COLLABORATOR}),
    Role.MANAGER: frozenset({Role.COLLABORATOR}),
}


# =============================================================================
# AUTENTICAÇÃO
# =============================================================================

def _token_ttl() -> int:
    return int(current_app.config.get("API_TOKEN_TTL_SECONDS", 86400))


def _token_serializer() -> URLSafeTimedSerializer:
    """Return a serializer bound to the current app secret."""

    secret = current_app.config["SECRET_KEY"]
    return URLSafeTimedSerializer(secret_key=secret, salt="gestor-api-token")


def _issue_token(user: User) -> str:
    """Create a signed bearer token for the given user."""

    payload = {"user_id": user.id, "ts": int(now_aware().timestamp())}
    return _token_serializer().dumps(payload)


def _get_token_from_header() -> str | None:
    """Extract the bearer token from Authorization header."""

    header = request.headers.get("Authorization", "")
    if not header:
        return None
    if header.lower().startswith("bearer "):
        return header.split(None, 1)[1].strip() or None
    return None


def _load_user_from_token(token: str) -> User | None:
    """Validate token and return the corresponding user."""

    data = _token_serializer().loads(token, max_age=_token_ttl())
    user_id = data.get("user_id")
    if not user_id:
        return None
    return db.session.get(User, user_id)


def _company_blocked(user: User) -> bool:
    return user.empresa_id is not None and user.empresa is not None and not user.empresa.ativo


def token_required(fn):
    """Decorator enforcing bearer-token authentication."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = _get_token_from_header()
        if not token:
            return jsonify({"error": "missing_token"}), 401
        try:
            user = _load_user_from_token(token)
        except SignatureExpired:
            return jsonify({"error": "token_expired"}), 401
        except BadSignature:
            return jsonify({"error": "invalid_token"}), 401

        if not user or not user.ativo:
            return jsonify({"error": "user_not_found_or_inactive"}), 401
        if _company_blocked(user):
            return jsonify({"error": "company_inactive"}), 403

        g.api_user = user
        return fn(*args, **kwargs)

    return wrapper


def _context() -> RoleContext:
    return g.api_user.role_context()


# =============================================================================
# SERIALIZAÇÃO
# =============================================================================

def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _serialize_user(user: User) -> dict:
    """Return a minimal user payload suitable for clients."""

    return {
        "id": user.id,
        "nome": user.nome,
        "email": user.email,
        "celular": user.celular,
        "tipo_usuario": user.tipo_usuario.value,
        "empresa_id": user.empresa_id,
        "ativo": user.ativo,
        "equipes": [{"id": team.id, "nome": team.nome} for team in user.equipes],
    }


def _serialize_empresa(empresa: Empresa) -> dict:
    return {
        "id": empresa.id,
        "nome_fantasia": empresa.nome_fantasia,
        "razao_social": empresa.razao_social,
        "cnpj": empresa.cnpj,
        "ativo": empresa.ativo,
    }


def _serialize_responsavel(resp: TaskResponsavel) -> dict:
    kind, value = resp.key
    target = resp.usuario if resp.usuario_id is not None else resp.equipe
    return {"tipo": kind.value, "id": value, "nome": target.nome if target else None}


def _serialize_recurring(recurring: RecurringTask) -> dict:
    rule = recurring.to_rule()
    payload = rule.to_dict()
    payload.update(
        {
            "id": recurring.id,
            "tarefa_template_id": recurring.tarefa_template_id,
            "ativo": recurring.ativo,
            "proxima_execucao": _iso(recurring.proxima_execucao),
            "descricao": describe_rule(rule),
        }
    )
    return payload


def _serialize_task(task: Task, today=None) -> dict:
    """Return a stable representation of a Task."""

    recurring = RecurringTask.query.filter_by(tarefa_template_id=task.id).first()
    return {
        "id": task.id,
        "titulo": task.titulo,
        "descricao": task.descricao,
        "status": task.status.value,
        "prioridade": task.prioridade.value,
        "tipo_tarefa": task.tipo_tarefa.value,
        "data_conclusao": _iso(task.data_conclusao),
        "horario_conclusao": task.horario_conclusao.strftime("%H:%M") if task.horario_conclusao else None,
        "empresa_id": task.empresa_id,
        "criado_por": task.criado_por,
        "arquivada": task.arquivada,
        "atrasada": task.is_overdue(today),
        "tempo_total_minutos": task.minutes_spent,
        "tarefa_recorrente_id": task.tarefa_recorrente_id,
        "completed_at": _iso(task.completed_at),
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
        "responsaveis": [_serialize_responsavel(resp) for resp in task.responsaveis],
        "checklists": [
            {
                "id": checklist.id,
                "titulo": checklist.titulo,
                "itens": [
                    {"id": item.id, "item": item.item, "concluido": item.concluido}
                    for item in checklist.itens
                ],
            }
            for checklist in task.checklists
        ],
        "recorrencia": _serialize_recurring(recurring) if recurring else None,
    }


# =============================================================================
# PARSERS E CONSULTAS
# =============================================================================

def _parse_checklists(raw) -> list[TaskChecklist]:
    """Build checklists from ``[{"titulo": ..., "itens": [...]}]`` or raise ValueError."""

    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("expected a list")
    checklists = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValueError("checklist must be an object")
        itens = entry.get("itens") or []
        if not isinstance(itens, list):
            raise ValueError("itens must be a list")
        checklist = TaskChecklist(titulo=str(entry.get("titulo") or "Checklist").strip())
        for raw_item in itens:
            checklist.itens.append(TaskChecklistItem(item=str(raw_item), concluido=False))
        checklists.append(checklist)
    return checklists


def _company_tasks(company_id) -> list[Task]:
    if company_id is None:
        return []
    return (
        Task.query.filter(Task.empresa_id == company_id)
        .order_by(Task.data_conclusao.asc(), Task.id.asc())
        .all()
    )


def _visible_company_tasks(ctx: RoleContext) -> list[Task]:
    tasks = _company_tasks(ctx.company_id)
    allowed = {record.id for record in visible_tasks(ctx, [task.as_record() for task in tasks])}
    return [task for task in tasks if task.id in allowed]


def _records(company_id) -> list:
    return [task.as_record() for task in _company_tasks(company_id)]


def _get_visible_task(task_id: int):
    """Return ``(task, None)`` or ``(None, error_response)``."""

    task = db.session.get(Task, task_id)
    if not task:
        return None, (jsonify({"error": "not_found"}), 404)
    if not can_view_task(_context(), task.as_record()):
        return None, (jsonify({"error": "forbidden"}), 403)
    return task, None


def _get_company_task(task_id: int):
    """Return a task of the manager's own company, archived ones included."""

    task = db.session.get(Task, task_id)
    if not task:
        return None, (jsonify({"error": "not_found"}), 404)
    if task.empresa_id != g.api_user.empresa_id:
        return None, (jsonify({"error": "forbidden"}), 403)
    return task, None


def _add_responsaveis(task: Task, usuario_ids: list[int], equipe_ids: list[int]) -> int:
    """Attach users/teams of the task's company; returns how many were new."""

    added = 0
    for user_id in usuario_ids:
        user = db.session.get(User, user_id)
        if not user or user.empresa_id != task.empresa_id:
            raise LookupError("usuario_not_found")
        if any(resp.usuario_id == user_id for resp in task.responsaveis):
            continue
        task.responsaveis.append(TaskResponsavel(usuario_id=user_id))
        added += 1
    for team_id in equipe_ids:
        team = db.session.get(Equipe, team_id)
        if not team or team.empresa_id != task.empresa_id:
            raise LookupError("equipe_not_found")
        if any(resp.equipe_id == team_id for resp in task.responsaveis):
            continue
        task.responsaveis.append(TaskResponsavel(equipe_id=team_id))
        added += 1
    return added


def _commit_or_error(error_code: str, log_message: str):
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(log_message)
        return jsonify({"error": error_code}), 500
    return None


# =============================================================================
# ROTAS: AUTENTICAÇÃO
# =============================================================================

@api_bp.route("/auth/login", methods=["POST"])
@limiter.limit(lambda: current_app.config.get("LOGIN_RATE_LIMIT", "10 per minute"))
def api_login():
    """Authenticate user and return bearer token."""

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or payload.get("senha") or ""

    if not email or not password:
        return jsonify({"error": "email_and_password_required"}), 400

    user = User.query.filter(db.func.lower(User.email) == email).first()

    if not user or not user.check_password(password):
        return jsonify({"error": "invalid_credentials"}), 401

    if not user.ativo:
        return jsonify({"error": "inactive_user"}), 403
    if _company_blocked(user):
        return jsonify({"error": "company_inactive"}), 403

    current_app.logger.info("Login via API: usuario=%s", user.id)
    return jsonify(
        {
            "token": _issue_token(user),
            "token_type": "bearer",
            "expires_in": _token_ttl(),
            "user": _serialize_user(user),
        }
    )


@api_bp.route("/auth/refresh", methods=["POST"])
@token_required
def api_refresh():
    """Re-issue a token for the authenticated user."""

    return jsonify(
        {
            "token": _issue_token(g.api_user),
            "token_type": "bearer",
            "expires_in": _token_ttl(),
            "user": _serialize_user(g.api_user),
        }
    )


@api_bp.route("/me", methods=["GET"])
@token_required
def api_me():
    """Return authenticated user data."""

    return jsonify(_serialize_user(g.api_user))


# =============================================================================
# ROTAS: TAREFAS
# =============================================================================

@api_bp.route("/tasks", methods=["GET"])
@token_required
def api_list_tasks():
    """
    List tasks visible to the authenticated user.

    ``?arquivadas=1`` lists the company's archived tasks instead; only
    owners and managers may see them.
    """

    ctx = _context()
    status_filter = request.args.get("status")
    status_enum = None
    if status_filter:
        try:
            status_enum = TaskStatus(status_filter)
        except ValueError:
            return jsonify({"error": "invalid_status"}), 400

    today = today_local()
    only_overdue = request.args.get("overdue") in ("1", "true")
    if request.args.get("arquivadas") in ("1", "true"):
        if not can_manage_company(ctx):
            return jsonify({"error": "forbidden"}), 403
        tasks = [task for task in _company_tasks(ctx.company_id) if task.arquivada]
    else:
        tasks = _visible_company_tasks(ctx)
    if status_enum is not None:
        tasks = [task for task in tasks if task.status == status_enum]
    if only_overdue:
        tasks = [task for task in tasks if task.is_overdue(today)]
    return jsonify([_serialize_task(task, today) for task in tasks])


@api_bp.route("/tasks/<int:task_id>", methods=["GET"])
@token_required
def api_get_task(task_id: int):
    """Return a single task if the user has access."""

    task, error = _get_visible_task(task_id)
    if error:
        return error
    return jsonify(_serialize_task(task))


@api_bp.route("/tasks", methods=["POST"])
@token_required
@manager_required
def api_create_task():
    """Create a task with responsibles, checklists and optional recurrence."""

    user = g.api_user
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    titulo = str(payload.get("titulo") or "").strip()
    if not titulo:
        return jsonify({"error": "titulo_required"}), 400

    try:
        prioridade = TaskPriority(payload.get("prioridade") or TaskPriority.MEDIUM.value)
    except ValueError:
        return jsonify({"error": "invalid_priority"}), 400
    try:
        tipo_tarefa = TaskType(payload.get("tipo_tarefa") or TaskType.PROFESSIONAL.value)
    except ValueError:
        return jsonify({"error": "invalid_task_type"}), 400
    try:
        data_conclusao = parse_date(payload.get("data_conclusao"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_due_date"}), 400
    try:
        horario_conclusao = parse_time(payload.get("horario_conclusao"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_due_time"}), 400
    try:
        usuario_ids = parse_ids(payload.get("usuarios_ids"))
        equipe_ids = parse_ids(payload.get("equipes_ids"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_responsaveis"}), 400
    try:
        checklists = _parse_checklists(payload.get("checklists"))
    except ValueError:
        return jsonify({"error": "invalid_checklists"}), 400

    rule = None
    if payload.get("recorrencia"):
        rule = RecurrenceRule.from_dict(payload["recorrencia"])

    task = Task(
        titulo=titulo,
        descricao=payload.get("descricao"),
        prioridade=prioridade,
        tipo_tarefa=tipo_tarefa,
        status=TaskStatus.CREATED,
        data_conclusao=data_conclusao,
        horario_conclusao=horario_conclusao,
        empresa_id=user.empresa_id,
        criado_por=user.id,
    )
    db.session.add(task)
    try:
        _add_responsaveis(task, usuario_ids, equipe_ids)
    except LookupError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc.args[0])}), 404

    task.checklists.extend(checklists)

    db.session.flush()
    if rule is not None:
        attach_recurrence(task, rule, user)

    error = _commit_or_error("failed_to_create_task", "Failed to create task via API")
    if error:
        return error

    invalidate_company_dashboards(task.empresa_id)
    log_task_action("task_created", user.id, task.empresa_id, task.id)
    dispatch_async(notify_task_created, task.id)
    return jsonify(_serialize_task(task)), 201


@api_bp.route("/tasks/<int:task_id>", methods=["PATCH"])
@token_required
def api_update_task(task_id: int):
    """Update task fields; collaborators may only change the status."""

    task, error = _get_visible_task(task_id)
    if error:
        return error

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    manager = can_manage_company(_context())
    if not manager and set(payload) - {"status"}:
        return jsonify({"error": "forbidden"}), 403

    if "titulo" in payload:
        titulo = str(payload.get("titulo") or "").strip()
        if not titulo:
            return jsonify({"error": "titulo_cannot_be_empty"}), 400
        task.titulo = titulo

    if "descricao" in payload:
        task.descricao = payload.get("descricao")

    if "prioridade" in payload:
        try:
            task.prioridade = TaskPriority(payload.get("prioridade"))
        except ValueError:
            return jsonify({"error": "invalid_priority"}), 400

    if "data_conclusao" in payload:
        try:
            task.data_conclusao = parse_date(payload.get("data_conclusao"))
        except (TypeError, ValueError):
            return jsonify({"error": "invalid_due_date"}), 400

    if "horario_conclusao" in payload:
        try:
            task.horario_conclusao = parse_time(payload.get("horario_conclusao"))
        except (TypeError, ValueError):
            return jsonify({"error": "invalid_due_time"}), 400

    completed_now = False
    if "status" in payload:
        outcome = _apply_status(task, payload.get("status"), manager)
        if isinstance(outcome, tuple):
            return outcome
        completed_now = outcome

    error = _commit_or_error("failed_to_update_task", "Failed to update task via API")
    if error:
        return error

    invalidate_company_dashboards(task.empresa_id)
    log_task_action("task_updated", g.api_user.id, task.empresa_id, task.id, campos=",".join(sorted(payload)))
    if completed_now:
        dispatch_async(notify_task_completed, task.id)
    return jsonify(_serialize_task(task))


def _apply_status(task: Task, raw_status, manager: bool):
    """Change the status; returns True when the task has just been completed."""

    try:
        new_status = TaskStatus(raw_status)
    except ValueError:
        return jsonify({"error": "invalid_status"}), 400
    # aprovar e desfazer uma aprovação são exclusivos de quem administra a empresa
    if not manager and TaskStatus.APPROVED in (new_status, task.status):
        return jsonify({"error": "approval_requires_manager"}), 403

    completed_now = new_status is TaskStatus.COMPLETED and task.status not in FINISHED_STATUSES
    task.set_status(new_status)
    return completed_now


@api_bp.route("/tasks/<int:task_id>/status", methods=["POST"])
@token_required
def api_update_task_status(task_id: int):
    """Update only the task status."""

    task, error = _get_visible_task(task_id)
    if error:
        return error

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    previous = task.status
    outcome = _apply_status(task, payload.get("status"), can_manage_company(_context()))
    if isinstance(outcome, tuple):
        return outcome

    error = _commit_or_error("failed_to_update_task", "Failed to update task status via API")
    if error:
        return error

    invalidate_company_dashboards(task.empresa_id)
    log_task_action(
        "task_status_changed",
        g.api_user.id,
        task.empresa_id,
        task.id,
        de=previous.value,
        para=task.status.value,
    )
    if outcome:
        dispatch_async(notify_task_completed, task.id)
    return jsonify(_serialize_task(task))


@api_bp.route("/tasks/<int:task_id>/archive", methods=["POST"])
@token_required
@manager_required
def api_archive_task(task_id: int):
    """Archive (or restore with ``{"arquivada": false}``) a task."""

    task, error = _get_company_task(task_id)
    if error:
        return error

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    task.arquivada = bool(payload.get("arquivada", True))

    error = _commit_or_error("failed_to_archive_task", "Failed to archive task via API")
    if error:
        return error

    invalidate_company_dashboards(task.empresa_id)
    log_task_action("task_archived", g.api_user.id, task.empresa_id, task.id, arquivada=task.arquivada)
    return jsonify(_serialize_task(task))


@api_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@token_required
@manager_required
def api_delete_task(task_id: int):
    """Delete a task of the manager's company."""

    task, error = _get_company_task(task_id)
    if error:
        return error

    empresa_id = task.empresa_id
    RecurringTask.query.filter_by(tarefa_template_id=task.id).delete(synchronize_session=False)
    db.session.delete(task)
    error = _commit_or_error("failed_to_delete_task", "Failed to delete task via API")
    if error:
        return error

    invalidate_company_dashboards(empresa_id)
    log_task_action("task_deleted", g.api_user.id, empresa_id, task_id)
    return ("", 204)


@api_bp.route("/tasks/<int:task_id>/responsaveis", methods=["POST"])
@token_required
@manager_required
def api_add_responsaveis(task_id: int):
    """Attach users and/or teams to a task."""

    task, error = _get_company_task(task_id)
    if error:
        return error

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    try:
        usuario_ids = parse_ids(payload.get("usuarios_ids"))
        equipe_ids = parse_ids(payload.get("equipes_ids"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_responsaveis"}), 400
    if not usuario_ids and not equipe_ids:
        return jsonify({"error": "responsaveis_required"}), 400

    try:
        added = _add_responsaveis(task, usuario_ids, equipe_ids)
    except LookupError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc.args[0])}), 404

    error = _commit_or_error("failed_to_update_task", "Failed to add task responsibles via API")
    if error:
        return error

    invalidate_company_dashboards(task.empresa_id)
    if added:
        log_task_action("task_responsaveis_added", g.api_user.id, task.empresa_id, task.id, novos=added)
        dispatch_async(notify_task_responsible_added, task.id)
    return jsonify(_serialize_task(task))


@api_bp.route("/tasks/<int:task_id>/checklists/items/<int:item_id>", methods=["PATCH"])
@token_required
def api_toggle_checklist_item(task_id: int, item_id: int):
    """Mark a checklist item as done or pending."""

    task, error = _get_visible_task(task_id)
    if error:
        return error

    item = db.session.get(TaskChecklistItem, item_id)
    if not item or item.checklist.tarefa_id != task.id:
        return jsonify({"error": "not_found"}), 404

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    item.concluido = bool(payload.get("concluido", not item.concluido))
    error = _commit_or_error("failed_to_update_task", "Failed to update checklist item via API")
    if error:
        return error
    return jsonify({"id": item.id, "item": item.item, "concluido": item.concluido})


@api_bp.route("/tasks/<int:task_id>/time/start", methods=["POST"])
@token_required
def api_start_time(task_id: int):
    """Start a time tracking session for the authenticated user."""

    task, error = _get_visible_task(task_id)
    if error:
        return error
    try:
        session = start_session(task, g.api_user)
    except TimeTrackingError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 409

    error = _commit_or_error("failed_to_start_session", "Failed to start time session via API")
    if error:
        return error
    invalidate_company_dashboards(task.empresa_id)
    return jsonify({"id": session.id, "inicio": _iso(session.inicio), "status": task.status.value}), 201


@api_bp.route("/tasks/<int:task_id>/time/stop", methods=["POST"])
@token_required
def api_stop_time(task_id: int):
    """Stop the open session and return the task's accumulated time."""

    task, error = _get_visible_task(task_id)
    if error:
        return error
    try:
        session = stop_session(task, g.api_user)
    except TimeTrackingError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 409

    error = _commit_or_error("failed_to_stop_session", "Failed to stop time session via API")
    if error:
        return error
    invalidate_company_dashboards(task.empresa_id)
    return jsonify(
        {
            "id": session.id,
            "inicio": _iso(session.inicio),
            "fim": _iso(session.fim),
            "minutos_trabalhados": session.minutos_trabalhados,
            "tempo_total_minutos": task.minutes_spent,
        }
    )


# =============================================================================
# ROTAS: RECORRÊNCIA
# =============================================================================

@api_bp.route("/recurrence/preview", methods=["POST"])
@token_required
def api_recurrence_preview():
    """Return the next occurrences of a rule without saving anything."""

    payload = request.get_json(silent=True) or {}
    rule = RecurrenceRule.from_dict(payload)
    count = payload.get("count", current_app.config.get("RECURRENCE_PREVIEW_COUNT", 5))
    if isinstance(count, bool) or not isinstance(count, int):
        raise InvalidRule("count must be an integer")
    count = min(count, current_app.config.get("RECURRENCE_PREVIEW_MAX", 60))
    dates = next_occurrences(rule, count)
    return jsonify(
        {
            "regra": rule.to_dict(),
            "descricao": describe_rule(rule),
            "datas": [day.isoformat() for day in dates],
        }
    )


@api_bp.route("/tasks/<int:task_id>/recurrence", methods=["POST"])
@token_required
@manager_required
def api_set_recurrence(task_id: int):
    """Make the task a template that repeats according to the given rule."""

    task, error = _get_company_task(task_id)
    if error:
        return error

    rule = RecurrenceRule.from_dict(request.get_json(silent=True) or {})
    recurring = attach_recurrence(task, rule, g.api_user)
    error = _commit_or_error("failed_to_save_recurrence", "Failed to save recurrence via API")
    if error:
        return error

    log_task_action("task_recurrence_set", g.api_user.id, task.empresa_id, task.id, frequencia=rule.frequency.value)
    return jsonify(_serialize_recurring(recurring)), 201


@api_bp.route("/tasks/<int:task_id>/recurrence", methods=["DELETE"])
@token_required
@manager_required
def api_stop_recurrence(task_id: int):
    """Deactivate the recurrence of a template task."""

    task, error = _get_company_task(task_id)
    if error:
        return error

    recurring = RecurringTask.query.filter_by(tarefa_template_id=task.id).first()
    if not recurring:
        return jsonify({"error": "not_found"}), 404
    recurring.ativo = False
    recurring.proxima_execucao = None
    error = _commit_or_error("failed_to_save_recurrence", "Failed to stop recurrence via API")
    if error:
        return error
    return jsonify(_serialize_recurring(recurring))


# =============================================================================
# ROTAS: DASHBOARD
# =============================================================================

def _cached_dashboard(name: str, builder):
    ctx = _context()
    key = dashboard_cache_key(ctx, name)
    cached = cache.get(key)
    if cached is not None:
        return jsonify(cached)
    data = builder(ctx)
    cache.set(key, data, timeout=get_cache_timeout("DASHBOARD_CACHE_TIMEOUT", 60))
    return jsonify(data)


@api_bp.route("/dashboard/stats", methods=["GET"])
@token_required
def api_dashboard_stats():
    """Counters and completion rate over the tasks the user may see."""

    return _cached_dashboard(
        "stats",
        lambda ctx: compute_task_stats(ctx, _records(ctx.company_id), today_local()).as_dict(),
    )


@api_bp.route("/dashboard/status", methods=["GET"])
@token_required
def api_dashboard_status():
    return _cached_dashboard(
        "status",
        lambda ctx: status_distribution(ctx, _records(ctx.company_id)),
    )


def _user_names(company_id) -> dict:
    return {user.id: user.nome for user in User.query.filter_by(empresa_id=company_id).all()}


def _team_names(company_id) -> dict:
    return {team.id: team.nome for team in Equipe.query.filter_by(empresa_id=company_id).all()}


@api_bp.route("/dashboard/ranking/users", methods=["GET"])
@token_required
def api_dashboard_user_ranking():
    return _cached_dashboard(
        "ranking_users",
        lambda ctx: [
            entry.as_dict()
            for entry in user_ranking(ctx, _records(ctx.company_id), _user_names(ctx.company_id))
        ],
    )


@api_bp.route("/dashboard/ranking/teams", methods=["GET"])
@token_required
def api_dashboard_team_ranking():
    return _cached_dashboard(
        "ranking_teams",
        lambda ctx: [
            entry.as_dict()
            for entry in team_ranking(ctx, _records(ctx.company_id), _team_names(ctx.company_id))
        ],
    )


@api_bp.route("/dashboard/weekly", methods=["GET"])
@token_required
def api_dashboard_weekly():
    return _cached_dashboard(
        "weekly",
        lambda ctx: weekly_productivity(ctx, _records(ctx.company_id), today_local()),
    )


# =============================================================================
# ROTAS: USUÁRIOS
# =============================================================================

@api_bp.route("/users", methods=["GET"])
@token_required
@manager_required
def api_list_users():
    """List users of the manager's company."""

    users = (
        User.query.filter_by(empresa_id=g.api_user.empresa_id)
        .order_by(User.nome.asc())
        .all()
    )
    return jsonify([_serialize_user(user) for user in users])


@api_bp.route("/users", methods=["POST"])
@token_required
@manager_required
def api_create_user():
    """Register a user in the manager's company."""

    actor = g.api_user
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    nome = (payload.get("nome") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    senha = payload.get("senha") or ""
    if not nome or not email or not senha:
        return jsonify({"error": "nome_email_senha_required"}), 400

    try:
        role = Role(payload.get("tipo_usuario") or Role.COLLABORATOR.value)
    except ValueError:
        return jsonify({"error": "invalid_role"}), 400
    if role not in _CREATABLE_ROLES.get(actor.tipo_usuario, frozenset()):
        return jsonify({"error": "role_not_allowed"}), 403

    try:
        equipe_ids = parse_ids(payload.get("equipes_ids"))
    except (TypeError, ValueError):
        return jsonify({"error": "invalid_equipes"}), 400
    equipes = []
    for team_id in equipe_ids:
        team = db.session.get(Equipe, team_id)
        if not team or team.empresa_id != actor.empresa_id:
            return jsonify({"error": "equipe_not_found"}), 404
        equipes.append(team)

    user = User(
        nome=nome,
        email=email,
        celular=payload.get("celular"),
        tipo_usuario=role,
        empresa_id=actor.empresa_id,
        ativo=True,
    )
    user.set_password(senha)
    user.equipes = equipes
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "email_already_registered"}), 409
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create user via API")
        return jsonify({"error": "failed_to_create_user"}), 500

    invalidate_company_dashboards(actor.empresa_id)
    current_app.logger.info("Usuario %s criado por %s", user.id, actor.id)
    dispatch_async(notify_user_created, user.id, actor.id)
    return jsonify(_serialize_user(user)), 201


def _set_user_active(user_id: int, active: bool, notify_func):
    actor = g.api_user
    user = db.session.get(User, user_id)
    if not user or user.empresa_id != actor.empresa_id:
        return jsonify({"error": "not_found"}), 404
    if user.id == actor.id:
        return jsonify({"error": "cannot_change_self"}), 400
    if user.tipo_usuario is Role.OWNER and actor.tipo_usuario is not Role.OWNER:
        return jsonify({"error": "forbidden"}), 403

    user.ativo = active
    error = _commit_or_error("failed_to_update_user", "Failed to update user via API")
    if error:
        return error

    invalidate_company_dashboards(actor.empresa_id)
    current_app.logger.info("Usuario %s ativo=%s por %s", user.id, active, actor.id)
    dispatch_async(notify_func, user.id, actor.id)
    return jsonify(_serialize_user(user))


@api_bp.route("/users/<int:user_id>/deactivate", methods=["POST"])
@token_required
@manager_required
def api_deactivate_user(user_id: int):
    return _set_user_active(user_id, False, notify_user_deleted)


@api_bp.route("/users/<int:user_id>/reactivate", methods=["POST"])
@token_required
@manager_required
def api_reactivate_user(user_id: int):
    return _set_user_active(user_id, True, notify_user_reactivated)


# =============================================================================
# ROTAS: ADMINISTRAÇÃO (MASTER)
# =============================================================================

@api_bp.route("/admin/empresas", methods=["GET"])
@token_required
@master_required
def api_admin_list_empresas():
    empresas = Empresa.query.order_by(Empresa.nome_fantasia.asc()).all()
    return jsonify([_serialize_empresa(empresa) for empresa in empresas])


@api_bp.route("/admin/empresas", methods=["POST"])
@token_required
@master_required
def api_admin_create_empresa():
    """Register a company and, optionally, its first owner (``proprietario``)."""

    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400

    try:
        empresa, owner = create_company(
            payload.get("nome_fantasia"),
            payload.get("razao_social"),
            cnpj=payload.get("cnpj"),
            owner=payload.get("proprietario"),
        )
        db.session.commit()
    except CompanyError as exc:
        db.session.rollback()
        return jsonify({"error": str(exc)}), 400
    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "empresa_or_email_already_registered"}), 409
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to create company via API")
        return jsonify({"error": "failed_to_create_company"}), 500

    current_app.logger.info("Empresa %s criada por master %s", empresa.id, g.api_user.id)
    body = _serialize_empresa(empresa)
    body["proprietario"] = _serialize_user(owner) if owner else None
    return jsonify(body), 201


@api_bp.route("/admin/empresas/<int:empresa_id>", methods=["DELETE"])
@token_required
@master_required
def api_admin_delete_empresa(empresa_id: int):
    """Delete a company with its users, teams, tasks and meetings."""

    empresa = db.session.get(Empresa, empresa_id)
    if not empresa:
        return jsonify({"error": "not_found"}), 404

    # o aviso precisa dos dados da empresa, lidos antes da exclusão
    notification = build_company_deleted_payload(empresa, g.api_user)
    try:
        result = purge_company(empresa)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to delete company via API")
        return jsonify({"error": "failed_to_delete_company"}), 500

    invalidate_company_dashboards(empresa_id)
    current_app.logger.warning("Empresa %s excluida por master %s", empresa_id, g.api_user.id)
    dispatch_async(notify_company_deleted, notification)
    return jsonify({"id": empresa_id, "removidos": result.as_dict()})


def _set_company_active(empresa_id: int, active: bool, notify_func):
    empresa = db.session.get(Empresa, empresa_id)
    if not empresa:
        return jsonify({"error": "not_found"}), 404

    empresa.ativo = active
    error = _commit_or_error("failed_to_update_company", "Failed to update company via API")
    if error:
        return error

    current_app.logger.info("Empresa %s ativo=%s por master %s", empresa.id, active, g.api_user.id)
    dispatch_async(notify_func, empresa.id, g.api_user.id)
    return jsonify({"id": empresa.id, "nome_fantasia": empresa.nome_fantasia, "ativo": empresa.ativo})


@api_bp.route("/admin/empresas/<int:empresa_id>/deactivate", methods=["POST"])
@token_required
@master_required
def api_admin_deactivate_empresa(empresa_id: int):
    return _set_company_active(empresa_id, False, notify_company_deactivated)


@api_bp.route("/admin/empresas/<int:empresa_id>/reactivate", methods=["POST"])
@token_required
@master_required
def api_admin_reactivate_empresa(empresa_id: int):
    return _set_company_active(empresa_id, True, notify_company_reactivated)


@api_bp.route("/admin/empresas/<int:empresa_id>/tasks", methods=["GET"])
@token_required
@master_required
def api_admin_empresa_tasks(empresa_id: int):
    """Inspect a company's tasks and stats with owner visibility."""

    if not db.session.get(Empresa, empresa_id):
        return jsonify({"error": "not_found"}), 404

    ctx = _context().impersonating(empresa_id)
    today = today_local()
    tasks = _visible_company_tasks(ctx)
    current_app.logger.info("Master %s inspecionando empresa %s", g.api_user.id, empresa_id)
    return jsonify(
        {
            "empresa_id": empresa_id,
            "stats": compute_task_stats(ctx, [task.as_record() for task in tasks], today).as_dict(),
            "tarefas": [_serialize_task(task, today) for task in tasks],
        }
    )
