"""
Blueprint para reunioes da empresa.

Qualquer membro da empresa agenda reunioes; editar e excluir cabe ao
criador ou a proprietarios e gestores. Participantes sao usuarios ou
equipes, com a mesma regra de visibilidade das tarefas.

Rotas:
    - GET /api/v1/reunioes: Lista reunioes visiveis (filtros ?de= e ?ate=)
    - POST /api/v1/reunioes: Agenda reuniao e avisa o webhook
    - GET /api/v1/reunioes/<id>: Detalha reuniao
    - PATCH /api/v1/reunioes/<id>: Atualiza reuniao
    - DELETE /api/v1/reunioes/<id>: Exclui reuniao

Dependencias:
    - models: Reuniao, ReuniaoParticipante
    - services: meetings, notifications
"""

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from gestor import db
from gestor.controllers.routes._validators import json_object, parse_date, parse_ids, parse_time
from gestor.controllers.routes.api import token_required
from gestor.models.tables import Reuniao, ReuniaoParticipante
from gestor.services.meetings import (
    can_edit_meeting,
    can_view_meeting,
    set_participants,
    visible_meetings,
)
from gestor.services.notifications import dispatch_async, notify_meeting_created


# =============================================================================
# BLUEPRINT DEFINITION
# =============================================================================

reunioes_bp = Blueprint("reunioes", __name__, url_prefix="/api/v1/reunioes")

DEFAULT_DURATION_MINUTES = 60


# =============================================================================
# FUNÇÕES AUXILIARES
# =============================================================================

def _serialize_participante(part: ReuniaoParticipante) -> dict:
    if part.usuario_id is not None:
        return {"usuario_id": part.usuario_id, "nome": part.usuario.nome if part.usuario else None}
    return {"equipe_id": part.equipe_id, "nome": part.equipe.nome if part.equipe else None}


def _serialize_meeting(meeting: Reuniao) -> dict:
    return {
        "id": meeting.id,
        "titulo": meeting.titulo,
        "descricao": meeting.descricao,
        "data_reuniao": meeting.data_reuniao.isoformat(),
        "horario_inicio": meeting.horario_inicio.strftime("%H:%M"),
        "duracao_minutos": meeting.duracao_minutos,
        "link_reuniao": meeting.link_reuniao,
        "empresa_id": meeting.empresa_id,
        "criado_por": meeting.criado_por,
        "participantes": [_serialize_participante(part) for part in meeting.participantes],
    }


def _company_required():
    if g.api_user.empresa_id is None:
        return jsonify({"error": "company_required"}), 403
    return None


def _get_meeting(meeting_id: int):
    """Return ``(meeting, None)`` or ``(None, error_response)``."""

    meeting = db.session.get(Reuniao, meeting_id)
    if not meeting or meeting.empresa_id != g.api_user.empresa_id:
        return None, (jsonify({"error": "not_found"}), 404)
    if not can_view_meeting(g.api_user.role_context(), meeting):
        return None, (jsonify({"error": "forbidden"}), 403)
    return meeting, None


def _apply_fields(meeting: Reuniao, payload: dict, creating: bool):
    """Copy the editable fields of ``payload``; returns an error code or None."""

    if creating or "titulo" in payload:
        titulo = str(payload.get("titulo") or "").strip()
        if not titulo:
            return "titulo_required"
        meeting.titulo = titulo
    if "descricao" in payload:
        meeting.descricao = payload.get("descricao")
    if "link_reuniao" in payload:
        meeting.link_reuniao = payload.get("link_reuniao")

    try:
        if creating or "data_reuniao" in payload:
            meeting.data_reuniao = parse_date(payload.get("data_reuniao"))
        if creating or "horario_inicio" in payload:
            meeting.horario_inicio = parse_time(payload.get("horario_inicio"))
    except (TypeError, ValueError):
        return "invalid_date_or_time"
    if meeting.data_reuniao is None or meeting.horario_inicio is None:
        return "data_horario_required"

    if creating or "duracao_minutos" in payload:
        raw = payload.get("duracao_minutos", DEFAULT_DURATION_MINUTES)
        if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
            return "invalid_duracao"
        meeting.duracao_minutos = raw
    return None


def _apply_participants(meeting: Reuniao, payload: dict):
    """Returns ``(error_code, status)`` or None."""

    try:
        usuario_ids = parse_ids(payload.get("usuarios_ids"))
        equipe_ids = parse_ids(payload.get("equipes_ids"))
    except (TypeError, ValueError):
        return "invalid_participantes", 400
    try:
        set_participants(meeting, usuario_ids, equipe_ids)
    except LookupError as exc:
        return str(exc.args[0]), 404
    except ValueError as exc:
        return str(exc), 400
    return None


def _commit(log_message: str):
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(log_message)
        return jsonify({"error": "failed_to_save_meeting"}), 500
    return None


# =============================================================================
# ROTAS
# =============================================================================

@reunioes_bp.route("", methods=["GET"])
@token_required
def list_meetings():
    """Meetings the user can see, ordered by date and time."""

    error = _company_required()
    if error:
        return error
    query = Reuniao.query.filter_by(empresa_id=g.api_user.empresa_id)
    try:
        start = parse_date(request.args.get("de"))
        end = parse_date(request.args.get("ate"))
    except ValueError:
        return jsonify({"error": "invalid_date"}), 400
    if start:
        query = query.filter(Reuniao.data_reuniao >= start)
    if end:
        query = query.filter(Reuniao.data_reuniao <= end)

    meetings = query.order_by(Reuniao.data_reuniao.asc(), Reuniao.horario_inicio.asc()).all()
    meetings = visible_meetings(g.api_user.role_context(), meetings)
    return jsonify([_serialize_meeting(meeting) for meeting in meetings])


@reunioes_bp.route("/<int:meeting_id>", methods=["GET"])
@token_required
def get_meeting(meeting_id: int):
    meeting, error = _get_meeting(meeting_id)
    if error:
        return error
    return jsonify(_serialize_meeting(meeting))


@reunioes_bp.route("", methods=["POST"])
@token_required
def create_meeting():
    error = _company_required()
    if error:
        return error
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400

    actor = g.api_user
    meeting = Reuniao(empresa_id=actor.empresa_id, criado_por=actor.id)
    error_code = _apply_fields(meeting, payload, creating=True)
    if error_code:
        return jsonify({"error": error_code}), 400
    failure = _apply_participants(meeting, payload)
    if failure:
        return jsonify({"error": failure[0]}), failure[1]

    db.session.add(meeting)
    error = _commit("Failed to create meeting via API")
    if error:
        return error

    current_app.logger.info("Reuniao %s criada por %s", meeting.id, actor.id)
    dispatch_async(notify_meeting_created, meeting.id)
    return jsonify(_serialize_meeting(meeting)), 201


@reunioes_bp.route("/<int:meeting_id>", methods=["PATCH"])
@token_required
def update_meeting(meeting_id: int):
    meeting, error = _get_meeting(meeting_id)
    if error:
        return error
    if not can_edit_meeting(g.api_user.role_context(), meeting):
        return jsonify({"error": "forbidden"}), 403
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400

    error_code = _apply_fields(meeting, payload, creating=False)
    if error_code:
        db.session.rollback()
        return jsonify({"error": error_code}), 400
    if "usuarios_ids" in payload or "equipes_ids" in payload:
        failure = _apply_participants(meeting, payload)
        if failure:
            db.session.rollback()
            return jsonify({"error": failure[0]}), failure[1]

    error = _commit("Failed to update meeting via API")
    if error:
        return error
    current_app.logger.info("Reuniao %s atualizada por %s", meeting.id, g.api_user.id)
    return jsonify(_serialize_meeting(meeting))


@reunioes_bp.route("/<int:meeting_id>", methods=["DELETE"])
@token_required
def delete_meeting(meeting_id: int):
    meeting, error = _get_meeting(meeting_id)
    if error:
        return error
    if not can_edit_meeting(g.api_user.role_context(), meeting):
        return jsonify({"error": "forbidden"}), 403

    db.session.delete(meeting)
    error = _commit("Failed to delete meeting via API")
    if error:
        return error
    current_app.logger.info("Reuniao %s excluida por %s", meeting_id, g.api_user.id)
    return ("", 204)
