"""
Blueprint para gestao de equipes da empresa.

Toda alteracao de equipe ou de seus membros muda quem enxerga as tarefas
atribuidas a equipe, por isso invalida os paineis da empresa.

Rotas:
    - GET /api/v1/equipes: Lista equipes da empresa
    - POST /api/v1/equipes: Cria equipe (proprietario/gestor)
    - GET /api/v1/equipes/<id>: Detalha equipe e membros
    - PATCH /api/v1/equipes/<id>: Renomeia e/ou substitui membros
    - DELETE /api/v1/equipes/<id>: Exclui equipe e suas atribuicoes
    - POST /api/v1/equipes/<id>/membros: Adiciona membros
    - DELETE /api/v1/equipes/<id>/membros/<user_id>: Remove membro
"""

from flask import Blueprint, current_app, g, jsonify

from gestor import db
from gestor.controllers.routes._decorators import manager_required
from gestor.controllers.routes._validators import json_object, parse_ids
from gestor.controllers.routes.api import token_required
from gestor.extensions.cache import invalidate_company_dashboards
from gestor.models.tables import Equipe, User
from gestor.services.teams import add_members, company_users, delete_team, remove_member


# =============================================================================
# BLUEPRINT DEFINITION
# =============================================================================

equipes_bp = Blueprint("equipes", __name__, url_prefix="/api/v1/equipes")


# =============================================================================
# FUNÇÕES AUXILIARES
# =============================================================================

def _serialize_team(team: Equipe) -> dict:
    members = sorted(team.membros, key=lambda member: member.nome)
    return {
        "id": team.id,
        "nome": team.nome,
        "empresa_id": team.empresa_id,
        "membros": [
            {"id": member.id, "nome": member.nome, "tipo_usuario": member.tipo_usuario.value}
            for member in members
        ],
    }


def _get_company_team(team_id: int):
    """Return ``(team, None)`` or ``(None, error_response)``."""

    team = db.session.get(Equipe, team_id)
    if not team:
        return None, (jsonify({"error": "not_found"}), 404)
    if team.empresa_id != g.api_user.empresa_id:
        return None, (jsonify({"error": "forbidden"}), 403)
    return team, None


def _save(team: Equipe, action: str, status: int = 200):
    db.session.commit()
    invalidate_company_dashboards(team.empresa_id)
    current_app.logger.info("Equipe %s: %s por %s", team.id, action, g.api_user.id)
    return jsonify(_serialize_team(team)), status


def _member_ids(payload: dict, key: str):
    try:
        return parse_ids(payload.get(key)), None
    except (TypeError, ValueError):
        return None, (jsonify({"error": "invalid_membros"}), 400)


# =============================================================================
# ROTAS
# =============================================================================

@equipes_bp.route("", methods=["GET"])
@token_required
def list_teams():
    """Teams of the user's company, members included."""

    teams = (
        Equipe.query.filter_by(empresa_id=g.api_user.empresa_id)
        .order_by(Equipe.nome.asc())
        .all()
    )
    return jsonify([_serialize_team(team) for team in teams])


@equipes_bp.route("/<int:team_id>", methods=["GET"])
@token_required
def get_team(team_id: int):
    team, error = _get_company_team(team_id)
    if error:
        return error
    return jsonify(_serialize_team(team))


@equipes_bp.route("", methods=["POST"])
@token_required
@manager_required
def create_team():
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    nome = str(payload.get("nome") or "").strip()
    if not nome:
        return jsonify({"error": "nome_required"}), 400
    member_ids, error = _member_ids(payload, "membros_ids")
    if error:
        return error

    empresa_id = g.api_user.empresa_id
    try:
        members = company_users(empresa_id, member_ids)
    except LookupError as exc:
        return jsonify({"error": str(exc.args[0])}), 404

    team = Equipe(nome=nome, empresa_id=empresa_id)
    team.membros.extend(members)
    db.session.add(team)
    return _save(team, "criada", 201)


@equipes_bp.route("/<int:team_id>", methods=["PATCH"])
@token_required
@manager_required
def update_team(team_id: int):
    """Rename the team and/or replace its members with ``membros_ids``."""

    team, error = _get_company_team(team_id)
    if error:
        return error
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400

    if "nome" in payload:
        nome = str(payload.get("nome") or "").strip()
        if not nome:
            return jsonify({"error": "nome_cannot_be_empty"}), 400
        team.nome = nome

    if "membros_ids" in payload:
        member_ids, error = _member_ids(payload, "membros_ids")
        if error:
            return error
        try:
            members = company_users(team.empresa_id, member_ids)
        except LookupError as exc:
            db.session.rollback()
            return jsonify({"error": str(exc.args[0])}), 404
        team.membros = members

    return _save(team, "atualizada")


@equipes_bp.route("/<int:team_id>", methods=["DELETE"])
@token_required
@manager_required
def remove_team(team_id: int):
    team, error = _get_company_team(team_id)
    if error:
        return error

    empresa_id = team.empresa_id
    delete_team(team)
    db.session.commit()
    invalidate_company_dashboards(empresa_id)
    current_app.logger.info("Equipe %s excluida por %s", team_id, g.api_user.id)
    return ("", 204)


@equipes_bp.route("/<int:team_id>/membros", methods=["POST"])
@token_required
@manager_required
def add_team_members(team_id: int):
    team, error = _get_company_team(team_id)
    if error:
        return error
    payload = json_object()
    if payload is None:
        return jsonify({"error": "invalid_payload"}), 400
    member_ids, error = _member_ids(payload, "usuarios_ids")
    if error:
        return error
    if not member_ids:
        return jsonify({"error": "usuarios_required"}), 400

    try:
        users = company_users(team.empresa_id, member_ids)
    except LookupError as exc:
        return jsonify({"error": str(exc.args[0])}), 404
    added = add_members(team, users)
    return _save(team, f"{added} membro(s) adicionado(s)")


@equipes_bp.route("/<int:team_id>/membros/<int:user_id>", methods=["DELETE"])
@token_required
@manager_required
def remove_team_member(team_id: int, user_id: int):
    team, error = _get_company_team(team_id)
    if error:
        return error
    user = db.session.get(User, user_id)
    if not user or not remove_member(team, user):
        return jsonify({"error": "membro_not_found"}), 404
    return _save(team, f"membro {user_id} removido")
