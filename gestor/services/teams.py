"""Team membership and removal."""

from __future__ import annotations

import logging

from gestor import db
from gestor.models.tables import Equipe, ReuniaoParticipante, TaskResponsavel, User

logger = logging.getLogger(__name__)


def company_users(empresa_id, user_ids) -> list[User]:
    """Return the users of ``empresa_id`` in ``user_ids``; LookupError for any other id."""
    users = []
    for user_id in dict.fromkeys(user_ids):
        user = db.session.get(User, user_id)
        if not user or user.empresa_id != empresa_id:
            raise LookupError("usuario_not_found")
        users.append(user)
    return users


def add_members(team: Equipe, users: list[User]) -> int:
    """Add ``users`` to ``team``; returns how many were not members yet."""
    current = {member.id for member in team.membros}
    added = [user for user in users if user.id not in current]
    team.membros.extend(added)
    return len(added)


def remove_member(team: Equipe, user: User) -> bool:
    if user not in team.membros:
        return False
    team.membros.remove(user)
    return True


def delete_team(team: Equipe) -> dict:
    """
    Delete ``team`` together with its task and meeting assignments.

    Tasks assigned only to the team lose that assignment and are then seen
    by owners and managers alone. Nothing is committed here.
    """
    responsaveis = TaskResponsavel.query.filter_by(equipe_id=team.id).all()
    for resp in responsaveis:
        resp.tarefa.responsaveis.remove(resp)
    participantes = ReuniaoParticipante.query.filter_by(equipe_id=team.id).all()
    for part in participantes:
        part.reuniao.participantes.remove(part)
    team.membros.clear()
    db.session.delete(team)
    db.session.flush()
    logger.info(
        "Equipe %s excluida (tarefas=%s, reunioes=%s)", team.id, len(responsaveis), len(participantes)
    )
    return {"tarefas": len(responsaveis), "reunioes": len(participantes)}
