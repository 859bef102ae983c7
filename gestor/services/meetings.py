"""
Reuniões da empresa.

Participantes podem ser usuários ou equipes, como os responsáveis das
tarefas, e a visibilidade segue as mesmas regras: proprietários e gestores
veem todas as reuniões da empresa; colaboradores, as reuniões em que
participam (diretamente ou por equipe) e as que criaram.
"""

from __future__ import annotations

import logging
from typing import Iterable

from gestor import db
from gestor.models.tables import Equipe, Reuniao, ReuniaoParticipante, User
from gestor.utils.permissions import RoleContext, can_manage_company, can_view_task, validate_context

logger = logging.getLogger(__name__)


def can_view_meeting(ctx: RoleContext, meeting: Reuniao) -> bool:
    validate_context(ctx)
    if meeting.criado_por == ctx.user_id and meeting.empresa_id == ctx.company_id:
        return True
    return can_view_task(ctx, meeting)


def visible_meetings(ctx: RoleContext, meetings: Iterable[Reuniao]) -> list[Reuniao]:
    """Filter ``meetings`` keeping the input order."""
    return [meeting for meeting in meetings if can_view_meeting(ctx, meeting)]


def can_edit_meeting(ctx: RoleContext, meeting: Reuniao) -> bool:
    """The creator and the company's owners and managers may change a meeting."""
    if meeting.empresa_id != ctx.company_id:
        return False
    return meeting.criado_por == ctx.user_id or can_manage_company(ctx)


def set_participants(meeting: Reuniao, usuario_ids: list[int], equipe_ids: list[int]) -> None:
    """
    Replace the participants of ``meeting``.

    Raises LookupError (``usuario_not_found`` / ``equipe_not_found``) for ids
    outside the meeting's company, and ValueError when nobody is invited.
    """
    if not usuario_ids and not equipe_ids:
        raise ValueError("participantes_required")

    participants = []
    for user_id in dict.fromkeys(usuario_ids):
        user = db.session.get(User, user_id)
        if not user or user.empresa_id != meeting.empresa_id:
            raise LookupError("usuario_not_found")
        participants.append(ReuniaoParticipante(usuario_id=user.id))
    for team_id in dict.fromkeys(equipe_ids):
        team = db.session.get(Equipe, team_id)
        if not team or team.empresa_id != meeting.empresa_id:
            raise LookupError("equipe_not_found")
        participants.append(ReuniaoParticipante(equipe_id=team.id))

    meeting.participantes.clear()
    meeting.participantes.extend(participants)
    logger.debug("Reuniao %s com %s participante(s)", meeting.id, len(participants))
