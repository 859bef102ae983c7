"""
Ciclo de vida das empresas (cadastro e exclusão definitiva).

A exclusão remove tudo o que pertence à empresa pelo ORM, na ordem das
dependências, para não depender do ``ON DELETE CASCADE`` do banco (o SQLite
não o aplica sem ``PRAGMA foreign_keys``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from gestor import db
from gestor.constants import Role
from gestor.models.tables import Empresa, Equipe, RecurringTask, Reuniao, Task, User

logger = logging.getLogger(__name__)


class CompanyError(ValueError):
    """Raised when a company cannot be created."""


@dataclass
class PurgeResult:
    tasks: int = 0
    meetings: int = 0
    teams: int = 0
    users: int = 0

    def as_dict(self) -> dict:
        return {
            "tarefas": self.tasks,
            "reunioes": self.meetings,
            "equipes": self.teams,
            "usuarios": self.users,
        }


def create_company(
    nome_fantasia: str,
    razao_social: str,
    cnpj: Optional[str] = None,
    owner: Optional[dict] = None,
) -> tuple[Empresa, Optional[User]]:
    """
    Register a company and, optionally, its first owner.

    ``owner`` carries ``nome``, ``email``, ``senha`` and optionally
    ``celular``. Nothing is committed here.
    """
    nome_fantasia = (nome_fantasia or "").strip()
    razao_social = (razao_social or "").strip()
    if not nome_fantasia or not razao_social:
        raise CompanyError("nome_fantasia_razao_social_required")

    empresa = Empresa(
        nome_fantasia=nome_fantasia,
        razao_social=razao_social,
        cnpj=(cnpj or "").strip() or None,
        ativo=True,
    )
    db.session.add(empresa)

    user = None
    if owner is not None:
        if not isinstance(owner, dict):
            raise CompanyError("invalid_proprietario")
        nome = str(owner.get("nome") or "").strip()
        email = str(owner.get("email") or "").strip().lower()
        senha = owner.get("senha") or ""
        if not nome or not email or not senha:
            raise CompanyError("proprietario_nome_email_senha_required")
        user = User(
            nome=nome,
            email=email,
            celular=owner.get("celular"),
            tipo_usuario=Role.OWNER,
            empresa=empresa,
            ativo=True,
        )
        user.set_password(senha)
        db.session.add(user)

    db.session.flush()
    logger.info("Empresa %s cadastrada (proprietario=%s)", empresa.id, user.id if user else None)
    return empresa, user


def purge_company(empresa: Empresa) -> PurgeResult:
    """Delete ``empresa`` and everything it owns. Nothing is committed here."""
    empresa_id = empresa.id
    result = PurgeResult()

    for recurring in RecurringTask.query.filter_by(empresa_id=empresa_id).all():
        db.session.delete(recurring)
    for task in Task.query.filter_by(empresa_id=empresa_id).all():
        db.session.delete(task)
        result.tasks += 1
    for meeting in Reuniao.query.filter_by(empresa_id=empresa_id).all():
        db.session.delete(meeting)
        result.meetings += 1
    db.session.flush()

    teams = Equipe.query.filter_by(empresa_id=empresa_id).all()
    # esvazia as equipes antes para que o vínculo não seja removido duas vezes
    for team in teams:
        team.membros.clear()
    db.session.flush()
    for team in teams:
        db.session.delete(team)
        result.teams += 1
    for user in User.query.filter_by(empresa_id=empresa_id).all():
        db.session.delete(user)
        result.users += 1
    db.session.flush()

    db.session.expire(empresa)
    db.session.delete(empresa)
    db.session.flush()
    logger.info("Empresa %s excluida: %s", empresa_id, result.as_dict())
    return result
