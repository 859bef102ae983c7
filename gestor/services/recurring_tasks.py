"""
Geração diária das tarefas recorrentes.

Para cada recorrência ativa cuja ``proxima_execucao`` já venceu, decide pelo
motor de recorrência se hoje é uma ocorrência. Quando é, copia a tarefa
modelo (responsáveis e checklists inclusos) com status ``criada`` e prazo
para hoje. Em seguida recalcula ``proxima_execucao`` e desativa a
recorrência quando não há próxima ocorrência.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from gestor import db
from gestor.constants import TaskStatus
from gestor.models.tables import (
    RecurringTask,
    Task,
    TaskChecklist,
    TaskChecklistItem,
    TaskResponsavel,
    User,
)
from gestor.services.recurrence import (
    InvalidRule,
    RecurrenceRule,
    first_occurrence_on_or_after,
)
from gestor.utils.datetime_utils import now_naive, today_local

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    tasks_created: int = 0
    templates_updated: int = 0
    failures: int = 0
    processed_at: datetime = field(default_factory=now_naive)
    created_task_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "tasks_created": self.tasks_created,
            "templates_updated": self.templates_updated,
            "failures": self.failures,
            "processed_at": self.processed_at.isoformat(),
        }


def copy_template(template: Task, recurring: RecurringTask, due_date: date) -> Task:
    """Materialize ``template`` as a fresh task due on ``due_date``."""
    task = Task(
        titulo=template.titulo,
        descricao=template.descricao,
        prioridade=template.prioridade,
        tipo_tarefa=template.tipo_tarefa,
        horario_conclusao=template.horario_conclusao,
        data_conclusao=due_date,
        status=TaskStatus.CREATED,
        empresa_id=recurring.empresa_id,
        criado_por=recurring.criado_por,
        tarefa_recorrente_id=recurring.id,
    )
    for resp in template.responsaveis:
        task.responsaveis.append(
            TaskResponsavel(usuario_id=resp.usuario_id, equipe_id=resp.equipe_id)
        )
    for checklist in template.checklists:
        copy = TaskChecklist(titulo=checklist.titulo)
        for item in checklist.itens:
            copy.itens.append(TaskChecklistItem(item=item.item, concluido=False))
        task.checklists.append(copy)
    db.session.add(task)
    return task


def _already_generated(recurring: RecurringTask, day: date) -> bool:
    return (
        db.session.query(Task.id)
        .filter(Task.tarefa_recorrente_id == recurring.id, Task.data_conclusao == day)
        .first()
        is not None
    )


def process_recurring_task(recurring: RecurringTask, today: date) -> Optional[Task]:
    """Handle one recurrence; returns the task created today, if any."""
    template = db.session.get(Task, recurring.tarefa_template_id)
    if template is None:
        raise LookupError(f"Template {recurring.tarefa_template_id} não encontrado")

    rule = recurring.to_rule()
    created = None
    if first_occurrence_on_or_after(rule, today) == today and not _already_generated(recurring, today):
        created = copy_template(template, recurring, today)

    following = first_occurrence_on_or_after(rule, today + timedelta(days=1))
    recurring.proxima_execucao = following
    if following is None:
        recurring.ativo = False
        logger.info("Recorrência %s encerrada: sem próximas ocorrências", recurring.id)
    return created


def generate_recurring_tasks(today: Optional[date] = None) -> GenerationResult:
    """Run the daily generation batch; a failing recurrence does not stop it."""
    today = today or today_local()
    result = GenerationResult()

    pending = (
        RecurringTask.query.filter(
            RecurringTask.ativo.is_(True),
            db.or_(
                RecurringTask.proxima_execucao.is_(None),
                RecurringTask.proxima_execucao <= today,
            ),
        )
        .order_by(RecurringTask.id.asc())
        .all()
    )
    logger.info("Encontradas %s tarefas recorrentes para processar", len(pending))

    for recurring in pending:
        recurring_id = recurring.id
        try:
            created = process_recurring_task(recurring, today)
            db.session.commit()
        except (InvalidRule, LookupError, SQLAlchemyError):
            db.session.rollback()
            result.failures += 1
            logger.exception("Erro ao processar recorrência %s", recurring_id)
            continue
        if created is not None:
            result.tasks_created += 1
            result.created_task_ids.append(created.id)
            logger.info("Tarefa %s criada pela recorrência %s", created.id, recurring_id)
        result.templates_updated += 1

    logger.info("Processamento concluído: %s", result.as_dict())
    return result


def attach_recurrence(template: Task, rule: RecurrenceRule, actor: User, today: Optional[date] = None) -> RecurringTask:
    """
    Create (or replace) the recurrence of ``template``.

    ``proxima_execucao`` starts at the first occurrence on or after today, so
    the next batch picks it up.
    """
    rule.validate()
    today = today or today_local()
    recurring = RecurringTask.query.filter_by(tarefa_template_id=template.id).first()
    if recurring is None:
        recurring = RecurringTask(
            tarefa_template_id=template.id,
            empresa_id=template.empresa_id,
            criado_por=actor.id,
        )
        db.session.add(recurring)
    recurring.apply_rule(rule)
    recurring.proxima_execucao = first_occurrence_on_or_after(rule, max(today, rule.start_date))
    recurring.ativo = recurring.proxima_execucao is not None
    return recurring
