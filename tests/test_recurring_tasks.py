from datetime import date, time

from gestor import db
from gestor.constants import AssigneeKind, TaskPriority, TaskStatus
from gestor.models.tables import (
    RecurringTask,
    Task,
    TaskChecklist,
    TaskChecklistItem,
    TaskResponsavel,
)
from gestor.services.recurrence import Frequency, RecurrenceRule
from gestor.services.recurring_tasks import attach_recurrence, generate_recurring_tasks


def _template(company):
    task = Task(
        titulo='Backup semanal',
        descricao='Rodar backup do servidor',
        prioridade=TaskPriority.HIGH,
        data_conclusao=date(2023, 12, 29),
        horario_conclusao=time(18, 0),
        empresa_id=company['empresa'].id,
        criado_por=company['owner'].id,
    )
    task.responsaveis.append(TaskResponsavel(usuario_id=company['ana'].id))
    task.responsaveis.append(TaskResponsavel(equipe_id=company['team'].id))
    checklist = TaskChecklist(titulo='Passos')
    checklist.itens.append(TaskChecklistItem(item='Verificar disco', concluido=True))
    task.checklists.append(checklist)
    db.session.add(task)
    db.session.flush()
    return task


def _generated(recurring_id):
    return Task.query.filter_by(tarefa_recorrente_id=recurring_id).order_by(Task.id).all()


def test_generates_copy_of_template_on_occurrence_day(company):
    template = _template(company)
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, start_date=date(2024, 1, 1), weekdays={1, 3})
    recurring = attach_recurrence(template, rule, company['owner'], today=date(2024, 1, 1))
    db.session.commit()
    assert recurring.proxima_execucao == date(2024, 1, 1)

    result = generate_recurring_tasks(today=date(2024, 1, 1))

    assert result.tasks_created == 1
    assert result.templates_updated == 1
    assert result.failures == 0
    created = _generated(recurring.id)
    assert len(created) == 1
    task = created[0]
    assert task.titulo == 'Backup semanal'
    assert task.prioridade is TaskPriority.HIGH
    assert task.status is TaskStatus.CREATED
    assert task.data_conclusao == date(2024, 1, 1)
    assert task.horario_conclusao == time(18, 0)
    assert task.assignee_keys == {
        (AssigneeKind.USER, company['ana'].id),
        (AssigneeKind.TEAM, company['team'].id),
    }
    assert [item.concluido for item in task.checklists[0].itens] == [False]
    assert db.session.get(RecurringTask, recurring.id).proxima_execucao == date(2024, 1, 3)


def test_second_run_on_same_day_creates_nothing(company):
    template = _template(company)
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1))
    recurring = attach_recurrence(template, rule, company['owner'], today=date(2024, 1, 1))
    db.session.commit()

    generate_recurring_tasks(today=date(2024, 1, 1))
    again = generate_recurring_tasks(today=date(2024, 1, 1))

    assert again.tasks_created == 0
    assert again.templates_updated == 0
    assert len(_generated(recurring.id)) == 1


def test_recurrence_is_deactivated_after_last_occurrence(company):
    template = _template(company)
    rule = RecurrenceRule(
        frequency=Frequency.DAILY,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 2),
    )
    recurring = attach_recurrence(template, rule, company['owner'], today=date(2024, 1, 1))
    db.session.commit()

    result = generate_recurring_tasks(today=date(2024, 1, 2))

    assert result.tasks_created == 1
    refreshed = db.session.get(RecurringTask, recurring.id)
    assert refreshed.proxima_execucao is None
    assert refreshed.ativo is False


def test_non_occurrence_day_only_schedules_next_run(company):
    template = _template(company)
    recurring = RecurringTask(
        tarefa_template_id=template.id,
        empresa_id=template.empresa_id,
        criado_por=company['owner'].id,
        frequencia=Frequency.MONTHLY,
        intervalo=1,
        dia_mes=15,
        data_inicio=date(2024, 1, 1),
        proxima_execucao=None,
    )
    db.session.add(recurring)
    db.session.commit()

    result = generate_recurring_tasks(today=date(2024, 1, 10))

    assert result.tasks_created == 0
    assert result.templates_updated == 1
    assert db.session.get(RecurringTask, recurring.id).proxima_execucao == date(2024, 1, 15)


def test_broken_recurrence_does_not_stop_the_batch(company):
    template = _template(company)
    broken = RecurringTask(
        tarefa_template_id=9999,
        empresa_id=template.empresa_id,
        criado_por=company['owner'].id,
        frequencia=Frequency.DAILY,
        intervalo=1,
        data_inicio=date(2024, 1, 1),
    )
    db.session.add(broken)
    db.session.flush()
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1))
    healthy = attach_recurrence(template, rule, company['owner'], today=date(2024, 1, 1))
    db.session.commit()

    result = generate_recurring_tasks(today=date(2024, 1, 1))

    assert result.failures == 1
    assert result.tasks_created == 1
    assert len(_generated(healthy.id)) == 1


def test_attach_recurrence_with_past_start_points_to_next_occurrence(company):
    template = _template(company)
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, start_date=date(2023, 1, 2), weekdays={5})
    recurring = attach_recurrence(template, rule, company['owner'], today=date(2024, 1, 1))
    db.session.commit()

    assert recurring.ativo is True
    assert recurring.proxima_execucao == date(2024, 1, 5)
    assert recurring.to_rule() == rule
