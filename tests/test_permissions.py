from datetime import date, datetime

import pytest

from gestor.constants import Role, TaskStatus
from gestor.utils.permissions import (
    InvalidRole,
    MissingCompanyContext,
    RoleContext,
    TaskRecord,
    can_manage_company,
    can_view_task,
    coerce_role,
    delivered_on_time,
    is_overdue,
    team_assignee,
    user_assignee,
    visible_tasks,
)


def _task(task_id, *assignees, company='C1', status=TaskStatus.CREATED, archived=False, due=None):
    return TaskRecord(
        id=task_id,
        status=status,
        due_date=due,
        company_id=company,
        assignees=frozenset(assignees),
        archived=archived,
    )


@pytest.fixture
def tasks():
    return [
        _task('A', user_assignee('U2')),
        _task('B', team_assignee('T1')),
        _task('C', user_assignee('U1')),
    ]


def test_collaborator_sees_own_and_team_tasks(tasks):
    ctx = RoleContext(role=Role.COLLABORATOR, user_id='U1', company_id='C1', team_ids={'T1'})
    assert [task.id for task in visible_tasks(ctx, tasks)] == ['B', 'C']


@pytest.mark.parametrize('role', [Role.OWNER, Role.MANAGER, 'proprietario', 'manager'])
def test_company_wide_roles_see_every_company_task(tasks, role):
    ctx = RoleContext(role=role, user_id='U9', company_id='C1')
    assert visible_tasks(ctx, tasks) == tasks


def test_other_company_and_archived_tasks_are_hidden():
    ctx = RoleContext(role=Role.OWNER, user_id='U1', company_id='C1')
    records = [
        _task('X', user_assignee('U1'), company='C2'),
        _task('Y', user_assignee('U1'), archived=True),
        _task('Z'),
    ]
    assert [task.id for task in visible_tasks(ctx, records)] == ['Z']


def test_master_sees_nothing_without_impersonation(tasks):
    master = RoleContext(role=Role.MASTER, user_id='M1')
    assert visible_tasks(master, tasks) == []
    inspector = master.impersonating('C1')
    assert inspector.role is Role.OWNER
    assert visible_tasks(inspector, tasks) == tasks


def test_only_master_can_impersonate():
    ctx = RoleContext(role=Role.OWNER, user_id='U1', company_id='C1')
    with pytest.raises(InvalidRole):
        ctx.impersonating('C2')


def test_visible_tasks_is_a_subset_preserving_order(tasks):
    ctx = RoleContext(role=Role.COLLABORATOR, user_id='U2', company_id='C1', team_ids={'T1'})
    visible = visible_tasks(ctx, tasks)
    assert visible == [task for task in tasks if task in visible]
    assert all(can_view_task(ctx, task) for task in visible)


def test_unknown_role_rejected(tasks):
    ctx = RoleContext(role='admin', user_id='U1', company_id='C1')
    with pytest.raises(InvalidRole):
        visible_tasks(ctx, tasks)
    with pytest.raises(InvalidRole):
        coerce_role(None)


@pytest.mark.parametrize('role', [Role.OWNER, Role.MANAGER, Role.COLLABORATOR])
def test_company_scoped_roles_require_company(tasks, role):
    ctx = RoleContext(role=role, user_id='U1')
    with pytest.raises(MissingCompanyContext):
        visible_tasks(ctx, tasks)


def test_can_manage_company():
    assert can_manage_company(RoleContext(role=Role.OWNER, user_id=1, company_id=1))
    assert can_manage_company(RoleContext(role=Role.MANAGER, user_id=1, company_id=1))
    assert not can_manage_company(RoleContext(role=Role.COLLABORATOR, user_id=1, company_id=1))
    assert not can_manage_company(RoleContext(role=Role.MASTER, user_id=1))


def test_overdue_compares_calendar_dates():
    task = _task('T', status=TaskStatus.EXECUTING, due=date(2024, 6, 10))
    assert is_overdue(task, today=date(2024, 6, 11))
    assert not is_overdue(task, today=date(2024, 6, 10))


@pytest.mark.parametrize('status', [TaskStatus.COMPLETED, TaskStatus.APPROVED])
def test_finished_tasks_are_never_overdue(status):
    task = _task('T', status=status, due=date(2020, 1, 1))
    assert not is_overdue(task, today=date(2024, 6, 11))


def test_task_without_due_date_is_not_overdue():
    assert not is_overdue(_task('T'), today=date(2024, 6, 11))


def test_overdue_accepts_string_due_dates():
    task = TaskRecord(id='T', status='aceita', due_date='2024-06-10', company_id='C1')
    assert is_overdue(task, today=date(2024, 6, 11))


def test_delivered_on_time():
    due = date(2024, 6, 10)
    on_time = TaskRecord(
        id=1, status=TaskStatus.COMPLETED, due_date=due, company_id=1,
        completed_at=datetime(2024, 6, 10, 23, 0),
    )
    late = TaskRecord(
        id=2, status=TaskStatus.APPROVED, due_date=due, company_id=1,
        completed_at=datetime(2024, 6, 11, 8, 0),
    )
    open_task = TaskRecord(id=3, status=TaskStatus.EXECUTING, due_date=due, company_id=1)
    assert delivered_on_time(on_time) is True
    assert delivered_on_time(late) is False
    assert delivered_on_time(open_task) is None
