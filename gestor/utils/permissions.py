"""Permission utilities for role-based task visibility.

Every function receives the requesting user's :class:`RoleContext`
explicitly; nothing here reads ``current_user`` so the rules can be
reused by the API, the dashboards and the scheduled jobs alike.

Visibility rules:
    - master: nothing inside a company, unless inspecting it through
      :meth:`RoleContext.impersonating` (which yields an owner context).
    - proprietario / gestor: every non-archived task of their company.
    - colaborador: non-archived tasks of their company assigned to them
      directly or to one of their teams.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Hashable, Iterable, TypeVar

from gestor.constants import (
    COMPANY_WIDE_ROLES,
    FINISHED_STATUSES,
    OPEN_STATUSES,
    AssigneeKind,
    Role,
    TaskStatus,
)
from gestor.utils.datetime_utils import as_calendar_date, today_local

T = TypeVar("T")

_ROLE_ALIASES = {
    "owner": Role.OWNER,
    "manager": Role.MANAGER,
    "collaborator": Role.COLLABORATOR,
}


class InvalidRole(ValueError):
    """Raised when a role is outside the closed set of roles."""


class MissingCompanyContext(ValueError):
    """Raised when a company-scoped role has no company attached."""


def user_assignee(user_id: Hashable) -> tuple[AssigneeKind, Hashable]:
    return (AssigneeKind.USER, user_id)


def team_assignee(team_id: Hashable) -> tuple[AssigneeKind, Hashable]:
    return (AssigneeKind.TEAM, team_id)


@dataclass(frozen=True)
class TaskRecord:
    """Read-only snapshot of a task used by the visibility rules and stats."""

    id: Hashable
    status: TaskStatus
    due_date: date | None
    company_id: Hashable
    assignees: frozenset = field(default_factory=frozenset)
    archived: bool = False
    completed_at: datetime | None = None
    created_at: datetime | None = None
    minutes_spent: int = 0

    def __post_init__(self):
        object.__setattr__(self, "assignees", frozenset(self.assignees or ()))

    @property
    def user_ids(self) -> set:
        return {value for kind, value in self.assignees if kind == AssigneeKind.USER}

    @property
    def team_ids(self) -> set:
        return {value for kind, value in self.assignees if kind == AssigneeKind.TEAM}


@dataclass(frozen=True)
class RoleContext:
    """Identity used to authorize what a user may see."""

    role: Role | str
    user_id: Hashable
    company_id: Hashable | None = None
    team_ids: frozenset = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "team_ids", frozenset(self.team_ids or ()))

    def impersonating(self, company_id: Hashable) -> "RoleContext":
        """Return the owner context a master uses to inspect a company."""
        if coerce_role(self.role) is not Role.MASTER:
            raise InvalidRole("only master users can inspect other companies")
        if company_id is None:
            raise MissingCompanyContext("company_id is required to inspect a company")
        return RoleContext(role=Role.OWNER, user_id=self.user_id, company_id=company_id)


# =============================================================================
# VALIDAÇÃO
# =============================================================================

def coerce_role(value: Any) -> Role:
    """Return ``value`` as a :class:`Role` or raise :class:`InvalidRole`."""
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _ROLE_ALIASES:
            return _ROLE_ALIASES[normalized]
        try:
            return Role(normalized)
        except ValueError:
            pass
    raise InvalidRole(f"unknown role: {value!r}")


def validate_context(ctx: RoleContext) -> Role:
    """Validate ``ctx`` before any filtering and return its role."""
    role = coerce_role(getattr(ctx, "role", None))
    if role is not Role.MASTER and getattr(ctx, "company_id", None) is None:
        raise MissingCompanyContext(f"role {role.value!r} requires a company_id")
    return role


def coerce_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    return TaskStatus(value)


# =============================================================================
# VISIBILIDADE
# =============================================================================

def _is_assigned(ctx: RoleContext, assignees: Iterable) -> bool:
    for kind, value in assignees or ():
        if kind == AssigneeKind.USER and value == ctx.user_id:
            return True
        if kind == AssigneeKind.TEAM and value in ctx.team_ids:
            return True
    return False


def _can_view(role: Role, ctx: RoleContext, task: Any) -> bool:
    if role is Role.MASTER:
        return False
    if getattr(task, "archived", False) or task.company_id != ctx.company_id:
        return False
    if role in COMPANY_WIDE_ROLES:
        return True
    if role is Role.COLLABORATOR:
        return _is_assigned(ctx, task.assignees)
    raise InvalidRole(f"unhandled role: {role!r}")


def can_view_task(ctx: RoleContext, task: Any) -> bool:
    """Return True when ``ctx`` may see ``task``."""
    role = validate_context(ctx)
    return _can_view(role, ctx, task)


def visible_tasks(ctx: RoleContext, tasks: Iterable[T]) -> list[T]:
    """
    Filter ``tasks`` down to the ones ``ctx`` is authorized to see.

    The input order is preserved. Any object exposing ``company_id``,
    ``archived`` and ``assignees`` (like :class:`TaskRecord`) is accepted.

    Raises:
        InvalidRole: role outside the closed set.
        MissingCompanyContext: company-scoped role without ``company_id``.
    """
    role = validate_context(ctx)
    return [task for task in tasks if _can_view(role, ctx, task)]


def can_manage_company(ctx: RoleContext) -> bool:
    """
    Return True when ``ctx`` may create/assign/archive tasks, configure
    recurrences and manage users of its company.
    """
    role = validate_context(ctx)
    if role in COMPANY_WIDE_ROLES:
        return True
    if role in (Role.COLLABORATOR, Role.MASTER):
        return False
    raise InvalidRole(f"unhandled role: {role!r}")


def is_master(ctx: RoleContext) -> bool:
    return coerce_role(ctx.role) is Role.MASTER


# =============================================================================
# PRAZOS
# =============================================================================

def is_overdue(task: Any, today: date | None = None) -> bool:
    """
    Return True for an unfinished task whose due date is before today.

    The due date is compared as a calendar date in São Paulo time; a task
    due today is not overdue, and concluded/approved tasks never are.
    """
    status = coerce_status(task.status)
    if status in FINISHED_STATUSES:
        return False
    if status not in OPEN_STATUSES:
        raise ValueError(f"unhandled status: {status!r}")
    due = as_calendar_date(task.due_date)
    if due is None:
        return False
    return due < (today or today_local())


def delivered_on_time(task: Any) -> bool | None:
    """
    Judge a finished task by comparing its completion date to its due date.

    Returns None while the task is open or has no completion timestamp.
    """
    status = coerce_status(task.status)
    if status in OPEN_STATUSES:
        return None
    if status not in FINISHED_STATUSES:
        raise ValueError(f"unhandled status: {status!r}")
    completed = as_calendar_date(getattr(task, "completed_at", None))
    if completed is None:
        return None
    due = as_calendar_date(task.due_date)
    if due is None:
        return True
    return completed <= due
