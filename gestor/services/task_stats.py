"""Dashboard aggregates computed over the tasks a role context may see.

All public functions filter with :func:`visible_tasks` first, so a
collaborator's completion rate only ever reflects their own tasks.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable, Mapping

from gestor.constants import FINISHED_STATUSES, TaskStatus
from gestor.services.recurrence import weekday_of
from gestor.utils.datetime_utils import as_calendar_date, today_local
from gestor.utils.permissions import (
    RoleContext,
    coerce_status,
    delivered_on_time,
    is_overdue,
    visible_tasks,
)


def percent(part: int, total: int) -> int:
    """Return ``part/total`` as a whole percentage rounded half up."""
    if total <= 0:
        return 0
    return int(math.floor(part * 100 / total + 0.5))


@dataclass
class TaskStats:
    total: int = 0
    by_status: dict = field(default_factory=dict)
    completed: int = 0
    overdue: int = 0
    on_time: int = 0
    late: int = 0
    minutes_spent: int = 0
    completion_rate: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class RankingEntry:
    id: Any
    nome: str
    total: int = 0
    completed: int = 0
    completion_rate: int = 0
    position: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _aggregate(tasks: list, today: date) -> TaskStats:
    stats = TaskStats(total=len(tasks))
    counter = Counter(coerce_status(task.status) for task in tasks)
    stats.by_status = {status.value: counter.get(status, 0) for status in TaskStatus}
    for task in tasks:
        status = coerce_status(task.status)
        if status in FINISHED_STATUSES:
            stats.completed += 1
            on_time = delivered_on_time(task)
            if on_time is True:
                stats.on_time += 1
            elif on_time is False:
                stats.late += 1
        elif is_overdue(task, today):
            stats.overdue += 1
        stats.minutes_spent += int(getattr(task, "minutes_spent", 0) or 0)
    stats.completion_rate = percent(stats.completed, stats.total)
    return stats


def compute_task_stats(ctx: RoleContext, tasks: Iterable, today: date | None = None) -> TaskStats:
    """Return the dashboard counters for the tasks visible to ``ctx``."""
    visible = visible_tasks(ctx, tasks)
    return _aggregate(visible, today or today_local())


def status_distribution(ctx: RoleContext, tasks: Iterable) -> dict[str, int]:
    """Return ``{status: count}`` for every status, zeros included."""
    counter = Counter(coerce_status(task.status) for task in visible_tasks(ctx, tasks))
    return {status.value: counter.get(status, 0) for status in TaskStatus}


def _rank(entries: dict) -> list[RankingEntry]:
    ranked = []
    for entry in entries.values():
        entry.completion_rate = percent(entry.completed, entry.total)
        ranked.append(entry)
    ranked.sort(key=lambda e: (-e.completion_rate, -e.completed, e.nome or ""))
    for position, entry in enumerate(ranked, start=1):
        entry.position = position
    return ranked


def _ranking(ctx, tasks, names: Mapping, attribute: str) -> list[RankingEntry]:
    entries: dict = {}
    for task in visible_tasks(ctx, tasks):
        finished = coerce_status(task.status) in FINISHED_STATUSES
        for assignee_id in getattr(task, attribute):
            entry = entries.get(assignee_id)
            if entry is None:
                entry = entries[assignee_id] = RankingEntry(
                    id=assignee_id, nome=names.get(assignee_id) or str(assignee_id)
                )
            entry.total += 1
            if finished:
                entry.completed += 1
    return _rank(entries)


def user_ranking(ctx: RoleContext, tasks: Iterable, names: Mapping) -> list[RankingEntry]:
    """Rank users directly assigned to visible tasks by completion rate."""
    return _ranking(ctx, tasks, names, "user_ids")


def team_ranking(ctx: RoleContext, tasks: Iterable, names: Mapping) -> list[RankingEntry]:
    """Rank teams assigned to visible tasks by completion rate."""
    return _ranking(ctx, tasks, names, "team_ids")


def weekly_productivity(ctx: RoleContext, tasks: Iterable, today: date | None = None) -> list[dict]:
    """
    Return finished tasks per day of the current week (Sunday to Saturday).

    A task counts on the calendar day of its ``completed_at``.
    """
    today = today or today_local()
    week_start = today - timedelta(days=weekday_of(today))
    days = [week_start + timedelta(days=offset) for offset in range(7)]
    counter: Counter = Counter()
    for task in visible_tasks(ctx, tasks):
        if coerce_status(task.status) not in FINISHED_STATUSES:
            continue
        completed = as_calendar_date(getattr(task, "completed_at", None))
        if completed is not None and week_start <= completed <= days[-1]:
            counter[completed] += 1
    return [{"date": day.isoformat(), "completed": counter.get(day, 0)} for day in days]
