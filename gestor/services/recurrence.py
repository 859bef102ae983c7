"""Recurrence rules and occurrence generation for recurring tasks.

The same engine feeds the preview shown while a recurring task is being
configured and the daily batch that materializes task instances from their
templates. Every function here is pure: the caller supplies the rule (and the
reference day when needed) and gets dates back.

Conventions:
    - Weekdays are numbered with Sunday = 0 ... Saturday = 6.
    - ``start_date`` and ``end_date`` are both inclusive.
    - Monthly rules skip months that do not have ``day_of_month``
      (no clamping to the last day), yearly rules skip Feb 29 on
      non-leap years.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from itertools import islice
from typing import Any, Iterator

from gestor.constants import WEEKDAY_LABELS

logger = logging.getLogger(__name__)

# Quantidade máxima de candidatos consecutivos sem ocorrência (~5 anos em dias)
MAX_IDLE_CANDIDATES = 366 * 5


class Frequency(str, Enum):
    """Enumeration of recurrence frequencies."""

    DAILY = "diaria"
    WEEKLY = "semanal"
    MONTHLY = "mensal"
    YEARLY = "anual"


_UNIT_LABELS = {
    Frequency.DAILY: ("Diária", "dia(s)"),
    Frequency.WEEKLY: ("Semanal", "dia(s)"),
    Frequency.MONTHLY: ("Mensal", "mês(es)"),
    Frequency.YEARLY: ("Anual", "ano(s)"),
}


class InvalidRule(ValueError):
    """Raised when recurrence parameters are malformed."""


def _parse_date(raw: Any, field_name: str) -> date | None:
    """Return a date from a ``date``/``datetime``/``YYYY-MM-DD`` value."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(str(raw)[:10], "%Y-%m-%d").date()
    except ValueError as exc:
        raise InvalidRule(f"{field_name} must be a YYYY-MM-DD date") from exc


@dataclass(frozen=True)
class RecurrenceRule:
    """Structured description of a repeating schedule."""

    frequency: Frequency
    start_date: date
    interval: int = 1
    weekdays: frozenset[int] = field(default_factory=frozenset)
    day_of_month: int | None = None
    end_date: date | None = None

    def __post_init__(self):
        if isinstance(self.frequency, str) and not isinstance(self.frequency, Frequency):
            try:
                object.__setattr__(self, "frequency", Frequency(self.frequency))
            except ValueError:
                # validate() reports it with the proper error type
                pass
        object.__setattr__(self, "weekdays", frozenset(self.weekdays or ()))

    @classmethod
    def from_dict(cls, data: dict) -> "RecurrenceRule":
        """Build a rule from the JSON payload used by the API.

        Accepts the Portuguese keys stored in ``tarefas_recorrentes``
        (``frequencia``, ``intervalo``, ``dias_semana``, ``dia_mes``,
        ``data_inicio``, ``data_fim``).
        """
        if not isinstance(data, dict):
            raise InvalidRule("rule payload must be an object")

        start_date = _parse_date(data.get("data_inicio"), "data_inicio")
        if start_date is None:
            raise InvalidRule("data_inicio is required")

        raw_interval = data.get("intervalo", 1)
        if raw_interval is None:
            raw_interval = 1
        try:
            interval = int(raw_interval)
        except (TypeError, ValueError) as exc:
            raise InvalidRule("intervalo must be an integer") from exc

        raw_weekdays = data.get("dias_semana") or []
        try:
            weekdays = frozenset(int(day) for day in raw_weekdays)
        except (TypeError, ValueError) as exc:
            raise InvalidRule("dias_semana must be a list of integers") from exc

        raw_day = data.get("dia_mes")
        try:
            day_of_month = int(raw_day) if raw_day not in (None, "") else None
        except (TypeError, ValueError) as exc:
            raise InvalidRule("dia_mes must be an integer") from exc

        rule = cls(
            frequency=data.get("frequencia"),
            start_date=start_date,
            interval=interval,
            weekdays=weekdays,
            day_of_month=day_of_month,
            end_date=_parse_date(data.get("data_fim"), "data_fim"),
        )
        rule.validate()
        return rule

    def to_dict(self) -> dict:
        """Return the rule using the storage/API vocabulary."""
        return {
            "frequencia": self.frequency.value,
            "intervalo": self.interval,
            "dias_semana": sorted(self.weekdays),
            "dia_mes": self.day_of_month,
            "data_inicio": self.start_date.isoformat(),
            "data_fim": self.end_date.isoformat() if self.end_date else None,
        }

    def validate(self) -> None:
        """Raise :class:`InvalidRule` when the rule cannot be evaluated."""
        if not isinstance(self.frequency, Frequency):
            raise InvalidRule(f"unknown frequency: {self.frequency!r}")
        if not isinstance(self.start_date, date):
            raise InvalidRule("start_date must be a date")
        if isinstance(self.interval, bool) or not isinstance(self.interval, int):
            raise InvalidRule("interval must be an integer")
        if self.interval < 1:
            raise InvalidRule("interval must be >= 1")
        if self.end_date is not None and self.end_date < self.start_date:
            raise InvalidRule("end_date must not be before start_date")
        if any(not isinstance(day, int) or not 0 <= day <= 6 for day in self.weekdays):
            raise InvalidRule("weekdays must be integers between 0 (Sunday) and 6")
        if self.frequency is Frequency.MONTHLY:
            if self.day_of_month is None:
                raise InvalidRule("day_of_month is required for monthly rules")
            if not 1 <= self.day_of_month <= 31:
                raise InvalidRule("day_of_month must be between 1 and 31")


def validate_rule(rule: RecurrenceRule) -> RecurrenceRule:
    """Validate ``rule`` and return it for chaining."""
    if not isinstance(rule, RecurrenceRule):
        raise InvalidRule("expected a RecurrenceRule")
    rule.validate()
    return rule


# =============================================================================
# GERAÇÃO DE CANDIDATOS
# =============================================================================

def weekday_of(day: date) -> int:
    """Return the weekday with Sunday = 0."""
    return day.isoweekday() % 7


def _steps_until(start: date, since: date | None, step_days: int) -> int:
    """Return the first step index whose date is >= ``since``."""
    if since is None or since <= start:
        return 0
    return -(-(since - start).days // step_days)


def _day_step_candidates(rule: RecurrenceRule, since: date | None) -> Iterator[tuple[date, bool]]:
    step = rule.interval
    n = _steps_until(rule.start_date, since, step)
    while True:
        try:
            current = rule.start_date + timedelta(days=n * step)
        except OverflowError:
            return
        if rule.frequency is Frequency.DAILY:
            yield current, True
        else:
            yield current, weekday_of(current) in rule.weekdays
        n += 1


def _monthly_candidates(rule: RecurrenceRule, since: date | None) -> Iterator[tuple[date, bool]]:
    start = rule.start_date
    n = 0
    if since is not None and since > start:
        months_ahead = (since.year - start.year) * 12 + (since.month - start.month)
        n = months_ahead // rule.interval
    while True:
        month_index = start.month - 1 + n * rule.interval
        year = start.year + month_index // 12
        month = month_index % 12 + 1
        if year > date.max.year:
            return
        last_day = calendar.monthrange(year, month)[1]
        if rule.day_of_month <= last_day:
            candidate = date(year, month, rule.day_of_month)
            yield candidate, candidate >= start
        else:
            yield date(year, month, 1), False
        n += 1


def _yearly_candidates(rule: RecurrenceRule, since: date | None) -> Iterator[tuple[date, bool]]:
    start = rule.start_date
    n = 0
    if since is not None and since > start:
        n = (since.year - start.year) // rule.interval
    while True:
        year = start.year + n * rule.interval
        if year > date.max.year:
            return
        try:
            yield start.replace(year=year), True
        except ValueError:
            # 29/02 em ano não bissexto
            yield date(year, start.month, 28), False
        n += 1


def _candidates(rule: RecurrenceRule, since: date | None) -> Iterator[tuple[date, bool]]:
    if rule.frequency is Frequency.DAILY:
        return _day_step_candidates(rule, since)
    if rule.frequency is Frequency.WEEKLY:
        if not rule.weekdays:
            return iter(())
        return _day_step_candidates(rule, since)
    if rule.frequency is Frequency.MONTHLY:
        return _monthly_candidates(rule, since)
    if rule.frequency is Frequency.YEARLY:
        return _yearly_candidates(rule, since)
    raise InvalidRule(f"unhandled frequency: {rule.frequency!r}")


def _generate(rule: RecurrenceRule, since: date | None) -> Iterator[date]:
    idle = 0
    for candidate, matches in _candidates(rule, since):
        if rule.end_date is not None and candidate > rule.end_date:
            return
        if matches and (since is None or candidate >= since):
            idle = 0
            yield candidate
            continue
        idle += 1
        if idle >= MAX_IDLE_CANDIDATES:
            logger.debug(
                "Recurrence scan stopped after %s idle candidates (rule=%s)",
                idle,
                rule.to_dict(),
            )
            return


# =============================================================================
# API PÚBLICA
# =============================================================================

def iter_occurrences(rule: RecurrenceRule, since: date | None = None) -> Iterator[date]:
    """Return a lazy iterator over the occurrences of ``rule``.

    Args:
        rule: Rule to evaluate; validated before the iterator is created.
        since: Optional lower bound; only occurrences ``>= since`` are yielded,
            keeping the phase anchored on ``rule.start_date``.
    """
    validate_rule(rule)
    return _generate(rule, since)


def next_occurrences(rule: RecurrenceRule, count: int) -> list[date]:
    """Return up to ``count`` occurrences of ``rule`` in chronological order.

    Fewer dates are returned when ``end_date`` is reached or when the scan
    finds no occurrence for :data:`MAX_IDLE_CANDIDATES` candidates.

    Raises:
        InvalidRule: malformed rule or negative ``count``.
    """
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise InvalidRule("count must be a non-negative integer")
    validate_rule(rule)
    if count == 0:
        return []
    return list(islice(_generate(rule, None), count))


def first_occurrence_on_or_after(rule: RecurrenceRule, day: date) -> date | None:
    """Return the first occurrence ``>= day`` or ``None`` when exhausted."""
    return next(iter_occurrences(rule, since=day), None)


def occurs_on(rule: RecurrenceRule, day: date) -> bool:
    """Return True when ``day`` is an occurrence of ``rule``."""
    return first_occurrence_on_or_after(rule, day) == day


def describe_rule(rule: RecurrenceRule) -> str:
    """Return a short Portuguese label for the rule."""
    validate_rule(rule)
    label, unit = _UNIT_LABELS[rule.frequency]
    parts = [label if rule.interval == 1 else f"A cada {rule.interval} {unit}"]
    if rule.frequency is Frequency.WEEKLY:
        days = ", ".join(WEEKDAY_LABELS[day] for day in sorted(rule.weekdays))
        parts.append(f"({days or 'nenhum dia'})")
    elif rule.frequency is Frequency.MONTHLY:
        parts.append(f"no dia {rule.day_of_month}")
    if rule.end_date:
        parts.append(f"até {rule.end_date.strftime('%d/%m/%Y')}")
    return " ".join(parts)
