from datetime import date, timedelta
from itertools import islice

import pytest

from gestor.services.recurrence import (
    Frequency,
    InvalidRule,
    RecurrenceRule,
    describe_rule,
    first_occurrence_on_or_after,
    iter_occurrences,
    next_occurrences,
    occurs_on,
    weekday_of,
)


def test_weekly_rule_starting_on_monday():
    rule = RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),
        weekdays={1, 3, 5},
    )
    assert next_occurrences(rule, 3) == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 5)]


def test_monthly_day_31_skips_short_months():
    rule = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 31),
        day_of_month=31,
    )
    assert next_occurrences(rule, 4) == [
        date(2024, 1, 31),
        date(2024, 3, 31),
        date(2024, 5, 31),
        date(2024, 7, 31),
    ]


def test_monthly_first_month_only_counts_from_start_date():
    rule = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 20),
        day_of_month=10,
    )
    assert next_occurrences(rule, 2) == [date(2024, 2, 10), date(2024, 3, 10)]


def test_monthly_interval_keeps_anchor_month():
    rule = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 15),
        day_of_month=15,
        interval=3,
    )
    assert next_occurrences(rule, 3) == [date(2024, 1, 15), date(2024, 4, 15), date(2024, 7, 15)]


def test_daily_interval():
    rule = RecurrenceRule(frequency='diaria', start_date=date(2024, 2, 27), interval=2)
    assert next_occurrences(rule, 3) == [date(2024, 2, 27), date(2024, 2, 29), date(2024, 3, 2)]


def test_weekly_interval_checks_every_other_day():
    rule = RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),  # segunda-feira
        weekdays={1, 2},
        interval=2,
    )
    dates = next_occurrences(rule, 4)
    assert dates == [date(2024, 1, 1), date(2024, 1, 9), date(2024, 1, 15), date(2024, 1, 23)]
    assert all(weekday_of(day) in {1, 2} for day in dates)


def test_daily_interval_keeps_step_over_long_sequence():
    start = date(2023, 12, 30)
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=start, interval=3)
    dates = next_occurrences(rule, 250)
    assert dates == [start + timedelta(days=3 * i) for i in range(250)]
    assert dates[-1] == date(2026, 1, 15)


def test_weekly_interval_that_never_hits_a_weekday_terminates():
    # passo de 7 dias a partir de uma segunda-feira só visita segundas-feiras
    rule = RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 1, 1),
        weekdays={3},
        interval=7,
    )
    assert next_occurrences(rule, 3) == []
    assert first_occurrence_on_or_after(rule, date(2030, 1, 1)) is None


def test_yearly_feb_29_only_on_leap_years():
    rule = RecurrenceRule(frequency=Frequency.YEARLY, start_date=date(2024, 2, 29))
    assert next_occurrences(rule, 2) == [date(2024, 2, 29), date(2028, 2, 29)]


def test_yearly_interval_steps_whole_years():
    start = date(2020, 3, 15)
    rule = RecurrenceRule(frequency=Frequency.YEARLY, start_date=start, interval=2)
    dates = next_occurrences(rule, 6)
    assert dates == [start.replace(year=2020 + 2 * i) for i in range(6)]
    assert dates[-1] == date(2030, 3, 15)
    assert first_occurrence_on_or_after(rule, date(2021, 1, 1)) == date(2022, 3, 15)
    assert not occurs_on(rule, date(2021, 3, 15))


def test_yearly_interval_from_feb_29_skips_2100():
    rule = RecurrenceRule(frequency=Frequency.YEARLY, start_date=date(2092, 2, 29), interval=4)
    assert next_occurrences(rule, 3) == [date(2092, 2, 29), date(2096, 2, 29), date(2104, 2, 29)]


def test_end_date_is_inclusive_and_limits_results():
    rule = RecurrenceRule(
        frequency=Frequency.DAILY,
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 3),
    )
    assert next_occurrences(rule, 10) == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]


def test_weekly_without_weekdays_yields_nothing():
    rule = RecurrenceRule(frequency=Frequency.WEEKLY, start_date=date(2024, 1, 1))
    assert next_occurrences(rule, 5) == []
    assert list(iter_occurrences(rule)) == []


def test_monthly_day_that_never_fits_terminates():
    # Fevereiro nunca tem dia 30: intervalo de 12 meses sempre cai em fevereiro
    rule = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 2, 1),
        day_of_month=30,
        interval=12,
    )
    assert next_occurrences(rule, 3) == []


def test_count_zero_returns_empty():
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1))
    assert next_occurrences(rule, 0) == []


@pytest.mark.parametrize('count', [-1, 1.5, True])
def test_invalid_count_rejected(count):
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1))
    with pytest.raises(InvalidRule):
        next_occurrences(rule, count)


@pytest.mark.parametrize(
    'kwargs',
    [
        {'frequency': Frequency.DAILY, 'interval': 0},
        {'frequency': 'horaria'},
        {'frequency': Frequency.MONTHLY, 'day_of_month': 0},
        {'frequency': Frequency.MONTHLY, 'day_of_month': 32},
        {'frequency': Frequency.MONTHLY},
        {'frequency': Frequency.WEEKLY, 'weekdays': {7}},
        {'frequency': Frequency.DAILY, 'end_date': date(2023, 12, 31)},
    ],
)
def test_invalid_rules_rejected(kwargs):
    rule = RecurrenceRule(start_date=date(2024, 1, 1), **kwargs)
    with pytest.raises(InvalidRule):
        next_occurrences(rule, 1)


def test_occurrences_are_ordered_unique_and_within_bounds():
    rule = RecurrenceRule(
        frequency=Frequency.WEEKLY,
        start_date=date(2024, 3, 5),
        weekdays={0, 3, 6},
        end_date=date(2024, 6, 30),
    )
    dates = next_occurrences(rule, 50)
    assert dates == sorted(set(dates))
    assert all(rule.start_date <= day <= rule.end_date for day in dates)


def test_larger_count_extends_smaller_one():
    rule = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 29),
        day_of_month=29,
    )
    assert next_occurrences(rule, 8)[:3] == next_occurrences(rule, 3)


def test_iter_occurrences_since_keeps_phase():
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2024, 1, 1), interval=3)
    assert list(islice(iter_occurrences(rule, since=date(2024, 1, 5)), 2)) == [
        date(2024, 1, 7),
        date(2024, 1, 10),
    ]


def test_first_occurrence_and_occurs_on():
    rule = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 31),
        day_of_month=31,
        end_date=date(2024, 4, 30),
    )
    assert first_occurrence_on_or_after(rule, date(2024, 2, 1)) == date(2024, 3, 31)
    assert first_occurrence_on_or_after(rule, date(2024, 4, 1)) is None
    assert occurs_on(rule, date(2024, 3, 31))
    assert not occurs_on(rule, date(2024, 2, 29))


def test_far_since_is_reached_without_scanning_from_start():
    rule = RecurrenceRule(frequency=Frequency.DAILY, start_date=date(2000, 1, 1))
    since = date(2000, 1, 1) + timedelta(days=50_000)
    assert first_occurrence_on_or_after(rule, since) == since


def test_from_dict_and_to_dict():
    rule = RecurrenceRule.from_dict(
        {
            'frequencia': 'semanal',
            'intervalo': '1',
            'dias_semana': ['1', 3],
            'data_inicio': '2024-01-01',
            'data_fim': None,
        }
    )
    assert rule.frequency is Frequency.WEEKLY
    assert rule.weekdays == frozenset({1, 3})
    assert rule.to_dict() == {
        'frequencia': 'semanal',
        'intervalo': 1,
        'dias_semana': [1, 3],
        'dia_mes': None,
        'data_inicio': '2024-01-01',
        'data_fim': None,
    }


@pytest.mark.parametrize(
    'payload',
    [
        {'frequencia': 'diaria'},
        {'frequencia': 'diaria', 'data_inicio': '01/01/2024'},
        {'frequencia': 'diaria', 'data_inicio': '2024-01-01', 'intervalo': 'x'},
        {'frequencia': 'mensal', 'data_inicio': '2024-01-01', 'dia_mes': 40},
        'not-a-dict',
    ],
)
def test_from_dict_rejects_bad_payloads(payload):
    with pytest.raises(InvalidRule):
        RecurrenceRule.from_dict(payload)


def test_describe_rule():
    weekly = RecurrenceRule(frequency=Frequency.WEEKLY, start_date=date(2024, 1, 1), weekdays={1, 5})
    assert describe_rule(weekly) == 'Semanal (seg, sex)'
    monthly = RecurrenceRule(
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 1),
        day_of_month=10,
        interval=2,
        end_date=date(2024, 12, 31),
    )
    assert describe_rule(monthly) == 'A cada 2 mês(es) no dia 10 até 31/12/2024'
