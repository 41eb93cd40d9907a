"""
Date arithmetic tests - next due date, missed occurrences, catch-up planning
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from carecycle.domain.schedules.date_calculator import DateCalculator, utc_to_local, weeks_between
from carecycle.domain.schedules.exceptions import ValidationError
from carecycle.domain.schedules.schemas import ScheduleRecord

TODAY = date(2025, 3, 10)


def schedule(**overrides):
    fields = {
        "id": "s-1",
        "patient_id": "p-1",
        "item_id": "i-1",
        "interval_weeks": 2,
        "start_date": date(2024, 12, 1),
        "next_due_date": date(2025, 1, 1),
    }
    fields.update(overrides)
    return ScheduleRecord(**fields)


@pytest.fixture
def calculator():
    return DateCalculator(today_provider=lambda: TODAY)


def test_weeks_between_truncates():
    assert weeks_between(date(2025, 1, 15), date(2025, 1, 1)) == 2
    assert weeks_between(date(2025, 1, 13), date(2025, 1, 1)) == 1
    assert weeks_between(date(2025, 1, 1), date(2025, 1, 13)) == -1


def test_today_is_date_only():
    calculator = DateCalculator(today_provider=lambda: datetime(2025, 3, 10, 17, 45))
    assert calculator.today() == TODAY


def test_next_due_immediate(calculator):
    assert calculator.calculate_next_due_date(schedule(interval_weeks=2), "immediate") == TODAY


def test_next_due_next_cycle(calculator):
    result = calculator.calculate_next_due_date(schedule(interval_weeks=3), "next_cycle")
    assert result == TODAY + timedelta(days=21)


def test_next_due_unknown_strategy_falls_back(calculator):
    result = calculator.calculate_next_due_date(schedule(interval_weeks=3), "whenever")
    assert result == TODAY + timedelta(days=21)


def test_next_due_custom(calculator):
    custom = datetime(2025, 4, 1, 9, 30)
    assert calculator.calculate_next_due_date(schedule(), "custom", custom) == date(2025, 4, 1)


def test_next_due_custom_requires_date(calculator):
    with pytest.raises(ValidationError):
        calculator.calculate_next_due_date(schedule(), "custom")


def test_missed_executions(calculator):
    missed = calculator.get_missed_executions(
        schedule(next_due_date=date(2025, 1, 1), interval_weeks=2),
        paused_at=date(2025, 1, 1),
        resume_at=date(2025, 2, 26),
    )
    assert [m.due_date for m in missed] == [
        date(2025, 1, 1),
        date(2025, 1, 15),
        date(2025, 1, 29),
        date(2025, 2, 12),
    ]
    assert all(m.weeks_overdue >= 0 for m in missed)
    assert missed[0].weeks_overdue == 8


def test_missed_executions_ignores_dates_before_pause(calculator):
    missed = calculator.get_missed_executions(
        schedule(next_due_date=date(2025, 1, 1), interval_weeks=2),
        paused_at=datetime(2025, 1, 20, 8, 0),
        resume_at=date(2025, 2, 1),
    )
    assert [m.due_date for m in missed] == [date(2025, 1, 29)]


def test_no_missed_executions(calculator):
    missed = calculator.get_missed_executions(
        schedule(next_due_date=date(2025, 3, 1)), date(2025, 2, 1), date(2025, 2, 20)
    )
    assert missed == []


def test_catch_up_dates_compressed(calculator):
    dates = calculator.calculate_catch_up_dates(schedule(interval_weeks=4, end_date=None), 2)
    assert dates == [TODAY, TODAY + timedelta(weeks=2)]


def test_catch_up_dates_minimum_one_week(calculator):
    dates = calculator.calculate_catch_up_dates(schedule(interval_weeks=1), 3)
    assert dates == [TODAY, TODAY + timedelta(weeks=1), TODAY + timedelta(weeks=2)]


def test_catch_up_dates_drop_past_end(calculator):
    dates = calculator.calculate_catch_up_dates(
        schedule(interval_weeks=2, end_date=TODAY + timedelta(days=10)), 3
    )
    assert dates == [TODAY, TODAY + timedelta(weeks=1)]


@pytest.mark.parametrize("count", [0, -1])
def test_catch_up_dates_empty(calculator, count):
    assert calculator.calculate_catch_up_dates(schedule(), count) == []


def test_remaining_executions(calculator):
    assert calculator.get_remaining_executions(schedule(end_date=None)) is None
    assert calculator.get_remaining_executions(schedule(end_date=TODAY - timedelta(days=1))) == 0
    # 6 weeks at a 2 week interval: today, +2, +4, +6
    assert calculator.get_remaining_executions(schedule(end_date=TODAY + timedelta(weeks=6))) == 4
    assert (
        calculator.get_remaining_executions(
            schedule(end_date=TODAY + timedelta(weeks=6)), from_date=TODAY + timedelta(weeks=5)
        )
        == 1
    )


def test_validate_next_due_date(calculator):
    assert calculator.validate_next_due_date(schedule(), TODAY).is_valid
    assert not calculator.validate_next_due_date(schedule(), TODAY - timedelta(days=1)).is_valid

    bounded = schedule(end_date=TODAY + timedelta(weeks=1))
    assert not calculator.validate_next_due_date(bounded, TODAY + timedelta(weeks=2)).is_valid

    recent = schedule(last_executed_date=TODAY - timedelta(days=2))
    result = calculator.validate_next_due_date(recent, TODAY + timedelta(days=2))
    assert not result.is_valid
    assert "one week" in result.reason
    assert calculator.validate_next_due_date(recent, TODAY + timedelta(days=5)).is_valid


@pytest.mark.parametrize(
    "weeks, expected",
    [(0, "immediate"), (1, "immediate"), (2, "custom"), (8, "custom"), (9, "next_cycle")],
)
def test_suggest_resume_strategy(calculator, weeks, expected):
    assert calculator.suggest_resume_strategy(schedule(interval_weeks=2), weeks) == expected


def test_notify_date_and_advance(calculator):
    s = schedule(interval_weeks=3, notification_days_before=2)
    assert calculator.calculate_notify_date(s, date(2025, 4, 10)) == date(2025, 4, 8)
    assert calculator.advance_after_execution(s, date(2025, 4, 10)) == date(2025, 5, 1)


def test_utc_timestamp_lands_on_local_calendar_day(seoul_clock):
    # 20:00 UTC on Jan 1 is already Jan 2 in Seoul
    assert utc_to_local(datetime(2025, 1, 1, 20, 0)) == datetime(2025, 1, 2, 5, 0)
    assert utc_to_local(datetime(2025, 1, 1, 20, 0, tzinfo=timezone.utc)).date() == date(2025, 1, 2)


def test_pause_started_late_utc_counts_from_local_day(seoul_clock, calculator):
    paused_at = utc_to_local(datetime(2025, 1, 28, 20, 0))

    missed = calculator.get_missed_executions(
        schedule(next_due_date=date(2024, 12, 31), interval_weeks=4),
        paused_at=paused_at,
        resume_at=date(2025, 2, 10),
    )

    # Paused on Jan 29 local time, so the Jan 28 occurrence was not missed
    assert paused_at.date() == date(2025, 1, 29)
    assert missed == []
