"""
Schedule date arithmetic
Next-due recalculation after a pause, missed occurrence detection and catch-up planning.
All dates are calendar dates; no side effects.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Optional, Union

from .exceptions import ValidationError
from .schemas import DateValidation, MissedExecution, ScheduleRecord

# Pause length multiplier beyond which a fresh cycle is recommended
LONG_PAUSE_INTERVALS = 4


def to_date(value: Union[date, datetime]) -> date:
    """Normalize a datetime to its calendar date"""
    if isinstance(value, datetime):
        return value.date()
    return value


def utc_to_local(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; shift one onto the local clock that today() uses"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone().replace(tzinfo=None)


def weeks_between(later: date, earlier: date) -> int:
    """Whole weeks from earlier to later, truncated toward zero"""
    return int((to_date(later) - to_date(earlier)).days / 7)


class DateCalculator:
    """Date calculations for recurring schedules"""

    def __init__(self, today_provider: Optional[Callable[[], date]] = None):
        self._today_provider = today_provider or date.today

    def today(self) -> date:
        return to_date(self._today_provider())

    @staticmethod
    def _interval(schedule: ScheduleRecord) -> int:
        return schedule.interval_weeks or 1

    def calculate_next_due_date(
        self,
        schedule: ScheduleRecord,
        strategy: str = "next_cycle",
        custom_date: Optional[Union[date, datetime]] = None,
    ) -> date:
        """
        Compute the next due date when a schedule resumes.

        immediate  → today
        next_cycle → today + interval_weeks (also used for unknown strategies)
        custom     → custom_date (required)
        """
        today = self.today()

        if strategy == "immediate":
            return today

        if strategy == "custom":
            if custom_date is None:
                raise ValidationError("Custom resume strategy requires a custom date")
            return to_date(custom_date)

        return today + timedelta(weeks=self._interval(schedule))

    def get_missed_executions(
        self,
        schedule: ScheduleRecord,
        paused_at: Union[date, datetime],
        resume_at: Union[date, datetime],
    ) -> list[MissedExecution]:
        """
        Occurrences that fell inside the pause window.
        Steps from the schedule's next_due_date by interval_weeks while before resume_at;
        every step on or after paused_at counts as missed.
        """
        interval = timedelta(weeks=self._interval(schedule))
        paused_start = to_date(paused_at)
        resume_start = to_date(resume_at)

        missed = []
        current = schedule.next_due_date
        while current < resume_start:
            if current >= paused_start:
                missed.append(
                    MissedExecution(due_date=current, weeks_overdue=weeks_between(resume_start, current))
                )
            current = current + interval

        return missed

    def calculate_catch_up_dates(self, schedule: ScheduleRecord, missed_count: int) -> list[date]:
        """
        Dates to make up for missed occurrences, starting today at a compressed interval
        (half the normal cadence, at least one week). Dates past end_date are dropped.
        """
        if missed_count <= 0:
            return []

        catch_up_interval = timedelta(weeks=max(1, self._interval(schedule) // 2))
        current = self.today()

        dates = []
        for _ in range(missed_count):
            dates.append(current)
            current = current + catch_up_interval

        if schedule.end_date is not None:
            return [d for d in dates if d <= schedule.end_date]
        return dates

    def get_remaining_executions(
        self, schedule: ScheduleRecord, from_date: Optional[Union[date, datetime]] = None
    ) -> Optional[int]:
        """Remaining occurrences until end_date; None when the schedule is unbounded"""
        if schedule.end_date is None:
            return None

        start = to_date(from_date) if from_date is not None else self.today()
        if start > schedule.end_date:
            return 0

        return weeks_between(schedule.end_date, start) // self._interval(schedule) + 1

    def validate_next_due_date(
        self, schedule: ScheduleRecord, proposed_date: Union[date, datetime]
    ) -> DateValidation:
        proposed = to_date(proposed_date)

        if proposed < self.today():
            return DateValidation(is_valid=False, reason="Next due date cannot be in the past.")

        if schedule.end_date is not None and proposed > schedule.end_date:
            return DateValidation(is_valid=False, reason="Next due date is after the schedule end date.")

        if schedule.last_executed_date is not None:
            if weeks_between(proposed, schedule.last_executed_date) < 1:
                return DateValidation(
                    is_valid=False,
                    reason="Next due date must be at least one week after the last execution.",
                )

        return DateValidation(is_valid=True)

    def suggest_resume_strategy(self, schedule: ScheduleRecord, pause_duration_weeks: int) -> str:
        interval = self._interval(schedule)

        # Short pause: pick up where we left off
        if pause_duration_weeks < interval:
            return "immediate"

        # Long pause: start a fresh cycle
        if pause_duration_weeks > interval * LONG_PAUSE_INTERVALS:
            return "next_cycle"

        # In between: let the operator choose
        return "custom"

    def calculate_notify_date(self, schedule: ScheduleRecord, due_date: date) -> date:
        return due_date - timedelta(days=schedule.notification_days_before or 0)

    def advance_after_execution(self, schedule: ScheduleRecord, executed_date: date) -> date:
        """Next due date after an execution is recorded"""
        return to_date(executed_date) + timedelta(weeks=self._interval(schedule))
