"""
Schedule status transition rules
Decides whether a requested status change is legal and what it implies

Schedule statuses: active ⇄ paused, active → completed, active/paused → cancelled
completed and cancelled are terminal
"""

from datetime import date
from typing import Optional

from .schemas import SCHEDULE_STATUSES, ScheduleRecord, ValidationResult

RECALCULATE_NEXT_DUE_DATE = "recalculate_next_due_date"
SYNC_RELATED_DATA = "sync_related_data"

# (from, to) -> side effects required by the edge. No other edges are permitted.
TRANSITION_RULES = {
    ("active", "paused"): {"requires_data_sync": True},
    ("active", "completed"): {},
    ("active", "cancelled"): {"requires_data_sync": True},
    ("paused", "active"): {"requires_date_recalculation": True, "requires_data_sync": True},
    ("paused", "cancelled"): {},
}

TERMINAL_STATUSES = ("completed", "cancelled")


def has_ended(schedule: ScheduleRecord, today: Optional[date] = None) -> bool:
    """True when the schedule's end date is strictly before today"""
    if schedule.end_date is None:
        return False
    return schedule.end_date < (today or date.today())


class TransitionValidator:
    """Encodes the allowed schedule state graph"""

    def validate_transition(self, from_status: str, to_status: str) -> ValidationResult:
        result = ValidationResult()

        # Same status is a no-op, never an error
        if from_status == to_status:
            result.is_valid = True
            result.warnings.append(f"Status is already '{to_status}'; nothing will change.")
            return result

        if from_status not in SCHEDULE_STATUSES or to_status not in SCHEDULE_STATUSES:
            result.errors.append(f"Unknown status transition '{from_status}' → '{to_status}'.")
            return result

        rule = TRANSITION_RULES.get((from_status, to_status))
        if rule is None:
            if from_status in TERMINAL_STATUSES:
                result.errors.append(
                    f"'{from_status}' is a terminal status; transition to '{to_status}' is not allowed."
                )
            else:
                result.errors.append(f"Transition from '{from_status}' to '{to_status}' is not allowed.")
            return result

        result.is_valid = True

        if rule.get("requires_date_recalculation"):
            result.required_actions.append(RECALCULATE_NEXT_DUE_DATE)
        if rule.get("requires_data_sync"):
            result.required_actions.append(SYNC_RELATED_DATA)

        if from_status == "active" and to_status == "paused":
            result.warnings.append("Planned executions and pending notifications will be cancelled.")
        if from_status == "paused" and to_status == "active":
            result.warnings.append("Executions due during the pause may have been missed.")

        return result

    def can_pause(self, schedule: ScheduleRecord) -> bool:
        return schedule.status == "active" and not has_ended(schedule)

    def can_resume(self, schedule: ScheduleRecord) -> bool:
        return schedule.status == "paused" and not has_ended(schedule)

    def get_blocking_reasons(self, schedule: ScheduleRecord, target_status: str) -> list[str]:
        """Transition errors plus schedule-specific blockers"""
        reasons = []

        validation = self.validate_transition(schedule.status, target_status)
        if not validation.is_valid:
            reasons.extend(validation.errors)

        if has_ended(schedule):
            reasons.append(f"Schedule ended on {schedule.end_date.isoformat()}; its status cannot change.")

        # Execution completeness is the caller's responsibility
        if schedule.status == "active" and target_status == "completed":
            reasons.append("Confirm that all executions have been completed before completing the schedule.")

        return reasons

    def get_required_actions(self, from_status: str, to_status: str) -> list[str]:
        return self.validate_transition(from_status, to_status).required_actions
