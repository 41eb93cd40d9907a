"""
Dependent record synchronization
Keeps schedule_executions and notifications consistent with a schedule's status.

Every write is an idempotent upsert or a bulk status update, run inside its own
savepoint. A failed write is rolled back on its own and collected as a SyncError;
it never aborts the surrounding workflow.
"""

import logging
from datetime import date, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from ...config import DEFAULT_NOTIFICATION_CHANNEL
from .date_calculator import DateCalculator
from .exceptions import LifecycleError, SyncError
from .repository import ScheduleStore
from .schemas import MissedExecution, ScheduleRecord, SyncResult

logger = logging.getLogger(__name__)

SKIPPED_REASON_PAUSED = "paused"
SKIPPED_REASON_CANCELLED = "cancelled"
SKIPPED_REASON_SUPERSEDED = "superseded"
CATCH_UP_NOTE = "catch-up after resume"


class DataSynchronizer:
    """Brings executions and notifications in line with a schedule's status"""

    def __init__(self, store: ScheduleStore, calculator: Optional[DateCalculator] = None):
        self.store = store
        self.calculator = calculator or DateCalculator()

    def _attempt(self, result: SyncResult, operation: str, write: Callable):
        """Run one dependent write in a savepoint; collect the failure instead of raising"""
        try:
            with self.store.savepoint():
                return write()
        except (SQLAlchemyError, LifecycleError) as e:
            logger.error(f"❌ Sync step '{operation}' failed: {e}")
            result.errors.append(SyncError(operation, e))
            return None

    def _load_schedule(self, result: SyncResult, schedule_id: str) -> Optional[ScheduleRecord]:
        try:
            return self.store.fetch_schedule(schedule_id)
        except LifecycleError as e:
            logger.error(f"❌ Could not load schedule {schedule_id} for sync: {e}")
            result.errors.append(SyncError("load_schedule", e))
            return None

    def _tenant_for(self, schedule: ScheduleRecord) -> Optional[str]:
        if schedule.organization_id:
            return schedule.organization_id
        return self.store.fetch_tenant_context(schedule.created_by)

    # ------------------------------------------------------------------
    # Pause / cancel
    # ------------------------------------------------------------------

    def _skip_and_cancel(self, schedule_id: str, reason: str) -> SyncResult:
        result = SyncResult()

        skipped = self._attempt(
            result,
            "skip_planned_executions",
            lambda: self.store.cancel_executions(schedule_id, reason=reason),
        )
        result.executions_updated = skipped or 0

        cancelled = self._attempt(
            result,
            "cancel_pending_notifications",
            lambda: self.store.cancel_notifications(schedule_id, reason=f"Schedule {reason}"),
        )
        result.notifications_cancelled = cancelled or 0

        logger.info(
            f"⏸️ Schedule {schedule_id} sync ({reason}): "
            f"{result.executions_updated} executions skipped, "
            f"{result.notifications_cancelled} notifications cancelled"
        )
        return result

    def sync_on_pause(self, schedule_id: str) -> SyncResult:
        """Skip planned executions and cancel pending/ready notifications"""
        return self._skip_and_cancel(schedule_id, SKIPPED_REASON_PAUSED)

    def sync_on_cancel(self, schedule_id: str) -> SyncResult:
        return self._skip_and_cancel(schedule_id, SKIPPED_REASON_CANCELLED)

    # ------------------------------------------------------------------
    # Resume / activate
    # ------------------------------------------------------------------

    def sync_on_resume(self, schedule_id: str, next_due_date: date) -> SyncResult:
        """
        Ensure one planned execution exists for next_due_date, a pending reminder
        when the schedule asks for one, then clean up stale records.
        """
        result = SyncResult()

        schedule = self._load_schedule(result, schedule_id)
        if schedule is None:
            return result

        organization_id = self._tenant_for(schedule)

        created = self._attempt(
            result,
            "upsert_execution",
            lambda: self.store.upsert_execution(
                schedule_id,
                next_due_date,
                organization_id=organization_id,
                status="planned",
                skipped_reason=None,
                is_catch_up=False,
            )
            or True,
        )
        if created:
            result.executions_updated = 1

        if self._create_notification_if_needed(result, schedule, next_due_date, organization_id):
            result.notifications_created = 1

        cleanup = self.cleanup_orphaned_data(schedule_id)
        result.errors.extend(cleanup.errors)

        return result

    def _create_notification_if_needed(
        self,
        result: SyncResult,
        schedule: ScheduleRecord,
        due_date: date,
        organization_id: Optional[str],
    ) -> bool:
        if not schedule.requires_notification:
            return False

        notify_date = self.calculator.calculate_notify_date(schedule, due_date)
        if notify_date < self.calculator.today():
            logger.debug(f"ℹ️ Reminder date {notify_date} already passed for schedule {schedule.id}")
            return False

        days_before = schedule.notification_days_before or 0
        created = self._attempt(
            result,
            "upsert_notification",
            lambda: self.store.upsert_notification(
                schedule.id,
                notify_date,
                organization_id=organization_id,
                recipient_id=schedule.assigned_user_id or schedule.created_by,
                channel=DEFAULT_NOTIFICATION_CHANNEL,
                state="pending",
                title="Upcoming scheduled task",
                message=f"Scheduled task is due in {days_before} day(s), on {due_date.isoformat()}.",
            )
            or True,
        )
        return bool(created)

    def cleanup_orphaned_data(self, schedule_id: str) -> SyncResult:
        """
        For an active schedule: skip planned executions dated before next_due_date
        and cancel still-open notifications dated before today.
        """
        result = SyncResult()

        schedule = self._load_schedule(result, schedule_id)
        if schedule is None or schedule.status != "active":
            return result

        superseded = self._attempt(
            result,
            "skip_superseded_executions",
            lambda: self.store.cancel_executions(
                schedule_id, reason=SKIPPED_REASON_SUPERSEDED, before=schedule.next_due_date
            ),
        )
        result.executions_updated = superseded or 0

        expired = self._attempt(
            result,
            "cancel_expired_notifications",
            lambda: self.store.cancel_notifications(
                schedule_id, reason="Notification date passed", before=self.calculator.today()
            ),
        )
        result.notifications_cancelled = expired or 0

        if result.executions_updated or result.notifications_cancelled:
            logger.info(
                f"🧹 Schedule {schedule_id} cleanup: {result.executions_updated} executions superseded, "
                f"{result.notifications_cancelled} expired notifications cancelled"
            )
        return result

    def sync_on_execution(
        self, schedule_id: str, completed_due_date: date, next_due_date: Optional[date]
    ) -> SyncResult:
        """
        Cancel reminders for the occurrence just completed, then plan the next one.
        next_due_date is None when the execution finished the schedule.
        """
        result = SyncResult()

        cancelled = self._attempt(
            result,
            "cancel_completed_reminders",
            lambda: self.store.cancel_notifications(
                schedule_id,
                reason="Execution recorded",
                before=completed_due_date + timedelta(days=1),
            ),
        )
        result.notifications_cancelled = cancelled or 0

        if next_due_date is not None:
            result.merge(self.sync_on_resume(schedule_id, next_due_date))
        return result

    # ------------------------------------------------------------------
    # Missed occurrences
    # ------------------------------------------------------------------

    def create_catch_up_executions(self, schedule: ScheduleRecord, dates: list[date]) -> SyncResult:
        result = SyncResult()
        organization_id = self._tenant_for(schedule)

        for planned_date in dates:
            created = self._attempt(
                result,
                f"upsert_catch_up_execution:{planned_date.isoformat()}",
                lambda planned_date=planned_date: self.store.upsert_execution(
                    schedule.id,
                    planned_date,
                    organization_id=organization_id,
                    status="planned",
                    skipped_reason=None,
                    is_catch_up=True,
                    notes=CATCH_UP_NOTE,
                )
                or True,
            )
            if created:
                result.executions_updated += 1

        return result

    def mark_overdue_executions(
        self, schedule: ScheduleRecord, missed: list[MissedExecution]
    ) -> SyncResult:
        result = SyncResult()
        organization_id = self._tenant_for(schedule)

        for occurrence in missed:
            marked = self._attempt(
                result,
                f"upsert_overdue_execution:{occurrence.due_date.isoformat()}",
                lambda occurrence=occurrence: self.store.upsert_execution(
                    schedule.id,
                    occurrence.due_date,
                    organization_id=organization_id,
                    status="overdue",
                    skipped_reason=None,
                    notes=f"Missed during pause ({occurrence.weeks_overdue} week(s) overdue)",
                )
                or True,
            )
            if marked:
                result.executions_updated += 1

        return result

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def reconcile(self, schedule_id: str) -> SyncResult:
        """Re-run the sync matching the schedule's current status"""
        result = SyncResult()

        schedule = self._load_schedule(result, schedule_id)
        if schedule is None:
            return result

        if schedule.status == "active":
            return self.sync_on_resume(schedule_id, schedule.next_due_date)
        return self._skip_and_cancel(schedule_id, schedule.status)
