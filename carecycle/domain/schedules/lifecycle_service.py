"""
Schedule lifecycle service - Orchestrates status workflows

Each workflow loads the schedule, validates before writing anything, then updates
the schedule, synchronizes dependent records and appends the audit entry inside
one transaction. Dependent-record failures are collected in the outcome; only a
failure on the schedule row itself aborts and rolls back.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from ...config import DEFAULT_NOTIFICATION_DAYS_BEFORE
from .data_synchronizer import DataSynchronizer
from .date_calculator import DateCalculator, to_date, utc_to_local, weeks_between
from .exceptions import LifecycleError, PersistenceError, SyncError, ValidationError
from .repository import ScheduleStore
from .schemas import (
    ExecutionComplete,
    PauseOptions,
    QueuedJob,
    RequestContext,
    ResumeOptions,
    ScheduleCreate,
    ScheduleRecord,
    SyncResult,
    TransitionLogEntry,
    TransitionOutcome,
    ValidationResult,
)
from .transition_validator import SYNC_RELATED_DATA, TransitionValidator

logger = logging.getLogger(__name__)

PAUSE_NOTICE_TASK = "create_pause_notice_task"


class LifecycleManager:
    """Service layer for schedule status workflows"""

    def __init__(
        self,
        store: ScheduleStore,
        validator: Optional[TransitionValidator] = None,
        calculator: Optional[DateCalculator] = None,
        synchronizer: Optional[DataSynchronizer] = None,
    ):
        self.store = store
        self.validator = validator or TransitionValidator()
        self.calculator = calculator or DateCalculator()
        self.synchronizer = synchronizer or DataSynchronizer(store, self.calculator)

    @contextmanager
    def _unit_of_work(self, action: str, schedule_id: Optional[str] = None):
        try:
            yield
            self.store.commit()
        except LifecycleError:
            self.store.rollback()
            raise
        except SQLAlchemyError as e:
            self.store.rollback()
            logger.error(f"❌ {action} failed for schedule {schedule_id}: {e}")
            raise PersistenceError(f"Failed to {action} schedule {schedule_id}: {e}") from e

    def _append_log(
        self,
        sync: SyncResult,
        schedule_id: str,
        from_status: Optional[str],
        to_status: str,
        context: RequestContext,
        reason: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Audit entry in its own savepoint; a failure is reported, never fatal"""
        entry = TransitionLogEntry(
            schedule_id=schedule_id,
            from_status=from_status,
            to_status=to_status,
            transition_timestamp=datetime.utcnow(),
            performed_by=context.user_id,
            reason=reason,
            metadata=metadata or {},
        )
        try:
            with self.store.savepoint():
                self.store.append_audit_log(entry)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to write audit log for schedule {schedule_id}: {e}")
            sync.errors.append(SyncError("append_audit_log", e))

    @staticmethod
    def _sync_counts(sync: SyncResult) -> dict[str, Any]:
        return {
            "executions_updated": sync.executions_updated,
            "notifications_cancelled": sync.notifications_cancelled,
            "notifications_created": sync.notifications_created,
            "sync_errors": sync.error_messages(),
        }

    @staticmethod
    def _reject(validation: ValidationResult) -> None:
        if not validation.is_valid:
            raise ValidationError(validation.errors[0], validation.errors)

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    def pause_schedule(
        self,
        schedule_id: str,
        options: Optional[PauseOptions] = None,
        context: Optional[RequestContext] = None,
    ) -> TransitionOutcome:
        options = options or PauseOptions()
        context = context or RequestContext()
        logger.info(f"⏸️ Pausing schedule {schedule_id} (by: {context.user_id})")

        with self._unit_of_work("pause", schedule_id):
            schedule = self.store.fetch_schedule(schedule_id)

            self._reject(self.validator.validate_transition(schedule.status, "paused"))
            if not self.validator.can_pause(schedule):
                reasons = self.validator.get_blocking_reasons(schedule, "paused") or [
                    f"Schedule is '{schedule.status}', not active."
                ]
                raise ValidationError("Schedule cannot be paused", reasons)

            self.store.update_schedule(schedule_id, status="paused")
            sync = self.synchronizer.sync_on_pause(schedule_id)

            self._append_log(
                sync,
                schedule_id,
                schedule.status,
                "paused",
                context,
                reason=options.reason,
                metadata=self._sync_counts(sync),
            )

            outcome = TransitionOutcome(
                schedule_id=schedule_id,
                from_status=schedule.status,
                to_status="paused",
                next_due_date=schedule.next_due_date,
                sync=sync,
            )

            if options.notify_assignee:
                if schedule.assigned_user_id:
                    outcome.queued_jobs.append(
                        QueuedJob(
                            function=PAUSE_NOTICE_TASK,
                            args=[schedule_id, schedule.assigned_user_id, options.reason],
                        )
                    )
                else:
                    logger.info(f"ℹ️ Schedule {schedule_id} has no assignee; no pause notice queued")

        if not sync.ok:
            logger.warning(f"⚠️ Schedule {schedule_id} paused with {len(sync.errors)} sync error(s)")
        logger.info(f"✅ Schedule {schedule_id} paused")
        return outcome

    def resume_schedule(
        self,
        schedule_id: str,
        options: Optional[ResumeOptions] = None,
        context: Optional[RequestContext] = None,
    ) -> TransitionOutcome:
        options = options or ResumeOptions()
        context = context or RequestContext()
        logger.info(
            f"▶️ Resuming schedule {schedule_id} "
            f"(strategy: {options.strategy}, missed: {options.handle_missed})"
        )

        with self._unit_of_work("resume", schedule_id):
            schedule = self.store.fetch_schedule(schedule_id)

            self._reject(self.validator.validate_transition(schedule.status, "active"))
            if not self.validator.can_resume(schedule):
                reasons = self.validator.get_blocking_reasons(schedule, "active") or [
                    f"Schedule is '{schedule.status}', not paused."
                ]
                raise ValidationError("Schedule cannot be resumed", reasons)

            duplicate_id = self.store.find_active_duplicate(
                schedule.patient_id, schedule.item_id, exclude_id=schedule_id
            )
            if duplicate_id:
                raise ValidationError(
                    "Another active schedule exists for this patient and item",
                    [f"Schedule {duplicate_id} is already active for this patient and item."],
                )

            next_due = self.calculator.calculate_next_due_date(
                schedule, options.strategy, options.custom_date
            )
            date_check = self.calculator.validate_next_due_date(schedule, next_due)
            if not date_check.is_valid:
                raise ValidationError(date_check.reason)
            if next_due < schedule.start_date:
                raise ValidationError(
                    f"Next due date {next_due} is before the schedule start date {schedule.start_date}"
                )

            sync = SyncResult()
            missed = []
            catch_up_dates = []
            if options.handle_missed != "skip":
                paused_at = self.get_paused_at(schedule)
                missed = self.calculator.get_missed_executions(
                    schedule, paused_at, self.calculator.today()
                )
                logger.info(f"📋 Schedule {schedule_id}: {len(missed)} occurrence(s) missed during pause")

                if options.handle_missed == "catch_up":
                    catch_up_dates = self.calculator.calculate_catch_up_dates(schedule, len(missed))
                    sync.merge(self.synchronizer.create_catch_up_executions(schedule, catch_up_dates))
                elif options.handle_missed == "mark_overdue":
                    sync.merge(self.synchronizer.mark_overdue_executions(schedule, missed))

            self.store.update_schedule(schedule_id, status="active", next_due_date=next_due)
            sync.merge(self.synchronizer.sync_on_resume(schedule_id, next_due))

            self._append_log(
                sync,
                schedule_id,
                schedule.status,
                "active",
                context,
                reason=f"Resumed with {options.strategy} strategy",
                metadata={
                    "strategy": options.strategy,
                    "handle_missed": options.handle_missed,
                    "next_due_date": next_due.isoformat(),
                    "missed_executions": len(missed),
                    "catch_up_executions": len(catch_up_dates),
                    **self._sync_counts(sync),
                },
            )

        if not sync.ok:
            logger.warning(f"⚠️ Schedule {schedule_id} resumed with {len(sync.errors)} sync error(s)")
        logger.info(f"✅ Schedule {schedule_id} resumed, next due {next_due}")

        return TransitionOutcome(
            schedule_id=schedule_id,
            from_status=schedule.status,
            to_status="active",
            next_due_date=next_due,
            missed_executions=len(missed),
            catch_up_executions=len(catch_up_dates),
            sync=sync,
        )

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _finish(
        self, schedule_id: str, to_status: str, reason: Optional[str], context: RequestContext
    ) -> TransitionOutcome:
        with self._unit_of_work(to_status, schedule_id):
            schedule = self.store.fetch_schedule(schedule_id)

            validation = self.validator.validate_transition(schedule.status, to_status)
            self._reject(validation)

            if schedule.status == to_status:
                logger.info(f"ℹ️ Schedule {schedule_id} is already {to_status}")
                return TransitionOutcome(
                    schedule_id=schedule_id,
                    from_status=schedule.status,
                    to_status=to_status,
                    next_due_date=schedule.next_due_date,
                )

            self.store.update_schedule(schedule_id, status=to_status)

            sync = SyncResult()
            if SYNC_RELATED_DATA in validation.required_actions:
                sync = self.synchronizer.sync_on_cancel(schedule_id)

            self._append_log(
                sync,
                schedule_id,
                schedule.status,
                to_status,
                context,
                reason=reason,
                metadata=self._sync_counts(sync),
            )

        logger.info(f"✅ Schedule {schedule_id} {schedule.status} → {to_status}")
        return TransitionOutcome(
            schedule_id=schedule_id,
            from_status=schedule.status,
            to_status=to_status,
            next_due_date=schedule.next_due_date,
            sync=sync,
        )

    def complete_schedule(
        self,
        schedule_id: str,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> TransitionOutcome:
        return self._finish(schedule_id, "completed", reason, context or RequestContext())

    def cancel_schedule(
        self,
        schedule_id: str,
        reason: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> TransitionOutcome:
        return self._finish(schedule_id, "cancelled", reason, context or RequestContext())

    # ------------------------------------------------------------------
    # Creation and executions
    # ------------------------------------------------------------------

    def create_schedule(
        self, data: ScheduleCreate, context: Optional[RequestContext] = None
    ) -> ScheduleRecord:
        """Create an active schedule with its first planned execution and reminder"""
        context = context or RequestContext()
        logger.info(f"📥 Creating schedule for patient {data.patient_id}, item {data.item_id}")

        with self._unit_of_work("create"):
            duplicate = self.store.find_active_duplicate(data.patient_id, data.item_id)
            if duplicate:
                raise ValidationError(
                    "An active schedule already exists for this patient and item",
                    [f"Schedule {duplicate} is already active for this patient and item."],
                )

            organization_id = context.organization_id or self.store.fetch_tenant_context(
                context.user_id
            )
            notification_days_before = data.notification_days_before
            if notification_days_before is None:
                notification_days_before = DEFAULT_NOTIFICATION_DAYS_BEFORE

            schedule = self.store.create_schedule(
                organization_id=organization_id,
                patient_id=data.patient_id,
                item_id=data.item_id,
                interval_weeks=data.interval_weeks,
                start_date=data.start_date,
                end_date=data.end_date,
                next_due_date=data.start_date,
                status="active",
                assigned_user_id=data.assigned_user_id,
                created_by=context.user_id,
                priority=data.priority,
                requires_notification=data.requires_notification,
                notification_days_before=notification_days_before,
                notes=data.notes,
            )

            sync = self.synchronizer.sync_on_resume(schedule.id, schedule.next_due_date)
            self._append_log(
                sync, schedule.id, None, "active", context, metadata=self._sync_counts(sync)
            )

        if not sync.ok:
            logger.warning(f"⚠️ Schedule {schedule.id} created with {len(sync.errors)} sync error(s)")
        logger.info(f"✅ Created schedule {schedule.id}")
        return self.store.fetch_schedule(schedule.id)

    def record_execution(
        self,
        schedule_id: str,
        data: ExecutionComplete,
        context: Optional[RequestContext] = None,
    ) -> TransitionOutcome:
        """
        Complete the execution due on next_due_date and advance the schedule.
        When the advanced date falls after end_date the schedule is completed.
        """
        context = context or RequestContext()
        executed_date = to_date(data.executed_date)

        with self._unit_of_work("record execution for", schedule_id):
            schedule = self.store.fetch_schedule(schedule_id)
            if schedule.status != "active":
                raise ValidationError(
                    "Executions can only be recorded on active schedules",
                    [f"Schedule is '{schedule.status}', not active."],
                )

            sync = SyncResult()
            try:
                with self.store.savepoint():
                    self.store.upsert_execution(
                        schedule_id,
                        schedule.next_due_date,
                        preserve_completed=False,
                        organization_id=schedule.organization_id,
                        status="completed",
                        executed_date=executed_date,
                        executed_by=context.user_id,
                        skipped_reason=None,
                        notes=data.notes,
                    )
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to record execution for {schedule_id}: {e}") from e

            next_due = self.calculator.advance_after_execution(schedule, executed_date)

            if schedule.end_date is not None and next_due > schedule.end_date:
                self.store.update_schedule(
                    schedule_id, status="completed", last_executed_date=executed_date
                )
                next_due = None
                to_status = "completed"
            else:
                self.store.update_schedule(
                    schedule_id, next_due_date=next_due, last_executed_date=executed_date
                )
                to_status = "active"

            sync.merge(
                self.synchronizer.sync_on_execution(schedule_id, schedule.next_due_date, next_due)
            )

            if to_status == "completed":
                self._append_log(
                    sync,
                    schedule_id,
                    "active",
                    "completed",
                    context,
                    reason="Final execution recorded",
                    metadata={"executed_date": executed_date.isoformat(), **self._sync_counts(sync)},
                )

        logger.info(f"✅ Execution recorded for schedule {schedule_id} on {executed_date}")
        return TransitionOutcome(
            schedule_id=schedule_id,
            from_status="active",
            to_status=to_status,
            next_due_date=next_due,
            sync=sync,
        )

    def reconcile_schedule(self, schedule_id: str) -> TransitionOutcome:
        """Re-run dependent-record sync for the schedule's current status"""
        with self._unit_of_work("reconcile", schedule_id):
            schedule = self.store.fetch_schedule(schedule_id)
            sync = self.synchronizer.reconcile(schedule_id)

        logger.info(f"🔄 Reconciled schedule {schedule_id} ({schedule.status})")
        return TransitionOutcome(
            schedule_id=schedule_id,
            from_status=schedule.status,
            to_status=schedule.status,
            next_due_date=schedule.next_due_date,
            sync=sync,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_schedule(self, schedule_id: str) -> ScheduleRecord:
        return self.store.fetch_schedule(schedule_id)

    def get_state_transition_history(self, schedule_id: str) -> list[TransitionLogEntry]:
        self.store.fetch_schedule(schedule_id)
        return self.store.list_transition_logs(schedule_id)

    def get_paused_at(self, schedule: ScheduleRecord) -> datetime:
        """When the current pause began, on the local clock: the latest pause log entry, else updated_at"""
        paused_at = self.store.find_latest_pause(schedule.id) or schedule.updated_at
        if paused_at is None:
            return datetime.now()
        return utc_to_local(paused_at)

    def get_pause_duration(self, schedule: ScheduleRecord) -> Optional[int]:
        """Whole weeks the schedule has been paused; None unless it is paused"""
        if schedule.status != "paused":
            return None
        return weeks_between(self.calculator.today(), self.get_paused_at(schedule))

    def suggest_resume_strategy(self, schedule: ScheduleRecord) -> str:
        return self.calculator.suggest_resume_strategy(
            schedule, self.get_pause_duration(schedule) or 0
        )

    def get_remaining_executions(self, schedule: ScheduleRecord) -> Optional[int]:
        return self.calculator.get_remaining_executions(schedule)

    def validate_transition(self, from_status: str, to_status: str) -> ValidationResult:
        return self.validator.validate_transition(from_status, to_status)
