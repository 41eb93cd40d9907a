"""
Schedule store - Database operations for schedules and their dependent records

Converts ORM rows to domain schemas at this boundary; business logic never
touches SQLAlchemy models directly. Execution and notification writes are
idempotent upserts keyed by their unique constraints.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ...models import (
    Notification,
    OrganizationPolicy,
    Schedule,
    ScheduleExecution,
    ScheduleLog,
    UserProfile,
    generate_id,
)
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .schemas import (
    ExecutionRecord,
    NotificationRecord,
    ScheduleRecord,
    TransitionLogEntry,
)

OPEN_NOTIFICATION_STATES = ("pending", "ready")


class ScheduleStore:
    """Store for the lifecycle engine, bound to one SQLAlchemy session"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    def savepoint(self):
        """Nested transaction; a failure inside rolls back only this block"""
        return self.db.begin_nested()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def _insert(self, model):
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise PersistenceError(f"Upsert is not supported on the '{dialect}' dialect")
        return insert(model)

    # ------------------------------------------------------------------
    # Schedules (primary record)
    # ------------------------------------------------------------------

    def fetch_schedule(self, schedule_id: str) -> ScheduleRecord:
        try:
            row = (
                self.db.query(Schedule)
                .filter(Schedule.id == schedule_id)
                .populate_existing()
                .first()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load schedule {schedule_id}: {e}") from e

        if not row:
            raise NotFoundError(schedule_id)
        return ScheduleRecord.model_validate(row)

    def update_schedule(self, schedule_id: str, **fields) -> None:
        fields.setdefault("updated_at", datetime.utcnow())
        try:
            updated = (
                self.db.query(Schedule)
                .filter(Schedule.id == schedule_id)
                .update(fields, synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update schedule {schedule_id}: {e}") from e

        if updated == 0:
            raise NotFoundError(schedule_id)

    def create_schedule(self, **fields) -> ScheduleRecord:
        now = datetime.utcnow()
        schedule = Schedule(id=generate_id(), created_at=now, updated_at=now, **fields)
        try:
            self.db.add(schedule)
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ValidationError(
                "An active schedule already exists for this patient and item"
            ) from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create schedule: {e}") from e
        return ScheduleRecord.model_validate(schedule)

    def find_active_duplicate(
        self, patient_id: str, item_id: str, exclude_id: Optional[str] = None
    ) -> Optional[str]:
        """Id of another active schedule for the same patient/item pair, if any"""
        query = self.db.query(Schedule.id).filter(
            Schedule.patient_id == patient_id,
            Schedule.item_id == item_id,
            Schedule.status == "active",
        )
        if exclude_id:
            query = query.filter(Schedule.id != exclude_id)
        row = query.first()
        return row[0] if row else None

    def list_schedule_ids(self, statuses: tuple) -> list[str]:
        rows = self.db.query(Schedule.id).filter(Schedule.status.in_(statuses)).all()
        return [row[0] for row in rows]

    def list_overdue_active_schedules(
        self, organization_id: str, cutoff: date, limit: int, exclude_ids: tuple = ()
    ) -> list[str]:
        query = self.db.query(Schedule.id).filter(
            Schedule.organization_id == organization_id,
            Schedule.status == "active",
            Schedule.next_due_date < cutoff,
        )
        if exclude_ids:
            query = query.filter(Schedule.id.notin_(exclude_ids))
        rows = query.order_by(Schedule.next_due_date.asc()).limit(limit).all()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def upsert_execution(
        self, schedule_id: str, planned_date: date, preserve_completed: bool = True, **fields
    ) -> None:
        """
        Create or update the execution for (schedule_id, planned_date).
        With preserve_completed, an already completed execution is left untouched.
        """
        values = {
            "schedule_id": schedule_id,
            "planned_date": planned_date,
            "updated_at": datetime.utcnow(),
            **fields,
        }
        stmt = self._insert(ScheduleExecution).values(id=generate_id(), **values)
        update_columns = {
            key: stmt.excluded[key] for key in values if key not in ("schedule_id", "planned_date")
        }
        where = ScheduleExecution.__table__.c.status != "completed" if preserve_completed else None
        stmt = stmt.on_conflict_do_update(
            index_elements=["schedule_id", "planned_date"], set_=update_columns, where=where
        )
        self.db.execute(stmt)

    def cancel_executions(
        self, schedule_id: str, reason: str, before: Optional[date] = None
    ) -> int:
        """
        Mark planned executions as skipped.
        With `before`, only planned dates earlier than it, and never catch-up rows.
        """
        query = self.db.query(ScheduleExecution).filter(
            ScheduleExecution.schedule_id == schedule_id,
            ScheduleExecution.status == "planned",
        )
        if before is not None:
            query = query.filter(
                ScheduleExecution.planned_date < before,
                ScheduleExecution.is_catch_up.is_(False),
            )
        return query.update(
            {"status": "skipped", "skipped_reason": reason, "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )

    def list_executions(self, schedule_id: str, status: Optional[str] = None) -> list[ExecutionRecord]:
        query = self.db.query(ScheduleExecution).filter(ScheduleExecution.schedule_id == schedule_id)
        if status:
            query = query.filter(ScheduleExecution.status == status)
        rows = query.order_by(ScheduleExecution.planned_date.asc()).populate_existing().all()
        return [ExecutionRecord.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def upsert_notification(self, schedule_id: str, notify_date: date, **fields) -> None:
        values = {
            "schedule_id": schedule_id,
            "notify_date": notify_date,
            "error_message": None,
            "updated_at": datetime.utcnow(),
            **fields,
        }
        stmt = self._insert(Notification).values(id=generate_id(), **values)
        update_columns = {
            key: stmt.excluded[key] for key in values if key not in ("schedule_id", "notify_date")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=["schedule_id", "notify_date"], set_=update_columns
        )
        self.db.execute(stmt)

    def cancel_notifications(
        self, schedule_id: str, reason: str, before: Optional[date] = None
    ) -> int:
        """Cancel pending/ready notifications, optionally only those dated before `before`"""
        query = self.db.query(Notification).filter(
            Notification.schedule_id == schedule_id,
            Notification.state.in_(OPEN_NOTIFICATION_STATES),
        )
        if before is not None:
            query = query.filter(Notification.notify_date < before)
        return query.update(
            {"state": "cancelled", "error_message": reason, "updated_at": datetime.utcnow()},
            synchronize_session=False,
        )

    def insert_notification(self, record: NotificationRecord, organization_id: Optional[str]) -> str:
        """Plain insert for system notices (schedule_id is NULL, so no key conflict)"""
        notification = Notification(
            id=generate_id(),
            organization_id=organization_id,
            schedule_id=record.schedule_id,
            recipient_id=record.recipient_id,
            channel=record.channel,
            notify_date=record.notify_date,
            state=record.state,
            title=record.title,
            message=record.message,
            details=record.details,
        )
        self.db.add(notification)
        self.db.flush()
        return notification.id

    def list_notifications(
        self, schedule_id: str, state: Optional[str] = None
    ) -> list[NotificationRecord]:
        query = self.db.query(Notification).filter(Notification.schedule_id == schedule_id)
        if state:
            query = query.filter(Notification.state == state)
        rows = query.order_by(Notification.notify_date.asc()).populate_existing().all()
        return [NotificationRecord.model_validate(row) for row in rows]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def append_audit_log(self, entry: TransitionLogEntry) -> None:
        if entry.from_status:
            action = f"status_change_{entry.from_status}_to_{entry.to_status}"
        else:
            action = "created"
        self.db.add(
            ScheduleLog(
                id=generate_id(),
                schedule_id=entry.schedule_id,
                action=action,
                from_status=entry.from_status,
                to_status=entry.to_status,
                changed_at=entry.transition_timestamp,
                changed_by=entry.performed_by,
                reason=entry.reason,
                details=entry.metadata,
            )
        )
        self.db.flush()

    def list_transition_logs(self, schedule_id: str) -> list[TransitionLogEntry]:
        """Transition log for a schedule, newest first"""
        try:
            rows = (
                self.db.query(ScheduleLog)
                .filter(ScheduleLog.schedule_id == schedule_id)
                .order_by(ScheduleLog.changed_at.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load transition log for {schedule_id}: {e}") from e

        return [
            TransitionLogEntry(
                id=row.id,
                schedule_id=row.schedule_id,
                from_status=row.from_status,
                to_status=row.to_status,
                transition_timestamp=row.changed_at,
                performed_by=row.changed_by,
                reason=row.reason,
                metadata=row.details or {},
            )
            for row in rows
        ]

    def find_latest_pause(self, schedule_id: str) -> Optional[datetime]:
        """Timestamp of the most recent transition into 'paused'"""
        row = (
            self.db.query(ScheduleLog.changed_at)
            .filter(ScheduleLog.schedule_id == schedule_id, ScheduleLog.to_status == "paused")
            .order_by(ScheduleLog.changed_at.desc())
            .first()
        )
        return row[0] if row else None

    # ------------------------------------------------------------------
    # Tenancy
    # ------------------------------------------------------------------

    def fetch_tenant_context(self, user_id: Optional[str]) -> Optional[str]:
        """Organization id for a user; None for unknown users"""
        if not user_id:
            return None
        row = self.db.query(UserProfile.organization_id).filter(UserProfile.id == user_id).first()
        return row[0] if row else None

    def fetch_user_role(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        row = self.db.query(UserProfile.role).filter(UserProfile.id == user_id).first()
        return row[0] if row else None

    def list_auto_hold_policies(self) -> list[tuple[str, int]]:
        rows = (
            self.db.query(OrganizationPolicy.organization_id, OrganizationPolicy.auto_hold_overdue_days)
            .filter(
                OrganizationPolicy.auto_hold_overdue_days.isnot(None),
                OrganizationPolicy.auto_hold_overdue_days > 0,
            )
            .all()
        )
        return [(row[0], row[1]) for row in rows]
