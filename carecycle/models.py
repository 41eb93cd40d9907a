import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_id():
    """Generate a string UUID primary key"""
    return str(uuid.uuid4())


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), nullable=False, index=True)
    role = Column(String(50), nullable=False, default="nurse")  # nurse, doctor, admin
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class OrganizationPolicy(Base):
    __tablename__ = "organization_policies"

    organization_id = Column(String(36), primary_key=True)
    # Active schedules overdue by this many days are paused by the auto-hold cron
    auto_hold_overdue_days = Column(Integer, nullable=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Schedule(Base):
    __tablename__ = "schedules"
    __table_args__ = (
        # Only one active schedule per patient/item pair
        Index(
            "uq_schedules_active_patient_item",
            "patient_id",
            "item_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), nullable=True, index=True)
    patient_id = Column(String(36), nullable=False, index=True)
    item_id = Column(String(36), nullable=False)
    interval_weeks = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    last_executed_date = Column(Date, nullable=True)
    next_due_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), default="active", nullable=False, index=True)  # active, paused, completed, cancelled
    assigned_user_id = Column(String(36), nullable=True)
    created_by = Column(String(36), nullable=True)
    priority = Column(Integer, default=0, nullable=False)
    requires_notification = Column(Boolean, default=False, nullable=False)
    notification_days_before = Column(Integer, default=1, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    executions = relationship("ScheduleExecution", back_populates="schedule")
    logs = relationship("ScheduleLog", back_populates="schedule")


class ScheduleExecution(Base):
    __tablename__ = "schedule_executions"
    __table_args__ = (
        UniqueConstraint("schedule_id", "planned_date", name="uq_schedule_executions_schedule_planned"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), nullable=True, index=True)
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=False, index=True)
    planned_date = Column(Date, nullable=False)
    executed_date = Column(Date, nullable=True)
    executed_by = Column(String(36), nullable=True)
    status = Column(String(20), default="planned", nullable=False)  # planned, completed, skipped, overdue
    skipped_reason = Column(String(255), nullable=True)
    is_catch_up = Column(Boolean, default=False, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    schedule = relationship("Schedule", back_populates="executions")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("schedule_id", "notify_date", name="uq_notifications_schedule_notify_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    organization_id = Column(String(36), nullable=True, index=True)
    # NULL for system notices so they never collide with reminder keys
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=True, index=True)
    recipient_id = Column(String(36), nullable=True)
    channel = Column(String(20), default="dashboard", nullable=False)
    notify_date = Column(Date, nullable=False)
    state = Column(String(20), default="pending", nullable=False)  # pending, ready, sent, failed, cancelled
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    details = Column("metadata", JSON, default=dict, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ScheduleLog(Base):
    """Append-only audit trail of schedule status transitions"""

    __tablename__ = "schedule_logs"

    id = Column(String(36), primary_key=True, default=generate_id)
    schedule_id = Column(String(36), ForeignKey("schedules.id"), nullable=False, index=True)
    action = Column(String(100), nullable=False)  # status_change_<from>_to_<to>
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    changed_at = Column(DateTime, nullable=False, index=True)
    changed_by = Column(String(36), nullable=True)
    reason = Column(Text, nullable=True)
    details = Column("metadata", JSON, default=dict, nullable=True)

    schedule = relationship("Schedule", back_populates="logs")
