"""Schedule domain schemas - Pydantic models for records, options and API payloads"""

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import SyncError

ScheduleStatus = Literal["active", "paused", "completed", "cancelled"]
ExecutionStatus = Literal["planned", "completed", "skipped", "overdue"]
NotificationState = Literal["pending", "ready", "sent", "failed", "cancelled"]
ResumeStrategy = Literal["immediate", "next_cycle", "custom"]
MissedHandling = Literal["skip", "catch_up", "mark_overdue"]

SCHEDULE_STATUSES = ("active", "paused", "completed", "cancelled")


# ============================================================================
# STORE RECORDS (one schema per entity, built from ORM rows in the repository)
# ============================================================================


class ScheduleRecord(BaseModel):
    """Recurring task definition for one patient/item pair"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: Optional[str] = None
    patient_id: str
    item_id: str
    interval_weeks: int = Field(..., ge=1)
    start_date: date
    end_date: Optional[date] = None
    last_executed_date: Optional[date] = None
    next_due_date: date
    status: ScheduleStatus = "active"
    assigned_user_id: Optional[str] = None
    created_by: Optional[str] = None
    priority: int = 0
    requires_notification: bool = False
    notification_days_before: int = 1
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ExecutionRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    schedule_id: str
    planned_date: date
    executed_date: Optional[date] = None
    executed_by: Optional[str] = None
    status: ExecutionStatus = "planned"
    skipped_reason: Optional[str] = None
    is_catch_up: bool = False
    notes: Optional[str] = None


class NotificationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    schedule_id: Optional[str] = None
    recipient_id: Optional[str] = None
    channel: str = "dashboard"
    notify_date: date
    state: NotificationState = "pending"
    title: str
    message: Optional[str] = None
    error_message: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class TransitionLogEntry(BaseModel):
    """Audit trail entry; append-only"""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    schedule_id: str
    from_status: Optional[str] = None
    to_status: str
    transition_timestamp: datetime
    performed_by: Optional[str] = None
    reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# ENGINE RESULTS AND OPTIONS
# ============================================================================


class ValidationResult(BaseModel):
    is_valid: bool = False
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    required_actions: list[str] = Field(default_factory=list)


class DateValidation(BaseModel):
    is_valid: bool
    reason: Optional[str] = None


class MissedExecution(BaseModel):
    due_date: date
    weeks_overdue: int


class SyncResult(BaseModel):
    """Counts of dependent records touched plus the errors that were collected"""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    executions_updated: int = 0
    notifications_cancelled: int = 0
    notifications_created: int = 0
    errors: list[SyncError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def merge(self, other: "SyncResult") -> "SyncResult":
        self.executions_updated += other.executions_updated
        self.notifications_cancelled += other.notifications_cancelled
        self.notifications_created += other.notifications_created
        self.errors.extend(other.errors)
        return self

    def error_messages(self) -> list[str]:
        return [str(e) for e in self.errors]


class RequestContext(BaseModel):
    """Caller identity passed explicitly into each workflow"""

    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    role: Optional[str] = None


class PauseOptions(BaseModel):
    reason: Optional[str] = None
    notify_assignee: bool = False


class ResumeOptions(BaseModel):
    strategy: ResumeStrategy = "next_cycle"
    custom_date: Optional[date] = None
    handle_missed: MissedHandling = "skip"


class QueuedJob(BaseModel):
    """Background job requested by a workflow, enqueued best-effort by the caller"""

    function: str
    args: list[Any] = Field(default_factory=list)


class TransitionOutcome(BaseModel):
    schedule_id: str
    from_status: str
    to_status: str
    next_due_date: Optional[date] = None
    missed_executions: int = 0
    catch_up_executions: int = 0
    sync: SyncResult = Field(default_factory=SyncResult)
    queued_jobs: list[QueuedJob] = Field(default_factory=list)


class ScheduleCreate(BaseModel):
    """Schema for creating a new recurring schedule"""

    patient_id: str
    item_id: str
    interval_weeks: int = Field(..., ge=1, le=52)
    start_date: date
    end_date: Optional[date] = None
    assigned_user_id: Optional[str] = None
    priority: int = Field(0, ge=0, le=10)
    requires_notification: bool = False
    notification_days_before: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)

    @model_validator(mode="after")
    def validate_dates(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class ExecutionComplete(BaseModel):
    executed_date: date
    notes: Optional[str] = None


# ============================================================================
# API PAYLOADS (camelCase at the HTTP boundary)
# ============================================================================


class ScheduleCreateRequest(BaseModel):
    patientId: str
    itemId: str
    intervalWeeks: int
    startDate: date
    endDate: Optional[date] = None
    assignedUserId: Optional[str] = None
    priority: int = 0
    requiresNotification: bool = False
    notificationDaysBefore: Optional[int] = None
    notes: Optional[str] = None

    def to_create(self) -> ScheduleCreate:
        return ScheduleCreate(
            patient_id=self.patientId,
            item_id=self.itemId,
            interval_weeks=self.intervalWeeks,
            start_date=self.startDate,
            end_date=self.endDate,
            assigned_user_id=self.assignedUserId,
            priority=self.priority,
            requires_notification=self.requiresNotification,
            notification_days_before=self.notificationDaysBefore,
            notes=self.notes,
        )


class PauseRequest(BaseModel):
    reason: Optional[str] = None
    notifyAssignee: bool = False

    def to_options(self) -> PauseOptions:
        return PauseOptions(reason=self.reason, notify_assignee=self.notifyAssignee)


class ResumeRequest(BaseModel):
    strategy: ResumeStrategy = "next_cycle"
    customDate: Optional[date] = None
    handleMissed: MissedHandling = "skip"

    def to_options(self) -> ResumeOptions:
        return ResumeOptions(
            strategy=self.strategy, custom_date=self.customDate, handle_missed=self.handleMissed
        )


class StatusChangeRequest(BaseModel):
    reason: Optional[str] = None


class ExecutionCompleteRequest(BaseModel):
    executedDate: date
    notes: Optional[str] = None

    @field_validator("executedDate")
    @classmethod
    def validate_executed_date(cls, v):
        if v > date.today():
            raise ValueError("executedDate cannot be in the future")
        return v


class ScheduleResponse(BaseModel):
    id: str
    patientId: str
    itemId: str
    intervalWeeks: int
    startDate: date
    endDate: Optional[date]
    lastExecutedDate: Optional[date]
    nextDueDate: date
    status: str
    assignedUserId: Optional[str]
    priority: int
    requiresNotification: bool
    notificationDaysBefore: int
    remainingExecutions: Optional[int] = None
    updatedAt: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ScheduleRecord, remaining: Optional[int] = None) -> "ScheduleResponse":
        return cls(
            id=record.id,
            patientId=record.patient_id,
            itemId=record.item_id,
            intervalWeeks=record.interval_weeks,
            startDate=record.start_date,
            endDate=record.end_date,
            lastExecutedDate=record.last_executed_date,
            nextDueDate=record.next_due_date,
            status=record.status,
            assignedUserId=record.assigned_user_id,
            priority=record.priority,
            requiresNotification=record.requires_notification,
            notificationDaysBefore=record.notification_days_before,
            remainingExecutions=remaining,
            updatedAt=record.updated_at,
        )


class TransitionOutcomeResponse(BaseModel):
    scheduleId: str
    fromStatus: str
    toStatus: str
    nextDueDate: Optional[date] = None
    missedExecutions: int = 0
    catchUpExecutions: int = 0
    executionsUpdated: int = 0
    notificationsCancelled: int = 0
    notificationsCreated: int = 0
    syncErrors: list[str] = Field(default_factory=list)
    queuedJobs: list[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: TransitionOutcome) -> "TransitionOutcomeResponse":
        return cls(
            scheduleId=outcome.schedule_id,
            fromStatus=outcome.from_status,
            toStatus=outcome.to_status,
            nextDueDate=outcome.next_due_date,
            missedExecutions=outcome.missed_executions,
            catchUpExecutions=outcome.catch_up_executions,
            executionsUpdated=outcome.sync.executions_updated,
            notificationsCancelled=outcome.sync.notifications_cancelled,
            notificationsCreated=outcome.sync.notifications_created,
            syncErrors=outcome.sync.error_messages(),
            queuedJobs=[job.function for job in outcome.queued_jobs],
        )


class TransitionLogResponse(BaseModel):
    scheduleId: str
    fromStatus: Optional[str]
    toStatus: str
    transitionDate: datetime
    performedBy: Optional[str] = None
    reason: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ResumeSuggestionResponse(BaseModel):
    scheduleId: str
    strategy: ResumeStrategy
    pauseDurationWeeks: Optional[int] = None


class ExecutionResponse(BaseModel):
    id: Optional[str] = None
    plannedDate: date
    executedDate: Optional[date] = None
    status: str
    skippedReason: Optional[str] = None
    isCatchUp: bool = False
    notes: Optional[str] = None

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> "ExecutionResponse":
        return cls(
            id=record.id,
            plannedDate=record.planned_date,
            executedDate=record.executed_date,
            status=record.status,
            skippedReason=record.skipped_reason,
            isCatchUp=record.is_catch_up,
            notes=record.notes,
        )


class NotificationResponse(BaseModel):
    id: Optional[str] = None
    notifyDate: date
    state: str
    recipientId: Optional[str] = None
    channel: str
    title: str
    message: Optional[str] = None
    errorMessage: Optional[str] = None


class TransitionValidationResponse(BaseModel):
    fromStatus: str
    toStatus: str
    isValid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    requiredActions: list[str] = Field(default_factory=list)
