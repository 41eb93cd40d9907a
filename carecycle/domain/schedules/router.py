"""Schedule router - FastAPI endpoints for the schedule lifecycle"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ...database import get_db
from ...job_queue import enqueue_jobs
from .lifecycle_service import LifecycleManager
from .repository import ScheduleStore
from .schemas import (
    ExecutionComplete,
    ExecutionCompleteRequest,
    ExecutionResponse,
    NotificationResponse,
    PauseRequest,
    RequestContext,
    ResumeRequest,
    ResumeSuggestionResponse,
    ScheduleCreateRequest,
    ScheduleResponse,
    StatusChangeRequest,
    TransitionLogResponse,
    TransitionOutcomeResponse,
    TransitionValidationResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schedules", tags=["Schedules"])


def get_lifecycle_manager(db: Session = Depends(get_db)) -> LifecycleManager:
    """Dependency injection for LifecycleManager"""
    return LifecycleManager(ScheduleStore(db))


def get_request_context(
    x_user_id: Optional[str] = Header(None),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
) -> RequestContext:
    """Caller identity from the X-User-ID header, resolved to its organization and role"""
    if not x_user_id:
        return RequestContext()
    return RequestContext(
        user_id=x_user_id,
        organization_id=manager.store.fetch_tenant_context(x_user_id),
        role=manager.store.fetch_user_role(x_user_id),
    )


def _schedule_response(manager: LifecycleManager, schedule_id: str) -> ScheduleResponse:
    schedule = manager.get_schedule(schedule_id)
    return ScheduleResponse.from_record(schedule, manager.get_remaining_executions(schedule))


# ============================================================================
# SCHEDULES
# ============================================================================


@router.post("", response_model=ScheduleResponse, status_code=201)
async def create_schedule(
    data: ScheduleCreateRequest,
    context: RequestContext = Depends(get_request_context),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Create an active recurring schedule"""
    try:
        create = data.to_create()
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()]) from e

    schedule = manager.create_schedule(create, context)
    return ScheduleResponse.from_record(schedule, manager.get_remaining_executions(schedule))


@router.get("/transitions/validate", response_model=TransitionValidationResponse)
async def validate_transition(
    from_status: str = Query(..., alias="from"),
    to_status: str = Query(..., alias="to"),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Check a status change against the transition graph without touching any schedule"""
    result = manager.validate_transition(from_status, to_status)
    return TransitionValidationResponse(
        fromStatus=from_status,
        toStatus=to_status,
        isValid=result.is_valid,
        errors=result.errors,
        warnings=result.warnings,
        requiredActions=result.required_actions,
    )


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    return _schedule_response(manager, schedule_id)


# ============================================================================
# STATUS TRANSITIONS
# ============================================================================


@router.post("/{schedule_id}/pause", response_model=TransitionOutcomeResponse)
async def pause_schedule(
    schedule_id: str,
    data: Optional[PauseRequest] = None,
    context: RequestContext = Depends(get_request_context),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Pause an active schedule; optionally queue a notice to the assignee"""
    options = (data or PauseRequest()).to_options()
    outcome = manager.pause_schedule(schedule_id, options, context)

    # Notice is fire-and-forget; the pause is already committed
    await enqueue_jobs(outcome.queued_jobs)

    return TransitionOutcomeResponse.from_outcome(outcome)


@router.post("/{schedule_id}/resume", response_model=TransitionOutcomeResponse)
async def resume_schedule(
    schedule_id: str,
    data: Optional[ResumeRequest] = None,
    context: RequestContext = Depends(get_request_context),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Resume a paused schedule with the requested strategy and missed-occurrence handling"""
    options = (data or ResumeRequest()).to_options()
    outcome = manager.resume_schedule(schedule_id, options, context)
    return TransitionOutcomeResponse.from_outcome(outcome)


@router.post("/{schedule_id}/complete", response_model=TransitionOutcomeResponse)
async def complete_schedule(
    schedule_id: str,
    data: Optional[StatusChangeRequest] = None,
    context: RequestContext = Depends(get_request_context),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    reason = data.reason if data else None
    outcome = manager.complete_schedule(schedule_id, reason, context)
    return TransitionOutcomeResponse.from_outcome(outcome)


@router.post("/{schedule_id}/cancel", response_model=TransitionOutcomeResponse)
async def cancel_schedule(
    schedule_id: str,
    data: Optional[StatusChangeRequest] = None,
    context: RequestContext = Depends(get_request_context),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    reason = data.reason if data else None
    outcome = manager.cancel_schedule(schedule_id, reason, context)
    return TransitionOutcomeResponse.from_outcome(outcome)


@router.post("/{schedule_id}/reconcile", response_model=TransitionOutcomeResponse)
async def reconcile_schedule(
    schedule_id: str,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Re-synchronize executions and notifications with the schedule's status"""
    outcome = manager.reconcile_schedule(schedule_id)
    return TransitionOutcomeResponse.from_outcome(outcome)


# ============================================================================
# EXECUTIONS, NOTIFICATIONS, HISTORY
# ============================================================================


@router.post("/{schedule_id}/executions/complete", response_model=TransitionOutcomeResponse)
async def complete_execution(
    schedule_id: str,
    data: ExecutionCompleteRequest,
    context: RequestContext = Depends(get_request_context),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Record the execution due on the schedule's next due date"""
    outcome = manager.record_execution(
        schedule_id, ExecutionComplete(executed_date=data.executedDate, notes=data.notes), context
    )
    return TransitionOutcomeResponse.from_outcome(outcome)


@router.get("/{schedule_id}/executions", response_model=list[ExecutionResponse])
async def list_executions(
    schedule_id: str,
    status: Optional[str] = Query(None),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    manager.get_schedule(schedule_id)
    executions = manager.store.list_executions(schedule_id, status)
    return [ExecutionResponse.from_record(e) for e in executions]


@router.get("/{schedule_id}/notifications", response_model=list[NotificationResponse])
async def list_notifications(
    schedule_id: str,
    state: Optional[str] = Query(None),
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    manager.get_schedule(schedule_id)
    notifications = manager.store.list_notifications(schedule_id, state)
    return [
        NotificationResponse(
            id=n.id,
            notifyDate=n.notify_date,
            state=n.state,
            recipientId=n.recipient_id,
            channel=n.channel,
            title=n.title,
            message=n.message,
            errorMessage=n.error_message,
        )
        for n in notifications
    ]


@router.get("/{schedule_id}/history", response_model=list[TransitionLogResponse])
async def get_history(
    schedule_id: str,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    """Status transition log, newest first"""
    return [
        TransitionLogResponse(
            scheduleId=entry.schedule_id,
            fromStatus=entry.from_status,
            toStatus=entry.to_status,
            transitionDate=entry.transition_timestamp,
            performedBy=entry.performed_by,
            reason=entry.reason,
            metadata=entry.metadata,
        )
        for entry in manager.get_state_transition_history(schedule_id)
    ]


@router.get("/{schedule_id}/resume-suggestion", response_model=ResumeSuggestionResponse)
async def get_resume_suggestion(
    schedule_id: str,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
):
    schedule = manager.get_schedule(schedule_id)
    return ResumeSuggestionResponse(
        scheduleId=schedule_id,
        strategy=manager.suggest_resume_strategy(schedule),
        pauseDurationWeeks=manager.get_pause_duration(schedule),
    )
