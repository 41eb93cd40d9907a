"""Schedule lifecycle errors"""

from typing import Optional


class LifecycleError(Exception):
    """Base class for schedule lifecycle failures"""

    pass


class ValidationError(LifecycleError):
    """Raised before any write when a transition, date or option is not acceptable"""

    def __init__(self, message: str, reasons: Optional[list[str]] = None):
        super().__init__(message)
        self.reasons = reasons or [message]


class NotFoundError(LifecycleError):
    """Raised when a referenced schedule does not exist"""

    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class SyncError(LifecycleError):
    """
    A dependent-record write (execution/notification) failed.
    Collected into SyncResult.errors, never raised by the synchronizer.
    """

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


class PersistenceError(LifecycleError):
    """The store failed on the primary schedule read/write; aborts the workflow"""

    pass
