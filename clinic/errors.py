"""
Exception hierarchy for the clinic core.

``ClinicError`` subclasses are expected business failures; the service façade
turns them into ``Failure`` results. ``InfrastructureError`` sits outside that
hierarchy and is raised to the caller when storage fails.
"""
import enum
from typing import List, Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    SCHEDULING_CONFLICT = "scheduling_conflict"
    INSUFFICIENT_STOCK = "insufficient_stock"
    HAS_HISTORY = "has_history"
    INFRASTRUCTURE = "infrastructure"


class ClinicError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(ClinicError):
    """Bad input attributable to a single field."""
    kind = ErrorKind.VALIDATION


class InvalidTransitionError(ValidationError):
    def __init__(self, old_status, new_status):
        super().__init__(
            f"Invalid status transition: {old_status.display_name} -> {new_status.display_name}",
            field="status",
        )
        self.old_status = old_status
        self.new_status = new_status


class NotFoundError(ClinicError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        super().__init__(f"{entity} not found.")
        self.entity = entity
        self.entity_id = entity_id


class SchedulingConflictError(ClinicError):
    kind = ErrorKind.SCHEDULING_CONFLICT

    def __init__(self, message: str, conflicts: List):
        super().__init__(message)
        self.conflicts = conflicts


class InsufficientStockError(ClinicError):
    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(self, available: int, requested: int, unit: str = ""):
        suffix = f" {unit}" if unit else ""
        super().__init__(
            f"Insufficient stock. Available: {available}{suffix}, Requested: {requested}{suffix}"
        )
        self.available = available
        self.requested = requested


class HasHistoryError(ClinicError):
    kind = ErrorKind.HAS_HISTORY


class InfrastructureError(Exception):
    """Storage unavailable or a unit of work failed to commit."""
    kind = ErrorKind.INFRASTRUCTURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
