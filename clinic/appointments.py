"""
Appointment lifecycle: booking, rescheduling and status changes.

Every function runs inside a caller-owned session that represents one unit of
work. Failures raise ``ClinicError`` subclasses and leave the session to be
rolled back by its owner.
"""
import logging
from datetime import date, datetime, time
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from . import config, crud, models, validators
from .conflicts import find_conflicts
from .errors import (
    HasHistoryError, InvalidTransitionError, NotFoundError, SchedulingConflictError, ValidationError,
)
from .models import AppointmentStatus
from .timeutils import format_time, is_weekday, is_within_business_hours

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "patient_id", "service_id", "appointment_date", "start_time",
    "duration_minutes", "status", "notes",
)


def _check(result: Tuple[bool, str], field: str) -> None:
    is_valid, message = result
    if not is_valid:
        raise ValidationError(message, field=field)


def _ensure_transition(old_status: AppointmentStatus, new_status: AppointmentStatus) -> None:
    is_valid, _ = validators.validate_status_transition(old_status, new_status)
    if not is_valid:
        raise InvalidTransitionError(old_status, new_status)


def load_appointment(db: Session, appointment_id: int, for_update: bool = False) -> models.Appointment:
    if for_update:
        appointment = crud.get_appointment_for_update(db, appointment_id)
    else:
        appointment = crud.get_appointment(db, appointment_id)
    if appointment is None:
        raise NotFoundError("Appointment", appointment_id)
    return appointment


def _validate_references(db: Session, patient_id: Optional[int], service_id: Optional[int]) -> Optional[models.Service]:
    if patient_id is None:
        raise ValidationError("Patient is required.", field="patient_id")
    if crud.get_patient(db, patient_id) is None:
        raise NotFoundError("Patient", patient_id)

    if service_id is None:
        return None
    service = crud.get_service(db, service_id)
    if service is None:
        raise NotFoundError("Service", service_id)
    if not service.is_active:
        raise ValidationError("Selected service is not active.", field="service_id")
    return service


def resolve_duration(duration_minutes: Optional[int],
                     service: Optional[models.Service],
                     fallback: int = config.DEFAULT_APPOINTMENT_DURATION) -> int:
    """Explicit duration wins, then the service's default, then ``fallback``."""
    if duration_minutes is not None:
        return duration_minutes
    if service is not None:
        return service.duration_minutes
    return fallback


def _validate_slot(day: Optional[date], start_time: Optional[time], duration_minutes: int,
                   now: datetime, check_past: bool = True) -> None:
    if check_past:
        _check(validators.validate_appointment_date(day, now), "appointment_date")
        _check(validators.validate_appointment_time(day, start_time, now), "start_time")
    else:
        if day is None:
            raise ValidationError("Appointment date is required.", field="appointment_date")
        if start_time is None:
            raise ValidationError("Appointment time is required.", field="start_time")
    _check(validators.validate_duration(duration_minutes), "duration_minutes")
    _check(validators.validate_same_day(start_time, duration_minutes), "duration_minutes")


def ensure_slot_free(db: Session, day: date, start_time: time, duration_minutes: int,
                     exclude_id: Optional[int] = None) -> None:
    """
    Raise ``SchedulingConflictError`` when the slot overlaps any active appointment.

    The message names the earliest conflicting appointment; the error carries
    the full list.
    """
    conflicts = find_conflicts(db, day, start_time, duration_minutes, exclude_id=exclude_id)
    if conflicts:
        raise SchedulingConflictError(
            f"Appointment conflicts with existing appointment at {format_time(conflicts[0].start_time)}",
            conflicts,
        )


def create_appointment(db: Session,
                       now: datetime,
                       patient_id: int,
                       appointment_date: date,
                       start_time: time,
                       service_id: Optional[int] = None,
                       duration_minutes: Optional[int] = None,
                       notes: Optional[str] = None) -> models.Appointment:
    """
    Book a new appointment in the ``Scheduled`` state.

    Args:
        db: Database session
        now: Current moment, used for the past-date rule
        patient_id: Patient being booked
        appointment_date: Calendar day
        start_time: Start of the slot
        service_id: Booked service (optional)
        duration_minutes: Explicit length (optional)
        notes: Free text notes

    Returns:
        The persisted Appointment

    Raises:
        ValidationError, NotFoundError, SchedulingConflictError
    """
    service = _validate_references(db, patient_id, service_id)
    duration = resolve_duration(duration_minutes, service)
    _validate_slot(appointment_date, start_time, duration, now)

    crud.lock_calendar_day(db, appointment_date)
    ensure_slot_free(db, appointment_date, start_time, duration)

    appointment = crud.add_appointment(db, models.Appointment(
        patient_id=patient_id,
        service_id=service_id,
        appointment_date=appointment_date,
        start_time=start_time,
        duration_minutes=duration,
        status=AppointmentStatus.SCHEDULED,
        notes=notes,
        created_at=now,
        updated_at=now,
    ))
    logger.info(
        f"Booked appointment {appointment.id} for patient {patient_id} on "
        f"{appointment_date.isoformat()} at {format_time(start_time)} ({duration} min)"
    )
    if not is_within_business_hours(start_time) or not is_weekday(appointment_date):
        logger.info(f"Appointment {appointment.id} is outside business hours")
    return appointment


def update_appointment(db: Session, now: datetime, appointment_id: int,
                       changes: Dict[str, Any]) -> models.Appointment:
    """
    Reschedule or edit an appointment.

    Only keys present in ``changes`` are modified. The merged record is
    validated as a new booking would be and checked for conflicts against
    every other appointment.

    Args:
        db: Database session
        now: Current moment
        appointment_id: Appointment to change
        changes: Field values to apply (see ``UPDATABLE_FIELDS``)

    Returns:
        The updated Appointment
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"Field '{field}' cannot be updated.", field=field)

    appointment = load_appointment(db, appointment_id, for_update=True)

    patient_id = changes.get("patient_id", appointment.patient_id)
    service_id = changes.get("service_id", appointment.service_id)
    day = changes.get("appointment_date", appointment.appointment_date)
    start_time = changes.get("start_time", appointment.start_time)
    status = changes.get("status") or appointment.status
    notes = changes.get("notes", appointment.notes)

    _ensure_transition(appointment.status, status)

    service = _validate_references(db, patient_id, service_id)
    # A newly chosen service brings its default length; otherwise the booking keeps its own
    duration = resolve_duration(
        changes.get("duration_minutes"),
        service if "service_id" in changes else None,
        fallback=appointment.duration_minutes,
    )
    # Only a booking that is still expected to happen must lie in the future
    _validate_slot(day, start_time, duration, now, check_past=status == AppointmentStatus.SCHEDULED)

    crud.lock_calendar_day(db, day)
    if status != AppointmentStatus.CANCELLED:
        ensure_slot_free(db, day, start_time, duration, exclude_id=appointment.id)

    appointment.patient_id = patient_id
    appointment.service_id = service_id
    appointment.appointment_date = day
    appointment.start_time = start_time
    appointment.duration_minutes = duration
    appointment.status = status
    appointment.notes = notes
    appointment.updated_at = now
    db.flush()
    logger.info(f"Updated appointment {appointment.id}")
    return appointment


def _transition(db: Session, now: datetime, appointment_id: int,
                new_status: AppointmentStatus, notes: Optional[str]) -> models.Appointment:
    appointment = load_appointment(db, appointment_id, for_update=True)
    _ensure_transition(appointment.status, new_status)

    old_status = appointment.status
    appointment.status = new_status
    appointment.notes = notes
    appointment.updated_at = now
    db.flush()
    logger.info(
        f"Appointment {appointment.id} status changed from '{old_status.value}' to '{new_status.value}'"
    )
    return appointment


def cancel_appointment(db: Session, now: datetime, appointment_id: int,
                       reason: Optional[str] = None) -> models.Appointment:
    """Cancel an appointment, storing the reason in its notes. Cancelling twice is allowed."""
    return _transition(db, now, appointment_id, AppointmentStatus.CANCELLED, reason)


def complete_appointment(db: Session, now: datetime, appointment_id: int,
                         notes: Optional[str] = None) -> models.Appointment:
    return _transition(db, now, appointment_id, AppointmentStatus.COMPLETED, notes)


def mark_no_show(db: Session, now: datetime, appointment_id: int,
                 notes: Optional[str] = None) -> models.Appointment:
    return _transition(db, now, appointment_id, AppointmentStatus.NO_SHOW, notes)


def delete_appointment(db: Session, appointment_id: int) -> None:
    """
    Delete an appointment that no ledger entry refers to.

    Raises:
        NotFoundError: The appointment does not exist
        HasHistoryError: Inventory transactions are attributed to it
    """
    appointment = load_appointment(db, appointment_id, for_update=True)
    if crud.appointment_has_transactions(db, appointment_id):
        raise HasHistoryError(
            "Cannot delete appointment with inventory usage recorded against it. "
            "Consider cancelling it instead."
        )
    crud.delete_appointment(db, appointment)
    logger.info(f"Deleted appointment {appointment_id}")
