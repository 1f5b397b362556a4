"""
Time-slot conflict detection for the shared practice calendar.
"""
from datetime import date, time
from typing import List, Optional

from sqlalchemy.orm import Session

from . import crud, models
from .timeutils import TimeRange


def slot_of(appointment: models.Appointment) -> TimeRange:
    return TimeRange.from_slot(appointment.start_time, appointment.duration_minutes)


def find_conflicts(db: Session,
                   day: date,
                   start_time: time,
                   duration_minutes: int,
                   exclude_id: Optional[int] = None) -> List[models.Appointment]:
    """
    Find every non-cancelled appointment overlapping a proposed slot.

    Args:
        db: Database session
        day: Calendar day of the proposed slot
        start_time: Proposed start
        duration_minutes: Proposed length
        exclude_id: Appointment to ignore, normally the one being edited

    Returns:
        All conflicting appointments ordered by start time (empty if the slot is free)
    """
    proposed = TimeRange.from_slot(start_time, duration_minutes)
    return [
        appointment
        for appointment in crud.get_active_appointments_on(db, day, exclude_id=exclude_id)
        if proposed.overlaps(slot_of(appointment))
    ]


def conflicts_with(first: models.Appointment, second: models.Appointment) -> bool:
    """Two appointments conflict when they share a day and their slots overlap."""
    if first.appointment_date != second.appointment_date:
        return False
    return slot_of(first).overlaps(slot_of(second))
