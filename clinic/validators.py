"""
Business rule validation for appointments and inventory items.

Each validator returns ``(is_valid, error_message)``; callers decide which
field a failure is attributed to.
"""
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional, Tuple

from . import config
from .models import AppointmentStatus
from .timeutils import TimeRange, is_in_past

# Scheduled is the only state that can move; the others are terminal
VALID_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: [
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    ],
    AppointmentStatus.COMPLETED: [],
    AppointmentStatus.CANCELLED: [],
    AppointmentStatus.NO_SHOW: [],
}


def validate_appointment_date(day: Optional[date], now: datetime) -> Tuple[bool, str]:
    if day is None:
        return False, "Appointment date is required."
    if day < now.date():
        return False, "Appointment date cannot be in the past."
    return True, ""


def validate_appointment_time(day: date, start_time: Optional[time], now: datetime) -> Tuple[bool, str]:
    if start_time is None:
        return False, "Appointment time is required."
    if is_in_past(day, start_time, now):
        return False, "Appointment time cannot be in the past."
    return True, ""


def validate_duration(duration_minutes: int) -> Tuple[bool, str]:
    """
    Validate an appointment length.

    Args:
        duration_minutes: Requested length in minutes

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not config.MIN_APPOINTMENT_DURATION <= duration_minutes <= config.MAX_APPOINTMENT_DURATION:
        return False, "Duration must be between 5 minutes and 8 hours."
    return True, ""


def validate_same_day(start_time: time, duration_minutes: int) -> Tuple[bool, str]:
    if not TimeRange.from_slot(start_time, duration_minutes).ends_same_day:
        return False, "Appointment must end on the same day it starts."
    return True, ""


def validate_status_transition(old_status: AppointmentStatus,
                               new_status: AppointmentStatus) -> Tuple[bool, str]:
    """
    Validate that a status transition is allowed.

    Args:
        old_status: Current appointment status
        new_status: Requested appointment status

    Returns:
        Tuple of (is_valid, error_message)
    """
    if old_status == new_status:
        return True, ""  # Re-writing the same state is allowed

    if new_status not in VALID_TRANSITIONS[old_status]:
        return False, (
            f"Invalid status transition: {old_status.display_name} -> {new_status.display_name}"
        )

    return True, ""


def validate_item_name(name: Optional[str]) -> Tuple[bool, str]:
    if name is None or not name.strip():
        return False, "Item name is required."
    if len(name.strip()) < 2:
        return False, "Item name must be at least 2 characters long."
    if len(name.strip()) > 100:
        return False, "Item name must be less than 100 characters."
    return True, ""


def validate_unit(unit: Optional[str]) -> Tuple[bool, str]:
    if unit is None or not unit.strip():
        return False, "Unit is required."
    return True, ""


def validate_threshold(threshold: Optional[int]) -> Tuple[bool, str]:
    if threshold is None:
        return False, "Threshold is required."
    if threshold < 0:
        return False, "Threshold cannot be negative."
    return True, ""


def validate_cost(cost_per_unit: Optional[Decimal]) -> Tuple[bool, str]:
    if cost_per_unit is not None and cost_per_unit < 0:
        return False, "Cost per unit cannot be negative."
    return True, ""


def validate_expiry_date(expiry_date: Optional[date], today: date) -> Tuple[bool, str]:
    if expiry_date is not None and expiry_date < today:
        return False, "Expiry date cannot be in the past."
    return True, ""


def validate_positive_quantity(quantity: int, action: str) -> Tuple[bool, str]:
    if quantity <= 0:
        return False, f"Quantity to {action} must be greater than 0."
    return True, ""
