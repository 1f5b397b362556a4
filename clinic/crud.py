"""
Database operations for the clinic core.

Functions here read and write rows inside a caller-provided session and never
commit: the unit of work that owns the session decides when to commit or roll
back. Writes ``flush`` so generated ids are available immediately.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import and_, case, func, or_, text
from sqlalchemy.orm import Session

from . import config, models

ACTIVE_STATUSES = [
    models.AppointmentStatus.SCHEDULED,
    models.AppointmentStatus.COMPLETED,
    models.AppointmentStatus.NO_SHOW,
]


# ---------------------------------------------------------------- patients

def get_patient(db: Session, patient_id: int) -> Optional[models.Patient]:
    return db.query(models.Patient).filter(models.Patient.id == patient_id).first()


def create_patient(db: Session, name: str, phone: Optional[str] = None,
                   email: Optional[str] = None) -> models.Patient:
    db_patient = models.Patient(name=name, phone=phone, email=email)
    db.add(db_patient)
    db.flush()
    return db_patient


# ---------------------------------------------------------------- services

def get_service(db: Session, service_id: int) -> Optional[models.Service]:
    return db.query(models.Service).filter(models.Service.id == service_id).first()


def get_active_services(db: Session) -> List[models.Service]:
    return (
        db.query(models.Service)
        .filter(models.Service.is_active.is_(True))
        .order_by(models.Service.name)
        .all()
    )


def create_service(db: Session, name: str, duration_minutes: int,
                   default_price: Decimal = Decimal("0"), description: Optional[str] = None,
                   is_active: bool = True) -> models.Service:
    db_service = models.Service(
        name=name,
        description=description,
        default_price=default_price,
        duration_minutes=duration_minutes,
        is_active=is_active,
    )
    db.add(db_service)
    db.flush()
    return db_service


# ------------------------------------------------------------ appointments

def _ordered_appointments(db: Session):
    return db.query(models.Appointment).order_by(
        models.Appointment.appointment_date, models.Appointment.start_time, models.Appointment.id
    )


def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    """
    Retrieve a single appointment by ID.

    Args:
        db: Database session
        appointment_id: ID of the appointment to retrieve

    Returns:
        Appointment object or None if not found
    """
    return db.query(models.Appointment).filter(models.Appointment.id == appointment_id).first()


def get_appointment_for_update(db: Session, appointment_id: int) -> Optional[models.Appointment]:
    return (
        db.query(models.Appointment)
        .filter(models.Appointment.id == appointment_id)
        .with_for_update()
        .first()
    )


def get_appointments(db: Session, skip: int = 0, limit: int = 100) -> List[models.Appointment]:
    return _ordered_appointments(db).offset(skip).limit(limit).all()


def get_appointments_by_date(db: Session, day: date) -> List[models.Appointment]:
    return _ordered_appointments(db).filter(models.Appointment.appointment_date == day).all()


def get_active_appointments_on(db: Session, day: date,
                               exclude_id: Optional[int] = None) -> List[models.Appointment]:
    """
    Retrieve every non-cancelled appointment on a calendar day.

    Args:
        db: Database session
        day: Calendar day
        exclude_id: Appointment to leave out (the one being edited)

    Returns:
        List of Appointment objects ordered by start time
    """
    query = _ordered_appointments(db).filter(
        models.Appointment.appointment_date == day,
        models.Appointment.status.in_(ACTIVE_STATUSES),
    )
    if exclude_id is not None:
        query = query.filter(models.Appointment.id != exclude_id)
    return query.all()


def get_appointments_by_patient(db: Session, patient_id: int) -> List[models.Appointment]:
    return _ordered_appointments(db).filter(models.Appointment.patient_id == patient_id).all()


def get_appointments_by_date_range(db: Session, start: date, end: date) -> List[models.Appointment]:
    return _ordered_appointments(db).filter(
        models.Appointment.appointment_date >= start,
        models.Appointment.appointment_date <= end,
    ).all()


def count_appointments_on(db: Session, day: date) -> int:
    return db.query(func.count(models.Appointment.id)).filter(
        models.Appointment.appointment_date == day,
        models.Appointment.status != models.AppointmentStatus.CANCELLED,
    ).scalar()


def count_upcoming_appointments(db: Session, now: datetime) -> int:
    """Count scheduled appointments that start after ``now``."""
    today = now.date()
    return db.query(func.count(models.Appointment.id)).filter(
        models.Appointment.status == models.AppointmentStatus.SCHEDULED,
        or_(
            models.Appointment.appointment_date > today,
            and_(
                models.Appointment.appointment_date == today,
                models.Appointment.start_time > now.time(),
            ),
        ),
    ).scalar()


def add_appointment(db: Session, appointment: models.Appointment) -> models.Appointment:
    db.add(appointment)
    db.flush()
    return appointment


def delete_appointment(db: Session, appointment: models.Appointment) -> None:
    db.delete(appointment)
    db.flush()


def appointment_has_transactions(db: Session, appointment_id: int) -> bool:
    return db.query(
        db.query(models.InventoryTransaction)
        .filter(models.InventoryTransaction.appointment_id == appointment_id)
        .exists()
    ).scalar()


def lock_calendar_day(db: Session, day: date) -> None:
    """
    Serialize scheduling writes for one calendar day across processes.

    On PostgreSQL this takes a transaction-scoped advisory lock keyed by the
    day's ordinal; it is released on commit or rollback. Other backends rely
    on the in-process ``KeyedLock``.
    """
    if db.get_bind().dialect.name == "postgresql":
        db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": day.toordinal()})


# --------------------------------------------------------------- inventory

def get_inventory_item(db: Session, item_id: int) -> Optional[models.InventoryItem]:
    """
    Retrieve a single inventory item by ID.

    Args:
        db: Database session
        item_id: ID of the inventory item to retrieve

    Returns:
        InventoryItem object or None if not found
    """
    return db.query(models.InventoryItem).filter(models.InventoryItem.id == item_id).first()


def get_inventory_item_for_update(db: Session, item_id: int) -> Optional[models.InventoryItem]:
    """Retrieve an inventory item with a row lock held until the transaction ends."""
    return (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.id == item_id)
        .with_for_update()
        .first()
    )


def get_inventory_items(db: Session, skip: int = 0, limit: int = 100) -> List[models.InventoryItem]:
    """
    Retrieve a list of inventory items with pagination.

    Args:
        db: Database session
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return

    Returns:
        List of InventoryItem objects ordered by name
    """
    return (
        db.query(models.InventoryItem)
        .order_by(models.InventoryItem.name)
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_inventory_items_by_category(db: Session, category: models.Category) -> List[models.InventoryItem]:
    return (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.category == category)
        .order_by(models.InventoryItem.name)
        .all()
    )


def search_inventory_items(db: Session, term: str) -> List[models.InventoryItem]:
    pattern = f"%{term.lower()}%"
    return (
        db.query(models.InventoryItem)
        .filter(or_(
            func.lower(models.InventoryItem.name).like(pattern),
            func.lower(models.InventoryItem.supplier).like(pattern),
        ))
        .order_by(models.InventoryItem.name)
        .all()
    )


def get_low_stock_items(db: Session) -> List[models.InventoryItem]:
    return (
        db.query(models.InventoryItem)
        .filter(models.InventoryItem.quantity <= models.InventoryItem.threshold)
        .order_by(models.InventoryItem.quantity)
        .all()
    )


def get_expired_items(db: Session, today: date) -> List[models.InventoryItem]:
    return (
        db.query(models.InventoryItem)
        .filter(
            models.InventoryItem.expiry_date.isnot(None),
            models.InventoryItem.expiry_date < today,
        )
        .order_by(models.InventoryItem.expiry_date)
        .all()
    )


def get_items_expiring_soon(db: Session, today: date,
                            days: int = config.EXPIRING_SOON_DAYS) -> List[models.InventoryItem]:
    return (
        db.query(models.InventoryItem)
        .filter(
            models.InventoryItem.expiry_date >= today,
            models.InventoryItem.expiry_date < today + timedelta(days=days),
        )
        .order_by(models.InventoryItem.expiry_date)
        .all()
    )


def add_inventory_item(db: Session, item: models.InventoryItem) -> models.InventoryItem:
    db.add(item)
    db.flush()
    return item


def delete_inventory_item(db: Session, item: models.InventoryItem) -> None:
    db.delete(item)
    db.flush()


def item_has_transactions(db: Session, item_id: int) -> bool:
    return db.query(
        db.query(models.InventoryTransaction)
        .filter(models.InventoryTransaction.inventory_id == item_id)
        .exists()
    ).scalar()


def add_transaction(db: Session, transaction: models.InventoryTransaction) -> models.InventoryTransaction:
    db.add(transaction)
    db.flush()
    return transaction


def get_transactions_by_item(db: Session, item_id: int) -> List[models.InventoryTransaction]:
    return (
        db.query(models.InventoryTransaction)
        .filter(models.InventoryTransaction.inventory_id == item_id)
        .order_by(models.InventoryTransaction.transaction_date.desc(), models.InventoryTransaction.id.desc())
        .all()
    )


def get_recent_transactions(db: Session, limit: int = 20) -> List[models.InventoryTransaction]:
    return (
        db.query(models.InventoryTransaction)
        .order_by(models.InventoryTransaction.transaction_date.desc(), models.InventoryTransaction.id.desc())
        .limit(limit)
        .all()
    )


def ledger_sum(db: Session, item_id: int) -> int:
    """Sum of every ledger entry for an item; the authoritative quantity."""
    return db.query(
        func.coalesce(func.sum(models.InventoryTransaction.quantity_change), 0)
    ).filter(models.InventoryTransaction.inventory_id == item_id).scalar()


def get_inventory_statistics(db: Session) -> dict:
    """
    Aggregate inventory figures.

    Returns:
        dict with total_items, low_stock_count, out_of_stock_count and total_value
    """
    item = models.InventoryItem
    row = db.query(
        func.count(item.id),
        func.coalesce(func.sum(case((item.quantity <= item.threshold, 1), else_=0)), 0),
        func.coalesce(func.sum(case((item.quantity <= 0, 1), else_=0)), 0),
        func.coalesce(func.sum(item.quantity * item.cost_per_unit), 0),
    ).one()
    return {
        "total_items": int(row[0]),
        "low_stock_count": int(row[1]),
        "out_of_stock_count": int(row[2]),
        "total_value": Decimal(str(row[3])).quantize(Decimal("0.01")),
    }
