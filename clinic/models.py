"""
SQLAlchemy ORM models for the clinic core.

Defines the database schema for patients, services, appointments and the
inventory ledger.
"""
import enum
from datetime import datetime, timedelta

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, Time, event,
)

from .database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def display_name(self) -> str:
        return {"no_show": "No Show"}.get(self.value, self.value.title())


class Category(str, enum.Enum):
    MEDICINE = "medicine"
    SUPPLIES = "supplies"
    EQUIPMENT = "equipment"
    OTHER = "other"


class TransactionReason(str, enum.Enum):
    RESTOCK = "restock"
    PURCHASE = "purchase"
    RETURN = "return"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    USE = "use"
    PATIENT_USE = "patient_use"
    EXPIRED = "expired"
    DAMAGED = "damaged"
    LOST = "lost"
    ADJUSTMENT = "adjustment"
    OTHER = "other"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class Patient(Base):
    """
    Patient model, reduced to what scheduling needs.

    Attributes:
        id (int): Primary key
        name (str): Full name
        phone (str): Contact phone (optional)
        email (str): Contact email (optional)
        created_at (datetime): Timestamp when the patient was registered
    """
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(120), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Service(Base):
    """
    A bookable clinic service with its default duration.

    Attributes:
        id (int): Primary key
        name (str): Service name
        description (str): Free text description
        default_price (Decimal): Listed price
        duration_minutes (int): Default appointment length
        is_active (bool): Inactive services cannot be booked
    """
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    default_price = Column(Numeric(10, 2), nullable=False, default=0)
    duration_minutes = Column(Integer, nullable=False, default=30)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class Appointment(Base):
    """
    Appointment on the shared practice calendar.

    Attributes:
        id (int): Primary key
        patient_id (int): Patient being seen
        service_id (int): Booked service (optional)
        appointment_date (date): Calendar day
        start_time (time): Start of the slot
        duration_minutes (int): Length of the slot
        status (AppointmentStatus): Lifecycle state
        notes (str): Free text notes, also used for cancellation reasons
        created_at (datetime): When the appointment was booked
        updated_at (datetime): Last modification
    """
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=True)
    appointment_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=30)
    status = Column(
        Enum(AppointmentStatus, native_enum=False, length=20),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow)

    @property
    def end_time(self):
        start = datetime.combine(self.appointment_date, self.start_time)
        return (start + timedelta(minutes=self.duration_minutes)).time()


class InventoryItem(Base):
    """
    Inventory item. ``quantity`` caches the sum of the item's ledger entries
    and is written only by ``clinic.ledger``.

    Attributes:
        id (int): Primary key
        name (str): Item name
        category (Category): Item category
        quantity (int): Cached ledger sum
        unit (str): Unit of measure (e.g. "boxes", "ml")
        threshold (int): Reorder threshold
        cost_per_unit (Decimal): Unit cost
        supplier (str): Supplier name (optional)
        expiry_date (date): Expiry date (optional)
        notes (str): Free text notes
        updated_at (datetime): Last modification
    """
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    category = Column(Enum(Category, native_enum=False, length=20), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    unit = Column(String(30), nullable=False, default="pieces")
    threshold = Column(Integer, nullable=False, default=0)
    cost_per_unit = Column(Numeric(10, 2), nullable=False, default=0)
    supplier = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow)


class InventoryTransaction(Base):
    """
    Immutable ledger entry recording a signed change to an item's stock.

    Attributes:
        id (int): Primary key
        inventory_id (int): Item the entry belongs to
        quantity_change (int): Signed delta (positive adds, negative removes)
        reason (TransactionReason): Why the stock changed
        appointment_id (int): Appointment the removal is attributed to (optional)
        transaction_date (datetime): When the entry was recorded
        notes (str): Free text notes
    """
    __tablename__ = "inventory_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    inventory_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)
    quantity_change = Column(Integer, nullable=False)
    reason = Column(Enum(TransactionReason, native_enum=False, length=20), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True, index=True)
    transaction_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    @property
    def transaction_type(self) -> str:
        return "add" if self.quantity_change > 0 else "remove"


@event.listens_for(InventoryTransaction, "before_update")
@event.listens_for(InventoryTransaction, "before_delete")
def _reject_ledger_rewrite(mapper, connection, target):
    raise ValueError(f"Inventory transaction {target.id} is immutable")
