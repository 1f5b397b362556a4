"""
Pydantic schemas for the clinic core.

Request schemas validate shapes at the HTTP edge; read schemas are the values
the service façade hands back to callers.
"""
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import AppointmentStatus, Category, TransactionReason
from .stock_status import StockStatus


class PatientCreate(BaseModel):
    """Schema for registering a patient."""
    name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = None
    email: Optional[str] = None


class Patient(PatientCreate):
    id: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ServiceCreate(BaseModel):
    """Schema for creating a bookable service."""
    name: str = Field(..., min_length=1, max_length=100)
    duration_minutes: int = Field(30, description="Default appointment length")
    default_price: Decimal = Field(Decimal("0"), ge=0)
    description: Optional[str] = None
    is_active: bool = True


class Service(ServiceCreate):
    id: int

    class Config:
        from_attributes = True


class AppointmentCreate(BaseModel):
    """Schema for booking an appointment."""
    patient_id: int
    service_id: Optional[int] = None
    appointment_date: date
    start_time: time
    duration_minutes: Optional[int] = Field(None, description="Defaults to the service's duration, then 30")
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    """Schema for rescheduling or editing an appointment. All fields are optional."""
    model_config = ConfigDict(extra="forbid")

    patient_id: Optional[int] = None
    service_id: Optional[int] = None
    appointment_date: Optional[date] = None
    start_time: Optional[time] = None
    duration_minutes: Optional[int] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None


class AppointmentNote(BaseModel):
    """Reason or notes attached to a status change."""
    notes: Optional[str] = None


class Appointment(BaseModel):
    """
    Schema for appointment responses.

    Attributes:
        id (int): Appointment identifier
        patient_id (int): Patient being seen
        service_id (int): Booked service, if any
        appointment_date (date): Calendar day
        start_time (time): Start of the slot
        end_time (time): End of the slot (exclusive)
        duration_minutes (int): Slot length
        status (AppointmentStatus): Lifecycle state
        notes (str): Free text notes
    """
    id: int
    patient_id: int
    service_id: Optional[int] = None
    appointment_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    status: AppointmentStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_today: Optional[bool] = None
    is_past: Optional[bool] = None
    is_upcoming: Optional[bool] = None
    display_time: Optional[str] = None
    display_duration: Optional[str] = None
    day_label: Optional[str] = None

    class Config:
        from_attributes = True


class AppointmentStats(BaseModel):
    todays_appointments: int
    upcoming_appointments: int


class InventoryItemCreate(BaseModel):
    """Schema for creating an inventory item with an optional opening quantity."""
    name: str
    category: Category
    quantity: int = Field(0, ge=0, description="Opening quantity, booked as a restock entry")
    unit: str = "pieces"
    threshold: int = Field(0, ge=0)
    cost_per_unit: Optional[Decimal] = None
    supplier: Optional[str] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None


class InventoryItemUpdate(BaseModel):
    """Schema for editing an inventory item. Quantity is not editable here."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    category: Optional[Category] = None
    unit: Optional[str] = None
    threshold: Optional[int] = None
    cost_per_unit: Optional[Decimal] = None
    supplier: Optional[str] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None


class InventoryItem(BaseModel):
    """
    Schema for inventory item responses, including the derived status.
    """
    id: int
    name: str
    category: Category
    quantity: int
    unit: str
    threshold: int
    cost_per_unit: Decimal
    supplier: Optional[str] = None
    expiry_date: Optional[date] = None
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None
    status: Optional[StockStatus] = None

    class Config:
        from_attributes = True


class StockAdd(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: TransactionReason = TransactionReason.RESTOCK
    notes: Optional[str] = None


class StockRemove(BaseModel):
    quantity: int = Field(..., gt=0)
    reason: TransactionReason
    appointment_id: Optional[int] = None
    notes: Optional[str] = None


class StockAdjust(BaseModel):
    new_quantity: int = Field(..., ge=0)
    notes: Optional[str] = None


class StockResult(BaseModel):
    """Item after a stock operation plus the human-readable outcome."""
    item: InventoryItem
    message: str


class InventoryTransaction(BaseModel):
    id: int
    inventory_id: int
    transaction_type: str
    quantity_change: int
    reason: TransactionReason
    appointment_id: Optional[int] = None
    transaction_date: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class InventoryStats(BaseModel):
    total_items: int
    low_stock_count: int
    out_of_stock_count: int
    total_value: Decimal


class LedgerReconciliation(BaseModel):
    item_id: int
    cached_quantity: int
    ledger_quantity: int
    in_sync: bool
