"""
Service façade for the clinic core.

Every public method runs one unit of work and returns a ``Result``:
``Success`` carrying read schemas plus a display message, or ``Failure``
carrying the error kind, message and offending field. Expected business
failures never raise. Storage failures roll the unit of work back and raise
``InfrastructureError`` so callers can tell "your input was rejected" from
"the system is broken".
"""
import logging
from datetime import date, time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import appointments, crud, ledger, models, schemas, validators
from .cache import INVENTORY_STATS_GENERATION_KEY, INVENTORY_STATS_KEY, Cache
from .config import STATS_CACHE_TTL
from .database import Database
from .errors import ClinicError, InfrastructureError, NotFoundError, ValidationError
from .locks import KeyedLock, appointment_key, calendar_day_key, inventory_item_key
from .models import Category, TransactionReason
from .result import Failure, Result, Success
from .stock_status import derive_status
from .timeutils import (
    Clock, format_duration, format_time, is_past, is_today, is_upcoming, relative_day_label, system_clock,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Attempts at locking the right calendar day when an appointment moves concurrently
MAX_LOCK_ATTEMPTS = 3


class _StaleLock(Exception):
    """The appointment changed day between choosing lock keys and taking them."""


def _stock_keys(item_id: int, appointment_id: Optional[int] = None) -> List[str]:
    # Attributed usage also excludes deletion of the appointment it points at
    keys = [inventory_item_key(item_id)]
    if appointment_id is not None:
        keys.append(appointment_key(appointment_id))
    return keys


class ClinicService:
    """
    Orchestrates scheduling and inventory operations.

    Args:
        database: Storage handle, opened and disposed by the owner
        clock: Source of the current local datetime
        locks: Keyed lock registry shared by every caller of this process
        cache: Statistics cache (disabled when omitted)
    """

    def __init__(self,
                 database: Database,
                 clock: Clock = system_clock,
                 locks: Optional[KeyedLock] = None,
                 cache: Optional[Cache] = None):
        self.database = database
        self.clock = clock
        self.locks = locks or KeyedLock()
        self.cache = cache or Cache(None)

    # ------------------------------------------------------------ plumbing

    def _run(self, action: str, operation: Callable[[Session], Result],
             keys: Sequence[str] = (), invalidates_stats: bool = False) -> Result:
        try:
            with self.locks.hold(*keys):
                with self.database.session_scope() as db:
                    result = operation(db)
        except ClinicError as e:
            logger.warning(f"{action} rejected ({e.kind.value}): {e.message}")
            return Failure.from_error(e)
        except SQLAlchemyError as e:
            logger.error(f"{action} failed, unit of work rolled back: {e}")
            raise InfrastructureError(f"Database error during {action}: {e}") from e

        if invalidates_stats:
            self.cache.incr(INVENTORY_STATS_GENERATION_KEY)
        return result

    def _query(self, action: str, operation: Callable[[Session], Any]) -> Result:
        return self._run(action, lambda db: Success(operation(db)))

    def _appointment_day(self, appointment_id: int) -> Optional[date]:
        try:
            with self.database.session_scope() as db:
                appointment = crud.get_appointment(db, appointment_id)
                return appointment.appointment_date if appointment else None
        except SQLAlchemyError as e:
            logger.error(f"Appointment lookup failed: {e}")
            raise InfrastructureError(f"Database error during appointment lookup: {e}") from e

    def _run_on_appointment(self, action: str, appointment_id: int,
                            operation: Callable[[Session], Result],
                            extra_day: Optional[date] = None,
                            extra_keys: Sequence[str] = ()) -> Result:
        """
        Run a unit of work that mutates an existing appointment while holding
        the lock for the day it currently sits on (and ``extra_day``, if it moves).
        """
        for _ in range(MAX_LOCK_ATTEMPTS):
            day = self._appointment_day(appointment_id)
            keys = [calendar_day_key(d) for d in (day, extra_day) if d is not None] + list(extra_keys)

            def guarded(db: Session) -> Result:
                current = crud.get_appointment(db, appointment_id)
                if current is not None and current.appointment_date != day:
                    raise _StaleLock()
                return operation(db)

            try:
                return self._run(action, guarded, keys=keys)
            except _StaleLock:
                logger.info(f"Appointment {appointment_id} moved while locking, retrying {action}")
        raise InfrastructureError(f"Could not lock appointment {appointment_id} for {action}")

    def _appointment_view(self, appointment: models.Appointment) -> schemas.Appointment:
        now = self.clock()
        view = schemas.Appointment.model_validate(appointment)
        view.is_today = is_today(appointment.appointment_date, now)
        view.is_past = is_past(appointment.appointment_date, appointment.start_time, now)
        view.is_upcoming = is_upcoming(appointment.appointment_date, appointment.start_time, now)
        view.display_time = format_time(appointment.start_time)
        view.display_duration = format_duration(appointment.duration_minutes)
        view.day_label = relative_day_label(appointment.appointment_date, now.date())
        return view

    def _item_view(self, item: models.InventoryItem) -> schemas.InventoryItem:
        view = schemas.InventoryItem.model_validate(item)
        view.status = derive_status(item.quantity, item.threshold, item.expiry_date, self.clock().date())
        return view

    def _items(self, items: List[models.InventoryItem]) -> List[schemas.InventoryItem]:
        return [self._item_view(item) for item in items]

    # ---------------------------------------------------- patients/services

    def create_patient(self, name: str, phone: Optional[str] = None,
                       email: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            if not name or not name.strip():
                raise ValidationError("Patient name is required.", field="name")
            patient = crud.create_patient(db, name.strip(), phone, email)
            return Success(schemas.Patient.model_validate(patient), "Patient registered successfully.")
        return self._run("create patient", operation)

    def get_patient(self, patient_id: int) -> Result:
        def operation(db: Session) -> Result:
            patient = crud.get_patient(db, patient_id)
            if patient is None:
                raise NotFoundError("Patient", patient_id)
            return Success(schemas.Patient.model_validate(patient))
        return self._run("get patient", operation)

    def create_service(self, name: str, duration_minutes: int,
                       default_price: Decimal = Decimal("0"),
                       description: Optional[str] = None, is_active: bool = True) -> Result:
        def operation(db: Session) -> Result:
            if not name or not name.strip():
                raise ValidationError("Service name is required.", field="name")
            is_valid, message = validators.validate_duration(duration_minutes)
            if not is_valid:
                raise ValidationError(message, field="duration_minutes")
            service = crud.create_service(db, name.strip(), duration_minutes, default_price,
                                          description, is_active)
            return Success(schemas.Service.model_validate(service), "Service created successfully.")
        return self._run("create service", operation)

    def get_service(self, service_id: int) -> Result:
        def operation(db: Session) -> Result:
            service = crud.get_service(db, service_id)
            if service is None:
                raise NotFoundError("Service", service_id)
            return Success(schemas.Service.model_validate(service))
        return self._run("get service", operation)

    def list_active_services(self) -> Result:
        return self._query("list services", lambda db: [
            schemas.Service.model_validate(s) for s in crud.get_active_services(db)
        ])

    # -------------------------------------------------------- appointments

    def create_appointment(self, patient_id: int, appointment_date: date, start_time: time,
                           service_id: Optional[int] = None,
                           duration_minutes: Optional[int] = None,
                           notes: Optional[str] = None) -> Result:
        """Book an appointment; rejected with ``scheduling_conflict`` if the slot is taken."""
        def operation(db: Session) -> Result:
            appointment = appointments.create_appointment(
                db, self.clock(), patient_id, appointment_date, start_time,
                service_id=service_id, duration_minutes=duration_minutes, notes=notes,
            )
            return Success(self._appointment_view(appointment), "Appointment scheduled successfully.")

        keys = [calendar_day_key(appointment_date)] if appointment_date else []
        return self._run("create appointment", operation, keys=keys)

    def update_appointment(self, appointment_id: int, changes: Dict[str, Any]) -> Result:
        """
        Reschedule or edit an appointment.

        Args:
            appointment_id: Appointment to change
            changes: Only the fields to modify (e.g. ``model_dump(exclude_unset=True)``)
        """
        def operation(db: Session) -> Result:
            appointment = appointments.update_appointment(db, self.clock(), appointment_id, changes)
            return Success(self._appointment_view(appointment), "Appointment updated successfully.")

        return self._run_on_appointment("update appointment", appointment_id, operation,
                                        extra_day=changes.get("appointment_date"))

    def cancel_appointment(self, appointment_id: int, reason: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            appointment = appointments.cancel_appointment(db, self.clock(), appointment_id, reason)
            return Success(self._appointment_view(appointment), "Appointment cancelled successfully.")
        return self._run_on_appointment("cancel appointment", appointment_id, operation)

    def complete_appointment(self, appointment_id: int, notes: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            appointment = appointments.complete_appointment(db, self.clock(), appointment_id, notes)
            return Success(self._appointment_view(appointment), "Appointment marked as completed.")
        return self._run_on_appointment("complete appointment", appointment_id, operation)

    def mark_no_show(self, appointment_id: int, notes: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            appointment = appointments.mark_no_show(db, self.clock(), appointment_id, notes)
            return Success(self._appointment_view(appointment), "Appointment marked as no-show.")
        return self._run_on_appointment("mark no-show", appointment_id, operation)

    def delete_appointment(self, appointment_id: int) -> Result:
        def operation(db: Session) -> Result:
            appointments.delete_appointment(db, appointment_id)
            return Success(None, "Appointment deleted successfully.")
        return self._run_on_appointment("delete appointment", appointment_id, operation,
                                        extra_keys=[appointment_key(appointment_id)])

    def get_appointment(self, appointment_id: int) -> Result:
        return self._run("get appointment", lambda db: Success(
            self._appointment_view(appointments.load_appointment(db, appointment_id))
        ))

    def list_appointments(self, skip: int = 0, limit: int = 100) -> Result:
        return self._query("list appointments", lambda db: [
            self._appointment_view(a) for a in crud.get_appointments(db, skip=skip, limit=limit)
        ])

    def appointments_on(self, day: date) -> Result:
        return self._query("list appointments by date", lambda db: [
            self._appointment_view(a) for a in crud.get_appointments_by_date(db, day)
        ])

    def todays_appointments(self) -> Result:
        return self.appointments_on(self.clock().date())

    def appointments_for_patient(self, patient_id: int) -> Result:
        return self._query("list appointments by patient", lambda db: [
            self._appointment_view(a) for a in crud.get_appointments_by_patient(db, patient_id)
        ])

    def appointments_between(self, start: date, end: date) -> Result:
        if end < start:
            return Failure.from_error(ValidationError("End date must not be before start date.", field="end"))
        return self._query("list appointments by range", lambda db: [
            self._appointment_view(a) for a in crud.get_appointments_by_date_range(db, start, end)
        ])

    def appointment_statistics(self) -> Result:
        def operation(db: Session) -> schemas.AppointmentStats:
            now = self.clock()
            return schemas.AppointmentStats(
                todays_appointments=crud.count_appointments_on(db, now.date()),
                upcoming_appointments=crud.count_upcoming_appointments(db, now),
            )
        return self._query("appointment statistics", operation)

    # ----------------------------------------------------------- inventory

    def create_item(self, name: str, category: Category, quantity: int = 0, unit: str = "pieces",
                    threshold: int = 0, cost_per_unit: Optional[Decimal] = None,
                    supplier: Optional[str] = None, expiry_date: Optional[date] = None,
                    notes: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            item = ledger.create_item(
                db, self.clock(), name, category, quantity=quantity, unit=unit, threshold=threshold,
                cost_per_unit=cost_per_unit, supplier=supplier, expiry_date=expiry_date, notes=notes,
            )
            return Success(self._item_view(item), "Inventory item created successfully.")
        return self._run("create inventory item", operation, invalidates_stats=True)

    def update_item(self, item_id: int, changes: Dict[str, Any]) -> Result:
        def operation(db: Session) -> Result:
            item = ledger.update_item(db, self.clock(), item_id, changes)
            return Success(self._item_view(item), "Inventory item updated successfully.")
        return self._run("update inventory item", operation,
                         keys=[inventory_item_key(item_id)], invalidates_stats=True)

    def delete_item(self, item_id: int) -> Result:
        def operation(db: Session) -> Result:
            ledger.delete_item(db, item_id)
            return Success(None, "Inventory item deleted successfully.")
        return self._run("delete inventory item", operation,
                         keys=[inventory_item_key(item_id)], invalidates_stats=True)

    def apply_transaction(self, item_id: int, delta: int, reason: TransactionReason,
                          appointment_id: Optional[int] = None, notes: Optional[str] = None) -> Result:
        """Append one signed ledger entry; the general form of add/remove."""
        def operation(db: Session) -> Result:
            item, transaction = ledger.apply_transaction(
                db, self.clock(), item_id, delta, reason, appointment_id=appointment_id, notes=notes,
            )
            verb = "Added" if delta > 0 else "Removed"
            preposition = "to" if delta > 0 else "from"
            return Success(self._item_view(item),
                           f"{verb} {abs(delta)} {item.unit} {preposition} {item.name}")
        return self._run("apply stock transaction", operation,
                         keys=_stock_keys(item_id, appointment_id), invalidates_stats=True)

    def add_stock(self, item_id: int, quantity: int,
                  reason: TransactionReason = TransactionReason.RESTOCK,
                  notes: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            item = ledger.add_stock(db, self.clock(), item_id, quantity, reason=reason, notes=notes)
            return Success(self._item_view(item), f"Added {quantity} {item.unit} to {item.name}")
        return self._run("add stock", operation,
                         keys=[inventory_item_key(item_id)], invalidates_stats=True)

    def remove_stock(self, item_id: int, quantity: int, reason: TransactionReason,
                     appointment_id: Optional[int] = None, notes: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            item = ledger.remove_stock(db, self.clock(), item_id, quantity, reason,
                                       appointment_id=appointment_id, notes=notes)
            return Success(self._item_view(item), f"Removed {quantity} {item.unit} from {item.name}")
        return self._run("remove stock", operation,
                         keys=_stock_keys(item_id, appointment_id), invalidates_stats=True)

    def adjust_stock(self, item_id: int, new_quantity: int, notes: Optional[str] = None) -> Result:
        def operation(db: Session) -> Result:
            item, previous, transaction = ledger.adjust_stock(db, self.clock(), item_id, new_quantity,
                                                              notes=notes)
            if transaction is None:
                return Success(self._item_view(item), "No adjustment needed - quantity is already correct.")
            return Success(self._item_view(item),
                           f"Adjusted {item.name} quantity from {previous} to {new_quantity}")
        return self._run("adjust stock", operation,
                         keys=[inventory_item_key(item_id)], invalidates_stats=True)

    def get_item(self, item_id: int) -> Result:
        return self._run("get inventory item", lambda db: Success(
            self._item_view(ledger.load_item(db, item_id))
        ))

    def list_items(self, skip: int = 0, limit: int = 100) -> Result:
        return self._query("list inventory", lambda db: self._items(
            crud.get_inventory_items(db, skip=skip, limit=limit)
        ))

    def items_by_category(self, category: Category) -> Result:
        return self._query("list inventory by category", lambda db: self._items(
            crud.get_inventory_items_by_category(db, category)
        ))

    def search_items(self, term: Optional[str]) -> Result:
        if term is None or not term.strip():
            return self.list_items(limit=10000)
        return self._query("search inventory", lambda db: self._items(
            crud.search_inventory_items(db, term.strip())
        ))

    def low_stock_items(self) -> Result:
        return self._query("list low stock", lambda db: self._items(crud.get_low_stock_items(db)))

    def expired_items(self) -> Result:
        return self._query("list expired", lambda db: self._items(
            crud.get_expired_items(db, self.clock().date())
        ))

    def expiring_soon_items(self) -> Result:
        return self._query("list expiring soon", lambda db: self._items(
            crud.get_items_expiring_soon(db, self.clock().date())
        ))

    def transactions_for_item(self, item_id: int) -> Result:
        def operation(db: Session) -> Result:
            ledger.load_item(db, item_id)
            return Success([
                schemas.InventoryTransaction.model_validate(t)
                for t in crud.get_transactions_by_item(db, item_id)
            ])
        return self._run("list item transactions", operation)

    def recent_transactions(self, limit: int = 20) -> Result:
        return self._query("list recent transactions", lambda db: [
            schemas.InventoryTransaction.model_validate(t)
            for t in crud.get_recent_transactions(db, limit=limit)
        ])

    def reconcile_item(self, item_id: int) -> Result:
        return self._run("reconcile inventory item", lambda db: Success(
            schemas.LedgerReconciliation(**ledger.reconcile_item(db, item_id))
        ), keys=[inventory_item_key(item_id)])

    def _stats_key(self) -> Optional[str]:
        generation = self.cache.get_counter(INVENTORY_STATS_GENERATION_KEY)
        if generation is None:
            return None
        return f"{INVENTORY_STATS_KEY}:{generation}"

    def inventory_statistics(self) -> Result:
        # Generation is read before computing; a write in between retires this key
        key = self._stats_key()
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return Success(schemas.InventoryStats.model_validate(cached))

        result = self._query("inventory statistics",
                             lambda db: schemas.InventoryStats(**crud.get_inventory_statistics(db)))
        if result.ok and key is not None:
            self.cache.set(key, result.data.model_dump(mode="json"), ttl=STATS_CACHE_TTL)
        return result
