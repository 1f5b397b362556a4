"""
Inventory stock ledger.

An item's quantity is the sum of its ``InventoryTransaction`` rows. The
``quantity`` column caches that sum and is written in exactly one place,
``apply_transaction``, in the same unit of work that appends the ledger row,
so the two can never be observed apart.

Callers must hold the item's lock (``locks.inventory_item_key``) for the
whole unit of work; the item row is additionally read ``FOR UPDATE``.
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from . import crud, models, validators
from .errors import HasHistoryError, InsufficientStockError, NotFoundError, ValidationError
from .models import TransactionReason

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "name", "category", "unit", "threshold", "cost_per_unit", "supplier", "expiry_date", "notes",
)


def _check(result: Tuple[bool, str], field: str) -> None:
    is_valid, message = result
    if not is_valid:
        raise ValidationError(message, field=field)


def load_item(db: Session, item_id: int, for_update: bool = False) -> models.InventoryItem:
    if for_update:
        item = crud.get_inventory_item_for_update(db, item_id)
    else:
        item = crud.get_inventory_item(db, item_id)
    if item is None:
        raise NotFoundError("Inventory item", item_id)
    return item


def apply_transaction(db: Session,
                      now: datetime,
                      item_id: int,
                      delta: int,
                      reason: TransactionReason,
                      appointment_id: Optional[int] = None,
                      notes: Optional[str] = None) -> Tuple[models.InventoryItem, models.InventoryTransaction]:
    """
    Append a ledger entry and move the cached quantity by the same amount.

    Args:
        db: Database session
        now: Timestamp recorded on the entry
        item_id: Item whose stock changes
        delta: Signed change (positive adds, negative removes)
        reason: Why the stock changes
        appointment_id: Appointment a removal is attributed to (optional)
        notes: Free text notes

    Returns:
        Tuple of (updated item, new transaction)

    Raises:
        ValidationError: ``delta`` is zero
        NotFoundError: The item or the attributed appointment does not exist
        InsufficientStockError: A removal would take the quantity below zero
    """
    if delta == 0:
        raise ValidationError("Quantity change cannot be zero.", field="quantity")

    item = load_item(db, item_id, for_update=True)

    # Row lock keeps the appointment from being deleted until this entry commits
    if appointment_id is not None and crud.get_appointment_for_update(db, appointment_id) is None:
        raise NotFoundError("Appointment", appointment_id)

    if item.quantity + delta < 0:
        raise InsufficientStockError(available=item.quantity, requested=-delta, unit=item.unit)

    transaction = crud.add_transaction(db, models.InventoryTransaction(
        inventory_id=item.id,
        quantity_change=delta,
        reason=reason,
        appointment_id=appointment_id,
        transaction_date=now,
        notes=notes,
    ))
    item.quantity = item.quantity + delta
    item.updated_at = now
    db.flush()

    logger.info(
        f"Ledger entry {transaction.id}: item {item.id} {delta:+d} ({reason.value}), "
        f"quantity now {item.quantity}"
    )
    return item, transaction


def add_stock(db: Session, now: datetime, item_id: int, quantity: int,
              reason: TransactionReason = TransactionReason.RESTOCK,
              notes: Optional[str] = None) -> models.InventoryItem:
    _check(validators.validate_positive_quantity(quantity, "add"), "quantity")
    item, _ = apply_transaction(db, now, item_id, quantity, reason, notes=notes)
    return item


def remove_stock(db: Session, now: datetime, item_id: int, quantity: int,
                 reason: TransactionReason,
                 appointment_id: Optional[int] = None,
                 notes: Optional[str] = None) -> models.InventoryItem:
    _check(validators.validate_positive_quantity(quantity, "remove"), "quantity")
    item, _ = apply_transaction(db, now, item_id, -quantity, reason,
                                appointment_id=appointment_id, notes=notes)
    return item


def adjust_stock(db: Session, now: datetime, item_id: int, new_quantity: int,
                 notes: Optional[str] = None,
                 reason: TransactionReason = TransactionReason.ADJUSTMENT
                 ) -> Tuple[models.InventoryItem, int, Optional[models.InventoryTransaction]]:
    """
    Correct an item's quantity to ``new_quantity`` through a single ledger entry.

    Returns:
        Tuple of (item, previous quantity, transaction). The transaction is
        None when the quantity was already correct and nothing was written.
    """
    if new_quantity < 0:
        raise ValidationError("New quantity cannot be negative.", field="new_quantity")

    item = load_item(db, item_id, for_update=True)
    previous = item.quantity
    delta = new_quantity - previous
    if delta == 0:
        return item, previous, None

    item, transaction = apply_transaction(db, now, item_id, delta, reason, notes=notes)
    return item, previous, transaction


def _validate_item_fields(fields: Dict[str, Any], today: date) -> None:
    if "name" in fields:
        _check(validators.validate_item_name(fields["name"]), "name")
    if "category" in fields and fields["category"] is None:
        raise ValidationError("Category is required.", field="category")
    if "unit" in fields:
        _check(validators.validate_unit(fields["unit"]), "unit")
    if "threshold" in fields:
        _check(validators.validate_threshold(fields["threshold"]), "threshold")
    if "cost_per_unit" in fields:
        _check(validators.validate_cost(fields["cost_per_unit"]), "cost_per_unit")
    if "expiry_date" in fields:
        _check(validators.validate_expiry_date(fields["expiry_date"], today), "expiry_date")


def _clean(value):
    return value.strip() if isinstance(value, str) else value


def create_item(db: Session,
                now: datetime,
                name: str,
                category: models.Category,
                quantity: int = 0,
                unit: str = "pieces",
                threshold: int = 0,
                cost_per_unit: Optional[Decimal] = None,
                supplier: Optional[str] = None,
                expiry_date: Optional[date] = None,
                notes: Optional[str] = None) -> models.InventoryItem:
    """
    Create an inventory item. A positive opening quantity is booked as a
    ``restock`` ledger entry in the same unit of work.
    """
    fields = {
        "name": name, "category": category, "unit": unit, "threshold": threshold,
        "cost_per_unit": cost_per_unit, "supplier": supplier, "expiry_date": expiry_date,
        "notes": notes,
    }
    _validate_item_fields(fields, now.date())
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative.", field="quantity")

    item = crud.add_inventory_item(db, models.InventoryItem(
        name=name.strip(),
        category=category,
        quantity=0,
        unit=unit.strip(),
        threshold=threshold,
        cost_per_unit=cost_per_unit if cost_per_unit is not None else Decimal("0"),
        supplier=_clean(supplier),
        expiry_date=expiry_date,
        notes=_clean(notes),
        updated_at=now,
    ))
    logger.info(f"Created inventory item {item.id} '{item.name}'")

    if quantity > 0:
        item, _ = apply_transaction(db, now, item.id, quantity, TransactionReason.RESTOCK,
                                    notes="Initial stock")
    return item


def update_item(db: Session, now: datetime, item_id: int, changes: Dict[str, Any]) -> models.InventoryItem:
    """
    Edit an item's descriptive fields. Quantity is never accepted here; it
    only changes through ledger entries.
    """
    if "quantity" in changes:
        raise ValidationError("Quantity is managed through stock transactions.", field="quantity")
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        field = sorted(unknown)[0]
        raise ValidationError(f"Field '{field}' cannot be updated.", field=field)

    item = load_item(db, item_id, for_update=True)
    _validate_item_fields(changes, now.date())

    for key, value in changes.items():
        if key == "cost_per_unit" and value is None:
            value = Decimal("0")
        setattr(item, key, _clean(value))
    item.updated_at = now
    db.flush()
    logger.info(f"Updated inventory item {item.id}")
    return item


def delete_item(db: Session, item_id: int) -> None:
    """
    Delete an item that has no ledger history.

    Raises:
        NotFoundError: The item does not exist
        HasHistoryError: Ledger entries reference the item
    """
    item = load_item(db, item_id, for_update=True)
    if crud.item_has_transactions(db, item_id):
        raise HasHistoryError(
            "Cannot delete item with transaction history. Consider marking as inactive instead."
        )
    crud.delete_inventory_item(db, item)
    logger.info(f"Deleted inventory item {item_id}")


def reconcile_item(db: Session, item_id: int) -> Dict[str, Any]:
    """
    Compare an item's cached quantity with its ledger sum.

    Returns:
        dict with item_id, cached_quantity, ledger_quantity and in_sync
    """
    item = load_item(db, item_id)
    ledger_quantity = crud.ledger_sum(db, item_id)
    in_sync = ledger_quantity == item.quantity
    if not in_sync:
        logger.error(
            f"Inventory item {item_id} has drifted: cached {item.quantity}, ledger {ledger_quantity}"
        )
    return {
        "item_id": item.id,
        "cached_quantity": item.quantity,
        "ledger_quantity": ledger_quantity,
        "in_sync": in_sync,
    }
