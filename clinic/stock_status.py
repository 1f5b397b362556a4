"""
Display status for an inventory item, derived from primitive inputs only.
"""
import enum
from datetime import date, timedelta
from typing import Optional

from . import config


class StockStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    StockStatus.IN_STOCK: "In Stock",
    StockStatus.LOW_STOCK: "Low Stock",
    StockStatus.OUT_OF_STOCK: "Out of Stock",
    StockStatus.EXPIRED: "Expired",
    StockStatus.EXPIRING_SOON: "Expiring Soon",
}


def derive_status(quantity: int,
                  threshold: int,
                  expiry_date: Optional[date],
                  today: date,
                  expiring_window_days: int = config.EXPIRING_SOON_DAYS) -> StockStatus:
    """
    Compute the single status an item reports.

    Precedence is out of stock, then expired, then expiring soon, then low
    stock; the first matching condition wins.

    Args:
        quantity: Current quantity
        threshold: Reorder threshold
        expiry_date: Expiry date, if the item expires
        today: Reference day
        expiring_window_days: Size of the "expiring soon" window

    Returns:
        StockStatus for the item
    """
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if expiry_date is not None:
        if expiry_date < today:
            return StockStatus.EXPIRED
        if expiry_date < today + timedelta(days=expiring_window_days):
            return StockStatus.EXPIRING_SOON
    if quantity <= threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK
