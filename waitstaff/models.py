"""
SQLAlchemy Database Models

Local tables kept on the waitstaff device:
- Cart items staged per session
- Orders saved while offline
- The sync queue replayed against the restaurant API
- A menu cache and key/value client settings

Timestamps are stored as naive UTC datetimes.
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Enum, JSON, Index

from waitstaff.database import Base


def utc_now() -> datetime:
    """Current UTC time without tzinfo, as SQLite returns it."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class LocalOrderStatus(str, enum.Enum):
    """Informational state of an order waiting to be synced."""
    STAGED = "staged"
    SYNCING = "syncing"


class SyncEntryType(str, enum.Enum):
    ORDER = "order"


class CartItem(Base):
    """
    A menu item staged in a waiter's cart.

    One row per (menu_item_id, session_id); adding the same item again
    increments the quantity.
    """
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    menu_item_id = Column(String(64), nullable=False)
    name = Column(String(200), nullable=False)
    unit_price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    modifiers = Column(JSON, nullable=False, default=list)  # [{id, name, price_delta}]
    notes = Column(Text, nullable=True)
    session_id = Column(String(64), nullable=False, default="default", index=True)
    added_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_cart_items_menu_item_session", "menu_item_id", "session_id", unique=True),
    )

    @property
    def modifiers_total(self) -> float:
        return sum(float(m.get("price_delta", 0) or 0) for m in (self.modifiers or []))

    @property
    def line_total(self) -> float:
        return round((self.unit_price + self.modifiers_total) * self.quantity, 2)

    def __repr__(self):
        return f"<CartItem #{self.id} - {self.name} x{self.quantity} - {self.session_id}>"


class LocalOrder(Base):
    """
    An order submitted while the restaurant API was unreachable.

    The payload is the exact order-creation body; it is never edited and
    the row is deleted once the server confirms the order.
    """
    __tablename__ = "local_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    local_id = Column(String(40), nullable=False, unique=True, index=True)
    payload = Column(JSON, nullable=False)
    table_id = Column(String(64), nullable=True, index=True)
    status = Column(
        Enum(LocalOrderStatus),
        default=LocalOrderStatus.STAGED,
        nullable=False,
        index=True
    )
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)

    def __repr__(self):
        return f"<LocalOrder {self.local_id} - table {self.table_id} - {self.status.value}>"


class SyncQueueEntry(Base):
    """One pending replay of a LocalOrder against the restaurant API."""
    __tablename__ = "pending_sync"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(20), nullable=False, default=SyncEntryType.ORDER.value, index=True)
    local_id = Column(String(40), nullable=True, index=True)
    data = Column(JSON, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utc_now)

    # Retry bookkeeping
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SyncQueueEntry #{self.id} - {self.type} - {self.local_id} - attempts={self.attempts}>"


class MenuCacheEntry(Base):
    """Menu item as last fetched from the restaurant API."""
    __tablename__ = "menu_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    menu_item_id = Column(String(64), nullable=True)
    category = Column(String(100), nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utc_now, index=True)


class TableCacheEntry(Base):
    """Restaurant table as last fetched from the restaurant API."""
    __tablename__ = "tables_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_id = Column(String(64), nullable=True)
    table_number = Column(Integer, nullable=True, index=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class ClientSetting(Base):
    """Key/value settings persisted on the device (auth token, dark mode, ...)."""
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
