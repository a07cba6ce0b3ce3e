"""
Local Order Store

Durable on-device staging of carts and of orders the restaurant API has
not confirmed yet. Survives restarts and network loss.

Every public method runs in its own transaction. Database failures are
re-raised as StorageError; callers treat them as fatal.

Usage:
    engine = create_engine_for_url(settings.local_database_url)
    store = LocalOrderStore(engine)
    await store.initialize()

    await store.add_cart_item(CartItemCreate(...))
    local_order = await store.save_order_locally(payload)
"""

import logging
import secrets
import string
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select, delete, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from waitstaff.core.exceptions import StorageError, CartItemNotFound
from waitstaff.database import create_session_maker, init_db
from waitstaff.models import (
    CartItem,
    LocalOrder,
    LocalOrderStatus,
    SyncQueueEntry,
    SyncEntryType,
    MenuCacheEntry,
    TableCacheEntry,
    ClientSetting,
    utc_now,
)
from waitstaff.schemas import CartItemCreate, OrderCreatePayload

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

# Settings key of the bearer token saved by PUT /auth/token
AUTH_TOKEN_SETTING = "auth_token"


def generate_local_id() -> str:
    """Client-side order id: ``<epoch millis>-<9 random base36 chars>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{int(time.time() * 1000)}-{suffix}"


def calculate_cart_total(items: Iterable[CartItem]) -> float:
    """Sum of (unit price + modifier deltas) * quantity over the cart."""
    return round(sum(item.line_total for item in items), 2)


class LocalOrderStore:
    """SQLite-backed cart, offline order and sync queue store."""

    def __init__(self, engine: AsyncEngine, default_session_id: str = "default"):
        self.engine = engine
        self.default_session_id = default_session_id
        self._session_maker = create_session_maker(engine)

    async def initialize(self) -> None:
        """Create the local tables if they do not exist."""
        try:
            await init_db(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not initialize local database: {e}") from e
        logger.info(f"Local store ready ({self.engine.url.render_as_string(hide_password=True)})")

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(f"Local storage error: {e}")
            raise StorageError(str(e)) from e

    async def ping(self) -> bool:
        async with self._transaction() as session:
            await session.execute(select(func.count(CartItem.id)))
        return True

    # =========================================================================
    # CART
    # =========================================================================

    async def add_cart_item(self, item: Union[CartItemCreate, dict[str, Any]]) -> CartItem:
        """
        Add an item to a session's cart.

        If the same menu item is already in that session's cart the
        quantities are summed; modifiers and notes are replaced only when
        the new item carries some.
        """
        if not isinstance(item, CartItemCreate):
            item = CartItemCreate.model_validate(item)

        session_id = item.session_id or self.default_session_id
        modifiers = [m.model_dump() for m in item.modifiers]

        async with self._transaction() as session:
            result = await session.execute(
                select(CartItem).where(
                    CartItem.menu_item_id == item.menu_item_id,
                    CartItem.session_id == session_id,
                )
            )
            cart_item = result.scalar_one_or_none()

            if cart_item:
                cart_item.quantity = cart_item.quantity + item.quantity
                if modifiers:
                    cart_item.modifiers = modifiers
                if item.notes:
                    cart_item.notes = item.notes
            else:
                cart_item = CartItem(
                    menu_item_id=item.menu_item_id,
                    name=item.name,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    modifiers=modifiers,
                    notes=item.notes,
                    session_id=session_id,
                )
                session.add(cart_item)

            await session.flush()

        logger.debug(f"Cart {session_id}: {cart_item.name} x{cart_item.quantity}")
        return cart_item

    async def update_quantity(
        self,
        item_id: int,
        quantity: int,
        session_id: Optional[str] = None,
    ) -> Optional[CartItem]:
        """
        Set the quantity of a cart item.

        A quantity of zero or less removes the item and returns None.
        With ``session_id`` only an item of that session's cart matches.

        Raises:
            CartItemNotFound: setting a positive quantity on a missing item
        """
        if quantity <= 0:
            await self.remove_cart_item(item_id, session_id)
            return None

        async with self._transaction() as session:
            cart_item = await session.get(CartItem, item_id)
            if cart_item is None or (session_id and cart_item.session_id != session_id):
                raise CartItemNotFound(item_id)
            cart_item.quantity = quantity

        return cart_item

    async def remove_cart_item(self, item_id: int, session_id: Optional[str] = None) -> bool:
        query = delete(CartItem).where(CartItem.id == item_id)
        if session_id:
            query = query.where(CartItem.session_id == session_id)
        async with self._transaction() as session:
            result = await session.execute(query)
        return result.rowcount > 0

    async def clear_cart(self, session_id: Optional[str] = None) -> int:
        session_id = session_id or self.default_session_id
        async with self._transaction() as session:
            result = await session.execute(
                delete(CartItem).where(CartItem.session_id == session_id)
            )
        logger.debug(f"Cart {session_id} cleared ({result.rowcount} items)")
        return result.rowcount

    async def get_cart(self, session_id: Optional[str] = None) -> list[CartItem]:
        session_id = session_id or self.default_session_id
        async with self._transaction() as session:
            result = await session.execute(
                select(CartItem)
                .where(CartItem.session_id == session_id)
                .order_by(CartItem.id)
            )
            return list(result.scalars().all())

    async def get_item_count(self, session_id: Optional[str] = None) -> int:
        session_id = session_id or self.default_session_id
        async with self._transaction() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(CartItem.quantity), 0))
                .where(CartItem.session_id == session_id)
            )
            return int(result.scalar() or 0)

    async def get_cart_total(self, session_id: Optional[str] = None) -> float:
        return calculate_cart_total(await self.get_cart(session_id))

    # =========================================================================
    # OFFLINE ORDERS
    # =========================================================================

    async def save_order_locally(
        self,
        payload: Union[OrderCreatePayload, dict[str, Any]],
    ) -> LocalOrder:
        """
        Stage an order for later replay.

        The LocalOrder and its sync queue entry are written in one
        transaction: either both exist afterwards or neither does.
        """
        if isinstance(payload, BaseModel):
            data = payload.model_dump(mode="json", exclude_none=True)
        else:
            data = dict(payload)

        local_id = generate_local_id()
        table_id = data.get("table_id")

        async with self._transaction() as session:
            local_order = LocalOrder(
                local_id=local_id,
                payload=data,
                table_id=str(table_id) if table_id is not None else None,
                status=LocalOrderStatus.STAGED,
            )
            entry = SyncQueueEntry(
                type=SyncEntryType.ORDER.value,
                local_id=local_id,
                data=data,
            )
            session.add_all([local_order, entry])

        logger.info(f"Order {local_id} saved locally for table {table_id}")
        return local_order

    async def get_local_orders(self) -> list[LocalOrder]:
        """Local orders, newest first."""
        async with self._transaction() as session:
            result = await session.execute(
                select(LocalOrder).order_by(LocalOrder.created_at.desc(), LocalOrder.id.desc())
            )
            return list(result.scalars().all())

    async def update_local_order(self, local_id: str, status: LocalOrderStatus) -> bool:
        async with self._transaction() as session:
            result = await session.execute(
                select(LocalOrder).where(LocalOrder.local_id == local_id)
            )
            local_order = result.scalar_one_or_none()
            if local_order is None:
                return False
            local_order.status = status
        return True

    async def delete_local_order(self, local_id: str) -> bool:
        """Remove a local order together with its pending queue entry."""
        async with self._transaction() as session:
            await session.execute(
                delete(SyncQueueEntry).where(SyncQueueEntry.local_id == local_id)
            )
            result = await session.execute(
                delete(LocalOrder).where(LocalOrder.local_id == local_id)
            )
        return result.rowcount > 0

    async def clear_local_orders(self) -> int:
        """Drop local orders that no longer have a queue entry."""
        pending = select(SyncQueueEntry.local_id).where(SyncQueueEntry.local_id.is_not(None))
        async with self._transaction() as session:
            result = await session.execute(
                delete(LocalOrder).where(LocalOrder.local_id.not_in(pending))
            )
        return result.rowcount

    # =========================================================================
    # SYNC QUEUE
    # =========================================================================

    async def get_pending_entries(
        self,
        entry_type: str = SyncEntryType.ORDER.value,
    ) -> list[SyncQueueEntry]:
        """Queue entries of ``entry_type`` in insertion order."""
        async with self._transaction() as session:
            result = await session.execute(
                select(SyncQueueEntry)
                .where(SyncQueueEntry.type == entry_type)
                .order_by(SyncQueueEntry.id)
            )
            return list(result.scalars().all())

    async def pending_count(self, entry_type: str = SyncEntryType.ORDER.value) -> int:
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count(SyncQueueEntry.id)).where(SyncQueueEntry.type == entry_type)
            )
            return int(result.scalar() or 0)

    async def complete_entry(self, entry: SyncQueueEntry) -> None:
        """Delete a replayed queue entry and the local order it shadows."""
        async with self._transaction() as session:
            await session.execute(delete(SyncQueueEntry).where(SyncQueueEntry.id == entry.id))
            if entry.local_id:
                await session.execute(
                    delete(LocalOrder).where(LocalOrder.local_id == entry.local_id)
                )

    async def record_failure(
        self,
        entry: SyncQueueEntry,
        error: str,
        next_attempt_at: Optional[datetime],
    ) -> int:
        """
        Bump the attempt counter of a failed entry and put its local order
        back to STAGED. Returns the new attempt count.
        """
        async with self._transaction() as session:
            stored = await session.get(SyncQueueEntry, entry.id)
            if stored is None:
                return entry.attempts
            stored.attempts = (stored.attempts or 0) + 1
            stored.last_error = error[:1000]
            stored.next_attempt_at = next_attempt_at
            if stored.local_id:
                await session.execute(
                    update(LocalOrder)
                    .where(LocalOrder.local_id == stored.local_id)
                    .values(status=LocalOrderStatus.STAGED)
                )
            attempts = stored.attempts

        entry.attempts = attempts
        entry.last_error = stored.last_error
        entry.next_attempt_at = next_attempt_at
        return attempts

    async def reset_entry(self, local_id: str) -> bool:
        """Clear the retry bookkeeping of a queued order so the next sweep tries it."""
        async with self._transaction() as session:
            result = await session.execute(
                update(SyncQueueEntry)
                .where(SyncQueueEntry.local_id == local_id)
                .values(attempts=0, last_error=None, next_attempt_at=None)
            )
        return result.rowcount > 0

    # =========================================================================
    # MENU AND TABLE CACHE
    # =========================================================================

    async def cache_menu(self, items: Iterable[dict[str, Any]]) -> int:
        """Replace the cached menu with ``items``."""
        now = utc_now()
        rows = [
            MenuCacheEntry(
                menu_item_id=str(item["id"]) if item.get("id") is not None else None,
                category=item.get("category_name") or item.get("category"),
                payload=item,
                updated_at=now,
            )
            for item in items
        ]
        async with self._transaction() as session:
            await session.execute(delete(MenuCacheEntry))
            session.add_all(rows)
        logger.info(f"Menu cache refreshed ({len(rows)} items)")
        return len(rows)

    async def get_cached_menu(self, category: Optional[str] = None) -> list[dict[str, Any]]:
        query = select(MenuCacheEntry).order_by(MenuCacheEntry.id)
        if category:
            query = query.where(MenuCacheEntry.category == category)
        async with self._transaction() as session:
            result = await session.execute(query)
            return [row.payload for row in result.scalars().all()]

    async def cache_tables(self, tables: Iterable[dict[str, Any]]) -> int:
        """Replace the cached table list with ``tables``."""
        now = utc_now()
        rows = [
            TableCacheEntry(
                table_id=str(table["id"]) if table.get("id") is not None else None,
                table_number=table.get("table_number"),
                payload=table,
                updated_at=now,
            )
            for table in tables
        ]
        async with self._transaction() as session:
            await session.execute(delete(TableCacheEntry))
            session.add_all(rows)
        logger.info(f"Table cache refreshed ({len(rows)} tables)")
        return len(rows)

    async def get_cached_tables(self) -> list[dict[str, Any]]:
        async with self._transaction() as session:
            result = await session.execute(
                select(TableCacheEntry).order_by(TableCacheEntry.table_number, TableCacheEntry.id)
            )
            return [row.payload for row in result.scalars().all()]

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_setting(self, key: str, default: Any = None) -> Any:
        async with self._transaction() as session:
            setting = await session.get(ClientSetting, key)
        if setting is None or setting.value is None:
            return default
        return setting.value

    async def set_setting(self, key: str, value: Any) -> None:
        async with self._transaction() as session:
            await session.merge(ClientSetting(key=key, value=value))

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    async def clear_all_data(self) -> None:
        """Wipe orders, cart, queue and the menu and table caches. Settings are kept."""
        async with self._transaction() as session:
            await session.execute(delete(LocalOrder))
            await session.execute(delete(CartItem))
            await session.execute(delete(SyncQueueEntry))
            await session.execute(delete(MenuCacheEntry))
            await session.execute(delete(TableCacheEntry))
        logger.warning("All local order data cleared")
