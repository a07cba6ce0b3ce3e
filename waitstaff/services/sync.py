"""
Sync Coordinator

Replays orders queued in the LocalOrderStore against the restaurant API.

One sweep:
    1. Walk the "order" queue entries in insertion order
    2. Skip entries still backing off, or out of attempts
    3. POST each remaining payload; delete the entry (and its local order)
       on success, record the failure and schedule a retry otherwise
    4. Refresh the order list from the API and drop local shadow copies
       that no longer have a queue entry

A failing entry never stops the sweep and never raises to the caller.
Local storage errors do propagate.

Sweeps never overlap: a sweep requested while another is running returns
immediately with ``skipped=True``. When a lock file is configured the
same holds across processes sharing the database.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from filelock import FileLock, Timeout

from waitstaff.core.exceptions import OrdersAPIError, StorageError
from waitstaff.models import LocalOrderStatus, SyncQueueEntry, utc_now
from waitstaff.services.api.base import BaseOrdersAPI
from waitstaff.services.store import LocalOrderStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    """Outcome of one sweep."""
    attempted: int = 0
    synced: int = 0
    failed: int = 0
    deferred: int = 0
    exhausted: int = 0
    skipped: bool = False
    refreshed: bool = False
    remote_orders: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SyncCoordinator:
    """
    Drains the offline order queue.

    Attributes:
        max_attempts: Replays per entry before it is left alone (0 = unlimited)
        base_delay: Seconds to wait after the first failure; doubles per failure
        max_delay: Upper bound on the wait between attempts
    """

    def __init__(
        self,
        store: LocalOrderStore,
        api: BaseOrdersAPI,
        max_attempts: int = 10,
        base_delay: float = 2.0,
        max_delay: float = 300.0,
        lock_file: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.api = api
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._lock = asyncio.Lock()
        self._file_lock = FileLock(lock_file, timeout=0) if lock_file else None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait before the next try after ``attempts`` failures."""
        if attempts <= 0:
            return 0.0
        return min(self.base_delay * (2 ** (attempts - 1)), self.max_delay)

    async def sync_pending_orders(self) -> SyncReport:
        """Run one sweep unless one is already running."""
        if self._lock.locked():
            logger.info("Sync already in progress, skipping")
            return SyncReport(skipped=True)

        async with self._lock:
            if self._file_lock is None:
                return await self._sweep()

            try:
                self._file_lock.acquire()
            except Timeout:
                logger.info(f"Sync lock {self._file_lock.lock_file} held by another process, skipping")
                return SyncReport(skipped=True)
            try:
                return await self._sweep()
            finally:
                self._file_lock.release()

    async def _sweep(self) -> SyncReport:
        report = SyncReport()
        entries = await self.store.get_pending_entries()
        now = self._clock()

        if entries:
            logger.info(f"Syncing {len(entries)} queued order(s)")

        for entry in entries:
            if self.max_attempts and entry.attempts >= self.max_attempts:
                report.exhausted += 1
                continue
            if entry.next_attempt_at is not None and entry.next_attempt_at > now:
                report.deferred += 1
                continue

            report.attempted += 1
            if await self._replay(entry, report):
                report.synced += 1
            else:
                report.failed += 1

        await self._reconcile(report)

        logger.info(
            f"Sync finished: {report.synced} synced, {report.failed} failed, "
            f"{report.deferred} deferred, {report.exhausted} exhausted"
        )
        return report

    async def _replay(self, entry: SyncQueueEntry, report: SyncReport) -> bool:
        label = entry.local_id or f"entry #{entry.id}"
        if entry.local_id:
            await self.store.update_local_order(entry.local_id, LocalOrderStatus.SYNCING)

        try:
            order = await self.api.create_order(entry.data, idempotency_key=entry.local_id)
            remote_id = order.get("id")
        except OrdersAPIError as e:
            await self._defer(entry, label, str(e), report)
            return False
        except Exception as e:
            logger.exception(f"Unexpected error syncing order {label}")
            await self._defer(entry, label, f"{type(e).__name__}: {e}", report)
            return False

        await self.store.complete_entry(entry)
        logger.info(f"Order {label} synced as {remote_id}")
        return True

    async def _defer(self, entry: SyncQueueEntry, label: str, error: str, report: SyncReport) -> None:
        attempts = entry.attempts + 1
        next_attempt_at = self._clock() + timedelta(seconds=self.backoff_delay(attempts))
        await self.store.record_failure(entry, error, next_attempt_at)
        report.errors.append(f"{label}: {error}")
        logger.warning(
            f"Failed to sync order {label} (attempt {attempts}): {error}; "
            f"next try after {next_attempt_at:%H:%M:%S}"
        )

    async def _reconcile(self, report: SyncReport) -> None:
        try:
            report.remote_orders = await self.api.list_orders()
        except OrdersAPIError as e:
            report.errors.append(f"refresh: {e}")
            logger.warning(f"Could not refresh orders after sync: {e}")
            return

        report.refreshed = True
        removed = await self.store.clear_local_orders()
        if removed:
            logger.info(f"Dropped {removed} local order copies after refresh")

    async def run_periodically(self, interval: float) -> None:
        """
        Sweep every ``interval`` seconds while orders are queued.

        Runs until cancelled.
        """
        logger.info(f"Background sync every {interval:g}s")
        while True:
            await asyncio.sleep(interval)
            try:
                if await self.store.pending_count():
                    await self.sync_pending_orders()
            except StorageError as e:
                logger.error(f"Background sync failed: {e}")
