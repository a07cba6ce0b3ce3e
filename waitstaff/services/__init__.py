"""
                        Services Module

Business logic of the waitstaff client.

Services:
    - store: Local cart, offline order and sync queue store (SQLite)
    - api: Restaurant orders API clients (Mock / HTTP)
    - sync: Offline order queue replay and reconciliation
"""

from waitstaff.services.store import LocalOrderStore
from waitstaff.services.sync import SyncCoordinator, SyncReport

__all__ = ["LocalOrderStore", "SyncCoordinator", "SyncReport"]
