"""
                Waitstaff Ordering Client

Offline-capable ordering client for restaurant waitstaff: a local cart and
order queue backed by SQLite, replayed against the restaurant REST API
whenever connectivity returns.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
