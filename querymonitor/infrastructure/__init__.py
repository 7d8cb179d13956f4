"""
Infrastructure package for the query monitor.

Centralizes I/O concerns: short-lived connections to the monitored database,
the SQLAlchemy snapshot store and the persisted connection profile. Keep this
layer focused on I/O and resource management, decoupled from the sampling
logic.
"""

from querymonitor.infrastructure.db_factory import create_store_engine, target_connection
from querymonitor.infrastructure.profile_store import ProfileStore
from querymonitor.infrastructure.store import SnapshotStore

__all__ = [
    "ProfileStore",
    "SnapshotStore",
    "create_store_engine",
    "target_connection",
]
