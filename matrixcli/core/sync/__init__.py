"""Sync engine module."""
from .engine import SyncEngine, SyncStatus

__all__ = [
    'SyncEngine',
    'SyncStatus',
]
