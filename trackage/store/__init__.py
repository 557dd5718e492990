"""
Package storage - packages, status history and metadata
"""

from .base import LAST_SEEN_UID_KEY, PackageStore, StoreUnavailableError
from .memory import MemoryPackageStore
from .postgres import PostgresPackageStore

__all__ = [
    "LAST_SEEN_UID_KEY",
    "MemoryPackageStore",
    "PackageStore",
    "PostgresPackageStore",
    "StoreUnavailableError",
]
