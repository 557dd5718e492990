"""
Package store - persistence contract for packages and their status history.

Implementations:
- MemoryPackageStore: in-process storage for tests and embedding
- PostgresPackageStore: asyncpg-backed storage for production

Invariants every implementation enforces at write time:
- tracking_number is unique; insert_package() is insert-once
- status events are append-only
- per package, no two events share an identical non-null description
  (a conflicting append is skipped, not an error); null descriptions repeat freely
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import NewPackage, PackageSummary, StatusEvent, StatusUpdate, TrackedPackage

LAST_SEEN_UID_KEY = "last_seen_uid"


class StoreUnavailableError(Exception):
    """The persistence layer is unreachable. Fatal for the process."""


class PackageStore(ABC):
    """
    Abstract base class for package storage backends.

    All storage backends must implement these methods.
    """

    async def initialize(self) -> None:
        """Prepare the backend. Safe to call more than once."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def insert_package(self, package: NewPackage) -> bool:
        """
        Insert a package unless its tracking number is already known.

        Returns:
            True if a new row was inserted, False if it already existed
        """
        pass

    @abstractmethod
    async def get_package(self, tracking_number: str) -> Optional[TrackedPackage]:
        """Get a package by tracking number, with its latest status."""
        pass

    @abstractmethod
    async def list_active_packages(self) -> List[TrackedPackage]:
        """All packages whose latest status is not delivered (including never-checked ones)."""
        pass

    @abstractmethod
    async def append_status(self, package_id: int, update: StatusUpdate) -> bool:
        """
        Append a status event.

        Returns:
            True if written, False if skipped by the description dedup constraint
        """
        pass

    @abstractmethod
    async def get_status_history(self, package_id: int) -> List[StatusEvent]:
        """Status events for a package, newest first."""
        pass

    @abstractmethod
    async def list_packages_with_status(self) -> List[PackageSummary]:
        """All packages with their latest status details, newest package first."""
        pass

    @abstractmethod
    async def get_metadata(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_metadata(self, key: str, value: str) -> None:
        pass
