"""In-memory package store."""

import itertools
from typing import Dict, List, Optional, Tuple

from ..extraction.carrier_detector import get_tracking_url
from ..models import (
    CanonicalStatus,
    NewPackage,
    PackageSummary,
    StatusEvent,
    StatusUpdate,
    TrackedPackage,
    utc_now,
)
from .base import PackageStore


class MemoryPackageStore(PackageStore):
    """
    In-memory package store.

    Every method completes without suspending, so each write is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self):
        self._packages: Dict[int, TrackedPackage] = {}
        self._by_tracking_number: Dict[str, int] = {}
        self._events: Dict[int, List[StatusEvent]] = {}
        self._descriptions: Dict[Tuple[int, str], int] = {}
        self._metadata: Dict[str, str] = {}
        self._package_ids = itertools.count(1)
        self._event_ids = itertools.count(1)

    async def insert_package(self, package: NewPackage) -> bool:
        if package.tracking_number in self._by_tracking_number:
            return False
        package_id = next(self._package_ids)
        self._packages[package_id] = TrackedPackage(
            id=package_id,
            tracking_number=package.tracking_number,
            courier=package.courier,
            service=package.service,
            created_at=utc_now(),
            source_email_uid=package.source_email_uid,
            source_email_subject=package.source_email_subject,
            source_email_from=package.source_email_from,
            source_email_date=package.source_email_date,
        )
        self._by_tracking_number[package.tracking_number] = package_id
        self._events[package_id] = []
        return True

    async def get_package(self, tracking_number: str) -> Optional[TrackedPackage]:
        package_id = self._by_tracking_number.get(tracking_number)
        if package_id is None:
            return None
        return self._with_latest(self._packages[package_id])

    async def list_active_packages(self) -> List[TrackedPackage]:
        packages = [self._with_latest(p) for p in self._packages.values()]
        return [p for p in packages if not p.is_terminal]

    async def append_status(self, package_id: int, update: StatusUpdate) -> bool:
        if package_id not in self._packages:
            raise KeyError(f"Unknown package id {package_id}")
        if update.description is not None:
            key = (package_id, update.description)
            if key in self._descriptions:
                return False
        event = StatusEvent(
            id=next(self._event_ids),
            package_id=package_id,
            status=CanonicalStatus(update.status),
            checked_at=update.checked_at,
            description=update.description,
            location=update.location,
            estimated_delivery=update.estimated_delivery,
        )
        self._events[package_id].append(event)
        if update.description is not None:
            self._descriptions[(package_id, update.description)] = event.id
        return True

    async def get_status_history(self, package_id: int) -> List[StatusEvent]:
        return list(reversed(self._events.get(package_id, [])))

    async def list_packages_with_status(self) -> List[PackageSummary]:
        summaries = []
        for package in sorted(self._packages.values(), key=lambda p: p.id, reverse=True):
            latest = self._latest_event(package.id)
            summaries.append(PackageSummary(
                id=package.id,
                tracking_number=package.tracking_number,
                courier=package.courier,
                service=package.service,
                status=latest.status if latest else CanonicalStatus.WAITING,
                created_at=package.created_at,
                description=latest.description if latest else None,
                location=latest.location if latest else None,
                estimated_delivery=latest.estimated_delivery if latest else None,
                tracking_url=get_tracking_url(package.courier, package.tracking_number),
                source_email_from=package.source_email_from,
            ))
        return summaries

    async def get_metadata(self, key: str) -> Optional[str]:
        return self._metadata.get(key)

    async def set_metadata(self, key: str, value: str) -> None:
        self._metadata[key] = value

    # -- helpers --

    def _latest_event(self, package_id: int) -> Optional[StatusEvent]:
        events = self._events.get(package_id)
        return events[-1] if events else None

    def _with_latest(self, package: TrackedPackage) -> TrackedPackage:
        latest = self._latest_event(package.id)
        return TrackedPackage(
            id=package.id,
            tracking_number=package.tracking_number,
            courier=package.courier,
            service=package.service,
            created_at=package.created_at,
            source_email_uid=package.source_email_uid,
            source_email_subject=package.source_email_subject,
            source_email_from=package.source_email_from,
            source_email_date=package.source_email_date,
            latest_status=latest.status if latest else None,
            latest_description=latest.description if latest else None,
        )
