"""
Trackage data models - couriers, canonical statuses, packages and status events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union


class Courier(str, Enum):
    """Supported package-delivery providers."""
    FEDEX = "fedex"
    UPS = "ups"
    USPS = "usps"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Courier.FEDEX: "FedEx",
    Courier.UPS: "UPS",
    Courier.USPS: "USPS",
}


class CanonicalStatus(str, Enum):
    """Normalized package lifecycle state."""
    WAITING = "waiting"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"

    @property
    def is_terminal(self) -> bool:
        return self is CanonicalStatus.DELIVERED


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EmailRecord:
    """One message handed over by a mailbox collector."""
    uid: int
    subject: Optional[str] = None
    sender: Optional[str] = None
    date: Optional[datetime] = None
    body: Union[str, bytes, None] = None


@dataclass(frozen=True)
class TrackingMatch:
    """A validated (courier, tracking number, service) found in an email."""
    courier: Courier
    tracking_number: str
    service: str


@dataclass
class NewPackage:
    """Insert payload for a package discovered in an email."""
    tracking_number: str
    courier: Courier
    service: str
    source_email_uid: int
    source_email_subject: Optional[str] = None
    source_email_from: Optional[str] = None
    source_email_date: Optional[datetime] = None

    @classmethod
    def from_match(cls, match: TrackingMatch, record: EmailRecord) -> "NewPackage":
        return cls(
            tracking_number=match.tracking_number,
            courier=match.courier,
            service=match.service,
            source_email_uid=record.uid,
            source_email_subject=record.subject,
            source_email_from=record.sender,
            source_email_date=record.date,
        )


@dataclass
class TrackedPackage:
    """A stored package together with its most recent status event, if any."""
    id: int
    tracking_number: str
    courier: Courier
    service: str
    created_at: datetime
    source_email_uid: Optional[int] = None
    source_email_subject: Optional[str] = None
    source_email_from: Optional[str] = None
    source_email_date: Optional[datetime] = None
    latest_status: Optional[CanonicalStatus] = None
    latest_description: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.latest_status is not None and self.latest_status.is_terminal


@dataclass
class StatusUpdate:
    """A status observation the sync service wants to append."""
    status: CanonicalStatus
    description: Optional[str] = None
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None
    checked_at: datetime = field(default_factory=utc_now)


@dataclass
class StatusEvent:
    """One immutable row of a package's status history."""
    id: int
    package_id: int
    status: CanonicalStatus
    checked_at: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None


@dataclass
class PackageSummary:
    """Read model: a package with its latest status details."""
    id: int
    tracking_number: str
    courier: Courier
    service: str
    status: CanonicalStatus
    created_at: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None
    tracking_url: Optional[str] = None
    source_email_from: Optional[str] = None
