"""
Status normalizer - maps each courier's raw status vocabulary to the
canonical waiting / in_transit / delivered lifecycle.
"""

from typing import Dict, Optional

from .models import CanonicalStatus, Courier

STATUS_MAP: Dict[Courier, Dict[str, CanonicalStatus]] = {
    # FedEx Track API latestStatusDetail.code
    Courier.FEDEX: {
        "DL": CanonicalStatus.DELIVERED,
        "OC": CanonicalStatus.WAITING,
    },
    # UPS currentStatus.code / packageStatusType
    Courier.UPS: {
        "D": CanonicalStatus.DELIVERED,
        "M": CanonicalStatus.WAITING,
        "P": CanonicalStatus.WAITING,
    },
    # USPS Tracking v3 statusCategory
    Courier.USPS: {
        "Delivered": CanonicalStatus.DELIVERED,
        "Pre-Shipment": CanonicalStatus.WAITING,
    },
}

# Unknown codes keep the package polled rather than closing it out early.
DEFAULT_STATUS = CanonicalStatus.IN_TRANSIT


def normalize_status(courier: Courier, raw_status: Optional[str]) -> CanonicalStatus:
    """
    Normalize a raw provider status code or category.

    Args:
        courier: Courier that produced the code
        raw_status: Raw code (FedEx/UPS) or category (USPS)

    Returns:
        Canonical status, ``in_transit`` for anything unrecognized
    """
    if raw_status is None:
        return DEFAULT_STATUS
    return STATUS_MAP[Courier(courier)].get(raw_status.strip(), DEFAULT_STATUS)
