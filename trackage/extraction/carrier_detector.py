"""
Carrier detection based on tracking number format and check digit
"""

import re
from dataclasses import dataclass
from typing import List, Optional

from ..models import Courier


@dataclass(frozen=True)
class FormatMatch:
    """A tracking number whose format and check digit fit one courier service."""
    courier: Courier
    service: str


def normalize_tracking_number(tracking_number: str) -> str:
    """
    Normalize tracking number (remove spaces, dashes, uppercase).

    Args:
        tracking_number: Raw tracking number

    Returns:
        Normalized tracking number
    """
    normalized = re.sub(r'[\s\-\.]', '', tracking_number)
    return normalized.upper()


# ---------------------------------------------------------------------------
# Check digit algorithms
# ---------------------------------------------------------------------------

def _mod10_check_digit(payload: str) -> int:
    """GS1-style mod 10: weight 3 on the rightmost payload digit, alternating with 1."""
    total = 0
    for i, ch in enumerate(reversed(payload)):
        total += int(ch) * (3 if i % 2 == 0 else 1)
    return (10 - total % 10) % 10


def ups_check_digit_valid(tracking_number: str) -> bool:
    """1Z + 15 payload chars + check digit. Letters map to (ord - 3) % 10, odd indexes doubled."""
    if not re.fullmatch(r'1Z[0-9A-Z]{15}\d', tracking_number):
        return False
    body = tracking_number[2:]
    total = 0
    for i, ch in enumerate(body[:-1]):
        value = int(ch) if ch.isdigit() else (ord(ch) - 3) % 10
        total += value * 2 if i % 2 == 1 else value
    return (10 - total % 10) % 10 == int(body[-1])


def fedex_express_check_digit_valid(tracking_number: str) -> bool:
    """12 digits, mod 11 with weights 3, 1, 7 repeating from the left; remainder 10 counts as 0."""
    if not re.fullmatch(r'\d{12}', tracking_number):
        return False
    weights = (3, 1, 7)
    total = sum(int(ch) * weights[i % 3] for i, ch in enumerate(tracking_number[:11]))
    return total % 11 % 10 == int(tracking_number[11])


def mod10_check_digit_valid(tracking_number: str) -> bool:
    """Numeric tracking number whose last digit is a GS1 mod 10 check digit."""
    if not tracking_number.isdigit() or len(tracking_number) < 2:
        return False
    return _mod10_check_digit(tracking_number[:-1]) == int(tracking_number[-1])


def s10_check_digit_valid(tracking_number: str) -> bool:
    """UPU S10 (e.g. EC123456785US): mod 11 over 8 serial digits, weights 8,6,4,2,3,5,9,7."""
    match = re.fullmatch(r'[A-Z]{2}(\d{8})(\d)[A-Z]{2}', tracking_number)
    if not match:
        return False
    serial, check = match.group(1), int(match.group(2))
    weights = (8, 6, 4, 2, 3, 5, 9, 7)
    remainder = sum(int(d) * w for d, w in zip(serial, weights)) % 11
    expected = 11 - remainder
    if expected == 10:
        expected = 0
    elif expected == 11:
        expected = 5
    return expected == check


# ---------------------------------------------------------------------------
# Format matching
# ---------------------------------------------------------------------------

def match_formats(tracking_number: str) -> List[FormatMatch]:
    """
    All courier services whose format and check digit accept the number.

    More than one result means the number is ambiguous on format alone
    (20-digit FedEx SSCC vs. USPS IMpb).

    Args:
        tracking_number: Normalized tracking number

    Returns:
        Matching (courier, service) pairs, possibly empty
    """
    tn = tracking_number
    matches: List[FormatMatch] = []

    # UPS: 1Z + 16 alphanumerics
    if tn.startswith('1Z'):
        if ups_check_digit_valid(tn):
            matches.append(FormatMatch(Courier.UPS, "UPS"))
        return matches

    # USPS international (S10), US-origin only
    if re.fullmatch(r'[A-Z]{2}\d{9}US', tn):
        if s10_check_digit_valid(tn):
            matches.append(FormatMatch(Courier.USPS, "USPS International"))
        return matches

    if not tn.isdigit():
        return matches

    length = len(tn)
    if length == 12 and fedex_express_check_digit_valid(tn):
        matches.append(FormatMatch(Courier.FEDEX, "FedEx Express"))
    elif length == 15 and mod10_check_digit_valid(tn):
        matches.append(FormatMatch(Courier.FEDEX, "FedEx Ground"))
    elif length == 20 and mod10_check_digit_valid(tn):
        matches.append(FormatMatch(Courier.FEDEX, "FedEx Ground SSCC"))
        matches.append(FormatMatch(Courier.USPS, "USPS Tracking"))
    elif length == 22 and tn.startswith('9') and mod10_check_digit_valid(tn):
        matches.append(FormatMatch(Courier.USPS, "USPS Tracking"))

    return matches


def detect_carrier(tracking_number: str) -> Optional[Courier]:
    """
    Detect carrier from tracking number format.

    Args:
        tracking_number: The tracking number to analyze

    Returns:
        Courier, or None if unknown or ambiguous
    """
    matches = match_formats(normalize_tracking_number(tracking_number))
    couriers = {m.courier for m in matches}
    if len(couriers) == 1:
        return couriers.pop()
    return None


def get_tracking_url(courier: Courier, tracking_number: str) -> Optional[str]:
    """
    Get tracking URL for a carrier.

    Args:
        courier: Courier
        tracking_number: Tracking number

    Returns:
        Tracking URL or None
    """
    tracking_number = tracking_number.strip()

    urls = {
        Courier.USPS: f'https://tools.usps.com/go/TrackConfirmAction?tLabels={tracking_number}',
        Courier.UPS: f'https://www.ups.com/track?tracknum={tracking_number}',
        Courier.FEDEX: f'https://www.fedex.com/fedextrack/?trknbr={tracking_number}',
    }

    return urls.get(Courier(courier))
