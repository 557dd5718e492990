"""
Tracking number extraction from email content.

Candidates are found with per-format patterns, validated with the
courier check digit (carrier_detector), then filtered with context signals:
the sender's domain, courier names in the text and tracking keywords shortly
before the number. Precision beats recall: a numeric candidate without any
supporting context, or one that fits several couriers equally well, is
dropped rather than guessed.
"""

import logging
import re
from email.utils import parseaddr
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

from ..models import Courier, EmailRecord, TrackingMatch
from .carrier_detector import FormatMatch, match_formats, normalize_tracking_number

logger = logging.getLogger(__name__)

# Characters before a numeric candidate searched for tracking keywords
KEYWORD_WINDOW = 60

_KEYWORD_RE = re.compile(
    r'\b(?:TRACKING|TRACK|SHIPMENT|SHIPPED|SHIPPING|PACKAGE|PARCEL|DELIVERY|WAYBILL)\b'
)

COURIER_DOMAINS: Dict[Courier, Tuple[str, ...]] = {
    Courier.FEDEX: ("fedex.com",),
    Courier.UPS: ("ups.com",),
    Courier.USPS: ("usps.com", "usps.gov"),
}

_COURIER_NAME_RES: Dict[Courier, re.Pattern] = {
    Courier.FEDEX: re.compile(r'\bFED\s?EX\b'),
    Courier.UPS: re.compile(r'\bUPS\b|\bUNITED PARCEL SERVICE\b'),
    Courier.USPS: re.compile(r'\bUSPS\b|\bPOSTAL SERVICE\b'),
}

# Formats that are distinctive enough to accept on the check digit alone
_UPS_RE = re.compile(r'\b1Z(?:[ -]?[0-9A-Z]){16}\b')
_S10_RE = re.compile(r'\b[A-Z]{2}(?:[ -]?\d){9}[ -]?US\b')
# Digit runs of 12-22 digits, optionally grouped with single spaces or dashes
_NUMERIC_RE = re.compile(r'(?<![0-9A-Z])\d(?:[ -]?\d){11,21}(?![0-9A-Z])')

_SEPARATOR_RE = re.compile(r'[ -]')


class ExtractionError(Exception):
    """The message content could not be decoded."""


def _as_text(value: Union[str, bytes, None], field: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"undecodable {field}: {e}") from e
    if isinstance(value, str):
        return value
    raise ExtractionError(f"unsupported {field} type {type(value).__name__}")


def _sender_domain(sender: str) -> str:
    _, address = parseaddr(sender)
    return address.rpartition("@")[2].lower()


class TrackingNumberExtractor:
    """Finds (courier, tracking number, service) tuples in one email."""

    def __init__(self, keyword_window: int = KEYWORD_WINDOW):
        self.keyword_window = keyword_window

    def extract(self, record: EmailRecord) -> List[TrackingMatch]:
        """
        Extract tracking numbers from an email.

        Args:
            record: Email with subject, sender and body

        Returns:
            Validated matches in order of appearance, without duplicates

        Raises:
            ExtractionError: if the subject or body cannot be decoded
        """
        subject = _as_text(record.subject, "subject")
        body = _as_text(record.body, "body")
        sender = _as_text(record.sender, "sender")
        return self.extract_from_text(f"{subject}\n{body}", sender)

    def extract_from_text(self, text: str, sender: Optional[str] = None) -> List[TrackingMatch]:
        """Extract tracking numbers from free text, using the sender as a context signal."""
        haystack = text.upper()
        signalled = self._courier_signals(haystack, sender or "")

        results: List[TrackingMatch] = []
        seen: Set[str] = set()

        for start, tracking_number, formats in self._candidates(haystack):
            if tracking_number in seen:
                continue
            match = self._resolve(haystack, start, tracking_number, formats, signalled)
            if match is None:
                continue
            seen.add(tracking_number)
            results.append(match)

        return results

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _candidates(self, haystack: str) -> Iterable[Tuple[int, str, List[FormatMatch]]]:
        for pattern in (_UPS_RE, _S10_RE):
            for m in pattern.finditer(haystack):
                tracking_number = normalize_tracking_number(m.group(0))
                formats = match_formats(tracking_number)
                if formats:
                    yield m.start(), tracking_number, formats

        for m in _NUMERIC_RE.finditer(haystack):
            raw = m.group(0)
            tracking_number = normalize_tracking_number(raw)
            formats = match_formats(tracking_number)
            if formats:
                yield m.start(), tracking_number, formats
                continue
            # Grouping may have swallowed a neighbouring number; try each group alone
            offset = m.start()
            for group in _SEPARATOR_RE.split(raw):
                if len(group) >= 12:
                    group_formats = match_formats(group)
                    if group_formats:
                        yield offset, group, group_formats
                offset += len(group) + 1

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def _courier_signals(self, haystack: str, sender: str) -> Set[Courier]:
        signals: Set[Courier] = set()
        domain = _sender_domain(sender)
        for courier, domains in COURIER_DOMAINS.items():
            if domain and any(domain == d or domain.endswith("." + d) for d in domains):
                signals.add(courier)
        for courier, pattern in _COURIER_NAME_RES.items():
            if pattern.search(haystack):
                signals.add(courier)
        return signals

    def _keyword_near(self, haystack: str, start: int) -> bool:
        window = haystack[max(0, start - self.keyword_window):start]
        return _KEYWORD_RE.search(window) is not None

    def _resolve(
        self,
        haystack: str,
        start: int,
        tracking_number: str,
        formats: List[FormatMatch],
        signalled: Set[Courier],
    ) -> Optional[TrackingMatch]:
        if not tracking_number.isdigit():
            # 1Z... and S10 forms: check digit is enough
            fmt = formats[0]
            return TrackingMatch(fmt.courier, tracking_number, fmt.service)

        if len(formats) == 1:
            fmt = formats[0]
            if fmt.courier in signalled or self._keyword_near(haystack, start):
                return TrackingMatch(fmt.courier, tracking_number, fmt.service)
            logger.debug(f"Dropping {tracking_number}: no tracking context")
            return None

        supported = [f for f in formats if f.courier in signalled]
        if len(supported) == 1:
            fmt = supported[0]
            return TrackingMatch(fmt.courier, tracking_number, fmt.service)

        logger.debug(
            f"Dropping ambiguous {tracking_number}: fits "
            f"{', '.join(f.courier.value for f in formats)}"
        )
        return None
