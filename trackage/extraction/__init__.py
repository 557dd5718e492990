"""
Tracking number extraction - carrier detection and email scanning
"""

from .carrier_detector import (
    FormatMatch,
    detect_carrier,
    get_tracking_url,
    match_formats,
    normalize_tracking_number,
)
from .extractor import ExtractionError, TrackingNumberExtractor

__all__ = [
    "ExtractionError",
    "FormatMatch",
    "TrackingNumberExtractor",
    "detect_carrier",
    "get_tracking_url",
    "match_formats",
    "normalize_tracking_number",
]
