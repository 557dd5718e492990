"""
UPS credential-free fallback - the public ups.com tracking lookup.

Used automatically when no UPS API credentials are configured. It never
authenticates and never touches the token cache.
"""

import logging
from typing import Any, Optional

from ..models import Courier
from .base import CourierClient, ProviderStatusSample, first
from .errors import NotFound, Transient

logger = logging.getLogger(__name__)

TRACK_URL = "https://www.ups.com/track/api/Track/GetStatus?loc=en_US"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class UpsWebClient(CourierClient):
    """Scrape-style UPS lookup without credentials."""

    courier = Courier.UPS
    requires_auth = False

    @property
    def track_url(self) -> str:
        return self.settings.base_url or TRACK_URL

    async def fetch_status(
        self,
        tracking_number: str,
        service: str,
        token: Optional[str] = None,
    ) -> ProviderStatusSample:
        payload = {"Locale": "en_US", "TrackingNumber": [tracking_number]}
        logger.debug(f"UPS web tracking request for {tracking_number}")

        response = await self._send(
            "POST",
            self.track_url,
            tracking_number,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            json=payload,
        )
        self._raise_for_status(response, tracking_number)
        body = self._json(response, tracking_number)

        details = first(body.get("trackDetails"))
        if not details:
            raise NotFound(self.courier, "no trackDetails in web response", tracking_number)

        code = details.get("packageStatusType")
        if not code:
            raise self._malformed("no packageStatusType in web response", body, tracking_number)

        sample = ProviderStatusSample(
            raw_status=code,
            description=_non_empty(details.get("packageStatus")),
            location=_non_empty(details.get("lastLocation")),
            estimated_delivery=_non_empty(details.get("scheduledDeliveryDate")),
        )
        logger.info(f"UPS web status for {tracking_number}: {code}")
        return sample

    def _raise_for_status(self, response, tracking_number=None):
        # No credentials involved: a 403 means the lookup was blocked, not rejected
        if response.status_code == 403:
            raise Transient(self.courier, "web lookup blocked (HTTP 403)", tracking_number)
        super()._raise_for_status(response, tracking_number)


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
