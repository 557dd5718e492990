"""USPS Tracking API v3 client (OAuth client credentials, JSON body)."""

import logging
from typing import Any, Dict, Optional

from ..models import Courier
from .base import CourierClient, ProviderStatusSample, first
from .errors import NotFound
from .token_cache import AccessToken

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://apis.usps.com"


class UspsClient(CourierClient):
    """USPS Tracking API v3."""

    courier = Courier.USPS
    requires_auth = True

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    async def fetch_token(self) -> AccessToken:
        logger.debug("Fetching new USPS OAuth token")
        response = await self._send(
            "POST",
            f"{self.base_url}/oauth2/v3/token",
            json={
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
                "grant_type": "client_credentials",
            },
        )
        self._raise_for_token_status(response)
        return self._parse_token(self._json(response))

    async def fetch_status(
        self,
        tracking_number: str,
        service: str,
        token: Optional[str],
    ) -> ProviderStatusSample:
        response = await self._send(
            "GET",
            f"{self.base_url}/tracking/v3/tracking/{tracking_number}",
            tracking_number,
            headers={"Authorization": f"Bearer {token}"},
            params={"expand": "SUMMARY"},
        )
        self._raise_for_status(response, tracking_number)
        body = self._json(response, tracking_number)

        error = body.get("error")
        if isinstance(error, dict):
            logger.warning(
                f"USPS tracking error for {tracking_number}: "
                f"{error.get('code', '')} {error.get('message', '')}"
            )
            raise NotFound(self.courier, f"tracking error {error.get('code', '')}".strip(), tracking_number)

        category = body.get("statusCategory")
        if not category:
            raise self._malformed("no statusCategory in response", body, tracking_number)

        sample = ProviderStatusSample(
            raw_status=category,
            description=body.get("statusSummary") or body.get("status") or None,
            location=_event_location(body),
            estimated_delivery=_expected_delivery(body),
        )
        logger.debug(f"USPS status for {tracking_number} ({service}): {category}")
        return sample


def _event_location(body: Dict[str, Any]) -> Optional[str]:
    event = first(body.get("trackingEvents"))
    city = event.get("eventCity")
    if not city:
        return None
    state = event.get("eventState")
    return f"{city}, {state}" if state else city


def _expected_delivery(body: Dict[str, Any]) -> Optional[str]:
    expected: Any = body.get("expectedDeliveryTimeStamp") or body.get("expectedDeliveryDate")
    return expected or None
