"""UPS Tracking API client (OAuth client credentials over HTTP Basic)."""

import logging
import time
import uuid
from typing import Any, Dict, Optional

import httpx

from ..models import Courier
from .base import CourierClient, ProviderStatusSample, first
from .token_cache import AccessToken

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://onlinetools.ups.com"
TRANSACTION_SOURCE = "trackage"


class UpsClient(CourierClient):
    """UPS Tracking API v1."""

    courier = Courier.UPS
    requires_auth = True

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    async def fetch_token(self) -> AccessToken:
        logger.debug("Fetching new UPS OAuth token")
        response = await self._send(
            "POST",
            f"{self.base_url}/security/v1/oauth/token",
            auth=httpx.BasicAuth(self.settings.client_id, self.settings.client_secret),
            data={"grant_type": "client_credentials"},
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
            f"{self.base_url}/api/track/v1/details/{tracking_number}",
            tracking_number,
            headers={
                "Authorization": f"Bearer {token}",
                "transId": f"{TRANSACTION_SOURCE}-{int(time.time())}-{uuid.uuid4().hex[:8]}",
                "transactionSrc": TRANSACTION_SOURCE,
            },
        )
        self._raise_for_status(response, tracking_number)
        body = self._json(response, tracking_number)

        # trackResponse.shipment[0].package[0].currentStatus
        shipment = first((body.get("trackResponse") or {}).get("shipment"))
        package = first(shipment.get("package"))
        status = package.get("currentStatus") or {}
        code = status.get("code")
        if not code:
            raise self._malformed("no currentStatus.code in response", body, tracking_number)

        sample = ProviderStatusSample(
            raw_status=code,
            description=status.get("description") or None,
            location=_activity_location(package),
            estimated_delivery=_delivery_date(package),
        )
        logger.debug(f"UPS status for {tracking_number} ({service}): {code}")
        return sample


def _activity_location(package: Dict[str, Any]) -> Optional[str]:
    activity = first(package.get("activity"))
    address = (activity.get("location") or {}).get("address") or {}
    city = address.get("city")
    if not city:
        return None
    state = address.get("stateProvince")
    return f"{city}, {state}" if state else city


def _delivery_date(package: Dict[str, Any]) -> Optional[str]:
    # deliveryDate[].date is YYYYMMDD
    raw = first(package.get("deliveryDate")).get("date")
    if not raw or len(raw) != 8 or not raw.isdigit():
        return raw or None
    return f"{raw[:4]}-{raw[4:6]}-{raw[6:]}"
