"""FedEx Track API client (OAuth client credentials)."""

import logging
from typing import Any, Dict, Optional

from ..models import Courier
from .base import CourierClient, ProviderStatusSample, first
from .errors import NotFound, Transient
from .token_cache import AccessToken

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://apis.fedex.com"


class FedexClient(CourierClient):
    """FedEx Track API v1."""

    courier = Courier.FEDEX
    requires_auth = True

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or DEFAULT_BASE_URL).rstrip("/")

    async def fetch_token(self) -> AccessToken:
        logger.debug("Fetching new FedEx OAuth token")
        response = await self._send(
            "POST",
            f"{self.base_url}/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.settings.client_id,
                "client_secret": self.settings.client_secret,
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
            "POST",
            f"{self.base_url}/track/v1/trackingnumbers",
            tracking_number,
            headers={"Authorization": f"Bearer {token}"},
            json={
                "trackingInfo": [
                    {"trackingNumberInfo": {"trackingNumber": tracking_number}}
                ],
                "includeDetailedScans": False,
            },
        )
        self._raise_for_status(response, tracking_number)
        body = self._json(response, tracking_number)

        # output.completeTrackResults[0].trackResults[0]
        complete = first((body.get("output") or {}).get("completeTrackResults"))
        track_result = first(complete.get("trackResults"))
        if not track_result:
            raise self._malformed("no trackResults in response", body, tracking_number)

        error = track_result.get("error")
        if isinstance(error, dict):
            code = error.get("code") or ""
            logger.warning(f"FedEx tracking error for {tracking_number}: {code} {error.get('message', '')}")
            if "NOTFOUND" in code.upper().replace("_", ""):
                raise NotFound(self.courier, f"tracking number not found ({code})", tracking_number)
            raise Transient(self.courier, f"tracking error {code}", tracking_number)

        detail = track_result.get("latestStatusDetail") or {}
        code = detail.get("code")
        if not code:
            raise self._malformed("no latestStatusDetail.code in response", body, tracking_number)

        sample = ProviderStatusSample(
            raw_status=code,
            description=detail.get("description") or detail.get("statusByLocale") or None,
            location=_format_location(detail.get("scanLocation")),
            estimated_delivery=_estimated_delivery(track_result),
        )
        logger.debug(f"FedEx status for {tracking_number} ({service}): {code}")
        return sample


def _format_location(location: Any) -> Optional[str]:
    if not isinstance(location, dict):
        return None
    city = location.get("city")
    if not city:
        return None
    state = location.get("stateOrProvinceCode")
    return f"{city}, {state}" if state else city


def _estimated_delivery(track_result: Dict[str, Any]) -> Optional[str]:
    for entry in track_result.get("dateAndTimes") or []:
        if isinstance(entry, dict) and entry.get("type") == "ESTIMATED_DELIVERY":
            return entry.get("dateTime")
    return None
