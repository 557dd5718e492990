"""
Base Courier Client - Abstract interface for all courier tracking clients

Each courier (FedEx, UPS, USPS) implements this interface. Clients receive
their settings directly and never touch the package database.

    sample = await client.check_status("123456789012", "FedEx Express")
    sample.raw_status  # "OC", "D", "Pre-Shipment", ...

Failures are raised as CourierError subclasses (see errors.py).
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import CourierSettings
from ..models import Courier
from .errors import (
    AuthError,
    CourierError,
    MalformedResponse,
    NotFound,
    RateLimited,
    Transient,
)
from .token_cache import AccessToken, TokenCache

logger = logging.getLogger(__name__)

# Raw payloads are truncated to this many characters in logs
MAX_LOGGED_PAYLOAD = 2000


@dataclass
class ProviderStatusSample:
    """What a courier reported for one tracking number."""
    raw_status: str
    description: Optional[str] = None
    location: Optional[str] = None
    estimated_delivery: Optional[str] = None


class CourierClient(ABC):
    """
    Abstract base class for courier clients.

    Subclasses implement:
    - fetch_status()
    - fetch_token()  (only when requires_auth is True)
    """

    courier: Courier
    requires_auth: bool = True

    def __init__(
        self,
        settings: Optional[CourierSettings] = None,
        token_cache: Optional[TokenCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or CourierSettings()
        self._token_cache = token_cache
        if self.requires_auth:
            if token_cache is None:
                raise ValueError(f"{type(self).__name__} requires a TokenCache")
            if not self.settings.has_credentials:
                raise ValueError(f"{type(self).__name__} requires client_id and client_secret")
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.settings.timeout_seconds)

    @property
    def max_concurrency(self) -> int:
        return self.settings.max_concurrency

    @property
    def credentials_fingerprint(self) -> Optional[str]:
        return self.settings.fingerprint if self.requires_auth else None

    def forget_token(self) -> None:
        """Drop this courier's cached token; the next check authenticates again."""
        if self._token_cache is not None:
            self._token_cache.invalidate(self.courier)

    async def close(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._owns_http:
            await self._http.aclose()

    # ===== Contract =====

    async def check_status(self, tracking_number: str, service: str) -> ProviderStatusSample:
        """
        Fetch the current status of one package.

        Raises:
            AuthError, RateLimited, NotFound, Transient, MalformedResponse
        """
        token = await self.authenticate() if self.requires_auth else None
        return await self.fetch_status(tracking_number, service, token)

    async def authenticate(self) -> str:
        """Return a bearer token, refreshing through the shared cache if needed."""
        return await self._token_cache.get(self.courier, self.fetch_token)

    async def fetch_token(self) -> AccessToken:
        """Exchange client credentials for an access token."""
        raise NotImplementedError(f"{type(self).__name__} does not authenticate")

    @abstractmethod
    async def fetch_status(
        self,
        tracking_number: str,
        service: str,
        token: Optional[str],
    ) -> ProviderStatusSample:
        """Call the provider and parse its answer."""
        pass

    # ===== Common helper methods =====

    async def _send(
        self,
        method: str,
        url: str,
        tracking_number: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, mapping network failures to Transient."""
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise Transient(self.courier, f"request timed out: {e}", tracking_number) from e
        except httpx.HTTPError as e:
            raise Transient(self.courier, f"request failed: {e}", tracking_number) from e

    def _raise_for_status(
        self,
        response: httpx.Response,
        tracking_number: Optional[str] = None,
    ) -> None:
        """Map HTTP error statuses shared by all tracking endpoints."""
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise RateLimited(
                self.courier,
                "rate limited by provider",
                tracking_number,
                retry_after=response.headers.get("Retry-After"),
            )
        if status == 404:
            raise NotFound(self.courier, "tracking number not found", tracking_number)
        if status == 401:
            # Token rejected mid-life; refresh on the next cycle
            self.forget_token()
            raise Transient(self.courier, "access token rejected", tracking_number)
        if status == 403:
            raise AuthError(self.courier, "access forbidden for configured credentials", tracking_number)
        if status >= 500:
            raise Transient(self.courier, f"server error {status}", tracking_number)
        raise Transient(
            self.courier,
            f"unexpected HTTP {status}: {_truncate(response.text)}",
            tracking_number,
        )

    def _raise_for_token_status(self, response: httpx.Response) -> None:
        """Map token endpoint failures. Rejected credentials are fatal."""
        status = response.status_code
        if status < 400:
            return
        if status in (400, 401, 403):
            logger.warning(
                f"{self.courier.display_name} rejected client credentials "
                f"(HTTP {status}): {_truncate(response.text)}"
            )
            raise AuthError(self.courier, f"credentials rejected (HTTP {status})")
        self._raise_for_status(response)

    def _json(self, response: httpx.Response, tracking_number: Optional[str] = None) -> Dict[str, Any]:
        """Decode a JSON object body or raise MalformedResponse."""
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise self._malformed("response is not valid JSON", response.text, tracking_number) from e
        if not isinstance(data, dict):
            raise self._malformed("response is not a JSON object", data, tracking_number)
        return data

    def _malformed(
        self,
        message: str,
        payload: Any,
        tracking_number: Optional[str] = None,
    ) -> MalformedResponse:
        logger.warning(
            f"Malformed {self.courier.display_name} response for {tracking_number or 'token'}: "
            f"{message}; payload={_truncate(payload)}"
        )
        return MalformedResponse(self.courier, message, tracking_number, payload=payload)

    def _parse_token(self, data: Dict[str, Any]) -> AccessToken:
        """Build an AccessToken from an OAuth token response."""
        access_token = data.get("access_token")
        expires_in = data.get("expires_in")
        if not access_token or expires_in is None:
            raise self._malformed("token response missing access_token or expires_in", data)
        try:
            # UPS sends expires_in as a string
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            raise self._malformed("token expires_in is not an integer", data)
        logger.debug(f"{self.courier.display_name} OAuth token acquired (expires_in={expires_in}s)")
        return AccessToken.from_expires_in(access_token, expires_in, clock=self._token_cache.clock)

    def __repr__(self):
        return f"<{self.__class__.__name__} courier={self.courier.value}>"


def _truncate(payload: Any) -> str:
    text = payload if isinstance(payload, str) else json.dumps(payload, default=str)
    if len(text) > MAX_LOGGED_PAYLOAD:
        return text[:MAX_LOGGED_PAYLOAD] + "..."
    return text


def first(items: Any) -> Dict[str, Any]:
    """First element of a JSON array as a dict, or an empty dict."""
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


__all__ = [
    "CourierClient",
    "CourierError",
    "ProviderStatusSample",
    "first",
]
