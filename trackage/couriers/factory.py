"""
Courier client factory - builds one client per usable courier from config.

FedEx and USPS are registered only when credentials are configured. UPS
falls back to the credential-free web lookup when it has none. A courier
missing from the returned mapping has its packages skipped by the sync
service.
"""

import logging
from typing import Dict, Optional

import httpx

from ..config import CourierConfig
from ..models import Courier
from .base import CourierClient
from .fedex import FedexClient
from .token_cache import TokenCache
from .ups import UpsClient
from .ups_web import UpsWebClient
from .usps import UspsClient

logger = logging.getLogger(__name__)

_CREDENTIALED_CLIENTS = {
    Courier.FEDEX: FedexClient,
    Courier.UPS: UpsClient,
    Courier.USPS: UspsClient,
}

_FALLBACK_CLIENTS = {
    Courier.UPS: UpsWebClient,
}


def build_courier_client(
    courier: Courier,
    config: CourierConfig,
    token_cache: TokenCache,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[CourierClient]:
    """Build the client for one courier, or None if it cannot be polled."""
    settings = config.for_courier(courier)
    if settings.has_credentials:
        client_cls = _CREDENTIALED_CLIENTS[courier]
        logger.info(f"{courier.display_name} courier client enabled")
        return client_cls(settings=settings, token_cache=token_cache, http_client=http_client)

    fallback_cls = _FALLBACK_CLIENTS.get(courier)
    if fallback_cls is not None:
        logger.info(f"{courier.display_name} credentials not configured, using credential-free lookup")
        return fallback_cls(settings=settings, http_client=http_client)

    logger.info(f"{courier.display_name} credentials not configured, packages will be skipped")
    return None


def build_courier_clients(
    config: CourierConfig,
    token_cache: TokenCache,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Dict[Courier, CourierClient]:
    """Build clients for every courier that can be polled."""
    clients: Dict[Courier, CourierClient] = {}
    for courier in Courier:
        client = build_courier_client(courier, config, token_cache, http_client)
        if client is not None:
            clients[courier] = client
    return clients
