"""
Courier clients - FedEx, UPS (API and credential-free web lookup), USPS
"""

from .base import CourierClient, ProviderStatusSample
from .errors import (
    AuthError,
    CourierError,
    MalformedResponse,
    NotFound,
    RateLimited,
    Transient,
)
from .factory import build_courier_client, build_courier_clients
from .fedex import FedexClient
from .token_cache import AccessToken, TokenCache
from .ups import UpsClient
from .ups_web import UpsWebClient
from .usps import UspsClient

__all__ = [
    "AccessToken",
    "AuthError",
    "CourierClient",
    "CourierError",
    "FedexClient",
    "MalformedResponse",
    "NotFound",
    "ProviderStatusSample",
    "RateLimited",
    "TokenCache",
    "Transient",
    "UpsClient",
    "UpsWebClient",
    "UspsClient",
    "build_courier_client",
    "build_courier_clients",
]
