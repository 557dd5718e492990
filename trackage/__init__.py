"""
Trackage - package discovery from email and courier status synchronization

Quick Start:
    from trackage import TrackageApp, load_config

    app = TrackageApp(load_config("trackage.yaml"))
    await app.run()
"""

__version__ = "0.1.0"

from .app import TrackageApp, load_collector
from .config import ConfigError, TrackageConfig, load_config
from .couriers import (
    AuthError,
    CourierClient,
    CourierError,
    MalformedResponse,
    NotFound,
    ProviderStatusSample,
    RateLimited,
    TokenCache,
    Transient,
    build_courier_clients,
)
from .extraction import ExtractionError, TrackingNumberExtractor, detect_carrier, get_tracking_url
from .ingestion import EmailIngestor, IngestionReport, IngestionService
from .models import (
    CanonicalStatus,
    Courier,
    EmailRecord,
    NewPackage,
    PackageSummary,
    StatusEvent,
    StatusUpdate,
    TrackedPackage,
    TrackingMatch,
)
from .normalizer import normalize_status
from .protocols import MailboxCollectorProtocol
from .store import MemoryPackageStore, PackageStore, PostgresPackageStore, StoreUnavailableError
from .sync import StatusSyncService, SyncReport

__all__ = [
    # App
    "TrackageApp",
    "load_collector",
    # Config
    "ConfigError",
    "TrackageConfig",
    "load_config",
    # Models
    "CanonicalStatus",
    "Courier",
    "EmailRecord",
    "NewPackage",
    "PackageSummary",
    "StatusEvent",
    "StatusUpdate",
    "TrackedPackage",
    "TrackingMatch",
    # Extraction
    "ExtractionError",
    "TrackingNumberExtractor",
    "detect_carrier",
    "get_tracking_url",
    # Couriers
    "AuthError",
    "CourierClient",
    "CourierError",
    "MalformedResponse",
    "NotFound",
    "ProviderStatusSample",
    "RateLimited",
    "TokenCache",
    "Transient",
    "build_courier_clients",
    "normalize_status",
    # Storage
    "MemoryPackageStore",
    "PackageStore",
    "PostgresPackageStore",
    "StoreUnavailableError",
    # Services
    "EmailIngestor",
    "IngestionReport",
    "IngestionService",
    "MailboxCollectorProtocol",
    "StatusSyncService",
    "SyncReport",
]
