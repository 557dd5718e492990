"""
Trackage Application - wires storage, courier clients and the two pollers.

Usage:
    from trackage import TrackageApp, load_config

    app = TrackageApp(load_config("trackage.yaml"))
    await app.initialize()
    await app.run()        # until stop() or a fatal store error
    await app.shutdown()
"""

import asyncio
import importlib
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import ConfigError, TrackageConfig
from .couriers import CourierClient, TokenCache, build_courier_clients
from .db import Database
from .extraction import TrackingNumberExtractor
from .ingestion import EmailIngestor, IngestionService
from .models import Courier
from .protocols import MailboxCollectorProtocol
from .store import PackageStore, PostgresPackageStore
from .sync import StatusSyncService

logger = logging.getLogger(__name__)


def load_collector(path: str) -> MailboxCollectorProtocol:
    """
    Load a mailbox collector from a ``module.path:attribute`` string.

    The attribute may be a collector instance, or a class / factory that is
    called without arguments to build one.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"Collector must be given as 'module:attribute', got {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import collector module {module_name!r}: {e}") from e
    try:
        target: Any = getattr(module, attr)
    except AttributeError as e:
        raise ConfigError(f"Module {module_name!r} has no attribute {attr!r}") from e

    collector = target
    if isinstance(target, type) or not isinstance(target, MailboxCollectorProtocol):
        if not callable(target):
            raise ConfigError(f"{path} is neither a collector nor a collector factory")
        collector = target()
    if isinstance(collector, type) or not isinstance(collector, MailboxCollectorProtocol):
        raise ConfigError(f"{path} does not provide an async fetch_since(last_uid) method")
    return collector


class TrackageApp:
    """
    Trackage application entry point.

    Args:
        config: Validated configuration
        store: Package store (default: PostgresPackageStore on config.database)
        collector: Mailbox collector (default: loaded from ingestion.collector)
        http_client: Shared httpx client for courier calls (default: one per client)
    """

    def __init__(
        self,
        config: TrackageConfig,
        store: Optional[PackageStore] = None,
        collector: Optional[MailboxCollectorProtocol] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config
        self._store = store
        self._collector = collector
        self._http_client = http_client
        self._initialized = False

        self._database: Optional[Database] = None
        self._token_cache: Optional[TokenCache] = None
        self._sync_service: Optional[StatusSyncService] = None
        self._ingestion_service: Optional[IngestionService] = None
        self._stop = asyncio.Event()

    @property
    def config(self) -> TrackageConfig:
        return self._config

    @property
    def store(self) -> Optional[PackageStore]:
        return self._store

    @property
    def sync_service(self) -> Optional[StatusSyncService]:
        return self._sync_service

    @property
    def ingestion_service(self) -> Optional[IngestionService]:
        return self._ingestion_service

    async def initialize(self) -> None:
        """Open the store and token cache and build both services. Idempotent."""
        if self._initialized:
            return
        cfg = self._config
        logger.debug(f"Configuration: {cfg.sanitized()}")

        # 1. Storage
        if self._store is None:
            self._database = Database(
                dsn=cfg.database.dsn,
                min_size=cfg.database.min_size,
                max_size=cfg.database.max_size,
                command_timeout=cfg.database.command_timeout_seconds,
            )
            self._store = PostgresPackageStore(self._database)
        await self._store.initialize()

        # 2. Courier clients
        self._token_cache = TokenCache()
        await self._token_cache.start()
        clients = build_courier_clients(cfg.courier, self._token_cache, self._http_client)
        if not clients:
            logger.warning("No courier clients configured, status sync will skip every package")

        # 3. Status sync
        self._sync_service = StatusSyncService(
            store=self._store,
            clients=clients,
            interval_seconds=cfg.status.check_interval_seconds,
            shutdown_grace_seconds=cfg.status.shutdown_grace_seconds,
        )

        # 4. Email ingestion (optional)
        if self._collector is None and cfg.ingestion.collector:
            self._collector = load_collector(cfg.ingestion.collector)
        if self._collector is not None:
            self._ingestion_service = IngestionService(
                collector=self._collector,
                ingestor=EmailIngestor(self._store, TrackingNumberExtractor()),
                store=self._store,
                interval_seconds=cfg.ingestion.check_interval_seconds,
            )
        else:
            logger.info("No mailbox collector configured, email ingestion disabled")

        self._initialized = True
        logger.info("Trackage initialized")

    async def run(self) -> None:
        """
        Run both services until stop() is called.

        Raises:
            StoreUnavailableError: if a service stopped because the store is gone
        """
        await self.initialize()
        self._stop.clear()
        services: List[Any] = [self._sync_service]
        if self._ingestion_service:
            services.append(self._ingestion_service)
        for service in services:
            await service.start()

        stop_waiter = asyncio.ensure_future(self._stop.wait())
        service_waiters = [asyncio.ensure_future(s.wait()) for s in services]
        try:
            done, _ = await asyncio.wait(
                [stop_waiter, *service_waiters],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for waiter in service_waiters:
                if waiter in done and waiter.exception() is not None:
                    raise waiter.exception()
        finally:
            stop_waiter.cancel()
            for waiter in service_waiters:
                waiter.cancel()
            await asyncio.gather(stop_waiter, *service_waiters, return_exceptions=True)

    def stop(self) -> None:
        """Ask run() to return. Safe to call from a signal handler."""
        self._stop.set()

    async def reload(self, config: TrackageConfig) -> None:
        """
        Apply a new configuration's courier settings.

        Courier clients are rebuilt and swapped in between sync cycles;
        couriers suspended for rejected credentials resume when their
        credentials changed. Other sections take effect on restart.
        """
        self._config = config
        if not self._initialized:
            return
        clients = build_courier_clients(config.courier, self._token_cache, self._http_client)
        previous = await self._sync_service.set_clients(clients)
        await _close_clients(previous)
        logger.info(f"Configuration reloaded ({len(clients)} courier client(s))")

    async def shutdown(self) -> None:
        """Stop the services and release every resource."""
        if not self._initialized:
            return
        try:
            if self._ingestion_service:
                await self._ingestion_service.stop()
            if self._sync_service:
                await self._sync_service.stop()
                await _close_clients(self._sync_service.clients)
            if self._token_cache:
                await self._token_cache.close()
            if self._store:
                await self._store.close()
            if self._database:
                await self._database.close()
        except Exception as e:
            logger.warning(f"Error during shutdown: {e}")
        finally:
            self._initialized = False
            self._sync_service = None
            self._ingestion_service = None
            self._token_cache = None
            self._database = None
            logger.info("Trackage shut down")


async def _close_clients(clients: Dict[Courier, CourierClient]) -> None:
    for courier, client in clients.items():
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing {courier.display_name} client: {e}")
