"""StatusSyncService - fixed-interval status polling for every non-terminal package."""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Set

from ..couriers import (
    AuthError,
    CourierClient,
    CourierError,
    NotFound,
    ProviderStatusSample,
    RateLimited,
)
from ..models import CanonicalStatus, Courier, StatusUpdate, TrackedPackage
from ..normalizer import normalize_status
from ..store import PackageStore, StoreUnavailableError

logger = logging.getLogger(__name__)

Normalizer = Callable[[Courier, Optional[str]], CanonicalStatus]


@dataclass
class SyncReport:
    """Counters for one sync cycle. checked == updated + unchanged + failed."""
    checked: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    skipped: int = 0
    delivered: int = 0
    suspended: List[Courier] = field(default_factory=list)


@dataclass
class _GroupState:
    courier: Courier
    client: CourierClient
    semaphore: asyncio.Semaphore
    auth_failed: bool = False


class StatusSyncService:
    """Periodic status synchronizer.

    Each cycle loads the non-terminal packages, groups them by courier and
    polls each group through its courier client with bounded concurrency.
    A changed status or description is appended to the package's history;
    anything else leaves the package alone until the next cycle.

    A courier whose credentials are rejected (AuthError) is suspended: its
    packages are skipped every cycle until set_clients() hands over a client
    with different credentials.
    """

    def __init__(
        self,
        store: PackageStore,
        clients: Mapping[Courier, CourierClient],
        interval_seconds: float = 3600,
        shutdown_grace_seconds: float = 10.0,
        normalize: Normalizer = normalize_status,
    ):
        self._store = store
        self._clients: Dict[Courier, CourierClient] = dict(clients)
        self._interval = interval_seconds
        self._shutdown_grace = shutdown_grace_seconds
        self._normalize = normalize
        # courier -> credentials fingerprint that was rejected
        self._suspended: Dict[Courier, Optional[str]] = {}
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._last_report: Optional[SyncReport] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def clients(self) -> Dict[Courier, CourierClient]:
        return dict(self._clients)

    @property
    def suspended_couriers(self) -> Set[Courier]:
        return set(self._suspended)

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self._last_report

    async def set_clients(self, clients: Mapping[Courier, CourierClient]) -> Dict[Courier, CourierClient]:
        """
        Replace the courier clients between cycles.

        Tokens cached for the previous clients are dropped before the swap,
        so no cycle pairs a new client with an old token. Suspensions are
        lifted for couriers whose new client carries different credentials
        (or that no longer have a client).

        Returns:
            The previous clients, for the caller to close
        """
        async with self._cycle_lock:
            previous = self._clients
            for client in previous.values():
                client.forget_token()
            self._clients = dict(clients)
            for courier, rejected in list(self._suspended.items()):
                client = self._clients.get(courier)
                if client is None or client.credentials_fingerprint != rejected:
                    del self._suspended[courier]
                    logger.info(f"{courier.display_name} credentials changed, resuming status checks")
            return previous

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the sync loop. The first cycle runs immediately."""
        if self._running:
            return
        self._running = True
        self._wake.clear()
        self._loop_task = asyncio.create_task(self._sync_loop())
        logger.info(
            f"StatusSyncService started (interval={self._interval}s, "
            f"couriers={', '.join(c.value for c in self._clients) or 'none'})"
        )

    async def stop(self) -> None:
        """Stop the loop, giving a running cycle the grace period before cancelling it."""
        self._running = False
        self._wake.set()
        task = self._loop_task
        if task:
            done, _ = await asyncio.wait({task}, timeout=self._shutdown_grace)
            if not done:
                logger.warning(
                    f"Sync cycle still running after {self._shutdown_grace}s, cancelling"
                )
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except StoreUnavailableError as e:
                logger.error(f"Sync loop had stopped: {e}")
            self._loop_task = None
        logger.info("StatusSyncService stopped")

    async def wait(self) -> None:
        """Wait for the sync loop to end, re-raising a fatal error."""
        if self._loop_task:
            await self._loop_task

    async def _sync_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except StoreUnavailableError:
                logger.error("Package store unavailable, stopping status sync")
                self._running = False
                raise
            except Exception as e:
                logger.error(f"Sync cycle failed: {e}", exc_info=True)

            if not self._running:
                break
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> SyncReport:
        """Run one full sync cycle. Cycles never overlap."""
        async with self._cycle_lock:
            report = await self._run_cycle()
        self._last_report = report
        return report

    async def _run_cycle(self) -> SyncReport:
        report = SyncReport()
        packages = await self._store.list_active_packages()

        groups: Dict[Courier, List[TrackedPackage]] = OrderedDict()
        for package in packages:
            groups.setdefault(Courier(package.courier), []).append(package)

        tasks = []
        for courier, group in groups.items():
            client = self._clients.get(courier)
            if client is None:
                logger.info(
                    f"Skipping {len(group)} {courier.display_name} package(s): no courier client"
                )
                report.skipped += len(group)
                continue
            if courier in self._suspended:
                logger.warning(
                    f"Skipping {len(group)} {courier.display_name} package(s): "
                    f"credentials were rejected, update them and reload"
                )
                report.skipped += len(group)
                continue

            state = _GroupState(
                courier=courier,
                client=client,
                semaphore=asyncio.Semaphore(max(1, client.max_concurrency)),
            )
            for package in group:
                tasks.append(asyncio.ensure_future(self._check_package(state, package, report)))

        await _gather_or_cancel(tasks)

        report.suspended = sorted(self._suspended, key=lambda c: c.value)
        logger.info(
            f"Sync cycle done: {report.checked} checked, {report.updated} updated, "
            f"{report.delivered} delivered, {report.failed} failed, {report.skipped} skipped"
        )
        return report

    async def _check_package(
        self,
        state: _GroupState,
        package: TrackedPackage,
        report: SyncReport,
    ) -> None:
        async with state.semaphore:
            if state.auth_failed:
                report.skipped += 1
                return
            report.checked += 1
            sample = await self._fetch(state, package)
            if sample is None:
                report.failed += 1
                return
            await self._apply(state.courier, package, sample, report)

    async def _fetch(
        self,
        state: _GroupState,
        package: TrackedPackage,
    ) -> Optional[ProviderStatusSample]:
        tn = package.tracking_number
        try:
            return await state.client.check_status(tn, package.service)
        except AuthError as e:
            if not state.auth_failed:
                state.auth_failed = True
                self._suspended[state.courier] = state.client.credentials_fingerprint
                logger.error(
                    f"{e}; suspending {state.courier.display_name} status checks "
                    f"until credentials change"
                )
        except RateLimited as e:
            retry = f" (retry after {e.retry_after})" if e.retry_after else ""
            logger.warning(f"{e}{retry}; {tn} will be retried next cycle")
        except NotFound as e:
            logger.info(f"{e}; {tn} will be retried next cycle")
        except CourierError as e:
            logger.warning(f"Status check failed: {e}")
        except Exception as e:
            logger.error(
                f"Unexpected error checking {state.courier.display_name} {tn}: {e}",
                exc_info=True,
            )
        return None

    async def _apply(
        self,
        courier: Courier,
        package: TrackedPackage,
        sample: ProviderStatusSample,
        report: SyncReport,
    ) -> None:
        status = self._normalize(courier, sample.raw_status)
        if status == package.latest_status and sample.description == package.latest_description:
            report.unchanged += 1
            return

        update = StatusUpdate(
            status=status,
            description=sample.description,
            location=sample.location,
            estimated_delivery=sample.estimated_delivery,
        )
        try:
            written = await self._store.append_status(package.id, update)
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.error(f"Failed to record status for {package.tracking_number}: {e}", exc_info=True)
            report.failed += 1
            return

        if not written:
            logger.debug(f"{package.tracking_number}: description already recorded, skipped")
            report.unchanged += 1
            return

        report.updated += 1
        logger.info(
            f"{courier.display_name} {package.tracking_number}: "
            f"{package.latest_status.value if package.latest_status else 'new'} -> {status.value}"
            f"{f' ({sample.description})' if sample.description else ''}"
        )
        if status.is_terminal:
            report.delivered += 1


async def _gather_or_cancel(tasks: List["asyncio.Future"]) -> None:
    """Await all tasks; if one raises (or we are cancelled), cancel the rest first."""
    if not tasks:
        return
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
