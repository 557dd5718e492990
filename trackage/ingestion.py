"""
Email ingestion - turns collected emails into tracked packages.

EmailIngestor runs the extractor over a batch of records and inserts every
new tracking number. IngestionService polls a MailboxCollectorProtocol on a
fixed interval and remembers the highest processed mailbox UID in the
store's metadata, so restarts resume where they left off.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .extraction import ExtractionError, TrackingNumberExtractor
from .models import EmailRecord, NewPackage, TrackingMatch
from .protocols import MailboxCollectorProtocol
from .store import LAST_SEEN_UID_KEY, PackageStore, StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class IngestionReport:
    """Outcome of one batch."""
    processed: int = 0
    skipped: int = 0
    matches: int = 0
    new_packages: int = 0
    last_uid: Optional[int] = None


class EmailIngestor:
    """Extracts tracking numbers from emails and records new packages."""

    def __init__(
        self,
        store: PackageStore,
        extractor: Optional[TrackingNumberExtractor] = None,
    ):
        self._store = store
        self._extractor = extractor or TrackingNumberExtractor()

    async def process(self, records: Iterable[EmailRecord]) -> IngestionReport:
        """
        Process a batch of emails in UID order.

        A message that cannot be decoded or scanned, or whose packages the
        store rejects, is logged and skipped; the rest of the batch
        continues. StoreUnavailableError propagates.
        """
        report = IngestionReport()
        for record in sorted(records, key=lambda r: r.uid):
            report.last_uid = record.uid
            try:
                matches = self._extractor.extract(record)
            except ExtractionError as e:
                logger.warning(f"Skipping email uid={record.uid}: {e}")
                report.skipped += 1
                continue
            except Exception as e:
                logger.error(f"Failed to scan email uid={record.uid}: {e}", exc_info=True)
                report.skipped += 1
                continue

            try:
                new_packages = await self._record_matches(record, matches)
            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.error(f"Failed to store packages from email uid={record.uid}: {e}", exc_info=True)
                report.skipped += 1
                continue

            report.processed += 1
            report.matches += len(matches)
            report.new_packages += new_packages

        if report.processed or report.skipped:
            logger.info(
                f"Ingested {report.processed} email(s): {report.new_packages} new package(s), "
                f"{report.skipped} skipped"
            )
        return report

    async def _record_matches(self, record: EmailRecord, matches: List[TrackingMatch]) -> int:
        new_packages = 0
        for match in matches:
            if await self._store.insert_package(NewPackage.from_match(match, record)):
                new_packages += 1
            else:
                logger.debug(f"{match.courier.display_name} {match.tracking_number} already known")
        return new_packages


class IngestionService:
    """
    Periodic mailbox poller.

    Fetches messages newer than the stored last_seen_uid, hands them to the
    EmailIngestor and advances last_seen_uid to the highest UID in the batch.
    """

    def __init__(
        self,
        collector: MailboxCollectorProtocol,
        ingestor: EmailIngestor,
        store: PackageStore,
        interval_seconds: float = 300,
    ):
        self._collector = collector
        self._ingestor = ingestor
        self._store = store
        self._interval = interval_seconds
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start polling."""
        if self._running:
            return
        self._running = True
        self._wake.clear()
        self._loop_task = asyncio.create_task(self._poll_loop())
        logger.info(f"IngestionService started (interval={self._interval}s)")

    async def stop(self) -> None:
        """Stop polling. A poll in progress is cancelled."""
        self._running = False
        self._wake.set()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            except StoreUnavailableError as e:
                logger.error(f"Ingestion loop had stopped: {e}")
            self._loop_task = None
        logger.info("IngestionService stopped")

    async def wait(self) -> None:
        """Wait for the poll loop to end, re-raising a fatal error."""
        if self._loop_task:
            await self._loop_task

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def poll_once(self) -> IngestionReport:
        """Fetch and process one batch of new messages."""
        raw = await self._store.get_metadata(LAST_SEEN_UID_KEY)
        last_uid = int(raw) if raw is not None else None

        records: List[EmailRecord] = await self._collector.fetch_since(last_uid)
        if last_uid is not None:
            records = [r for r in records if r.uid > last_uid]
        if not records:
            logger.debug("No new emails")
            return IngestionReport(last_uid=last_uid)

        report = await self._ingestor.process(records)
        if report.last_uid is not None:
            await self._store.set_metadata(LAST_SEEN_UID_KEY, str(report.last_uid))
        return report

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except StoreUnavailableError:
                logger.error("Package store unavailable, stopping ingestion")
                self._running = False
                raise
            except Exception as e:
                logger.error(f"Email poll failed: {e}", exc_info=True)

            if not self._running:
                break
            self._wake.clear()
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
