"""Tests for trackage.ingestion - EmailIngestor and IngestionService"""

import asyncio

import pytest

from trackage.ingestion import EmailIngestor, IngestionService
from trackage.models import Courier, EmailRecord
from trackage.protocols import MailboxCollectorProtocol
from trackage.store import LAST_SEEN_UID_KEY, MemoryPackageStore, StoreUnavailableError


class FakeCollector:
    """In-memory mailbox; remembers the last_uid it was asked about."""

    def __init__(self, records=None, error=None):
        self.records = list(records or [])
        self.error = error
        self.requests = []

    async def fetch_since(self, last_uid):
        self.requests.append(last_uid)
        if self.error is not None:
            raise self.error
        return [r for r in self.records if last_uid is None or r.uid > last_uid]


def _make_record(uid, body, sender="shop@example.com", subject="Your order"):
    return EmailRecord(uid=uid, subject=subject, sender=sender, body=body)


@pytest.fixture
def store():
    return MemoryPackageStore()


@pytest.fixture
def ingestor(store):
    return EmailIngestor(store)


class TestEmailIngestor:

    async def test_new_package_recorded_with_source_email(self, store, ingestor):
        report = await ingestor.process([_make_record(5, "UPS tracking: 1Z999AA10123456784")])

        assert report.new_packages == 1
        package = await store.get_package("1Z999AA10123456784")
        assert package.courier == Courier.UPS
        assert package.service == "UPS"
        assert package.source_email_uid == 5
        assert package.source_email_from == "shop@example.com"

    async def test_known_package_ignored(self, store, ingestor):
        await ingestor.process([_make_record(5, "1Z999AA10123456784")])
        report = await ingestor.process([_make_record(6, "Reminder: 1Z999AA10123456784")])

        assert report.matches == 1
        assert report.new_packages == 0
        package = await store.get_package("1Z999AA10123456784")
        assert package.source_email_uid == 5

    async def test_undecodable_email_skipped_batch_continues(self, store, ingestor):
        records = [
            _make_record(1, b"\xff\xfe broken"),
            _make_record(2, "Tracking number: 123456789012"),
        ]
        report = await ingestor.process(records)

        assert report.skipped == 1
        assert report.processed == 1
        assert report.new_packages == 1
        assert report.last_uid == 2

    async def test_records_processed_in_uid_order(self, store, ingestor):
        records = [
            _make_record(9, "Shipped 1Z999AA10123456784"),
            _make_record(3, "Shipped 1Z999AA10123456784"),
        ]
        report = await ingestor.process(records)

        assert report.last_uid == 9
        assert (await store.get_package("1Z999AA10123456784")).source_email_uid == 3

    async def test_email_without_numbers(self, ingestor):
        report = await ingestor.process([_make_record(1, "Thanks for your order!")])
        assert report.processed == 1
        assert report.matches == 0

    async def test_rejected_insert_skipped_batch_continues(self):
        store = RejectingStore()
        ingestor = EmailIngestor(store)
        records = [
            _make_record(1, "UPS tracking: 1Z999AA10123456784", subject="Order\x00 shipped"),
            _make_record(2, "Tracking number: 123456789012"),
        ]

        report = await ingestor.process(records)

        assert report.skipped == 1
        assert report.processed == 1
        assert report.new_packages == 1
        assert report.last_uid == 2
        assert await store.get_package("1Z999AA10123456784") is None
        assert (await store.get_package("123456789012")).source_email_uid == 2

    async def test_store_loss_during_insert_propagates(self, store, ingestor):
        async def broken_insert(package):
            raise StoreUnavailableError("connection refused")

        store.insert_package = broken_insert
        with pytest.raises(StoreUnavailableError):
            await ingestor.process([_make_record(1, "Tracking number: 123456789012")])


class RejectingStore(MemoryPackageStore):
    """Refuses subjects with NUL bytes, as Postgres text columns do."""

    async def insert_package(self, package):
        if package.source_email_subject and "\x00" in package.source_email_subject:
            raise ValueError("invalid byte sequence for encoding UTF8: 0x00")
        return await super().insert_package(package)


class TestIngestionService:

    async def test_collector_satisfies_protocol(self):
        assert isinstance(FakeCollector(), MailboxCollectorProtocol)

    async def test_poll_advances_last_seen_uid(self, store, ingestor):
        collector = FakeCollector([
            _make_record(10, "Tracking number: 123456789012"),
            _make_record(11, "nothing here"),
        ])
        service = IngestionService(collector, ingestor, store)

        report = await service.poll_once()

        assert report.new_packages == 1
        assert collector.requests == [None]
        assert await store.get_metadata(LAST_SEEN_UID_KEY) == "11"

    async def test_second_poll_resumes_from_last_seen(self, store, ingestor):
        collector = FakeCollector([_make_record(10, "Tracking number: 123456789012")])
        service = IngestionService(collector, ingestor, store)

        await service.poll_once()
        collector.records.append(_make_record(12, "Shipped EC123456785US"))
        report = await service.poll_once()

        assert collector.requests == [None, 10]
        assert report.new_packages == 1
        assert await store.get_metadata(LAST_SEEN_UID_KEY) == "12"

    async def test_already_seen_records_filtered(self, store, ingestor):
        await store.set_metadata(LAST_SEEN_UID_KEY, "20")

        class SloppyCollector(FakeCollector):
            async def fetch_since(self, last_uid):
                self.requests.append(last_uid)
                return self.records

        collector = SloppyCollector([_make_record(20, "Shipped 1Z999AA10123456784")])
        report = await IngestionService(collector, ingestor, store).poll_once()

        assert report.new_packages == 0
        assert await store.get_package("1Z999AA10123456784") is None

    async def test_empty_mailbox_keeps_metadata(self, store, ingestor):
        service = IngestionService(FakeCollector(), ingestor, store)
        await service.poll_once()
        assert await store.get_metadata(LAST_SEEN_UID_KEY) is None

    async def test_collector_failure_does_not_stop_loop(self, store, ingestor):
        collector = FakeCollector(error=ConnectionError("IMAP down"))
        service = IngestionService(collector, ingestor, store, interval_seconds=0.01)

        await service.start()
        for _ in range(100):
            if len(collector.requests) >= 2:
                break
            await asyncio.sleep(0.01)
        await service.stop()

        assert len(collector.requests) >= 2
        assert not service.running

    async def test_store_loss_stops_loop(self, store, ingestor):
        async def broken(key):
            raise StoreUnavailableError("connection refused")

        store.get_metadata = broken
        service = IngestionService(FakeCollector(), ingestor, store, interval_seconds=3600)

        await service.start()
        with pytest.raises(StoreUnavailableError):
            await asyncio.wait_for(service.wait(), timeout=2)
        await service.stop()
