"""Tests for trackage.store.postgres.PostgresPackageStore - SQL shape and row mapping

The asyncpg layer is mocked; these tests check the statements that carry the
dedup and insert-once guarantees and the mapping of connection failures.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from trackage.models import CanonicalStatus, Courier, NewPackage, StatusUpdate
from trackage.store import PostgresPackageStore, StoreUnavailableError

CREATED = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def _make_db():
    db = MagicMock()
    db.initialize = AsyncMock()
    db.execute = AsyncMock(return_value="OK")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


def _package_row(**overrides):
    row = {
        "id": 7,
        "tracking_number": "123456789012",
        "courier": "fedex",
        "service": "FedEx Express",
        "created_at": CREATED,
        "source_email_uid": 42,
        "source_email_subject": "Shipped",
        "source_email_from": "shop@example.com",
        "source_email_date": None,
        "latest_status": None,
        "latest_description": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def db():
    return _make_db()


@pytest.fixture
def store(db):
    return PostgresPackageStore(db)


class TestSchema:

    async def test_initialize_creates_tables_and_dedup_index(self, store, db):
        await store.initialize()
        db.initialize.assert_awaited_once()
        statements = [c.args[0] for c in db.execute.await_args_list]
        assert any("CREATE TABLE IF NOT EXISTS packages" in s for s in statements)
        assert any("CREATE TABLE IF NOT EXISTS package_status" in s for s in statements)
        assert any("CREATE TABLE IF NOT EXISTS metadata" in s for s in statements)
        dedup = [s for s in statements if "CREATE UNIQUE INDEX" in s]
        assert len(dedup) == 1
        assert "(package_id, description) WHERE description IS NOT NULL" in dedup[0]


class TestInsertPackage:

    async def test_insert_new(self, store, db):
        db.fetchrow.return_value = {"id": 7}
        package = NewPackage("123456789012", Courier.FEDEX, "FedEx Express", source_email_uid=42)
        assert await store.insert_package(package) is True

        query, *args = db.fetchrow.await_args.args
        assert query.startswith("INSERT INTO packages")
        assert "ON CONFLICT (tracking_number) DO NOTHING" in query
        assert args[:3] == ["123456789012", "fedex", "FedEx Express"]

    async def test_insert_existing(self, store, db):
        db.fetchrow.return_value = None
        package = NewPackage("123456789012", Courier.FEDEX, "FedEx Express", source_email_uid=42)
        assert await store.insert_package(package) is False


class TestAppendStatus:

    async def test_written(self, store, db):
        db.fetchrow.return_value = {"id": 1}
        update = StatusUpdate(CanonicalStatus.DELIVERED, "Delivered", "MEMPHIS, TN", None, CREATED)
        assert await store.append_status(7, update) is True

        query, *args = db.fetchrow.await_args.args
        assert "ON CONFLICT (package_id, description) WHERE description IS NOT NULL DO NOTHING" in query
        assert args == [7, "delivered", CREATED, "Delivered", "MEMPHIS, TN", None]

    async def test_skipped_by_dedup(self, store, db):
        db.fetchrow.return_value = None
        assert await store.append_status(7, StatusUpdate(CanonicalStatus.IN_TRANSIT, "Departed")) is False


class TestReads:

    async def test_get_package_maps_latest_status(self, store, db):
        db.fetchrow.return_value = _package_row(latest_status="in_transit", latest_description="Departed")
        package = await store.get_package("123456789012")
        assert package.id == 7
        assert package.courier == Courier.FEDEX
        assert package.latest_status == CanonicalStatus.IN_TRANSIT
        assert package.latest_description == "Departed"

    async def test_get_package_missing(self, store, db):
        assert await store.get_package("nope") is None

    async def test_active_packages_exclude_delivered(self, store, db):
        db.fetch.return_value = [_package_row(), _package_row(id=8, tracking_number="1Z999AA10123456784",
                                                              courier="ups", service="UPS")]
        packages = await store.list_active_packages()
        assert [p.courier for p in packages] == [Courier.FEDEX, Courier.UPS]
        assert all(p.latest_status is None for p in packages)

        query, *args = db.fetch.await_args.args
        assert "latest.status IS NULL OR latest.status <> $1" in query
        assert args == ["delivered"]

    async def test_history(self, store, db):
        db.fetch.return_value = [{
            "id": 3, "package_id": 7, "status": "delivered", "checked_at": CREATED,
            "description": "Delivered", "location": None, "estimated_delivery": None,
        }]
        history = await store.get_status_history(7)
        assert history[0].status == CanonicalStatus.DELIVERED
        assert "ORDER BY checked_at DESC" in db.fetch.await_args.args[0]

    async def test_summaries_default_to_waiting(self, store, db):
        db.fetch.return_value = [{
            "id": 7, "tracking_number": "123456789012", "courier": "fedex", "service": "FedEx Express",
            "created_at": CREATED, "source_email_from": None, "status": None, "description": None,
            "location": None, "estimated_delivery": None,
        }]
        summary = (await store.list_packages_with_status())[0]
        assert summary.status == CanonicalStatus.WAITING
        assert summary.tracking_url.endswith("trknbr=123456789012")

    async def test_metadata_upsert(self, store, db):
        await store.set_metadata("last_seen_uid", "12")
        query, *args = db.execute.await_args.args
        assert "ON CONFLICT (key) DO UPDATE" in query
        assert args == ["last_seen_uid", "12"]

        db.fetchval.return_value = "12"
        assert await store.get_metadata("last_seen_uid") == "12"


class TestConnectionLoss:

    async def test_os_error(self, store, db):
        db.fetch.side_effect = OSError("connection refused")
        with pytest.raises(StoreUnavailableError):
            await store.list_active_packages()

    async def test_interface_error(self, store, db):
        db.fetchrow.side_effect = asyncpg.exceptions.InterfaceError("pool is closed")
        with pytest.raises(StoreUnavailableError):
            await store.append_status(7, StatusUpdate(CanonicalStatus.IN_TRANSIT, "Departed"))

    async def test_statement_timeout_is_not_connection_loss(self, store, db):
        db.fetchrow.side_effect = asyncio.TimeoutError()
        with pytest.raises(asyncio.TimeoutError):
            await store.append_status(7, StatusUpdate(CanonicalStatus.IN_TRANSIT, "Departed"))

    async def test_builtin_timeout_is_not_connection_loss(self, store, db):
        db.fetch.side_effect = TimeoutError("statement timeout")
        with pytest.raises(TimeoutError) as excinfo:
            await store.list_active_packages()
        assert not isinstance(excinfo.value, StoreUnavailableError)

    async def test_query_errors_are_not_masked(self, store, db):
        db.fetchrow.side_effect = ValueError("bad parameter")
        with pytest.raises(ValueError):
            await store.get_package("123456789012")
