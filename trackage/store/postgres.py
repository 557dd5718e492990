"""
Postgres package store - asyncpg-backed PackageStore.

Tables:
- packages: one row per tracking number
- package_status: append-only status history, deduplicated on
  (package_id, description) for non-null descriptions
- metadata: key/value pairs (last seen mailbox UID)
"""

import asyncio
import functools
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from ..db import Repository
from ..extraction.carrier_detector import get_tracking_url
from ..models import (
    CanonicalStatus,
    Courier,
    NewPackage,
    PackageSummary,
    StatusEvent,
    StatusUpdate,
    TrackedPackage,
)
from .base import PackageStore, StoreUnavailableError

logger = logging.getLogger(__name__)

_CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    OSError,
)

_LATEST_STATUS_JOIN = """
    LEFT JOIN LATERAL (
        SELECT s.status, s.description, s.location, s.estimated_delivery
        FROM package_status s
        WHERE s.package_id = p.id
        ORDER BY s.checked_at DESC, s.id DESC
        LIMIT 1
    ) latest ON TRUE
"""


def _unavailable_on_connection_loss(func):
    """Raise StoreUnavailableError when the database cannot be reached."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except (asyncio.TimeoutError, TimeoutError):
            # Statement timeout; TimeoutError is an OSError subclass
            logger.warning(f"Database statement timed out during {func.__name__}")
            raise
        except _CONNECTION_ERRORS as e:
            logger.error(f"Database unavailable during {func.__name__}: {e}")
            raise StoreUnavailableError(str(e)) from e

    return wrapper


def _row_to_package(row: Dict[str, Any]) -> TrackedPackage:
    latest_status = row.get("latest_status")
    return TrackedPackage(
        id=row["id"],
        tracking_number=row["tracking_number"],
        courier=Courier(row["courier"]),
        service=row["service"],
        created_at=row["created_at"],
        source_email_uid=row.get("source_email_uid"),
        source_email_subject=row.get("source_email_subject"),
        source_email_from=row.get("source_email_from"),
        source_email_date=row.get("source_email_date"),
        latest_status=CanonicalStatus(latest_status) if latest_status else None,
        latest_description=row.get("latest_description"),
    )


def _row_to_event(row: Dict[str, Any]) -> StatusEvent:
    return StatusEvent(
        id=row["id"],
        package_id=row["package_id"],
        status=CanonicalStatus(row["status"]),
        checked_at=row["checked_at"],
        description=row.get("description"),
        location=row.get("location"),
        estimated_delivery=row.get("estimated_delivery"),
    )


class PostgresPackageStore(Repository, PackageStore):
    """PackageStore on the shared asyncpg pool."""

    TABLE_NAME = "packages"
    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS packages (
        id                   BIGSERIAL PRIMARY KEY,
        tracking_number      TEXT NOT NULL UNIQUE,
        courier              TEXT NOT NULL,
        service              TEXT NOT NULL,
        source_email_uid     BIGINT,
        source_email_subject TEXT,
        source_email_from    TEXT,
        source_email_date    TIMESTAMPTZ,
        created_at           TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    """
    SETUP_SQL = [
        """
        CREATE TABLE IF NOT EXISTS package_status (
            id                 BIGSERIAL PRIMARY KEY,
            package_id         BIGINT NOT NULL REFERENCES packages(id),
            status             TEXT NOT NULL,
            checked_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            description        TEXT,
            location           TEXT,
            estimated_delivery TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_package_status_package_id "
        "ON package_status (package_id, checked_at DESC)",
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_package_status_description "
        "ON package_status (package_id, description) WHERE description IS NOT NULL",
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key   TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """,
    ]

    @_unavailable_on_connection_loss
    async def initialize(self) -> None:
        await self.db.initialize()
        await self.ensure_table()

    async def close(self) -> None:
        # The pool belongs to the Database owner
        pass

    @_unavailable_on_connection_loss
    async def insert_package(self, package: NewPackage) -> bool:
        row = await self._insert(
            {
                "tracking_number": package.tracking_number,
                "courier": Courier(package.courier).value,
                "service": package.service,
                "source_email_uid": package.source_email_uid,
                "source_email_subject": package.source_email_subject,
                "source_email_from": package.source_email_from,
                "source_email_date": package.source_email_date,
            },
            on_conflict="ON CONFLICT (tracking_number) DO NOTHING",
            returning="id",
        )
        if row is None:
            logger.debug(f"Package {package.tracking_number} already tracked")
            return False
        logger.info(
            f"Tracking new {package.courier.display_name} package "
            f"{package.tracking_number} (id={row['id']})"
        )
        return True

    @_unavailable_on_connection_loss
    async def get_package(self, tracking_number: str) -> Optional[TrackedPackage]:
        row = await self.db.fetchrow(
            "SELECT p.*, latest.status AS latest_status, "
            "latest.description AS latest_description "
            f"FROM packages p {_LATEST_STATUS_JOIN} "
            "WHERE p.tracking_number = $1",
            tracking_number,
        )
        return _row_to_package(dict(row)) if row else None

    @_unavailable_on_connection_loss
    async def list_active_packages(self) -> List[TrackedPackage]:
        rows = await self.db.fetch(
            "SELECT p.*, latest.status AS latest_status, "
            "latest.description AS latest_description "
            f"FROM packages p {_LATEST_STATUS_JOIN} "
            "WHERE latest.status IS NULL OR latest.status <> $1 "
            "ORDER BY p.id",
            CanonicalStatus.DELIVERED.value,
        )
        return [_row_to_package(dict(r)) for r in rows]

    @_unavailable_on_connection_loss
    async def append_status(self, package_id: int, update: StatusUpdate) -> bool:
        # Single statement: a cancelled write leaves nothing behind
        row = await self.db.fetchrow(
            "INSERT INTO package_status "
            "(package_id, status, checked_at, description, location, estimated_delivery) "
            "VALUES ($1, $2, $3, $4, $5, $6) "
            "ON CONFLICT (package_id, description) WHERE description IS NOT NULL DO NOTHING "
            "RETURNING id",
            package_id,
            CanonicalStatus(update.status).value,
            update.checked_at,
            update.description,
            update.location,
            update.estimated_delivery,
        )
        return row is not None

    @_unavailable_on_connection_loss
    async def get_status_history(self, package_id: int) -> List[StatusEvent]:
        rows = await self.db.fetch(
            "SELECT * FROM package_status WHERE package_id = $1 "
            "ORDER BY checked_at DESC, id DESC",
            package_id,
        )
        return [_row_to_event(dict(r)) for r in rows]

    @_unavailable_on_connection_loss
    async def list_packages_with_status(self) -> List[PackageSummary]:
        rows = await self.db.fetch(
            "SELECT p.id, p.tracking_number, p.courier, p.service, p.created_at, "
            "p.source_email_from, latest.status, latest.description, "
            "latest.location, latest.estimated_delivery "
            f"FROM packages p {_LATEST_STATUS_JOIN} "
            "ORDER BY p.created_at DESC, p.id DESC"
        )
        summaries = []
        for r in rows:
            courier = Courier(r["courier"])
            summaries.append(PackageSummary(
                id=r["id"],
                tracking_number=r["tracking_number"],
                courier=courier,
                service=r["service"],
                status=CanonicalStatus(r["status"]) if r["status"] else CanonicalStatus.WAITING,
                created_at=r["created_at"],
                description=r["description"],
                location=r["location"],
                estimated_delivery=r["estimated_delivery"],
                tracking_url=get_tracking_url(courier, r["tracking_number"]),
                source_email_from=r["source_email_from"],
            ))
        return summaries

    @_unavailable_on_connection_loss
    async def get_metadata(self, key: str) -> Optional[str]:
        return await self.db.fetchval("SELECT value FROM metadata WHERE key = $1", key)

    @_unavailable_on_connection_loss
    async def set_metadata(self, key: str, value: str) -> None:
        await self.db.execute(
            "INSERT INTO metadata (key, value) VALUES ($1, $2) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value",
            key,
            value,
        )
