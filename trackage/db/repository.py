"""
Trackage Repository - base class for stores that own Postgres tables.

Subclasses declare their schema as class attributes:
    TABLE_NAME        primary table, target of _insert()
    CREATE_TABLE_SQL  DDL for the primary table
    SETUP_SQL         indexes and companion tables, run in order afterwards

All DDL is written with IF NOT EXISTS so ensure_table() can run on every start.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from .database import Database

logger = logging.getLogger(__name__)


class Repository:
    """Table-owning data access on top of a shared Database."""

    TABLE_NAME: str = ""
    CREATE_TABLE_SQL: str = ""
    SETUP_SQL: List[str] = []

    def __init__(self, db: Database):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    async def ensure_table(self) -> None:
        """Create whatever part of the schema is missing."""
        statements = [self.CREATE_TABLE_SQL] if self.CREATE_TABLE_SQL else []
        statements.extend(self.SETUP_SQL)
        for sql in statements:
            await self._db.execute(sql)
        logger.debug(f"Schema ready for {self.TABLE_NAME} ({len(statements)} statement(s))")

    async def _insert(
        self,
        row: Mapping[str, Any],
        on_conflict: str = "",
        returning: str = "*",
    ) -> Optional[Dict[str, Any]]:
        """
        INSERT one row into TABLE_NAME.

        Returns the RETURNING columns, or None when the ON CONFLICT clause
        suppressed the insert.
        """
        columns = ", ".join(row)
        params = ", ".join(f"${n}" for n in range(1, len(row) + 1))
        parts = [f"INSERT INTO {self.TABLE_NAME} ({columns}) VALUES ({params})"]
        if on_conflict:
            parts.append(on_conflict)
        parts.append(f"RETURNING {returning}")
        record = await self._db.fetchrow(" ".join(parts), *row.values())
        return dict(record) if record is not None else None
