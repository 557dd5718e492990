"""
Trackage Database - asyncpg-based data access.

- Database: shared connection pool manager (one per process)
- Repository: base class for table-owning data access
"""

from .database import Database
from .repository import Repository

__all__ = ["Database", "Repository"]
