"""
Status synchronization - periodic courier polling for non-terminal packages
"""

from .service import StatusSyncService, SyncReport

__all__ = ["StatusSyncService", "SyncReport"]
