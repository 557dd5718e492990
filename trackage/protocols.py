"""
Trackage Protocols - Abstract interfaces for pluggable collaborators

The mailbox connection lives outside the engine. Anything that can hand over
new messages as EmailRecord objects can be plugged in as a collector.
"""

from typing import List, Optional, Protocol, runtime_checkable

from .models import EmailRecord


@runtime_checkable
class MailboxCollectorProtocol(Protocol):
    """
    Abstract interface for mailbox collectors

    Example:
        class ImapCollector:
            async def fetch_since(self, last_uid: Optional[int]) -> List[EmailRecord]:
                # Search UID (last_uid + 1):* and fetch the new messages
                ...

    Configure it as ``ingestion.collector: "mypackage.mail:ImapCollector"``.
    """

    async def fetch_since(self, last_uid: Optional[int]) -> List[EmailRecord]:
        """
        Fetch messages newer than a mailbox UID

        Args:
            last_uid: Highest UID already processed, or None on first run

        Returns:
            New messages, in any order
        """
        ...
