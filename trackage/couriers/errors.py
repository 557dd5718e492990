"""Courier client error taxonomy."""

from typing import Any, Optional

from ..models import Courier


class CourierError(Exception):
    """Base class for every failure a courier client reports."""

    def __init__(
        self,
        courier: Courier,
        message: str,
        tracking_number: Optional[str] = None,
    ):
        self.courier = courier
        self.tracking_number = tracking_number
        super().__init__(message)

    def __str__(self) -> str:
        prefix = Courier(self.courier).display_name
        if self.tracking_number:
            prefix = f"{prefix} {self.tracking_number}"
        return f"{prefix}: {self.args[0]}"


class AuthError(CourierError):
    """Credentials were rejected. Fatal for the courier until configuration changes."""


class RateLimited(CourierError):
    """Provider throttling."""

    def __init__(
        self,
        courier: Courier,
        message: str,
        tracking_number: Optional[str] = None,
        retry_after: Optional[str] = None,
    ):
        super().__init__(courier, message, tracking_number)
        self.retry_after = retry_after


class NotFound(CourierError):
    """The provider does not recognize the tracking number."""


class Transient(CourierError):
    """Network or server error."""


class MalformedResponse(Transient):
    """Unparseable provider payload. Carries the raw payload for diagnosis."""

    def __init__(
        self,
        courier: Courier,
        message: str,
        tracking_number: Optional[str] = None,
        payload: Any = None,
    ):
        super().__init__(courier, message, tracking_number)
        self.payload = payload
