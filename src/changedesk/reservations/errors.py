"""Errors raised by the reservation API clients."""

from __future__ import annotations

from changedesk.observability.redaction import redact_string, truncate


class UpstreamError(Exception):
    """An upstream reservation API call failed.

    Attributes:
        api: Which upstream produced the error ("legacy" or "standard").
        status_code: HTTP status, or None for transport-level failures.
        body: Redacted, truncated response body.
    """

    def __init__(
        self,
        message: str,
        *,
        api: str,
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        self.api = api
        self.status_code = status_code
        self.body = truncate(redact_string(body or ""))
        super().__init__(message)

    @classmethod
    def from_status(cls, api: str, status_code: int, body: str) -> "UpstreamError":
        """Pick the most specific subclass for an HTTP status."""
        message = f"{api} API error: {status_code} - {truncate(redact_string(body or ''))}"
        if status_code in (401, 403):
            return UpstreamAuthError(message, api=api, status_code=status_code, body=body)
        if status_code == 404:
            return UpstreamNotFoundError(message, api=api, status_code=status_code, body=body)
        return cls(message, api=api, status_code=status_code, body=body)


class UpstreamAuthError(UpstreamError):
    """401/403. For resold bookings this is how a channel restriction shows up."""


class UpstreamNotFoundError(UpstreamError):
    """404 from the upstream API."""


class UpstreamTimeoutError(UpstreamError):
    """Timeout, connection failure, or exhausted run budget."""


class BookingNotFoundError(Exception):
    """The booking does not exist upstream."""

    def __init__(self, booking_id: str) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")
