"""Client for the legacy signed booking REST API.

Every request is signed with HMAC-SHA1 over
``timestamp + access_key + METHOD + path`` and the base64 digest is sent
with the timestamp and access key as headers. There is no replay
protection beyond timestamp freshness, so the host clock must be in sync.

Security: never log the secret key, customer names or full bodies.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import date, datetime, timezone
from typing import Any, Callable

import requests

from changedesk.domain.models import BookingSnapshot
from changedesk.infra.settings import LegacyCredentials
from changedesk.infra.time import legacy_signature_timestamp, utc_now
from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context

from .actions import CancelAction, LegacyAction
from .errors import BookingNotFoundError, UpstreamError, UpstreamTimeoutError

logger = get_logger(__name__)

API_NAME = "legacy"

SEARCH_PATH = "/booking.json/booking-search"
EDIT_PATH = "/booking.json/edit"
CANCEL_PATH = "/booking.json/cancel-booking/{confirmation_code}"
START_TIMES_PATH = "/activity.json/{product_id}/availabilities"

SEARCH_LIMIT = 10


def sign_request(
    secret_key: str,
    timestamp: str,
    access_key: str,
    method: str,
    path: str,
) -> str:
    """Compute the request signature.

    Returns:
        base64(HMAC-SHA1(secret_key, timestamp + access_key + method + path))
    """
    message = f"{timestamp}{access_key}{method.upper()}{path}".encode("utf-8")
    digest = hmac.new(secret_key.encode("utf-8"), message, hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


class LegacyReservationClient:
    """Narrow wrapper around the legacy booking API.

    Usage:
        client = LegacyReservationClient(load_legacy_credentials())
        booking = client.get("555")
        client.act(ChangeDateAction("9001", date(2026, 2, 10)))
    """

    def __init__(
        self,
        credentials: LegacyCredentials,
        *,
        session: requests.Session | None = None,
        call_timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._credentials = credentials
        self._session = session or requests.Session()
        self._call_timeout = call_timeout
        self._clock = clock

    def _signed_headers(self, method: str, path: str) -> dict[str, str]:
        timestamp = legacy_signature_timestamp(self._clock())
        signature = sign_request(
            self._credentials.secret_key,
            timestamp,
            self._credentials.access_key,
            method,
            path,
        )
        return {
            "Content-Type": "application/json;charset=UTF-8",
            "X-Bokun-AccessKey": self._credentials.access_key,
            "X-Bokun-Date": timestamp,
            "X-Bokun-Signature": signature,
        }

    def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        timeout: float | None = None,
        success_below: int = 300,
    ) -> Any:
        url = f"{self._credentials.base_url.rstrip('/')}{path}"
        headers = self._signed_headers(method, path)

        logger.info(
            "legacy api request",
            extra={"extra_fields": safe_log_context(method=method, path=path)},
        )

        try:
            response = self._session.request(
                method,
                url,
                json=body,
                headers=headers,
                timeout=timeout or self._call_timeout,
            )
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"legacy API timeout: {path}", api=API_NAME) from e
        except requests.ConnectionError as e:
            raise UpstreamTimeoutError(
                f"legacy API unreachable: {path}", api=API_NAME, body=str(e)
            ) from e

        logger.info(
            "legacy api response",
            extra={
                "extra_fields": safe_log_context(
                    method=method, path=path, status=response.status_code
                )
            },
        )

        if response.status_code >= success_below or response.status_code < 200:
            raise UpstreamError.from_status(API_NAME, response.status_code, response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    def search(self, criteria: dict[str, Any], *, timeout: float | None = None) -> list[dict]:
        """Run a booking search and return the matching bookings."""
        body = {"limit": SEARCH_LIMIT, **criteria}
        result = self._request("POST", SEARCH_PATH, body, timeout=timeout)
        if not isinstance(result, dict):
            return []
        return list(result.get("items") or [])

    def get(self, booking_id: str, *, timeout: float | None = None) -> dict:
        """Fetch one booking by numeric id, or by confirmation code otherwise.

        Raises:
            BookingNotFoundError: If no returned booking matches exactly.
        """
        if not str(booking_id).isdigit():
            booking = self.find_by_confirmation_code(booking_id, timeout=timeout)
            if booking is None:
                raise BookingNotFoundError(booking_id)
            return booking

        for item in self.search({"id": int(booking_id)}, timeout=timeout):
            if str(item.get("id")) == str(booking_id):
                return item
        raise BookingNotFoundError(booking_id)

    def find_by_confirmation_code(
        self, code: str, *, timeout: float | None = None
    ) -> dict | None:
        """Find a booking by confirmation code or external reference.

        Search results are fuzzy; only a booking whose code contains `code`,
        or whose external reference equals it, is returned.
        """
        for item in self.search({"confirmationCode": code}, timeout=timeout):
            if (
                code in str(item.get("confirmationCode") or "")
                or item.get("externalBookingReference") == code
            ):
                return item
        return None

    def start_time_id(
        self, product_id: str, on_date: date, *, timeout: float | None = None
    ) -> str | None:
        """Look up the first start time for a product on a date."""
        path = START_TIMES_PATH.format(product_id=product_id)
        day = on_date.isoformat()
        result = self._request("POST", path, {"start": day, "end": day}, timeout=timeout)
        slots = result.get("availabilities", result) if isinstance(result, dict) else result
        if not isinstance(slots, list) or not slots:
            return None
        first = slots[0]
        start_time = first.get("startTime") or {}
        value = first.get("startTimeId") or first.get("id") or start_time.get("id")
        return str(value) if value is not None else None

    def act(self, action: LegacyAction, *, timeout: float | None = None) -> Any:
        """Apply one action.

        Edit actions go to the edit endpoint as a one-element JSON array; the
        edit endpoint reports success with any status below 400.
        """
        if isinstance(action, CancelAction):
            path = CANCEL_PATH.format(confirmation_code=action.confirmation_code)
            return self._request("POST", path, action.to_wire(), timeout=timeout)
        return self._request(
            "POST", EDIT_PATH, [action.to_wire()], timeout=timeout, success_below=400
        )


def snapshot_from_legacy(
    booking: dict[str, Any],
    product_booking_id: str | None = None,
) -> BookingSnapshot:
    """Build a BookingSnapshot from a legacy search result.

    Args:
        booking: One item of the booking-search `items` list.
        product_booking_id: Line item to target. Defaults to the first one.

    Raises:
        ValueError: If the booking has no (matching) line item.
    """
    line_items = booking.get("productBookings") or []
    if product_booking_id is not None:
        line_items = [pb for pb in line_items if str(pb.get("id")) == str(product_booking_id)]
    if not line_items:
        raise ValueError(f"Booking {booking.get('id')} has no product booking")

    item = line_items[0]
    product = item.get("product") or {}
    activity = item.get("activity") or {}
    rate = item.get("rate") or {}
    pickup = item.get("pickupPlace") or {}
    customer = booking.get("customer") or {}

    product_id = str(product.get("id") or "")
    option_id = str(activity.get("id") or rate.get("id") or product_id)

    first_name = customer.get("firstName") or ""
    customer_name = f"{first_name} {customer.get('lastName') or ''}".strip() if first_name else (
        "Unknown Customer"
    )

    return BookingSnapshot(
        booking_id=str(booking.get("id")),
        confirmation_code=str(booking.get("confirmationCode") or ""),
        external_booking_reference=str(booking.get("externalBookingReference") or ""),
        product_id=product_id,
        product_booking_id=str(item.get("id") or ""),
        option_id=option_id,
        current_date=_parse_start_date(item.get("startDate")),
        current_pickup_place_id=str(pickup["id"]) if pickup.get("id") is not None else None,
        customer_name=customer_name,
        participants=int(item.get("totalParticipants") or 1),
        raw=booking,
    )


def _parse_start_date(value: Any) -> date | None:
    """Start dates arrive either as epoch milliseconds or ISO strings."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    text = str(value)
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None
