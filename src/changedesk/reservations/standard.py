"""Client for the standardized (token-authenticated) booking API.

Resources: products, availability and bookings. There is no reschedule
verb; a booking is moved by patching its availability reference, which
only works for bookings that exist as resources here.
"""

from __future__ import annotations

from datetime import date
from typing import Any

import requests

from changedesk.infra.settings import StandardCredentials
from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context

from .errors import UpstreamError, UpstreamTimeoutError

logger = get_logger(__name__)

API_NAME = "standard"


class StandardReservationClient:
    """Thin wrapper over the standard booking API resources."""

    def __init__(
        self,
        credentials: StandardCredentials,
        *,
        session: requests.Session | None = None,
        call_timeout: float = 10.0,
    ) -> None:
        self._credentials = credentials
        self._session = session or requests.Session()
        self._call_timeout = call_timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> Any:
        url = f"{self._credentials.base_url.rstrip('/')}{path}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._credentials.token}",
        }

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
                timeout=timeout or self._call_timeout,
            )
        except requests.Timeout as e:
            raise UpstreamTimeoutError(f"standard API timeout: {path}", api=API_NAME) from e
        except requests.ConnectionError as e:
            raise UpstreamTimeoutError(
                f"standard API unreachable: {path}", api=API_NAME, body=str(e)
            ) from e

        logger.info(
            "standard api response",
            extra={
                "extra_fields": safe_log_context(
                    method=method, path=path, status=response.status_code
                )
            },
        )

        if not 200 <= response.status_code < 300:
            raise UpstreamError.from_status(API_NAME, response.status_code, response.text)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return response.text

    def list_products(self, *, timeout: float | None = None) -> list[dict]:
        result = self._request("GET", "/products", timeout=timeout)
        return result if isinstance(result, list) else []

    def availability(
        self,
        product_id: str,
        option_id: str,
        local_date: date,
        *,
        timeout: float | None = None,
    ) -> list[dict]:
        body = {
            "productId": product_id,
            "optionId": option_id,
            "localDate": local_date.isoformat(),
        }
        result = self._request("POST", "/availability", body=body, timeout=timeout)
        return result if isinstance(result, list) else []

    def search(self, criteria: dict[str, str], *, timeout: float | None = None) -> list[dict]:
        """List bookings matching query criteria (e.g. supplierReference)."""
        result = self._request("GET", "/bookings", params=criteria, timeout=timeout)
        return result if isinstance(result, list) else []

    def get(self, booking_uuid: str, *, timeout: float | None = None) -> dict:
        return self._request("GET", f"/bookings/{booking_uuid}", timeout=timeout)

    def find_booking_uuid(
        self,
        *,
        supplier_reference: str,
        reseller_reference: str | None,
        timeout: float | None = None,
    ) -> str | None:
        """Locate the resource that mirrors a legacy booking.

        Tries the supplier reference (legacy booking id) first, then the
        reseller reference (confirmation code).
        """
        lookups = [("supplierReference", supplier_reference)]
        if reseller_reference:
            lookups.append(("resellerReference", reseller_reference))

        for key, value in lookups:
            matches = self.search({key: value}, timeout=timeout)
            for booking in matches:
                if booking.get("uuid"):
                    return str(booking["uuid"])
        return None

    def patch(
        self,
        booking_uuid: str,
        changes: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> dict:
        return self._request(
            "PATCH", f"/bookings/{booking_uuid}", body=changes, timeout=timeout
        )

    def cancel(self, booking_uuid: str, reason: str, *, timeout: float | None = None) -> dict:
        return self._request(
            "POST",
            f"/bookings/{booking_uuid}/cancel",
            body={"reason": reason},
            timeout=timeout,
        )

    def create_booking(self, body: dict[str, Any], *, timeout: float | None = None) -> dict:
        return self._request("POST", "/bookings", body=body, timeout=timeout)

    def confirm_booking(
        self,
        booking_uuid: str,
        body: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> dict:
        return self._request(
            "POST", f"/bookings/{booking_uuid}/confirm", body=body, timeout=timeout
        )
