"""Shared test helper functions for change desk tests.

These are NOT fixtures - they are regular functions that build upstream
payloads and canned HTTP responses.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock


def legacy_booking(
    booking_id: int = 555,
    *,
    product_booking_id: int = 9001,
    confirmation_code: str = "ARC-555",
    external_reference: str = "",
    product_id: int = 42,
    activity_id: int | None = None,
    start_date: str = "2026-02-03",
    pickup_place_id: int | None = 7,
    participants: int = 2,
) -> dict[str, Any]:
    """One item of a legacy booking-search response."""
    product_booking: dict[str, Any] = {
        "id": product_booking_id,
        "product": {"id": product_id, "title": "Golden Circle"},
        "startDate": start_date,
        "totalParticipants": participants,
    }
    if activity_id is not None:
        product_booking["activity"] = {"id": activity_id}
    if pickup_place_id is not None:
        product_booking["pickupPlace"] = {"id": pickup_place_id, "title": "Hotel Borg"}
    return {
        "id": booking_id,
        "confirmationCode": confirmation_code,
        "externalBookingReference": external_reference,
        "customer": {
            "firstName": "Anna",
            "lastName": "Jonsdottir",
            "email": "anna@example.com",
            "phoneNumber": "+354 555 1234",
        },
        "productBookings": [product_booking],
    }


def standard_products(
    product_id: str = "42", option_id: str = "DEFAULT", unit_id: str = "adult"
) -> list[dict[str, Any]]:
    return [
        {
            "id": product_id,
            "reference": product_id,
            "options": [{"id": option_id, "units": [{"id": unit_id}]}],
        }
    ]


def http_response(status: int = 200, body: Any = None) -> MagicMock:
    """A requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status
    if body is None:
        response.content = b""
        response.text = ""
        response.json.side_effect = ValueError("no body")
    else:
        text = body if isinstance(body, str) else json.dumps(body)
        response.content = text.encode()
        response.text = text
        if isinstance(body, str):
            response.json.side_effect = ValueError("not json")
        else:
            response.json.return_value = body
    return response
