"""Tests for the token-authenticated standard booking API client."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from changedesk.infra.settings import StandardCredentials
from changedesk.reservations.errors import (
    UpstreamAuthError,
    UpstreamError,
    UpstreamTimeoutError,
)
from changedesk.reservations.standard import StandardReservationClient
from helpers import http_response

CREDS = StandardCredentials(token="tok-test", base_url="https://standard.test/octo/v1")


def make_client(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return StandardReservationClient(CREDS, session=session), session


class TestRequests:
    def test_bearer_token_header(self):
        client, session = make_client(http_response(200, []))

        client.list_products()

        call = session.request.call_args
        assert call.args == ("GET", "https://standard.test/octo/v1/products")
        assert call.kwargs["headers"]["Authorization"] == "Bearer tok-test"
        assert "tok-test" not in repr(CREDS)

    def test_availability_body(self):
        client, session = make_client(http_response(200, [{"id": "av-1"}]))

        slots = client.availability("42", "DEFAULT", date(2026, 2, 10))

        call = session.request.call_args
        assert call.args == ("POST", "https://standard.test/octo/v1/availability")
        assert call.kwargs["json"] == {
            "productId": "42",
            "optionId": "DEFAULT",
            "localDate": "2026-02-10",
        }
        assert slots == [{"id": "av-1"}]

    def test_get_booking(self):
        client, session = make_client(http_response(200, {"uuid": "b-1", "status": "CONFIRMED"}))

        booking = client.get("b-1")

        call = session.request.call_args
        assert call.args == ("GET", "https://standard.test/octo/v1/bookings/b-1")
        assert booking["status"] == "CONFIRMED"

    def test_patch_availability(self):
        client, session = make_client(http_response(200, {"uuid": "b-1"}))

        client.patch("b-1", {"availabilityId": "av-1"})

        call = session.request.call_args
        assert call.args == ("PATCH", "https://standard.test/octo/v1/bookings/b-1")
        assert call.kwargs["json"] == {"availabilityId": "av-1"}

    def test_cancel(self):
        client, session = make_client(http_response(200, {"status": "CANCELLED"}))

        client.cancel("b-1", "guest request")

        call = session.request.call_args
        assert call.args == ("POST", "https://standard.test/octo/v1/bookings/b-1/cancel")
        assert call.kwargs["json"] == {"reason": "guest request"}

    def test_create_and_confirm(self):
        client, session = make_client(
            http_response(200, {"uuid": "new-1"}), http_response(200, {"status": "CONFIRMED"})
        )

        created = client.create_booking({"productId": "42"})
        client.confirm_booking(created["uuid"], {"contact": {"fullName": "A"}})

        urls = [c.args[1] for c in session.request.call_args_list]
        assert urls == [
            "https://standard.test/octo/v1/bookings",
            "https://standard.test/octo/v1/bookings/new-1/confirm",
        ]


class TestFindBookingUuid:
    def test_supplier_reference_first(self):
        client, session = make_client(http_response(200, [{"uuid": "b-1"}]))

        uuid = client.find_booking_uuid(supplier_reference="555", reseller_reference="ARC-555")

        assert uuid == "b-1"
        assert session.request.call_count == 1
        assert session.request.call_args.kwargs["params"] == {"supplierReference": "555"}

    def test_falls_back_to_reseller_reference(self):
        client, session = make_client(
            http_response(200, []), http_response(200, [{"uuid": "b-2"}])
        )

        uuid = client.find_booking_uuid(supplier_reference="555", reseller_reference="ARC-555")

        assert uuid == "b-2"
        params = [c.kwargs["params"] for c in session.request.call_args_list]
        assert params == [{"supplierReference": "555"}, {"resellerReference": "ARC-555"}]

    def test_no_resource(self):
        client, _ = make_client(http_response(200, []), http_response(200, []))

        assert (
            client.find_booking_uuid(supplier_reference="555", reseller_reference="ARC-555")
            is None
        )

    def test_without_reseller_reference(self):
        client, session = make_client(http_response(200, []))

        assert client.find_booking_uuid(supplier_reference="555", reseller_reference=None) is None
        assert session.request.call_count == 1


class TestErrors:
    def test_403_is_auth_error(self):
        client, _ = make_client(http_response(403, "forbidden"))

        with pytest.raises(UpstreamAuthError):
            client.patch("b-1", {"availabilityId": "av-1"})

    def test_409_is_upstream_error(self):
        client, _ = make_client(http_response(409, "availability closed"))

        with pytest.raises(UpstreamError) as exc_info:
            client.patch("b-1", {"availabilityId": "av-1"})
        assert exc_info.value.status_code == 409
        assert exc_info.value.api == "standard"

    def test_connection_error(self):
        client, _ = make_client(requests.ConnectionError("refused"))

        with pytest.raises(UpstreamTimeoutError):
            client.list_products()
