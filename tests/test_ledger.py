"""Tests for the change request ledger and action log backends."""

from __future__ import annotations

import os
import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from changedesk.domain.errors import (
    ChangeRequestNotFoundError,
    DuplicateOpenRequestError,
    InvalidTransitionError,
)
from changedesk.domain.models import (
    ActionLogEntry,
    ChangeStatus,
    ChangeType,
    FailureKind,
    NewChangeRequest,
)
from changedesk.infra.repositories.action_log_repository import (
    InMemoryActionLog,
    PostgresActionLog,
)
from changedesk.infra.repositories.change_requests_repository import (
    InMemoryChangeRequestLedger,
    PostgresChangeRequestLedger,
)
from changedesk.infra.stores import build_stores


def new_request(booking_id: str = "555", change_type=ChangeType.RESCHEDULE) -> NewChangeRequest:
    return NewChangeRequest(
        booking_id=booking_id,
        confirmation_code="ARC-555",
        change_type=change_type,
        parameters={"newDate": "2026-02-10"},
        requested_by="staff@example.com",
    )


class TestInMemoryLedger:
    def test_create_is_pending(self):
        ledger = InMemoryChangeRequestLedger()

        request = ledger.create(new_request())

        assert request.status == ChangeStatus.PENDING
        assert request.created_at is not None
        assert ledger.get(request.id) == request

    def test_get_unknown(self):
        with pytest.raises(ChangeRequestNotFoundError):
            InMemoryChangeRequestLedger().get("missing")

    def test_second_open_request_for_booking_rejected(self):
        ledger = InMemoryChangeRequestLedger()
        ledger.create(new_request("555"))

        with pytest.raises(DuplicateOpenRequestError):
            ledger.create(new_request("555", ChangeType.CANCEL))

    def test_other_booking_allowed(self):
        ledger = InMemoryChangeRequestLedger()
        ledger.create(new_request("555"))

        ledger.create(new_request("556"))

    def test_new_request_allowed_after_terminal(self):
        ledger = InMemoryChangeRequestLedger()
        first = ledger.create(new_request("555"))
        ledger.claim(first.id)
        ledger.update_status(first.id, ChangeStatus.FAILED, {"error_message": "x"})

        second = ledger.create(new_request("555"))

        assert second.id != first.id

    def test_claim_only_once(self):
        ledger = InMemoryChangeRequestLedger()
        request = ledger.create(new_request())

        claimed = ledger.claim(request.id)

        assert claimed.status == ChangeStatus.PROCESSING
        assert claimed.processing_started_at is not None
        assert ledger.claim(request.id) is None

    def test_claim_unknown_is_none(self):
        assert InMemoryChangeRequestLedger().claim("missing") is None

    def test_concurrent_claims_single_winner(self):
        ledger = InMemoryChangeRequestLedger()
        request = ledger.create(new_request())
        results: list = []

        threads = [
            threading.Thread(target=lambda: results.append(ledger.claim(request.id)))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(1 for r in results if r is not None) == 1

    def test_complete_sets_timestamp_and_fields(self):
        ledger = InMemoryChangeRequestLedger()
        request = ledger.create(new_request())
        ledger.claim(request.id)

        done = ledger.update_status(
            request.id,
            ChangeStatus.COMPLETED,
            {"method": "legacy_change_date_action", "result_message": "ok"},
        )

        assert done.status == ChangeStatus.COMPLETED
        assert done.completed_at is not None
        assert done.failed_at is None
        assert done.method == "legacy_change_date_action"
        assert done.parameters == {"newDate": "2026-02-10"}

    def test_pending_cannot_jump_to_terminal(self):
        ledger = InMemoryChangeRequestLedger()
        request = ledger.create(new_request())

        with pytest.raises(InvalidTransitionError):
            ledger.update_status(request.id, ChangeStatus.COMPLETED)

    def test_terminal_is_final(self):
        ledger = InMemoryChangeRequestLedger()
        request = ledger.create(new_request())
        ledger.claim(request.id)
        ledger.update_status(request.id, ChangeStatus.FAILED, {"failure_kind": FailureKind.UPSTREAM})

        with pytest.raises(InvalidTransitionError):
            ledger.update_status(request.id, ChangeStatus.COMPLETED)

    def test_parameters_not_writable(self):
        ledger = InMemoryChangeRequestLedger()
        request = ledger.create(new_request())
        ledger.claim(request.id)

        with pytest.raises(ValueError, match="parameters"):
            ledger.update_status(request.id, ChangeStatus.COMPLETED, {"parameters": {}})

    def test_list_stale_processing(self):
        ledger = InMemoryChangeRequestLedger()
        old = ledger.create(new_request("1"))
        ledger.claim(old.id)
        pending = ledger.create(new_request("2"))

        future = datetime.now(timezone.utc) + timedelta(minutes=1)
        past = datetime.now(timezone.utc) - timedelta(minutes=1)

        assert [r.id for r in ledger.list_stale_processing(future)] == [old.id]
        assert ledger.list_stale_processing(past) == []
        assert pending.id not in [r.id for r in ledger.list_stale_processing(future)]

    def test_list_stale_pending(self):
        ledger = InMemoryChangeRequestLedger()
        waiting = ledger.create(new_request("1"))
        claimed = ledger.create(new_request("2"))
        ledger.claim(claimed.id)

        future = datetime.now(timezone.utc) + timedelta(minutes=1)
        past = datetime.now(timezone.utc) - timedelta(minutes=1)

        assert [r.id for r in ledger.list_stale_pending(future)] == [waiting.id]
        assert ledger.list_stale_pending(past) == []


class TestInMemoryActionLog:
    def test_append_and_list(self):
        log = InMemoryActionLog()
        now = datetime.now(timezone.utc)
        entry = ActionLogEntry(
            booking_id="555",
            action="reschedule",
            performed_by="staff@example.com",
            performed_at=now,
            success=True,
            method="legacy_change_date_action",
            change_request_id="cr-1",
        )
        log.append(entry)
        log.append(
            ActionLogEntry(
                booking_id="556",
                action="cancel",
                performed_by="staff@example.com",
                performed_at=now,
                success=False,
                method=None,
            )
        )

        assert log.list_for_booking("555") == [entry]
        assert log.list_for_request("cr-1") == [entry]


class TestBuildStores:
    def test_memory_backend(self):
        stores = build_stores("memory")

        assert isinstance(stores.ledger, InMemoryChangeRequestLedger)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown LEDGER_BACKEND"):
            build_stores("redis")


class TestPostgresLedgerIds:
    """Malformed ids never reach the database."""

    def test_get_non_uuid_is_not_found(self):
        with pytest.raises(ChangeRequestNotFoundError):
            PostgresChangeRequestLedger().get("nope")

    def test_claim_non_uuid_is_none(self):
        assert PostgresChangeRequestLedger().claim("nope") is None


@pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping postgres ledger tests",
)
class TestPostgresLedger:
    def test_lifecycle(self):
        ledger = PostgresChangeRequestLedger()
        booking_id = f"pg-{uuid.uuid4()}"

        request = ledger.create(new_request(booking_id))
        with pytest.raises(DuplicateOpenRequestError):
            ledger.create(new_request(booking_id))

        claimed = ledger.claim(request.id)
        assert claimed.status == ChangeStatus.PROCESSING
        assert ledger.claim(request.id) is None

        done = ledger.update_status(
            request.id,
            ChangeStatus.FAILED,
            {"error_message": "no", "failure_kind": FailureKind.NO_AVAILABILITY, "details": {"a": 1}},
        )
        assert done.failure_kind == FailureKind.NO_AVAILABILITY
        assert done.details == {"a": 1}

        with pytest.raises(InvalidTransitionError):
            ledger.update_status(request.id, ChangeStatus.COMPLETED)

    def test_action_log_round_trip(self):
        ledger = PostgresChangeRequestLedger()
        log = PostgresActionLog()
        booking_id = f"pg-{uuid.uuid4()}"
        request = ledger.create(new_request(booking_id))

        log.append(
            ActionLogEntry(
                booking_id=booking_id,
                action="reschedule",
                performed_by="staff@example.com",
                performed_at=datetime.now(timezone.utc),
                success=False,
                method="cancel_rebook",
                original_data={"date": "2026-02-03"},
                change_request_id=request.id,
            )
        )

        entries = log.list_for_request(request.id)
        assert [e.method for e in entries] == ["cancel_rebook"]
        assert entries[0].original_data == {"date": "2026-02-03"}
