"""Tests for change request intake and stale sweeping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from changedesk.domain.change_requests import (
    ENQUEUE_FAILED_MESSAGE,
    create_change_request,
    sweep_stale,
    validate_new_request,
)
from changedesk.domain.errors import ChangeValidationError, DuplicateOpenRequestError
from changedesk.domain.models import ChangeStatus, ChangeType, FailureKind, NewChangeRequest
from changedesk.infra.repositories.outbox_repository import CHANGE_REQUEST_STALE
from changedesk.tasks.client import TasksClient
from changedesk.tasks.contracts import PROCESS_CHANGE_REQUEST, PROCESS_CHANGE_REQUEST_PATH

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def new(
    change_type: ChangeType = ChangeType.RESCHEDULE,
    parameters: dict | None = None,
    booking_id: str = "555",
    requested_by: str = "staff@example.com",
) -> NewChangeRequest:
    return NewChangeRequest(
        booking_id=booking_id,
        confirmation_code="ARC-555",
        change_type=change_type,
        parameters={"newDate": "2026-02-10"} if parameters is None else parameters,
        requested_by=requested_by,
    )


class TestValidateNewRequest:
    def test_valid_reschedule(self):
        validate_new_request(new(), today=TODAY)

    def test_today_is_allowed(self):
        validate_new_request(new(parameters={"newDate": "2026-02-01"}), today=TODAY)

    @pytest.mark.parametrize(
        "parameters,match",
        [
            ({}, "newDate"),
            ({"newDate": "tomorrow"}, "newDate"),
            ({"newDate": 20260210}, "newDate"),
            ({"newDate": ["2026-02-10"]}, "newDate"),
            ({"newDate": "2026-01-31"}, "in the past"),
        ],
    )
    def test_bad_reschedule(self, parameters, match):
        with pytest.raises(ChangeValidationError, match=match):
            validate_new_request(new(parameters=parameters), today=TODAY)

    def test_pickup_requires_place(self):
        with pytest.raises(ChangeValidationError, match="newPickupPlaceId"):
            validate_new_request(new(ChangeType.CHANGE_PICKUP, {}), today=TODAY)

    def test_cancel_needs_no_parameters(self):
        validate_new_request(new(ChangeType.CANCEL, {}), today=TODAY)

    def test_blank_booking_id(self):
        with pytest.raises(ChangeValidationError, match="bookingId"):
            validate_new_request(new(booking_id="  "), today=TODAY)

    def test_blank_requested_by(self):
        with pytest.raises(ChangeValidationError, match="requestedBy"):
            validate_new_request(new(requested_by=""), today=TODAY)


class TestCreateChangeRequest:
    def test_persists_pending_and_enqueues_one_task(self, stores):
        tasks = TasksClient(backend="inline")

        request = create_change_request(
            new(), ledger=stores.ledger, tasks=tasks, now=NOW, correlation_id="corr-1"
        )

        assert request.status == ChangeStatus.PENDING
        assert stores.ledger.get(request.id).status == ChangeStatus.PENDING

        scheduled = tasks.get_scheduled_tasks()
        assert len(scheduled) == 1
        task = scheduled[0]
        assert task["task_id"] == f"change-request:{request.id}"
        assert task["url_path"] == PROCESS_CHANGE_REQUEST_PATH
        assert task["correlation_id"] == "corr-1"
        assert task["payload"]["task_name"] == PROCESS_CHANGE_REQUEST
        assert task["payload"]["payload"] == {
            "change_request_id": request.id,
            "correlation_id": "corr-1",
        }

    def test_task_payload_has_no_customer_data(self, stores):
        tasks = TasksClient(backend="inline")

        create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

        payload = tasks.get_scheduled_tasks()[0]["payload"]
        assert "staff@example.com" not in str(payload)
        assert "ARC-555" not in str(payload)

    def test_inline_handler_runs(self, stores):
        tasks = TasksClient(backend="inline")
        seen = []
        tasks.register_inline(PROCESS_CHANGE_REQUEST_PATH, seen.append)

        request = create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

        assert seen[0]["payload"]["change_request_id"] == request.id

    def test_invalid_request_is_never_persisted(self, stores):
        tasks = TasksClient(backend="inline")

        with pytest.raises(ChangeValidationError):
            create_change_request(
                new(parameters={"newDate": "2025-12-31"}),
                ledger=stores.ledger,
                tasks=tasks,
                now=NOW,
            )

        assert tasks.get_scheduled_tasks() == []
        # Booking is still free for a valid request
        create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

    def test_duplicate_open_request_rejected(self, stores):
        tasks = TasksClient(backend="inline")
        create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

        with pytest.raises(DuplicateOpenRequestError):
            create_change_request(
                new(ChangeType.CANCEL, {}), ledger=stores.ledger, tasks=tasks, now=NOW
            )

        assert len(tasks.get_scheduled_tasks()) == 1

    def test_enqueue_failure_closes_request_and_frees_booking(self, stores):
        tasks = MagicMock(spec=TasksClient)
        tasks.enqueue_http.return_value = False

        with patch("changedesk.domain.change_requests.logger") as mock_logger:
            request = create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

        mock_logger.error.assert_called_once()
        assert request.status == ChangeStatus.FAILED
        assert request.failure_kind == FailureKind.UPSTREAM
        assert request.error_message == ENQUEUE_FAILED_MESSAGE
        assert stores.ledger.get(request.id).status == ChangeStatus.FAILED

        tasks.enqueue_http.return_value = True
        retry = create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

        assert retry.id != request.id
        assert retry.status == ChangeStatus.PENDING

    def test_enqueue_failure_after_task_was_claimed_keeps_run(self, stores):
        tasks = MagicMock(spec=TasksClient)

        def deliver_then_fail(**kwargs):
            stores.ledger.claim(kwargs["payload"]["payload"]["change_request_id"])
            return False

        tasks.enqueue_http.side_effect = deliver_then_fail

        request = create_change_request(new(), ledger=stores.ledger, tasks=tasks, now=NOW)

        assert request.status == ChangeStatus.PROCESSING
        assert request.failure_kind is None


class TestSweepStale:
    def test_escalates_old_processing_requests(self, stores):
        stuck = stores.ledger.create(new(booking_id="1"))
        stores.ledger.claim(stuck.id)
        later = datetime.now(timezone.utc) + timedelta(minutes=20)

        stale = sweep_stale(ledger=stores.ledger, escalations=stores.escalations, now=later)

        assert [r.id for r in stale] == [stuck.id]
        events = stores.escalations.events
        assert len(events) == 1
        assert events[0]["event_type"] == CHANGE_REQUEST_STALE
        assert events[0]["aggregate_id"] == stuck.id
        # Never auto-expired
        assert stores.ledger.get(stuck.id).status == ChangeStatus.PROCESSING

    def test_recent_processing_is_left_alone(self, stores):
        running = stores.ledger.create(new())
        stores.ledger.claim(running.id)

        stale = sweep_stale(
            ledger=stores.ledger, escalations=stores.escalations, now=datetime.now(timezone.utc)
        )

        assert stale == []
        assert stores.escalations.events == []

    def test_unqueued_pending_request_is_surfaced(self, stores):
        orphan = stores.ledger.create(new(booking_id="1"))
        later = datetime.now(timezone.utc) + timedelta(minutes=20)

        stale = sweep_stale(ledger=stores.ledger, escalations=stores.escalations, now=later)

        assert [r.id for r in stale] == [orphan.id]
        event = stores.escalations.events[0]
        assert event["aggregate_id"] == orphan.id
        assert event["payload"]["status"] == "pending"
        assert stores.ledger.get(orphan.id).status == ChangeStatus.PENDING

    def test_recent_pending_is_left_alone(self, stores):
        stores.ledger.create(new())

        stale = sweep_stale(
            ledger=stores.ledger, escalations=stores.escalations, now=datetime.now(timezone.utc)
        )

        assert stale == []

    def test_repeated_sweeps_escalate_once(self, stores):
        stuck = stores.ledger.create(new())
        stores.ledger.claim(stuck.id)
        later = datetime.now(timezone.utc) + timedelta(minutes=20)

        for _ in range(3):
            stale = sweep_stale(ledger=stores.ledger, escalations=stores.escalations, now=later)

        assert [r.id for r in stale] == [stuck.id]
        assert len(stores.escalations.events) == 1
