"""Change request intake and stale-run surfacing.

Intake validates a request before it reaches the ledger, so a rejected
request never becomes a ledger entry and never reaches an upstream API.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from changedesk.infra.repositories.change_requests_repository import ChangeRequestLedger
from changedesk.infra.repositories.outbox_repository import CHANGE_REQUEST_STALE, Escalations
from changedesk.infra.settings import OrchestratorSettings
from changedesk.infra.time import operator_today, utc_now
from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context
from changedesk.tasks.client import TasksClient
from changedesk.tasks.contracts import PROCESS_CHANGE_REQUEST_PATH, process_change_request_task

from .errors import ChangeValidationError
from .models import (
    ChangeRequest,
    ChangeStatus,
    ChangeType,
    FailureKind,
    NewChangeRequest,
    parse_new_date,
)

logger = get_logger(__name__)

ENQUEUE_FAILED_MESSAGE = "Change request could not be queued for processing. Resubmit it."


def validate_new_request(new: NewChangeRequest, *, today: date) -> None:
    """Reject malformed requests.

    Args:
        new: The request as received.
        today: Current date in the operator's timezone.

    Raises:
        ChangeValidationError: With a staff-readable message.
    """
    if not str(new.booking_id or "").strip():
        raise ChangeValidationError("bookingId is required")
    if not str(new.requested_by or "").strip():
        raise ChangeValidationError("requestedBy is required")

    if new.change_type == ChangeType.RESCHEDULE:
        new_date = parse_new_date(new.parameters.get("newDate"))
        if new_date is None:
            raise ChangeValidationError("newDate must be a YYYY-MM-DD date")
        if new_date < today:
            raise ChangeValidationError(
                f"Cannot reschedule to {new_date.isoformat()}: "
                f"date is in the past (today is {today.isoformat()})"
            )

    elif new.change_type == ChangeType.CHANGE_PICKUP:
        if new.parameters.get("newPickupPlaceId") in (None, ""):
            raise ChangeValidationError("newPickupPlaceId is required")


def create_change_request(
    new: NewChangeRequest,
    *,
    ledger: ChangeRequestLedger,
    tasks: TasksClient,
    settings: OrchestratorSettings | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> ChangeRequest:
    """Validate, persist as PENDING, and enqueue exactly one processing task.

    If the task cannot be enqueued the entry is closed as FAILED
    (`upstream`) so the booking can take a new request.

    Returns:
        The PENDING ledger entry, or the FAILED one when enqueue failed.

    Raises:
        ChangeValidationError: If the request is malformed.
        DuplicateOpenRequestError: If the booking already has an open request.
    """
    settings = settings or OrchestratorSettings()
    validate_new_request(new, today=operator_today(settings.operator_timezone, now))

    request = ledger.create(new)

    task = process_change_request_task(request.id, correlation_id)
    enqueued = tasks.enqueue_http(
        task_id=task.task_id,
        url_path=PROCESS_CHANGE_REQUEST_PATH,
        payload=task.to_dict(),
        correlation_id=correlation_id,
    )

    log_context = safe_log_context(
        change_request_id=request.id,
        booking_id=request.booking_id,
        change_type=request.change_type.value,
        enqueued=enqueued,
    )
    if enqueued:
        logger.info("change request created", extra={"extra_fields": log_context})
        return request

    logger.error(
        "change request created but task enqueue failed",
        extra={"extra_fields": log_context},
    )
    return _close_unqueued(ledger, request)


def _close_unqueued(ledger: ChangeRequestLedger, request: ChangeRequest) -> ChangeRequest:
    # Only PENDING -> PROCESSING -> FAILED is a legal path to a terminal status.
    # Losing the claim means a task did get delivered after all.
    if ledger.claim(request.id) is None:
        return ledger.get(request.id)
    return ledger.update_status(
        request.id,
        ChangeStatus.FAILED,
        {"error_message": ENQUEUE_FAILED_MESSAGE, "failure_kind": FailureKind.UPSTREAM},
    )


def sweep_stale(
    *,
    ledger: ChangeRequestLedger,
    escalations: Escalations,
    settings: OrchestratorSettings | None = None,
    now: datetime | None = None,
    correlation_id: str | None = None,
) -> list[ChangeRequest]:
    """Surface requests stuck in PENDING or PROCESSING.

    A PENDING entry is stale once it is older than the threshold with no
    worker having claimed it; a PROCESSING entry once its run started
    that long ago. Stale requests are logged and escalated once, never
    moved to a terminal status: for PROCESSING, whether the upstream
    write landed is unknown.

    Returns:
        The stale requests, PENDING first, each group oldest first.
    """
    settings = settings or OrchestratorSettings()
    cutoff = (now or utc_now()) - timedelta(minutes=settings.stale_processing_minutes)
    stale = ledger.list_stale_pending(cutoff) + ledger.list_stale_processing(cutoff)

    for request in stale:
        stuck_since = (
            request.processing_started_at
            if request.status == ChangeStatus.PROCESSING
            else request.created_at
        )
        already_escalated = escalations.has_event(
            event_type=CHANGE_REQUEST_STALE, change_request_id=request.id
        )
        logger.warning(
            "change request stale",
            extra={
                "extra_fields": safe_log_context(
                    change_request_id=request.id,
                    booking_id=request.booking_id,
                    status=request.status.value,
                    stuck_since=stuck_since.isoformat(),
                    already_escalated=already_escalated,
                )
            },
        )
        if already_escalated:
            continue
        escalations.escalate(
            event_type=CHANGE_REQUEST_STALE,
            change_request_id=request.id,
            payload={
                "change_request_id": request.id,
                "booking_id": request.booking_id,
                "change_type": request.change_type.value,
                "status": request.status.value,
                "stuck_since": stuck_since.isoformat(),
            },
            correlation_id=correlation_id,
        )

    return stale
