"""Change request endpoints for the staff dashboard and inbox.

POST creates a PENDING ledger entry and enqueues its processing task; the
worker does the upstream work. GETs read the ledger and the action log.
Staff authentication happens in front of this service; `requestedBy` is
taken from the body as given.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Path
from pydantic import BaseModel, Field

from changedesk.domain.change_requests import create_change_request
from changedesk.domain.errors import (
    ChangeRequestNotFoundError,
    ChangeValidationError,
    DuplicateOpenRequestError,
)
from changedesk.domain.models import ChangeRequest, ChangeType, NewChangeRequest
from changedesk.infra.settings import load_orchestrator_settings
from changedesk.infra.stores import Stores, get_stores
from changedesk.observability.correlation import get_correlation_id
from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context
from changedesk.tasks.client import TasksClient, get_tasks_client


class CreateChangeRequestBody(BaseModel):
    """Request body for a new change request (ledger field names)."""

    bookingId: str = Field(min_length=1)
    confirmationCode: str = ""
    changeType: ChangeType
    parameters: dict[str, Any] = Field(default_factory=dict)
    requestedBy: str = Field(min_length=1)


router = APIRouter(prefix="/change-requests", tags=["change-requests"])

logger = get_logger(__name__)


def _get_stores() -> Stores:
    return get_stores()


def _get_tasks_client() -> TasksClient:
    return get_tasks_client()


def _load(stores: Stores, request_id: str) -> ChangeRequest:
    try:
        return stores.ledger.get(request_id)
    except ChangeRequestNotFoundError:
        raise HTTPException(status_code=404, detail="Change request not found") from None


@router.post("", status_code=201)
def create(body: CreateChangeRequestBody) -> dict:
    """Create a change request.

    Returns:
        201 with the PENDING ledger entry (FAILED if it could not be queued).
        409 if the booking already has an open change request.
        422 if the request is invalid (including a past date).
    """
    correlation_id = get_correlation_id()
    new = NewChangeRequest(
        booking_id=body.bookingId.strip(),
        confirmation_code=body.confirmationCode.strip(),
        change_type=body.changeType,
        parameters=dict(body.parameters),
        requested_by=body.requestedBy,
    )

    try:
        request = create_change_request(
            new,
            ledger=_get_stores().ledger,
            tasks=_get_tasks_client(),
            settings=load_orchestrator_settings(),
            correlation_id=correlation_id or None,
        )
    except ChangeValidationError as e:
        logger.info(
            "change request rejected",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=new.booking_id, change_type=new.change_type.value, reason=str(e)
                )
            },
        )
        raise HTTPException(status_code=422, detail=str(e)) from None
    except DuplicateOpenRequestError as e:
        raise HTTPException(status_code=409, detail=str(e)) from None

    return request.to_dict()


@router.get("/{request_id}")
def get_change_request(request_id: str = Path(..., min_length=1)) -> dict:
    """Current ledger entry, including outcome fields once terminal."""
    return _load(_get_stores(), request_id).to_dict()


@router.get("/{request_id}/actions")
def list_actions(request_id: str = Path(..., min_length=1)) -> dict:
    """Action log entries for the booking the change request targets."""
    stores = _get_stores()
    request = _load(stores, request_id)
    entries = stores.action_log.list_for_booking(request.booking_id)
    return {
        "changeRequestId": request.id,
        "bookingId": request.booking_id,
        "actions": [entry.to_dict() for entry in entries],
    }
