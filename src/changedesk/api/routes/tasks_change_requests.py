"""Worker routes for change request processing.

POST /tasks/change-requests/process - runs one change request.
POST /tasks/change-requests/sweep-stale - surfaces requests stuck in PROCESSING.
Only accepts requests with valid Cloud Tasks OIDC token.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response

from changedesk.api.task_auth import verify_task_auth
from changedesk.domain.change_requests import sweep_stale
from changedesk.domain.orchestrator import ChangeOrchestrator
from changedesk.infra.settings import (
    load_legacy_credentials,
    load_orchestrator_settings,
    load_standard_credentials,
)
from changedesk.infra.stores import get_stores
from changedesk.observability.correlation import correlation_scope, get_correlation_id
from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context
from changedesk.reservations.legacy import LegacyReservationClient
from changedesk.reservations.standard import StandardReservationClient
from changedesk.tasks.contracts import PROCESS_CHANGE_REQUEST, TaskEnvelopeV1

router = APIRouter(prefix="/tasks/change-requests", tags=["tasks"])

logger = get_logger(__name__)


def _build_orchestrator() -> ChangeOrchestrator:
    """Wire an orchestrator from environment configuration.

    Raises:
        RuntimeError: If upstream credentials are not configured.
    """
    settings = load_orchestrator_settings()
    stores = get_stores()
    return ChangeOrchestrator(
        ledger=stores.ledger,
        action_log=stores.action_log,
        escalations=stores.escalations,
        legacy=LegacyReservationClient(
            load_legacy_credentials(), call_timeout=settings.call_timeout_seconds
        ),
        standard=StandardReservationClient(
            load_standard_credentials(), call_timeout=settings.call_timeout_seconds
        ),
        settings=settings,
    )


def _require_task_auth(request: Request) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/process", response_model=None)
async def process_change_request_task(request: Request) -> Response | dict:
    """Handle a change request processing task.

    Expected payload: a v1 task envelope (no PII) whose payload holds
    - change_request_id (required)
    - correlation_id (optional, restored for the run)

    Returns:
        200 {"ok": true, "status": ...} when processed.
        200 {"ok": true, "skipped": true} if the request was not PENDING.
        400 if the payload is invalid.
        401 if task auth fails.
    """
    _require_task_auth(request)

    try:
        body: dict[str, Any] = await request.json()
        if not isinstance(body, dict):
            raise ValueError("task body must be a JSON object")
        envelope = TaskEnvelopeV1.from_dict(body)
    except ValueError as e:
        logger.warning(
            "invalid task payload",
            extra={"extra_fields": safe_log_context(error=str(e))},
        )
        return Response(status_code=400, content="invalid payload")

    change_request_id = str(envelope.payload.get("change_request_id") or "")
    if envelope.task_name != PROCESS_CHANGE_REQUEST or not change_request_id:
        logger.warning(
            "unexpected task",
            extra={
                "extra_fields": safe_log_context(
                    task_name=envelope.task_name, has_change_request_id=bool(change_request_id)
                )
            },
        )
        return Response(status_code=400, content="missing change_request_id")

    with correlation_scope(envelope.payload.get("correlation_id") or get_correlation_id()):
        result = _build_orchestrator().process(change_request_id)

    if result is None:
        return {"ok": True, "skipped": True}
    return {"ok": True, "status": result.status.value, "method": result.method}


@router.post("/sweep-stale")
async def sweep_stale_task(request: Request) -> dict:
    """Log and escalate change requests stuck in PENDING or PROCESSING.

    Returns:
        200 {"ok": true, "stale": [ids]}.
        401 if task auth fails.
    """
    _require_task_auth(request)

    stores = get_stores()
    stale = sweep_stale(
        ledger=stores.ledger,
        escalations=stores.escalations,
        settings=load_orchestrator_settings(),
        correlation_id=get_correlation_id() or None,
    )
    return {"ok": True, "stale": [r.id for r in stale]}
