"""Change request ledger - persistence for change requests.

Postgres implementation uses raw SQL with psycopg2 (no ORM). The in-memory
implementation backs local development and tests.

Status writes are single conditional statements: a write only lands if the
current status is an allowed predecessor of the new one.
"""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Protocol

from psycopg2 import errors as pg_errors

from changedesk.domain.errors import (
    ChangeRequestNotFoundError,
    DuplicateOpenRequestError,
    InvalidTransitionError,
)
from changedesk.domain.models import (
    ALLOWED_TRANSITIONS,
    ChangeRequest,
    ChangeStatus,
    ChangeType,
    FailureKind,
    NewChangeRequest,
)
from changedesk.infra.db import txn
from changedesk.infra.time import utc_now

OPEN_STATUSES = (ChangeStatus.PENDING, ChangeStatus.PROCESSING)

# Outcome columns the orchestrator may write alongside a status
OUTCOME_FIELDS = frozenset(
    {
        "method",
        "result_message",
        "error_message",
        "failure_kind",
        "is_ota_booking",
        "ota_name",
        "ota_portal_url",
        "customer_name",
        "details",
    }
)

_TIMESTAMP_FOR_STATUS = {
    ChangeStatus.PROCESSING: "processing_started_at",
    ChangeStatus.COMPLETED: "completed_at",
    ChangeStatus.FAILED: "failed_at",
}


class ChangeRequestLedger(Protocol):
    def create(self, new: NewChangeRequest) -> ChangeRequest: ...

    def get(self, request_id: str) -> ChangeRequest: ...

    def claim(self, request_id: str) -> ChangeRequest | None: ...

    def update_status(
        self, request_id: str, status: ChangeStatus, fields: dict[str, Any] | None = None
    ) -> ChangeRequest: ...

    def list_stale_pending(self, older_than: datetime) -> list[ChangeRequest]: ...

    def list_stale_processing(self, older_than: datetime) -> list[ChangeRequest]: ...


def _predecessors(status: ChangeStatus) -> list[ChangeStatus]:
    return [s for s, nxt in ALLOWED_TRANSITIONS.items() if status in nxt]


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - OUTCOME_FIELDS
    if unknown:
        raise ValueError(f"Not writable on a change request: {sorted(unknown)}")


# ---------------------------------------------------------------------------
# Postgres
# ---------------------------------------------------------------------------

_COLUMNS = (
    "id, booking_id, confirmation_code, change_type, parameters, requested_by, "
    "status, created_at, processing_started_at, completed_at, failed_at, method, "
    "result_message, error_message, failure_kind, is_ota_booking, ota_name, "
    "ota_portal_url, customer_name, details"
)


def _row_to_request(row: tuple[Any, ...]) -> ChangeRequest:
    return ChangeRequest(
        id=str(row[0]),
        booking_id=row[1],
        confirmation_code=row[2] or "",
        change_type=ChangeType(row[3]),
        parameters=dict(row[4] or {}),
        requested_by=row[5],
        status=ChangeStatus(row[6]),
        created_at=row[7],
        processing_started_at=row[8],
        completed_at=row[9],
        failed_at=row[10],
        method=row[11],
        result_message=row[12],
        error_message=row[13],
        failure_kind=FailureKind(row[14]) if row[14] else None,
        is_ota_booking=bool(row[15]),
        ota_name=row[16],
        ota_portal_url=row[17],
        customer_name=row[18],
        details=dict(row[19] or {}),
    )


def _is_uuid(value: str) -> bool:
    # ids are uuid columns; anything else would be a cast error, not a miss
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _to_db(name: str, value: Any) -> Any:
    if name == "details":
        return json.dumps(value or {})
    if name == "failure_kind" and isinstance(value, FailureKind):
        return value.value
    return value


class PostgresChangeRequestLedger:
    """Ledger stored in the change_requests table."""

    def create(self, new: NewChangeRequest) -> ChangeRequest:
        """Insert a PENDING entry.

        A partial unique index allows one open (pending/processing) request
        per booking; a second one raises DuplicateOpenRequestError.
        """
        try:
            with txn() as cur:
                cur.execute(
                    f"""
                    INSERT INTO change_requests (
                        booking_id, confirmation_code, change_type,
                        parameters, requested_by, status
                    )
                    VALUES (%s, %s, %s, %s::jsonb, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        new.booking_id,
                        new.confirmation_code,
                        new.change_type.value,
                        json.dumps(new.parameters),
                        new.requested_by,
                        ChangeStatus.PENDING.value,
                    ),
                )
                row = cur.fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateOpenRequestError(new.booking_id) from e
        return _row_to_request(row)

    def get(self, request_id: str) -> ChangeRequest:
        if not _is_uuid(request_id):
            raise ChangeRequestNotFoundError(f"Change request {request_id} not found")
        with txn() as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM change_requests WHERE id = %s",
                (request_id,),
            )
            row = cur.fetchone()
        if row is None:
            raise ChangeRequestNotFoundError(f"Change request {request_id} not found")
        return _row_to_request(row)

    def claim(self, request_id: str) -> ChangeRequest | None:
        """Atomically move PENDING -> PROCESSING. None if someone else has it."""
        if not _is_uuid(request_id):
            return None
        with txn() as cur:
            cur.execute(
                f"""
                UPDATE change_requests
                SET status = %s, processing_started_at = now()
                WHERE id = %s AND status = %s
                RETURNING {_COLUMNS}
                """,
                (ChangeStatus.PROCESSING.value, request_id, ChangeStatus.PENDING.value),
            )
            row = cur.fetchone()
        return _row_to_request(row) if row else None

    def update_status(
        self,
        request_id: str,
        status: ChangeStatus,
        fields: dict[str, Any] | None = None,
    ) -> ChangeRequest:
        if not _is_uuid(request_id):
            raise ChangeRequestNotFoundError(f"Change request {request_id} not found")
        fields = dict(fields or {})
        _check_fields(fields)
        predecessors = _predecessors(status)
        if not predecessors:
            raise InvalidTransitionError(f"Nothing may transition to {status.value}")

        assignments = ["status = %s", f"{_TIMESTAMP_FOR_STATUS[status]} = now()"]
        params: list[Any] = [status.value]
        for name in sorted(fields):
            assignments.append(f"{name} = %s")
            params.append(_to_db(name, fields[name]))
        params.extend([request_id, [p.value for p in predecessors]])

        with txn() as cur:
            cur.execute(
                f"""
                UPDATE change_requests
                SET {", ".join(assignments)}
                WHERE id = %s AND status = ANY(%s)
                RETURNING {_COLUMNS}
                """,
                tuple(params),
            )
            row = cur.fetchone()

        if row is None:
            raise InvalidTransitionError(
                f"Change request {request_id} cannot move to {status.value}"
            )
        return _row_to_request(row)

    def list_stale_pending(self, older_than: datetime) -> list[ChangeRequest]:
        """PENDING entries created before `older_than` that no worker claimed."""
        with txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM change_requests
                WHERE status = %s AND created_at < %s
                ORDER BY created_at ASC
                """,
                (ChangeStatus.PENDING.value, older_than),
            )
            rows = cur.fetchall()
        return [_row_to_request(row) for row in rows]

    def list_stale_processing(self, older_than: datetime) -> list[ChangeRequest]:
        with txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM change_requests
                WHERE status = %s AND processing_started_at < %s
                ORDER BY processing_started_at ASC
                """,
                (ChangeStatus.PROCESSING.value, older_than),
            )
            rows = cur.fetchall()
        return [_row_to_request(row) for row in rows]


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryChangeRequestLedger:
    """Process-local ledger with the same guarantees, guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._requests: dict[str, ChangeRequest] = {}

    def create(self, new: NewChangeRequest) -> ChangeRequest:
        with self._lock:
            if any(
                r.booking_id == new.booking_id and r.status in OPEN_STATUSES
                for r in self._requests.values()
            ):
                raise DuplicateOpenRequestError(new.booking_id)
            request = ChangeRequest(
                id=str(uuid.uuid4()),
                booking_id=new.booking_id,
                confirmation_code=new.confirmation_code,
                change_type=new.change_type,
                parameters=dict(new.parameters),
                requested_by=new.requested_by,
                status=ChangeStatus.PENDING,
                created_at=utc_now(),
            )
            self._requests[request.id] = request
            return request

    def get(self, request_id: str) -> ChangeRequest:
        with self._lock:
            try:
                return self._requests[request_id]
            except KeyError:
                raise ChangeRequestNotFoundError(
                    f"Change request {request_id} not found"
                ) from None

    def claim(self, request_id: str) -> ChangeRequest | None:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None or current.status != ChangeStatus.PENDING:
                return None
            claimed = replace(
                current,
                status=ChangeStatus.PROCESSING,
                processing_started_at=utc_now(),
            )
            self._requests[request_id] = claimed
            return claimed

    def update_status(
        self,
        request_id: str,
        status: ChangeStatus,
        fields: dict[str, Any] | None = None,
    ) -> ChangeRequest:
        fields = dict(fields or {})
        _check_fields(fields)
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise ChangeRequestNotFoundError(f"Change request {request_id} not found")
            if status not in ALLOWED_TRANSITIONS[current.status]:
                raise InvalidTransitionError(
                    f"Change request {request_id} cannot move "
                    f"from {current.status.value} to {status.value}"
                )
            updated = replace(
                current,
                status=status,
                **{_TIMESTAMP_FOR_STATUS[status]: utc_now()},
                **fields,
            )
            self._requests[request_id] = updated
            return updated

    def list_stale_processing(self, older_than: datetime) -> list[ChangeRequest]:
        with self._lock:
            stale = [
                r
                for r in self._requests.values()
                if r.status == ChangeStatus.PROCESSING
                and r.processing_started_at is not None
                and r.processing_started_at < older_than
            ]
        return sorted(stale, key=lambda r: r.processing_started_at)

    def list_stale_pending(self, older_than: datetime) -> list[ChangeRequest]:
        with self._lock:
            stale = [
                r
                for r in self._requests.values()
                if r.status == ChangeStatus.PENDING and r.created_at < older_than
            ]
        return sorted(stale, key=lambda r: r.created_at)
