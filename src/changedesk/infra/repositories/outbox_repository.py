"""Outbox repository - event emission for async processing.

Escalations (a destructive fallback that cancelled a booking but could not
rebook it, or a request stuck in PROCESSING) are written to the outbox so
the notifier can page staff. Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
import threading
from typing import Any, Protocol

from psycopg2.extensions import cursor as PgCursor

from changedesk.infra.db import txn

CHANGE_REQUEST_ESCALATED = "CHANGE_REQUEST_ESCALATED"
CHANGE_REQUEST_STALE = "CHANGE_REQUEST_STALE"


def emit_event(
    cur: PgCursor,
    *,
    event_type: str,
    aggregate_type: str,
    aggregate_id: str,
    payload: dict | None = None,
    correlation_id: str | None = None,
) -> int:
    """Emit an event to the outbox.

    Args:
        cur: Database cursor (within transaction).
        event_type: Event type (e.g., CHANGE_REQUEST_ESCALATED).
        aggregate_type: Aggregate type (e.g., change_request).
        aggregate_id: Aggregate ID.
        payload: Optional JSON payload.
        correlation_id: Optional correlation ID for tracing.

    Returns:
        The generated event ID.
    """
    payload_json = json.dumps(payload, default=str) if payload else None

    cur.execute(
        """
        INSERT INTO outbox_events (
            event_type, aggregate_type, aggregate_id, payload, correlation_id
        )
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (event_type, aggregate_type, aggregate_id, payload_json, correlation_id),
    )
    return cur.fetchone()[0]


class Escalations(Protocol):
    def escalate(
        self,
        *,
        event_type: str,
        change_request_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None: ...

    def has_event(self, *, event_type: str, change_request_id: str) -> bool: ...


class PostgresEscalations:
    def escalate(
        self,
        *,
        event_type: str,
        change_request_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None:
        with txn() as cur:
            emit_event(
                cur,
                event_type=event_type,
                aggregate_type="change_request",
                aggregate_id=change_request_id,
                payload=payload,
                correlation_id=correlation_id,
            )

    def has_event(self, *, event_type: str, change_request_id: str) -> bool:
        with txn() as cur:
            cur.execute(
                """
                SELECT 1 FROM outbox_events
                WHERE event_type = %s AND aggregate_type = %s AND aggregate_id = %s
                LIMIT 1
                """,
                (event_type, "change_request", change_request_id),
            )
            return cur.fetchone() is not None


class InMemoryEscalations:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[dict[str, Any]] = []

    def escalate(
        self,
        *,
        event_type: str,
        change_request_id: str,
        payload: dict[str, Any],
        correlation_id: str | None = None,
    ) -> None:
        with self._lock:
            self.events.append(
                {
                    "event_type": event_type,
                    "aggregate_id": change_request_id,
                    "payload": payload,
                    "correlation_id": correlation_id,
                }
            )

    def has_event(self, *, event_type: str, change_request_id: str) -> bool:
        with self._lock:
            return any(
                e["event_type"] == event_type and e["aggregate_id"] == change_request_id
                for e in self.events
            )
