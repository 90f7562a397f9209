"""Action log repository - append-only audit of attempted booking mutations.

Uses raw SQL with psycopg2 (no ORM). Rows are never updated or deleted.
"""

from __future__ import annotations

import json
import threading
from typing import Any, Protocol

from changedesk.domain.models import ActionLogEntry
from changedesk.infra.db import txn


class ActionLog(Protocol):
    def append(self, entry: ActionLogEntry) -> None: ...

    def list_for_booking(self, booking_id: str) -> list[ActionLogEntry]: ...

    def list_for_request(self, change_request_id: str) -> list[ActionLogEntry]: ...


_COLUMNS = (
    "booking_id, action, performed_by, performed_at, success, method, "
    "original_data, new_data, error_message, change_request_id, "
    "confirmation_code, is_ota_booking, ota_name"
)


def _row_to_entry(row: tuple[Any, ...]) -> ActionLogEntry:
    return ActionLogEntry(
        booking_id=row[0],
        action=row[1],
        performed_by=row[2],
        performed_at=row[3],
        success=row[4],
        method=row[5],
        original_data=dict(row[6] or {}),
        new_data=dict(row[7] or {}),
        error_message=row[8],
        change_request_id=str(row[9]) if row[9] else None,
        confirmation_code=row[10],
        is_ota_booking=bool(row[11]),
        ota_name=row[12],
    )


class PostgresActionLog:
    """Action log stored in the booking_actions table."""

    def append(self, entry: ActionLogEntry) -> None:
        with txn() as cur:
            cur.execute(
                f"""
                INSERT INTO booking_actions ({_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s, %s)
                """,
                (
                    entry.booking_id,
                    entry.action,
                    entry.performed_by,
                    entry.performed_at,
                    entry.success,
                    entry.method,
                    json.dumps(entry.original_data, default=str),
                    json.dumps(entry.new_data, default=str),
                    entry.error_message,
                    entry.change_request_id,
                    entry.confirmation_code,
                    entry.is_ota_booking,
                    entry.ota_name,
                ),
            )

    def list_for_booking(self, booking_id: str) -> list[ActionLogEntry]:
        with txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM booking_actions
                WHERE booking_id = %s
                ORDER BY performed_at ASC, id ASC
                """,
                (booking_id,),
            )
            return [_row_to_entry(row) for row in cur.fetchall()]

    def list_for_request(self, change_request_id: str) -> list[ActionLogEntry]:
        with txn() as cur:
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM booking_actions
                WHERE change_request_id = %s
                ORDER BY performed_at ASC, id ASC
                """,
                (change_request_id,),
            )
            return [_row_to_entry(row) for row in cur.fetchall()]


class InMemoryActionLog:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[ActionLogEntry] = []

    def append(self, entry: ActionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def list_for_booking(self, booking_id: str) -> list[ActionLogEntry]:
        with self._lock:
            return [e for e in self._entries if e.booking_id == booking_id]

    def list_for_request(self, change_request_id: str) -> list[ActionLogEntry]:
        with self._lock:
            return [e for e in self._entries if e.change_request_id == change_request_id]
