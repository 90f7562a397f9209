"""Backend selection for the ledger, action log and escalation outbox.

LEDGER_BACKEND env var:
- "postgres" (default): tables in DATABASE_URL
- "memory": process-local, for local development and tests
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .repositories.action_log_repository import ActionLog, InMemoryActionLog, PostgresActionLog
from .repositories.change_requests_repository import (
    ChangeRequestLedger,
    InMemoryChangeRequestLedger,
    PostgresChangeRequestLedger,
)
from .repositories.outbox_repository import (
    Escalations,
    InMemoryEscalations,
    PostgresEscalations,
)


@dataclass(frozen=True)
class Stores:
    ledger: ChangeRequestLedger
    action_log: ActionLog
    escalations: Escalations


def build_stores(backend: str | None = None) -> Stores:
    """Create stores for a backend name.

    Raises:
        ValueError: If the backend is unknown.
    """
    backend = backend or os.environ.get("LEDGER_BACKEND", "postgres")
    if backend == "postgres":
        return Stores(
            ledger=PostgresChangeRequestLedger(),
            action_log=PostgresActionLog(),
            escalations=PostgresEscalations(),
        )
    if backend == "memory":
        return Stores(
            ledger=InMemoryChangeRequestLedger(),
            action_log=InMemoryActionLog(),
            escalations=InMemoryEscalations(),
        )
    raise ValueError(f"Unknown LEDGER_BACKEND: {backend}")


_stores: Stores | None = None


def get_stores() -> Stores:
    """Process-wide stores, built on first use."""
    global _stores
    if _stores is None:
        _stores = build_stores()
    return _stores


def set_stores(stores: Stores | None) -> None:
    """Replace (or with None, reset) the process-wide stores."""
    global _stores
    _stores = stores
