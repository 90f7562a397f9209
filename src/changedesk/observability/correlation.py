"""Correlation ID management for request and task tracing."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

# Shared between the public request and the worker task it enqueues
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None) -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    Worker handlers use this to restore the ID carried in a task payload,
    so that orchestration logs line up with the request that created the
    change request. A missing ID gets a fresh one.
    """
    effective = cid or generate_correlation_id()
    token = set_correlation_id(effective)
    try:
        yield effective
    finally:
        reset_correlation_id(token)
