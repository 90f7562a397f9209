"""Shared pytest fixtures for change desk tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from changedesk.infra.stores import Stores, build_stores, set_stores  # noqa: E402
from changedesk.tasks.client import set_tasks_client  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_process_globals():
    """Process-wide stores and tasks client must not leak between tests."""
    set_stores(None)
    set_tasks_client(None)
    yield
    set_stores(None)
    set_tasks_client(None)


@pytest.fixture
def stores() -> Stores:
    """In-memory ledger, action log and escalations, installed process-wide."""
    memory = build_stores("memory")
    set_stores(memory)
    return memory
