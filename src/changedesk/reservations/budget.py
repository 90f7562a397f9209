"""Wall-clock budget shared by every upstream call in one change run."""

from __future__ import annotations

import time
from typing import Callable

from .errors import UpstreamTimeoutError

# Below this there is no point opening a socket
_MIN_USEFUL_SECONDS = 0.5


class RunBudget:
    """Caps the total time a change run may spend talking to upstreams.

    Each call asks `timeout()` for its own timeout: the per-call limit, or
    what is left of the run budget if that is smaller. Once the budget is
    spent, `timeout()` raises UpstreamTimeoutError, which the orchestrator
    treats like any other failed strategy.
    """

    def __init__(
        self,
        total_seconds: float,
        call_timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._deadline = clock() + total_seconds
        self._call_timeout = call_timeout_seconds

    def remaining(self) -> float:
        return max(0.0, self._deadline - self._clock())

    @property
    def exhausted(self) -> bool:
        return self.remaining() < _MIN_USEFUL_SECONDS

    def timeout(self) -> float:
        """Timeout for the next upstream call.

        Raises:
            UpstreamTimeoutError: If the run budget is spent.
        """
        remaining = self.remaining()
        if remaining < _MIN_USEFUL_SECONDS:
            raise UpstreamTimeoutError("change run time budget exhausted", api="budget")
        return min(self._call_timeout, remaining)
