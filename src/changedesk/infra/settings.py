"""Runtime settings for the change desk.

Credentials are resolved from the environment once, at the edge, and then
passed explicitly into client constructors. Nothing below the API/worker
layer reads os.environ for upstream credentials.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_LEGACY_BASE_URL = "https://api.bokun.io"
DEFAULT_STANDARD_BASE_URL = "https://api.bokun.io/octo/v1"
DEFAULT_OPERATOR_TIMEZONE = "Atlantic/Reykjavik"


@dataclass(frozen=True)
class LegacyCredentials:
    """Access/secret key pair for the signed legacy booking API."""

    access_key: str
    secret_key: str
    base_url: str = DEFAULT_LEGACY_BASE_URL

    def __repr__(self) -> str:
        # Never render the secret in tracebacks or logs
        return f"LegacyCredentials(access_key={self.access_key!r}, base_url={self.base_url!r})"


@dataclass(frozen=True)
class StandardCredentials:
    """Bearer token for the standardized booking API."""

    token: str
    base_url: str = DEFAULT_STANDARD_BASE_URL

    def __repr__(self) -> str:
        return f"StandardCredentials(base_url={self.base_url!r})"


@dataclass(frozen=True)
class OrchestratorSettings:
    """Timing and locale knobs for a change run.

    Attributes:
        call_timeout_seconds: Timeout for any single upstream round-trip.
        run_budget_seconds: Wall-clock budget for a whole change request.
        operator_timezone: Timezone used to decide what "today" is.
        stale_processing_minutes: Age after which PROCESSING is surfaced.
    """

    call_timeout_seconds: float = 10.0
    run_budget_seconds: float = 45.0
    operator_timezone: str = DEFAULT_OPERATOR_TIMEZONE
    stale_processing_minutes: int = 15


def _require(name: str) -> str:
    value = os.environ.get(name, "")
    if not value:
        raise RuntimeError(f"{name} not configured")
    return value


def load_legacy_credentials() -> LegacyCredentials:
    """Build legacy API credentials from the environment.

    Raises:
        RuntimeError: If LEGACY_ACCESS_KEY or LEGACY_SECRET_KEY is missing.
    """
    return LegacyCredentials(
        access_key=_require("LEGACY_ACCESS_KEY"),
        secret_key=_require("LEGACY_SECRET_KEY"),
        base_url=os.environ.get("LEGACY_API_BASE_URL", DEFAULT_LEGACY_BASE_URL),
    )


def load_standard_credentials() -> StandardCredentials:
    """Build standard API credentials from the environment.

    Raises:
        RuntimeError: If STANDARD_API_TOKEN is missing.
    """
    return StandardCredentials(
        token=_require("STANDARD_API_TOKEN"),
        base_url=os.environ.get("STANDARD_API_BASE_URL", DEFAULT_STANDARD_BASE_URL),
    )


def load_orchestrator_settings() -> OrchestratorSettings:
    """Build orchestrator settings from the environment, with defaults."""
    return OrchestratorSettings(
        call_timeout_seconds=float(os.environ.get("UPSTREAM_CALL_TIMEOUT_SECONDS", "10")),
        run_budget_seconds=float(os.environ.get("CHANGE_RUN_BUDGET_SECONDS", "45")),
        operator_timezone=os.environ.get("OPERATOR_TIMEZONE", DEFAULT_OPERATOR_TIMEZONE),
        stale_processing_minutes=int(os.environ.get("STALE_PROCESSING_MINUTES", "15")),
    )
