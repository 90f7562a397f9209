"""Authentication for worker task routes.

Tasks arrive from Cloud Tasks with a Google-signed OIDC token. In local dev
(TASKS_OIDC_AUDIENCE == "changedesk-tasks-local") the http task backend
sends a shared X-Internal-Task-Secret header instead.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Must match http_backend._LOCAL_DEV_AUDIENCE
_LOCAL_DEV_AUDIENCE = "changedesk-tasks-local"


def extract_bearer_token(request: Request) -> str | None:
    """Token from an `Authorization: Bearer ...` header, or None."""
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def verify_task_oidc(token: str) -> bool:
    """Verify a Cloud Tasks OIDC token.

    The audience must equal TASKS_OIDC_AUDIENCE. If
    TASKS_OIDC_SERVICE_ACCOUNT is set, the token's email must match it.
    Fails closed when no audience is configured.
    """
    audience = os.environ.get("TASKS_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "TASKS_OIDC_AUDIENCE not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_audience_env")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(
            token, google_requests.Request(), audience=audience
        )
    except ValueError as e:
        logger.warning(
            "OIDC token verification failed",
            extra={"extra_fields": safe_log_context(error=str(e), expected_audience=audience)},
        )
        return False

    expected_email = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    if expected_email and claims.get("email") != expected_email:
        logger.warning(
            "OIDC service account mismatch",
            extra={"extra_fields": safe_log_context(expected_email=expected_email)},
        )
        return False
    return True


def _internal_secret_matches(request: Request) -> bool:
    expected = os.environ.get("INTERNAL_TASK_SECRET", "")
    provided = request.headers.get("X-Internal-Task-Secret", "")
    return bool(expected) and hmac.compare_digest(provided, expected)


def verify_task_auth(request: Request) -> bool:
    """True if the request may run a worker task.

    Args:
        request: FastAPI request object.
    """
    if os.environ.get("TASKS_OIDC_AUDIENCE", "") == _LOCAL_DEV_AUDIENCE and (
        _internal_secret_matches(request)
    ):
        logger.info(
            "task auth via internal secret (local dev)",
            extra={"extra_fields": safe_log_context(auth_method="internal_secret")},
        )
        return True

    token = extract_bearer_token(request)
    if not token:
        logger.warning(
            "task auth failed: missing Bearer token",
            extra={"extra_fields": safe_log_context(reason="missing_bearer_token")},
        )
        return False
    return verify_task_oidc(token)
