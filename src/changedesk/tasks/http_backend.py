"""HTTP backend for tasks - POSTs the task straight to the worker.

Used where api and worker run as separate containers on one network
(local compose, staging). There is no queue, so no retries and no
scheduling: a failed POST leaves the change request PENDING.
"""

import os
from datetime import datetime

import requests
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.id_token import fetch_id_token

from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Must match task_auth._LOCAL_DEV_AUDIENCE
_LOCAL_DEV_AUDIENCE = "changedesk-tasks-local"


def _fetch_oidc_token(audience: str) -> str | None:
    """Fetch a GCP ID token for the given audience.

    Relies on the GCP metadata server (Cloud Run, GCE) or application
    default credentials. Returns None if no token can be obtained.
    """
    try:
        return fetch_id_token(GoogleRequest(), audience)
    except Exception as e:
        logger.error(
            "failed to fetch OIDC ID token",
            extra={"extra_fields": safe_log_context(audience=audience, error=str(e))},
        )
        return None


def _auth_headers(worker_base_url: str) -> dict[str, str] | None:
    """Credentials the worker's task auth will accept.

    Local dev sends the shared secret; everywhere else gets a Google ID
    token for TASKS_OIDC_AUDIENCE (or the worker URL when unset).

    Returns:
        Headers to add, or None if no credential could be produced.
    """
    audience = os.environ.get("TASKS_OIDC_AUDIENCE", "")
    if audience == _LOCAL_DEV_AUDIENCE:
        secret = os.environ.get("INTERNAL_TASK_SECRET", "")
        return {"X-Internal-Task-Secret": secret} if secret else {}

    token = _fetch_oidc_token(audience or worker_base_url)
    if not token:
        return None
    return {"Authorization": f"Bearer {token}"}


def enqueue_http(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """POST a task to the worker.

    Args:
        task_id: Unique task identifier (sent as X-Task-Id).
        url_path: Worker endpoint path (e.g., "/tasks/change-requests/process").
        payload: Task payload (must be PII-free).
        correlation_id: Optional correlation ID for tracing.
        schedule_time: Not supported; the task is dropped with a warning.

    Returns:
        True if the worker answered 2xx, False otherwise.
    """
    log_context = safe_log_context(task_id=task_id, url_path=url_path)

    if schedule_time is not None:
        logger.warning(
            "HTTP backend does not support scheduled tasks",
            extra={"extra_fields": log_context},
        )
        return True

    worker_base_url = os.environ.get("WORKER_BASE_URL", "http://worker:8000").rstrip("/")
    auth = _auth_headers(worker_base_url)
    if auth is None:
        logger.error(
            "HTTP task enqueue aborted: OIDC token unavailable",
            extra={"extra_fields": log_context},
        )
        return False

    headers = {
        "Content-Type": "application/json",
        "X-Correlation-ID": correlation_id or "",
        "X-Task-Id": task_id,
        **auth,
    }
    try:
        response = requests.post(
            f"{worker_base_url}{url_path}",
            json=payload,
            headers=headers,
            timeout=int(os.environ.get("TASKS_HTTP_TIMEOUT", "30")),
        )
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(
            "HTTP task enqueue failed",
            extra={"extra_fields": {**log_context, **safe_log_context(error=str(e))}},
        )
        return False

    logger.info("HTTP task enqueued", extra={"extra_fields": log_context})
    return True
