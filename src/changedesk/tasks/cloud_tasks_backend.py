"""Cloud Tasks backend for GCP deployment.

Change request tasks are named after their task_id, so a second enqueue
for the same change request is rejected by Cloud Tasks as ALREADY_EXISTS
and treated here as success.
"""
import json
import os
from dataclasses import dataclass
from datetime import datetime

from google.api_core.exceptions import AlreadyExists
from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from changedesk.observability.logging import get_logger
from changedesk.observability.redaction import safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class _QueueConfig:
    project: str
    location: str
    queue: str
    worker_url: str
    service_account: str
    audience: str


def _load_queue_config() -> _QueueConfig:
    """Read queue settings from the environment at call time.

    Raises:
        RuntimeError: If a required variable is missing.
    """
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    worker_url = os.environ.get("WORKER_BASE_URL")
    service_account = os.environ.get("TASKS_OIDC_SERVICE_ACCOUNT")
    audience = os.environ.get("TASKS_OIDC_AUDIENCE")

    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    if not worker_url:
        raise RuntimeError("WORKER_BASE_URL required for Cloud Tasks")
    if not service_account:
        raise RuntimeError("TASKS_OIDC_SERVICE_ACCOUNT required for Cloud Tasks")
    if not audience:
        raise RuntimeError("TASKS_OIDC_AUDIENCE required for Cloud Tasks")

    return _QueueConfig(
        project=project,
        location=os.environ.get("GCP_LOCATION", "europe-west1"),
        queue=os.environ.get("GCP_TASKS_QUEUE", "changedesk-default"),
        worker_url=worker_url.rstrip("/"),
        service_account=service_account,
        audience=audience,
    )


def task_name_for(parent: str, task_id: str) -> str:
    """Cloud Tasks names allow only letters, digits, '-' and '_'."""
    safe_task_id = task_id.replace(":", "-").replace("/", "-")
    return f"{parent}/tasks/{safe_task_id}"


def enqueue_cloud_task(
    task_id: str,
    url_path: str,
    payload: dict,
    correlation_id: str | None = None,
    schedule_time: datetime | None = None,
) -> bool:
    """Enqueue task via Google Cloud Tasks.

    Args:
        task_id: Unique task identifier, also used as the task name.
        url_path: Worker endpoint path (e.g., /tasks/change-requests/process).
        payload: Task payload (must be PII-free).
        correlation_id: Optional correlation ID for tracing.
        schedule_time: Optional future execution time.

    Returns:
        True if the task was enqueued or already existed.

    Raises:
        RuntimeError: If required env vars not set.
    """
    config = _load_queue_config()
    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(config.project, config.location, config.queue)

    headers = {"Content-Type": "application/json"}
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id

    task = {
        "name": task_name_for(parent, task_id),
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": f"{config.worker_url}{url_path}",
            "headers": headers,
            "body": json.dumps(payload).encode(),
            "oidc_token": {
                "service_account_email": config.service_account,
                "audience": config.audience,
            },
        },
    }
    if schedule_time:
        timestamp = timestamp_pb2.Timestamp()
        timestamp.FromDatetime(schedule_time)
        task["schedule_time"] = timestamp

    log_context = safe_log_context(task_id=task_id, url_path=url_path)
    try:
        response = client.create_task(parent=parent, task=task)
    except AlreadyExists:
        logger.info("cloud task already exists (dedupe)", extra={"extra_fields": log_context})
        return True
    except Exception as e:
        logger.exception(
            "failed to enqueue cloud task",
            extra={"extra_fields": {**log_context, "error": str(e)}},
        )
        raise

    logger.info(
        "cloud task enqueued",
        extra={"extra_fields": {**log_context, "task_name": response.name}},
    )
    return True
