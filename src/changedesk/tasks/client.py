"""Tasks client with idempotent enqueue.

Provides multiple backends selectable via TASKS_BACKEND env var:
- inline (default): runs a locally registered handler, or just records
  the task (for dev/tests)
- http: sends tasks to worker via HTTP POST
- cloud_tasks: sends tasks to Google Cloud Tasks
"""

import os
from datetime import datetime
from typing import Callable, Protocol


class TaskHandler(Protocol):
    """Protocol for task handlers."""

    def __call__(self, payload: dict) -> None:
        """Execute task with given payload."""
        ...


class TasksClient:
    """Tasks client with idempotent enqueue by task_id.

    Backend selection via TASKS_BACKEND env var (or the `backend` argument):
    - "inline" (default): runs the handler registered for the url_path, if
      any; otherwise only records the task
    - "http": sends tasks to worker via HTTP POST
    - "cloud_tasks": sends tasks to Google Cloud Tasks (requires GCP setup)

    Tracks task_ids to ensure idempotency (same task_id = no-op).
    """

    def __init__(self, backend: str | None = None) -> None:
        self._executed_ids: set[str] = set()
        self._scheduled_tasks: list[dict] = []
        self._inline_handlers: dict[str, TaskHandler] = {}
        self._backend = backend or os.environ.get("TASKS_BACKEND", "inline")

    @property
    def backend(self) -> str:
        return self._backend

    def register_inline(self, url_path: str, handler: Callable[[dict], None]) -> None:
        """Run `handler` in-process for tasks sent to `url_path` (inline backend only)."""
        self._inline_handlers[url_path] = handler

    def enqueue_http(
        self,
        task_id: str,
        url_path: str,
        payload: dict,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Enqueue task for HTTP-based execution.

        Idempotent by task_id: if same task_id was already enqueued,
        returns False without re-enqueuing.

        Args:
            task_id: Unique identifier for idempotency.
            url_path: Worker endpoint path (e.g., "/tasks/change-requests/process").
            payload: Task data (must not contain PII).
            correlation_id: Optional correlation ID for tracing.
            schedule_time: Optional future execution time.

        Returns:
            True if task was enqueued (new task_id).
            False if no-op (task_id already seen) or the backend refused it.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        if task_id in self._executed_ids:
            return False

        self._executed_ids.add(task_id)

        if self._backend == "inline":
            self._scheduled_tasks.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": payload,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            handler = self._inline_handlers.get(url_path)
            if handler is not None and schedule_time is None:
                handler(payload)
            return True

        elif self._backend == "http":
            from changedesk.tasks.http_backend import enqueue_http
            return enqueue_http(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        elif self._backend == "cloud_tasks":
            from changedesk.tasks.cloud_tasks_backend import enqueue_cloud_task
            return enqueue_cloud_task(
                task_id, url_path, payload, correlation_id, schedule_time
            )

        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

    def was_executed(self, task_id: str) -> bool:
        """Check if task_id was already executed/enqueued."""
        return task_id in self._executed_ids

    def get_scheduled_tasks(self) -> list[dict]:
        """Get list of recorded inline tasks (useful for testing)."""
        return list(self._scheduled_tasks)

    def clear(self) -> None:
        """Clear executed task_ids and scheduled tasks (useful for testing)."""
        self._executed_ids.clear()
        self._scheduled_tasks.clear()


_tasks_client: TasksClient | None = None


def get_tasks_client() -> TasksClient:
    """Process-wide tasks client, built on first use."""
    global _tasks_client
    if _tasks_client is None:
        _tasks_client = TasksClient()
    return _tasks_client


def set_tasks_client(client: TasksClient | None) -> None:
    """Replace (or with None, reset) the process-wide tasks client."""
    global _tasks_client
    _tasks_client = client
