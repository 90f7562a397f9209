"""Tests for Cloud Tasks backend task payload construction.

Verifies that enqueue_cloud_task uses TASKS_OIDC_AUDIENCE as the OIDC
audience, names tasks after their task_id, and fails closed when required
env vars are missing.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import AlreadyExists

from changedesk.tasks.cloud_tasks_backend import enqueue_cloud_task, task_name_for

# Minimal env vars required by enqueue_cloud_task
_REQUIRED_ENV = {
    "GOOGLE_CLOUD_PROJECT": "my-project",
    "WORKER_BASE_URL": "https://worker.example.com/",
    "TASKS_OIDC_SERVICE_ACCOUNT": "tasks@my-project.iam.gserviceaccount.com",
    "TASKS_OIDC_AUDIENCE": "https://worker.example.com",
}

_PARENT = "projects/my-project/locations/europe-west1/queues/changedesk-default"


def _mock_client() -> MagicMock:
    client = MagicMock()
    client.queue_path.return_value = _PARENT
    response = MagicMock()
    response.name = f"{_PARENT}/tasks/change-request-cr-1"
    client.create_task.return_value = response
    return client


def _enqueue(env: dict, client: MagicMock, **kwargs) -> bool:
    with patch.dict("os.environ", env, clear=True):
        with patch(
            "changedesk.tasks.cloud_tasks_backend.tasks_v2.CloudTasksClient",
            return_value=client,
        ):
            return enqueue_cloud_task(
                task_id="change-request:cr-1",
                url_path="/tasks/change-requests/process",
                payload={"change_request_id": "cr-1"},
                **kwargs,
            )


class TestEnqueueCloudTask:
    def test_task_shape(self):
        env = {**_REQUIRED_ENV, "TASKS_OIDC_AUDIENCE": "https://custom-audience.example.com"}
        client = _mock_client()

        assert _enqueue(env, client, correlation_id="corr-1") is True

        task = client.create_task.call_args.kwargs["task"]
        assert task["name"] == f"{_PARENT}/tasks/change-request-cr-1"
        http_request = task["http_request"]
        assert http_request["url"] == "https://worker.example.com/tasks/change-requests/process"
        assert http_request["headers"]["X-Correlation-ID"] == "corr-1"
        assert http_request["oidc_token"] == {
            "service_account_email": env["TASKS_OIDC_SERVICE_ACCOUNT"],
            "audience": "https://custom-audience.example.com",
        }
        client.queue_path.assert_called_once_with("my-project", "europe-west1", "changedesk-default")

    def test_already_exists_is_success(self):
        client = _mock_client()
        client.create_task.side_effect = AlreadyExists("task exists")

        assert _enqueue(_REQUIRED_ENV, client) is True

    def test_other_errors_propagate(self):
        client = _mock_client()
        client.create_task.side_effect = RuntimeError("quota")

        with pytest.raises(RuntimeError, match="quota"):
            _enqueue(_REQUIRED_ENV, client)

    def test_task_name_is_sanitized(self):
        assert task_name_for("q", "a:b/c") == "q/tasks/a-b-c"


class TestEnqueueCloudTaskFailClosed:
    """enqueue_cloud_task must fail fast when required env vars are missing."""

    @pytest.mark.parametrize(
        "missing,match",
        [
            ("TASKS_OIDC_AUDIENCE", "TASKS_OIDC_AUDIENCE required"),
            ("TASKS_OIDC_SERVICE_ACCOUNT", "TASKS_OIDC_SERVICE_ACCOUNT required"),
            ("WORKER_BASE_URL", "WORKER_BASE_URL required"),
            ("GOOGLE_CLOUD_PROJECT", "GOOGLE_CLOUD_PROJECT"),
        ],
    )
    def test_missing_env_raises(self, missing, match):
        env = {k: v for k, v in _REQUIRED_ENV.items() if k != missing}
        client = _mock_client()

        with pytest.raises(RuntimeError, match=match):
            _enqueue(env, client)

        client.create_task.assert_not_called()
