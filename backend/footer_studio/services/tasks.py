"""Cloud Tasks helper service for triggering the footer processing pipeline."""
from __future__ import annotations

import asyncio
import functools
import json
import logging
from dataclasses import dataclass
from typing import Optional, Set

from google.cloud import tasks_v2

from ..config import get_settings
from ..exceptions import TriggerInvocationError

logger = logging.getLogger(__name__)


@dataclass
class TasksConfig:
    project: str
    region: str
    queue: str
    target_url: str
    service_account_email: str
    emulate: bool = True

    @classmethod
    def from_settings(cls) -> "TasksConfig":
        settings = get_settings()
        return cls(
            project=settings.GCP_PROJECT,
            region=settings.REGION,
            queue=settings.TASKS_QUEUE,
            target_url=settings.TASKS_TARGET_URL,
            service_account_email=settings.TASKS_SERVICE_ACCOUNT_EMAIL,
            emulate=settings.TASKS_EMULATE,
        )


class CloudTasksService:
    """Wrapper for creating HTTP tasks to trigger processing."""

    def __init__(self, cfg: TasksConfig) -> None:
        self.cfg = cfg
        self._client = None if cfg.emulate else tasks_v2.CloudTasksClient()

    def enqueue_job(self, job_id: str) -> Optional[str]:
        """Create a task to call the worker endpoint with OIDC.

        Returns the task name on success, or None if emulated/no-op.
        Raises on irrecoverable API errors.
        """
        if self.cfg.emulate or self._client is None or not all([
            self.cfg.project, self.cfg.region, self.cfg.queue,
            self.cfg.target_url, self.cfg.service_account_email,
        ]):
            logger.info("Tasks emulation/no-op: skipping enqueue for job %s", job_id)
            return None

        parent = self._client.queue_path(self.cfg.project, self.cfg.region, self.cfg.queue)
        task = {
            "http_request": {
                "http_method": tasks_v2.HttpMethod.POST,
                "url": self.cfg.target_url,
                "headers": {"Content-Type": "application/json"},
                "body": json.dumps({"jobId": job_id}).encode(),
                "oidc_token": {
                    "service_account_email": self.cfg.service_account_email,
                    "audience": self.cfg.target_url,
                },
            }
        }
        response = self._client.create_task(request={"parent": parent, "task": task})
        logger.info("Created task %s for job %s", response.name, job_id)
        return response.name


# In-process pipeline runs; the loop only keeps weak references to tasks.
_background_tasks: Set[asyncio.Task] = set()


def _on_pipeline_done(job_id: str, task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.warning("[%s] in-process pipeline cancelled", job_id)
        return
    exc = task.exception()
    if exc is not None:
        logger.error("[%s] in-process pipeline failed: %s", job_id, exc, exc_info=exc)


class PipelineTrigger:
    """Fire-and-forget kickoff of the slicing pipeline for one job.

    With TASKS_EMULATE the pipeline runs in-process instead of via Cloud Tasks.
    """

    def __init__(self, tasks: Optional[CloudTasksService] = None) -> None:
        self._tasks = tasks or CloudTasksService(TasksConfig.from_settings())

    async def invoke(self, job_id: str) -> None:
        if self._tasks.cfg.emulate:
            # Local import avoids a cycle with the orchestration package
            from .orchestration.task_pipeline import TaskPipelineService

            task = asyncio.create_task(TaskPipelineService().process_footer_job(job_id))
            _background_tasks.add(task)
            task.add_done_callback(functools.partial(_on_pipeline_done, job_id))
            return
        try:
            await asyncio.to_thread(self._tasks.enqueue_job, job_id)
        except Exception as exc:  # noqa: BLE001
            raise TriggerInvocationError(f"Task queue error while enqueuing job {job_id}: {exc}") from exc
