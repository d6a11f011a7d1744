"""Client-side orchestration of one footer processing job.

A `FooterJobTracker` creates the persisted job, kicks off the external
pipeline, and follows the record through the change feed until it reaches a
terminal state. One tracker follows one job id at a time; concurrent jobs need
separate trackers.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError

from ...exceptions import JobValidationError, PersistenceError
from ...models import (
    COMPLETION_STATUSES,
    CreateJobParams,
    FooterJob,
    FooterSlice,
    LegalSection,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Processing failed"
JOB_NOT_FOUND = "Job not found"

CompleteCallback = Callable[[FooterJob], None]
ErrorCallback = Callable[[str], None]
UpdateCallback = Callable[[FooterJob], None]
UserProvider = Callable[[], Awaitable[Optional[str]]]


class JobStore(Protocol):
    async def insert_job(self, doc: Dict[str, Any]) -> Dict[str, Any]: ...

    async def update_job(self, job_id: str, updates: Dict[str, Any]) -> None: ...

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]: ...


class ChangeFeed(Protocol):
    def register_listener(
        self, job_id: str, handler: Callable[[str, Dict[str, Any]], None]
    ) -> Callable[[], None]: ...


class Trigger(Protocol):
    async def invoke(self, job_id: str) -> None: ...


@dataclass
class _CallbackBox:
    """Latest callbacks, read at delivery time so refreshing them never resubscribes."""

    on_complete: Optional[CompleteCallback] = None
    on_error: Optional[ErrorCallback] = None
    on_update: Optional[UpdateCallback] = None


class FooterJobTracker:
    def __init__(
        self,
        store: JobStore,
        feed: ChangeFeed,
        trigger: Trigger,
        user_provider: UserProvider,
        *,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> None:
        self._store = store
        self._feed = feed
        self._trigger = trigger
        self._user_provider = user_provider
        self._callbacks = _CallbackBox(on_complete, on_error, on_update)

        self._job_id: Optional[str] = None
        self._job: Optional[FooterJob] = None
        self._error: Optional[str] = None
        self._is_loading = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        # Bumped on every change of tracked id; late responses compare against it.
        self._generation = 0

    # --- observed state ---

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def job(self) -> Optional[FooterJob]:
        return self._job

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def status(self) -> Optional[str]:
        return self._job.status if self._job else None

    @property
    def processing_step(self) -> Optional[str]:
        return self._job.processing_step if self._job else None

    @property
    def processing_percent(self) -> int:
        return self._job.processing_percent if self._job else 0

    @property
    def slices(self) -> Optional[List[FooterSlice]]:
        return self._job.slices if self._job else None

    @property
    def legal_section(self) -> Optional[LegalSection]:
        return self._job.legal_section if self._job else None

    def set_callbacks(
        self,
        *,
        on_complete: Optional[CompleteCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> None:
        """Replace the callbacks; the open subscription is left as is."""
        self._callbacks.on_complete = on_complete
        self._callbacks.on_error = on_error
        self._callbacks.on_update = on_update

    # --- subscription ---

    def track(self, job_id: Optional[str]) -> None:
        """Follow `job_id`, resubscribing only when the id actually changes."""
        if job_id == self._job_id:
            return
        self._close_subscription()
        self._job_id = job_id
        self._generation += 1
        if job_id is not None:
            self._open_subscription(job_id)

    def close(self) -> None:
        self._close_subscription()

    def _open_subscription(self, job_id: str) -> None:
        logger.info("[%s] subscribing to job updates", job_id)
        generation = self._generation

        def handler(event_job_id: str, record: Dict[str, Any]) -> None:
            self._handle_update(job_id, generation, record)

        self._unsubscribe = self._feed.register_listener(job_id, handler)

    def _close_subscription(self) -> None:
        if self._unsubscribe is None:
            return
        logger.info("[%s] unsubscribing from job updates", self._job_id)
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        unsubscribe()

    def _handle_update(self, subscribed_job_id: str, generation: int, record: Dict[str, Any]) -> None:
        if subscribed_job_id != self._job_id or generation != self._generation:
            logger.debug("[%s] dropping update for untracked job", subscribed_job_id)
            return
        try:
            job = FooterJob.model_validate(record)
        except ValidationError as exc:
            logger.error("[%s] malformed job update: %s", subscribed_job_id, exc)
            return

        logger.info("[%s] job updated: status=%s step=%s", job.id, job.status, job.processing_step)
        self._job = job
        callbacks = self._callbacks
        if callbacks.on_update:
            callbacks.on_update(job)
        # Delivery is at-least-once; callbacks may see the same terminal status twice.
        if job.status in COMPLETION_STATUSES:
            if callbacks.on_complete:
                callbacks.on_complete(job)
        elif job.status == "failed":
            message = job.error_message or DEFAULT_FAILURE_MESSAGE
            self._error = message
            if callbacks.on_error:
                callbacks.on_error(message)

    # --- operations ---

    def _fail(self, message: str) -> None:
        self._error = message
        if self._callbacks.on_error:
            self._callbacks.on_error(message)

    async def create_job(self, params: CreateJobParams) -> Optional[str]:
        """Persist a new job in `processing` and kick off the pipeline.

        Returns the new job id, or None when validation or the insert fails.
        """
        self._is_loading = True
        self._error = None
        try:
            user_id = await self._user_provider()
            if not user_id:
                raise JobValidationError("User not authenticated")
            if not params.brandId or not params.imageUrl:
                raise JobValidationError("brandId and imageUrl are required")

            record = await self._store.insert_job(
                {
                    "id": str(uuid.uuid4()),
                    "user_id": user_id,
                    "brand_id": params.brandId,
                    "source": params.source,
                    "source_url": params.sourceUrl or None,
                    "image_url": params.imageUrl,
                    "cloudinary_public_id": params.cloudinaryPublicId or None,
                    "image_width": params.imageWidth,
                    "image_height": params.imageHeight,
                    "status": "processing",
                    "processing_step": "queued",
                    "processing_percent": 0,
                }
            )
            job = FooterJob.model_validate(record)
        except (JobValidationError, PersistenceError, ValidationError) as exc:
            message = str(exc) or "Failed to create job"
            logger.error("Create job error: %s", message)
            self._fail(message)
            return None
        finally:
            self._is_loading = False

        logger.info("[%s] created job", job.id)
        self.track(job.id)
        self._job = job

        try:
            await self._trigger.invoke(job.id)
        except Exception as exc:  # noqa: BLE001
            # The job exists; it can still be advanced by another trigger.
            logger.error("[%s] failed to invoke processor: %s", job.id, exc)

        return job.id

    async def fetch_job(self, job_id: str) -> Optional[FooterJob]:
        """One-shot read of a job; on success the tracker follows it."""
        self._is_loading = True
        self._error = None
        generation = self._generation
        try:
            record = await self._store.get_job(job_id)
            if not record:
                raise PersistenceError(JOB_NOT_FOUND)
            job = FooterJob.model_validate(record)
        except (PersistenceError, ValidationError) as exc:
            message = str(exc) or JOB_NOT_FOUND
            logger.error("[%s] fetch job error: %s", job_id, message)
            if generation != self._generation:
                logger.info("[%s] tracked job changed during fetch; error not applied", job_id)
                return None
            self._fail(message)
            return None
        finally:
            self._is_loading = False

        if generation != self._generation:
            logger.info("[%s] tracked job changed during fetch; not applying", job_id)
            return job
        self.track(job_id)
        self._job = job
        return job

    async def complete_job(self) -> bool:
        """Mark the tracked job completed. No-op without a tracked job."""
        job_id = self._job_id
        if not job_id:
            return False
        try:
            await self._store.update_job(job_id, {"status": "completed"})
        except PersistenceError as exc:
            logger.error("[%s] failed to complete job: %s", job_id, exc)
            self._fail(str(exc))
            return False
        return True

    def reset(self) -> None:
        """Forget everything observed locally; the stored record is untouched."""
        self.track(None)
        self._job = None
        self._error = None
        self._is_loading = False
