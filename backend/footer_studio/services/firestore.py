"""Firestore helpers for the footer processing jobs collection.

`FirestoreJobStore` is the persisted source of truth (async client).
`FirestoreChangeFeed` turns document snapshots into per-job update events.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from google.api_core.exceptions import GoogleAPIError
from google.cloud import firestore

from ..config import get_settings
from ..exceptions import PersistenceError

logger = logging.getLogger(__name__)

JobHandler = Callable[[str, Dict[str, Any]], None]


def clamp_percent(value: Any) -> int:
    """Keep processing_percent within [0, 100]."""
    try:
        pct = int(round(float(value)))
    except (TypeError, ValueError):
        return 0
    return max(0, min(100, pct))


def _client_kwargs() -> Dict[str, Any]:
    settings = get_settings()
    kwargs: Dict[str, Any] = {"project": settings.GCP_PROJECT or None}
    # Use explicit database if provided in env, else default
    if settings.FIRESTORE_DATABASE_ID:
        kwargs["database"] = settings.FIRESTORE_DATABASE_ID
    return kwargs


class FirestoreJobStore:
    """Thin async wrapper around Firestore for job insert/update/select."""

    def __init__(self, client: Optional[firestore.AsyncClient] = None) -> None:
        settings = get_settings()
        self.client = client or firestore.AsyncClient(**_client_kwargs())
        self._jobs = self.client.collection(settings.JOBS_COLLECTION)

    async def insert_job(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Create the job document and return the stored record."""
        ref = self._jobs.document(doc["id"])
        payload = {
            **doc,
            "created_at": firestore.SERVER_TIMESTAMP,
            "updated_at": firestore.SERVER_TIMESTAMP,
        }
        if "processing_percent" in payload:
            payload["processing_percent"] = clamp_percent(payload["processing_percent"])
        try:
            await ref.set(payload)
            snap = await ref.get()
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to create job: {exc}") from exc
        if not snap.exists:
            raise PersistenceError("Failed to create job")
        return snap.to_dict() or {}

    async def update_job(self, job_id: str, updates: Dict[str, Any]) -> None:
        ref = self._jobs.document(job_id)
        updates = {**updates, "updated_at": firestore.SERVER_TIMESTAMP}
        if "processing_percent" in updates:
            updates["processing_percent"] = clamp_percent(updates["processing_percent"])
        try:
            await ref.set(updates, merge=True)
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to update job {job_id}: {exc}") from exc

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        try:
            snap = await self._jobs.document(job_id).get()
        except GoogleAPIError as exc:
            raise PersistenceError(f"Failed to load job {job_id}: {exc}") from exc
        return snap.to_dict() if snap.exists else None


class FirestoreChangeFeed:
    """Per-job update events backed by Firestore `on_snapshot` listeners.

    Listener callbacks run on a Firestore background thread; events are handed
    to the event loop that registered the listener. Only MODIFIED changes are
    delivered, so the initial snapshot does not count as an update.
    """

    def __init__(self, client: Optional[firestore.Client] = None) -> None:
        settings = get_settings()
        self.client = client or firestore.Client(**_client_kwargs())
        self._jobs = self.client.collection(settings.JOBS_COLLECTION)

    def register_listener(self, job_id: str, handler: JobHandler) -> Callable[[], None]:
        loop = asyncio.get_running_loop()

        def on_snapshot(doc_snapshots, changes, read_time) -> None:
            for change in changes:
                if change.type.name != "MODIFIED":
                    continue
                data = change.document.to_dict() or {}
                loop.call_soon_threadsafe(handler, job_id, data)

        watch = self._jobs.document(job_id).on_snapshot(on_snapshot)
        logger.info("[%s] change feed opened", job_id)

        def unsubscribe() -> None:
            try:
                watch.unsubscribe()
            except Exception as exc:  # noqa: BLE001
                logger.warning("[%s] change feed close failed: %s", job_id, exc)
            else:
                logger.info("[%s] change feed closed", job_id)

        return unsubscribe
