"""Unit tests for FooterJobTracker against in-memory fakes."""

from unittest.mock import MagicMock

import pytest

from footer_studio.exceptions import PersistenceError
from footer_studio.services.orchestration.job_tracker import (
    DEFAULT_FAILURE_MESSAGE,
    JOB_NOT_FOUND,
    FooterJobTracker,
)

from ..conftest import FakeTrigger, job_record


def _user(user_id):
    async def provider():
        return user_id

    return provider


def _tracker(store, feed, trigger, user_id="user-1", **callbacks):
    return FooterJobTracker(store, feed, trigger, _user(user_id), **callbacks)


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_inserts_processing_record_and_triggers(self, store, feed, trigger, create_params, user_id):
        tracker = _tracker(store, feed, trigger, user_id)

        job_id = await tracker.create_job(create_params)

        assert job_id is not None
        record = store.records[job_id]
        assert record["user_id"] == user_id
        assert record["status"] == "processing"
        assert record["processing_step"] == "queued"
        assert record["processing_percent"] == 0
        assert trigger.invoked == [job_id]
        assert feed.opened == [job_id]
        assert tracker.job_id == job_id
        assert tracker.status == "processing"
        assert tracker.error is None
        assert tracker.is_loading is False

    @pytest.mark.asyncio
    async def test_insert_failure_reports_once_and_skips_trigger(self, store, feed, trigger, create_params):
        store.fail_insert = True
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, on_error=on_error)

        job_id = await tracker.create_job(create_params)

        assert job_id is None
        on_error.assert_called_once_with("insert failed")
        assert tracker.error == "insert failed"
        assert trigger.invoked == []
        assert feed.opened == []
        assert tracker.is_loading is False

    @pytest.mark.asyncio
    async def test_missing_user_fails_validation(self, store, feed, trigger, create_params):
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, user_id=None, on_error=on_error)

        assert await tracker.create_job(create_params) is None
        on_error.assert_called_once_with("User not authenticated")
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_trigger_failure_still_returns_id(self, store, feed, create_params):
        failing = FakeTrigger(fail=True)
        on_error = MagicMock()
        tracker = _tracker(store, feed, failing, on_error=on_error)

        job_id = await tracker.create_job(create_params)

        assert job_id is not None
        assert job_id in store.records
        assert failing.invoked == [job_id]
        on_error.assert_not_called()
        assert tracker.error is None


class TestSubscription:
    def test_update_events_drive_callbacks(self, store, feed, trigger):
        on_update, on_complete, on_error = MagicMock(), MagicMock(), MagicMock()
        tracker = _tracker(
            store, feed, trigger, on_update=on_update, on_complete=on_complete, on_error=on_error
        )
        tracker.track("job-a")

        feed.emit("job-a", job_record("job-a", processing_step="slicing_footer", processing_percent=15))
        assert tracker.processing_step == "slicing_footer"
        assert tracker.processing_percent == 15
        on_complete.assert_not_called()

        feed.emit("job-a", job_record("job-a", status="pending_review", processing_step="complete", processing_percent=100))
        assert on_update.call_count == 2
        on_complete.assert_called_once()
        assert on_complete.call_args[0][0].status == "pending_review"
        on_error.assert_not_called()

    def test_failed_without_message_uses_fallback(self, store, feed, trigger):
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, on_error=on_error)
        tracker.track("job-a")

        feed.emit("job-a", job_record("job-a", status="failed"))

        on_error.assert_called_once_with(DEFAULT_FAILURE_MESSAGE)
        assert tracker.error == DEFAULT_FAILURE_MESSAGE

    def test_failed_with_message(self, store, feed, trigger):
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, on_error=on_error)
        tracker.track("job-a")

        feed.emit("job-a", job_record("job-a", status="failed", error_message="Failed to fetch image"))

        on_error.assert_called_once_with("Failed to fetch image")

    def test_switching_jobs_ignores_late_events(self, store, feed, trigger):
        on_update = MagicMock()
        tracker = _tracker(store, feed, trigger, on_update=on_update)
        tracker.track("job-a")
        stale_handler = feed.handlers["job-a"]

        tracker.track("job-b")
        feed.emit_stale(stale_handler, "job-a", job_record("job-a", processing_percent=50))

        assert feed.closed == ["job-a"]
        assert feed.opened == ["job-a", "job-b"]
        on_update.assert_not_called()
        assert tracker.job is None

    def test_retracking_same_id_ignores_previous_subscription(self, store, feed, trigger):
        on_update = MagicMock()
        tracker = _tracker(store, feed, trigger, on_update=on_update)
        tracker.track("job-a")
        first_handler = feed.handlers["job-a"]
        tracker.track("job-b")
        tracker.track("job-a")

        feed.emit_stale(first_handler, "job-a", job_record("job-a"))
        on_update.assert_not_called()

        feed.emit("job-a", job_record("job-a"))
        on_update.assert_called_once()

    def test_same_id_does_not_resubscribe(self, store, feed, trigger):
        tracker = _tracker(store, feed, trigger)
        tracker.track("job-a")
        tracker.track("job-a")
        assert feed.opened == ["job-a"]
        assert feed.closed == []

    def test_refreshing_callbacks_keeps_subscription(self, store, feed, trigger):
        first, second = MagicMock(), MagicMock()
        tracker = _tracker(store, feed, trigger, on_complete=first)
        tracker.track("job-a")

        tracker.set_callbacks(on_complete=second)
        feed.emit("job-a", job_record("job-a", status="completed"))

        assert feed.opened == ["job-a"]
        first.assert_not_called()
        second.assert_called_once()

    def test_malformed_update_is_dropped(self, store, feed, trigger):
        on_update = MagicMock()
        tracker = _tracker(store, feed, trigger, on_update=on_update)
        tracker.track("job-a")

        feed.emit("job-a", {"id": "job-a", "status": "exploded"})

        on_update.assert_not_called()
        assert tracker.job is None


class TestFetchAndComplete:
    @pytest.mark.asyncio
    async def test_fetch_tracks_job(self, store, feed, trigger):
        store.records["job-a"] = job_record("job-a", processing_percent=45)
        tracker = _tracker(store, feed, trigger)

        job = await tracker.fetch_job("job-a")

        assert job.processing_percent == 45
        assert tracker.job_id == "job-a"
        assert feed.opened == ["job-a"]

    @pytest.mark.asyncio
    async def test_fetch_missing_job(self, store, feed, trigger):
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, on_error=on_error)

        assert await tracker.fetch_job("nope") is None
        assert tracker.error == JOB_NOT_FOUND
        on_error.assert_called_once_with(JOB_NOT_FOUND)

    @pytest.mark.asyncio
    async def test_fetch_result_not_applied_after_switch(self, store, feed, trigger):
        store.records["job-a"] = job_record("job-a")
        tracker = _tracker(store, feed, trigger)
        original_get = store.get_job

        async def slow_get(job_id):
            tracker.track("job-b")
            return await original_get(job_id)

        store.get_job = slow_get
        job = await tracker.fetch_job("job-a")

        assert job is not None
        assert tracker.job_id == "job-b"
        assert tracker.job is None

    @pytest.mark.asyncio
    async def test_fetch_failure_not_applied_after_switch(self, store, feed, trigger):
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, on_error=on_error)

        async def failing_get(job_id):
            tracker.track("job-b")
            raise PersistenceError(f"select failed for {job_id}")

        store.get_job = failing_get
        assert await tracker.fetch_job("job-a") is None

        assert tracker.job_id == "job-b"
        assert tracker.error is None
        on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_complete_without_job_is_noop(self, store, feed, trigger):
        tracker = _tracker(store, feed, trigger)
        assert await tracker.complete_job() is False
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_complete_updates_status(self, store, feed, trigger):
        store.records["job-a"] = job_record("job-a", status="pending_review")
        tracker = _tracker(store, feed, trigger)
        tracker.track("job-a")

        assert await tracker.complete_job() is True
        assert store.records["job-a"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_complete_failure_reports_error(self, store, feed, trigger):
        store.fail_update = True
        on_error = MagicMock()
        tracker = _tracker(store, feed, trigger, on_error=on_error)
        tracker.track("job-a")

        assert await tracker.complete_job() is False
        on_error.assert_called_once_with("update failed")


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_clears_local_state(self, store, feed, trigger, create_params):
        tracker = _tracker(store, feed, trigger)
        job_id = await tracker.create_job(create_params)

        tracker.reset()

        assert tracker.job_id is None
        assert tracker.job is None
        assert tracker.error is None
        assert tracker.processing_percent == 0
        assert feed.closed == [job_id]
        assert job_id in store.records
