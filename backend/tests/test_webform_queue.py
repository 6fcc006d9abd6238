"""Tests for the durable webform queue: backoff, claiming, operator actions."""
import random
from datetime import timedelta

import pytest

from app.errors import JobNotFound
from app.models.db_models import JobStatus, WebformJobDB, utcnow
from app.services.automation.queue import (
    STALE_RUNNING_ERROR,
    WebformQueue,
    compute_backoff_ms,
    expected_backoff_ms,
)


class TestBackoff:

    def test_third_attempt_within_jitter_band(self):
        delay = compute_backoff_ms(3, 60_000, 1_800_000, random.Random(42))
        assert 192_000 <= delay <= 288_000

    def test_expected_delay_non_decreasing_and_capped(self):
        delays = [expected_backoff_ms(n, 60_000, 1_800_000) for n in range(1, 21)]
        assert delays[0] == 60_000
        assert delays == sorted(delays)
        assert max(delays) == 1_800_000

    def test_jittered_delay_never_exceeds_cap(self):
        rng = random.Random(7)
        for attempt in range(1, 40):
            assert compute_backoff_ms(attempt, 60_000, 1_800_000, rng) <= 1_800_000


class TestQueueClaiming:

    def test_enqueue_keeps_only_minimal_payload(self, db, settings):
        job = WebformQueue(db, settings).enqueue(
            "Truecaller", {"name": "A•••", "email": "a•••@••••.com", "ssn": "nope"}
        )
        assert job.controller_key == "truecaller"
        assert job.status == JobStatus.QUEUED
        assert job.attempt == 0
        assert "ssn" not in job.payload

    def test_claim_is_exclusive(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})

        assert queue.claim(job.id) is True
        assert queue.claim(job.id) is False

        db.refresh(job)
        assert job.status == JobStatus.RUNNING
        assert job.attempt == 1

    def test_retry_reuses_the_row(self, db, settings):
        queue = WebformQueue(db, settings, rng=random.Random(1))
        job = queue.enqueue("truecaller", {"name": "A•••"})
        queue.claim(job.id)
        db.refresh(job)

        queue.reschedule(job, "navigation_timeout")
        db.commit()

        assert db.query(WebformJobDB).count() == 1
        assert job.status == JobStatus.QUEUED
        assert job.scheduled_at > job.started_at


class TestOperatorActions:

    def test_unknown_job(self, db, settings):
        with pytest.raises(JobNotFound):
            WebformQueue(db, settings).retry("missing")

    def test_cancel_then_retry(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})

        queue.cancel(job.id, "duplicate request")
        assert job.status == JobStatus.FAILED
        assert job.last_error == "cancelled: duplicate request"
        assert job.completed_at is not None

        queue.retry(job.id)
        assert job.status == JobStatus.QUEUED
        assert job.attempt == 0
        assert job.completed_at is None

    def test_retry_queued_job_is_noop(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})
        scheduled = job.scheduled_at

        assert queue.retry(job.id).scheduled_at == scheduled

    def test_cancel_running_job(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})
        queue.claim(job.id)

        queue.cancel(job.id, "subject withdrew")

        assert job.status == JobStatus.FAILED
        assert job.last_error == "cancelled: subject withdrew"
        assert job.result == {"error": "cancelled: subject withdrew"}
        assert job.completed_at is not None
        assert queue.claim(job.id) is False

    def test_cancel_terminal_job_is_noop(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})
        queue.cancel(job.id, "first")
        queue.cancel(job.id, "second")
        assert job.last_error == "cancelled: first"


class TestStaleReclaim:

    def test_stuck_running_job_is_requeued(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})
        queue.claim(job.id, now=utcnow() - timedelta(hours=2))

        assert queue.requeue_stale() == 1

        assert job.status == JobStatus.QUEUED
        assert job.attempt == 1
        assert job.last_error == STALE_RUNNING_ERROR
        assert queue.claim(job.id) is True

    def test_recent_running_job_left_alone(self, db, settings):
        queue = WebformQueue(db, settings)
        job = queue.enqueue("truecaller", {"name": "A•••"})
        queue.claim(job.id)

        assert queue.requeue_stale() == 0
        assert queue.requeue_stale(older_than=timedelta(0), now=utcnow() + timedelta(seconds=1)) == 1

        db.refresh(job)
        assert job.status == JobStatus.QUEUED

    def test_queued_and_terminal_jobs_untouched(self, db, settings):
        queue = WebformQueue(db, settings)
        waiting = queue.enqueue("truecaller", {"name": "A•••"})
        cancelled = queue.enqueue("truecaller", {"name": "B•••"})
        queue.cancel(cancelled.id)

        assert queue.requeue_stale(older_than=timedelta(0), now=utcnow() + timedelta(hours=1)) == 0
        assert waiting.status == JobStatus.QUEUED
        assert cancelled.status == JobStatus.FAILED
