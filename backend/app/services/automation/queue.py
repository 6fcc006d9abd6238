"""
Webform Job Queue

Durable queue over the webform_jobs table. Retries live on the same row:
`attempt` grows and `scheduled_at` moves forward; no new rows are inserted.

State machine:
    queued -> running -> succeeded
                      -> queued   (retry, attempt < max_attempts)
                      -> failed   (terminal, attempt >= max_attempts or permanent)
    failed -> queued  (operator retry)
    queued  -> failed (operator cancel)
    running -> failed (operator cancel; the worker drops its result)
    running -> queued (stale reclaim, worker never settled)
"""
import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ...config import EngineSettings, get_settings
from ...errors import InvalidTransition, JobNotFound
from ...models.db_models import TERMINAL_JOB_STATUSES, JobStatus, WebformJobDB, utcnow

logger = logging.getLogger(__name__)

JITTER_RANGE = (0.8, 1.2)
STALE_RUNNING_ERROR = "reclaimed: worker did not settle"


def expected_backoff_ms(attempt: int, base_ms: int, cap_ms: int) -> int:
    """Jitter-free delay: min(base * 2^(attempt-1), cap)."""
    exponent = max(0, int(attempt) - 1)
    # cap the exponent so huge attempt counts do not build giant integers
    return int(min(base_ms * (2 ** min(exponent, 32)), cap_ms))


def compute_backoff_ms(attempt: int, base_ms: int, cap_ms: int, rng: Optional[random.Random] = None) -> int:
    """Expected delay scaled by a jitter factor in [0.8, 1.2], never above cap."""
    rng = rng or random
    delay = expected_backoff_ms(attempt, base_ms, cap_ms) * rng.uniform(*JITTER_RANGE)
    return int(min(delay, cap_ms))


class WebformQueue:
    """Enqueue, claim and settle webform jobs."""

    def __init__(self, db: Session, settings: Optional[EngineSettings] = None, rng: Optional[random.Random] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.rng = rng or random.Random()

    # =========================================================================
    # PRODUCER SIDE
    # =========================================================================

    def enqueue(
        self,
        controller_key: Optional[str],
        payload: Dict[str, Any],
        url: Optional[str] = None,
        action_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> WebformJobDB:
        now = utcnow()
        job = WebformJobDB(
            id=str(uuid.uuid4()),
            action_id=action_id,
            subject_id=subject_id,
            controller_key=(controller_key or "").lower() or None,
            url=url or None,
            payload={k: payload.get(k) for k in ("name", "email", "phone", "message")},
            status=JobStatus.QUEUED,
            attempt=0,
            scheduled_at=max(scheduled_at or now, now),
        )
        self.db.add(job)
        self.db.commit()
        logger.info(f"Webform job {job.id} enqueued for {job.controller_key or 'unknown'}")
        return job

    def get(self, job_id: str) -> WebformJobDB:
        job = self.db.get(WebformJobDB, job_id)
        if job is None:
            raise JobNotFound(f"Webform job {job_id} not found")
        return job

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 50) -> List[WebformJobDB]:
        query = self.db.query(WebformJobDB)
        if status is not None:
            query = query.filter(WebformJobDB.status == status)
        return query.order_by(WebformJobDB.created_at.desc()).limit(max(1, min(limit, 500))).all()

    # =========================================================================
    # CONSUMER SIDE
    # =========================================================================

    def fetch_ready(self, limit: int, now: Optional[datetime] = None) -> List[WebformJobDB]:
        now = now or utcnow()
        return self.db.query(WebformJobDB).filter(
            WebformJobDB.status == JobStatus.QUEUED,
            WebformJobDB.scheduled_at <= now,
        ).order_by(WebformJobDB.scheduled_at).limit(max(1, limit)).all()

    def claim(self, job_id: str, now: Optional[datetime] = None) -> bool:
        """
        queued -> running with attempt+1 in one conditional UPDATE.
        False when another worker got there first.
        """
        now = now or utcnow()
        result = self.db.execute(
            update(WebformJobDB)
            .where(WebformJobDB.id == job_id, WebformJobDB.status == JobStatus.QUEUED)
            .values(
                status=JobStatus.RUNNING,
                attempt=WebformJobDB.attempt + 1,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        claimed = result.rowcount == 1
        if not claimed:
            logger.info(f"Webform job {job_id} already claimed elsewhere")
        return claimed

    def mark_succeeded(self, job: WebformJobDB, result: Dict[str, Any], now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        job.status = JobStatus.SUCCEEDED
        job.result = result
        job.last_error = None
        job.completed_at = now
        job.updated_at = now

    def reschedule(self, job: WebformJobDB, error: str, now: Optional[datetime] = None) -> datetime:
        now = now or utcnow()
        delay_ms = compute_backoff_ms(
            job.attempt,
            self.settings.webform_backoff_base_ms,
            self.settings.webform_backoff_cap_ms,
            self.rng,
        )
        job.status = JobStatus.QUEUED
        job.last_error = error
        job.scheduled_at = now + timedelta(milliseconds=delay_ms)
        job.updated_at = now
        logger.info(f"Webform job {job.id} attempt {job.attempt} failed, retry in {delay_ms}ms")
        return job.scheduled_at

    def mark_failed(self, job: WebformJobDB, error: str, now: Optional[datetime] = None) -> bool:
        """Terminal failure. Returns False if the job was already terminal."""
        if job.status in TERMINAL_JOB_STATUSES:
            return False
        now = now or utcnow()
        job.status = JobStatus.FAILED
        job.last_error = error
        job.result = {**(job.result or {}), "error": error}
        job.completed_at = now
        job.updated_at = now
        logger.warning(f"Webform job {job.id} failed terminally after {job.attempt} attempts: {error}")
        return True

    # =========================================================================
    # OPERATOR ACTIONS
    # =========================================================================

    def retry(self, job_id: str, now: Optional[datetime] = None) -> WebformJobDB:
        """failed -> queued with attempt reset. Queued jobs are left alone."""
        job = self.get(job_id)
        if job.status == JobStatus.QUEUED:
            return job
        if job.status != JobStatus.FAILED:
            raise InvalidTransition(f"Cannot retry job {job_id} in status {JobStatus(job.status).value}")
        now = now or utcnow()
        job.status = JobStatus.QUEUED
        job.attempt = 0
        job.scheduled_at = now
        job.completed_at = None
        job.last_error = None
        job.updated_at = now
        self.db.commit()
        logger.info(f"Webform job {job_id} re-armed by operator")
        return job

    def cancel(self, job_id: str, reason: str = "cancelled", now: Optional[datetime] = None) -> WebformJobDB:
        """
        queued/running -> failed with the reason, in one conditional UPDATE.
        No-op on terminal jobs. A worker still holding a cancelled job sees
        the status change before settling and leaves it alone.
        """
        job = self.get(job_id)
        if job.status in TERMINAL_JOB_STATUSES:
            return job
        now = now or utcnow()
        error = f"cancelled: {reason}"
        result = self.db.execute(
            update(WebformJobDB)
            .where(
                WebformJobDB.id == job_id,
                WebformJobDB.status.in_([JobStatus.QUEUED, JobStatus.RUNNING]),
            )
            .values(
                status=JobStatus.FAILED,
                last_error=error,
                result={**(job.result or {}), "error": error},
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        self.db.refresh(job)
        if result.rowcount == 1:
            logger.info(f"Webform job {job_id} cancelled by operator: {reason}")
        return job

    def requeue_stale(self, older_than: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
        """
        running -> queued for jobs whose worker never settled them
        (crash, kill, lost connection). The attempt already spent stays counted.
        """
        now = now or utcnow()
        if older_than is None:
            older_than = timedelta(minutes=self.settings.webform_stale_running_minutes)
        result = self.db.execute(
            update(WebformJobDB)
            .where(
                WebformJobDB.status == JobStatus.RUNNING,
                WebformJobDB.started_at < now - older_than,
            )
            .values(
                status=JobStatus.QUEUED,
                scheduled_at=now,
                last_error=STALE_RUNNING_ERROR,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        reclaimed = result.rowcount or 0
        if reclaimed:
            logger.warning(f"Requeued {reclaimed} webform job(s) stuck in running for over {older_than}")
        return reclaimed
