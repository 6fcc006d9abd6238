"""
Webform Worker

One invocation = one bounded batch, processed sequentially:
0. requeue jobs left running by a dead worker
1. fetch up to N queued jobs with scheduled_at <= now
2. atomically claim each (queued -> running, attempt + 1)
3. run the matched handler inside a fresh automation session
4. success: store artifacts, job succeeded, parent action -> sent
5. failure: reschedule with backoff, or fail terminally and move the parent
   action to escalate_pending for manual handling
6. failure-spike check over the rolling window
"""
import logging
from contextlib import AbstractContextManager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from ...config import EngineSettings, get_settings
from ...errors import InvalidTransition
from ...models.automation import ControllerProfile, HandlerResult, WebformJobInput
from ...models.db_models import (
    ActionDB,
    ActionStatus,
    Channel,
    ControllerProfileDB,
    JobStatus,
    WebformJobDB,
    utcnow,
)
from ..actions import ActionService
from ..policy.allowlist import hostname_of
from .alerting import FailureSpikeMonitor
from .artifacts import ArtifactStore, LocalArtifactStore
from .handlers import pick_handler
from .queue import WebformQueue
from .session import open_session

logger = logging.getLogger(__name__)

# What the subject sees; raw automation errors stay internal
ESCALATION_MESSAGE = "Could not complete automatically, escalated for manual handling"

SessionFactory = Callable[[], AbstractContextManager]


def _default_session_factory(settings: EngineSettings) -> SessionFactory:
    return lambda: open_session(settings)


def profile_from_row(row: Optional[ControllerProfileDB]) -> Optional[ControllerProfile]:
    if row is None:
        return None
    return ControllerProfile(
        controller_key=row.controller_key,
        domain=row.domain,
        form_url=row.form_url,
        field_selectors=row.field_selectors or {},
        submit_selectors=row.submit_selectors or [],
        captcha=row.captcha,
        throttle_ms=row.throttle_ms,
    )


class WebformWorker:

    def __init__(
        self,
        db: Session,
        settings: Optional[EngineSettings] = None,
        session_factory: Optional[SessionFactory] = None,
        artifacts: Optional[ArtifactStore] = None,
        queue: Optional[WebformQueue] = None,
        monitor: Optional[FailureSpikeMonitor] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.session_factory = session_factory or _default_session_factory(self.settings)
        self.artifacts = artifacts or LocalArtifactStore(settings=self.settings)
        self.queue = queue or WebformQueue(db, self.settings)
        self.monitor = monitor or FailureSpikeMonitor(db, self.settings)
        self.actions = ActionService(db, settings=self.settings)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def load_profile(self, job: WebformJobDB) -> Optional[ControllerProfile]:
        """By controller key, then by domain of the job URL."""
        row = None
        if job.controller_key:
            row = self.db.query(ControllerProfileDB).filter(
                ControllerProfileDB.controller_key == job.controller_key
            ).first()
        host = hostname_of(job.url)
        if row is None and host:
            for candidate in self.db.query(ControllerProfileDB).filter(
                ControllerProfileDB.domain.isnot(None)
            ).all():
                if candidate.domain and candidate.domain.lower() in host:
                    row = candidate
                    break
        return profile_from_row(row)

    # =========================================================================
    # BATCH
    # =========================================================================

    def run_batch(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        `now` pins the clock for tests. Left as None, each step reads the
        clock itself so a slow job does not backdate the ones after it.
        """
        summary = {
            "reclaimed": 0, "claimed": 0, "succeeded": 0, "retried": 0,
            "failed": 0, "skipped": 0, "alert": None,
        }

        summary["reclaimed"] = self.queue.requeue_stale(now=now)
        ready = self.queue.fetch_ready(self.settings.webform_batch_size, now)
        job_ids = [job.id for job in ready]

        for job_id in job_ids:
            if not self.queue.claim(job_id, now):
                summary["skipped"] += 1
                continue
            summary["claimed"] += 1
            outcome = self.process(job_id, now)
            summary[outcome] += 1

        summary["alert"] = self.monitor.check(now or utcnow())
        logger.info(
            f"Webform batch: reclaimed={summary['reclaimed']} claimed={summary['claimed']} "
            f"ok={summary['succeeded']} retry={summary['retried']} failed={summary['failed']} "
            f"skipped={summary['skipped']}"
        )
        return summary

    def process(self, job_id: str, now: Optional[datetime] = None) -> str:
        """Run one claimed job. Returns "succeeded", "retried", "failed" or "skipped"."""
        job = self.db.get(WebformJobDB, job_id)
        self.db.refresh(job)

        profile = self.load_profile(job)
        handler = pick_handler(job.controller_key, job.url, profile)
        if handler is None:
            result = HandlerResult.failure("no handler for controller", permanent=True)
        else:
            job_input = WebformJobInput(
                job_id=job.id,
                controller_key=job.controller_key,
                url=job.url,
                payload=dict(job.payload or {}),
                profile=profile,
                attempt=job.attempt,
            )
            result = self._run_handler(handler, job_input)

        # cancelled or reclaimed while the handler ran
        self.db.refresh(job)
        if job.status != JobStatus.RUNNING:
            logger.info(f"Webform job {job.id} is {JobStatus(job.status).value} after its run; result dropped")
            return "skipped"

        settled_at = now or utcnow()
        if result.ok:
            self._on_success(job, result, settled_at)
            outcome = "succeeded"
        elif result.permanent or job.attempt >= self.settings.webform_max_attempts:
            self._on_terminal_failure(job, result.error or "unknown", settled_at)
            outcome = "failed"
        else:
            self.queue.reschedule(job, result.error or "unknown", settled_at)
            outcome = "retried"

        self.db.commit()
        return outcome

    def _run_handler(self, handler, job_input: WebformJobInput) -> HandlerResult:
        try:
            with self.session_factory() as session:
                return handler.run(session, job_input)
        except Exception as e:  # browser launch / teardown problems count as a failed attempt
            logger.warning(f"Automation session failed for job {job_input.job_id}: {e}")
            return HandlerResult.failure(f"session_error: {e}")

    # =========================================================================
    # OUTCOMES
    # =========================================================================

    def _on_success(self, job: WebformJobDB, result: HandlerResult, now: datetime) -> None:
        prefix = f"attempt-{job.attempt}"
        stored = {}
        if result.html:
            stored["html"] = self.artifacts.put(job.id, f"{prefix}.html", result.html.encode("utf-8"))
        if result.screenshot:
            stored["screenshot"] = self.artifacts.put(job.id, f"{prefix}.png", result.screenshot)

        self.queue.mark_succeeded(job, {
            "confirmation_text": result.confirmation_text,
            "ticket_id": result.ticket_id,
            "final_url": result.final_url,
            "artifacts": stored,
        }, now)

        action = self.db.get(ActionDB, job.action_id) if job.action_id else None
        if action is None:
            return
        try:
            self.actions.mark_sent(action, Channel.WEBFORM, result.ticket_id or job.id, now)
        except InvalidTransition as e:
            logger.warning(f"Job {job.id} succeeded but action not advanced: {e}")

    def _on_terminal_failure(self, job: WebformJobDB, error: str, now: datetime) -> None:
        if not self.queue.mark_failed(job, error, now):
            return

        action = self.db.get(ActionDB, job.action_id) if job.action_id else None
        if action is None:
            return
        try:
            self.actions.transition(
                action,
                ActionStatus.ESCALATE_PENDING,
                next_attempt_at=now + timedelta(hours=self.settings.webform_escalation_hours),
                last_error=ESCALATION_MESSAGE,
                retry_count=(action.retry_count or 0) + 1,
            )
        except InvalidTransition as e:
            logger.warning(f"Job {job.id} failed but action not escalated: {e}")
