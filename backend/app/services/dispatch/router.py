"""
Dispatch Router

Sends one drafted action over at most two channels:
1. the action's preferred channel, if the effective policy allows it
2. one fallback (policy's designated fallback, else the next allowed channel)

Email attempts go through the sender's bounded retry. A webform attempt
succeeds when the job is enqueued; the worker owns completion and moves the
action to `sent` later. Every attempt is written to dispatch_log.
"""
import logging
import uuid
from typing import List, Optional, Union

from sqlalchemy.orm import Session

from ...config import EngineSettings, get_settings
from ...errors import ChannelUnavailable, DispatchEngineError, InvalidTransition
from ...models.db_models import (
    ActionDB,
    ActionStatus,
    Channel,
    ControllerProfileDB,
    DispatchLogDB,
    JobStatus,
    WebformJobDB,
)
from ...models.envelope import DispatchResult
from ..actions import ActionService
from ..automation.queue import WebformQueue
from ..policy.resolver import PolicyResolver, channel_order
from .email import EmailMessage, EmailSender, HttpEmailSender

logger = logging.getLogger(__name__)

# escalate_pending belongs to the manual queue; the router does not resend it
DISPATCHABLE_STATUSES = {ActionStatus.DRAFT, ActionStatus.PREPARED}
OPEN_JOB_STATUSES = [JobStatus.QUEUED, JobStatus.RUNNING]


class DispatchRouter:
    """Channel selection with a single automatic fallback."""

    def __init__(
        self,
        db: Session,
        settings: Optional[EngineSettings] = None,
        email_sender: Optional[EmailSender] = None,
        queue: Optional[WebformQueue] = None,
        resolver: Optional[PolicyResolver] = None,
        actions: Optional[ActionService] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.email_sender = email_sender or HttpEmailSender(self.settings)
        self.queue = queue or WebformQueue(db, self.settings)
        self.resolver = resolver or PolicyResolver(db)
        self.actions = actions or ActionService(db, settings=self.settings)

    # =========================================================================
    # CHANNEL ATTEMPTS
    # =========================================================================

    def _send_email(self, action: ActionDB) -> str:
        to = self.settings.controller_email(action.controller_key)
        if not to:
            raise ChannelUnavailable(
                f"No email address for {action.controller_key}",
                code="no_recipient",
                hint=f"set CONTROLLER_{action.controller_key.upper()}_EMAIL or ADMIN_EMAILS",
            )
        message = EmailMessage(
            to=to,
            subject=action.draft_subject or "",
            text=action.draft_body or "",
            tags=[f"controller-{action.controller_key}", "channel-email"],
        )
        return self.email_sender.send(message)

    def _enqueue_webform(self, action: ActionDB) -> str:
        profile = self.db.query(ControllerProfileDB).filter(
            ControllerProfileDB.controller_key == action.controller_key
        ).first()
        identity = action.redacted_identity or {}
        job = self.queue.enqueue(
            controller_key=action.controller_key,
            url=profile.form_url if profile else None,
            payload={
                "name": identity.get("name"),
                "email": identity.get("email"),
                "phone": None,
                "message": action.draft_body,
            },
            action_id=action.id,
            subject_id=action.subject_id,
        )
        return job.id

    def _log(self, action: ActionDB, channel: Optional[Channel], ok: bool,
             provider_id: Optional[str] = None, error: Optional[str] = None,
             note: Optional[str] = None) -> None:
        self.db.add(DispatchLogDB(
            id=str(uuid.uuid4()),
            action_id=action.id,
            controller_key=action.controller_key,
            channel=channel,
            ok=ok,
            provider_id=provider_id,
            error=error,
            note=note,
        ))

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, action: Union[ActionDB, str]) -> DispatchResult:
        if isinstance(action, str):
            found = self.actions.get(action)
            if found is None:
                raise ChannelUnavailable(f"Action {action} not found", code="action_not_found")
            action = found

        status = ActionStatus(action.status)
        if status == ActionStatus.SENT:
            return DispatchResult(
                ok=True,
                channel=Channel(action.sent_channel) if action.sent_channel else None,
                provider_id=action.provider_id,
                hint="already-sent",
            )
        if status not in DISPATCHABLE_STATUSES:
            raise InvalidTransition(f"Action {action.id} is {status.value}; cannot dispatch")

        open_job = self.db.query(WebformJobDB).filter(
            WebformJobDB.action_id == action.id,
            WebformJobDB.status.in_(OPEN_JOB_STATUSES),
        ).first()
        if open_job is not None:
            logger.info(f"Action {action.id} already has webform job {open_job.id} in flight")
            return DispatchResult(ok=True, channel=Channel.WEBFORM, job_id=open_job.id, hint="already-queued")

        policy = self.resolver.resolve(action.controller_key, action.region)
        preferred = Channel(action.preferred_channel) if action.preferred_channel else policy.preferred_channel
        order = channel_order(policy, preferred)

        attempted: List[str] = []
        last_error = None

        for channel in order:
            try:
                if channel == Channel.EMAIL:
                    provider_id = self._send_email(action)
                    self._log(action, channel, True, provider_id=provider_id)
                    self.actions.mark_sent(action, channel, provider_id)
                    self.db.commit()
                    logger.info(f"Action {action.id} sent via email ({provider_id})")
                    return DispatchResult(ok=True, channel=channel, provider_id=provider_id,
                                          attempted=attempted + ["email:ok"])

                if channel == Channel.WEBFORM:
                    job_id = self._enqueue_webform(action)
                    self._log(action, channel, True, note=f"enqueued:{job_id}")
                    if status == ActionStatus.DRAFT:
                        self.actions.transition(action, ActionStatus.PREPARED)
                    self.db.commit()
                    logger.info(f"Action {action.id} queued for webform job {job_id}")
                    return DispatchResult(ok=True, channel=channel, job_id=job_id,
                                          attempted=attempted + ["webform:enqueued"])

                raise ChannelUnavailable(f"No client configured for channel {channel.value}")

            except DispatchEngineError as e:
                last_error = e
                attempted.append(f"{channel.value}:{e.code}")
                self._log(action, channel, False, error=str(e)[:500], note=e.code)
                logger.warning(f"Action {action.id}: {channel.value} attempt failed ({e.code})")

        hint = "attempted " + ", ".join(attempted) if attempted else "no allowed channel for this controller"
        error = last_error.code if last_error else "channel_unavailable"
        if not order:
            self._log(action, None, False, error=error, note="no-allowed-channel")

        self.actions.transition(action, ActionStatus.FAILED, last_error=f"{error}: {hint}")
        self.db.commit()
        logger.error(f"Action {action.id} dispatch failed: {hint}")
        return DispatchResult(ok=False, error=error, hint=hint, attempted=attempted)
