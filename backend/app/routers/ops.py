"""
Ops API Routes

Internal endpoints for the dispatch engine: policy preview, action creation,
dispatch, operator overrides, the auto-from-scan pipeline, the webform
queue and ledger verification. Every route requires X-Internal-Key.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..config import get_settings
from ..database import get_db
from ..errors import DispatchEngineError
from ..models.db_models import ControllerOverrideDB, JobStatus, WebformJobDB, utcnow
from ..models.envelope import CreateActionInput, DraftContent
from ..models.policy import PolicyOverride, coerce_channel
from ..services.actions import ActionService
from ..services.automation import WebformQueue, WebformWorker
from ..services.dispatch import DispatchRouter
from ..services.pipeline import AutoPipeline
from ..services.policy import PolicyResolver
from ..services.proofs import ProofLedger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ops", tags=["ops"])

# Outward messages stay generic; details go to the log
PUBLIC_MESSAGES = {
    400: "Invalid request",
    403: "Not permitted by policy",
    404: "Not found",
    409: "Conflict with current state",
    429: "Rate limited, retry later",
    502: "Could not complete automatically, escalated for manual handling",
    503: "Signing unavailable",
}


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for ops endpoints."""
    if x_internal_key != get_settings().internal_api_key:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


def to_http(e: DispatchEngineError) -> HTTPException:
    logger.warning(f"Ops request failed: {e.code}: {e}")
    detail = {"error": e.code, "message": PUBLIC_MESSAGES.get(e.http_status, "Request failed")}
    if e.hint:
        detail["hint"] = e.hint
    headers = None
    retry_after = getattr(e, "retry_after_seconds", None)
    if retry_after:
        headers = {"Retry-After": str(int(retry_after))}
    return HTTPException(status_code=e.http_status, detail=detail, headers=headers)


# =============================================================================
# REQUEST MODELS
# =============================================================================

class PolicyRequest(BaseModel):
    controller_id: str = Field(..., description="Controller key, e.g. 'justdial'")
    region: Optional[str] = Field(None, description="Region code, e.g. 'MH'")
    override: Optional[Dict[str, Any]] = Field(None, description="Explicit override layer")


class DraftModel(BaseModel):
    subject: str
    body: str = ""
    fields: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[str] = Field(default_factory=list)


class CreateActionRequest(BaseModel):
    controller_key: str
    controller_name: Optional[str] = None
    category: str = "directory"
    redacted_identity: Dict[str, Optional[str]] = Field(..., description="name/email/city previews only")
    evidence_urls: List[str] = Field(default_factory=list)
    draft: DraftModel
    preferred_channel: str = "email"
    reply_channel: str = "email"
    reply_email_preview: Optional[str] = None
    subject_id: Optional[str] = None
    region: Optional[str] = None
    confidence: Optional[float] = None
    initial_status: Optional[str] = Field(None, description="'draft' or 'prepared'")


class SendRequest(BaseModel):
    action_id: str


class OverrideRequest(BaseModel):
    controller_key: str
    preferred_channel: Optional[str] = None
    fallback_channel: Optional[str] = None
    allowed_channels: Optional[List[str]] = None
    min_confidence: Optional[float] = Field(None, description="Honoured only within 0.50..0.99")
    killed: Optional[bool] = None
    daily_cap: Optional[int] = None
    sla_ack_minutes: Optional[int] = None
    sla_resolve_minutes: Optional[int] = None
    updated_by: Optional[str] = None


class AutoFromScanRequest(BaseModel):
    hits: List[Dict[str, Any]]
    subject_id: Optional[str] = None
    region: Optional[str] = None
    max_count: int = Field(10, ge=1, le=50)
    dispatch: bool = False


class CancelRequest(BaseModel):
    reason: str = "operator"


class VerifyRequest(BaseModel):
    hash: str
    signature: str


def job_to_dict(job: WebformJobDB) -> Dict[str, Any]:
    return {
        "id": job.id,
        "action_id": job.action_id,
        "controller_key": job.controller_key,
        "url": job.url,
        "status": JobStatus(job.status).value,
        "attempt": job.attempt,
        "scheduled_at": job.scheduled_at.isoformat() if job.scheduled_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
        "last_error": job.last_error,
        "result": job.result,
    }


# =============================================================================
# POLICY / OVERRIDES
# =============================================================================

@router.post("/dispatch/policy", response_model=dict)
async def preview_policy(
    request: PolicyRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Resolve the effective policy for one controller (+ region)."""
    override = PolicyOverride.from_dict(request.override) if request.override else None
    policy = PolicyResolver(db).resolve(request.controller_id, request.region, override)
    return policy.to_dict()


@router.post("/controllers/overrides", response_model=dict)
async def upsert_override(
    request: OverrideRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Create or replace the live operator override for a controller."""
    key = request.controller_key.strip().lower()
    if not key:
        raise HTTPException(status_code=400, detail="controller_key is required")

    for name in ("preferred_channel", "fallback_channel"):
        value = getattr(request, name)
        if value is not None and coerce_channel(value) is None:
            raise HTTPException(status_code=400, detail=f"Unknown channel for {name}: {value}")

    row = db.get(ControllerOverrideDB, key) or ControllerOverrideDB(controller_key=key)
    row.preferred_channel = request.preferred_channel
    row.fallback_channel = request.fallback_channel
    row.allowed_channels = request.allowed_channels
    row.min_confidence = request.min_confidence
    row.killed = bool(request.killed)
    row.daily_cap = request.daily_cap
    row.sla_ack_minutes = request.sla_ack_minutes
    row.sla_resolve_minutes = request.sla_resolve_minutes
    row.updated_by = request.updated_by
    row.updated_at = utcnow()
    db.merge(row)
    db.commit()

    logger.info(f"Operator override saved for {key} by {request.updated_by or 'unknown'}")
    return {"ok": True, "policy": PolicyResolver(db).resolve(key).to_dict()}


# =============================================================================
# ACTIONS / DISPATCH
# =============================================================================

@router.post("/actions", response_model=dict)
async def create_action(
    request: CreateActionRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Create an action envelope. Identical envelopes return the existing row."""
    channel = coerce_channel(request.preferred_channel)
    if channel is None:
        raise HTTPException(status_code=400, detail="Unknown preferred_channel")
    if request.initial_status not in (None, "draft", "prepared"):
        raise HTTPException(status_code=400, detail="initial_status must be 'draft' or 'prepared'")

    data = CreateActionInput(
        controller_key=request.controller_key,
        controller_name=request.controller_name,
        category=request.category,
        redacted_identity=request.redacted_identity,
        evidence_urls=request.evidence_urls,
        draft=DraftContent.from_dict(request.draft.model_dump()),
        preferred_channel=channel,
        reply_channel=request.reply_channel,
        reply_email_preview=request.reply_email_preview,
        subject_id=request.subject_id,
        region=request.region,
        confidence=request.confidence,
        initial_status=request.initial_status,
    )
    try:
        result = ActionService(db).create_action(data)
    except DispatchEngineError as e:
        raise to_http(e)

    return {
        "ok": True,
        "id": result.action.id,
        "idempotent": result.idempotent,
        "status": result.action.status.value,
        "proof": result.proof.to_dict() if result.proof else None,
    }


@router.post("/dispatch/send", response_model=dict)
async def send_action(
    request: SendRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Dispatch one stored action over its preferred channel (with one fallback)."""
    action = ActionService(db).get(request.action_id)
    if action is None:
        raise HTTPException(status_code=404, detail="Action not found")
    try:
        result = DispatchRouter(db).dispatch(action)
    except DispatchEngineError as e:
        raise to_http(e)
    return result.to_dict()


@router.post("/pipeline/auto-from-scan", response_model=dict)
async def auto_from_scan(
    request: AutoFromScanRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Select auto-eligible hits and create prepared actions for them."""
    try:
        outcome = AutoPipeline(db).run(
            request.hits,
            subject_id=request.subject_id,
            region=request.region,
            max_count=request.max_count,
            dispatch=request.dispatch,
        )
    except DispatchEngineError as e:
        raise to_http(e)
    return outcome.to_dict()


# =============================================================================
# WEBFORM QUEUE
# =============================================================================

@router.get("/webform/jobs", response_model=dict)
async def list_jobs(
    status: Optional[str] = Query(None, description="queued | running | succeeded | failed"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    job_status = None
    if status:
        try:
            job_status = JobStatus(status.lower())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    jobs = WebformQueue(db).list_jobs(job_status, limit)
    return {"jobs": [job_to_dict(j) for j in jobs], "count": len(jobs)}


@router.post("/webform/worker", response_model=dict)
def run_worker(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Run one worker batch.

    Sync route: the browser session uses Playwright's sync API, which FastAPI
    runs in its threadpool.
    """
    return WebformWorker(db).run_batch()


@router.post("/webform/requeue-stale", response_model=dict)
async def requeue_stale_jobs(
    older_than_minutes: Optional[int] = Query(None, ge=0, description="defaults to WEBFORM_STALE_RUNNING_MINUTES"),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Put jobs stuck in running back on the queue."""
    older_than = timedelta(minutes=older_than_minutes) if older_than_minutes is not None else None
    return {"ok": True, "requeued": WebformQueue(db).requeue_stale(older_than)}


@router.post("/webform/job/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: str,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    try:
        job = WebformQueue(db).retry(job_id)
    except DispatchEngineError as e:
        raise to_http(e)
    return {"ok": True, "job": job_to_dict(job)}


@router.post("/webform/job/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: str,
    request: Optional[CancelRequest] = None,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    reason = request.reason if request else "operator"
    try:
        job = WebformQueue(db).cancel(job_id, reason)
    except DispatchEngineError as e:
        raise to_http(e)
    return {"ok": True, "job": job_to_dict(job)}


# =============================================================================
# LEDGER
# =============================================================================

@router.post("/ledger/verify", response_model=dict)
async def verify_proof(
    request: VerifyRequest,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    try:
        valid = ProofLedger(db).verify(request.hash, request.signature)
    except DispatchEngineError as e:
        raise to_http(e)
    return {"valid": valid}
