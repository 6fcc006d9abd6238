"""Unlist Dispatch Engine - Data Models"""
from .db_models import (
    # Enums
    Channel, ActionStatus, JobStatus, ConfidenceBand,
    ACTION_TRANSITIONS, TERMINAL_JOB_STATUSES,
    # ORM
    ActionDB, WebformJobDB, ControllerOverrideDB, ControllerProfileDB,
    ProofRecordDB, DispatchLogDB,
    utcnow,
)
from .policy import (
    ControllerCapability, PolicyOverride, EffectivePolicy,
    Hit, AutoCandidate, RejectedHit, SelectionResult, coerce_channel,
)
from .envelope import (
    DraftContent, CreateActionInput, ProofResult, ActionCreateResult, DispatchResult,
)
from .automation import ControllerProfile, WebformJobInput, HandlerResult

__all__ = [
    "Channel", "ActionStatus", "JobStatus", "ConfidenceBand",
    "ACTION_TRANSITIONS", "TERMINAL_JOB_STATUSES",
    "ActionDB", "WebformJobDB", "ControllerOverrideDB", "ControllerProfileDB",
    "ProofRecordDB", "DispatchLogDB", "utcnow",
    "ControllerCapability", "PolicyOverride", "EffectivePolicy",
    "Hit", "AutoCandidate", "RejectedHit", "SelectionResult", "coerce_channel",
    "DraftContent", "CreateActionInput", "ProofResult", "ActionCreateResult", "DispatchResult",
    "ControllerProfile", "WebformJobInput", "HandlerResult",
]
