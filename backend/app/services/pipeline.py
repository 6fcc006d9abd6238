"""
Auto-from-scan pipeline.

hits -> Auto-Candidate Selector -> prepared actions -> (optional) dispatch

Drafts here are the minimal neutral request used when the draft-generation
collaborator has not supplied one; callers can pass their own per broker.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy.orm import Session

from ..config import EngineSettings, get_settings
from ..errors import DispatchEngineError
from ..models.envelope import CreateActionInput, DraftContent
from ..models.policy import AutoCandidate, Hit
from .actions import ActionService
from .dispatch.router import DispatchRouter
from .policy.resolver import PolicyResolver
from .policy.selector import AutoCandidateSelector

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    created: List[Dict[str, Any]] = field(default_factory=list)
    rejected: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"created": self.created, "rejected": self.rejected}


def default_draft(candidate: AutoCandidate) -> DraftContent:
    hit = candidate.hit
    broker = hit.broker or candidate.controller_id
    return DraftContent(
        subject=f"Personal data removal request - {broker}",
        body=(
            f"Hello {broker} privacy team,\n\n"
            f"I request removal of my personal data from the listing below and "
            f"confirmation once it is done.\n\nListing: {hit.url}\n\nThank you."
        ),
        fields={
            "action": "removal",
            "data_categories": ["contact", "listing"],
            "legal_basis": "data protection rights",
        },
    )


class AutoPipeline:

    def __init__(
        self,
        db: Session,
        settings: Optional[EngineSettings] = None,
        router: Optional[DispatchRouter] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.resolver = PolicyResolver(db)
        self.selector = AutoCandidateSelector(db, self.resolver)
        self.actions = ActionService(db, settings=self.settings)
        self._router = router

    @property
    def router(self) -> DispatchRouter:
        if self._router is None:
            self._router = DispatchRouter(self.db, self.settings, resolver=self.resolver, actions=self.actions)
        return self._router

    def run(
        self,
        hits: Iterable[Union[Hit, Dict[str, Any]]],
        subject_id: Optional[str] = None,
        region: Optional[str] = None,
        max_count: int = 10,
        dispatch: bool = False,
        drafts: Optional[Dict[str, DraftContent]] = None,
    ) -> PipelineOutcome:
        selection = self.selector.select(
            hits,
            max_count=max_count,
            region=region,
            global_min_confidence=self.settings.global_min_confidence,
        )
        outcome = PipelineOutcome(rejected=[r.to_dict() for r in selection.rejected])

        for candidate in selection.accepted:
            hit = candidate.hit
            policy = self.resolver.resolve(candidate.controller_id, hit.region or region)
            draft = (drafts or {}).get(candidate.controller_id) or default_draft(candidate)
            created = self.actions.create_action(CreateActionInput(
                controller_key=candidate.controller_id,
                controller_name=hit.broker or None,
                category=hit.category,
                redacted_identity=dict(hit.preview or {}),
                evidence_urls=[hit.url],
                draft=draft,
                preferred_channel=policy.preferred_channel,
                subject_id=subject_id,
                region=hit.region or region,
                confidence=hit.confidence,
                initial_status="prepared",
            ))
            entry = {
                "action_id": created.action.id,
                "controller_id": candidate.controller_id,
                "idempotent": created.idempotent,
                "band": candidate.band.value,
                "reasons": candidate.reasons,
                "dispatch": None,
            }

            if dispatch and not created.idempotent:
                if policy.can_auto_submit:
                    try:
                        entry["dispatch"] = self.router.dispatch(created.action).to_dict()
                    except DispatchEngineError as e:
                        logger.warning(f"Auto dispatch skipped for {created.action.id}: {e.code}")
                        entry["dispatch"] = {"ok": False, "error": e.code, "hint": e.hint}
                else:
                    entry["dispatch"] = {"ok": False, "error": "manual-submit-required", "hint": None}

            outcome.created.append(entry)

        logger.info(
            f"Auto pipeline: {len(outcome.created)} actions, {len(outcome.rejected)} rejected hits"
        )
        return outcome
