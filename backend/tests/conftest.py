"""
Shared fixtures: in-memory SQLite session, engine settings, fake automation
session and recording sinks. No network, no real browser.
"""
from contextlib import nullcontext
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import EngineSettings
from app.database import Base
from app.errors import AutomationError
from app.models import db_models  # noqa: F401  registers tables
from app.models.db_models import Channel
from app.models.envelope import CreateActionInput, DraftContent
from app.services.automation.alerting import AlertSink
from app.services.automation.artifacts import ArtifactStore
from app.services.automation.session import AutomationSession
from app.services.dispatch.email import EmailSender


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path):
    return EngineSettings(
        app_env="test",
        internal_api_key="test-internal-key",
        ledger_hmac_key="test-ledger-key",
        signing_backend="hmac",
        artifact_dir=str(tmp_path / "artifacts"),
        admin_emails=["ops@unlist.example"],
        alert_failure_threshold=5,
    )


def make_action_input(controller_key="justdial", subject="Remove my listing", **overrides) -> CreateActionInput:
    data = dict(
        controller_key=controller_key,
        controller_name=controller_key.title(),
        category="directory",
        redacted_identity={"name": "A•••", "email": "a•••@••••.com", "city": "Pune"},
        evidence_urls=[f"https://www.{controller_key}.com/listing/1"],
        draft=DraftContent(subject=subject, body="Please remove my listing."),
        preferred_channel=Channel.EMAIL,
        initial_status="prepared",
    )
    data.update(overrides)
    return CreateActionInput(**data)


# =============================================================================
# FAKES
# =============================================================================

class FakeSession(AutomationSession):
    """Scripted automation session."""

    def __init__(
        self,
        html: str = "<html><body><p>Request received. Ticket #: TC-123456</p></body></html>",
        fail_navigation: bool = False,
        present: Optional[List[str]] = None,
    ):
        self.html = html
        self.fail_navigation = fail_navigation
        self.present = set(present or [])
        self.visited: List[str] = []
        self.filled = {}
        self.clicked: List[str] = []

    def navigate(self, url: str) -> None:
        self.visited.append(url)
        if self.fail_navigation:
            raise AutomationError(f"navigation timeout: {url}", code="navigation_timeout")

    def content(self) -> str:
        return self.html

    def screenshot(self) -> bytes:
        return b"\x89PNG-fake"

    def current_url(self):
        return self.visited[-1] if self.visited else None

    def fill_first(self, selectors, value):
        for selector in selectors:
            if selector in self.present:
                self.filled[selector] = value
                return selector
        return None

    def click_first(self, selectors):
        for selector in selectors:
            if selector in self.present:
                self.clicked.append(selector)
                return selector
        return None


def session_factory(session: AutomationSession):
    return lambda: nullcontext(session)


class MemoryArtifactStore(ArtifactStore):

    def __init__(self):
        self.items = {}

    def put(self, job_id, name, data):
        self.items[(job_id, name)] = data
        return {"path": f"mem://{job_id}/{name}", "sha256": "0" * 64}


class RecordingSink(AlertSink):

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)


class FakeEmailSender(EmailSender):

    def __init__(self, error: Optional[Exception] = None, provider_id: str = "em_123"):
        self.error = error
        self.provider_id = provider_id
        self.sent = []

    def send(self, message):
        self.sent.append(message)
        if self.error is not None:
            raise self.error
        return self.provider_id
