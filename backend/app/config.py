"""
Unlist Dispatch Engine - Runtime Configuration

All knobs are read from environment variables with conservative defaults.
Components receive an EngineSettings instance explicitly; nothing reads the
environment after start-up except through from_env().
"""
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw)
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass
class EngineSettings:
    """Resolved engine configuration."""

    app_env: str = "development"
    internal_api_key: str = "dispatch-internal-key-change-in-production"

    # Webform queue / worker
    webform_batch_size: int = 3
    webform_max_attempts: int = 6
    webform_backoff_base_ms: int = 60_000
    webform_backoff_cap_ms: int = 1_800_000
    webform_step_timeout_ms: int = 30_000
    webform_idle_timeout_ms: int = 10_000
    webform_escalation_hours: int = 6
    webform_stale_running_minutes: int = 30
    artifact_dir: str = "./artifacts"

    # Failure-spike alerting
    alert_webhook_url: Optional[str] = None
    alert_window_minutes: int = 60
    alert_failure_threshold: int = 5

    # Proof ledger signing
    signing_backend: str = "hmac"
    ledger_hmac_key: str = ""
    signing_private_key_pem: str = ""
    signing_key_id: str = "ledger-key-1"

    # Email provider
    email_api_url: str = "https://api.resend.com/emails"
    email_api_key: str = ""
    email_from: str = "no-reply@unlist.example"
    email_max_attempts: int = 4
    email_backoff_base_ms: int = 600
    admin_emails: List[str] = field(default_factory=list)
    controller_emails: Dict[str, str] = field(default_factory=dict)

    # Auto-candidate selection
    global_min_confidence: float = 0.82

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    def controller_email(self, controller_key: str) -> Optional[str]:
        """Desk address for a controller, else the first admin address."""
        desk = self.controller_emails.get((controller_key or "").lower())
        if desk:
            return desk
        return self.admin_emails[0] if self.admin_emails else None

    @classmethod
    def from_env(cls) -> "EngineSettings":
        controller_emails = {}
        for key, value in os.environ.items():
            # CONTROLLER_TRUECALLER_EMAIL=privacy@truecaller.com
            if key.startswith("CONTROLLER_") and key.endswith("_EMAIL") and value.strip():
                slug = key[len("CONTROLLER_"):-len("_EMAIL")].lower()
                controller_emails[slug] = value.strip()

        admin_emails = [
            s.strip() for s in os.getenv("ADMIN_EMAILS", "").split(",") if s.strip()
        ]

        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            internal_api_key=os.getenv(
                "INTERNAL_API_KEY", "dispatch-internal-key-change-in-production"
            ),
            webform_batch_size=_int("WEBFORM_BATCH_SIZE", 3),
            webform_max_attempts=_int("WEBFORM_MAX_ATTEMPTS", 6),
            webform_backoff_base_ms=_int("WEBFORM_BACKOFF_BASE_MS", 60_000),
            webform_backoff_cap_ms=_int("WEBFORM_BACKOFF_CAP_MS", 1_800_000),
            webform_step_timeout_ms=_int("WEBFORM_STEP_TIMEOUT_MS", 30_000),
            webform_idle_timeout_ms=_int("WEBFORM_IDLE_TIMEOUT_MS", 10_000),
            webform_escalation_hours=_int("WEBFORM_ESCALATION_HOURS", 6),
            webform_stale_running_minutes=_int("WEBFORM_STALE_RUNNING_MINUTES", 30),
            artifact_dir=os.getenv("ARTIFACT_DIR", "./artifacts"),
            alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL") or None,
            alert_window_minutes=_int("ALERT_WINDOW_MINUTES", 60),
            alert_failure_threshold=_int("ALERT_FAILURE_THRESHOLD", 5),
            signing_backend=os.getenv("SIGNING_BACKEND", "hmac").lower(),
            ledger_hmac_key=os.getenv("LEDGER_HMAC_KEY", ""),
            signing_private_key_pem=os.getenv("SIGNING_PRIVATE_KEY_PEM", ""),
            signing_key_id=os.getenv("SIGNING_KEY_ID", "ledger-key-1"),
            email_api_url=os.getenv("EMAIL_API_URL", "https://api.resend.com/emails"),
            email_api_key=os.getenv("EMAIL_API_KEY", ""),
            email_from=os.getenv("EMAIL_FROM", "no-reply@unlist.example"),
            email_max_attempts=_int("EMAIL_MAX_ATTEMPTS", 4),
            email_backoff_base_ms=_int("EMAIL_BACKOFF_BASE_MS", 600),
            admin_emails=admin_emails,
            controller_emails=controller_emails,
            global_min_confidence=_float("DISPATCH_GLOBAL_MIN_CONFIDENCE", 0.82),
        )


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Process-wide settings, loaded once from the environment."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings
