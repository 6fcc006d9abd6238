"""
Migration: Add dispatch engine tables.

Creates 6 tables:
1. actions - ActionEnvelope rows, unique on (controller_key, proof_hash)
2. webform_jobs - durable automation queue
3. controller_overrides - live operator policy layer
4. controller_profiles - per-controller automation hints
5. proof_ledger - append-only signed proofs
6. dispatch_log - one row per channel attempt

Core principle: actions are never deleted, only status-transitioned.
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/unlist_dispatch"
)


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def run_migration():
    """Create all dispatch engine tables."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # =================================================================
        # TABLE 1: actions
        # =================================================================
        if table_exists(conn, "actions"):
            print("actions table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE actions (
                    id VARCHAR(36) PRIMARY KEY,
                    subject_id VARCHAR(36),
                    controller_key VARCHAR(64) NOT NULL,
                    controller_name VARCHAR(255),
                    category VARCHAR(50) DEFAULT 'directory',
                    region VARCHAR(8),
                    confidence DOUBLE PRECISION,
                    status VARCHAR(32) NOT NULL DEFAULT 'draft',
                    redacted_identity JSON,
                    evidence_urls JSON,
                    draft_subject VARCHAR(140),
                    draft_body TEXT,
                    fields JSON,
                    reply_channel VARCHAR(20) DEFAULT 'email',
                    reply_email_preview VARCHAR(255),
                    preferred_channel VARCHAR(32) DEFAULT 'email',
                    sent_channel VARCHAR(32),
                    provider_id VARCHAR(255),
                    last_error TEXT,
                    next_attempt_at TIMESTAMP,
                    retry_count INTEGER DEFAULT 0,
                    verification_info JSON,
                    next_followup_at TIMESTAMP,
                    followup_count INTEGER DEFAULT 0,
                    proof_hash VARCHAR(64),
                    proof_sig TEXT,
                    proof_key_id VARCHAR(255),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    sent_at TIMESTAMP,
                    CONSTRAINT uq_actions_controller_proof UNIQUE (controller_key, proof_hash)
                )
            """))
            conn.execute(text("CREATE INDEX idx_actions_controller ON actions(controller_key)"))
            conn.execute(text("CREATE INDEX idx_actions_status ON actions(status)"))
            conn.execute(text("CREATE INDEX idx_actions_subject ON actions(subject_id)"))
            print("Created actions table")

        # =================================================================
        # TABLE 2: webform_jobs
        # =================================================================
        if table_exists(conn, "webform_jobs"):
            print("webform_jobs table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE webform_jobs (
                    id VARCHAR(36) PRIMARY KEY,
                    action_id VARCHAR(36) REFERENCES actions(id) ON DELETE SET NULL,
                    subject_id VARCHAR(36),
                    controller_key VARCHAR(64),
                    url TEXT,
                    payload JSON,
                    status VARCHAR(32) NOT NULL DEFAULT 'queued',
                    attempt INTEGER NOT NULL DEFAULT 0,
                    scheduled_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    started_at TIMESTAMP,
                    completed_at TIMESTAMP,
                    result JSON,
                    last_error TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX ix_webform_jobs_status_scheduled ON webform_jobs(status, scheduled_at)
            """))
            conn.execute(text("CREATE INDEX idx_webform_jobs_action ON webform_jobs(action_id)"))
            print("Created webform_jobs table")

        # =================================================================
        # TABLE 3: controller_overrides
        # =================================================================
        if table_exists(conn, "controller_overrides"):
            print("controller_overrides table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE controller_overrides (
                    controller_key VARCHAR(64) PRIMARY KEY,
                    preferred_channel VARCHAR(20),
                    fallback_channel VARCHAR(20),
                    allowed_channels JSON,
                    min_confidence DOUBLE PRECISION,
                    killed BOOLEAN DEFAULT FALSE,
                    daily_cap INTEGER,
                    sla_ack_minutes INTEGER,
                    sla_resolve_minutes INTEGER,
                    updated_by VARCHAR(255),
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            print("Created controller_overrides table")

        # =================================================================
        # TABLE 4: controller_profiles
        # =================================================================
        if table_exists(conn, "controller_profiles"):
            print("controller_profiles table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE controller_profiles (
                    id VARCHAR(36) PRIMARY KEY,
                    controller_key VARCHAR(64) NOT NULL UNIQUE,
                    domain VARCHAR(255),
                    form_url TEXT,
                    field_selectors JSON,
                    submit_selectors JSON,
                    captcha JSON,
                    throttle_ms INTEGER,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("CREATE INDEX idx_controller_profiles_domain ON controller_profiles(domain)"))
            print("Created controller_profiles table")

        # =================================================================
        # TABLE 5: proof_ledger
        # =================================================================
        if table_exists(conn, "proof_ledger"):
            print("proof_ledger table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE proof_ledger (
                    id VARCHAR(36) PRIMARY KEY,
                    action_id VARCHAR(36) REFERENCES actions(id) ON DELETE SET NULL,
                    controller_key VARCHAR(64) NOT NULL,
                    content_hash VARCHAR(64) NOT NULL,
                    signature TEXT NOT NULL,
                    algorithm VARCHAR(32) NOT NULL,
                    key_id VARCHAR(255) NOT NULL,
                    evidence_count INTEGER DEFAULT 0,
                    signed_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("CREATE INDEX idx_proof_ledger_hash ON proof_ledger(content_hash)"))
            conn.execute(text("CREATE INDEX idx_proof_ledger_controller ON proof_ledger(controller_key)"))
            print("Created proof_ledger table")

        # =================================================================
        # TABLE 6: dispatch_log
        # =================================================================
        if table_exists(conn, "dispatch_log"):
            print("dispatch_log table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE dispatch_log (
                    id VARCHAR(36) PRIMARY KEY,
                    action_id VARCHAR(36) REFERENCES actions(id) ON DELETE SET NULL,
                    controller_key VARCHAR(64) NOT NULL,
                    channel VARCHAR(32),
                    ok BOOLEAN DEFAULT FALSE,
                    provider_id VARCHAR(255),
                    error TEXT,
                    note VARCHAR(255),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("CREATE INDEX idx_dispatch_log_action ON dispatch_log(action_id)"))
            print("Created dispatch_log table")

        conn.commit()
        print("\nDispatch engine migration complete.")


if __name__ == "__main__":
    run_migration()
