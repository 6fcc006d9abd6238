#!/usr/bin/env python3
"""
Controller Profile Seed Script
Upserts default ControllerProfile rows for controllers with web-form handlers.

Usage:
    python -m scripts.seed_controllers
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import ControllerProfileDB, utcnow
from app.services.automation.handlers import HANDLERS


def seed_profiles(db: Session) -> int:
    """Create or refresh one profile per registered handler. Returns rows touched."""
    touched = 0
    for handler in HANDLERS:
        form_url = handler.candidate_urls[0] if handler.candidate_urls else handler.default_url
        domain = handler.domains[0] if handler.domains else None

        row = db.query(ControllerProfileDB).filter(
            ControllerProfileDB.controller_key == handler.key
        ).first()
        if row is None:
            row = ControllerProfileDB(id=str(uuid4()), controller_key=handler.key)
            db.add(row)
            print(f"Created profile for {handler.key}")
        else:
            print(f"Updated profile for {handler.key}")

        row.domain = domain
        # keep an operator-set form URL
        row.form_url = row.form_url or form_url
        row.throttle_ms = row.throttle_ms or 500
        row.updated_at = utcnow()
        touched += 1

    db.commit()
    return touched


if __name__ == "__main__":
    init_db()
    session = SessionLocal()
    try:
        count = seed_profiles(session)
        print(f"\n{count} controller profiles seeded.")
    finally:
        session.close()
