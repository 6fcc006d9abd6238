"""
Unlist Dispatch Engine - FastAPI Application

Main entry point for the controller dispatch backend.

Architecture:
- Scan hits → Auto-Candidate Selector → prepared ActionEnvelope
- ActionEnvelope → Proof Ledger (hash + signature, idempotency)
- ActionEnvelope → Dispatch Router → email | webform job
- Webform job → Worker → controller handler → artifacts + status
"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI

from .config import get_settings
from .database import init_db
from .routers import ops_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    settings = get_settings()
    if settings.is_production and settings.signing_backend == "unsigned":
        logger.error("SIGNING_BACKEND=unsigned in production; ledger writes will be refused")
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Unlist Dispatch Engine",
    description="""
    Unlist Dispatch Engine - Controller Dispatch & Automation

    Decides whether and how a data-removal request may be sent automatically,
    routes it over email or web-form automation with one fallback, drives the
    web-form queue with bounded retries, and signs every action for audit.

    ## Key Principles
    - No raw PII is stored or logged; only redacted previews
    - Identical envelopes are stored once (controller + proof hash)
    - Action status only moves forward
    - Retries are durable (persisted scheduled_at), never in-process timers
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Include routers
app.include_router(ops_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


# For running with: python -m app.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
