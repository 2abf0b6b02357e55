"""Application startup logic (table bootstrap, storage bucket, admin account)."""

import logging
import os

from . import accounts
from .config import settings
from .db import Base, SessionLocal, engine
from .storage import ensure_bucket_once

logger = logging.getLogger(__name__)


def startup():
    """FastAPI startup event handler"""
    logger.info("Starting ChallengeGov API...")

    # Production runs `alembic upgrade head` before the server starts.
    if os.getenv("SKIP_SQL_MIGRATIONS", "").strip().lower() in ("1", "true", "yes"):
        logger.info("SKIP_SQL_MIGRATIONS=true -> skipping startup bootstrap")
        return

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")

    try:
        ensure_bucket_once(settings.S3_BUCKET)
        logger.info("Storage bucket verified")
    except Exception as bucket_err:
        logger.warning(f"Storage bucket initialization skipped (non-fatal): {bucket_err}")

    db = SessionLocal()
    try:
        accounts.ensure_admin(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    finally:
        db.close()
