"""
Background tasks for ChallengeGov
Handles email delivery and submission export generation.
"""

import logging
from typing import Any
from celery import Celery
from .config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "challengegov", broker=settings.REDIS_URL, backend=settings.REDIS_URL
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_default_queue=settings.CELERY_QUEUE,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_time_limit=600,
)


@celery_app.task(
    bind=True,
    name="send_email",
    autoretry_for=(OSError,),
    retry_backoff=True,
    max_retries=3,
)
def send_email(
    self, to_email: str, subject: str, html: str, text: str | None = None
) -> None:
    from .email_service import email_service

    email_service.send(to_email, subject, html, text)


@celery_app.task(bind=True, name="generate_submission_export")
def generate_submission_export(self, export_id: int) -> dict[str, Any]:
    """Render a submission export into object storage."""
    from .db import SessionLocal
    from .submission_exports import build_export

    logger.info(f"Generating submission export {export_id}")
    db = SessionLocal()
    try:
        export = build_export(db, export_id)
        return {"export_id": export_id, "status": export.status}
    finally:
        db.close()
