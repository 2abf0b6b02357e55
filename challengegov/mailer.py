"""Fire-and-forget email dispatch through the task queue."""

from __future__ import annotations

import logging

from .emails import Email

logger = logging.getLogger(__name__)


def deliver_later(email: Email) -> bool:
    """Enqueue an email. Failures are logged and never reach the caller."""
    from .tasks import send_email

    try:
        send_email.delay(email.to, email.subject, email.html, email.text)
        return True
    except Exception as e:
        logger.error(f"Failed to enqueue email {email.subject!r} to {email.to}: {e}")
        return False
