"""Challenge timeline events and clock helpers."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from .models import Challenge, TimelineEvent

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> date:
    return utcnow().date()


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_event(db: Session, challenge: Challenge, params: dict[str, Any]) -> TimelineEvent:
    """Add an event to the challenge in the caller's transaction."""
    event = TimelineEvent(
        challenge_id=challenge.id,
        title=params["title"],
        body=params.get("body"),
        occurs_on=params.get("occurs_on") or today(),
    )
    db.add(event)
    db.flush()
    logger.info("Timeline event %r added to challenge %s", event.title, challenge.id)
    return event


def replace_events(
    db: Session, challenge: Challenge, events: list[dict[str, Any]]
) -> None:
    """Delete-then-insert the full list of events for a challenge."""
    db.query(TimelineEvent).filter(
        TimelineEvent.challenge_id == challenge.id
    ).delete(synchronize_session=False)
    for params in events:
        occurs_on = params.get("occurs_on")
        if isinstance(occurs_on, str):
            occurs_on = date.fromisoformat(occurs_on)
        db.add(
            TimelineEvent(
                challenge_id=challenge.id,
                title=params["title"],
                body=params.get("body"),
                occurs_on=occurs_on or today(),
            )
        )
    db.flush()
    db.expire(challenge, ["events"])
