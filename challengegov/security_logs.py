"""Append-only security and certification audit trails."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterator

from sqlalchemy.orm import Session

from .models import CertificationLog, SecurityLog, User
from .timeline import utcnow

logger = logging.getLogger(__name__)


def track(db: Session, **params: Any) -> SecurityLog:
    """Queue a security log entry in the caller's transaction."""
    entry = SecurityLog(
        action=params["action"],
        details=params.get("details"),
        originator_id=params.get("originator_id"),
        originator_role=params.get("originator_role"),
        originator_identifier=params.get("originator_identifier"),
        originator_remote_ip=params.get("originator_remote_ip"),
        target_id=params.get("target_id"),
        target_type=params.get("target_type"),
        target_identifier=params.get("target_identifier"),
        logged_at=utcnow(),
    )
    db.add(entry)
    return entry


def track_user_action(
    db: Session,
    user: User,
    action: str,
    *,
    remote_ip: str | None = None,
    target_id: int | None = None,
    target_type: str | None = None,
    target_identifier: str | None = None,
    details: dict[str, Any] | None = None,
) -> SecurityLog:
    return track(
        db,
        action=action,
        details=details,
        originator_id=user.id,
        originator_role=_role(user),
        originator_identifier=user.email,
        originator_remote_ip=remote_ip,
        target_id=target_id,
        target_type=target_type,
        target_identifier=target_identifier,
    )


def track_certification(
    db: Session,
    approver: User | None,
    user: User,
    *,
    approver_remote_ip: str | None = None,
    user_remote_ip: str | None = None,
    requested_at: datetime | None = None,
    certified_at: datetime | None = None,
    expires_at: datetime | None = None,
    denied_at: datetime | None = None,
) -> CertificationLog:
    now = utcnow()
    entry = CertificationLog(
        approver_id=approver.id if approver else None,
        approver_role=_role(approver) if approver else None,
        approver_identifier=approver.email if approver else None,
        approver_remote_ip=approver_remote_ip,
        user_id=user.id,
        user_role=_role(user),
        user_identifier=user.email,
        user_remote_ip=user_remote_ip,
        requested_at=requested_at,
        certified_at=certified_at,
        expires_at=expires_at,
        denied_at=denied_at,
        inserted_at=now,
        updated_at=now,
    )
    db.add(entry)
    return entry


def _role(user: User) -> str:
    return getattr(user.role, "value", user.role)


def _between(query, column, start: datetime | None, end: datetime | None):
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query


def stream_security_log(
    db: Session,
    start: datetime | None = None,
    end: datetime | None = None,
    batch_size: int = 500,
) -> Iterator[SecurityLog]:
    query = _between(db.query(SecurityLog), SecurityLog.logged_at, start, end)
    yield from query.order_by(SecurityLog.id.asc()).yield_per(batch_size)


def stream_certification_log(
    db: Session,
    start: datetime | None = None,
    end: datetime | None = None,
    batch_size: int = 500,
) -> Iterator[CertificationLog]:
    query = _between(
        db.query(CertificationLog), CertificationLog.inserted_at, start, end
    )
    yield from query.order_by(CertificationLog.id.asc()).yield_per(batch_size)
