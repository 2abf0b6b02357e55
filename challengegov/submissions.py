"""
Submissions context: drafts, manager-created reviews, submit, judging and
the edit-window permission checks.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session, selectinload

from . import accounts, documents, emails, security_logs, submission_exports
from .errors import (
    ChangesetError,
    NotFound,
    Permission,
    not_permitted,
    permitted,
)
from .mailer import deliver_later
from .models import Challenge, Phase, Submission, User, UserRole
from .query_tools import Page, apply_filters, apply_sort, id_filter, paginate, parse_ids
from .timeline import as_utc, utcnow

logger = logging.getLogger(__name__)

STATUSES: list[dict[str, str]] = [
    {"id": "draft", "label": "Draft"},
    {"id": "review", "label": "Review"},
    {"id": "submitted", "label": "Submitted"},
]

JUDGING_STATUSES = ("not_selected", "selected", "qualified", "winner")

FIELDS = ("title", "brief_description", "description", "external_url")
FIELD_LIMITS = {"title": 255, "external_url": 1024}
SUBMIT_REQUIRED = ("title", "brief_description", "description")


def statuses() -> list[dict[str, str]]:
    return STATUSES


def status_label(status: str | None) -> str | None:
    for s in STATUSES:
        if s["id"] == status:
            return s["label"]
    return status


# Validation
def _validate(params: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    errors: dict[str, list[str]] = {}
    for field in FIELDS:
        if field not in params:
            continue
        value = params[field]
        if value is None or value == "":
            values[field] = None
            continue
        if not isinstance(value, str):
            errors[field] = ["is invalid"]
            continue
        limit = FIELD_LIMITS.get(field)
        if limit and len(value) > limit:
            errors[field] = [f"should be at most {limit} character(s)"]
        values[field] = value
    url = values.get("external_url")
    if url and not url.startswith(("http://", "https://")):
        errors["external_url"] = ["must start with http:// or https://"]
    if errors:
        raise ChangesetError(errors, params)
    return values


def _check_phase(challenge: Challenge, phase: Phase, params: dict[str, Any]) -> None:
    if phase.challenge_id != challenge.id:
        raise ChangesetError({"phase_id": ["is invalid"]}, params)


def phase_for(challenge: Challenge, phase_id: Any, params: dict[str, Any]) -> Phase:
    """The challenge phase a new submission targets."""
    for phase in challenge.phases:
        if str(phase.id) == str(phase_id):
            return phase
    raise ChangesetError({"phase_id": ["is invalid"]}, params)


def _preserve_document_ids(db: Session, params: dict[str, Any]) -> dict[str, Any]:
    """Keep the document selections that still resolve, for re-display."""
    if "document_ids" not in params:
        return params
    kept = []
    for document_id in params.get("document_ids") or []:
        try:
            kept.append(documents.get_submission_document(db, int(document_id)).id)
        except (NotFound, TypeError, ValueError):
            continue
    return {**params, "document_ids": kept}


def _attach_documents(db: Session, submission: Submission, params: dict[str, Any]) -> None:
    for document_id in params.get("document_ids") or []:
        try:
            document = documents.get_submission_document(db, int(document_id))
        except (NotFound, TypeError, ValueError):
            raise ChangesetError({"document_ids": ["are invalid"]})
        documents.attach_to_submission(db, document, submission)


def _write(db: Session, submission: Submission, params: dict[str, Any]) -> Submission:
    """Save the row and its document attachments in one transaction."""
    try:
        db.add(submission)
        db.flush()
        _attach_documents(db, submission, params)
        db.commit()
    except ChangesetError as e:
        db.rollback()
        raise ChangesetError(e.errors, _preserve_document_ids(db, params)) from e
    except Exception:
        db.rollback()
        raise
    db.refresh(submission)
    return submission


# Create and update
def create_draft(
    db: Session,
    params: dict[str, Any],
    user: User,
    challenge: Challenge,
    phase: Phase,
) -> Submission:
    _check_phase(challenge, phase, params)
    values = _validate(params)
    submission = Submission(
        submitter_id=user.id,
        challenge_id=challenge.id,
        phase_id=phase.id,
        status="draft",
        **values,
    )
    submission = _write(db, submission, params)
    logger.info(f"Draft submission {submission.id} created by {user.email}")
    return submission


def create_review(
    db: Session,
    params: dict[str, Any],
    user: User,
    challenge: Challenge,
    phase: Phase,
) -> Submission:
    """Created by a manager on a solver's behalf; the solver verifies and submits."""
    _check_phase(challenge, phase, params)
    values = _validate(params)

    submitter = None
    try:
        submitter = db.get(User, int(params.get("submitter_id")))
    except (TypeError, ValueError):
        pass
    if submitter is None or submitter.role != UserRole.SOLVER:
        raise ChangesetError({"submitter_id": ["is invalid"]}, params)

    submission = Submission(
        submitter_id=submitter.id,
        manager_id=user.id,
        challenge_id=challenge.id,
        phase_id=phase.id,
        status="review",
        review_verified=False,
        **values,
    )
    submission = _write(db, submission, params)
    logger.info(f"Review submission {submission.id} created by manager {user.email}")
    if submission.manager_id:
        deliver_later(emails.submission_review(user, phase, submission))
    return submission


def update_draft(db: Session, submission: Submission, params: dict[str, Any]) -> Submission:
    values = _validate(params)
    for field, value in values.items():
        setattr(submission, field, value)
    return _write(db, submission, params)


def update_review(db: Session, submission: Submission, params: dict[str, Any]) -> Submission:
    values = _validate(params)
    for field, value in values.items():
        setattr(submission, field, value)
    submission.status = "review"
    return _write(db, submission, params)


def submit(
    db: Session,
    submission: Submission,
    remote_ip: str | None = None,
    params: dict[str, Any] | None = None,
) -> Submission:
    """
    Final submission. Once saved: confirmation to the submitter, a notice to
    each current challenge owner, a security log entry and an export
    staleness check.
    """
    params = params or {}
    if "terms_accepted" in params:
        submission.terms_accepted = bool(params["terms_accepted"])

    errors: dict[str, list[str]] = {}
    for field in SUBMIT_REQUIRED:
        if not getattr(submission, field):
            errors[field] = ["can't be blank"]
    if not submission.terms_accepted:
        errors["terms_accepted"] = ["must be accepted"]
    if errors:
        db.rollback()
        raise ChangesetError(errors, params)

    try:
        submission.status = "submitted"
        if submission.manager_id:
            submission.review_verified = True
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(submission)

    deliver_later(emails.submission_confirmation(submission))
    for owner in submission.challenge.challenge_owner_users:
        deliver_later(emails.new_submission_submission(owner, submission))

    security_logs.track_user_action(
        db,
        submission.submitter,
        "submit",
        remote_ip=remote_ip,
        target_id=submission.id,
        target_type="submission",
        target_identifier=submission.title,
    )
    db.commit()
    submission_exports.check_for_outdated(db, submission.phase_id)
    logger.info(f"Submission {submission.id} submitted")
    return submission


def update_judging_status(
    db: Session, submission: Submission, judging_status: str
) -> Submission:
    if judging_status not in JUDGING_STATUSES:
        raise ChangesetError(
            {"judging_status": ["is invalid"]}, {"judging_status": judging_status}
        )
    submission.judging_status = judging_status
    db.commit()
    submission_exports.check_for_outdated(db, submission.phase_id)
    return submission


def delete(db: Session, submission: Submission) -> Submission:
    submission.deleted_at = utcnow()
    db.commit()
    logger.info(f"Submission {submission.id} deleted")
    return submission


# Permissions
def _is_submitter_or_manager(user: User, submission: Submission) -> bool:
    return submission.submitter_id == user.id or (
        accounts.has_admin_access(user) and submission.manager_id is not None
    )


def allowed_to_edit(user: User, submission: Submission) -> Permission[Submission]:
    if _is_submitter_or_manager(user, submission):
        return is_editable(user, submission)
    return not_permitted()


def is_editable(user: User, submission: Submission) -> Permission[Submission]:
    archived = submission.challenge.sub_status == "archived"
    if accounts.is_solver(user):
        if archived:
            return not_permitted()
        return submission_phase_is_open(submission)

    if accounts.has_admin_access(user):
        if submission.manager_id is None or submission.review_verified or archived:
            return not_permitted()
        return permitted(submission)

    return not_permitted()


def phase_is_open(phase: Phase) -> bool:
    """Open only while the phase end is strictly in the future."""
    phase_close = as_utc(phase.end_date)
    return phase_close is not None and phase_close > utcnow()


def submission_phase_is_open(submission: Submission) -> Permission[Submission]:
    if phase_is_open(submission.phase):
        return permitted(submission)
    return not_permitted()


def allowed_to_delete(user: User, submission: Submission) -> Permission[Submission]:
    if _is_submitter_or_manager(user, submission):
        return permitted(submission)
    return not_permitted()


# Querying
def _like(column):
    return lambda q, v: q.filter(column.ilike(f"%{v}%"))


def _judging_status(query: Query, value: str) -> Query:
    if value == "all":
        return query
    if value == "selected":
        return query.filter(Submission.judging_status.in_(("selected", "winner")))
    return query.filter(Submission.judging_status == value)


def _managed_accepted(query: Query, value: Any) -> Query:
    if str(value).lower() != "true":
        return query
    return query.filter(
        or_(
            (Submission.review_verified.is_(True)) & (Submission.terms_accepted.is_(True)),
            Submission.manager_id.is_(None),
        )
    )


def _phase_ids(query: Query, value: Any) -> Query:
    ids = parse_ids(value)
    if not ids:
        return query
    return query.filter(Submission.phase_id.in_(ids))


FILTERS = {
    "search": lambda q, v: q.filter(
        or_(
            Submission.title.ilike(f"%{v}%"),
            Submission.brief_description.ilike(f"%{v}%"),
            Submission.description.ilike(f"%{v}%"),
            Submission.external_url.ilike(f"%{v}%"),
            Submission.status.ilike(f"%{v}%"),
        )
    ),
    "submitter_id": id_filter(Submission.submitter_id),
    "challenge_id": id_filter(Submission.challenge_id),
    "phase_id": id_filter(Submission.phase_id),
    "phase_ids": _phase_ids,
    "title": _like(Submission.title),
    "brief_description": _like(Submission.brief_description),
    "description": _like(Submission.description),
    "external_url": _like(Submission.external_url),
    "status": _like(Submission.status),
    "judging_status": _judging_status,
    "manager_id": id_filter(Submission.manager_id),
    "managed_accepted": _managed_accepted,
}

VIRTUAL_SORTS = {
    "challenge": (Submission.challenge, Challenge.title),
    "phase": (Submission.phase, Phase.title),
    "manager_last_name": (Submission.manager, User.last_name),
}


def filter_on_attribute(query: Query, filters: Any) -> Query:
    return apply_filters(query, filters, FILTERS)


def order_on_attribute(query: Query, sort: dict[str, str] | None) -> Query:
    return apply_sort(query, Submission, sort, VIRTUAL_SORTS)


def _base(db: Session) -> Query:
    return (
        db.query(Submission)
        .options(
            selectinload(Submission.submitter),
            selectinload(Submission.documents),
            selectinload(Submission.phase),
            selectinload(Submission.challenge).selectinload(Challenge.agency),
        )
        .filter(Submission.deleted_at.is_(None))
    )


def _list(query: Query, filter: Any, sort: Any, page: Any, per: Any) -> Page:
    query = filter_on_attribute(query, filter)
    query = order_on_attribute(query, sort)
    return paginate(query, page, per)


def all(
    db: Session, filter: Any = None, sort: Any = None, page: Any = None, per: Any = None
) -> Page:
    return _list(_base(db), filter, sort, page, per)


def all_with_manager_id(
    db: Session, filter: Any = None, sort: Any = None, page: Any = None, per: Any = None
) -> Page:
    query = _base(db).options(selectinload(Submission.manager))
    return _list(query.filter(Submission.manager_id.isnot(None)), filter, sort, page, per)


def all_by_submitter_id(
    db: Session,
    user_id: int,
    filter: Any = None,
    sort: Any = None,
    page: Any = None,
    per: Any = None,
) -> Page:
    query = _base(db).filter(Submission.submitter_id == user_id)
    return _list(query, filter, sort, page, per)


def get(db: Session, submission_id: int) -> Submission:
    submission = (
        _base(db)
        .options(selectinload(Submission.challenge).selectinload(Challenge.phases))
        .filter(Submission.id == submission_id)
        .first()
    )
    if submission is None:
        raise NotFound("submission")
    return submission


def get_all_with_user_id_and_manager(db: Session, user: User) -> list[Submission]:
    """Unsubmitted entries a manager started on the user's behalf."""
    return (
        db.query(Submission)
        .filter(
            Submission.submitter_id == user.id,
            Submission.manager_id.isnot(None),
            Submission.status.in_(("draft", "review")),
            Submission.deleted_at.is_(None),
        )
        .all()
    )
