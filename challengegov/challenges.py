"""
Challenges context.

Statuses for challenges:
- draft: being written in the wizard, visible to owners and admins
- pending: submitted through the legacy form, awaiting review
- gsa_review: submitted from the wizard, awaiting GSA review
- approved: approved by an admin, not yet public
- created: published by an admin, viewable to the public
- rejected: sent back to the owners with a message
- archived: archived by an admin, still publicly viewable
"""

from __future__ import annotations

import logging
import re
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, cast, or_
from sqlalchemy.orm import Query, Session, selectinload

from . import accounts, documents, emails, security_logs, storage, timeline
from .errors import (
    ChangesetError,
    NotFound,
    Permission,
    TransitionError,
    not_permitted,
    permitted,
)
from .mailer import deliver_later
from .models import (
    Agency,
    Challenge,
    ChallengeOwner,
    FederalPartner,
    NonFederalPartner,
    Phase,
    Submission,
    User,
)
from .query_tools import (
    Page,
    apply_filters,
    apply_sort,
    id_filter,
    paginate,
    parse_day,
    parse_ids,
)
from .timeline import utcnow

logger = logging.getLogger(__name__)

STATUSES: list[dict[str, str]] = [
    {"id": "draft", "label": "Draft"},
    {"id": "pending", "label": "Pending"},
    {"id": "gsa_review", "label": "GSA Review"},
    {"id": "approved", "label": "Approved"},
    {"id": "created", "label": "Published"},
    {"id": "rejected", "label": "Rejected"},
    {"id": "archived", "label": "Archived"},
    {"id": "champion assigned", "label": "Champion Assigned"},
    {"id": "design", "label": "Design"},
    {"id": "vetted", "label": "Vetted"},
]

SECTIONS: list[dict[str, str]] = [
    {"id": "general", "label": "General Info"},
    {"id": "details", "label": "Details"},
    {"id": "timeline", "label": "Timeline"},
    {"id": "prizes", "label": "Prizes"},
    {"id": "rules", "label": "Rules"},
    {"id": "judging", "label": "Judging"},
    {"id": "how_to_enter", "label": "How to Enter"},
    {"id": "resources", "label": "Resources"},
    {"id": "review", "label": "Review and Submit"},
]

SECTION_REQUIRED: dict[str, tuple[str, ...]] = {
    "general": ("agency_id", "fiscal_year"),
    "details": ("title", "tagline", "brief_description", "description", "types"),
    "timeline": ("start_date", "end_date"),
    "prizes": ("prize_description",),
    "rules": ("eligibility_requirements", "rules", "terms_and_conditions", "legal_authority"),
    "judging": ("judging_criteria",),
    "how_to_enter": ("how_to_enter",),
    "resources": (),
    "review": (),
}

LEGACY_REQUIRED = ("title", "tagline", "brief_description", "description", "agency_id")

CHALLENGE_TYPES = [
    "Software and apps",
    "Creative (multimedia and design)",
    "Ideas",
    "Technology demonstration and hardware",
    "Nominations",
    "Business plans",
    "Analytics, visualizations and algorithms",
    "Scientific",
]

LEGAL_AUTHORITIES = [
    "America COMPETES",
    "Agency Prize Authority - DOT",
    "Direct Prize Authority",
    "Direct Prize Authority - DOD (includes DARPA)",
    "Direct Prize Authority - DOE",
    "Direct Prize Authority - USDA",
    "Procurement Authority",
    "Other Transactions Authority",
    "Agency Partnership Authority",
    "Public-Private Partnership Authority",
    "Other",
]

STATUS_EVENTS = {
    "created": "Created",
    "champion assigned": "Champion Assigned",
    "design": "Design",
    "vetted": "Vetted",
}

TEXT_FIELDS = (
    "title",
    "tagline",
    "brief_description",
    "description",
    "how_to_enter",
    "rules",
    "terms_and_conditions",
    "eligibility_requirements",
    "judging_criteria",
    "non_monetary_prizes",
    "prize_description",
    "legal_authority",
    "fiscal_year",
    "external_url",
)
TEXT_LIMITS = {
    "title": 90,
    "tagline": 90,
    "brief_description": 200,
    "legal_authority": 255,
    "fiscal_year": 4,
    "external_url": 1024,
}
FISCAL_YEAR_RE = re.compile(r"^FY\d{2}$")


# Valid attribute values
def statuses() -> list[dict[str, str]]:
    return STATUSES


def status_label(status: str | None) -> str | None:
    for s in STATUSES:
        if s["id"] == status:
            return s["label"]
    return status


def sections() -> list[dict[str, str]]:
    return SECTIONS


def challenge_types() -> list[str]:
    return CHALLENGE_TYPES


def legal_authorities() -> list[str]:
    return LEGAL_AUTHORITIES


# Wizard helpers
def section_index(section: str | None) -> int | None:
    for index, s in enumerate(SECTIONS):
        if s["id"] == section:
            return index
    return None


def next_section(section: str | None) -> dict[str, str] | None:
    index = section_index(section)
    if index is None or index + 1 >= len(SECTIONS):
        return None
    return SECTIONS[index + 1]


def prev_section(section: str | None) -> dict[str, str] | None:
    index = section_index(section)
    if index is None or index == 0:
        return None
    return SECTIONS[index - 1]


def to_section(section: str | None, action: str | None) -> dict[str, str] | None:
    if action == "next":
        return next_section(section)
    if action == "back":
        return prev_section(section)
    return None


def wizard_options(db: Session) -> dict[str, Any]:
    return {
        "section": SECTIONS[0],
        "sections": SECTIONS,
        "challenge_types": CHALLENGE_TYPES,
        "legal_authorities": LEGAL_AUTHORITIES,
        "agencies": [
            {"id": a.id, "name": a.name, "acronym": a.acronym}
            for a in db.query(Agency).order_by(Agency.name.asc()).all()
        ],
    }


# Validation
def _blank(value: Any) -> bool:
    return value is None or value == "" or value == []


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _echo(params: dict[str, Any]) -> dict[str, Any]:
    return {
        k: (v.filename if isinstance(v, documents.Upload) else v)
        for k, v in params.items()
    }


def validate(
    db: Session,
    params: dict[str, Any],
    required: tuple[str, ...] = (),
    current: Challenge | None = None,
) -> dict[str, Any]:
    """
    Cast and check challenge fields. Field types and lengths are always
    checked; ``required`` names the fields that must end up non-blank.
    Returns the values to write, raises ChangesetError otherwise.
    """
    values: dict[str, Any] = {}
    errors: dict[str, list[str]] = defaultdict(list)

    for field in TEXT_FIELDS:
        if field not in params:
            continue
        value = params[field]
        if _blank(value):
            values[field] = None
            continue
        if not isinstance(value, str):
            errors[field].append("is invalid")
            continue
        limit = TEXT_LIMITS.get(field)
        if limit and len(value) > limit:
            errors[field].append(f"should be at most {limit} character(s)")
        values[field] = value

    if values.get("fiscal_year") and not FISCAL_YEAR_RE.match(values["fiscal_year"]):
        errors["fiscal_year"].append("must be in the format FYXX")
    if values.get("external_url") and not values["external_url"].startswith(
        ("http://", "https://")
    ):
        errors["external_url"].append("must start with http:// or https://")
    if values.get("legal_authority") and values["legal_authority"] not in LEGAL_AUTHORITIES:
        errors["legal_authority"].append("is invalid")

    if "prize_total" in params:
        value = params["prize_total"]
        if _blank(value):
            values["prize_total"] = None
        else:
            try:
                values["prize_total"] = int(value)
                if values["prize_total"] < 0:
                    errors["prize_total"].append("must be greater than or equal to 0")
            except (TypeError, ValueError):
                errors["prize_total"].append("is invalid")

    if "types" in params:
        types = params["types"]
        if _blank(types):
            values["types"] = []
        elif not isinstance(types, list) or any(t not in CHALLENGE_TYPES for t in types):
            errors["types"].append("is invalid")
        else:
            values["types"] = list(dict.fromkeys(types))

    if "agency_id" in params:
        value = params["agency_id"]
        if _blank(value):
            values["agency_id"] = None
        else:
            try:
                agency_id = int(value)
            except (TypeError, ValueError):
                agency_id = None
            if agency_id is None or db.get(Agency, agency_id) is None:
                errors["agency_id"].append("does not exist")
            else:
                values["agency_id"] = agency_id

    for field in ("start_date", "end_date"):
        if field not in params:
            continue
        if _blank(params[field]):
            values[field] = None
            continue
        parsed = _parse_datetime(params[field])
        if parsed is None:
            errors[field].append("is invalid")
        else:
            values[field] = parsed

    start = values.get("start_date", timeline.as_utc(current.start_date) if current else None)
    end = values.get("end_date", timeline.as_utc(current.end_date) if current else None)
    if start and end and end <= start:
        errors["end_date"].append("must be after the start date")

    for field in required:
        value = values[field] if field in values else getattr(current, field, None)
        if _blank(value) and field not in errors:
            errors[field].append("can't be blank")

    if errors:
        raise ChangesetError(dict(errors), _echo(params))
    return values


def _normalize_collections(params: dict[str, Any]) -> dict[str, Any]:
    params = dict(params)
    for key in ("non_federal_partners", "federal_partners", "challenge_owners", "document_ids"):
        if params.get(key) == "":
            params[key] = []
    return params


def _changeset_for_action(
    db: Session,
    params: dict[str, Any],
    action: str,
    section: str,
    current: Challenge | None = None,
) -> dict[str, Any]:
    if action in ("back", "save_draft"):
        return validate(db, params, current=current)
    return validate(db, params, SECTION_REQUIRED.get(section, ()), current)


# Attachment steps, all in the caller's transaction
def _attach_initial_owner(db: Session, challenge: Challenge, user: User) -> None:
    if accounts.is_challenge_owner(user):
        db.add(ChallengeOwner(challenge_id=challenge.id, user_id=user.id))


def _int_ids(ids: Any, field: str) -> list[int]:
    try:
        return list(dict.fromkeys(int(i) for i in ids))
    except (TypeError, ValueError):
        raise ChangesetError({field: ["are invalid"]})


def _attach_federal_partners(db: Session, challenge: Challenge, params: dict[str, Any]) -> None:
    if "federal_partners" not in params:
        return
    agency_ids = _int_ids(params["federal_partners"], "federal_partners")
    db.query(FederalPartner).filter(FederalPartner.challenge_id == challenge.id).delete(
        synchronize_session=False
    )
    for agency_id in agency_ids:
        if db.get(Agency, agency_id) is None:
            raise ChangesetError({"federal_partners": ["are invalid"]})
        db.add(FederalPartner(challenge_id=challenge.id, agency_id=agency_id))


def _attach_challenge_owners(db: Session, challenge: Challenge, params: dict[str, Any]) -> None:
    if "challenge_owners" not in params:
        return
    user_ids = _int_ids(params["challenge_owners"], "challenge_owners")
    db.query(ChallengeOwner).filter(ChallengeOwner.challenge_id == challenge.id).delete(
        synchronize_session=False
    )
    for user_id in user_ids:
        if db.get(User, user_id) is None:
            raise ChangesetError({"challenge_owners": ["are invalid"]})
        db.add(ChallengeOwner(challenge_id=challenge.id, user_id=user_id))


def _attach_non_federal_partners(
    db: Session, challenge: Challenge, params: dict[str, Any]
) -> None:
    if "non_federal_partners" not in params:
        return
    db.query(NonFederalPartner).filter(
        NonFederalPartner.challenge_id == challenge.id
    ).delete(synchronize_session=False)
    for partner in params["non_federal_partners"] or []:
        name = partner.get("name") if isinstance(partner, dict) else partner
        if _blank(name):
            continue
        db.add(NonFederalPartner(challenge_id=challenge.id, name=str(name)))


def _replace_phases(db: Session, challenge: Challenge, params: dict[str, Any]) -> None:
    """Upsert phases by id. Phases dropped from the list are removed unless they hold submissions."""
    if "phases" not in params:
        return
    existing = {p.id: p for p in db.query(Phase).filter(Phase.challenge_id == challenge.id)}
    kept: set[int] = set()
    for data in params["phases"] or []:
        start = _parse_datetime(data.get("start_date")) if data.get("start_date") else None
        end = _parse_datetime(data.get("end_date")) if data.get("end_date") else None
        if (data.get("start_date") and start is None) or (data.get("end_date") and end is None):
            raise ChangesetError({"phases": ["have an invalid date"]})
        if start and end and end <= start:
            raise ChangesetError({"phases": ["must end after they start"]})

        phase = existing.get(data.get("id")) if data.get("id") else None
        if phase is None:
            phase = Phase(challenge_id=challenge.id)
            db.add(phase)
        else:
            kept.add(phase.id)
        phase.title = data.get("title")
        phase.start_date = start
        phase.end_date = end
        phase.open_to_submissions = bool(data.get("open_to_submissions", True))

    for phase_id, phase in existing.items():
        if phase_id in kept:
            continue
        in_use = db.query(Submission.id).filter(Submission.phase_id == phase_id).first()
        if in_use is not None:
            raise ChangesetError({"phases": ["cannot remove a phase with submissions"]})
        db.delete(phase)

    db.flush()
    db.expire(challenge, ["phases"])
    dated = [p for p in challenge.phases if p.start_date and p.end_date]
    if dated and "start_date" not in params:
        challenge.start_date = min(timeline.as_utc(p.start_date) for p in dated)
    if dated and "end_date" not in params:
        challenge.end_date = max(timeline.as_utc(p.end_date) for p in dated)


def _attach_documents(db: Session, challenge: Challenge, params: dict[str, Any]) -> None:
    for document_id in params.get("document_ids") or []:
        try:
            document = documents.get_supporting_document(db, int(document_id))
        except (NotFound, TypeError, ValueError):
            raise ChangesetError({"document_ids": ["are invalid"]})
        documents.attach_to_challenge(db, document, challenge, "resources")


def _maybe_upload_image(challenge: Challenge, upload: Any, kind: str) -> None:
    if not isinstance(upload, documents.Upload):
        return
    extension = documents.check_upload(
        upload.filename, upload.data, documents.IMAGE_EXTENSIONS, kind
    )
    key = uuid.uuid4().hex
    storage.put_object(image_path(kind, key, extension), upload.data, upload.content_type)
    setattr(challenge, f"{kind}_key", key)
    setattr(challenge, f"{kind}_extension", extension)


def image_path(kind: str, key: str, extension: str | None) -> str:
    prefix = "challenge-logos" if kind == "logo" else "challenge-winner-images"
    return documents.object_path(prefix, key, extension)


def image_url(challenge: Challenge, kind: str = "logo") -> str | None:
    key = getattr(challenge, f"{kind}_key")
    if not key:
        return None
    return storage.presign_get(image_path(kind, key, getattr(challenge, f"{kind}_extension")))


def _refresh_collections(db: Session, challenge: Challenge) -> None:
    db.flush()
    db.expire(
        challenge,
        ["challenge_owners", "federal_partners", "non_federal_partners", "supporting_documents", "events"],
    )


def _run_write(db: Session, params: dict[str, Any], steps) -> None:
    """Run attachment steps and commit once; any failure rolls all of it back."""
    try:
        for step in steps:
            step()
        db.commit()
    except ChangesetError as e:
        db.rollback()
        raise ChangesetError(e.errors, _echo(params)) from e
    except Exception:
        db.rollback()
        raise


# Create and update
def create(db: Session, user: User, action: str, params: dict[str, Any]) -> Challenge:
    """Create a challenge from the first wizard step."""
    params = _normalize_collections(params)
    section = params.get("section") or SECTIONS[0]["id"]
    values = _changeset_for_action(db, params, action, section)

    challenge = Challenge(
        user_id=user.id,
        status="gsa_review" if action == "submit" else "draft",
        last_section=section,
        **values,
    )

    def insert():
        db.add(challenge)
        db.flush()

    _run_write(
        db,
        params,
        [
            insert,
            lambda: _attach_initial_owner(db, challenge, user),
            lambda: _attach_federal_partners(db, challenge, params),
            lambda: _attach_challenge_owners(db, challenge, params),
            lambda: _attach_non_federal_partners(db, challenge, params),
            lambda: _replace_phases(db, challenge, params),
            lambda: _maybe_replace_events(db, challenge, params),
            lambda: _attach_documents(db, challenge, params),
            lambda: _maybe_upload_image(challenge, params.get("logo"), "logo"),
            lambda: _refresh_collections(db, challenge),
        ],
    )
    logger.info(f"Challenge {challenge.id} created by {user.email} ({challenge.status})")
    return challenge


def update(db: Session, challenge: Challenge, action: str, params: dict[str, Any]) -> Challenge:
    """Save one wizard section of an existing challenge."""
    params = _normalize_collections(params)
    section = params.get("section") or challenge.last_section or SECTIONS[0]["id"]
    values = _changeset_for_action(db, params, action, section, challenge)

    def write():
        for field, value in values.items():
            setattr(challenge, field, value)
        challenge.last_section = section
        if action == "submit":
            challenge.status = "gsa_review"
        db.flush()

    _run_write(
        db,
        params,
        [
            write,
            lambda: _attach_federal_partners(db, challenge, params),
            lambda: _attach_challenge_owners(db, challenge, params),
            lambda: _attach_non_federal_partners(db, challenge, params),
            lambda: _replace_phases(db, challenge, params),
            lambda: _maybe_replace_events(db, challenge, params),
            lambda: _attach_documents(db, challenge, params),
            lambda: _maybe_upload_image(challenge, params.get("logo"), "logo"),
            lambda: _refresh_collections(db, challenge),
        ],
    )
    return challenge


def _maybe_replace_events(db: Session, challenge: Challenge, params: dict[str, Any]) -> None:
    if "events" not in params:
        return
    events = params["events"] or []
    for event in events:
        if not isinstance(event, dict) or _blank(event.get("title")):
            raise ChangesetError({"events": ["are invalid"]})
        if isinstance(event.get("occurs_on"), str) and parse_day(event["occurs_on"]) is None:
            raise ChangesetError({"events": ["have an invalid date"]})
    timeline.replace_events(db, challenge, events)


def old_create(db: Session, user: User, params: dict[str, Any]) -> Challenge:
    """Single form creation kept for the legacy submission flow."""
    params = _normalize_collections(params)
    values = validate(db, params, LEGACY_REQUIRED)
    challenge = Challenge(user_id=user.id, status="pending", **values)

    def insert():
        db.add(challenge)
        db.flush()

    def attach_documents():
        try:
            _attach_documents(db, challenge, params)
        except ChangesetError:
            raise ChangesetError({"document_ids": ["are invalid"]})

    _run_write(
        db,
        params,
        [
            insert,
            lambda: _attach_initial_owner(db, challenge, user),
            lambda: _attach_federal_partners(db, challenge, params),
            lambda: _attach_challenge_owners(db, challenge, params),
            attach_documents,
            lambda: _maybe_upload_image(challenge, params.get("logo"), "logo"),
            lambda: _maybe_upload_image(challenge, params.get("winner_image"), "winner_image"),
            lambda: _refresh_collections(db, challenge),
        ],
    )
    logger.info(f"Challenge {challenge.id} created by {user.email} via legacy form")
    return challenge


def update_challenge(
    db: Session,
    challenge: Challenge,
    params: dict[str, Any],
    user: User,
    remote_ip: str | None = None,
) -> Challenge:
    """
    Full edit. Admins may also change the status, the owners and the
    timeline events; a status change records a timeline event.
    """
    params = _normalize_collections(params)
    is_admin = accounts.has_admin_access(user)
    if not is_admin:
        params = {
            k: v for k, v in params.items() if k not in ("status", "challenge_owners", "events")
        }

    values = validate(db, params, current=challenge)
    previous_status = challenge.status
    new_status = params.get("status")
    if new_status is not None and new_status not in {s["id"] for s in STATUSES}:
        raise ChangesetError({"status": ["is invalid"]}, _echo(params))

    def write():
        for field, value in values.items():
            setattr(challenge, field, value)
        if new_status is not None:
            challenge.status = new_status
        db.flush()
        if challenge.status != previous_status:
            create_status_event(db, challenge)
            _track_status_change(db, user, challenge, previous_status, remote_ip)

    _run_write(
        db,
        params,
        [
            write,
            lambda: _attach_federal_partners(db, challenge, params),
            lambda: _attach_challenge_owners(db, challenge, params),
            lambda: _attach_non_federal_partners(db, challenge, params),
            lambda: _replace_phases(db, challenge, params),
            lambda: _maybe_replace_events(db, challenge, params),
            lambda: _attach_documents(db, challenge, params),
            lambda: _maybe_upload_image(challenge, params.get("logo"), "logo"),
            lambda: _maybe_upload_image(challenge, params.get("winner_image"), "winner_image"),
            lambda: _refresh_collections(db, challenge),
        ],
    )
    return challenge


def upload_image(db: Session, challenge: Challenge, upload: documents.Upload, kind: str) -> Challenge:
    """Replace the logo or the winner image."""
    _run_write(db, {kind: upload.filename}, [lambda: _maybe_upload_image(challenge, upload, kind)])
    return challenge


def remove_logo(db: Session, challenge: Challenge) -> Challenge:
    challenge.logo_key = None
    challenge.logo_extension = None
    db.commit()
    return challenge


def remove_winner_image(db: Session, challenge: Challenge) -> Challenge:
    challenge.winner_image_key = None
    challenge.winner_image_extension = None
    db.commit()
    return challenge


# Status events and transitions
def create_status_event(db: Session, challenge: Challenge):
    """Record a timeline event for qualifying statuses, in the caller's transaction."""
    title = STATUS_EVENTS.get(challenge.status)
    if title is None:
        return None
    return timeline.create_event(db, challenge, {"title": title, "occurs_on": timeline.today()})


def _track_status_change(
    db: Session,
    actor: User | None,
    challenge: Challenge,
    previous: str,
    remote_ip: str | None,
) -> None:
    if actor is None:
        return
    security_logs.track_user_action(
        db,
        actor,
        "status_change",
        remote_ip=remote_ip,
        target_id=challenge.id,
        target_type="challenge",
        target_identifier=challenge.title,
        details={"previous_status": previous, "new_status": challenge.status},
    )


def _transition(
    db: Session,
    challenge: Challenge,
    status: str,
    actor: User | None,
    remote_ip: str | None,
    **changes: Any,
) -> Challenge:
    previous = challenge.status
    try:
        challenge.status = status
        for field, value in changes.items():
            setattr(challenge, field, value)
        db.flush()
        create_status_event(db, challenge)
        _track_status_change(db, actor, challenge, previous, remote_ip)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Challenge {challenge.id} moved from {previous} to {status}")
    return challenge


def is_created(challenge: Challenge) -> bool:
    return challenge.status == "created"


def is_public(challenge: Challenge) -> bool:
    """Published or archived challenges are publicly accessible."""
    return challenge.status in ("created", "archived")


def is_approvable(challenge: Challenge) -> bool:
    return challenge.status != "approved"


def is_publishable(challenge: Challenge) -> bool:
    return challenge.status != "created"


def is_rejectable(challenge: Challenge) -> bool:
    return challenge.status not in ("rejected", "gsa_review")


def is_archivable(challenge: Challenge) -> bool:
    return challenge.status != "archived"


def approve(
    db: Session, challenge: Challenge, actor: User | None = None, remote_ip: str | None = None
) -> Challenge:
    if not is_approvable(challenge):
        raise TransitionError("approve", challenge.status)
    return _transition(db, challenge, "approved", actor, remote_ip)


def publish(
    db: Session, challenge: Challenge, actor: User | None = None, remote_ip: str | None = None
) -> Challenge:
    if not is_publishable(challenge):
        raise TransitionError("publish", challenge.status)
    return _transition(db, challenge, "created", actor, remote_ip)


def reject(
    db: Session,
    challenge: Challenge,
    message: str = "",
    actor: User | None = None,
    remote_ip: str | None = None,
) -> Challenge:
    """Reject and notify every current owner once the status is saved."""
    if not is_rejectable(challenge):
        raise TransitionError("reject", challenge.status)
    challenge = _transition(
        db, challenge, "rejected", actor, remote_ip, rejection_message=message
    )
    for owner in challenge.challenge_owner_users:
        deliver_later(emails.challenge_rejection_email(owner, challenge))
    return challenge


def archive(
    db: Session, challenge: Challenge, actor: User | None = None, remote_ip: str | None = None
) -> Challenge:
    if not is_archivable(challenge):
        raise TransitionError("archive", challenge.status)
    return _transition(db, challenge, "archived", actor, remote_ip, sub_status="archived")


# Permissions
def is_challenge_owner(user: User, challenge: Challenge) -> bool:
    """True for owners whose access has not been revoked."""
    return any(
        co.user_id == user.id and co.revoked_at is None
        for co in challenge.challenge_owners
    )


def allowed_to_edit(user: User, challenge: Challenge) -> Permission[Challenge]:
    if is_challenge_owner(user, challenge) or accounts.has_admin_access(user):
        return permitted(challenge)
    return not_permitted()


def allowed_to_delete(user: User, challenge: Challenge) -> bool:
    return accounts.has_admin_access(user) or challenge.status == "draft"


def soft_delete(db: Session, challenge: Challenge) -> Challenge:
    challenge.deleted_at = utcnow()
    db.commit()
    logger.info(f"Challenge {challenge.id} deleted")
    return challenge


def delete(db: Session, challenge: Challenge, user: User) -> Permission[Challenge]:
    if not allowed_to_delete(user, challenge):
        return not_permitted()
    return permitted(soft_delete(db, challenge))


def restore_access(db: Session, user: User, challenge: Challenge) -> int:
    count = (
        db.query(ChallengeOwner)
        .filter(ChallengeOwner.user_id == user.id, ChallengeOwner.challenge_id == challenge.id)
        .update({ChallengeOwner.revoked_at: None}, synchronize_session=False)
    )
    db.commit()
    db.expire(challenge, ["challenge_owners"])
    return count


def revoke_access(db: Session, user: User, challenge: Challenge) -> int:
    count = (
        db.query(ChallengeOwner)
        .filter(ChallengeOwner.user_id == user.id, ChallengeOwner.challenge_id == challenge.id)
        .update({ChallengeOwner.revoked_at: utcnow()}, synchronize_session=False)
    )
    db.commit()
    db.expire(challenge, ["challenge_owners"])
    return count


# Querying
def _types_filter(query: Query, values: Any) -> Query:
    for value in values if isinstance(values, list) else [values]:
        query = query.filter(cast(Challenge.types, String).like(f'%"{value}"%'))
    return query


def _owner_ids_filter(query: Query, value: Any) -> Query:
    ids = parse_ids(value)
    if not ids:
        return query
    return query.filter(Challenge.challenge_owners.any(ChallengeOwner.user_id.in_(ids)))


def _date_filter(column, op):
    def handler(query: Query, value: Any) -> Query:
        day = parse_day(value)
        if day is None:
            return query
        return query.filter(op(column, day))

    return handler


FILTERS = {
    "search": lambda q, v: q.filter(
        or_(Challenge.title.ilike(f"%{v}%"), Challenge.description.ilike(f"%{v}%"))
    ),
    "status": lambda q, v: q.filter(Challenge.status == v),
    "types": _types_filter,
    "agency_id": id_filter(Challenge.agency_id),
    "user_id": id_filter(Challenge.user_id),
    "user_ids": _owner_ids_filter,
    "start_date_start": _date_filter(Challenge.start_date, lambda c, d: c >= d),
    "start_date_end": _date_filter(Challenge.start_date, lambda c, d: c <= d),
    "end_date_start": _date_filter(Challenge.end_date, lambda c, d: c >= d),
    "end_date_end": _date_filter(Challenge.end_date, lambda c, d: c <= d),
}

VIRTUAL_SORTS = {
    "user": (Challenge.user, User.first_name),
    "agency": (Challenge.agency, Agency.name),
}


def filter_on_attribute(query: Query, filters: Any) -> Query:
    return apply_filters(query, filters, FILTERS)


def order_on_attribute(query: Query, sort: dict[str, str] | None) -> Query:
    return apply_sort(query, Challenge, sort, VIRTUAL_SORTS)


def _base(db: Session) -> Query:
    return (
        db.query(Challenge)
        .options(selectinload(Challenge.agency), selectinload(Challenge.user))
        .filter(Challenge.deleted_at.is_(None))
    )


def _owned_by(query: Query, user: User) -> Query:
    return query.filter(
        Challenge.challenge_owners.any(
            (ChallengeOwner.user_id == user.id) & ChallengeOwner.revoked_at.is_(None)
        )
    )


def all(db: Session, filter: Any = None, page: Any = None, per: Any = None) -> Page:
    """Published challenges, soonest closing first."""
    query = _base(db).filter(Challenge.status == "created")
    query = filter_on_attribute(query, filter)
    query = query.order_by(Challenge.end_date.asc(), Challenge.id.asc())
    return paginate(query, page, per)


def admin_all(db: Session, filter: Any = None, page: Any = None, per: Any = None) -> Page:
    query = filter_on_attribute(_base(db), filter)
    query = query.order_by(Challenge.status.desc(), Challenge.id.desc())
    return paginate(query, page, per)


def all_pending_for_user(
    db: Session,
    user: User,
    filter: Any = None,
    sort: dict[str, str] | None = None,
    page: Any = None,
    per: Any = None,
) -> Page:
    query = _base(db).filter(Challenge.status == "gsa_review")
    if accounts.is_challenge_owner(user):
        query = _owned_by(query, user)
    query = order_on_attribute(query, sort)
    query = filter_on_attribute(query, filter)
    return paginate(query, page, per)


def all_for_user(
    db: Session,
    user: User,
    filter: Any = None,
    sort: dict[str, str] | None = None,
    page: Any = None,
    per: Any = None,
) -> Page:
    query = _base(db)
    if accounts.is_challenge_owner(user):
        query = _owned_by(query, user)
    elif accounts.is_solver(user):
        query = query.filter(Challenge.status.in_(("created", "archived")))
    query = order_on_attribute(query, sort)
    query = filter_on_attribute(query, filter)
    return paginate(query, page, per)


def admin_counts(db: Session) -> dict[str, int]:
    rows = (
        db.query(Challenge.status)
        .filter(Challenge.deleted_at.is_(None))
        .all()
    )
    found = [status for (status,) in rows]
    return {
        "pending": found.count("pending"),
        "gsa_review": found.count("gsa_review"),
        "created": found.count("created"),
        "archived": found.count("archived"),
    }


def get(db: Session, challenge_id: int) -> Challenge:
    challenge = (
        db.query(Challenge)
        .options(
            selectinload(Challenge.supporting_documents),
            selectinload(Challenge.user),
            selectinload(Challenge.federal_partners).selectinload(FederalPartner.agency),
            selectinload(Challenge.non_federal_partners),
            selectinload(Challenge.agency),
            selectinload(Challenge.challenge_owners).selectinload(ChallengeOwner.user),
            selectinload(Challenge.phases),
            selectinload(Challenge.events),
        )
        .filter(Challenge.id == challenge_id, Challenge.deleted_at.is_(None))
        .first()
    )
    if challenge is None:
        raise NotFound("challenge")
    return challenge


def filter_for_created(challenge: Challenge) -> Challenge:
    """Non-published challenges look exactly like a bad id."""
    if not is_created(challenge):
        raise NotFound("challenge")
    return challenge
