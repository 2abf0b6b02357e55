"""
Submission exports: CSV snapshots of a challenge's submissions, rendered by a
Celery worker into object storage.

Export statuses:
- pending: queued for rendering
- completed: file available in storage
- outdated: a submission in one of the exported phases changed since
- error: rendering failed
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Any

from sqlalchemy.orm import Session

from . import storage
from .errors import ChangesetError, NotFound
from .models import Challenge, Phase, Submission, SubmissionExport

logger = logging.getLogger(__name__)

FORMATS = (".csv",)
JUDGING_STATUSES = ("all", "not_selected", "selected", "qualified", "winner")

CSV_HEADERS = [
    "Submission ID",
    "Submitter Email",
    "Submitter Name",
    "Phase",
    "Title",
    "Brief Description",
    "Description",
    "External URL",
    "Status",
    "Judging Status",
    "Created At",
    "Updated At",
]


def export_path(export: SubmissionExport) -> str:
    return f"submission-exports/{export.challenge_id}/{export.id}{export.format}"


def create(db: Session, challenge: Challenge, params: dict[str, Any]) -> SubmissionExport:
    """Record a pending export and queue its rendering."""
    phase_ids = params.get("phase_ids") or [p.id for p in challenge.phases]
    judging_status = params.get("judging_status") or "all"
    export_format = params.get("format") or ".csv"

    errors: dict[str, list[str]] = {}
    known = {p.id for p in db.query(Phase).filter(Phase.challenge_id == challenge.id)}
    try:
        phase_ids = sorted({int(i) for i in phase_ids})
    except (TypeError, ValueError):
        phase_ids = []
        errors["phase_ids"] = ["are invalid"]
    if not phase_ids or not set(phase_ids) <= known:
        errors.setdefault("phase_ids", ["are invalid"])
    if judging_status not in JUDGING_STATUSES:
        errors["judging_status"] = ["is invalid"]
    if export_format not in FORMATS:
        errors["format"] = ["is invalid"]
    if errors:
        raise ChangesetError(errors, params)

    export = SubmissionExport(
        challenge_id=challenge.id,
        phase_ids=phase_ids,
        judging_status=judging_status,
        format=export_format,
        status="pending",
    )
    db.add(export)
    db.commit()
    db.refresh(export)
    enqueue(db, export)
    return export


def enqueue(db: Session, export: SubmissionExport) -> SubmissionExport:
    from .tasks import generate_submission_export

    try:
        generate_submission_export.delay(export.id)
    except Exception as e:
        logger.error(f"Failed to queue submission export {export.id}: {e}")
        export.status = "error"
        db.commit()
    return export


def restart(db: Session, export: SubmissionExport) -> SubmissionExport:
    export.status = "pending"
    db.commit()
    return enqueue(db, export)


def all_for_challenge(db: Session, challenge: Challenge) -> list[SubmissionExport]:
    return (
        db.query(SubmissionExport)
        .filter(SubmissionExport.challenge_id == challenge.id)
        .order_by(SubmissionExport.id.desc())
        .all()
    )


def get(db: Session, export_id: int) -> SubmissionExport:
    export = db.get(SubmissionExport, export_id)
    if export is None:
        raise NotFound("submission export")
    return export


def delete(db: Session, export: SubmissionExport) -> None:
    if export.key:
        storage.delete_object(export.key)
    db.delete(export)
    db.commit()


def download_url(export: SubmissionExport) -> str | None:
    if export.status not in ("completed", "outdated") or not export.key:
        return None
    return storage.presign_get(
        export.key,
        response_disposition=f'attachment; filename="submissions-{export.challenge_id}{export.format}"',
    )


def check_for_outdated(db: Session, phase_id: int) -> int:
    """Mark completed exports that include the phase as outdated."""
    outdated = 0
    for export in db.query(SubmissionExport).filter(SubmissionExport.status == "completed"):
        if phase_id in (export.phase_ids or []):
            export.status = "outdated"
            outdated += 1
    if outdated:
        db.commit()
        logger.info(f"{outdated} submission export(s) outdated by phase {phase_id}")
    return outdated


def _export_rows(db: Session, export: SubmissionExport) -> list[Submission]:
    from . import submissions

    query = (
        db.query(Submission)
        .filter(
            Submission.deleted_at.is_(None),
            Submission.challenge_id == export.challenge_id,
            Submission.status == "submitted",
        )
    )
    query = submissions.filter_on_attribute(
        query,
        {"phase_ids": export.phase_ids, "judging_status": export.judging_status},
    )
    return query.order_by(Submission.id.asc()).all()


def render_csv(rows: list[Submission]) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL)
    writer.writerow(CSV_HEADERS)
    for s in rows:
        writer.writerow(
            [
                s.id,
                s.submitter.email if s.submitter else "",
                s.submitter.full_name if s.submitter else "",
                s.phase.title if s.phase else "",
                s.title or "",
                s.brief_description or "",
                s.description or "",
                s.external_url or "",
                s.status,
                s.judging_status,
                s.inserted_at.isoformat() if s.inserted_at else "",
                s.updated_at.isoformat() if s.updated_at else "",
            ]
        )
    return buffer.getvalue().encode("utf-8")


def build_export(db: Session, export_id: int) -> SubmissionExport:
    """Render an export into storage. Failures leave the export in ``error``."""
    export = get(db, export_id)
    try:
        data = render_csv(_export_rows(db, export))
        key = export_path(export)
        storage.put_object(key, data, "text/csv")
        export.key = key
        export.status = "completed"
    except Exception as e:
        logger.error(f"Submission export {export.id} failed: {e}")
        export.status = "error"
    db.commit()
    return export
