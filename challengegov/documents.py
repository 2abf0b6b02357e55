"""
Uploaded files: challenge supporting documents and submission documents.

Files go to object storage under a random key; the row keeps the key, the
original filename and the extension. Attachment to a challenge or a
submission happens later, inside that record's write transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import PurePath

from sqlalchemy.orm import Session

from . import storage
from .errors import ChangesetError, NotFound
from .models import Challenge, Submission, SubmissionDocument, SupportingDocument, User

logger = logging.getLogger(__name__)

DOCUMENT_EXTENSIONS = {
    ".pdf",
    ".txt",
    ".csv",
    ".rtf",
    ".doc",
    ".docx",
    ".odt",
    ".xls",
    ".xlsx",
    ".ppt",
    ".pptx",
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".zip",
}
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".svg"}
MAX_UPLOAD_BYTES = 50 * 1024 * 1024


def extension_of(filename: str) -> str:
    return PurePath(filename or "").suffix.lower()


def check_upload(
    filename: str, data: bytes, allowed: set[str], field: str = "file"
) -> str:
    """Validate an upload and return its normalised extension."""
    extension = extension_of(filename)
    if extension not in allowed:
        raise ChangesetError({field: ["has an invalid file type"]}, {field: filename})
    if not data:
        raise ChangesetError({field: ["is empty"]}, {field: filename})
    if len(data) > MAX_UPLOAD_BYTES:
        raise ChangesetError({field: ["is too large"]}, {field: filename})
    return extension


def object_path(prefix: str, key: str, extension: str | None) -> str:
    return f"{prefix}/{key}{extension or ''}"


def supporting_document_path(document: SupportingDocument) -> str:
    return object_path("challenge-documents", document.key, document.extension)


def submission_document_path(document: SubmissionDocument) -> str:
    return object_path("submission-documents", document.key, document.extension)


def download_url(document: SupportingDocument | SubmissionDocument) -> str:
    if isinstance(document, SubmissionDocument):
        path = submission_document_path(document)
    else:
        path = supporting_document_path(document)
    return storage.presign_get(
        path, response_disposition=f'attachment; filename="{document.filename}"'
    )


# Supporting documents
def upload_supporting_document(
    db: Session,
    user: User,
    filename: str,
    data: bytes,
    content_type: str,
    name: str | None = None,
) -> SupportingDocument:
    extension = check_upload(filename, data, DOCUMENT_EXTENSIONS)
    document = SupportingDocument(
        user_id=user.id,
        filename=filename,
        name=name,
        key=uuid.uuid4().hex,
        extension=extension,
    )
    storage.put_object(supporting_document_path(document), data, content_type)
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info(f"Supporting document {document.id} uploaded by {user.email}")
    return document


def get_supporting_document(db: Session, document_id: int) -> SupportingDocument:
    document = db.get(SupportingDocument, document_id)
    if document is None:
        raise NotFound("document")
    return document


def attach_to_challenge(
    db: Session,
    document: SupportingDocument,
    challenge: Challenge,
    section: str,
    name: str | None = None,
) -> SupportingDocument:
    """Attach in the caller's transaction. Documents belong to one challenge."""
    if document.challenge_id is not None and document.challenge_id != challenge.id:
        raise ChangesetError({"document_ids": ["are invalid"]})
    document.challenge_id = challenge.id
    document.section = section
    if name:
        document.name = name
    db.flush()
    return document


def delete_supporting_document(db: Session, document: SupportingDocument) -> None:
    storage.delete_object(supporting_document_path(document))
    db.delete(document)
    db.commit()


# Submission documents
def upload_submission_document(
    db: Session,
    user: User,
    filename: str,
    data: bytes,
    content_type: str,
    name: str | None = None,
) -> SubmissionDocument:
    extension = check_upload(filename, data, DOCUMENT_EXTENSIONS)
    document = SubmissionDocument(
        user_id=user.id,
        filename=filename,
        name=name,
        key=uuid.uuid4().hex,
        extension=extension,
    )
    storage.put_object(submission_document_path(document), data, content_type)
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info(f"Submission document {document.id} uploaded by {user.email}")
    return document


def get_submission_document(db: Session, document_id: int) -> SubmissionDocument:
    document = db.get(SubmissionDocument, document_id)
    if document is None:
        raise NotFound("document")
    return document


def attach_to_submission(
    db: Session, document: SubmissionDocument, submission: Submission
) -> SubmissionDocument:
    """Only the submitter's or the managing admin's own uploads may be attached."""
    owners = {submission.submitter_id, submission.manager_id}
    if document.user_id not in owners or document.submission_id not in (
        None,
        submission.id,
    ):
        raise ChangesetError({"document_ids": ["are invalid"]})
    document.submission_id = submission.id
    db.flush()
    return document


def delete_submission_document(db: Session, document: SubmissionDocument) -> None:
    storage.delete_object(submission_document_path(document))
    db.delete(document)
    db.commit()


@dataclass(frozen=True)
class Upload:
    """An uploaded file read into memory by the router."""

    filename: str
    content_type: str
    data: bytes
