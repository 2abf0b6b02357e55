"""
Submission routes: solver drafts, manager-created reviews, final submit,
judging and submission documents.
"""

import logging

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Request,
    UploadFile,
    status,
)

from .. import accounts, challenges, documents, submissions
from ..models import User
from ..schemas import (
    DocumentOut,
    JudgingStatusRequest,
    SubmissionOut,
    SubmissionRequest,
    SubmitRequest,
    page_out,
)
from ..security import DBSessionDep, current_user
from .helpers import bracket_params, ensure, read_upload, remote_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["submissions"])


@router.get("/submissions")
def my_submissions(
    request: Request,
    db: DBSessionDep,
    page: int = 1,
    per: int = 10,
    user: User = Depends(current_user),
):
    result = submissions.all_by_submitter_id(
        db,
        user.id,
        bracket_params(request, "filter"),
        bracket_params(request, "sort"),
        page,
        per,
    )
    return page_out(result, SubmissionOut.build)


@router.get("/submissions/managed")
def managed_submissions(
    request: Request,
    db: DBSessionDep,
    page: int = 1,
    per: int = 10,
    user: User = Depends(accounts.require_admin),
):
    filters = {**bracket_params(request, "filter"), "manager_id": user.id}
    result = submissions.all_with_manager_id(
        db, filters, bracket_params(request, "sort"), page, per
    )
    return page_out(result, SubmissionOut.build)


@router.post(
    "/submissions/documents",
    response_model=DocumentOut,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    db: DBSessionDep,
    file: UploadFile = File(...),
    name: str | None = Form(None),
    user: User = Depends(current_user),
):
    upload = await read_upload(file)
    document = documents.upload_submission_document(
        db, user, upload.filename, upload.data, upload.content_type, name
    )
    return DocumentOut.model_validate(document)


@router.delete(
    "/submissions/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_document(
    document_id: int, db: DBSessionDep, user: User = Depends(current_user)
):
    document = documents.get_submission_document(db, document_id)
    if document.user_id != user.id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "not permitted")
    documents.delete_submission_document(db, document)


@router.post(
    "/challenges/{challenge_id}/submissions",
    response_model=SubmissionOut,
    status_code=status.HTTP_201_CREATED,
)
def create_submission(
    challenge_id: int,
    data: SubmissionRequest,
    db: DBSessionDep,
    user: User = Depends(current_user),
):
    params = data.model_dump(exclude_unset=True)
    challenge = challenges.filter_for_created(challenges.get(db, challenge_id))
    phase = submissions.phase_for(challenge, data.phase_id, params)

    if accounts.has_admin_access(user):
        submission = submissions.create_review(db, params, user, challenge, phase)
    elif accounts.is_solver(user):
        if not submissions.phase_is_open(phase):
            raise HTTPException(status.HTTP_403_FORBIDDEN, "phase is closed")
        submission = submissions.create_draft(db, params, user, challenge, phase)
    else:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "not permitted")
    return SubmissionOut.build(submissions.get(db, submission.id))


@router.get("/challenges/{challenge_id}/submissions")
def challenge_submissions(
    challenge_id: int,
    request: Request,
    db: DBSessionDep,
    page: int = 1,
    per: int = 10,
    user: User = Depends(current_user),
):
    """Submitted entries for a challenge, for its owners and admins."""
    challenge = ensure(challenges.allowed_to_edit(user, challenges.get(db, challenge_id)))
    filters = {
        **bracket_params(request, "filter"),
        "challenge_id": challenge.id,
        "status": "submitted",
        "managed_accepted": "true",
    }
    result = submissions.all(db, filters, bracket_params(request, "sort"), page, per)
    return page_out(result, SubmissionOut.build)


def _visible(db, submission_id: int, user: User):
    submission = submissions.get(db, submission_id)
    if submission.submitter_id == user.id or accounts.has_admin_access(user):
        return submission
    if challenges.is_challenge_owner(user, submission.challenge):
        return submission
    raise HTTPException(status.HTTP_403_FORBIDDEN, "not permitted")


@router.get("/submissions/{submission_id}", response_model=SubmissionOut)
def get_submission(
    submission_id: int, db: DBSessionDep, user: User = Depends(current_user)
):
    return SubmissionOut.build(_visible(db, submission_id, user))


@router.put("/submissions/{submission_id}", response_model=SubmissionOut)
def update_submission(
    submission_id: int,
    data: SubmissionRequest,
    db: DBSessionDep,
    user: User = Depends(current_user),
):
    submission = submissions.get(db, submission_id)
    submission = ensure(submissions.allowed_to_edit(user, submission))
    params = data.model_dump(exclude_unset=True, exclude={"phase_id", "submitter_id"})
    if submission.status == "submitted":
        raise HTTPException(status.HTTP_409_CONFLICT, "submission already submitted")
    if accounts.has_admin_access(user):
        submission = submissions.update_review(db, submission, params)
    else:
        submission = submissions.update_draft(db, submission, params)
    return SubmissionOut.build(submission)


@router.post("/submissions/{submission_id}/submit", response_model=SubmissionOut)
def submit_submission(
    submission_id: int,
    data: SubmitRequest,
    request: Request,
    db: DBSessionDep,
    user: User = Depends(current_user),
):
    submission = submissions.get(db, submission_id)
    if submission.submitter_id != user.id:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "not permitted")
    submission = ensure(submissions.allowed_to_edit(user, submission))
    submission = submissions.submit(
        db, submission, remote_ip(request), data.model_dump()
    )
    return SubmissionOut.build(submission)


@router.put("/submissions/{submission_id}/judging-status", response_model=SubmissionOut)
def update_judging_status(
    submission_id: int,
    data: JudgingStatusRequest,
    db: DBSessionDep,
    user: User = Depends(current_user),
):
    submission = submissions.get(db, submission_id)
    ensure(challenges.allowed_to_edit(user, submission.challenge))
    submission = submissions.update_judging_status(db, submission, data.judging_status)
    return SubmissionOut.build(submission)


@router.delete("/submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_submission(
    submission_id: int, db: DBSessionDep, user: User = Depends(current_user)
):
    submission = submissions.get(db, submission_id)
    submissions.delete(db, ensure(submissions.allowed_to_delete(user, submission)))
