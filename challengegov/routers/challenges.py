"""
Challenge management: the creation wizard, edits, images, supporting
documents and submission exports.
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

from .. import accounts, challenges, documents, submission_exports
from ..models import User, UserStatus
from ..schemas import (
    ChallengeOut,
    ChallengeSummary,
    DocumentOut,
    ExportOut,
    ExportRequest,
    WizardOut,
    WizardRequest,
    page_out,
)
from ..security import DBSessionDep, current_user
from .helpers import bracket_params, ensure, read_upload, remote_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/challenges", tags=["challenges"])


def require_challenge_manager(user: User = Depends(current_user)) -> User:
    """Active challenge owners and admins may write challenges."""
    if not (accounts.is_challenge_owner(user) or accounts.has_admin_access(user)):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "not permitted")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "account pending certification")
    return user


def _editable(db, challenge_id: int, user: User):
    return ensure(challenges.allowed_to_edit(user, challenges.get(db, challenge_id)))


@router.get("")
def list_challenges(
    request: Request,
    db: DBSessionDep,
    page: int = 1,
    per: int = 10,
    user: User = Depends(current_user),
):
    result = challenges.all_for_user(
        db,
        user,
        bracket_params(request, "filter"),
        bracket_params(request, "sort"),
        page,
        per,
    )
    return page_out(result, ChallengeSummary.build)


@router.get("/pending")
def list_pending(
    request: Request,
    db: DBSessionDep,
    page: int = 1,
    per: int = 10,
    user: User = Depends(require_challenge_manager),
):
    result = challenges.all_pending_for_user(
        db,
        user,
        bracket_params(request, "filter"),
        bracket_params(request, "sort"),
        page,
        per,
    )
    return page_out(result, ChallengeSummary.build)


@router.get("/new")
def new_challenge(db: DBSessionDep, user: User = Depends(require_challenge_manager)):
    return challenges.wizard_options(db)


@router.post("", response_model=WizardOut, status_code=status.HTTP_201_CREATED)
def create_challenge(
    data: WizardRequest,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = challenges.create(db, user, data.action, data.challenge)
    challenge = challenges.get(db, challenge.id)
    return WizardOut(
        challenge=ChallengeOut.build(challenge),
        section=challenges.to_section(challenge.last_section, data.action),
    )


@router.post("/legacy", response_model=ChallengeOut, status_code=status.HTTP_201_CREATED)
def create_legacy_challenge(
    data: WizardRequest,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = challenges.old_create(db, user, data.challenge)
    return ChallengeOut.build(challenges.get(db, challenge.id))


# Supporting documents (before /{challenge_id} so the literal path wins)
@router.post(
    "/documents", response_model=DocumentOut, status_code=status.HTTP_201_CREATED
)
async def upload_document(
    db: DBSessionDep,
    file: UploadFile = File(...),
    name: str | None = Form(None),
    user: User = Depends(require_challenge_manager),
):
    upload = await read_upload(file)
    document = documents.upload_supporting_document(
        db, user, upload.filename, upload.data, upload.content_type, name
    )
    return DocumentOut.model_validate(document)


@router.get("/documents/{document_id}")
def document_url(
    document_id: int, db: DBSessionDep, user: User = Depends(current_user)
):
    document = documents.get_supporting_document(db, document_id)
    return {"url": documents.download_url(document)}


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(
    document_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    document = documents.get_supporting_document(db, document_id)
    if document.challenge_id is not None:
        _editable(db, document.challenge_id, user)
    elif document.user_id != user.id and not accounts.has_admin_access(user):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "not permitted")
    documents.delete_supporting_document(db, document)


@router.get("/{challenge_id}", response_model=ChallengeOut)
def get_challenge(
    challenge_id: int, db: DBSessionDep, user: User = Depends(current_user)
):
    challenge = challenges.get(db, challenge_id)
    if accounts.is_solver(user):
        challenge = challenges.filter_for_created(challenge)
    else:
        challenge = ensure(challenges.allowed_to_edit(user, challenge))
    return ChallengeOut.build(challenge)


@router.put("/{challenge_id}", response_model=WizardOut)
def update_challenge_section(
    challenge_id: int,
    data: WizardRequest,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    challenge = challenges.update(db, challenge, data.action, data.challenge)
    return WizardOut(
        challenge=ChallengeOut.build(challenge),
        section=challenges.to_section(challenge.last_section, data.action),
    )


@router.patch("/{challenge_id}", response_model=ChallengeOut)
def edit_challenge(
    challenge_id: int,
    data: WizardRequest,
    request: Request,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    challenge = challenges.update_challenge(
        db, challenge, data.challenge, user, remote_ip(request)
    )
    return ChallengeOut.build(challenge)


@router.delete("/{challenge_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_challenge(
    challenge_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    ensure(challenges.delete(db, challenge, user))


# Images
@router.post("/{challenge_id}/logo", response_model=ChallengeOut)
async def upload_logo(
    challenge_id: int,
    db: DBSessionDep,
    file: UploadFile = File(...),
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    challenge = challenges.upload_image(db, challenge, await read_upload(file), "logo")
    return ChallengeOut.build(challenge)


@router.delete("/{challenge_id}/logo", response_model=ChallengeOut)
def delete_logo(
    challenge_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    return ChallengeOut.build(challenges.remove_logo(db, challenge))


@router.post("/{challenge_id}/winner-image", response_model=ChallengeOut)
async def upload_winner_image(
    challenge_id: int,
    db: DBSessionDep,
    file: UploadFile = File(...),
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    challenge = challenges.upload_image(
        db, challenge, await read_upload(file), "winner_image"
    )
    return ChallengeOut.build(challenge)


@router.delete("/{challenge_id}/winner-image", response_model=ChallengeOut)
def delete_winner_image(
    challenge_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    return ChallengeOut.build(challenges.remove_winner_image(db, challenge))


# Submission exports
@router.get("/{challenge_id}/exports", response_model=list[ExportOut])
def list_exports(
    challenge_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    return [
        ExportOut.build(e) for e in submission_exports.all_for_challenge(db, challenge)
    ]


@router.post(
    "/{challenge_id}/exports",
    response_model=ExportOut,
    status_code=status.HTTP_202_ACCEPTED,
)
def create_export(
    challenge_id: int,
    data: ExportRequest,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    challenge = _editable(db, challenge_id, user)
    export = submission_exports.create(db, challenge, data.model_dump())
    db.refresh(export)
    return ExportOut.build(export)


def _export_for(db, challenge_id: int, export_id: int, user: User):
    _editable(db, challenge_id, user)
    export = submission_exports.get(db, export_id)
    if export.challenge_id != challenge_id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "submission export not found")
    return export


@router.post(
    "/{challenge_id}/exports/{export_id}/restart",
    response_model=ExportOut,
    status_code=status.HTTP_202_ACCEPTED,
)
def restart_export(
    challenge_id: int,
    export_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    export = _export_for(db, challenge_id, export_id, user)
    export = submission_exports.restart(db, export)
    db.refresh(export)
    return ExportOut.build(export)


@router.delete(
    "/{challenge_id}/exports/{export_id}", status_code=status.HTTP_204_NO_CONTENT
)
def delete_export(
    challenge_id: int,
    export_id: int,
    db: DBSessionDep,
    user: User = Depends(require_challenge_manager),
):
    submission_exports.delete(db, _export_for(db, challenge_id, export_id, user))
