"""
Admin routes: dashboard counts, challenge review actions, owner access,
user management and certification, managed submissions, agencies and the
security / certification CSV reports.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from .. import accounts, challenges, reports, submissions
from ..models import Agency, User
from ..query_tools import parse_day
from ..schemas import (
    AgencyOut,
    AgencyRequest,
    ChallengeOut,
    ChallengeSummary,
    RejectRequest,
    SubmissionOut,
    UserOut,
    UserUpdateRequest,
    page_out,
)
from ..security import DBSessionDep
from .helpers import bracket_params, remote_ip

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(accounts.require_admin)]
)


@router.get("")
def dashboard(db: DBSessionDep):
    return challenges.admin_counts(db)


# Challenges
@router.get("/challenges")
def list_challenges(request: Request, db: DBSessionDep, page: int = 1, per: int = 10):
    result = challenges.admin_all(db, bracket_params(request, "filter"), page, per)
    return page_out(result, ChallengeSummary.build)


@router.get("/challenges/pending")
def list_pending(
    request: Request,
    db: DBSessionDep,
    page: int = 1,
    per: int = 10,
    admin: User = Depends(accounts.require_admin),
):
    result = challenges.all_pending_for_user(
        db,
        admin,
        bracket_params(request, "filter"),
        bracket_params(request, "sort"),
        page,
        per,
    )
    return page_out(result, ChallengeSummary.build)


@router.post("/challenges/{challenge_id}/approve", response_model=ChallengeOut)
def approve(
    challenge_id: int,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    challenge = challenges.get(db, challenge_id)
    return ChallengeOut.build(
        challenges.approve(db, challenge, admin, remote_ip(request))
    )


@router.post("/challenges/{challenge_id}/publish", response_model=ChallengeOut)
def publish(
    challenge_id: int,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    challenge = challenges.get(db, challenge_id)
    return ChallengeOut.build(
        challenges.publish(db, challenge, admin, remote_ip(request))
    )


@router.post("/challenges/{challenge_id}/reject", response_model=ChallengeOut)
def reject(
    challenge_id: int,
    data: RejectRequest,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    challenge = challenges.get(db, challenge_id)
    return ChallengeOut.build(
        challenges.reject(db, challenge, data.message, admin, remote_ip(request))
    )


@router.post("/challenges/{challenge_id}/archive", response_model=ChallengeOut)
def archive(
    challenge_id: int,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    challenge = challenges.get(db, challenge_id)
    return ChallengeOut.build(
        challenges.archive(db, challenge, admin, remote_ip(request))
    )


@router.post("/challenges/{challenge_id}/owners/{user_id}/revoke")
def revoke_owner(challenge_id: int, user_id: int, db: DBSessionDep):
    challenge = challenges.get(db, challenge_id)
    count = challenges.revoke_access(db, accounts.get(db, user_id), challenge)
    return {"updated": count}


@router.post("/challenges/{challenge_id}/owners/{user_id}/restore")
def restore_owner(challenge_id: int, user_id: int, db: DBSessionDep):
    challenge = challenges.get(db, challenge_id)
    count = challenges.restore_access(db, accounts.get(db, user_id), challenge)
    return {"updated": count}


# Users
@router.get("/users", response_model=list[UserOut])
def list_users(db: DBSessionDep, role: str | None = None, status: str | None = None):
    return [UserOut.model_validate(u) for u in accounts.list_users(db, role, status)]


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, db: DBSessionDep):
    return UserOut.model_validate(accounts.get(db, user_id))


@router.put("/users/{user_id}", response_model=UserOut)
def update_user(
    user_id: int,
    data: UserUpdateRequest,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    user = accounts.update_user(
        db,
        admin,
        accounts.get(db, user_id),
        data.model_dump(exclude_unset=True),
        remote_ip(request),
    )
    return UserOut.model_validate(user)


@router.post("/users/{user_id}/certify", response_model=UserOut)
def certify_user(
    user_id: int,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    user = accounts.certify(db, admin, accounts.get(db, user_id), remote_ip(request))
    return UserOut.model_validate(user)


@router.post("/users/{user_id}/deny", response_model=UserOut)
def deny_user(
    user_id: int,
    request: Request,
    db: DBSessionDep,
    admin: User = Depends(accounts.require_admin),
):
    user = accounts.deny_certification(
        db, admin, accounts.get(db, user_id), remote_ip(request)
    )
    return UserOut.model_validate(user)


# Submissions
@router.get("/submissions")
def managed_submissions(
    request: Request, db: DBSessionDep, page: int = 1, per: int = 10
):
    result = submissions.all_with_manager_id(
        db,
        bracket_params(request, "filter"),
        bracket_params(request, "sort"),
        page,
        per,
    )
    return page_out(result, SubmissionOut.build)


# Agencies
@router.get("/agencies", response_model=list[AgencyOut])
def list_agencies(db: DBSessionDep):
    return db.query(Agency).order_by(Agency.name.asc()).all()


@router.post("/agencies", response_model=AgencyOut, status_code=status.HTTP_201_CREATED)
def create_agency(data: AgencyRequest, db: DBSessionDep):
    agency = Agency(name=data.name.strip(), acronym=data.acronym)
    db.add(agency)
    db.commit()
    db.refresh(agency)
    logger.info(f"Agency {agency.name} created")
    return agency


# Reports
def _range(start: str | None, end: str | None):
    start_at = parse_day(start) if start else None
    end_at = parse_day(end) if end else None
    if (start and start_at is None) or (end and end_at is None):
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "dates must be YYYY-MM-DD")
    if end_at is not None:
        # whole end day
        end_at = end_at + timedelta(days=1) - timedelta(microseconds=1)
    return start_at, end_at


def _csv_response(rows: list[str], filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter(rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/reports/security-log.csv")
def security_log_report(
    db: DBSessionDep, start: str | None = None, end: str | None = None
):
    start_at, end_at = _range(start, end)
    rows = list(reports.stream_security_log(db, start_at, end_at))
    return _csv_response(rows, "security-log.csv")


@router.get("/reports/certification-log.csv")
def certification_log_report(
    db: DBSessionDep, start: str | None = None, end: str | None = None
):
    start_at, end_at = _range(start, end)
    rows = list(reports.stream_certification_log(db, start_at, end_at))
    return _csv_response(rows, "certification-log.csv")
