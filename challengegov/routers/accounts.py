"""
Account routes: registration, verification, password reset, sign in/out
and self-service account edits.
"""

import logging

from fastapi import APIRouter, Depends, Request, status

from .. import accounts, challenges, submissions
from ..models import User
from ..schemas import (
    AccountUpdateRequest,
    RegisterRequest,
    ResetRequest,
    ResetVerifyRequest,
    SessionOut,
    SignInRequest,
    UserOut,
)
from ..security import (
    BearerCreds,
    DBSessionDep,
    current_user,
    rate_limit,
    require_no_user,
    verify_token,
)
from .helpers import remote_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["accounts"])


# Not signed in
@router.post(
    "/register",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_no_user)],
)
@rate_limit(max_attempts=10, window=3600)
async def register(request: Request, data: RegisterRequest, db: DBSessionDep):
    user = accounts.register(db, data.model_dump())
    return UserOut.model_validate(user)


@router.get("/register/verify", response_model=UserOut)
def verify(token: str, db: DBSessionDep):
    return UserOut.model_validate(accounts.verify_email(db, token))


@router.post("/register/reset", dependencies=[Depends(require_no_user)])
@rate_limit(max_attempts=5, window=3600)
async def request_reset(request: Request, data: ResetRequest, db: DBSessionDep):
    accounts.request_password_reset(db, data.email)
    return {"message": "If that address has an account, a reset link is on its way."}


@router.post("/register/reset/verify", dependencies=[Depends(require_no_user)])
def reset_password(data: ResetVerifyRequest, db: DBSessionDep):
    accounts.reset_password(db, data.token, data.password)
    return {"message": "password updated"}


@router.post(
    "/sign-in", response_model=SessionOut, dependencies=[Depends(require_no_user)]
)
@rate_limit(max_attempts=20, window=900)
async def sign_in(request: Request, data: SignInRequest, db: DBSessionDep):
    user, token = accounts.authenticate(
        db,
        data.email,
        data.password,
        remote_ip(request),
        request.headers.get("user-agent"),
    )
    return SessionOut(access_token=token, user=UserOut.model_validate(user))


# Signed in
@router.delete("/sign-in", status_code=status.HTTP_204_NO_CONTENT)
def sign_out(
    request: Request,
    creds: BearerCreds,
    db: DBSessionDep,
    user: User = Depends(current_user),
):
    payload = verify_token(creds.credentials)
    accounts.sign_out(db, user, payload.get("jti"), remote_ip(request))


@router.get("/account")
def get_account(db: DBSessionDep, user: User = Depends(current_user)):
    body = UserOut.model_validate(user).model_dump(mode="json")
    body["role_label"] = user.role.value.replace("_", " ").title()
    if accounts.is_solver(user):
        body["managed_submissions"] = [
            s.id for s in submissions.get_all_with_user_id_and_manager(db, user)
        ]
    else:
        body["pending_challenges"] = challenges.all_pending_for_user(db, user).total
    return body


@router.put("/account", response_model=UserOut)
def update_account(
    request: Request,
    data: AccountUpdateRequest,
    db: DBSessionDep,
    user: User = Depends(current_user),
):
    updated = accounts.update_account(
        db, user, data.model_dump(exclude_unset=True), remote_ip(request)
    )
    return UserOut.model_validate(updated)
