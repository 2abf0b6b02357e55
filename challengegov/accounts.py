"""
Accounts context: registration, verification, password reset, sign in/out,
role predicates and admin user management.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import emails, security_logs
from .config import settings
from .errors import ChangesetError, NotFound
from .mailer import deliver_later
from .models import User, UserRole, UserSession, UserStatus
from .security import (
    current_user,
    generate_token,
    handle_failed_login,
    handle_successful_login,
    hash_password,
    is_account_locked,
    start_session,
    validate_password_strength,
    verify_password,
)
from .timeline import as_utc, utcnow

logger = logging.getLogger(__name__)

ROLE_RANK: dict[UserRole, int] = {
    UserRole.SOLVER: 1,
    UserRole.CHALLENGE_OWNER: 2,
    UserRole.ADMIN: 3,
    UserRole.SUPER_ADMIN: 4,
}

SELF_REGISTER_ROLES = {UserRole.SOLVER, UserRole.CHALLENGE_OWNER}
PROFILE_FIELDS = ("first_name", "last_name", "phone_number")


# Role predicates
def is_solver(user: User) -> bool:
    return user.role == UserRole.SOLVER


def is_challenge_owner(user: User) -> bool:
    return user.role == UserRole.CHALLENGE_OWNER


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN


def is_super_admin(user: User) -> bool:
    return user.role == UserRole.SUPER_ADMIN


def has_admin_access(user: User) -> bool:
    return is_admin(user) or is_super_admin(user)


def require_admin(user: User = Depends(current_user)) -> User:
    if not has_admin_access(user):
        raise HTTPException(403, "admin access required")
    return user


def parse_role(role: str | None) -> UserRole:
    try:
        return UserRole(str(role or "").strip().lower())
    except ValueError:
        raise ChangesetError({"role": ["is invalid"]}, {"role": role})


def get(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("user")
    return user


def get_by_email(db: Session, email: str) -> User | None:
    return (
        db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()
    )


def _echo(params: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in params.items() if "password" not in k}


def _check_password(params: dict[str, Any], password: str) -> None:
    result = validate_password_strength(password)
    if not result["valid"]:
        raise ChangesetError({"password": result["errors"]}, _echo(params))


def register(db: Session, params: dict[str, Any]) -> User:
    """
    Create an account and send the verification email.
    Solvers are active straight away; challenge owners wait for an admin
    to certify them.
    """
    email = (params.get("email") or "").strip().lower()
    password = params.get("password") or ""

    errors: dict[str, list[str]] = {}
    if not email or "@" not in email:
        errors["email"] = ["is invalid"]
    elif get_by_email(db, email) is not None:
        errors["email"] = ["has already been taken"]
    if params.get("password_confirmation") not in (None, password):
        errors["password_confirmation"] = ["does not match password"]
    if errors:
        raise ChangesetError(errors, _echo(params))

    _check_password(params, password)

    role = parse_role(params.get("role") or UserRole.SOLVER.value)
    if role not in SELF_REGISTER_ROLES:
        raise ChangesetError({"role": ["is invalid"]}, _echo(params))

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=params.get("first_name"),
        last_name=params.get("last_name"),
        phone_number=params.get("phone_number"),
        agency_id=params.get("agency_id"),
        role=role,
        status=UserStatus.PENDING
        if role == UserRole.CHALLENGE_OWNER
        else UserStatus.ACTIVE,
        email_verified=False,
        verification_token=generate_token(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered {user.role.value} account {user.email}")
    deliver_later(emails.verification_email(user))
    return user


def verify_email(db: Session, token: str) -> User:
    user = db.query(User).filter(User.verification_token == token).first()
    if not token or user is None:
        raise NotFound("verification token")

    user.email_verified = True
    user.verification_token = None
    db.commit()
    logger.info(f"Email verified for {user.email}")
    return user


def request_password_reset(db: Session, email: str) -> None:
    """Issue a reset token. Silent when the address is unknown."""
    user = get_by_email(db, email or "")
    if user is None:
        logger.info("Password reset requested for unknown address")
        return

    user.reset_token = generate_token()
    user.reset_token_expires = utcnow() + timedelta(hours=settings.PASSWORD_RESET_HOURS)
    db.commit()
    deliver_later(emails.password_reset_email(user))


def reset_password(db: Session, token: str, password: str) -> User:
    user = db.query(User).filter(User.reset_token == token).first() if token else None
    expires = as_utc(user.reset_token_expires) if user else None
    if user is None or expires is None or expires <= utcnow():
        raise ChangesetError({"token": ["is invalid or has expired"]})

    _check_password({}, password)

    user.password_hash = hash_password(password)
    user.reset_token = None
    user.reset_token_expires = None
    user.failed_login_attempts = 0
    user.locked_until = None
    now = utcnow()
    for session in user.sessions:
        if session.revoked_at is None:
            session.revoked_at = now
    db.commit()
    logger.info(f"Password reset for {user.email}")
    return user


def authenticate(
    db: Session,
    email: str,
    password: str,
    remote_ip: str | None = None,
    user_agent: str | None = None,
) -> tuple[User, str]:
    """Check credentials and open a session. Returns (user, token)."""
    user = get_by_email(db, email or "")
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "invalid credentials")

    if is_account_locked(user):
        raise HTTPException(
            status.HTTP_423_LOCKED,
            "account temporarily locked due to failed sign in attempts",
        )

    if not verify_password(password or "", user.password_hash):
        handle_failed_login(user, db)
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "invalid credentials")

    if user.status not in (UserStatus.ACTIVE, UserStatus.PENDING):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "account is disabled")

    handle_successful_login(user)
    token = start_session(db, user, remote_ip, user_agent)
    security_logs.track_user_action(db, user, "sign_in", remote_ip=remote_ip)
    db.commit()
    logger.info(f"User {user.email} signed in")
    return user, token


def sign_out(db: Session, user: User, token_jti: str | None, remote_ip: str | None = None) -> None:
    query = db.query(UserSession).filter(
        UserSession.user_id == user.id, UserSession.revoked_at.is_(None)
    )
    if token_jti:
        query = query.filter(UserSession.token_jti == token_jti)
    now = utcnow()
    for session in query.all():
        session.revoked_at = now
    security_logs.track_user_action(db, user, "sign_out", remote_ip=remote_ip)
    db.commit()


def update_account(
    db: Session, user: User, params: dict[str, Any], remote_ip: str | None = None
) -> User:
    """Self-service profile edit. Password changes require the current one."""
    changed: dict[str, Any] = {}
    for field in PROFILE_FIELDS:
        if field in params and params[field] != getattr(user, field):
            setattr(user, field, params[field])
            changed[field] = params[field]

    new_password = params.get("password")
    if new_password:
        if not verify_password(params.get("current_password") or "", user.password_hash):
            raise ChangesetError(
                {"current_password": ["is incorrect"]}, _echo(params)
            )
        _check_password(params, new_password)
        user.password_hash = hash_password(new_password)
        changed["password"] = "changed"

    if changed:
        security_logs.track_user_action(
            db,
            user,
            "account_update",
            remote_ip=remote_ip,
            target_id=user.id,
            target_type="user",
            target_identifier=user.email,
            details={"fields": ", ".join(sorted(changed))},
        )
    db.commit()
    db.refresh(user)
    return user


# Admin user management
def list_users(
    db: Session, role: str | None = None, status_: str | None = None
) -> list[User]:
    query = db.query(User)
    if role:
        query = query.filter(User.role == parse_role(role))
    if status_:
        try:
            query = query.filter(User.status == UserStatus(status_))
        except ValueError:
            raise ChangesetError({"status": ["is invalid"]}, {"status": status_})
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def update_user(
    db: Session,
    actor: User,
    user: User,
    params: dict[str, Any],
    remote_ip: str | None = None,
) -> User:
    """Admin edit of another account, limited by role rank."""
    actor_rank = ROLE_RANK.get(actor.role, 0)
    target_rank = ROLE_RANK.get(user.role, 0)

    if user.id != actor.id and target_rank >= actor_rank:
        raise HTTPException(403, "insufficient role to manage this user")

    new_role: UserRole | None = None
    if params.get("role") is not None:
        new_role = parse_role(params["role"])
        if user.id == actor.id and new_role != actor.role:
            raise HTTPException(400, "cannot change your own role")
        if ROLE_RANK.get(new_role, 0) >= actor_rank and new_role != user.role:
            raise HTTPException(403, "cannot assign a role at or above your own")

    new_status: UserStatus | None = None
    if params.get("status") is not None:
        try:
            new_status = UserStatus(params["status"])
        except ValueError:
            raise ChangesetError({"status": ["is invalid"]}, params)
        if user.id == actor.id and new_status != UserStatus.ACTIVE:
            raise HTTPException(400, "cannot deactivate your own account")

    for field in PROFILE_FIELDS:
        if field in params:
            setattr(user, field, params[field])
    if "agency_id" in params:
        user.agency_id = params["agency_id"]

    if new_role is not None and new_role != user.role:
        previous = user.role.value
        user.role = new_role
        security_logs.track_user_action(
            db,
            actor,
            "role_change",
            remote_ip=remote_ip,
            target_id=user.id,
            target_type="user",
            target_identifier=user.email,
            details={"previous_role": previous, "new_role": new_role.value},
        )

    if new_status is not None and new_status != user.status:
        previous = user.status.value
        user.status = new_status
        security_logs.track_user_action(
            db,
            actor,
            "status_change",
            remote_ip=remote_ip,
            target_id=user.id,
            target_type="user",
            target_identifier=user.email,
            details={"previous_status": previous, "new_status": new_status.value},
        )

    db.commit()
    db.refresh(user)
    logger.info(f"User {user.email} updated by admin {actor.email}")
    return user


def certify(
    db: Session, approver: User, user: User, remote_ip: str | None = None
) -> User:
    """Activate a pending account and record the certification."""
    if user.status != UserStatus.PENDING:
        raise ChangesetError({"status": ["is not pending"]}, {"status": user.status.value})

    now = utcnow()
    user.status = UserStatus.ACTIVE
    security_logs.track_certification(
        db,
        approver,
        user,
        approver_remote_ip=remote_ip,
        requested_at=user.created_at,
        certified_at=now,
        expires_at=now + timedelta(days=settings.CERTIFICATION_DAYS),
    )
    security_logs.track_user_action(
        db,
        approver,
        "status_change",
        remote_ip=remote_ip,
        target_id=user.id,
        target_type="user",
        target_identifier=user.email,
        details={"previous_status": "pending", "new_status": "active"},
    )
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.email} certified by {approver.email}")
    return user


def deny_certification(
    db: Session, approver: User, user: User, remote_ip: str | None = None
) -> User:
    if user.status != UserStatus.PENDING:
        raise ChangesetError({"status": ["is not pending"]}, {"status": user.status.value})

    user.status = UserStatus.DEACTIVATED
    security_logs.track_certification(
        db,
        approver,
        user,
        approver_remote_ip=remote_ip,
        requested_at=user.created_at,
        denied_at=utcnow(),
    )
    db.commit()
    db.refresh(user)
    logger.info(f"Certification denied for {user.email} by {approver.email}")
    return user


def ensure_admin(db: Session, email: str, password: str) -> User | None:
    """Create the bootstrap super admin when it does not exist yet."""
    if not email or not password:
        return None
    existing = get_by_email(db, email)
    if existing is not None:
        return existing

    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=UserRole.SUPER_ADMIN,
        status=UserStatus.ACTIVE,
        email_verified=True,
    )
    db.add(user)
    db.commit()
    logger.info(f"Bootstrap admin {user.email} created")
    return user
