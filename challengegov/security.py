"""
Authentication primitives: password hashing, JWT session tokens, request
dependencies for the signed-in / not-signed-in pipelines, and rate limiting.
"""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import timedelta
from functools import wraps
from time import time
from typing import Annotated, Any, Concatenate, ParamSpec, TypeVar

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.hash import pbkdf2_sha256 as hasher
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import User, UserSession, UserStatus
from .timeline import as_utc, utcnow

logger = logging.getLogger(__name__)
P = ParamSpec("P")
T = TypeVar("T")

COMMON_PASSWORDS = {
    "password",
    "123456",
    "password123",
    "12345678",
    "qwerty",
    "abc123",
    "Password1",
    "password1",
    "123456789",
    "welcome",
    "admin",
    "letmein",
    "1234567890",
    "password123!",
    "qwerty123",
    "trustno1",
    "sunshine",
}

bearer = HTTPBearer(auto_error=True)
optional_bearer = HTTPBearer(auto_error=False)

BearerCreds = Annotated[HTTPAuthorizationCredentials, Depends(bearer)]
OptionalBearerCreds = Annotated[
    HTTPAuthorizationCredentials | None, Depends(optional_bearer)
]
DBSessionDep = Annotated[Session, Depends(get_db)]

# Rate limiting storage (process local)
_rate_limit_storage: defaultdict[str, list[float]] = defaultdict(list)


def clean_old_attempts(attempts: list[float], window: int = 3600) -> list[float]:
    """Remove attempts older than window seconds"""
    cutoff = time() - window
    return [t for t in attempts if t > cutoff]


def rate_limit(max_attempts: int = 10, window: int = 3600) -> Callable[
    [Callable[Concatenate[Request, P], Awaitable[T]]],
    Callable[Concatenate[Request, P], Awaitable[T]],
]:
    """Rate limiting decorator keyed on endpoint and client address"""

    def decorator(
        func: Callable[Concatenate[Request, P], Awaitable[T]],
    ) -> Callable[Concatenate[Request, P], Awaitable[T]]:
        @wraps(func)
        async def wrapper(request: Request, *args: P.args, **kwargs: P.kwargs) -> T:
            client_ip = request.client.host if request.client else "unknown"
            key = f"{func.__name__}:{client_ip}"

            _rate_limit_storage[key] = clean_old_attempts(
                _rate_limit_storage[key], window
            )
            if len(_rate_limit_storage[key]) >= max_attempts:
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Too many requests. Try again later.",
                )
            _rate_limit_storage[key].append(time())

            return await func(request, *args, **kwargs)

        return wrapper

    return decorator


def hash_password(password: str) -> str:
    """Hash password with pbkdf2_sha256"""
    return hasher.hash(password)


def verify_password(password: str, hash: str) -> bool:
    """Verify password against hash"""
    try:
        return hasher.verify(password, hash)
    except (ValueError, TypeError):
        return False


def validate_password_strength(password: str) -> dict[str, Any]:
    """
    Validate password meets security requirements
    Returns dict with 'valid' bool and 'errors' list
    """
    errors = []

    if len(password) < 8:
        errors.append("must be at least 8 characters long")
    if len(password) > 128:
        errors.append("must be less than 128 characters")

    if not re.search(r"[A-Z]", password):
        errors.append("must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("must contain at least one number")

    if password.lower() in COMMON_PASSWORDS:
        errors.append("is too common")

    return {"valid": not errors, "errors": errors}


def generate_token() -> str:
    """URL safe random token for verification and reset links"""
    return secrets.token_urlsafe(32)


def sign_jwt_token(user_id: int, email: str) -> tuple[str, str, Any]:
    """
    Sign a JWT for the user.
    Returns (access_token, jti, expires_at)
    """
    now = utcnow()
    jti = str(uuid.uuid4())
    expires_at = now + timedelta(minutes=settings.JWT_EXPIRE_MIN)

    payload = {
        "sub": str(user_id),
        "email": email,
        "jti": jti,
        "iss": settings.JWT_ISSUER,
        "iat": now,
        "exp": expires_at,
    }

    token = jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")
    return token, jti, expires_at


def verify_token(token: str) -> dict[str, Any]:
    """Verify JWT token and return payload"""
    try:
        return jwt.decode(
            token, settings.JWT_SECRET, algorithms=["HS256"], issuer=settings.JWT_ISSUER
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token"
        )


def start_session(
    db: Session,
    user: User,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> str:
    """Issue a token and persist the matching session row. Caller commits."""
    token, jti, expires_at = sign_jwt_token(user.id, user.email)
    db.add(
        UserSession(
            user_id=user.id,
            token_jti=jti,
            ip_address=ip_address,
            user_agent=user_agent,
            expires_at=expires_at,
        )
    )
    return token


def _session_for(db: Session, payload: dict[str, Any]) -> UserSession | None:
    session = (
        db.query(UserSession)
        .filter(
            UserSession.token_jti == payload.get("jti"),
            UserSession.revoked_at.is_(None),
        )
        .first()
    )
    if session is None:
        return None
    expires_at = as_utc(session.expires_at)
    if expires_at is None or expires_at <= utcnow():
        return None
    return session


def current_user(creds: BearerCreds, db: DBSessionDep) -> User:
    """Resolve the signed in user from the bearer token and its session"""
    payload = verify_token(creds.credentials)

    if _session_for(db, payload) is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or invalid",
        )

    user = db.get(User, int(payload["sub"]))
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found"
        )

    if user.status != UserStatus.ACTIVE and user.status != UserStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled"
        )

    return user


def optional_current_user(creds: OptionalBearerCreds, db: DBSessionDep) -> User | None:
    """
    Returns user if valid token provided, None otherwise.
    Use for endpoints that can work with or without authentication.
    """
    if not creds:
        return None
    try:
        return current_user(creds, db)
    except HTTPException:
        logger.debug("Optional auth: invalid or expired token")
        return None


def require_no_user(user: User | None = Depends(optional_current_user)) -> None:
    """Pipeline guard for registration and sign-in routes"""
    if user is not None:
        raise HTTPException(status_code=400, detail="already signed in")


def is_account_locked(user: User) -> bool:
    """Check if account is locked due to failed attempts"""
    locked_until = as_utc(user.locked_until)
    return bool(locked_until and locked_until > utcnow())


def handle_failed_login(user: User, db: Session) -> None:
    """Update failed login counters and lock account if needed"""
    user.failed_login_attempts = (user.failed_login_attempts or 0) + 1

    if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
        user.locked_until = utcnow() + timedelta(minutes=settings.LOCKOUT_DURATION_MIN)
        logger.warning(
            f"Account locked for user {user.email} due to {user.failed_login_attempts} failed attempts"
        )

    db.commit()


def handle_successful_login(user: User) -> None:
    """Reset failed login counters on successful login. Caller commits."""
    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = utcnow()
