"""Composition of the portal's transactional emails."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import jinja2

from .config import settings
from .models import Challenge, Phase, Submission, User

templates_path = Path(__file__).parent / "templates" / "emails"
template_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(searchpath=templates_path),
    autoescape=jinja2.select_autoescape(["html"]),
)


@dataclass(frozen=True)
class Email:
    to: str
    subject: str
    html: str
    text: str | None = None


def _render(template: str, **context: Any) -> str:
    context.setdefault("frontend_url", settings.FRONTEND_URL)
    return template_env.get_template(template).render(**context)


def _greeting_name(user: User) -> str:
    return user.first_name or user.email.split("@")[0]


def verification_email(user: User) -> Email:
    link = f"{settings.FRONTEND_URL}/register/verify?token={user.verification_token}"
    return Email(
        to=user.email,
        subject="Challenge.gov - Verify your email",
        html=_render("verification.html", user_name=_greeting_name(user), link=link),
        text=f"Verify your email address: {link}",
    )


def password_reset_email(user: User) -> Email:
    link = f"{settings.FRONTEND_URL}/register/reset/verify?token={user.reset_token}"
    return Email(
        to=user.email,
        subject="Challenge.gov - Reset your password",
        html=_render(
            "password_reset.html",
            user_name=_greeting_name(user),
            link=link,
            hours=settings.PASSWORD_RESET_HOURS,
        ),
        text=f"Reset your password: {link}",
    )


def submission_confirmation(submission: Submission) -> Email:
    return Email(
        to=submission.submitter.email,
        subject=f"Challenge.gov - Submission #{submission.id} received",
        html=_render(
            "submission_confirmation.html",
            user_name=_greeting_name(submission.submitter),
            submission=submission,
            challenge=submission.challenge,
        ),
    )


def submission_review(user: User, phase: Phase, submission: Submission) -> Email:
    return Email(
        to=user.email,
        subject=f"Challenge.gov - Submission #{submission.id} ready for review",
        html=_render(
            "submission_review.html",
            user_name=_greeting_name(user),
            phase=phase,
            submission=submission,
            challenge=submission.challenge,
        ),
    )


def new_submission_submission(owner: User, submission: Submission) -> Email:
    return Email(
        to=owner.email,
        subject=f"Challenge.gov - New submission for {submission.challenge.title}",
        html=_render(
            "new_submission.html",
            user_name=_greeting_name(owner),
            submission=submission,
            challenge=submission.challenge,
        ),
    )


def challenge_rejection_email(owner: User, challenge: Challenge) -> Email:
    return Email(
        to=owner.email,
        subject=f"Challenge.gov - {challenge.title} was not approved",
        html=_render(
            "challenge_rejection.html",
            user_name=_greeting_name(owner),
            challenge=challenge,
        ),
    )
