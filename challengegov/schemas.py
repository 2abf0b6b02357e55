"""Request and response models for the JSON API."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .models import (
    Challenge,
    Submission,
    SubmissionExport,
    UserRole,
    UserStatus,
)


# Accounts
class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    password_confirmation: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    role: Literal["solver", "challenge_owner"] = "solver"
    agency_id: int | None = None


class SignInRequest(BaseModel):
    email: str
    password: str


class ResetRequest(BaseModel):
    email: str


class ResetVerifyRequest(BaseModel):
    token: str
    password: str


class AccountUpdateRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    current_password: str | None = None
    password: str | None = None


class UserUpdateRequest(BaseModel):
    role: str | None = None
    status: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    agency_id: int | None = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    role: UserRole
    status: UserStatus
    email_verified: bool
    agency_id: int | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None


class SessionOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


# Challenges
class WizardRequest(BaseModel):
    action: str = "next"
    challenge: dict[str, Any] = Field(default_factory=dict)


class RejectRequest(BaseModel):
    message: str = ""


class PhaseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    open_to_submissions: bool


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    body: str | None = None
    occurs_on: date


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str | None = None
    filename: str
    extension: str | None = None


class ChallengeSummary(BaseModel):
    id: int
    title: str | None = None
    tagline: str | None = None
    brief_description: str | None = None
    status: str
    status_label: str | None = None
    sub_status: str | None = None
    agency_id: int | None = None
    agency_name: str | None = None
    user_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    @classmethod
    def build(cls, challenge: Challenge) -> "ChallengeSummary":
        from .challenges import status_label

        return cls(
            id=challenge.id,
            title=challenge.title,
            tagline=challenge.tagline,
            brief_description=challenge.brief_description,
            status=challenge.status,
            status_label=status_label(challenge.status),
            sub_status=challenge.sub_status,
            agency_id=challenge.agency_id,
            agency_name=challenge.agency.name if challenge.agency else None,
            user_id=challenge.user_id,
            start_date=challenge.start_date,
            end_date=challenge.end_date,
        )


class ChallengeOut(ChallengeSummary):
    last_section: str | None = None
    rejection_message: str | None = None
    description: str | None = None
    how_to_enter: str | None = None
    rules: str | None = None
    terms_and_conditions: str | None = None
    eligibility_requirements: str | None = None
    judging_criteria: str | None = None
    prize_total: int | None = None
    non_monetary_prizes: str | None = None
    prize_description: str | None = None
    types: list[str] = Field(default_factory=list)
    legal_authority: str | None = None
    fiscal_year: str | None = None
    external_url: str | None = None
    logo_url: str | None = None
    winner_image_url: str | None = None
    challenge_owners: list[int] = Field(default_factory=list)
    federal_partners: list[int] = Field(default_factory=list)
    non_federal_partners: list[str] = Field(default_factory=list)
    phases: list[PhaseOut] = Field(default_factory=list)
    events: list[EventOut] = Field(default_factory=list)
    supporting_documents: list[DocumentOut] = Field(default_factory=list)

    @classmethod
    def build(cls, challenge: Challenge) -> "ChallengeOut":
        from .challenges import image_url

        summary = ChallengeSummary.build(challenge).model_dump()
        return cls(
            **summary,
            last_section=challenge.last_section,
            rejection_message=challenge.rejection_message,
            description=challenge.description,
            how_to_enter=challenge.how_to_enter,
            rules=challenge.rules,
            terms_and_conditions=challenge.terms_and_conditions,
            eligibility_requirements=challenge.eligibility_requirements,
            judging_criteria=challenge.judging_criteria,
            prize_total=challenge.prize_total,
            non_monetary_prizes=challenge.non_monetary_prizes,
            prize_description=challenge.prize_description,
            types=challenge.types or [],
            legal_authority=challenge.legal_authority,
            fiscal_year=challenge.fiscal_year,
            external_url=challenge.external_url,
            logo_url=image_url(challenge, "logo"),
            winner_image_url=image_url(challenge, "winner_image"),
            challenge_owners=[u.id for u in challenge.challenge_owner_users],
            federal_partners=[a.id for a in challenge.federal_partner_agencies],
            non_federal_partners=[p.name for p in challenge.non_federal_partners],
            phases=[PhaseOut.model_validate(p) for p in challenge.phases],
            events=[EventOut.model_validate(e) for e in challenge.events],
            supporting_documents=[
                DocumentOut.model_validate(d) for d in challenge.supporting_documents
            ],
        )


class WizardOut(BaseModel):
    challenge: ChallengeOut
    section: dict[str, str] | None = None


# Submissions
class SubmissionRequest(BaseModel):
    phase_id: int | None = None
    title: str | None = None
    brief_description: str | None = None
    description: str | None = None
    external_url: str | None = None
    document_ids: list[int] | None = None
    submitter_id: int | None = None


class SubmitRequest(BaseModel):
    terms_accepted: bool = False


class JudgingStatusRequest(BaseModel):
    judging_status: str


class SubmissionOut(BaseModel):
    id: int
    title: str | None = None
    brief_description: str | None = None
    description: str | None = None
    external_url: str | None = None
    status: str
    status_label: str | None = None
    judging_status: str
    challenge_id: int
    challenge_title: str | None = None
    phase_id: int
    phase_title: str | None = None
    submitter_id: int
    manager_id: int | None = None
    review_verified: bool
    terms_accepted: bool
    documents: list[DocumentOut] = Field(default_factory=list)
    inserted_at: datetime | None = None

    @classmethod
    def build(cls, submission: Submission) -> "SubmissionOut":
        from .submissions import status_label

        return cls(
            id=submission.id,
            title=submission.title,
            brief_description=submission.brief_description,
            description=submission.description,
            external_url=submission.external_url,
            status=submission.status,
            status_label=status_label(submission.status),
            judging_status=submission.judging_status,
            challenge_id=submission.challenge_id,
            challenge_title=submission.challenge.title if submission.challenge else None,
            phase_id=submission.phase_id,
            phase_title=submission.phase.title if submission.phase else None,
            submitter_id=submission.submitter_id,
            manager_id=submission.manager_id,
            review_verified=submission.review_verified,
            terms_accepted=submission.terms_accepted,
            documents=[DocumentOut.model_validate(d) for d in submission.documents],
            inserted_at=submission.inserted_at,
        )


class ExportRequest(BaseModel):
    phase_ids: list[int] = Field(default_factory=list)
    judging_status: str = "all"
    format: str = ".csv"


class ExportOut(BaseModel):
    id: int
    challenge_id: int
    phase_ids: list[int]
    judging_status: str
    format: str
    status: str
    download_url: str | None = None

    @classmethod
    def build(cls, export: SubmissionExport) -> "ExportOut":
        from .submission_exports import download_url

        return cls(
            id=export.id,
            challenge_id=export.challenge_id,
            phase_ids=export.phase_ids or [],
            judging_status=export.judging_status,
            format=export.format,
            status=export.status,
            download_url=download_url(export),
        )


def page_out(page: Any, build) -> dict[str, Any]:
    return {
        "items": [build(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "per": page.per,
        "total_pages": page.total_pages,
    }


# Agencies
class AgencyRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    acronym: str | None = Field(default=None, max_length=32)


class AgencyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    acronym: str | None = None
