from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Text,
    JSON,
    Enum,
    Integer,
    ForeignKey,
    Boolean,
    Index,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, Mapped, mapped_column
from enum import Enum as PyEnum
from .db import Base


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class UserRole(str, PyEnum):
    """
    Role hierarchy (highest to lowest):
    - SUPER_ADMIN: platform operators, may manage admins
    - ADMIN: GSA staff reviewing and publishing challenges
    - CHALLENGE_OWNER: agency staff managing their own challenges
    - SOLVER: public participants submitting solutions
    """

    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    CHALLENGE_OWNER = "challenge_owner"
    SOLVER = "solver"


class UserStatus(str, PyEnum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    REVOKED = "revoked"
    DEACTIVATED = "deactivated"


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
        default=UserRole.SOLVER,
    )
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, native_enum=False, values_callable=_enum_values, length=32),
        nullable=False,
        default=UserStatus.ACTIVE,
    )
    agency_id: Mapped[int | None] = mapped_column(
        ForeignKey("agencies.id"), nullable=True
    )
    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    # Account security fields
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verification_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reset_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reset_token_expires: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failed_login_attempts: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    agency: Mapped[Agency | None] = relationship("Agency")
    sessions: Mapped[list[UserSession]] = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class UserSession(Base):
    __tablename__ = "user_sessions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    token_jti: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped[User] = relationship("User", back_populates="sessions")


class Agency(Base):
    __tablename__ = "agencies"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    acronym: Mapped[str | None] = mapped_column(String(32), nullable=True)


class Challenge(Base):
    __tablename__ = "challenges"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    agency_id: Mapped[int | None] = mapped_column(
        ForeignKey("agencies.id"), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default="draft", index=True
    )
    sub_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_section: Mapped[str | None] = mapped_column(String(50), nullable=True)
    rejection_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tagline: Mapped[str | None] = mapped_column(String(255), nullable=True)
    brief_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    how_to_enter: Mapped[str | None] = mapped_column(Text, nullable=True)
    rules: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms_and_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    eligibility_requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    judging_criteria: Mapped[str | None] = mapped_column(Text, nullable=True)
    prize_total: Mapped[int | None] = mapped_column(Integer, nullable=True)
    non_monetary_prizes: Mapped[str | None] = mapped_column(Text, nullable=True)
    prize_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    types: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    legal_authority: Mapped[str | None] = mapped_column(String(255), nullable=True)
    fiscal_year: Mapped[str | None] = mapped_column(String(10), nullable=True)
    external_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    logo_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    logo_extension: Mapped[str | None] = mapped_column(String(16), nullable=True)
    winner_image_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    winner_image_extension: Mapped[str | None] = mapped_column(
        String(16), nullable=True
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    inserted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    user: Mapped[User | None] = relationship("User", foreign_keys=[user_id])
    agency: Mapped[Agency | None] = relationship("Agency")
    challenge_owners: Mapped[list[ChallengeOwner]] = relationship(
        "ChallengeOwner", back_populates="challenge", cascade="all, delete-orphan"
    )
    federal_partners: Mapped[list[FederalPartner]] = relationship(
        "FederalPartner", back_populates="challenge", cascade="all, delete-orphan"
    )
    non_federal_partners: Mapped[list[NonFederalPartner]] = relationship(
        "NonFederalPartner", back_populates="challenge", cascade="all, delete-orphan"
    )
    phases: Mapped[list[Phase]] = relationship(
        "Phase",
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="Phase.start_date",
    )
    supporting_documents: Mapped[list[SupportingDocument]] = relationship(
        "SupportingDocument", back_populates="challenge"
    )
    events: Mapped[list[TimelineEvent]] = relationship(
        "TimelineEvent",
        back_populates="challenge",
        cascade="all, delete-orphan",
        order_by="TimelineEvent.occurs_on",
    )

    @property
    def challenge_owner_users(self) -> list[User]:
        """Owners whose access has not been revoked."""
        return [co.user for co in self.challenge_owners if co.revoked_at is None]

    @property
    def federal_partner_agencies(self) -> list[Agency]:
        return [fp.agency for fp in self.federal_partners]


class ChallengeOwner(Base):
    __tablename__ = "challenge_owners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    challenge: Mapped[Challenge] = relationship(
        "Challenge", back_populates="challenge_owners"
    )
    user: Mapped[User] = relationship("User")


class FederalPartner(Base):
    __tablename__ = "federal_partners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id"), nullable=False)

    challenge: Mapped[Challenge] = relationship(
        "Challenge", back_populates="federal_partners"
    )
    agency: Mapped[Agency] = relationship("Agency")


class NonFederalPartner(Base):
    __tablename__ = "non_federal_partners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    challenge: Mapped[Challenge] = relationship(
        "Challenge", back_populates="non_federal_partners"
    )


class Phase(Base):
    __tablename__ = "phases"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    open_to_submissions: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="phases")


class SupportingDocument(Base):
    __tablename__ = "supporting_documents"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    challenge_id: Mapped[int | None] = mapped_column(
        ForeignKey("challenges.id"), nullable=True, index=True
    )
    section: Mapped[str | None] = mapped_column(String(50), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str | None] = mapped_column(String(16), nullable=True)
    inserted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    challenge: Mapped[Challenge | None] = relationship(
        "Challenge", back_populates="supporting_documents"
    )


class TimelineEvent(Base):
    __tablename__ = "timeline_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurs_on: Mapped[date] = mapped_column(Date, nullable=False)

    challenge: Mapped[Challenge] = relationship("Challenge", back_populates="events")


class Submission(Base):
    __tablename__ = "submissions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submitter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    manager_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    phase_id: Mapped[int] = mapped_column(
        ForeignKey("phases.id"), nullable=False, index=True
    )

    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    brief_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    judging_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="not_selected"
    )
    review_verified: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    terms_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    inserted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    submitter: Mapped[User] = relationship("User", foreign_keys=[submitter_id])
    manager: Mapped[User | None] = relationship("User", foreign_keys=[manager_id])
    challenge: Mapped[Challenge] = relationship("Challenge")
    phase: Mapped[Phase] = relationship("Phase")
    documents: Mapped[list[SubmissionDocument]] = relationship(
        "SubmissionDocument", back_populates="submission"
    )

    __table_args__ = (
        Index("idx_submissions_judging", "phase_id", "judging_status"),
    )


class SubmissionDocument(Base):
    __tablename__ = "submission_documents"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    submission_id: Mapped[int | None] = mapped_column(
        ForeignKey("submissions.id"), nullable=True, index=True
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    extension: Mapped[str | None] = mapped_column(String(16), nullable=True)
    inserted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    submission: Mapped[Submission | None] = relationship(
        "Submission", back_populates="documents"
    )


class SubmissionExport(Base):
    __tablename__ = "submission_exports"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id"), nullable=False, index=True
    )
    phase_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    judging_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="all"
    )
    format: Mapped[str] = mapped_column(String(16), nullable=False, default=".csv")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    inserted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )

    challenge: Mapped[Challenge] = relationship("Challenge")


class SecurityLog(Base):
    """Append-only audit trail of security relevant actions."""

    __tablename__ = "security_log"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    originator_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    originator_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    originator_identifier: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    originator_remote_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    target_identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class CertificationLog(Base):
    """Append-only record of account certification decisions."""

    __tablename__ = "certification_log"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    approver_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approver_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    approver_identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approver_remote_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    user_identifier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_remote_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    certified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    denied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    inserted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
