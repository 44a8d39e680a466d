from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base, User


class Application(Base):
    """
    Consultant application ingested from a Jotform submission.

    Mapped answer columns are free text as received; date columns hold the
    normalized YYYY-MM-DD string, or the raw answer when it would not parse.
    """

    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("jotform_submission_id", name="uq_applications_jotform_submission_id"),
        UniqueConstraint("email", name="uq_applications_email"),
        Index("idx_applications_status", "application_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    jotform_submission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    jotform_form_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # PENDING -> APPROVED | REJECTED
    application_status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    kyc_status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")

    # Section A - personal details
    full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    nric: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    gender: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    postcode: Mapped[str | None] = mapped_column(Text, nullable=True)
    city_country: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(Text, nullable=True)  # marital status

    # Section B - bank details
    account_holder_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_number: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Section C - additional information
    previous_experience: Mapped[str | None] = mapped_column(Text, nullable=True)
    currently_promoting: Mapped[str | None] = mapped_column(Text, nullable=True)
    working_style: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Section D - beneficiary
    beneficiary_full_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_nric: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_date_of_birth: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_postcode: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_city_country: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_relation: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_contact_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_email_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_account_holder_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_bank_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    beneficiary_account_number: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Section E - authorization
    declaration: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    applicant_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    signature_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Referral
    introducer_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    introducer_id: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    invite_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    documents: Mapped[list["ApplicationDocument"]] = relationship(
        "ApplicationDocument",
        back_populates="application",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class ApplicationDocument(Base):
    __tablename__ = "application_documents"
    __table_args__ = (
        Index("idx_application_documents_submission_id", "submission_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    application_id: Mapped[int | None] = mapped_column(
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=True,
    )
    submission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    field_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    # identity | address | bank | agreement | other
    document_type: Mapped[str] = mapped_column(String(32), nullable=False, default="other")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    application: Mapped[Application | None] = relationship(
        "Application",
        back_populates="documents",
        lazy="selectin",
    )


class WebhookLog(Base):
    """Append-only outcome record, one row per webhook request."""

    __tablename__ = "webhook_logs"
    __table_args__ = (
        Index("idx_webhook_logs_submission_id", "submission_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    webhook_type: Mapped[str] = mapped_column(String(32), nullable=False, default="jotform")
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)  # success | error | duplicate
    submission_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class Agent(Base):
    """Consultant record created when an application is approved."""

    __tablename__ = "agents"
    __table_args__ = (
        UniqueConstraint("agent_id", name="uq_agents_agent_id"),
        UniqueConstraint("user_id", name="uq_agents_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(16), nullable=False)  # AGTnnnnnn
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    application_id: Mapped[int | None] = mapped_column(
        ForeignKey("applications.id", ondelete="SET NULL"),
        nullable=True,
    )
    level: Mapped[str] = mapped_column(String(32), nullable=False, default="VC_CONSULTANT")

    nric: Mapped[str | None] = mapped_column(Text, nullable=True)
    date_of_birth: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    postcode: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    introducer_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    introducer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_number: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship("User", lazy="selectin")
