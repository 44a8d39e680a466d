from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.portal.models import Base, User
from app.portal.modules.applications.models import Agent


class Investor(Base):
    __tablename__ = "investors"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_investors_user_id"),
        Index("idx_investors_agent_id", "agent_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Introducing consultant
    agent_id: Mapped[int | None] = mapped_column(ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)

    nric: Mapped[str] = mapped_column(Text, nullable=False)
    date_of_birth: Mapped[str | None] = mapped_column(Text, nullable=True)
    gender: Mapped[str | None] = mapped_column(Text, nullable=True)
    nationality: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    postcode: Mapped[str | None] = mapped_column(Text, nullable=True)
    city: Mapped[str | None] = mapped_column(Text, nullable=True)
    country: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    occupation: Mapped[str | None] = mapped_column(Text, nullable=True)
    company_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    type_of_dividend: Mapped[str | None] = mapped_column(Text, nullable=True)
    politically_exposed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    bank_account_beneficiary_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    bank_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    account_no: Mapped[str | None] = mapped_column(Text, nullable=True)

    emergency_contact_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    emergency_contact_mobile: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship("User", lazy="selectin")
    agent: Mapped[Agent | None] = relationship("Agent", lazy="selectin")
    investments: Mapped[list["Investment"]] = relationship(
        "Investment",
        back_populates="investor",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Investment.id",
    )


class Investment(Base):
    __tablename__ = "investments"
    __table_args__ = (
        Index("idx_investments_investor_id", "investor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    investor_id: Mapped[int] = mapped_column(ForeignKey("investors.id", ondelete="CASCADE"), nullable=False)
    agent_id: Mapped[int | None] = mapped_column(ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)

    investment_type: Mapped[str] = mapped_column(String(16), nullable=False)  # STANDARD | EXCLUSIVE
    investment_tier: Mapped[str] = mapped_column(String(8), nullable=False)
    investment_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    # Rates are copied from the tier table at registration time.
    quarterly_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    yearly_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    period_years: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ACTIVE")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    investor: Mapped[Investor] = relationship("Investor", back_populates="investments")
    agent: Mapped[Agent | None] = relationship("Agent", lazy="selectin")
