from __future__ import annotations

import secrets
from dataclasses import dataclass, replace
from datetime import date
from typing import Any

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.portal.audit import record_event
from app.portal.models import Role, User
from app.portal.modules.applications.models import Agent
from app.portal.modules.investments.dividends import DividendSchedule, dividend_schedule
from app.portal.modules.investments.models import Investment, Investor
from app.portal.modules.investments.tiers import (
    EXCLUSIVE,
    INVESTMENT_TYPES,
    find_tier,
    select_tier,
    to_decimal,
)
from app.portal.security import is_valid_email

INVESTOR_ROLE = "investor"
DEFAULT_EXCLUSIVE_TIER = "EX1"

# Optional free-text profile fields accepted on registration.
INVESTOR_PROFILE_FIELDS = (
    "date_of_birth",
    "gender",
    "nationality",
    "address",
    "postcode",
    "city",
    "country",
    "contact_number",
    "occupation",
    "company_name",
    "type_of_dividend",
    "bank_account_beneficiary_name",
    "bank_name",
    "account_no",
    "emergency_contact_name",
    "emergency_contact_mobile",
)


class RegistrationError(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


@dataclass(frozen=True)
class Registration:
    investor: Investor
    investment: Investment
    created_user: bool


def _text(data: dict[str, Any], key: str) -> str:
    return str(data.get(key) or "").strip()


def _truthy(value: Any) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def register_investor(s: Session, data: dict[str, Any], *, actor: User, today: date) -> Registration:
    """
    Register an investment for an investor introduced by a consultant.

    The investor login is created on first registration (investor role, random
    password, forced change); later registrations for the same email add
    another investment to the existing investor. Caller commits.
    """
    full_name = _text(data, "full_name")
    email = _text(data, "email").lower()
    nric = _text(data, "nric")
    agent_code = _text(data, "agent_id").upper()
    investment_type = (_text(data, "investment_type") or "STANDARD").upper()

    errors: list[str] = []
    if not full_name:
        errors.append("Full name is required.")
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    if not nric:
        errors.append("NRIC/passport is required.")
    if investment_type not in INVESTMENT_TYPES:
        errors.append(f"Unknown investment type {investment_type!r}.")

    amount = None
    try:
        amount = to_decimal(data.get("investment_amount"))
        if amount <= 0:
            errors.append("Investment amount must be positive.")
    except ValueError:
        errors.append("Investment amount must be a number.")

    agent = None
    if not agent_code:
        errors.append("Consultant agent ID is required.")
    else:
        agent = s.query(Agent).filter(Agent.agent_id == agent_code).one_or_none()
        if agent is None:
            errors.append(f"Unknown consultant agent ID {agent_code!r}.")

    tier = None
    if amount is not None and amount > 0 and investment_type in INVESTMENT_TYPES:
        if investment_type == EXCLUSIVE:
            try:
                tier = find_tier(_text(data, "investment_tier") or DEFAULT_EXCLUSIVE_TIER, EXCLUSIVE)
            except ValueError as e:
                errors.append(f"{e}.")
        else:
            tier = select_tier(amount)
            if tier is None:
                errors.append(f"No STANDARD tier covers amount {amount}.")

    start_date = today
    raw_start = _text(data, "start_date")
    if raw_start:
        try:
            start_date = date.fromisoformat(raw_start)
        except ValueError:
            errors.append("Start date must be YYYY-MM-DD.")

    if errors:
        raise RegistrationError(errors)

    created_user = False
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        user = User(
            email=email,
            full_name=full_name,
            password_hash=generate_password_hash(secrets.token_urlsafe(16)),
            is_active=True,
            must_change_password=True,
        )
        s.add(user)
        created_user = True
    role = s.query(Role).filter(Role.key == INVESTOR_ROLE).one_or_none()
    if role is not None and role not in user.roles:
        user.roles.append(role)
    s.flush()

    investor = s.query(Investor).filter(Investor.user_id == user.id).one_or_none()
    if investor is None:
        investor = Investor(
            user=user,
            agent=agent,
            nric=nric,
            politically_exposed=_truthy(data.get("politically_exposed")),
            **{f: _text(data, f) or None for f in INVESTOR_PROFILE_FIELDS},
        )
        s.add(investor)
        s.flush()

    investment = Investment(
        investor=investor,
        agent=agent,
        investment_type=investment_type,
        investment_tier=tier.tier,
        investment_amount=amount,
        quarterly_rate=tier.quarterly_rate,
        yearly_rate=tier.yearly_rate,
        start_date=start_date,
        status="ACTIVE",
    )
    s.add(investment)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="investor.register",
        entity_type="Investment",
        entity_id=str(investment.id),
        metadata={
            "investor_id": investor.id,
            "email": email,
            "agent_id": agent.agent_id,
            "tier": tier.tier,
            "amount": str(amount),
            "created_user": created_user,
        },
    )
    return Registration(investor=investor, investment=investment, created_user=created_user)


def investment_schedule(investment: Investment, today: date) -> DividendSchedule:
    """Schedule from the rates stored on the investment, not the current tier table."""
    tier = replace(
        find_tier(investment.investment_tier, investment.investment_type),
        quarterly_rate=investment.quarterly_rate,
        yearly_rate=investment.yearly_rate,
    )
    return dividend_schedule(
        investment.investment_amount,
        tier,
        investment.investment_type,
        investment.start_date,
        max(today, investment.start_date),
        period_years=investment.period_years,
    )


def investment_to_dict(investment: Investment) -> dict[str, Any]:
    return {
        "id": investment.id,
        "investor_id": investment.investor_id,
        "agent_id": investment.agent.agent_id if investment.agent else None,
        "investment_type": investment.investment_type,
        "investment_tier": investment.investment_tier,
        "investment_amount": str(investment.investment_amount),
        "quarterly_rate": str(investment.quarterly_rate),
        "yearly_rate": str(investment.yearly_rate),
        "period_years": investment.period_years,
        "start_date": investment.start_date.isoformat(),
        "status": investment.status,
    }


def investor_to_dict(investor: Investor) -> dict[str, Any]:
    return {
        "id": investor.id,
        "user_id": investor.user_id,
        "full_name": investor.user.full_name,
        "email": investor.user.email,
        "nric": investor.nric,
        "agent_id": investor.agent.agent_id if investor.agent else None,
        "investments": [investment_to_dict(i) for i in investor.investments],
    }
