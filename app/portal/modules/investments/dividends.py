"""
Dividend schedule for a single investment.

Dividends are paid quarterly from the registration date. Inside the current
quarter the dividend accrues at a daily rate of quarterly_rate / 90, capped
at 90 days. Once the investment period has elapsed nothing further accrues.
"""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from app.portal.modules.investments.tiers import InvestmentTier, find_tier, to_decimal

DAYS_PER_QUARTER = 90
DEFAULT_PERIOD_YEARS = 5

_CENT = Decimal("0.01")
_RATE_PLACES = Decimal("0.000001")


def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(d.day, calendar.monthrange(year, month)[1]))


def months_elapsed(start: date, end: date) -> int:
    """Whole months from start to end (end >= start)."""
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if months > 0 and add_months(start, months) > end:
        months -= 1
    return months


def _cents(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DividendSchedule:
    tier: str
    investment_type: str
    investment_amount: Decimal
    registered_on: date
    as_of: date
    quarterly_rate: Decimal
    yearly_rate: Decimal
    daily_rate: Decimal
    current_quarter: int
    current_year: int
    days_in_current_quarter: int
    quarterly_dividend: Decimal
    yearly_dividend: Decimal
    accrued_this_quarter: Decimal
    total_dividends_paid: Decimal
    next_payment_date: date | None
    remaining_months: int

    @property
    def matured(self) -> bool:
        return self.remaining_months == 0

    @property
    def remaining_period(self) -> str:
        return f"{self.remaining_months // 12}y {self.remaining_months % 12}m"

    def as_dict(self) -> dict:
        return {
            "tier": self.tier,
            "investment_type": self.investment_type,
            "investment_amount": str(self.investment_amount),
            "registered_on": self.registered_on.isoformat(),
            "as_of": self.as_of.isoformat(),
            "quarterly_rate": str(self.quarterly_rate),
            "yearly_rate": str(self.yearly_rate),
            "daily_rate": str(self.daily_rate),
            "current_quarter": self.current_quarter,
            "current_year": self.current_year,
            "days_in_current_quarter": self.days_in_current_quarter,
            "quarterly_dividend": str(self.quarterly_dividend),
            "yearly_dividend": str(self.yearly_dividend),
            "accrued_this_quarter": str(self.accrued_this_quarter),
            "total_dividends_paid": str(self.total_dividends_paid),
            "next_payment_date": self.next_payment_date.isoformat() if self.next_payment_date else None,
            "remaining_period": self.remaining_period,
            "matured": self.matured,
        }


def dividend_schedule(
    amount: object,
    tier: str | InvestmentTier,
    type_: str,
    registered_on: date,
    today: date,
    *,
    period_years: int = DEFAULT_PERIOD_YEARS,
) -> DividendSchedule:
    """
    Raises ValueError for a non-positive amount, an unknown tier/type or an
    as-of date before registration.
    """
    principal = to_decimal(amount)
    if principal <= 0:
        raise ValueError("Investment amount must be positive.")
    if today < registered_on:
        raise ValueError("As-of date is before the registration date.")
    if period_years < 1:
        raise ValueError("Investment period must be at least one year.")

    rate_card = tier if isinstance(tier, InvestmentTier) else find_tier(tier, type_)
    quarterly_rate = rate_card.quarterly_rate
    yearly_rate = rate_card.yearly_rate

    total_months = period_years * 12
    months = months_elapsed(registered_on, today)
    remaining_months = max(0, total_months - months)

    quarterly_dividend = _cents(principal * quarterly_rate / 100)
    yearly_dividend = _cents(principal * yearly_rate / 100)
    daily_rate = (quarterly_rate / DAYS_PER_QUARTER).quantize(_RATE_PLACES, rounding=ROUND_HALF_UP)

    if remaining_months == 0:
        last_quarter = total_months // 3
        return DividendSchedule(
            tier=rate_card.tier,
            investment_type=rate_card.type,
            investment_amount=principal,
            registered_on=registered_on,
            as_of=today,
            quarterly_rate=quarterly_rate,
            yearly_rate=yearly_rate,
            daily_rate=daily_rate,
            current_quarter=last_quarter,
            current_year=period_years,
            days_in_current_quarter=0,
            quarterly_dividend=quarterly_dividend,
            yearly_dividend=yearly_dividend,
            accrued_this_quarter=Decimal("0.00"),
            total_dividends_paid=quarterly_dividend * last_quarter,
            next_payment_date=None,
            remaining_months=0,
        )

    current_quarter = months // 3 + 1
    quarter_start = add_months(registered_on, (current_quarter - 1) * 3)
    days = min(DAYS_PER_QUARTER, (today - quarter_start).days)
    accrued = _cents(principal * quarterly_rate * days / DAYS_PER_QUARTER / 100)

    return DividendSchedule(
        tier=rate_card.tier,
        investment_type=rate_card.type,
        investment_amount=principal,
        registered_on=registered_on,
        as_of=today,
        quarterly_rate=quarterly_rate,
        yearly_rate=yearly_rate,
        daily_rate=daily_rate,
        current_quarter=current_quarter,
        current_year=months // 12 + 1,
        days_in_current_quarter=days,
        quarterly_dividend=quarterly_dividend,
        yearly_dividend=yearly_dividend,
        accrued_this_quarter=accrued,
        total_dividends_paid=quarterly_dividend * (current_quarter - 1) + accrued,
        next_payment_date=add_months(registered_on, current_quarter * 3),
        remaining_months=remaining_months,
    )
