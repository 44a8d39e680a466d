from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

STANDARD = "STANDARD"
EXCLUSIVE = "EXCLUSIVE"
INVESTMENT_TYPES = (STANDARD, EXCLUSIVE)

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class InvestmentTier:
    tier: str
    type: str
    min_amount: Decimal
    max_amount: Decimal | None  # inclusive; None = unbounded
    quarterly_rate: Decimal
    yearly_rate: Decimal

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount

    def as_dict(self) -> dict:
        return {
            "tier": self.tier,
            "type": self.type,
            "min_amount": str(self.min_amount),
            "max_amount": str(self.max_amount) if self.max_amount is not None else None,
            "quarterly_rate": str(self.quarterly_rate),
            "yearly_rate": str(self.yearly_rate),
        }


def _tier(tier: str, type_: str, min_amount: int, max_amount: int | None, quarterly: str, yearly: str) -> InvestmentTier:
    return InvestmentTier(
        tier=tier,
        type=type_,
        min_amount=Decimal(min_amount),
        max_amount=Decimal(max_amount) if max_amount is not None else None,
        quarterly_rate=Decimal(quarterly),
        yearly_rate=Decimal(yearly),
    )


INVESTMENT_TIERS: tuple[InvestmentTier, ...] = (
    _tier("A1", STANDARD, 25000, 25000, "2.0", "8.0"),
    _tier("A", STANDARD, 50000, 50000, "3.0", "12.0"),
    _tier("B", STANDARD, 100000, 150000, "3.5", "14.0"),
    _tier("C", STANDARD, 200000, 450000, "3.6", "14.5"),
    _tier("D", STANDARD, 500000, 950000, "3.9", "15.5"),
    _tier("E", STANDARD, 1000000, None, "4.1", "16.5"),
    _tier("EX1", EXCLUSIVE, 0, None, "2.5", "11.0"),
    _tier("EX2", EXCLUSIVE, 0, None, "3.5", "14.2"),
    _tier("EX3", EXCLUSIVE, 0, None, "4.0", "15.5"),
    _tier("EX4", EXCLUSIVE, 0, None, "4.3", "17.0"),
    _tier("EX5", EXCLUSIVE, 0, None, "5.0", "19.5"),
    _tier("EX6", EXCLUSIVE, 0, None, "5.5", "22.0"),
)

# Percent of principal
COMMISSION_RATES: dict[str, Decimal] = {
    "PASSIVE": Decimal("2.0"),
    "ONE_OFF": Decimal("10.0"),
    "BUSINESS_DEV": Decimal("1.5"),
    "STRATEGY_PARTNER": Decimal("0.8"),
    "GENERAL_MANAGER": Decimal("0.5"),
}


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a number: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return d


def tiers_of_type(type_: str) -> tuple[InvestmentTier, ...]:
    return tuple(t for t in INVESTMENT_TIERS if t.type == type_)


def select_tier(amount: object, type_: str = STANDARD) -> InvestmentTier | tuple[InvestmentTier, ...] | None:
    """
    STANDARD: the band containing `amount`, or None when no band does
    (bands are not contiguous: 30000 falls between A1 and A).
    EXCLUSIVE: every exclusive tier; choosing one is a manual decision.
    """
    kind = (type_ or "").strip().upper()
    if kind not in INVESTMENT_TYPES:
        raise ValueError(f"Unknown investment type {type_!r}")
    if kind == EXCLUSIVE:
        return tiers_of_type(EXCLUSIVE)

    value = to_decimal(amount)
    for tier in tiers_of_type(STANDARD):
        if tier.contains(value):
            return tier
    return None


def compute_commission(principal: object, rate_percent: object) -> Decimal:
    """principal * rate / 100, rounded half-up to cents."""
    raw = to_decimal(principal) * to_decimal(rate_percent) / Decimal(100)
    return raw.quantize(_CENT, rounding=ROUND_HALF_UP)


def commission_breakdown(principal: object) -> dict[str, Decimal]:
    return {name: compute_commission(principal, rate) for name, rate in COMMISSION_RATES.items()}


# Standard band -> exclusive rate card used when a band pays exclusive dividends.
EXCLUSIVE_COUNTERPART: dict[str, str] = {
    std.tier: ex.tier for std, ex in zip(tiers_of_type(STANDARD), tiers_of_type(EXCLUSIVE))
}


def find_tier(tier: str, type_: str = STANDARD) -> InvestmentTier:
    """
    Look up a tier by key for the given dividend type. An EXCLUSIVE lookup
    accepts either an EX key or a standard band key (mapped to its
    exclusive counterpart).
    """
    kind = (type_ or "").strip().upper()
    if kind not in INVESTMENT_TYPES:
        raise ValueError(f"Unknown investment type {type_!r}")
    key = (tier or "").strip().upper()
    if kind == EXCLUSIVE:
        key = EXCLUSIVE_COUNTERPART.get(key, key)
    for t in tiers_of_type(kind):
        if t.tier == key:
            return t
    raise ValueError(f"Unknown {kind} tier {tier!r}")
