from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, g, jsonify, request

from app.portal.db import db_session
from app.portal.modules.investments.dividends import DEFAULT_PERIOD_YEARS, dividend_schedule
from app.portal.modules.investments.models import Investment, Investor
from app.portal.modules.investments.service import (
    RegistrationError,
    investment_schedule,
    investment_to_dict,
    investor_to_dict,
    register_investor,
)
from app.portal.modules.investments.tiers import (
    COMMISSION_RATES,
    INVESTMENT_TIERS,
    InvestmentTier,
    commission_breakdown,
    compute_commission,
    select_tier,
)
from app.portal.rbac import require_permission

bp = Blueprint("investments", __name__)


@bp.get("/tiers")
@require_permission("investments.view")
def list_tiers():
    return jsonify({"tiers": [t.as_dict() for t in INVESTMENT_TIERS]})


@bp.get("/tiers/select")
@require_permission("investments.view")
def select_tier_view():
    amount = (request.args.get("amount") or "0").strip()
    type_ = (request.args.get("type") or "STANDARD").strip()
    try:
        result = select_tier(amount, type_)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    if result is None:
        return jsonify({"error": f"No {type_.upper()} tier covers amount {amount}"}), 404
    if isinstance(result, InvestmentTier):
        return jsonify({"tier": result.as_dict()})
    return jsonify({"tiers": [t.as_dict() for t in result]})


@bp.get("/commission")
@require_permission("commissions.view")
def commission_view():
    principal = (request.args.get("principal") or "").strip()
    rate = (request.args.get("rate") or "").strip()
    named = (request.args.get("type") or "").strip().upper()

    if not principal:
        return jsonify({"error": "principal is required"}), 400
    try:
        if named:
            if named not in COMMISSION_RATES:
                return jsonify({"error": f"Unknown commission type {named!r}"}), 400
            amount = compute_commission(principal, COMMISSION_RATES[named])
            return jsonify({"principal": principal, "type": named, "rate": str(COMMISSION_RATES[named]), "amount": str(amount)})
        if rate:
            amount = compute_commission(principal, rate)
            return jsonify({"principal": principal, "rate": rate, "amount": str(amount)})
        breakdown = commission_breakdown(principal)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({"principal": principal, "breakdown": {k: str(v) for k, v in breakdown.items()}})


def _parse_iso_date(raw: str, name: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValueError(f"{name} must be YYYY-MM-DD")


@bp.get("/dividends")
@require_permission("investments.view")
def dividend_view():
    amount = (request.args.get("amount") or "").strip()
    tier = (request.args.get("tier") or "").strip()
    type_ = (request.args.get("type") or "STANDARD").strip()
    raw_registered = (request.args.get("registered_on") or "").strip()
    raw_today = (request.args.get("today") or "").strip()
    if not amount or not tier or not raw_registered:
        return jsonify({"error": "amount, tier and registered_on are required"}), 400
    try:
        registered_on = _parse_iso_date(raw_registered, "registered_on")
        today = _parse_iso_date(raw_today, "today") if raw_today else date.today()
        period = int(request.args.get("period_years") or DEFAULT_PERIOD_YEARS)
        schedule = dividend_schedule(amount, tier, type_, registered_on, today, period_years=period)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(schedule.as_dict())


@bp.get("/investors")
@require_permission("investors.manage")
def list_investors():
    s = db_session()
    investors = s.query(Investor).order_by(Investor.created_at.desc(), Investor.id.desc()).limit(200).all()
    return jsonify({"investors": [investor_to_dict(i) for i in investors]})


@bp.post("/investors")
@require_permission("investors.manage")
def register_investor_view():
    s = db_session()
    data = request.get_json(silent=True) if request.is_json else request.form.to_dict()
    if not isinstance(data, dict):
        data = {}
    try:
        reg = register_investor(s, data, actor=g.current_user, today=date.today())
    except RegistrationError as e:
        s.rollback()
        return jsonify({"errors": e.errors}), 400
    s.commit()
    return (
        jsonify(
            {
                "investor": investor_to_dict(reg.investor),
                "investment": investment_to_dict(reg.investment),
                "created_user": reg.created_user,
            }
        ),
        201,
    )


@bp.get("/investments/<int:investment_id>/dividends")
@require_permission("investors.manage")
def investment_dividends(investment_id: int):
    s = db_session()
    investment = s.get(Investment, investment_id)
    if not investment:
        abort(404)
    return jsonify(
        {
            "investment": investment_to_dict(investment),
            "dividends": investment_schedule(investment, date.today()).as_dict(),
        }
    )


@bp.get("/mine")
@require_permission("investments.view")
def my_investments():
    """The signed-in investor's own investments with their dividend schedules."""
    s = db_session()
    investor = s.query(Investor).filter(Investor.user_id == g.current_user.id).one_or_none()
    if investor is None:
        return jsonify({"investments": []})
    today = date.today()
    return jsonify(
        {
            "investments": [
                {**investment_to_dict(i), "dividends": investment_schedule(i, today).as_dict()}
                for i in investor.investments
            ]
        }
    )
