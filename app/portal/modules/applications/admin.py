from __future__ import annotations

import json

from flask import Blueprint, abort, g, jsonify, request, url_for
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.portal.constants import APPLICATION_STATUSES, KYC_STATUSES
from app.portal.db import db_session
from app.portal.models import User
from app.portal.modules.applications.models import Application, WebhookLog
from app.portal.modules.applications.service import ReviewError, application_to_dict, review_application
from app.portal.notifications import send_approval_email, send_rejection_email
from app.portal.rbac import require_permission

bp = Blueprint("applications_admin", __name__)

_PAGE_SIZE = 50


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _get_application_or_404(s: Session, application_id: int) -> Application:
    a = s.get(Application, application_id)
    if not a:
        abort(404)
    return a


def _page() -> int:
    try:
        return max(1, int(request.args.get("page") or 1))
    except ValueError:
        return 1


@bp.get("/applications")
@require_permission("applications.view")
def list_applications():
    s = db_session()
    status = (request.args.get("status") or "").strip().upper()
    search = (request.args.get("q") or "").strip()
    kyc = (request.args.get("kyc_status") or "").strip().upper()

    if status and status != "ALL" and status not in APPLICATION_STATUSES:
        return jsonify({"error": f"Unknown status {status!r}"}), 400
    if kyc and kyc not in KYC_STATUSES:
        return jsonify({"error": f"Unknown KYC status {kyc!r}"}), 400

    q = s.query(Application)
    if status and status != "ALL":
        q = q.filter(Application.application_status == status)
    if kyc:
        q = q.filter(Application.kyc_status == kyc)
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(
            or_(
                func.lower(Application.full_name).like(like),
                func.lower(Application.email).like(like),
                func.lower(Application.nric).like(like),
            )
        )

    total = q.count()
    page = _page()
    rows = (
        q.order_by(Application.created_at.desc(), Application.id.desc())
        .offset((page - 1) * _PAGE_SIZE)
        .limit(_PAGE_SIZE)
        .all()
    )

    counts = dict(
        s.query(Application.application_status, func.count(Application.id))
        .group_by(Application.application_status)
        .all()
    )
    return jsonify(
        {
            "applications": [application_to_dict(a) for a in rows],
            "total": total,
            "page": page,
            "page_size": _PAGE_SIZE,
            "stats": {
                "total": sum(counts.values()),
                "pending": counts.get("PENDING", 0),
                "approved": counts.get("APPROVED", 0),
                "rejected": counts.get("REJECTED", 0),
            },
        }
    )


@bp.get("/applications/<int:application_id>")
@require_permission("applications.view")
def application_detail(application_id: int):
    s = db_session()
    a = _get_application_or_404(s, application_id)
    return jsonify(application_to_dict(a, include_details=True))


def _review(application_id: int, action: str):
    s = db_session()
    u = _current_user()
    a = _get_application_or_404(s, application_id)
    payload = request.get_json(silent=True) or {}
    notes = (payload.get("notes") if isinstance(payload, dict) else None) or request.form.get("notes")
    try:
        outcome = review_application(s, a, action=action, actor=u, notes=(notes or "").strip() or None)
    except ReviewError as e:
        s.rollback()
        return jsonify({"error": str(e)}), 409
    s.commit()

    # Mail goes out after commit; a failed send does not undo the review.
    body = application_to_dict(a)
    if outcome.agent is not None:
        sent, detail = send_approval_email(
            applicant_name=a.full_name,
            email=outcome.agent.user.email,
            temporary_password=outcome.temporary_password,
            agent_id=outcome.agent.agent_id,
            login_url=url_for("auth.login_get", _external=True),
        )
        body["account"] = {
            "user_id": outcome.agent.user_id,
            "email": outcome.agent.user.email,
            "agent_id": outcome.agent.agent_id,
            "temporary_password": outcome.temporary_password,
        }
    elif a.email:
        sent, detail = send_rejection_email(applicant_name=a.full_name, email=a.email)
    else:
        sent, detail = False, "Application has no email address"
    body["email_sent"] = sent
    if not sent:
        body["email_error"] = detail
    return jsonify(body)


@bp.post("/applications/<int:application_id>/approve")
@require_permission("applications.approve")
def approve_application(application_id: int):
    return _review(application_id, "approve")


@bp.post("/applications/<int:application_id>/reject")
@require_permission("applications.approve")
def reject_application(application_id: int):
    return _review(application_id, "reject")


@bp.get("/webhook-logs")
@require_permission("applications.view")
def webhook_logs():
    s = db_session()
    q = s.query(WebhookLog)
    event_type = (request.args.get("event_type") or "").strip().lower()
    if event_type:
        q = q.filter(WebhookLog.event_type == event_type)
    submission_id = (request.args.get("submission_id") or "").strip()
    if submission_id:
        q = q.filter(WebhookLog.submission_id == submission_id)

    logs = q.order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc()).limit(200).all()
    return jsonify(
        {
            "logs": [
                {
                    "id": log.id,
                    "webhook_type": log.webhook_type,
                    "event_type": log.event_type,
                    "submission_id": log.submission_id,
                    "details": json.loads(log.details_json) if log.details_json else None,
                    "created_at": log.created_at.isoformat() if log.created_at else None,
                }
                for log in logs
            ]
        }
    )
