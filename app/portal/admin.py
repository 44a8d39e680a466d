from datetime import date, datetime, time, timedelta

from flask import Blueprint, abort, current_app, g, jsonify, redirect, request, url_for
from sqlalchemy import func, text
from werkzeug.security import generate_password_hash

from app.portal.audit import record_event
from app.portal.db import db_session
from app.portal.models import AuditEvent, Role, User
from app.portal.modules.applications.models import Application, WebhookLog
from app.portal.rbac import require_permission, user_role_keys
from app.portal.security import is_valid_email, password_policy_errors

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    data = request.form.to_dict()
    data["roles"] = request.form.getlist("roles")
    return data


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "is_active": user.is_active,
        "must_change_password": user.must_change_password,
        "roles": user_role_keys(user),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    status = {
        "env": current_app.config.get("ENV"),
        "db_connected": False,
        "db_error": None,
        "webhook_secret_configured": bool(current_app.config.get("JOTFORM_WEBHOOK_SECRET")),
        "rate_limit_backend": current_app.config.get("RATE_LIMIT_BACKEND"),
        "applications": {},
        "recent_webhook_events": [],
    }

    # DB connectivity (lightweight)
    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception as e:
        status["db_error"] = str(e)

    if status["db_connected"]:
        rows = (
            s.query(Application.application_status, func.count(Application.id))
            .group_by(Application.application_status)
            .all()
        )
        status["applications"] = {st: int(cnt) for st, cnt in rows}
        recent = s.query(WebhookLog).order_by(WebhookLog.created_at.desc(), WebhookLog.id.desc()).limit(10).all()
        status["recent_webhook_events"] = [
            {"event_type": r.event_type, "submission_id": r.submission_id, "created_at": r.created_at.isoformat()}
            for r in recent
        ]

    return jsonify(status)


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = _current_user()
    perms = sorted({p.key for r in (user.roles or []) for p in (r.permissions or [])})
    return jsonify({"user": _user_to_dict(user), "permissions": perms})


@bp.get("/audit")
@require_permission("audit.view")
def audit_list():
    """
    Last 200 audit events, filterable by:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD, end inclusive)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    raw_from = (request.args.get("date_from") or "").strip()
    raw_to = (request.args.get("date_to") or "").strip()
    date_from = _parse_date(raw_from)
    date_to = _parse_date(raw_to)

    if (raw_from and not date_from) or (raw_to and not date_to):
        return jsonify({"error": "date_from/date_to must be YYYY-MM-DD"}), 400

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return jsonify(
        {
            "events": [
                {
                    "id": e.id,
                    "created_at": e.created_at.isoformat(),
                    "actor_email": e.actor_user_email,
                    "action": e.action,
                    "entity_type": e.entity_type,
                    "entity_id": e.entity_id,
                    "reason": e.reason,
                    "metadata_json": e.metadata_json,
                    "client_ip": e.client_ip,
                }
                for e in events
            ]
        }
    )


@bp.get("/login")
def login_redirect():
    return redirect(url_for("auth.login_get"))


# ============================================================================
# ACCOUNT MANAGEMENT (Admin Only)
# ============================================================================


@bp.get("/accounts")
@require_permission("admin.edit")
def accounts_list():
    s = db_session()
    users = s.query(User).order_by(User.email.asc()).all()
    roles = s.query(Role).order_by(Role.name.asc()).all()
    return jsonify({"users": [_user_to_dict(u) for u in users], "roles": [{"key": r.key, "name": r.name} for r in roles]})


@bp.post("/accounts")
@require_permission("admin.edit")
def accounts_create():
    s = db_session()
    u = _current_user()
    data = _payload()

    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    role_keys = [str(k) for k in (data.get("roles") or [])]

    errors: list[str] = []
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Invalid email format.")
    elif s.query(User).filter(User.email == email).one_or_none():
        errors.append("An account with this email already exists.")
    errors.extend(password_policy_errors(password))

    roles = s.query(Role).filter(Role.key.in_(role_keys)).all() if role_keys else []
    unknown = sorted(set(role_keys) - {r.key for r in roles})
    if unknown:
        errors.append(f"Unknown roles: {', '.join(unknown)}")
    if errors:
        return jsonify({"errors": errors}), 400

    new_user = User(
        email=email,
        full_name=(data.get("full_name") or "").strip() or None,
        password_hash=generate_password_hash(password),
        is_active=True,
        must_change_password=True,
    )
    new_user.roles.extend(roles)
    s.add(new_user)
    s.flush()

    record_event(
        s,
        actor=u,
        action="user.create",
        entity_type="User",
        entity_id=str(new_user.id),
        metadata={"email": email, "roles": user_role_keys(new_user)},
    )
    s.commit()
    return jsonify({"user": _user_to_dict(new_user)}), 201


@bp.get("/accounts/<int:user_id>")
@require_permission("admin.edit")
def accounts_detail(user_id: int):
    s = db_session()
    user = s.get(User, user_id)
    if not user:
        abort(404)
    return jsonify({"user": _user_to_dict(user)})


@bp.post("/accounts/<int:user_id>/update")
@require_permission("admin.edit")
def accounts_update(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        abort(404)

    if user.id == u.id:
        return jsonify({"error": "You cannot modify your own account from this endpoint."}), 400

    data = _payload()
    before = {"is_active": user.is_active, "roles": user_role_keys(user)}

    if "is_active" in data:
        user.is_active = str(data.get("is_active")).strip().lower() in ("1", "true", "yes", "on")
    if "roles" in data:
        role_keys = [str(k) for k in (data.get("roles") or [])]
        roles = s.query(Role).filter(Role.key.in_(role_keys)).all() if role_keys else []
        unknown = sorted(set(role_keys) - {r.key for r in roles})
        if unknown:
            return jsonify({"errors": [f"Unknown roles: {', '.join(unknown)}"]}), 400
        user.roles.clear()
        user.roles.extend(roles)

    after = {"is_active": user.is_active, "roles": user_role_keys(user)}
    record_event(
        s,
        actor=u,
        action="user.update",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"before": before, "after": after},
    )
    s.commit()
    return jsonify({"user": _user_to_dict(user)})


@bp.post("/accounts/<int:user_id>/reset-password")
@require_permission("admin.edit")
def accounts_reset_password(user_id: int):
    s = db_session()
    u = _current_user()
    user = s.get(User, user_id)
    if not user:
        abort(404)

    password = _payload().get("password") or ""
    errors = password_policy_errors(password)
    if errors:
        return jsonify({"errors": errors}), 400

    user.password_hash = generate_password_hash(password)
    user.must_change_password = True
    record_event(
        s,
        actor=u,
        action="user.password_reset",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"target_email": user.email, "reset_by": u.email},
    )
    s.commit()
    return jsonify({"user": _user_to_dict(user)})
