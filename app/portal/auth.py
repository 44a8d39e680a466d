from __future__ import annotations

import uuid

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal.audit import record_event
from app.portal.db import db_session
from app.portal.models import User
from app.portal.security import password_policy_errors

bp = Blueprint("auth", __name__)


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz", "/api/webhooks/")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.get("/login")
def login_get():
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            flash("Invalid credentials.", "danger")
            return redirect(url_for("auth.login_get"))

        session.clear()
        session["user_id"] = user.id
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        if user.must_change_password:
            flash("Please choose a new password.", "warning")
            return redirect(url_for("auth.change_password_get"))
        # Only allow local paths to avoid open redirects.
        if nxt.startswith("/") and not nxt.startswith("//"):
            return redirect(nxt)
        return redirect(url_for("routes.dashboard"))
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))


@bp.get("/change-password")
def change_password_get():
    if not getattr(g, "current_user", None):
        return redirect(url_for("auth.login_get", next=request.path))
    return render_template("auth/change_password.html")


@bp.post("/change-password")
def change_password_post():
    user: User | None = getattr(g, "current_user", None)
    if not user:
        return redirect(url_for("auth.login_get", next=request.path))

    current = request.form.get("current_password") or ""
    new = request.form.get("new_password") or ""
    confirm = request.form.get("confirm_password") or ""

    errors: list[str] = []
    if not check_password_hash(user.password_hash, current):
        errors.append("Current password is incorrect.")
    if new != confirm:
        errors.append("Passwords do not match.")
    errors.extend(password_policy_errors(new))
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("auth.change_password_get"))

    s = db_session()
    user.password_hash = generate_password_hash(new)
    user.must_change_password = False
    s.add(user)
    record_event(s, actor=user, action="auth.password_change", entity_type="User", entity_id=str(user.id))
    s.commit()
    flash("Password updated.", "success")
    return redirect(url_for("routes.dashboard"))
