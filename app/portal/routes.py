from flask import Blueprint, g, jsonify, redirect, render_template, request, url_for

from app.portal.rbac import user_has_permission, user_role_keys

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return render_template("public/index.html")


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """Fast liveness check. No DB access."""
    return "ok", 200


@bp.get("/dashboard")
def dashboard():
    """Role-aware landing payload: which areas the signed-in user may open."""
    user = getattr(g, "current_user", None)
    if not user:
        return redirect(url_for("auth.login_get", next=request.path))

    areas = {
        "admin": ("admin.view", url_for("admin.index")),
        "applications": ("applications.view", url_for("applications_admin.list_applications")),
        "investments": ("investments.view", url_for("investments.list_tiers")),
        "commissions": ("commissions.view", url_for("investments.commission_view")),
        "investors": ("investors.manage", url_for("investments.list_investors")),
    }
    return jsonify(
        {
            "user": {"id": user.id, "email": user.email, "full_name": user.full_name},
            "roles": user_role_keys(user),
            "areas": {name: href for name, (perm, href) in areas.items() if user_has_permission(user, perm)},
        }
    )
