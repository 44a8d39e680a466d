"""Password policy, change-password flow and admin account management."""
import pytest
from werkzeug.security import check_password_hash, generate_password_hash

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import Base, User
from app.portal.security import password_policy_errors
from scripts.init_db import seed

CSRF = "test-csrf-token"
STRONG = "N3w-Passw0rd!"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("JOTFORM_WEBHOOK_SECRET", "whsec")
    for k in ("ADMIN_IP_ALLOWLIST", "RATE_LIMIT_BACKEND", "RATE_LIMIT_ENABLED"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    with session_scope(app) as s:
        admin = seed(s, admin_email="admin@example.com", admin_password="pw")
        admin.must_change_password = False
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com", password="pw"):
    r = client.post("/auth/login", data={"email": email, "password": password})
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF
    return r


def test_password_policy():
    assert password_policy_errors(STRONG) == []
    errors = password_policy_errors("short")
    assert "Password must be at least 8 characters long." in errors
    assert "Password must contain at least one uppercase letter." in errors
    assert "Password must contain at least one number." in errors
    assert "Password must contain at least one special character." in errors


def test_seed_is_idempotent(app):
    with session_scope(app) as s:
        seed(s, admin_email="admin@example.com", admin_password="other")
    with session_scope(app) as s:
        admin = s.query(User).filter(User.email == "admin@example.com").one()
        assert check_password_hash(admin.password_hash, "pw")
        assert [r.key for r in admin.roles] == ["admin"]
        assert "applications.approve" in {p.key for p in admin.roles[0].permissions}


def test_create_account_and_forced_password_change(app, client):
    _login(client)
    r = client.post(
        "/admin/accounts",
        json={"email": "Con@Example.com", "password": STRONG, "roles": ["consultant"], "full_name": "Con Sultant"},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 201
    assert r.json["user"]["email"] == "con@example.com"
    assert r.json["user"]["roles"] == ["consultant"]
    assert r.json["user"]["must_change_password"] is True

    consultant = app.test_client()
    r = _login(consultant, "con@example.com", STRONG)
    assert r.headers["Location"].endswith("/auth/change-password")

    r = consultant.post(
        "/auth/change-password",
        data={
            "csrf_token": CSRF,
            "current_password": STRONG,
            "new_password": "An0ther-Secret!",
            "confirm_password": "An0ther-Secret!",
        },
    )
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")

    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "con@example.com").one()
        assert u.must_change_password is False
        assert check_password_hash(u.password_hash, "An0ther-Secret!")

    r = consultant.get("/dashboard")
    assert set(r.json["areas"]) == {"investments", "commissions"}


def test_weak_password_change_is_refused(app, client):
    _login(client)
    r = client.post(
        "/auth/change-password",
        data={"csrf_token": CSRF, "current_password": "pw", "new_password": "weak", "confirm_password": "weak"},
    )
    assert r.headers["Location"].endswith("/auth/change-password")
    with session_scope(app) as s:
        u = s.query(User).filter(User.email == "admin@example.com").one()
        assert check_password_hash(u.password_hash, "pw")


def test_create_account_validation(client):
    _login(client)
    r = client.post(
        "/admin/accounts",
        json={"email": "not-an-email", "password": "weak", "roles": ["wizard"]},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 400
    assert "Invalid email format." in r.json["errors"]
    assert "Unknown roles: wizard" in r.json["errors"]

    r = client.post(
        "/admin/accounts",
        json={"email": "admin@example.com", "password": STRONG},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 400
    assert "An account with this email already exists." in r.json["errors"]


def test_update_and_reset_password(app, client):
    with session_scope(app) as s:
        u = User(email="inv@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        s.add(u)
        s.flush()
        user_id = u.id

    _login(client)
    r = client.post(
        f"/admin/accounts/{user_id}/update",
        json={"is_active": False, "roles": ["investor"]},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 200
    assert r.json["user"]["is_active"] is False
    assert r.json["user"]["roles"] == ["investor"]

    r = client.post(
        f"/admin/accounts/{user_id}/reset-password",
        json={"password": STRONG},
        headers={"X-CSRF-Token": CSRF},
    )
    assert r.status_code == 200
    assert r.json["user"]["must_change_password"] is True

    r = client.get("/admin/audit?action=user.")
    assert {e["action"] for e in r.json["events"]} == {"user.update", "user.password_reset"}
