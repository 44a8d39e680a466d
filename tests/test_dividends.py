from datetime import date
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import AuditEvent, Base, Permission, Role, User
from app.portal.modules.applications.models import Agent
from app.portal.modules.investments.dividends import add_months, dividend_schedule, months_elapsed
from app.portal.modules.investments.models import Investment, Investor
from app.portal.modules.investments.tiers import EXCLUSIVE, find_tier

CSRF = "test-csrf-token"


def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 11, 30), 3) == date(2024, 2, 29)
    assert add_months(date(2024, 1, 15), 12) == date(2025, 1, 15)


def test_months_elapsed_counts_whole_months():
    assert months_elapsed(date(2024, 1, 15), date(2024, 3, 1)) == 1
    assert months_elapsed(date(2024, 1, 15), date(2024, 3, 15)) == 2
    assert months_elapsed(date(2024, 1, 31), date(2024, 2, 29)) == 1
    assert months_elapsed(date(2024, 1, 15), date(2024, 1, 20)) == 0


def test_find_tier():
    assert find_tier("b").tier == "B"
    assert find_tier("EX4", EXCLUSIVE).quarterly_rate == Decimal("4.3")
    # A standard band key resolves to its exclusive counterpart.
    assert find_tier("A1", EXCLUSIVE).tier == "EX1"
    assert find_tier("E", "exclusive").tier == "EX6"
    with pytest.raises(ValueError):
        find_tier("EX1")
    with pytest.raises(ValueError):
        find_tier("B", "PLATINUM")


def test_schedule_mid_first_quarter():
    sched = dividend_schedule(100000, "B", "STANDARD", date(2024, 1, 15), date(2024, 3, 1))
    assert sched.current_quarter == 1
    assert sched.current_year == 1
    # 2024-01-15 .. 2024-03-01 is 46 days (leap February)
    assert sched.days_in_current_quarter == 46
    assert sched.quarterly_dividend == Decimal("3500.00")
    assert sched.yearly_dividend == Decimal("14000.00")
    # 100000 * 3.5% * 46 / 90 = 1788.888...
    assert sched.accrued_this_quarter == Decimal("1788.89")
    assert sched.total_dividends_paid == Decimal("1788.89")
    assert sched.daily_rate == Decimal("0.038889")
    assert sched.next_payment_date == date(2024, 4, 15)
    assert sched.remaining_period == "4y 11m"
    assert not sched.matured


def test_schedule_counts_completed_quarters():
    sched = dividend_schedule("100000", "B", "STANDARD", date(2024, 1, 15), date(2024, 8, 20))
    assert sched.current_quarter == 3
    assert sched.days_in_current_quarter == 36
    assert sched.accrued_this_quarter == Decimal("1400.00")
    assert sched.total_dividends_paid == Decimal("8400.00")
    assert sched.next_payment_date == date(2024, 10, 15)


def test_schedule_on_registration_day_has_nothing_accrued():
    sched = dividend_schedule(25000, "A1", "STANDARD", date(2024, 5, 1), date(2024, 5, 1))
    assert sched.current_quarter == 1
    assert sched.accrued_this_quarter == Decimal("0.00")
    assert sched.total_dividends_paid == Decimal("0.00")
    assert sched.remaining_period == "5y 0m"


def test_matured_investment_stops_accruing():
    sched = dividend_schedule(100000, "B", "STANDARD", date(2019, 1, 15), date(2024, 6, 1))
    assert sched.matured
    assert sched.current_quarter == 20
    assert sched.accrued_this_quarter == Decimal("0.00")
    assert sched.total_dividends_paid == Decimal("70000.00")
    assert sched.next_payment_date is None
    assert sched.as_dict()["remaining_period"] == "0y 0m"


def test_exclusive_schedule_uses_counterpart_rates():
    sched = dividend_schedule(100000, "B", EXCLUSIVE, date(2024, 1, 15), date(2024, 1, 15))
    assert sched.tier == "EX3"
    assert sched.investment_type == EXCLUSIVE
    assert sched.quarterly_dividend == Decimal("4000.00")
    assert sched.yearly_dividend == Decimal("15500.00")


def test_schedule_rejects_bad_input():
    with pytest.raises(ValueError):
        dividend_schedule(0, "B", "STANDARD", date(2024, 1, 1), date(2024, 2, 1))
    with pytest.raises(ValueError):
        dividend_schedule(100000, "B", "STANDARD", date(2024, 2, 1), date(2024, 1, 1))
    with pytest.raises(ValueError):
        dividend_schedule(100000, "Z", "STANDARD", date(2024, 1, 1), date(2024, 2, 1))
    with pytest.raises(ValueError):
        dividend_schedule(100000, "B", "STANDARD", date(2024, 1, 1), date(2024, 2, 1), period_years=0)


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
        p_inv = Permission(key="investments.view", name="Investments: view tiers")
        p_manage = Permission(key="investors.manage", name="Investors: register and view")
        admin = Role(key="admin", name="Administrator")
        admin.permissions.extend([p_inv, p_manage])
        investor = Role(key="investor", name="Investor")
        investor.permissions.append(p_inv)
        consultant = Role(key="consultant", name="Consultant")
        a = User(email="admin@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        a.roles.append(admin)
        c = User(email="consultant@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        c.roles.append(consultant)
        s.add_all([p_inv, p_manage, admin, investor, consultant, a, c])
        s.add(Agent(agent_id="AGT000123", user=c, city="Kuala Lumpur", country="Malaysia"))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email="admin@example.com", password="pw"):
    client.post("/auth/login", data={"email": email, "password": password})
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _register(client, **overrides):
    payload = {
        "full_name": "Lee Wei",
        "email": "lee@example.com",
        "nric": "850101-14-5678",
        "agent_id": "agt000123",
        "investment_amount": "100000",
        "start_date": "2024-01-15",
    }
    payload.update(overrides)
    return client.post("/api/investments/investors", json=payload, headers={"X-CSRF-Token": CSRF})


def test_dividend_endpoint(app, client):
    _login(client)
    r = client.get("/api/investments/dividends?amount=100000&tier=B&registered_on=2024-01-15&today=2024-03-01")
    assert r.status_code == 200
    assert r.json["tier"] == "B"
    assert r.json["quarterly_dividend"] == "3500.00"
    assert r.json["accrued_this_quarter"] == "1788.89"
    assert r.json["next_payment_date"] == "2024-04-15"
    assert r.json["matured"] is False

    r = client.get("/api/investments/dividends?amount=100000&tier=B&type=exclusive&registered_on=2024-01-15&today=2024-01-15")
    assert r.json["tier"] == "EX3"

    assert client.get("/api/investments/dividends?amount=100000&tier=B").status_code == 400
    r = client.get("/api/investments/dividends?amount=100000&tier=B&registered_on=15/01/2024")
    assert r.status_code == 400
    assert r.json == {"error": "registered_on must be YYYY-MM-DD"}
    r = client.get("/api/investments/dividends?amount=100000&tier=B&registered_on=2024-02-01&today=2024-01-01")
    assert r.status_code == 400


def test_registration_requires_permission(app, client):
    _login(client, "consultant@example.com")
    r = _register(client)
    assert r.status_code == 403


def test_register_investor_selects_tier_and_creates_login(app, client):
    _login(client)
    r = _register(client)
    assert r.status_code == 201
    assert r.json["created_user"] is True
    inv = r.json["investment"]
    assert inv["investment_tier"] == "B"
    assert inv["investment_type"] == "STANDARD"
    assert inv["agent_id"] == "AGT000123"
    assert inv["start_date"] == "2024-01-15"
    assert Decimal(inv["quarterly_rate"]) == Decimal("3.5")
    assert Decimal(inv["yearly_rate"]) == Decimal("14.0")
    assert r.json["investor"]["agent_id"] == "AGT000123"

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "lee@example.com").one()
        assert user.full_name == "Lee Wei"
        assert user.must_change_password is True
        assert [role.key for role in user.roles] == ["investor"]
        investor = s.query(Investor).filter(Investor.user_id == user.id).one()
        assert investor.nric == "850101-14-5678"
        assert investor.agent.agent_id == "AGT000123"
        ev = s.query(AuditEvent).filter(AuditEvent.action == "investor.register").one()
        assert ev.actor_user_email == "admin@example.com"

    r = client.get("/api/investments/investors")
    assert [i["email"] for i in r.json["investors"]] == ["lee@example.com"]


def test_second_registration_reuses_investor(app, client):
    _login(client)
    first = _register(client).json
    r = _register(client, investment_amount="25000")
    assert r.status_code == 201
    assert r.json["created_user"] is False
    assert r.json["investor"]["id"] == first["investor"]["id"]
    assert [i["investment_tier"] for i in r.json["investor"]["investments"]] == ["B", "A1"]
    with session_scope(app) as s:
        assert s.query(Investor).count() == 1
        assert s.query(Investment).count() == 2


def test_register_exclusive_investment(app, client):
    _login(client)
    r = _register(client, investment_type="exclusive", investment_tier="EX4", investment_amount="30000")
    assert r.status_code == 201
    assert r.json["investment"]["investment_tier"] == "EX4"
    assert Decimal(r.json["investment"]["quarterly_rate"]) == Decimal("4.3")


def test_registration_validation(app, client):
    _login(client)
    r = _register(client, investment_amount="30000")
    assert r.status_code == 400
    assert r.json == {"errors": ["No STANDARD tier covers amount 30000."]}

    r = _register(client, agent_id="AGT999999", investment_type="bogus", email="not-an-email")
    assert r.status_code == 400
    assert r.json["errors"] == [
        "Invalid email format.",
        "Unknown investment type 'BOGUS'.",
        "Unknown consultant agent ID 'AGT999999'.",
    ]

    with session_scope(app) as s:
        assert s.query(Investment).count() == 0
        assert s.query(User).filter(User.email == "lee@example.com").count() == 0


def test_registration_requires_csrf(app, client):
    _login(client)
    r = client.post("/api/investments/investors", json={"full_name": "Lee Wei"})
    assert r.status_code == 400
    with session_scope(app) as s:
        assert s.query(Investor).count() == 0


def test_investment_dividends_and_own_investments(app, client):
    _login(client)
    investment_id = _register(client).json["investment"]["id"]

    r = client.get(f"/api/investments/investments/{investment_id}/dividends")
    assert r.status_code == 200
    assert r.json["investment"]["id"] == investment_id
    assert r.json["dividends"]["tier"] == "B"
    assert r.json["dividends"]["quarterly_dividend"] == "3500.00"
    assert r.json["dividends"]["registered_on"] == "2024-01-15"
    assert client.get("/api/investments/investments/999/dividends").status_code == 404

    with session_scope(app) as s:
        user = s.query(User).filter(User.email == "lee@example.com").one()
        user.password_hash = generate_password_hash("Investor1!")
        user.must_change_password = False

    investor = app.test_client()
    _login(investor, "lee@example.com", "Investor1!")
    r = investor.get("/api/investments/mine")
    assert r.status_code == 200
    (mine,) = r.json["investments"]
    assert mine["id"] == investment_id
    assert mine["dividends"]["yearly_dividend"] == "14000.00"

    # An investor role without investments yet gets an empty list.
    with session_scope(app) as s:
        other = User(email="new@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        other.roles.append(s.query(Role).filter(Role.key == "investor").one())
        s.add(other)
    newcomer = app.test_client()
    _login(newcomer, "new@example.com")
    assert newcomer.get("/api/investments/mine").json == {"investments": []}
