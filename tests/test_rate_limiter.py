import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from app.portal import create_app
from app.portal.models import Base, RateLimitCounter
from app.portal.ratelimit import (
    Counter,
    DatabaseRateLimitStore,
    MemoryRateLimitStore,
    RateLimiter,
    RateLimitRule,
    limiter_from_config,
)


class FakeClock:
    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, seconds: float) -> None:
        self.now_ms += int(seconds * 1000)


RULES = (
    RateLimitRule("/auth", 5, 15 * 60 * 1000),
    RateLimitRule("/api/admin", 3, 60 * 1000),
    RateLimitRule("/api", 10, 60 * 1000),
    RateLimitRule("", 2, 60 * 1000),
)


def _limiter(store=None, clock=None):
    return RateLimiter(store if store is not None else MemoryRateLimitStore(), RULES, clock=clock or FakeClock())


def test_auth_window_allows_five_then_rejects():
    clock = FakeClock()
    limiter = _limiter(clock=clock)

    for i in range(5):
        d = limiter.check_and_consume("1.2.3.4", "/auth/login")
        assert d.allowed
        assert d.remaining == 4 - i

    d = limiter.check_and_consume("1.2.3.4", "/auth/login")
    assert not d.allowed
    assert d.limit == 5
    assert d.retry_after == 15 * 60

    clock.advance(10 * 60)
    d = limiter.check_and_consume("1.2.3.4", "/auth/login")
    assert not d.allowed
    assert d.retry_after == 5 * 60

    clock.advance(5 * 60)
    assert limiter.check_and_consume("1.2.3.4", "/auth/login").allowed


def test_retry_after_is_at_least_one_second():
    clock = FakeClock()
    limiter = _limiter(clock=clock)
    for _ in range(3):
        limiter.check_and_consume("c", "/api/admin/applications")
    clock.advance(59.9)
    d = limiter.check_and_consume("c", "/api/admin/applications")
    assert not d.allowed
    assert d.retry_after == 1


def test_longest_prefix_wins_and_buckets_are_shared():
    limiter = _limiter()
    assert limiter.rule_for("/api/admin/applications").prefix == "/api/admin"
    assert limiter.rule_for("/api/investments/tiers").prefix == "/api"
    assert limiter.rule_for("/apiary").prefix == ""
    assert limiter.rule_for("/auth").prefix == "/auth"

    # Every path under /auth draws from the same bucket.
    for path in ("/auth/login", "/auth/logout", "/auth/change-password", "/auth/login", "/auth/login"):
        assert limiter.check_and_consume("c", path).allowed
    assert not limiter.check_and_consume("c", "/auth/anything").allowed


def test_default_rule_buckets_by_full_path():
    limiter = _limiter()
    for _ in range(2):
        assert limiter.check_and_consume("c", "/").allowed
    assert not limiter.check_and_consume("c", "/").allowed
    # Another unmatched path has its own counter.
    assert limiter.check_and_consume("c", "/dashboard").allowed


def test_clients_are_counted_separately():
    limiter = _limiter()
    for _ in range(3):
        limiter.check_and_consume("a", "/api/admin/x")
    assert not limiter.check_and_consume("a", "/api/admin/x").allowed
    assert limiter.check_and_consume("b", "/api/admin/x").allowed


def test_expired_counters_are_pruned():
    clock = FakeClock()
    store = MemoryRateLimitStore()
    limiter = _limiter(store=store, clock=clock)
    assert limiter.store is store
    limiter.check_and_consume("a", "/")
    limiter.check_and_consume("b", "/")
    assert len(store) == 2
    clock.advance(61)
    limiter.check_and_consume("c", "/")
    assert len(store) == 1


def test_exactly_one_default_rule_is_required():
    with pytest.raises(ValueError):
        RateLimiter(MemoryRateLimitStore(), (RateLimitRule("/api", 1, 1000),))


def test_database_store_shares_counts_between_limiters(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'rl.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    sm = sessionmaker(bind=engine, class_=Session, expire_on_commit=False, future=True)
    clock = FakeClock()

    first = _limiter(store=DatabaseRateLimitStore(sm), clock=clock)
    second = _limiter(store=DatabaseRateLimitStore(sm), clock=clock)

    assert first.check_and_consume("c", "/api/admin/a").allowed
    assert second.check_and_consume("c", "/api/admin/b").allowed
    assert first.check_and_consume("c", "/api/admin/c").allowed
    assert not second.check_and_consume("c", "/api/admin/d").allowed

    with sm() as s:
        row = s.get(RateLimitCounter, "c|/api/admin")
        assert row.count == 3

    clock.advance(61)
    assert second.check_and_consume("c", "/api/admin/e").allowed
    with sm() as s:
        assert s.get(RateLimitCounter, "c|/api/admin").count == 1


def _db_sessionmaker(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path/'rl.db'}", future=True)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, future=True)


def _stored_count(sm, key):
    with sm() as s:
        return s.execute(select(RateLimitCounter.count).where(RateLimitCounter.key == key)).scalar_one()


def test_database_store_insert_conflict_becomes_update(tmp_path, monkeypatch):
    sm = _db_sessionmaker(tmp_path)
    first = DatabaseRateLimitStore(sm)
    second = DatabaseRateLimitStore(sm)
    first.put("c|/api", Counter(count=1, reset_at_ms=5000))

    # Both instances read "no row" before either writes.
    monkeypatch.setattr(Session, "get", lambda self, *a, **kw: None)
    second.put("c|/api", Counter(count=2, reset_at_ms=5000))

    assert _stored_count(sm, "c|/api") == 2


def test_database_store_leaves_bulk_cleanup_to_prune(tmp_path):
    sm = _db_sessionmaker(tmp_path)
    store = DatabaseRateLimitStore(sm)
    clock = FakeClock()
    limiter = _limiter(store=store, clock=clock)

    limiter.check_and_consume("a", "/")
    clock.advance(61)
    limiter.check_and_consume("b", "/")
    # The expired counter for "a" is not swept by another client's request.
    assert _stored_count(sm, "a|/") == 1

    assert store.prune(clock()) == 1
    with sm() as s:
        assert s.get(RateLimitCounter, "a|/") is None
        assert s.get(RateLimitCounter, "b|/") is not None


def test_limiter_from_config_rejects_unknown_backend():
    with pytest.raises(RuntimeError):
        limiter_from_config({"RATE_LIMIT_BACKEND": "redis"})
    with pytest.raises(RuntimeError):
        limiter_from_config({"RATE_LIMIT_BACKEND": "database"})
    assert isinstance(limiter_from_config({}).store, MemoryRateLimitStore)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("JOTFORM_WEBHOOK_SECRET", "whsec")
    monkeypatch.setenv("RATE_LIMIT_BACKEND", "database")
    monkeypatch.delenv("RATE_LIMIT_ENABLED", raising=False)
    monkeypatch.delenv("ADMIN_IP_ALLOWLIST", raising=False)
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


def test_middleware_returns_429_with_retry_after(app):
    client = app.test_client()
    for _ in range(5):
        r = client.post("/auth/login", data={"email": "nobody@example.com", "password": "x"})
        assert r.status_code == 302

    r = client.post("/auth/login", data={"email": "nobody@example.com", "password": "x"})
    assert r.status_code == 429
    assert r.json == {"error": "Too many requests. Please try again later."}
    assert int(r.headers["Retry-After"]) > 0

    # Another client address is unaffected.
    r = client.post(
        "/auth/login",
        data={"email": "nobody@example.com", "password": "x"},
        headers={"X-Forwarded-For": "198.51.100.7"},
    )
    assert r.status_code == 302


def test_health_is_never_limited(app):
    client = app.test_client()
    for _ in range(250):
        assert client.get("/healthz").status_code == 200


def test_rate_limit_can_be_disabled(tmp_path, monkeypatch, app):
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "0")
    client = create_app().test_client()
    for _ in range(7):
        assert client.get("/auth/login").status_code == 200
