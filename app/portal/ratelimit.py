"""
Fixed-window request rate limiter.

Counters are keyed by (client address, route bucket). The bucket is the
longest configured path prefix matching the request; requests that fall
through to the default rule are bucketed by their full path.

Two stores are provided:
- MemoryRateLimitStore: process-local, for single-instance deployments.
  Expired entries are pruned on every check.
- DatabaseRateLimitStore: rows in rate_limit_counters, shared by every
  instance pointed at the same database. An expired row is overwritten when
  its key is next seen; bulk cleanup is scripts/prune_rate_limits.py.

Neither store makes check-and-increment atomic across instances; a burst of
concurrent requests can overshoot the limit by the number of racing workers.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.portal.models import RateLimitCounter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    prefix: str  # "" marks the default rule
    requests: int
    window_ms: int


DEFAULT_RULES: tuple[RateLimitRule, ...] = (
    RateLimitRule("/auth", 5, 15 * 60 * 1000),
    RateLimitRule("/admin", 20, 60 * 1000),
    RateLimitRule("/api/admin", 20, 60 * 1000),
    RateLimitRule("/api", 100, 60 * 1000),
    RateLimitRule("", 200, 60 * 1000),
)


@dataclass
class Counter:
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0  # seconds, only meaningful when rejected


class RateLimitStore:
    prune_on_check = False

    def get(self, key: str) -> Counter | None:
        raise NotImplementedError

    def put(self, key: str, counter: Counter) -> None:
        raise NotImplementedError

    def prune(self, now_ms: int) -> int:
        raise NotImplementedError


class MemoryRateLimitStore(RateLimitStore):
    prune_on_check = True

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}

    def __len__(self) -> int:
        return len(self._counters)

    def get(self, key: str) -> Counter | None:
        c = self._counters.get(key)
        return Counter(c.count, c.reset_at_ms) if c else None

    def put(self, key: str, counter: Counter) -> None:
        self._counters[key] = Counter(counter.count, counter.reset_at_ms)

    def prune(self, now_ms: int) -> int:
        expired = [k for k, c in self._counters.items() if c.reset_at_ms <= now_ms]
        for k in expired:
            del self._counters[k]
        return len(expired)


class DatabaseRateLimitStore(RateLimitStore):
    """Each call runs in its own short transaction."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> Counter | None:
        s: Session = self._session_factory()
        try:
            row = s.get(RateLimitCounter, key)
            return Counter(row.count, row.reset_at_ms) if row else None
        finally:
            s.close()

    def put(self, key: str, counter: Counter) -> None:
        s: Session = self._session_factory()
        try:
            row = s.get(RateLimitCounter, key)
            if row is None:
                s.add(RateLimitCounter(key=key, count=counter.count, reset_at_ms=counter.reset_at_ms))
            else:
                row.count = counter.count
                row.reset_at_ms = counter.reset_at_ms
            try:
                s.commit()
            except IntegrityError:
                # Another instance inserted the same key first; take its row over.
                s.rollback()
                s.execute(
                    update(RateLimitCounter)
                    .where(RateLimitCounter.key == key)
                    .values(count=counter.count, reset_at_ms=counter.reset_at_ms)
                )
                s.commit()
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    def prune(self, now_ms: int) -> int:
        s: Session = self._session_factory()
        try:
            result = s.execute(delete(RateLimitCounter).where(RateLimitCounter.reset_at_ms <= now_ms))
            s.commit()
            return result.rowcount or 0
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        rules: Iterable[RateLimitRule] = DEFAULT_RULES,
        *,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        rules = tuple(rules)
        defaults = [r for r in rules if not r.prefix]
        if len(defaults) != 1:
            raise ValueError("Exactly one default rule (empty prefix) is required.")
        self.store = store
        self.default_rule = defaults[0]
        # Longest prefix first so specific routes win over broader ones.
        self.rules = tuple(sorted((r for r in rules if r.prefix), key=lambda r: len(r.prefix), reverse=True))
        self._clock = clock
        self._lock = threading.Lock()

    def rule_for(self, path: str) -> RateLimitRule:
        for rule in self.rules:
            if path == rule.prefix or path.startswith(rule.prefix.rstrip("/") + "/"):
                return rule
        return self.default_rule

    def bucket_for(self, path: str) -> tuple[RateLimitRule, str]:
        rule = self.rule_for(path)
        return rule, (rule.prefix or path)

    def check_and_consume(self, client: str, path: str) -> RateLimitDecision:
        rule, bucket = self.bucket_for(path)
        key = f"{client}|{bucket}"
        with self._lock:
            now = self._clock()
            if self.store.prune_on_check:
                self.store.prune(now)
            counter = self.store.get(key)
            if counter is None or now >= counter.reset_at_ms:
                counter = Counter(count=0, reset_at_ms=now + rule.window_ms)

            if counter.count >= rule.requests:
                retry_after = max(1, math.ceil((counter.reset_at_ms - now) / 1000))
                return RateLimitDecision(allowed=False, limit=rule.requests, remaining=0, retry_after=retry_after)

            counter.count += 1
            self.store.put(key, counter)
            return RateLimitDecision(
                allowed=True,
                limit=rule.requests,
                remaining=rule.requests - counter.count,
            )


def limiter_from_config(config: dict, session_factory: sessionmaker | None = None) -> RateLimiter:
    backend = (config.get("RATE_LIMIT_BACKEND") or "memory").strip().lower()
    if backend == "database":
        if session_factory is None:
            raise RuntimeError("RATE_LIMIT_BACKEND=database requires an initialized database.")
        store: RateLimitStore = DatabaseRateLimitStore(session_factory)
    elif backend == "memory":
        store = MemoryRateLimitStore()
    else:
        raise RuntimeError(f"Unknown RATE_LIMIT_BACKEND {backend!r} (expected 'memory' or 'database').")
    logger.info("Rate limiter initialized (backend=%s)", backend)
    return RateLimiter(store)
