"""
Delete expired rows from rate_limit_counters (database rate-limit backend).

Usage:
  python scripts/prune_rate_limits.py
"""

from __future__ import annotations

import os
import sys
import time
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.ratelimit import DatabaseRateLimitStore


def prune(database_url: str) -> int:
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    try:
        store = DatabaseRateLimitStore(sessionmaker(bind=engine, class_=Session, expire_on_commit=False, future=True))
        return store.prune(int(time.time() * 1000))
    finally:
        engine.dispose()


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()
    removed = prune(db_url)
    print(f"Removed {removed} expired rate-limit counters.")


if __name__ == "__main__":
    main()
