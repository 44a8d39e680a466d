import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.constants import DEFAULT_ROLES, PERMISSIONS
from app.portal.models import Permission, Role, User


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True, pool_pre_ping=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed(s: Session, *, admin_email: str, admin_password: str) -> User:
    """
    Idempotent: creates missing permissions/roles, grants missing role
    permissions and creates the admin user. Never overwrites an existing
    user's password.
    """
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, (name, granted) in DEFAULT_ROLES.items():
        role = s.query(Role).filter(Role.key == key).one_or_none()
        if not role:
            role = Role(key=key, name=name)
            s.add(role)
        for perm_key in granted:
            if perms[perm_key] not in role.permissions:
                role.permissions.append(perms[perm_key])
        roles[key] = role

    user = s.query(User).filter(User.email == admin_email).one_or_none()
    if not user:
        user = User(
            email=admin_email,
            full_name="Administrator",
            password_hash=generate_password_hash(admin_password),
            is_active=True,
            must_change_password=True,
        )
        s.add(user)
    if roles["admin"] not in user.roles:
        user.roles.append(roles["admin"])
    s.flush()
    return user


def seed_only(*, database_url: str | None = None) -> None:
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@example.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()

    # Direct engine/session so the release step need not import app.wsgi.
    with _session_scope(db_url) as s:
        seed(s, admin_email=admin_email, admin_password=admin_password)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
