import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ims.constants import PERMISSIONS, ROLE_ADMIN, ROLE_PERMISSIONS, ROLES  # noqa: E402
from app.ims.db import make_engine, make_sessionmaker  # noqa: E402
from app.ims.models import Permission, Role, User  # noqa: E402

logger = logging.getLogger("ims.init_db")


@contextmanager
def _session_scope(database_url: str):
    engine = make_engine(database_url)
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()


def seed_roles_and_permissions(s: Session) -> dict[str, Role]:
    """Create any missing permissions/roles and grant each role its default permissions."""
    perms: dict[str, Permission] = {}
    for key, name in PERMISSIONS.items():
        p = s.query(Permission).filter(Permission.key == key).one_or_none()
        if not p:
            p = Permission(key=key, name=name)
            s.add(p)
        perms[key] = p

    roles: dict[str, Role] = {}
    for key, name in ROLES.items():
        r = s.query(Role).filter(Role.key == key).one_or_none()
        if not r:
            r = Role(key=key, name=name)
            s.add(r)
        for perm_key in ROLE_PERMISSIONS.get(key, ()):
            if perms[perm_key] not in r.permissions:
                r.permissions.append(perms[perm_key])
        roles[key] = r
    return roles


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@ims.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///ims.db").strip()

    # Direct engine/session so release can run this without building the Flask app.
    with _session_scope(db_url) as s:
        roles = seed_roles_and_permissions(s)

        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                first_name="System",
                last_name="Administrator",
                is_active=True,
            )
            s.add(user)
        if roles[ROLE_ADMIN] not in user.roles:
            user.roles.append(roles[ROLE_ADMIN])

    logger.info("Initialized database (seed_only). Admin email: %s", admin_email)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
