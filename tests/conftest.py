import pytest
from werkzeug.security import generate_password_hash

from app.ims import auth as auth_module
from app.ims import create_app
from app.ims.db import session_scope
from app.ims.models import Base, User
from scripts.init_db import seed_roles_and_permissions

PASSWORD = "password123"

SEED_USERS = (
    # email, role key, first, last, department
    ("admin@example.com", "admin", "Ada", "Admin", None),
    ("manager@example.com", "compliance_manager", "Cora", "Manager", None),
    ("head@example.com", "dept_head", "Hal", "Head", "Quality"),
    ("creator@example.com", "creator", "Cal", "Creator", "Quality"),
    ("reviewer@example.com", "reviewer", "Rae", "Reviewer", "Production"),
    ("viewer@example.com", "viewer", "Vic", "Viewer", None),
)


def _build_app(tmp_path, monkeypatch, *, csrf: bool):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "uploads"))
    monkeypatch.setenv("CSRF_ENABLED", "1" if csrf else "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "REPORT_LOGO_PATH"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        roles = seed_roles_and_permissions(s)
        for email, role_key, first, last, dept in SEED_USERS:
            u = User(
                email=email,
                password_hash=generate_password_hash(PASSWORD),
                first_name=first,
                last_name=last,
                department=dept,
                is_active=True,
            )
            u.roles.append(roles[role_key])
            s.add(u)
    return app


@pytest.fixture(autouse=True)
def _reset_login_rate_limit():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def app(tmp_path, monkeypatch):
    return _build_app(tmp_path, monkeypatch, csrf=False)


@pytest.fixture()
def csrf_app(tmp_path, monkeypatch):
    return _build_app(tmp_path, monkeypatch, csrf=True)


def login(client, email: str, password: str = PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture()
def client_for(app):
    """Factory: a test client already logged in as the given seeded user."""

    def _make(email: str = "admin@example.com"):
        c = app.test_client()
        r = login(c, email)
        assert r.status_code == 200, r.json
        return c

    return _make


@pytest.fixture()
def admin(client_for):
    return client_for("admin@example.com")


@pytest.fixture()
def user_id(app):
    def _lookup(email: str) -> int:
        with session_scope(app) as s:
            return s.query(User).filter(User.email == email).one().id

    return _lookup
