from app.ims.db import session_scope
from app.ims.models import AuditEvent

from conftest import PASSWORD, login


def test_health_ok(app):
    c = app.test_client()
    r = c.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True

    r = c.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_api_requires_login(app):
    c = app.test_client()
    r = c.get("/api/documents")
    assert r.status_code == 401
    assert r.json["error"] == "unauthenticated"


def test_login_me_and_logout(app):
    c = app.test_client()
    r = login(c, "manager@example.com")
    assert r.status_code == 200
    assert r.json["user"]["email"] == "manager@example.com"
    assert r.json["csrf_token"]

    r = c.get("/auth/me")
    assert r.status_code == 200
    perms = r.json["user"]["permissions"]
    assert "docs.review" in perms
    assert "users.manage" not in perms

    r = c.post("/auth/logout")
    assert r.status_code == 200
    assert c.get("/auth/me").status_code == 401


def test_login_failure_is_audited(app):
    c = app.test_client()
    r = c.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["error"] == "invalid_credentials"

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").one()
        assert ev.entity_id == "admin@example.com"
        assert ev.actor_user_id is None


def test_login_is_rate_limited(app):
    c = app.test_client()
    for _ in range(5):
        assert c.post("/auth/login", json={"email": "x@example.com", "password": "nope"}).status_code == 401
    r = c.post("/auth/login", json={"email": "admin@example.com", "password": PASSWORD})
    assert r.status_code == 429


def test_missing_permission_returns_403(client_for):
    viewer = client_for("viewer@example.com")
    r = viewer.post("/api/documents", json={"title": "Nope"})
    assert r.status_code == 403
    assert r.json["message"] == "Missing permission: docs.create"


def test_request_id_is_echoed(admin):
    r = admin.get("/api/documents", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"


def test_csrf_token_required_for_mutations(csrf_app):
    c = csrf_app.test_client()
    r = login(c, "admin@example.com")
    assert r.status_code == 200
    token = r.json["csrf_token"]

    r = c.post("/api/documents", json={"title": "No token"})
    assert r.status_code == 400
    assert r.json["error"] == "csrf_failed"

    r = c.post("/api/documents", json={"title": "With token"}, headers={"X-CSRF-Token": token})
    assert r.status_code == 201


def test_register_is_admin_only(client_for):
    manager = client_for("manager@example.com")
    r = manager.post("/auth/register", json={"email": "new@example.com", "password": "longenough"})
    assert r.status_code == 403

    admin = client_for("admin@example.com")
    r = admin.post(
        "/auth/register",
        json={"email": "New@Example.com", "password": "longenough", "first_name": "Nia", "roles": ["creator"]},
    )
    assert r.status_code == 201
    assert r.json["email"] == "new@example.com"
    assert r.json["roles"] == ["creator"]


def test_register_and_login_reject_non_string_credentials(client_for, app):
    admin = client_for("admin@example.com")
    r = admin.post("/auth/register", json={"email": 5, "password": 12345678})
    assert r.status_code == 400
    assert r.json["details"] == ["A valid email is required.", "Password must be at least 8 characters."]

    c = app.test_client()
    r = c.post("/auth/login", json={"email": ["admin@example.com"], "password": 1})
    assert r.status_code == 401
