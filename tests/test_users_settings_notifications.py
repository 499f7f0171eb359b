from app.ims.db import session_scope
from app.ims.models import AuditEvent
from conftest import login


def test_list_users_and_permissions(client_for):
    manager = client_for("manager@example.com")
    users = manager.get("/api/users").json
    assert len(users) == 6
    assert {u["email"] for u in users} >= {"admin@example.com", "viewer@example.com"}
    assert client_for("viewer@example.com").get("/api/users").status_code == 403
    assert manager.put(f"/api/users/{users[0]['id']}", json={"first_name": "X"}).status_code == 403


def test_update_user_roles_and_job_role(admin, user_id, app):
    uid = user_id("viewer@example.com")
    role = admin.post("/api/competencies/roles", json={"title": "Operator"}).json

    r = admin.put(f"/api/users/{uid}", json={"roles": ["creator", "reviewer"], "department": "Stores", "job_role_id": role["id"]})
    assert r.status_code == 200
    assert r.json["roles"] == ["creator", "reviewer"]
    assert r.json["department"] == "Stores"

    detail = admin.get(f"/api/users/{uid}").json
    assert detail["job_role"]["title"] == "Operator"

    assert admin.put(f"/api/users/{uid}", json={"roles": ["overlord"]}).status_code == 400
    assert admin.put(f"/api/users/{uid}", json={"email": "manager@example.com"}).status_code == 400
    assert admin.put(f"/api/users/{uid}", json={"password": "short"}).status_code == 400

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "user.update").order_by(AuditEvent.id).first()
        assert '"roles"' in ev.metadata_json


def test_deactivate_blocks_login(admin, user_id, app):
    uid = user_id("viewer@example.com")
    r = admin.put(f"/api/users/{uid}/deactivate")
    assert r.json["is_active"] is False
    assert login(app.test_client(), "viewer@example.com").status_code == 401

    admin.put(f"/api/users/{uid}/activate")
    assert login(app.test_client(), "viewer@example.com").status_code == 200


def test_cannot_deactivate_or_delete_self(admin, user_id):
    me = user_id("admin@example.com")
    assert admin.put(f"/api/users/{me}/deactivate").status_code == 400
    assert admin.delete(f"/api/users/{me}").status_code == 400


def test_delete_user(client_for, user_id):
    creator = client_for("creator@example.com")
    creator.post("/api/documents", json={"title": "Owned"})
    admin = client_for()

    r = admin.delete(f"/api/users/{user_id('creator@example.com')}")
    assert r.status_code == 409

    viewer_id = user_id("viewer@example.com")
    assert admin.delete(f"/api/users/{viewer_id}").status_code == 204
    assert admin.get(f"/api/users/{viewer_id}").status_code == 404


def test_settings_master_data(client_for, app):
    admin = client_for()
    r = admin.post("/api/settings/departments", json={"value": ["Quality", "Production", "EHS"]})
    assert r.status_code == 200
    assert r.json["value"] == ["Quality", "Production", "EHS"]
    admin.post("/api/settings/departments", json={"value": ["Quality"]})

    viewer = client_for("viewer@example.com")
    assert viewer.get("/api/settings/departments").json == {"key": "departments", "value": ["Quality"]}
    assert viewer.get("/api/settings/unknown").json["value"] is None
    assert viewer.get("/api/settings").status_code == 403
    assert viewer.post("/api/settings/departments", json={"value": []}).status_code == 403

    assert [st["key"] for st in admin.get("/api/settings").json] == ["departments"]
    assert admin.post("/api/settings/uom", json={"values": ["kg"]}).status_code == 400

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "setting.update").count() == 2


def test_notifications_read_flow(client_for):
    creator = client_for("creator@example.com")
    creator.post("/api/documents", json={"title": "Doc A"})
    creator.post("/api/documents", json={"title": "Doc B"})

    items = creator.get("/api/notifications").json
    assert [n["message"] for n in items] == [
        'Document "Doc B" created successfully.',
        'Document "Doc A" created successfully.',
    ]
    assert not any(n["is_read"] for n in items)

    r = creator.put(f"/api/notifications/{items[0]['id']}/read")
    assert r.json["is_read"] is True

    # Other users cannot touch someone else's notification
    other = client_for("reviewer@example.com")
    assert other.put(f"/api/notifications/{items[1]['id']}/read").status_code == 404
    assert other.get("/api/notifications").json == []

    assert creator.put("/api/notifications/read-all").json == {"updated": 1}
    assert all(n["is_read"] for n in creator.get("/api/notifications").json)
