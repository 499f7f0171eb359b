import io
from datetime import date, timedelta

from app.ims.db import session_scope
from app.ims.models import AuditEvent
from app.ims.modules.documents.models import Document
from app.ims.modules.documents.service import classify_type, next_version_number, revert_expired_reviews
from app.ims.modules.notifications.models import Notification


def _create(client, **overrides):
    payload = {
        "title": "Quality Manual",
        "document_number": "QM-001",
        "type": "policy",
        "departments": ["Quality", "Production"],
        "tags": ["iso9001"],
    }
    payload.update(overrides)
    r = client.post("/api/documents", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def _upload(client, doc_id, content=b"%PDF-1.4 hello", name="manual.pdf", **form):
    data = {"file": (io.BytesIO(content), name), **form}
    return client.post(f"/api/documents/{doc_id}/versions", data=data, content_type="multipart/form-data")


def test_document_lifecycle_create_submit_approve_archive(client_for, app, user_id):
    creator = client_for("creator@example.com")
    doc = _create(creator)
    assert doc["status"] == "draft"
    assert doc["version"] == 1
    assert doc["departments"] == ["Quality", "Production"]

    r = creator.post(f"/api/documents/{doc['id']}/submit")
    assert r.status_code == 200
    assert r.json["status"] == "under_review"

    # Creators cannot review
    assert creator.post(f"/api/documents/{doc['id']}/approve").status_code == 403

    manager = client_for("manager@example.com")
    r = manager.post(f"/api/documents/{doc['id']}/approve", json={"comments": "Looks good"})
    assert r.status_code == 200
    assert r.json["status"] == "approved"

    r = manager.post(f"/api/documents/{doc['id']}/archive")
    assert r.status_code == 200
    assert r.json["status"] == "archived"

    with session_scope(app) as s:
        actions = [
            e.action
            for e in s.query(AuditEvent)
            .filter(AuditEvent.entity_type == "Document", AuditEvent.entity_id == str(doc["id"]))
            .order_by(AuditEvent.id)
        ]
        assert actions == ["document.create", "document.submit", "document.approve", "document.archive"]

        messages = [
            n.message
            for n in s.query(Notification).filter(Notification.user_id == user_id("creator@example.com")).order_by(Notification.id)
        ]
        assert messages == [
            'Document "Quality Manual" created successfully.',
            'Your document "Quality Manual" has been submitted for review.',
            'Good news! Your document "Quality Manual" has been approved.',
        ]


def test_invalid_transitions_are_forbidden(client_for):
    admin = client_for()
    doc = _create(admin)

    r = admin.post(f"/api/documents/{doc['id']}/approve")
    assert r.status_code == 403
    assert r.json["message"] == "Only documents under review can be approved"

    r = admin.post(f"/api/documents/{doc['id']}/archive")
    assert r.status_code == 403

    admin.post(f"/api/documents/{doc['id']}/submit")
    r = admin.post(f"/api/documents/{doc['id']}/submit")
    assert r.status_code == 403
    assert r.json["message"] == "Only draft documents can be submitted"


def test_reject_then_edit_requires_manage(client_for):
    creator = client_for("creator@example.com")
    doc = _create(creator)
    creator.post(f"/api/documents/{doc['id']}/submit")

    manager = client_for("manager@example.com")
    r = manager.post(f"/api/documents/{doc['id']}/reject", json={"comments": "Missing scope"})
    assert r.json["status"] == "rejected"

    r = creator.put(f"/api/documents/{doc['id']}", json={"title": "Quality Manual v2"})
    assert r.status_code == 403
    assert r.json["message"] == "Only draft documents can be edited"

    admin = client_for()
    r = admin.put(f"/api/documents/{doc['id']}", json={"title": "Quality Manual v2"})
    assert r.status_code == 200
    assert r.json["title"] == "Quality Manual v2"


def test_create_validates_title_and_unique_number(client_for):
    admin = client_for()
    r = admin.post("/api/documents", json={"title": "  "})
    assert r.status_code == 400
    assert "Title is required." in r.json["details"]
    r = admin.post("/api/documents", json={"title": 123})
    assert r.status_code == 400
    assert r.json["message"] == "Title is required."

    _create(admin)
    r = admin.post("/api/documents", json={"title": "Other", "document_number": "QM-001"})
    assert r.status_code == 400


def test_version_upload_download_and_visibility(client_for, app):
    admin = client_for()
    doc = _create(admin, version=3)

    r = _upload(admin, doc["id"], change_notes="Initial")
    assert r.status_code == 201
    v1 = r.json
    assert v1["version_number"] == 3
    assert v1["size_bytes"] == len(b"%PDF-1.4 hello")

    r = _upload(admin, doc["id"], content=b"second", name="manual-2.pdf")
    v2 = r.json
    assert v2["version_number"] == 4

    r = admin.get(f"/api/documents/{doc['id']}")
    assert r.json["current_version_id"] == v2["id"]
    assert r.json["version"] == 4
    assert [v["version_number"] for v in r.json["versions"]] == [4, 3]

    # Admin (docs.manage) sees the full history, a viewer only the latest
    assert len(admin.get(f"/api/documents/{doc['id']}/versions").json) == 2
    viewer = client_for("viewer@example.com")
    versions = viewer.get(f"/api/documents/{doc['id']}/versions").json
    assert [v["id"] for v in versions] == [v2["id"]]

    r = viewer.get(f"/api/files/{v1['id']}/download")
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 hello"
    assert "attachment" in r.headers["Content-Disposition"]

    r = viewer.get(f"/api/files/{v2['id']}/preview")
    assert r.status_code == 200
    assert r.data == b"second"
    assert "inline" in r.headers["Content-Disposition"]

    with session_scope(app) as s:
        actions = {e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_id == str(doc["id"]))}
        assert {"document.upload", "document.download", "document.preview"} <= actions


def test_versions_empty_list_and_archived_upload_refused(client_for):
    admin = client_for()
    doc = _create(admin)
    assert admin.get(f"/api/documents/{doc['id']}/versions").json == []

    admin.post(f"/api/documents/{doc['id']}/submit")
    admin.post(f"/api/documents/{doc['id']}/approve")
    admin.post(f"/api/documents/{doc['id']}/archive")
    r = _upload(admin, doc["id"])
    assert r.status_code == 403


def test_delete_removes_files_but_keeps_audit_trail(client_for, app, tmp_path):
    admin = client_for()
    doc = _create(admin)
    _upload(admin, doc["id"])
    stored = [p for p in (tmp_path / "uploads").rglob("*") if p.is_file()]
    assert len(stored) == 1

    r = admin.delete(f"/api/documents/{doc['id']}")
    assert r.status_code == 200
    assert admin.get(f"/api/documents/{doc['id']}").status_code == 404
    assert not stored[0].exists()

    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "document.delete").count() == 1
        assert s.query(AuditEvent).filter(AuditEvent.action == "document.create").count() == 1


def test_list_filters_and_stats(client_for):
    admin = client_for()
    a = _create(admin, title="Calibration SOP", document_number="SOP-1", type="sop", departments=["Quality"])
    _create(admin, title="Inspection Form", document_number="F-1", type="form", departments=["Production"])
    _create(admin, title="Env Policy", document_number="P-1", type="policy", departments=["EHS"])
    admin.post(f"/api/documents/{a['id']}/submit")
    admin.post(f"/api/documents/{a['id']}/approve")

    assert [d["title"] for d in admin.get("/api/documents?status=approved").json] == ["Calibration SOP"]
    assert [d["title"] for d in admin.get("/api/documents?department=Production").json] == ["Inspection Form"]
    assert [d["title"] for d in admin.get("/api/documents?search=inspection").json] == ["Inspection Form"]
    assert admin.get("/api/documents?status=bogus").status_code == 400

    stats = admin.get("/api/documents/stats").json
    assert stats["total"] == 3
    assert stats["by_status"] == {"draft": 2, "under_review": 0, "approved": 1, "rejected": 0}

    dept = admin.get("/api/documents/department-stats").json
    assert dept == {"Quality": {"sops": 1, "formats": 0}}

    report = admin.get("/api/documents/reports/stats").json
    assert report["total"] == 3
    assert {"name": "EHS", "value": 1} in report["by_department"]


def test_revert_expired_reviews(app, user_id):
    owner = user_id("creator@example.com")
    today = date(2026, 3, 1)
    with session_scope(app) as s:
        due = Document(title="Due", status="approved", owner_id=owner, review_date=today, departments=[], tags=[])
        later = Document(title="Later", status="approved", owner_id=owner, review_date=today + timedelta(days=1), departments=[], tags=[])
        draft = Document(title="Draft", status="draft", owner_id=owner, review_date=today - timedelta(days=3), departments=[], tags=[])
        s.add_all([due, later, draft])

    with session_scope(app) as s:
        reverted = revert_expired_reviews(s, today=today)

    with session_scope(app) as s:
        statuses = {d.title: d.status for d in s.query(Document)}
        assert statuses == {"Due": "draft", "Later": "approved", "Draft": "draft"}
        assert len(reverted) == 1
        ev = s.query(AuditEvent).filter(AuditEvent.entity_id == str(reverted[0])).one()
        assert ev.actor_user_id is None
        assert "Automatically reverted to draft" in ev.details
        n = s.query(Notification).filter(Notification.user_id == owner).one()
        assert n.message == 'Action Required: Review date for "Due" has passed. Document reverted to draft.'


def test_version_numbering_and_type_classification():
    assert next_version_number([], None) == 1
    assert next_version_number([], 4) == 4
    assert next_version_number([1, 2, 5], 1) == 6
    assert classify_type("SOP") == "sops"
    assert classify_type("work_instruction") == "sops"
    assert classify_type("Format") == "formats"
    assert classify_type("manual") is None
