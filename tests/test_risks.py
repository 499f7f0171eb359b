import pytest

from app.ims.db import session_scope
from app.ims.modules.notifications.models import Notification
from app.ims.modules.risks.service import calculate_risk_level, rate


def _risk(client, **overrides):
    payload = {
        "type": "hira",
        "title": "Forklift collision",
        "department": "Quality",
        "likelihood": 3,
        "severity": 4,
    }
    payload.update(overrides)
    r = client.post("/api/risks", json=payload)
    assert r.status_code == 201, r.json
    return r.json


@pytest.mark.parametrize(
    "rating,level",
    [(1, "low"), (4, "low"), (5, "medium"), (9, "medium"), (10, "high"), (16, "high"), (20, "critical"), (25, "critical")],
)
def test_calculate_risk_level_bands(rating, level):
    assert calculate_risk_level(rating) == level


def test_rate_needs_both_scores():
    assert rate(3, 4) == (12, "high")
    assert rate(None, 4) == (None, None)


def test_create_numbers_rates_and_assigns_dept_head(client_for, user_id):
    creator = client_for("creator@example.com")
    first = _risk(creator)
    second = _risk(creator, title="Chemical spill", type="eaa", likelihood=5, severity=5)

    assert first["risk_number"] == "R-001"
    assert second["risk_number"] == "R-002"
    assert first["risk_rating"] == 12
    assert first["risk_level"] == "high"
    assert second["risk_level"] == "critical"
    assert first["status"] == "draft"
    assert first["reviewer_id"] == user_id("head@example.com")


def test_create_validation_collects_errors(client_for):
    admin = client_for()
    r = admin.post("/api/risks", json={"type": "xyz", "title": "", "likelihood": 9})
    assert r.status_code == 400
    details = r.json["details"]
    assert "Title is required." in details
    assert "likelihood must be an integer between 1 and 5." in details
    assert "severity is required." in details

    r = admin.post("/api/risks", json={"type": 1, "title": ["Spill"], "likelihood": 2, "severity": 3})
    assert r.status_code == 400
    assert r.json["details"] == ["type must be one of: qra, hira, eaa", "Title is required."]


def test_review_workflow_and_notifications(client_for, app, user_id):
    creator = client_for("creator@example.com")
    risk = _risk(creator)

    r = creator.post(f"/api/risks/{risk['id']}/submit")
    assert r.json["status"] == "pending_review"

    # Creators hold risks.edit but not risks.review
    assert creator.post(f"/api/risks/{risk['id']}/approve").status_code == 403

    head = client_for("head@example.com")
    r = head.post(f"/api/risks/{risk['id']}/reject", json={"review_comments": "Add controls"})
    assert r.json["status"] == "draft"
    assert r.json["review_comments"] == "Add controls"

    creator.post(f"/api/risks/{risk['id']}/submit")
    r = head.post(f"/api/risks/{risk['id']}/approve", json={"comments": "OK"})
    assert r.json["status"] == "open"

    r = head.post(f"/api/risks/{risk['id']}/close")
    assert r.json["status"] == "closed"

    with session_scope(app) as s:
        head_msgs = [n.message for n in s.query(Notification).filter(Notification.user_id == user_id("head@example.com"))]
        owner_msgs = [n.message for n in s.query(Notification).filter(Notification.user_id == user_id("creator@example.com"))]
    assert head_msgs.count('Risk R-001 "Forklift collision" is awaiting your review.') == 2
    assert 'Risk R-001 "Forklift collision" has been approved.' in owner_msgs


def test_submit_without_reviewer_and_bad_transitions(client_for):
    admin = client_for()
    risk = _risk(admin, department="Nowhere")
    assert risk["reviewer_id"] is None

    r = admin.post(f"/api/risks/{risk['id']}/submit")
    assert r.status_code == 400
    assert r.json["message"] == "No reviewer assigned. Please ensure department is set."

    r = admin.post(f"/api/risks/{risk['id']}/approve")
    assert r.status_code == 400
    assert r.json["error"] == "invalid_transition"


def test_update_recalculates_and_reassigns_reviewer(client_for, user_id):
    admin = client_for()
    risk = _risk(admin, department="Nowhere")

    r = admin.patch(f"/api/risks/{risk['id']}", json={"severity": 1, "residual_likelihood": 1, "residual_severity": 2, "department": "Quality"})
    assert r.status_code == 200
    assert r.json["risk_rating"] == 3
    assert r.json["risk_level"] == "low"
    assert r.json["residual_rating"] == 2
    assert r.json["reviewer_id"] == user_id("head@example.com")


def test_delete_only_drafts(client_for):
    admin = client_for()
    risk = _risk(admin)
    other = _risk(admin, title="Noise")
    admin.post(f"/api/risks/{other['id']}/submit")

    assert admin.delete(f"/api/risks/{other['id']}").status_code == 400
    assert admin.delete(f"/api/risks/{risk['id']}").status_code == 204
    assert admin.get(f"/api/risks/{risk['id']}").status_code == 404


def test_related_documents_and_filters(client_for):
    admin = client_for()
    doc = admin.post("/api/documents", json={"title": "Emergency Plan"}).json
    risk = _risk(admin, related_document_ids=[doc["id"]])
    _risk(admin, type="qra", title="Supplier failure", likelihood=1, severity=2)

    assert [d["title"] for d in risk["related_documents"]] == ["Emergency Plan"]
    r = admin.post("/api/risks", json={"type": "qra", "title": "X", "likelihood": 1, "severity": 1, "related_document_ids": [999]})
    assert r.status_code == 400

    assert [x["title"] for x in admin.get("/api/risks?type=qra").json] == ["Supplier failure"]
    assert [x["title"] for x in admin.get("/api/risks?level=low").json] == ["Supplier failure"]
    assert [x["risk_number"] for x in admin.get("/api/risks?search=forklift").json] == [risk["risk_number"]]

    dash = admin.get("/api/risks/dashboard").json
    assert dash["total"] == 2
    assert dash["by_level"]["high"] == 1
    assert dash["by_type"] == {"qra": 1, "hira": 1, "eaa": 0}
    assert dash["matrix"]["3-4"] == 1
    assert dash["matrix"]["1-2"] == 1
    assert admin.get("/api/risks/dashboard?type=qra").json["total"] == 1
