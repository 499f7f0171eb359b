import pytest

from app.ims.db import session_scope
from app.ims.models import AuditEvent
from app.ims.modules.objectives.service import calculate_progress


@pytest.mark.parametrize(
    "value,target,higher,expected",
    [
        (95, 100, True, (95.0, "on_track")),
        (120, 100, True, (100.0, "achieved")),
        (60, 100, True, (60.0, "at_risk")),
        (10, 100, True, (10.0, "behind")),
        (5, 0, True, (0.0, "behind")),
        (3, 5, False, (100.0, "achieved")),
        (10, 5, False, (50.0, "at_risk")),
        (0, -5, False, (0.0, "behind")),
        (0, 0, False, (100.0, "achieved")),
        (4, 0, False, (0.0, "behind")),
    ],
)
def test_calculate_progress(value, target, higher, expected):
    assert calculate_progress(value, target, higher) == expected


def _objective(client, **overrides):
    payload = {"name": "Reduce scrap", "type": "quality", "department": "Production", "target": 95, "uom": "%"}
    payload.update(overrides)
    r = client.post("/api/objectives", json=payload)
    assert r.status_code == 201, r.json
    return r.json


def test_create_defaults_and_numbering(client_for):
    creator = client_for("creator@example.com")
    o = _objective(creator)
    o2 = _objective(creator, name="Cut energy", type="environmental", target="12.5")
    assert o["objective_number"] == "OBJ-001"
    assert o2["objective_number"] == "OBJ-002"
    assert o["status"] == "active"
    assert o["frequency"] == "monthly"
    assert o["higher_is_better"] is True
    assert o2["target"] == 12.5


def test_create_validation(client_for):
    admin = client_for()
    r = admin.post("/api/objectives", json={"name": "X", "type": "financial"})
    assert r.status_code == 400
    assert "target is required." in r.json["details"]
    assert any(d.startswith("type must be one of") for d in r.json["details"])

    r = admin.post("/api/objectives", json={"name": "X", "type": "safety", "target": "lots"})
    assert r.status_code == 400
    assert r.json["message"] == "target must be a number."

    r = admin.post("/api/objectives", json={"name": "X", "type": "safety", "target": "NaN"})
    assert r.status_code == 400
    assert r.json["message"] == "target must be a number."

    r = admin.post("/api/objectives", json={"name": 42, "type": "safety", "target": 1})
    assert r.status_code == 400
    assert r.json["message"] == "Name is required."


def test_measurements_drive_dashboard(client_for, app):
    admin = client_for()
    scrap = _objective(admin)
    lti = _objective(admin, name="Lost time injuries", type="safety", target=2, higher_is_better=False)
    _objective(admin, name="No data", type="environmental", target=10)

    r = admin.post(f"/api/objectives/{scrap['id']}/measurements", json={"actual_value": 50, "measurement_date": "2026-01-31"})
    assert r.status_code == 201
    r = admin.post(
        f"/api/objectives/{scrap['id']}/measurements",
        json={"actual_value": 90.25, "measurement_date": "2026-02-28", "remarks": "Improving"},
    )
    latest_id = r.json["id"]
    admin.post(f"/api/objectives/{lti['id']}/measurements", json={"actual_value": 1, "measurement_date": "2026-02-28"})

    detail = admin.get(f"/api/objectives/{scrap['id']}").json
    assert len(detail["measurements"]) == 2
    listed = admin.get(f"/api/objectives/{scrap['id']}/measurements").json
    assert [m["actual_value"] for m in listed] == [90.25, 50.0]

    dash = admin.get("/api/objectives/dashboard").json
    rows = {row["name"]: row for row in dash["objectives"]}
    assert rows["Reduce scrap"]["latest_value"] == 90.25
    assert rows["Reduce scrap"]["progress_status"] == "on_track"
    assert rows["Lost time injuries"]["progress_status"] == "achieved"
    assert rows["No data"]["progress"] == 0
    assert rows["No data"]["progress_status"] == "behind"
    assert dash["summary"]["total"] == 3
    assert dash["summary"]["on_track"] == 2
    assert dash["summary"]["behind"] == 1
    assert dash["by_type"] == {"quality": 1, "environmental": 1, "safety": 1}

    assert admin.delete(f"/api/objectives/measurements/{latest_id}").status_code == 204
    rows = {row["name"]: row for row in admin.get("/api/objectives/dashboard").json["objectives"]}
    assert rows["Reduce scrap"]["latest_value"] == 50.0
    assert rows["Reduce scrap"]["progress_status"] == "at_risk"

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_type == "Objective")]
    assert actions.count("objective.measurement_add") == 3
    assert actions.count("objective.measurement_delete") == 1


def test_measurement_validation(client_for):
    admin = client_for()
    o = _objective(admin)
    r = admin.post(f"/api/objectives/{o['id']}/measurements", json={"actual_value": "x"})
    assert r.status_code == 400
    assert r.json["details"] == ["actual_value must be a number.", "measurement_date is required."]
    for bad in ("NaN", "Infinity", "-inf"):
        r = admin.post(f"/api/objectives/{o['id']}/measurements", json={"actual_value": bad, "measurement_date": "2026-03-31"})
        assert r.status_code == 400
        assert r.json["message"] == "actual_value must be a number."
    assert admin.delete("/api/objectives/measurements/999").status_code == 404


def test_update_filter_and_delete(client_for):
    admin = client_for()
    o = _objective(admin)
    _objective(admin, name="Water use", type="environmental", department="EHS")

    r = admin.patch(f"/api/objectives/{o['id']}", json={"status": "completed", "target": 97})
    assert r.json["status"] == "completed"
    assert r.json["target"] == 97.0
    assert admin.patch(f"/api/objectives/{o['id']}", json={"status": "bogus"}).status_code == 400

    assert [x["name"] for x in admin.get("/api/objectives?department=EHS").json] == ["Water use"]
    assert [x["name"] for x in admin.get("/api/objectives?status=completed").json] == ["Reduce scrap"]

    viewer = client_for("viewer@example.com")
    assert viewer.delete(f"/api/objectives/{o['id']}").status_code == 403
    assert admin.delete(f"/api/objectives/{o['id']}").status_code == 204
    assert admin.get(f"/api/objectives/{o['id']}").status_code == 404


def test_dashboard_with_non_positive_lower_is_better_target(client_for):
    admin = client_for()
    o = _objective(admin, name="Spills", type="environmental", target=-5, higher_is_better=False)
    r = admin.post(f"/api/objectives/{o['id']}/measurements", json={"actual_value": 0, "measurement_date": "2026-03-31"})
    assert r.status_code == 201

    r = admin.get("/api/objectives/dashboard")
    assert r.status_code == 200
    row = r.json["objectives"][0]
    assert row["progress"] == 0
    assert row["progress_status"] == "behind"
