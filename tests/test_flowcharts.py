from app.ims.db import session_scope
from app.ims.models import AuditEvent

NODES = [
    {"id": "n1", "type": "start", "position": {"x": 0, "y": 0}, "data": {"label": "Receive order"}},
    {"id": "n2", "type": "process", "position": {"x": 0, "y": 120}, "data": {"label": "Plan production"}},
]
EDGES = [{"id": "e1", "source": "n1", "target": "n2"}]


def test_latest_is_null_when_empty(admin):
    r = admin.get("/api/flowcharts/latest")
    assert r.status_code == 200
    assert r.json is None


def test_create_then_update(client_for, app):
    creator = client_for("creator@example.com")
    r = creator.post("/api/flowcharts", json={"nodes": NODES, "edges": EDGES})
    assert r.status_code == 200
    chart = r.json
    assert chart["name"] == "New Flowchart"
    assert len(chart["id"]) == 36
    assert chart["department_flows"] == {}

    flows = {"Quality": {"nodes": NODES[:1], "edges": []}}
    r = creator.post("/api/flowcharts", json={"id": chart["id"], "name": "Order to Cash", "department_flows": flows})
    assert r.json["name"] == "Order to Cash"
    assert r.json["nodes"] == NODES
    assert r.json["department_flows"] == flows

    assert creator.get(f"/api/flowcharts/{chart['id']}").json["edges"] == EDGES
    assert creator.get("/api/flowcharts/latest").json["id"] == chart["id"]

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).filter(AuditEvent.entity_type == "Flowchart").order_by(AuditEvent.id)]
    assert actions == ["flowchart.create", "flowchart.update"]


def test_latest_and_list_order(admin):
    first = admin.post("/api/flowcharts", json={"name": "First"}).json
    second = admin.post("/api/flowcharts", json={"name": "Second"}).json
    assert [f["id"] for f in admin.get("/api/flowcharts").json] == [second["id"], first["id"]]

    admin.post("/api/flowcharts", json={"id": first["id"], "nodes": NODES})
    assert admin.get("/api/flowcharts/latest").json["id"] == first["id"]


def test_validation_and_missing(admin):
    assert admin.post("/api/flowcharts", json={"nodes": {"n1": {}}}).status_code == 400
    r = admin.post("/api/flowcharts", json={"department_flows": {"Quality": []}})
    assert r.status_code == 400
    assert r.json["message"] == "department_flows[Quality] must be an object with nodes and edges."
    assert admin.post("/api/flowcharts", json={"name": "  "}).status_code == 400
    assert admin.post("/api/flowcharts", json={"id": "missing", "name": "X"}).status_code == 404
    assert admin.get("/api/flowcharts/missing").status_code == 404


def test_viewer_cannot_save(client_for):
    viewer = client_for("viewer@example.com")
    assert viewer.get("/api/flowcharts").status_code == 200
    assert viewer.post("/api/flowcharts", json={"name": "X"}).status_code == 403
