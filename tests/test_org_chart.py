from io import BytesIO

from openpyxl import Workbook

from app.ims.modules.org_chart.service import find_cycle

STAFF = [
    {"id": "1", "name": "Grace CEO", "designation": "CEO", "department": "Management"},
    {"id": "2", "name": "Quinn QA", "parent_id": "1", "designation": "QA Manager", "department": "Quality"},
    {"id": "3", "name": "Ivan Inspector", "parent_id": "2", "designation": "Inspector", "department": "Quality"},
]


def _xlsx(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    out = BytesIO()
    wb.save(out)
    out.seek(0)
    return out


def test_find_cycle():
    assert find_cycle({"a": None, "b": "a", "c": "b"}) is None
    assert find_cycle({"a": "c", "b": "a", "c": "b"}) in {"a", "b", "c"}
    assert find_cycle({"a": "a"}) == "a"
    # Unknown parents end the walk
    assert find_cycle({"a": "zzz"}) is None


def test_bulk_upload_and_tree(admin):
    r = admin.post("/api/org-chart/bulk", json=STAFF)
    assert r.status_code == 200
    assert r.json == {"created": 3, "updated": 0}

    tree = admin.get("/api/org-chart/tree").json
    assert len(tree) == 1
    assert tree[0]["name"] == "Grace CEO"
    assert tree[0]["children"][0]["id"] == "2"
    assert tree[0]["children"][0]["children"][0]["name"] == "Ivan Inspector"

    r = admin.post("/api/org-chart/bulk", json={"nodes": [{"id": "3", "name": "Ivan Senior Inspector", "parent_id": "2"}]})
    assert r.json == {"created": 0, "updated": 1}
    assert admin.get("/api/org-chart/3").json["name"] == "Ivan Senior Inspector"


def test_bulk_rejects_cycles_and_bad_rows(admin):
    admin.post("/api/org-chart/bulk", json=STAFF)

    r = admin.post("/api/org-chart/bulk", json=[{"id": "1", "name": "Grace CEO", "parent_id": "3"}])
    assert r.status_code == 400
    assert r.json["message"].startswith("Invalid hierarchy")
    assert admin.get("/api/org-chart/1").json["parent_id"] is None

    r = admin.post("/api/org-chart/bulk", json=[{"id": "9", "name": "Ok"}, {"id": "10"}])
    assert r.status_code == 400
    assert r.json["message"] == "Row 2: name is required."
    assert admin.get("/api/org-chart/9").status_code == 404


def test_create_update_and_self_parent(admin):
    r = admin.post("/api/org-chart", json={"name": "No Id"})
    assert r.status_code == 201
    assert len(r.json["id"]) == 32

    r = admin.post("/api/org-chart", json={"id": 101.0, "name": "Float Id"})
    assert r.json["id"] == "101"
    assert admin.post("/api/org-chart", json={"id": "101", "name": "Dup"}).status_code == 400

    r = admin.put("/api/org-chart/101", json={"parent_id": "101"})
    assert r.status_code == 400

    r = admin.put("/api/org-chart/101", json={"designation": "Supervisor", "job_role_id": 77})
    assert r.status_code == 400
    assert r.json["message"] == "Job role 77 does not exist."

    role = admin.post("/api/competencies/roles", json={"title": "Supervisor"}).json
    r = admin.put("/api/org-chart/101", json={"job_role_id": role["id"]})
    assert r.status_code == 200
    assert r.json["job_role"] == "Supervisor"

    assert admin.get("/api/org-chart/nope").status_code == 404


def test_delete_reparents_children(admin):
    admin.post("/api/org-chart/bulk", json=STAFF)
    r = admin.delete("/api/org-chart/2")
    assert r.json == {"deleted": True}

    nodes = {n["id"]: n for n in admin.get("/api/org-chart").json}
    assert set(nodes) == {"1", "3"}
    assert nodes["3"]["parent_id"] == "1"


def test_import_workbook(admin):
    data = _xlsx(
        [
            ["Employee ID", "Name", "Manager ID", "Designation", "Department"],
            [1, "Grace CEO", None, "CEO", "Management"],
            [2, "Quinn QA", 1, "QA Manager", "Quality"],
            [None, "Nameless Id", 1, None, None],
            [4, None, 1, None, None],
            [None, None, None, None, None],
        ]
    )
    r = admin.post(
        "/api/org-chart/import",
        data={"file": (data, "staff.xlsx")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    assert r.json["created"] == 2
    assert r.json["errors"] == ["Row 4: id is required.", "Row 5: name is required."]
    assert admin.get("/api/org-chart/2").json["parent_id"] == "1"


def test_import_rejects_bad_files(admin):
    r = admin.post("/api/org-chart/import", data={"file": (BytesIO(b"a,b"), "staff.csv")}, content_type="multipart/form-data")
    assert r.status_code == 400
    r = admin.post("/api/org-chart/import", data={"file": (BytesIO(b"not a zip"), "staff.xlsx")}, content_type="multipart/form-data")
    assert r.status_code == 400
    r = admin.post(
        "/api/org-chart/import",
        data={"file": (_xlsx([["Name", "Title"], ["A", "B"]]), "staff.xlsx")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["message"] == "Workbook must have 'id' and 'name' columns."


def test_editing_requires_permission(client_for):
    viewer = client_for("viewer@example.com")
    assert viewer.get("/api/org-chart").status_code == 200
    assert viewer.post("/api/org-chart", json={"name": "X"}).status_code == 403
