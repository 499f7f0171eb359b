import pytest

from app.ims.modules.competency.service import gap_status
from app.ims.utils import utcnow


@pytest.fixture()
def setup(admin):
    """Two welders in Production and an intern without a department."""
    welding = admin.post("/api/competencies", json={"name": "Welding", "category": "Technical"}).json
    iso = admin.post("/api/competencies", json={"name": "ISO 9001 awareness", "category": "Domain", "max_level": 3}).json
    role = admin.post("/api/competencies/roles", json={"title": "Welder", "department": "Production"}).json

    admin.post("/api/competencies/requirements", json={"job_role_id": role["id"], "competency_id": welding["id"], "required_level": 4})
    admin.post("/api/competencies/requirements", json={"job_role_id": role["id"], "competency_id": iso["id"], "required_level": 2})

    admin.post(
        "/api/org-chart/bulk",
        json=[
            {"id": "E1", "name": "Alex Welder", "department": "Production", "job_role_id": role["id"]},
            {"id": "E2", "name": "Blake Welder", "department": "Production", "job_role_id": role["id"]},
            {"id": "E3", "name": "Casey Intern", "designation": "Intern"},
        ],
    )
    for employee_id, comp, level in (("E1", welding, 4), ("E1", iso, 1), ("E2", welding, 1), ("E2", iso, 1)):
        r = admin.post("/api/competencies/skills", json={"employee_id": employee_id, "competency_id": comp["id"], "current_level": level})
        assert r.status_code == 200, r.json
    return {"welding": welding, "iso": iso, "role": role}


@pytest.mark.parametrize("gap,status", [(-2, "Meets"), (0, "Meets"), (1, "Needs Improvement"), (2, "Critical")])
def test_gap_status(gap, status):
    assert gap_status(gap) == status


def test_competency_crud_and_validation(admin):
    r = admin.post("/api/competencies", json={"name": "Forklift"})
    assert r.status_code == 201
    c = r.json
    assert c["category"] == "Technical"
    assert c["max_level"] == 5

    r = admin.post("/api/competencies", json={"name": "", "category": "Cooking", "max_level": 11})
    assert r.status_code == 400
    assert len(r.json["details"]) == 3

    r = admin.put(f"/api/competencies/{c['id']}", json={"max_level": 3, "category": "Leadership"})
    assert r.json["max_level"] == 3
    assert r.json["category"] == "Leadership"

    r = admin.delete(f"/api/competencies/{c['id']}")
    assert r.json == {"message": "Competency deleted successfully"}
    assert admin.put(f"/api/competencies/{c['id']}", json={}).status_code == 404


def test_job_role_crud(admin):
    role = admin.post("/api/competencies/roles", json={"title": "Inspector", "department": "Quality"}).json
    assert admin.post("/api/competencies/roles", json={"department": "Quality"}).status_code == 400
    r = admin.put(f"/api/competencies/roles/{role['id']}", json={"description": "Final inspection"})
    assert r.json["description"] == "Final inspection"
    assert [x["title"] for x in admin.get("/api/competencies/roles").json] == ["Inspector"]
    assert admin.delete(f"/api/competencies/roles/{role['id']}").json == {"message": "Job Role deleted successfully"}
    assert admin.delete(f"/api/competencies/roles/{role['id']}").status_code == 404


def test_requirements_upsert_levels_and_delete(admin, setup):
    role, iso = setup["role"], setup["iso"]
    r = admin.post("/api/competencies/requirements", json={"job_role_id": role["id"], "competency_id": iso["id"], "required_level": 3})
    assert r.status_code == 200
    assert r.json["required_level"] == 3
    assert len(admin.get(f"/api/competencies/requirements/{role['id']}").json) == 2

    r = admin.post("/api/competencies/requirements", json={"job_role_id": role["id"], "competency_id": iso["id"], "required_level": 4})
    assert r.status_code == 400
    assert r.json["message"] == "required_level must be between 1 and 3."

    assert admin.delete(f"/api/competencies/requirements/{role['id']}/{iso['id']}").status_code == 200
    assert admin.delete(f"/api/competencies/requirements/{role['id']}/{iso['id']}").status_code == 404
    assert len(admin.get(f"/api/competencies/requirements/{role['id']}").json) == 1


def test_skill_rating_upserts(admin, setup):
    welding = setup["welding"]
    r = admin.post(
        "/api/competencies/skills",
        json={"employee_id": "E2", "competency_id": welding["id"], "current_level": 2, "last_assessed_date": "2026-01-15"},
    )
    assert r.json["current_level"] == 2
    assert r.json["last_assessed_date"] == "2026-01-15"

    skills = admin.get("/api/competencies/skills/E2").json
    assert len(skills) == 2
    assert {sk["competency"]["name"]: sk["current_level"] for sk in skills} == {"Welding": 2, "ISO 9001 awareness": 1}
    assert skills[1]["last_assessed_date"] == utcnow().date().isoformat()

    r = admin.post("/api/competencies/skills", json={"employee_id": "ghost", "competency_id": welding["id"], "current_level": 1})
    assert r.status_code == 404
    assert r.json["message"] == "Employee not found"
    r = admin.post("/api/competencies/skills", json={"employee_id": "E2", "competency_id": welding["id"], "current_level": 0})
    assert r.status_code == 400


def test_gap_analysis(admin, setup):
    role = setup["role"]
    rows = admin.get(f"/api/competencies/gap-analysis?employee_id=E1&role_id={role['id']}").json
    assert [(x["competency"]["name"], x["required_level"], x["current_level"], x["gap"], x["status"]) for x in rows] == [
        ("Welding", 4, 4, 0, "Meets"),
        ("ISO 9001 awareness", 2, 1, 1, "Needs Improvement"),
    ]

    rows = admin.get(f"/api/competencies/gap-analysis?employeeId=E3&roleId={role['id']}").json
    assert [x["status"] for x in rows] == ["Critical", "Critical"]
    assert rows[0]["current_level"] == 0

    assert admin.get("/api/competencies/gap-analysis?employee_id=E1").status_code == 400
    assert admin.get("/api/competencies/gap-analysis?employee_id=E1&role_id=x").status_code == 400


def test_department_summaries(admin, setup):
    summary = {row["department"]: row for row in admin.get("/api/competencies/summary/departments").json}
    assert summary["Production"] == {"department": "Production", "required": 12, "actual": 7}
    assert summary["Unassigned"] == {"department": "Unassigned", "required": 0, "actual": 0}

    users = admin.get("/api/competencies/summary/department/Production").json
    assert [(u["name"], u["role"], u["required"], u["actual"]) for u in users] == [
        ("Alex Welder", "Welder", 6, 5),
        ("Blake Welder", "Welder", 6, 2),
    ]
    unassigned = admin.get("/api/competencies/summary/department/Unassigned").json
    assert [(u["name"], u["role"]) for u in unassigned] == [("Casey Intern", "Intern")]


def test_competency_gap_pareto(admin, setup):
    rows = admin.get("/api/competencies/summary/competency-gaps").json
    assert rows == [
        {"competency_id": setup["welding"]["id"], "name": "Welding", "gap": 3, "percentage": 60.0},
        {"competency_id": setup["iso"]["id"], "name": "ISO 9001 awareness", "gap": 2, "percentage": 100.0},
    ]


def test_training_programs_and_plans(admin, setup):
    r = admin.post("/api/competencies/training-programs", json={"name": "Advanced TIG", "duration": "3 days", "target_competency_id": setup["welding"]["id"]})
    assert r.status_code == 201
    program = r.json
    assert program["target_competency"]["name"] == "Welding"
    assert admin.post("/api/competencies/training-programs", json={"name": "X", "target_competency_id": 999}).status_code == 404
    assert [p["name"] for p in admin.get("/api/competencies/training-programs").json] == ["Advanced TIG"]

    r = admin.post("/api/competencies/training-plans", json={"employee_id": "E2", "training_program_id": program["id"], "due_date": "2026-06-30"})
    assert r.status_code == 201
    plan = r.json
    assert plan["status"] == "Assigned"
    assert plan["completion_date"] is None

    r = admin.put(f"/api/competencies/training-plans/{plan['id']}/status", json={"status": "In Progress"})
    assert r.json["completion_date"] is None
    r = admin.put(f"/api/competencies/training-plans/{plan['id']}/status", json={"status": "Completed"})
    assert r.json["completion_date"] == utcnow().date().isoformat()

    second = admin.post("/api/competencies/training-plans", json={"employee_id": "E2", "training_program_id": program["id"]}).json
    r = admin.put(f"/api/competencies/training-plans/{second['id']}/status", json={"status": "Completed", "completion_date": "2026-02-01"})
    assert r.json["completion_date"] == "2026-02-01"

    assert admin.put(f"/api/competencies/training-plans/{second['id']}/status", json={"status": "Done"}).status_code == 400
    assert admin.put("/api/competencies/training-plans/999/status", json={"status": "Completed"}).status_code == 404
    assert len(admin.get("/api/competencies/training-plans/E2").json) == 2


def test_reviewer_manages_viewer_reads(client_for):
    reviewer = client_for("reviewer@example.com")
    assert reviewer.post("/api/competencies", json={"name": "Soldering"}).status_code == 201
    viewer = client_for("viewer@example.com")
    assert [c["name"] for c in viewer.get("/api/competencies").json] == ["Soldering"]
    assert viewer.post("/api/competencies", json={"name": "Brazing"}).status_code == 403
