from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.errors import ValidationError
from app.ims.modules.competency import service
from app.ims.rbac import require_permission
from app.ims.utils import parse_int

bp = Blueprint("competency", __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# Competencies


@bp.get("")
@require_permission("competency.view")
def list_competencies():
    return jsonify([service.competency_to_dict(c) for c in service.list_competencies(db_session())])


@bp.post("")
@require_permission("competency.manage")
def create_competency():
    s = db_session()
    c = service.create_competency(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.competency_to_dict(c)), 201


@bp.put("/<int:competency_id>")
@require_permission("competency.manage")
def update_competency(competency_id: int):
    s = db_session()
    c = service.update_competency(s, service.get_competency(s, competency_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.competency_to_dict(c))


@bp.delete("/<int:competency_id>")
@require_permission("competency.manage")
def delete_competency(competency_id: int):
    s = db_session()
    service.delete_competency(s, service.get_competency(s, competency_id), g.current_user)
    s.commit()
    return jsonify({"message": "Competency deleted successfully"})


# Job roles


@bp.get("/roles")
@require_permission("competency.view")
def list_roles():
    return jsonify([service.job_role_to_dict(r) for r in service.list_job_roles(db_session())])


@bp.post("/roles")
@require_permission("competency.manage")
def create_role():
    s = db_session()
    r = service.create_job_role(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.job_role_to_dict(r)), 201


@bp.put("/roles/<int:role_id>")
@require_permission("competency.manage")
def update_role(role_id: int):
    s = db_session()
    r = service.update_job_role(s, service.get_job_role(s, role_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.job_role_to_dict(r))


@bp.delete("/roles/<int:role_id>")
@require_permission("competency.manage")
def delete_role(role_id: int):
    s = db_session()
    service.delete_job_role(s, service.get_job_role(s, role_id), g.current_user)
    s.commit()
    return jsonify({"message": "Job Role deleted successfully"})


# Requirements


@bp.post("/requirements")
@require_permission("competency.manage")
def upsert_requirement():
    s = db_session()
    req = service.upsert_requirement(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.requirement_to_dict(req))


@bp.delete("/requirements/<int:role_id>/<int:competency_id>")
@require_permission("competency.manage")
def delete_requirement(role_id: int, competency_id: int):
    s = db_session()
    service.delete_requirement(s, role_id, competency_id, g.current_user)
    s.commit()
    return jsonify({"message": "Requirement deleted successfully"})


@bp.get("/requirements/<int:role_id>")
@require_permission("competency.view")
def list_requirements(role_id: int):
    return jsonify([service.requirement_to_dict(r) for r in service.requirements_for_role(db_session(), role_id)])


# Skills and gap analysis


@bp.post("/skills")
@require_permission("competency.manage")
def rate_skill():
    s = db_session()
    sk = service.rate_skill(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.skill_to_dict(sk))


@bp.get("/skills/<employee_id>")
@require_permission("competency.view")
def list_skills(employee_id: str):
    return jsonify([service.skill_to_dict(sk) for sk in service.skills_for_employee(db_session(), employee_id)])


@bp.get("/gap-analysis")
@require_permission("competency.view")
def gap_analysis():
    employee_id = (request.args.get("employee_id") or request.args.get("employeeId") or "").strip()
    try:
        role_id = parse_int(request.args.get("role_id") or request.args.get("roleId"))
    except ValueError as e:
        raise ValidationError("role_id must be an integer.") from e
    if not employee_id or role_id is None:
        raise ValidationError("employee_id and role_id are required.")
    return jsonify(service.gap_analysis(db_session(), employee_id, role_id))


# Training


@bp.get("/training-programs")
@require_permission("competency.view")
def list_programs():
    return jsonify([service.program_to_dict(p) for p in service.list_programs(db_session())])


@bp.post("/training-programs")
@require_permission("competency.manage")
def create_program():
    s = db_session()
    p = service.create_program(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.program_to_dict(p)), 201


@bp.post("/training-plans")
@require_permission("competency.manage")
def assign_training():
    s = db_session()
    plan = service.assign_training(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.plan_to_dict(plan)), 201


@bp.get("/training-plans/<employee_id>")
@require_permission("competency.view")
def list_plans(employee_id: str):
    return jsonify([service.plan_to_dict(p) for p in service.plans_for_employee(db_session(), employee_id)])


@bp.put("/training-plans/<int:plan_id>/status")
@require_permission("competency.manage")
def update_plan_status(plan_id: int):
    s = db_session()
    plan = service.update_training_status(s, plan_id, _body(), g.current_user)
    s.commit()
    return jsonify(service.plan_to_dict(plan))


# Summaries


@bp.get("/summary/departments")
@require_permission("competency.view")
def department_summary():
    return jsonify(service.department_summary(db_session()))


@bp.get("/summary/department/<path:department>")
@require_permission("competency.view")
def department_user_summary(department: str):
    return jsonify(service.department_user_summary(db_session(), department))


@bp.get("/summary/competency-gaps")
@require_permission("competency.view")
def competency_gaps():
    return jsonify(service.competency_gap_pareto(db_session()))
