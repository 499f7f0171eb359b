from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.ims.audit import record_event
from app.ims.errors import NotFoundError, ValidationError, raise_if_errors
from app.ims.modules.competency.models import (
    CATEGORIES,
    DEFAULT_MAX_LEVEL,
    MAX_LEVEL_LIMIT,
    TRAINING_ASSIGNED,
    TRAINING_COMPLETED,
    TRAINING_STATUSES,
    Competency,
    CompetencyRequirement,
    EmployeeSkill,
    JobRole,
    TrainingPlan,
    TrainingProgram,
)
from app.ims.modules.org_chart.models import OrgNode
from app.ims.utils import clean_str, iso, parse_date, parse_int, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User

UNASSIGNED = "Unassigned"
NO_ROLE = "No Role"

GAP_MEETS = "Meets"
GAP_NEEDS_IMPROVEMENT = "Needs Improvement"
GAP_CRITICAL = "Critical"


def _log(s: "Session", user: "User", action: str, entity_type: str, entity_id: Any, details: str) -> None:
    record_event(s, actor=user, action=action, entity_type=entity_type, entity_id=entity_id, details=details)


def _int_field(payload: dict, field: str, *, required: bool = True) -> int | None:
    try:
        value = parse_int(payload.get(field))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{field} must be an integer.") from e
    if value is None and required:
        raise ValidationError(f"{field} is required.")
    return value


def _date_field(payload: dict, field: str) -> date | None:
    try:
        return parse_date(payload.get(field))
    except ValueError as e:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date.") from e


# ---------------------------------------------------------------------------
# Serialisers
# ---------------------------------------------------------------------------


def competency_to_dict(c: Competency) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "category": c.category,
        "max_level": c.max_level,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }


def job_role_to_dict(r: JobRole) -> dict[str, Any]:
    return {
        "id": r.id,
        "title": r.title,
        "department": r.department,
        "description": r.description,
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }


def requirement_to_dict(r: CompetencyRequirement) -> dict[str, Any]:
    return {
        "id": r.id,
        "job_role_id": r.job_role_id,
        "competency_id": r.competency_id,
        "required_level": r.required_level,
        "competency": competency_to_dict(r.competency) if r.competency else None,
    }


def skill_to_dict(sk: EmployeeSkill) -> dict[str, Any]:
    return {
        "id": sk.id,
        "employee_id": sk.employee_id,
        "competency_id": sk.competency_id,
        "current_level": sk.current_level,
        "last_assessed_date": iso(sk.last_assessed_date),
        "competency": competency_to_dict(sk.competency) if sk.competency else None,
        "updated_at": iso(sk.updated_at),
    }


def program_to_dict(p: TrainingProgram) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "provider": p.provider,
        "description": p.description,
        "duration": p.duration,
        "target_competency_id": p.target_competency_id,
        "target_competency": competency_to_dict(p.target_competency) if p.target_competency else None,
        "created_at": iso(p.created_at),
    }


def plan_to_dict(p: TrainingPlan) -> dict[str, Any]:
    return {
        "id": p.id,
        "employee_id": p.employee_id,
        "training_program_id": p.training_program_id,
        "training_program": program_to_dict(p.training_program) if p.training_program else None,
        "status": p.status,
        "due_date": iso(p.due_date),
        "completion_date": iso(p.completion_date),
        "assigned_at": iso(p.assigned_at),
        "updated_at": iso(p.updated_at),
    }


# ---------------------------------------------------------------------------
# Competencies
# ---------------------------------------------------------------------------


def list_competencies(s: "Session") -> list[Competency]:
    return list(s.scalars(select(Competency).order_by(Competency.category, Competency.name)))


def get_competency(s: "Session", competency_id: int) -> Competency:
    c = s.get(Competency, competency_id)
    if not c:
        raise NotFoundError("Competency not found")
    return c


def _apply_competency(c: Competency, payload: dict, *, partial: bool) -> None:
    errors = []
    if not partial or "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            errors.append("name is required.")
        c.name = name
    if "description" in payload:
        c.description = clean_str(payload.get("description"))
    if not partial or "category" in payload:
        category = clean_str(payload.get("category")) or "Technical"
        if category not in CATEGORIES:
            errors.append(f"category must be one of: {', '.join(CATEGORIES)}.")
        c.category = category
    if not partial or "max_level" in payload:
        try:
            max_level = parse_int(payload.get("max_level"), default=DEFAULT_MAX_LEVEL)
        except (TypeError, ValueError):
            max_level = None
        if max_level is None or not 1 <= max_level <= MAX_LEVEL_LIMIT:
            errors.append(f"max_level must be between 1 and {MAX_LEVEL_LIMIT}.")
        else:
            c.max_level = max_level
    raise_if_errors(errors)


def create_competency(s: "Session", payload: dict, user: "User") -> Competency:
    c = Competency()
    _apply_competency(c, payload, partial=False)
    s.add(c)
    s.flush()
    _log(s, user, "competency.create", "Competency", c.id, f"Competency '{c.name}' created")
    return c


def update_competency(s: "Session", c: Competency, payload: dict, user: "User") -> Competency:
    _apply_competency(c, payload, partial=True)
    c.updated_at = utcnow()
    _log(s, user, "competency.update", "Competency", c.id, f"Competency '{c.name}' updated")
    return c


def delete_competency(s: "Session", c: Competency, user: "User") -> None:
    _log(s, user, "competency.delete", "Competency", c.id, f"Competency '{c.name}' deleted")
    s.delete(c)


# ---------------------------------------------------------------------------
# Job roles
# ---------------------------------------------------------------------------


def list_job_roles(s: "Session") -> list[JobRole]:
    return list(s.scalars(select(JobRole).order_by(JobRole.title)))


def get_job_role(s: "Session", role_id: int) -> JobRole:
    r = s.get(JobRole, role_id)
    if not r:
        raise NotFoundError("Job Role not found")
    return r


def _apply_job_role(r: JobRole, payload: dict, *, partial: bool) -> None:
    if not partial or "title" in payload:
        title = clean_str(payload.get("title"))
        if not title:
            raise ValidationError("title is required.")
        r.title = title
    for field in ("department", "description"):
        if field in payload:
            setattr(r, field, clean_str(payload.get(field)))


def create_job_role(s: "Session", payload: dict, user: "User") -> JobRole:
    r = JobRole()
    _apply_job_role(r, payload, partial=False)
    s.add(r)
    s.flush()
    _log(s, user, "job_role.create", "JobRole", r.id, f"Job role '{r.title}' created")
    return r


def update_job_role(s: "Session", r: JobRole, payload: dict, user: "User") -> JobRole:
    _apply_job_role(r, payload, partial=True)
    r.updated_at = utcnow()
    _log(s, user, "job_role.update", "JobRole", r.id, f"Job role '{r.title}' updated")
    return r


def delete_job_role(s: "Session", r: JobRole, user: "User") -> None:
    _log(s, user, "job_role.delete", "JobRole", r.id, f"Job role '{r.title}' deleted")
    s.delete(r)


# ---------------------------------------------------------------------------
# Requirements and skills
# ---------------------------------------------------------------------------


def _level(payload: dict, field: str, competency: Competency) -> int:
    level = _int_field(payload, field)
    if not 1 <= level <= competency.max_level:
        raise ValidationError(f"{field} must be between 1 and {competency.max_level}.")
    return level


def upsert_requirement(s: "Session", payload: dict, user: "User") -> CompetencyRequirement:
    role = get_job_role(s, _int_field(payload, "job_role_id"))
    comp = get_competency(s, _int_field(payload, "competency_id"))
    level = _level(payload, "required_level", comp)

    req = s.scalars(
        select(CompetencyRequirement).where(
            CompetencyRequirement.job_role_id == role.id,
            CompetencyRequirement.competency_id == comp.id,
        )
    ).first()
    if req is None:
        req = CompetencyRequirement(job_role_id=role.id, competency_id=comp.id, competency=comp)
        s.add(req)
    req.required_level = level
    s.flush()
    _log(s, user, "competency_requirement.update", "CompetencyRequirement", req.id, f"{role.title} requires {comp.name} at level {level}")
    return req


def delete_requirement(s: "Session", role_id: int, competency_id: int, user: "User") -> None:
    req = s.scalars(
        select(CompetencyRequirement).where(
            CompetencyRequirement.job_role_id == role_id,
            CompetencyRequirement.competency_id == competency_id,
        )
    ).first()
    if req is None:
        raise NotFoundError("Requirement not found")
    _log(s, user, "competency_requirement.delete", "CompetencyRequirement", req.id, f"Requirement removed from {req.job_role.title}")
    s.delete(req)


def requirements_for_role(s: "Session", role_id: int) -> list[CompetencyRequirement]:
    q = select(CompetencyRequirement).where(CompetencyRequirement.job_role_id == role_id).order_by(CompetencyRequirement.id)
    return list(s.scalars(q))


def _get_employee(s: "Session", employee_id: Any) -> OrgNode:
    emp = s.get(OrgNode, str(employee_id or "").strip())
    if not emp:
        raise NotFoundError("Employee not found")
    return emp


def rate_skill(s: "Session", payload: dict, user: "User") -> EmployeeSkill:
    emp = _get_employee(s, payload.get("employee_id"))
    comp = get_competency(s, _int_field(payload, "competency_id"))
    level = _level(payload, "current_level", comp)

    sk = s.scalars(
        select(EmployeeSkill).where(EmployeeSkill.employee_id == emp.id, EmployeeSkill.competency_id == comp.id)
    ).first()
    if sk is None:
        sk = EmployeeSkill(employee_id=emp.id, competency_id=comp.id, competency=comp)
        s.add(sk)
    sk.current_level = level
    sk.last_assessed_date = _date_field(payload, "last_assessed_date") or utcnow().date()
    sk.updated_at = utcnow()
    s.flush()
    _log(s, user, "employee_skill.rate", "EmployeeSkill", sk.id, f"{emp.name} rated {level} in {comp.name}")
    return sk


def skills_for_employee(s: "Session", employee_id: str) -> list[EmployeeSkill]:
    return list(s.scalars(select(EmployeeSkill).where(EmployeeSkill.employee_id == employee_id).order_by(EmployeeSkill.id)))


# ---------------------------------------------------------------------------
# Gap analysis
# ---------------------------------------------------------------------------


def gap_status(gap: int) -> str:
    if gap <= 0:
        return GAP_MEETS
    if gap == 1:
        return GAP_NEEDS_IMPROVEMENT
    return GAP_CRITICAL


def gap_analysis(s: "Session", employee_id: str, role_id: int) -> list[dict[str, Any]]:
    levels = {sk.competency_id: sk.current_level for sk in skills_for_employee(s, employee_id)}
    out = []
    for req in requirements_for_role(s, role_id):
        current = levels.get(req.competency_id, 0)
        gap = req.required_level - current
        out.append(
            {
                "competency": competency_to_dict(req.competency),
                "required_level": req.required_level,
                "current_level": current,
                "gap": gap,
                "status": gap_status(gap),
            }
        )
    return out


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------


def list_programs(s: "Session") -> list[TrainingProgram]:
    return list(s.scalars(select(TrainingProgram).order_by(TrainingProgram.name)))


def create_program(s: "Session", payload: dict, user: "User") -> TrainingProgram:
    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationError("name is required.")
    target_id = _int_field(payload, "target_competency_id", required=False)
    if target_id is not None:
        get_competency(s, target_id)
    p = TrainingProgram(
        name=name,
        provider=clean_str(payload.get("provider")),
        description=clean_str(payload.get("description")),
        duration=clean_str(payload.get("duration")),
        target_competency_id=target_id,
    )
    s.add(p)
    s.flush()
    _log(s, user, "training_program.create", "TrainingProgram", p.id, f"Training program '{p.name}' created")
    return p


def assign_training(s: "Session", payload: dict, user: "User") -> TrainingPlan:
    emp = _get_employee(s, payload.get("employee_id"))
    program = s.get(TrainingProgram, _int_field(payload, "training_program_id"))
    if program is None:
        raise NotFoundError("Training program not found")
    status = clean_str(payload.get("status")) or TRAINING_ASSIGNED
    if status not in TRAINING_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TRAINING_STATUSES)}.")
    plan = TrainingPlan(
        employee_id=emp.id,
        training_program_id=program.id,
        training_program=program,
        status=status,
        due_date=_date_field(payload, "due_date"),
        completion_date=_date_field(payload, "completion_date"),
    )
    s.add(plan)
    s.flush()
    _log(s, user, "training_plan.assign", "TrainingPlan", plan.id, f"'{program.name}' assigned to {emp.name}")
    return plan


def plans_for_employee(s: "Session", employee_id: str) -> list[TrainingPlan]:
    q = select(TrainingPlan).where(TrainingPlan.employee_id == employee_id).order_by(TrainingPlan.assigned_at.desc(), TrainingPlan.id.desc())
    return list(s.scalars(q))


def update_training_status(s: "Session", plan_id: int, payload: dict, user: "User") -> TrainingPlan:
    plan = s.get(TrainingPlan, plan_id)
    if not plan:
        raise NotFoundError("Training plan not found")
    status = clean_str(payload.get("status"))
    if status not in TRAINING_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TRAINING_STATUSES)}.")
    plan.status = status
    completion = _date_field(payload, "completion_date")
    if completion is not None:
        plan.completion_date = completion
    elif status == TRAINING_COMPLETED and plan.completion_date is None:
        plan.completion_date = utcnow().date()
    plan.updated_at = utcnow()
    _log(s, user, "training_plan.status", "TrainingPlan", plan.id, f"Training plan {plan.id} set to {status}")
    return plan


# ---------------------------------------------------------------------------
# Dashboard summaries
# ---------------------------------------------------------------------------


def _scoring_tables(s: "Session") -> tuple[dict[int, list[CompetencyRequirement]], dict[tuple[str, int], int]]:
    reqs_by_role: dict[int, list[CompetencyRequirement]] = defaultdict(list)
    for req in s.scalars(select(CompetencyRequirement)):
        reqs_by_role[req.job_role_id].append(req)
    levels = {
        (employee_id, competency_id): level
        for employee_id, competency_id, level in s.execute(
            select(EmployeeSkill.employee_id, EmployeeSkill.competency_id, EmployeeSkill.current_level)
        ).all()
    }
    return reqs_by_role, levels


def _employee_scores(emp: OrgNode, reqs_by_role, levels) -> tuple[int, int]:
    required = actual = 0
    if emp.job_role_id:
        for req in reqs_by_role.get(emp.job_role_id, []):
            required += req.required_level
            actual += levels.get((emp.id, req.competency_id), 0)
    return required, actual


def department_summary(s: "Session") -> list[dict[str, Any]]:
    reqs_by_role, levels = _scoring_tables(s)
    totals: dict[str, dict[str, int]] = {}
    for emp in s.scalars(select(OrgNode).order_by(OrgNode.department, OrgNode.name)):
        dept = emp.department or UNASSIGNED
        bucket = totals.setdefault(dept, {"required": 0, "actual": 0})
        required, actual = _employee_scores(emp, reqs_by_role, levels)
        bucket["required"] += required
        bucket["actual"] += actual
    return [{"department": dept, **scores} for dept, scores in totals.items()]


def department_user_summary(s: "Session", department: str) -> list[dict[str, Any]]:
    reqs_by_role, levels = _scoring_tables(s)
    q = select(OrgNode).order_by(OrgNode.name)
    if department == UNASSIGNED:
        q = q.where(OrgNode.department.is_(None))
    else:
        q = q.where(OrgNode.department == department)
    out = []
    for emp in s.scalars(q):
        required, actual = _employee_scores(emp, reqs_by_role, levels)
        out.append(
            {
                "id": emp.id,
                "name": emp.name,
                "role": (emp.job_role.title if emp.job_role else None) or emp.designation or NO_ROLE,
                "job_role_id": emp.job_role_id,
                "required": required,
                "actual": actual,
            }
        )
    return out


def competency_gap_pareto(s: "Session") -> list[dict[str, Any]]:
    """Total positive gap per competency across employees, largest first, with cumulative percentage."""
    reqs_by_role, levels = _scoring_tables(s)
    gaps: dict[int, int] = defaultdict(int)
    for emp in s.scalars(select(OrgNode).where(OrgNode.job_role_id.is_not(None))):
        for req in reqs_by_role.get(emp.job_role_id, []):
            gaps[req.competency_id] += max(0, req.required_level - levels.get((emp.id, req.competency_id), 0))

    items = [
        {"competency_id": c.id, "name": c.name, "gap": gaps.get(c.id, 0)}
        for c in s.scalars(select(Competency).order_by(Competency.id))
    ]
    items = sorted((i for i in items if i["gap"] > 0), key=lambda i: i["gap"], reverse=True)
    total = sum(i["gap"] for i in items)
    running = 0
    for item in items:
        running += item["gap"]
        item["percentage"] = round(running / total * 100, 2) if total else 0
    return items
