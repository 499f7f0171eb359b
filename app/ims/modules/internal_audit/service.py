from __future__ import annotations

import re
import uuid
from datetime import date
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import select

from app.ims.audit import record_event
from app.ims.errors import ConflictError, NotFoundError, ValidationError, raise_if_errors
from app.ims.modules.internal_audit.models import (
    EXECUTION_DRAFT,
    EXECUTION_STATUSES,
    EXECUTION_SUBMITTED,
    FINDING_STATUSES,
    PARTICIPANT_TYPES,
    PLAN_OUTCOMES,
    SCHEDULE_COMPLETED,
    SCHEDULE_IN_PROGRESS,
    SCHEDULE_PENDING,
    SCHEDULE_STATUSES,
    AuditExecution,
    AuditParticipant,
    AuditPlan,
    AuditSchedule,
)
from app.ims.storage import build_storage_key, sanitize_upload_filename, storage_from_config
from app.ims.utils import clean_str, iso, parse_bool, parse_date, round_half_up, text_value, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User

CERTIFICATE_EXTENSIONS = frozenset({"pdf", "doc", "docx", "jpg", "jpeg", "png"})
_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
_ENTRY_TEXT_FIELDS = ("title", "doc_number", "observation", "clause", "nc_statement", "requirement")


def _log(s: "Session", user: "User", action: str, entity_type: str, entity_id: Any, details: str) -> None:
    record_event(s, actor=user, action=action, entity_type=entity_type, entity_id=entity_id, details=details)


def _required_date(payload: dict, field: str) -> date:
    try:
        value = parse_date(payload.get(field))
    except ValueError as e:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date.") from e
    if value is None:
        raise ValidationError(f"{field} is required.")
    return value


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


def participant_to_dict(p: AuditParticipant) -> dict[str, Any]:
    return {
        "id": p.id,
        "type": p.type,
        "name": p.name,
        "email": p.email,
        "department": p.department,
        "remarks": p.remarks,
        "certificate_name": p.certificate_name,
        "has_certificate": bool(p.certificate_storage_key),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


def get_participant(s: "Session", participant_id: int) -> AuditParticipant:
    p = s.get(AuditParticipant, participant_id)
    if not p:
        raise NotFoundError("Participant not found")
    return p


def list_participants(s: "Session", ptype: str | None = None) -> list[AuditParticipant]:
    q = select(AuditParticipant).order_by(AuditParticipant.name)
    if ptype:
        q = q.where(AuditParticipant.type == ptype)
    return list(s.scalars(q))


def _apply_participant(p: AuditParticipant, payload: dict, *, partial: bool) -> None:
    errors = []
    if not partial or "type" in payload:
        if payload.get("type") not in PARTICIPANT_TYPES:
            errors.append("type must be 'auditor' or 'auditee'.")
    if not partial or "name" in payload:
        if not text_value(payload.get("name")):
            errors.append("Name is required.")
    raise_if_errors(errors)
    if "type" in payload:
        p.type = payload["type"]
    if "name" in payload:
        p.name = text_value(payload["name"])
    for field in ("email", "department", "remarks"):
        if field in payload:
            setattr(p, field, clean_str(payload.get(field)))


def create_participant(s: "Session", payload: dict, user: "User") -> AuditParticipant:
    p = AuditParticipant()
    _apply_participant(p, payload, partial=False)
    s.add(p)
    s.flush()
    _log(s, user, "audit_participant.create", "AuditParticipant", p.id, f"{p.type.title()} {p.name} added")
    return p


def update_participant(s: "Session", p: AuditParticipant, payload: dict, user: "User") -> AuditParticipant:
    _apply_participant(p, payload, partial=True)
    p.updated_at = utcnow()
    _log(s, user, "audit_participant.update", "AuditParticipant", p.id, f"{p.type.title()} {p.name} updated")
    return p


def delete_participant(s: "Session", p: AuditParticipant, user: "User") -> None:
    key = p.certificate_storage_key
    _log(s, user, "audit_participant.delete", "AuditParticipant", p.id, f"{p.type.title()} {p.name} removed")
    s.delete(p)
    s.flush()
    if key:
        storage_from_config(current_app.config).delete(key)


def certificate_extension_allowed(filename: str) -> bool:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return ext in CERTIFICATE_EXTENSIONS


def attach_certificate(
    s: "Session",
    p: AuditParticipant,
    *,
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: "User",
) -> AuditParticipant:
    if not certificate_extension_allowed(filename or ""):
        raise ValidationError("Only PDF, Word and image files (pdf, doc, docx, jpg, jpeg, png) are allowed.")
    safe_name = sanitize_upload_filename(filename, fallback="certificate.bin")
    key = build_storage_key("audit-certificates", p.id, f"{uuid.uuid4().hex[:8]}-{safe_name}")
    storage = storage_from_config(current_app.config)
    storage.put_bytes(key, file_bytes, content_type=content_type)
    old_key = p.certificate_storage_key
    p.certificate_name = safe_name
    p.certificate_storage_key = key
    p.certificate_content_type = content_type or "application/octet-stream"
    _log(s, user, "audit_participant.certificate_upload", "AuditParticipant", p.id, f"Certificate {safe_name} uploaded for {p.name}")
    if old_key and old_key != key:
        storage.delete(old_key)
    return p


def open_certificate(p: AuditParticipant):
    if not p.certificate_storage_key:
        raise NotFoundError("Certificate not found")
    return storage_from_config(current_app.config).open(p.certificate_storage_key)


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


def plan_to_dict(plan: AuditPlan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "department": plan.department,
        "month": plan.month,
        "is_planned": plan.is_planned,
        "outcome": plan.outcome,
        "updated_at": iso(plan.updated_at),
    }


def list_plans(s: "Session", year: str | None = None) -> list[AuditPlan]:
    q = select(AuditPlan).order_by(AuditPlan.department, AuditPlan.month)
    if year:
        q = q.where(AuditPlan.month.like(f"{year}-%"))
    return list(s.scalars(q))


def upsert_plan(s: "Session", payload: dict, user: "User") -> AuditPlan | None:
    """Set one cell of the plan grid. A cell with nothing planned and no outcome is removed."""
    department = text_value(payload.get("department"))
    month = text_value(payload.get("month"))
    outcome = clean_str(payload.get("outcome"))
    errors = []
    if not department:
        errors.append("department is required.")
    if not _MONTH_RE.match(month):
        errors.append("month must be YYYY-MM.")
    if outcome is not None and outcome not in PLAN_OUTCOMES:
        errors.append("outcome must be 'actual', 'cancelled' or empty.")
    raise_if_errors(errors)
    is_planned = parse_bool(payload.get("is_planned"), default=False)

    plan = s.scalars(select(AuditPlan).where(AuditPlan.department == department, AuditPlan.month == month)).first()
    if not is_planned and outcome is None:
        if plan is not None:
            _log(s, user, "audit_plan.delete", "AuditPlan", plan.id, f"Plan cleared for {department} {month}")
            s.delete(plan)
        return None

    if plan is None:
        plan = AuditPlan(department=department, month=month)
        s.add(plan)
    plan.is_planned = is_planned
    plan.outcome = outcome
    plan.updated_at = utcnow()
    s.flush()
    _log(s, user, "audit_plan.update", "AuditPlan", plan.id, f"Plan set for {department} {month}")
    return plan


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


def schedule_to_dict(sch: AuditSchedule) -> dict[str, Any]:
    return {
        "id": sch.id,
        "department": sch.department,
        "date": iso(sch.date),
        "scope": sch.scope,
        "status": sch.status,
        "auditors": [{"id": a.id, "name": a.name, "email": a.email} for a in sch.auditors],
        "execution_id": sch.execution.id if sch.execution else None,
        "created_at": iso(sch.created_at),
        "updated_at": iso(sch.updated_at),
    }


def get_schedule(s: "Session", schedule_id: int) -> AuditSchedule:
    sch = s.get(AuditSchedule, schedule_id)
    if not sch:
        raise NotFoundError("Audit schedule not found")
    return sch


def list_schedules(s: "Session") -> list[AuditSchedule]:
    return list(s.scalars(select(AuditSchedule).order_by(AuditSchedule.date.asc(), AuditSchedule.id.asc())))


def _resolve_auditors(s: "Session", ids: Any) -> list[AuditParticipant]:
    if not isinstance(ids, list):
        raise ValidationError("auditor_ids must be a list.")
    try:
        wanted = {int(i) for i in ids}
    except (TypeError, ValueError) as e:
        raise ValidationError("auditor_ids must contain integers.") from e
    found = list(s.scalars(select(AuditParticipant).where(AuditParticipant.id.in_(wanted)))) if wanted else []
    missing = sorted(wanted - {p.id for p in found})
    if missing:
        raise ValidationError(f"Unknown auditor id(s): {', '.join(str(m) for m in missing)}")
    return found


def create_schedule(s: "Session", payload: dict, user: "User") -> AuditSchedule:
    department = text_value(payload.get("department"))
    if not department:
        raise ValidationError("department is required.")
    status = payload.get("status") or SCHEDULE_PENDING
    if status not in SCHEDULE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(SCHEDULE_STATUSES)}")
    sch = AuditSchedule(
        department=department,
        date=_required_date(payload, "date"),
        scope=clean_str(payload.get("scope")),
        status=status,
    )
    sch.auditors = _resolve_auditors(s, payload.get("auditor_ids") or [])
    s.add(sch)
    s.flush()
    _log(s, user, "audit_schedule.create", "AuditSchedule", sch.id, f"Audit scheduled for {department} on {sch.date.isoformat()}")
    return sch


def update_schedule(s: "Session", sch: AuditSchedule, payload: dict, user: "User") -> AuditSchedule:
    if "department" in payload:
        department = text_value(payload.get("department"))
        if not department:
            raise ValidationError("department is required.")
        sch.department = department
    if "date" in payload:
        sch.date = _required_date(payload, "date")
    if "scope" in payload:
        sch.scope = clean_str(payload.get("scope"))
    if "status" in payload:
        if payload["status"] not in SCHEDULE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(SCHEDULE_STATUSES)}")
        sch.status = payload["status"]
    if "auditor_ids" in payload:
        sch.auditors = _resolve_auditors(s, payload.get("auditor_ids") or [])
    sch.updated_at = utcnow()
    _log(s, user, "audit_schedule.update", "AuditSchedule", sch.id, f"Audit schedule for {sch.department} updated")
    return sch


def delete_schedule(s: "Session", sch: AuditSchedule, user: "User") -> None:
    _log(s, user, "audit_schedule.delete", "AuditSchedule", sch.id, f"Audit schedule for {sch.department} on {sch.date.isoformat()} deleted")
    s.delete(sch)


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


def normalize_entries(raw: Any) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("entries must be a list.")
    out = []
    for i, item in enumerate(raw, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Entry {i} must be an object.")
        status = item.get("status") or ""
        if status not in FINDING_STATUSES:
            raise ValidationError(f"Entry {i}: status must be OK, AFI, NC or empty.")
        target = item.get("target_date")
        try:
            target_date = parse_date(target) if target else None
        except ValueError as e:
            raise ValidationError(f"Entry {i}: target_date must be a YYYY-MM-DD date.") from e
        entry = {"id": str(item.get("id") or uuid.uuid4().hex)}
        for field in _ENTRY_TEXT_FIELDS:
            value = item.get(field)
            entry[field] = "" if value is None else str(value).strip()
        entry["status"] = status
        entry["target_date"] = iso(target_date)
        out.append(entry)
    return out


def count_findings(entries: list[dict]) -> dict[str, int]:
    counts = {"OK": 0, "AFI": 0, "NC": 0}
    for e in entries or []:
        if e.get("status") in counts:
            counts[e["status"]] += 1
    return counts


def execution_to_dict(ex: AuditExecution) -> dict[str, Any]:
    counts = count_findings(ex.entries)
    return {
        "id": ex.id,
        "schedule_id": ex.schedule_id,
        "date": iso(ex.date),
        "status": ex.status,
        "entries": list(ex.entries or []),
        "nc_count": counts["NC"],
        "afi_count": counts["AFI"],
        "ok_count": counts["OK"],
        "created_at": iso(ex.created_at),
        "updated_at": iso(ex.updated_at),
    }


def get_execution(s: "Session", execution_id: int) -> AuditExecution:
    ex = s.get(AuditExecution, execution_id)
    if not ex:
        raise NotFoundError("Audit execution not found")
    return ex


def list_executions(s: "Session", schedule_id: int | None = None) -> list[AuditExecution]:
    q = select(AuditExecution).order_by(AuditExecution.date.desc(), AuditExecution.id.desc())
    if schedule_id is not None:
        q = q.where(AuditExecution.schedule_id == schedule_id)
    return list(s.scalars(q))


def auditees_for(s: "Session", department: str) -> list[AuditParticipant]:
    q = (
        select(AuditParticipant)
        .where(AuditParticipant.type == "auditee", AuditParticipant.department == department)
        .order_by(AuditParticipant.name)
    )
    return list(s.scalars(q))


def execution_detail(s: "Session", ex: AuditExecution) -> dict[str, Any]:
    out = execution_to_dict(ex)
    out["schedule"] = schedule_to_dict(ex.schedule)
    out["auditees"] = [participant_to_dict(p) for p in auditees_for(s, ex.schedule.department)]
    return out


def _validated_status(value: Any) -> str:
    status = value or EXECUTION_DRAFT
    if status not in EXECUTION_STATUSES:
        raise ValidationError("status must be 'Draft' or 'Submitted'.")
    return status


def create_execution(s: "Session", payload: dict, user: "User") -> AuditExecution:
    try:
        schedule_id = int(payload.get("schedule_id"))
    except (TypeError, ValueError) as e:
        raise ValidationError("schedule_id is required.") from e
    sch = get_schedule(s, schedule_id)
    if sch.execution is not None:
        raise ConflictError("This audit already has an execution record.")
    status = _validated_status(payload.get("status"))

    ex = AuditExecution(
        schedule_id=sch.id,
        date=_required_date(payload, "date"),
        status=status,
        entries=normalize_entries(payload.get("entries")),
    )
    s.add(ex)
    sch.execution = ex
    sch.status = SCHEDULE_COMPLETED if status == EXECUTION_SUBMITTED else SCHEDULE_IN_PROGRESS
    s.flush()
    _log(s, user, f"audit_execution.{'submit' if status == EXECUTION_SUBMITTED else 'create'}", "AuditExecution", ex.id, f"Audit of {sch.department} recorded ({status})")
    return ex


def update_execution(s: "Session", ex: AuditExecution, payload: dict, user: "User") -> AuditExecution:
    if "date" in payload:
        ex.date = _required_date(payload, "date")
    if "entries" in payload:
        ex.entries = normalize_entries(payload.get("entries"))
    verb = "update"
    if "status" in payload:
        ex.status = _validated_status(payload.get("status"))
        if ex.status == EXECUTION_SUBMITTED:
            ex.schedule.status = SCHEDULE_COMPLETED
            verb = "submit"
        else:
            ex.schedule.status = SCHEDULE_IN_PROGRESS
    ex.updated_at = utcnow()
    _log(s, user, f"audit_execution.{verb}", "AuditExecution", ex.id, f"Audit of {ex.schedule.department} updated ({ex.status})")
    return ex


def delete_execution(s: "Session", ex: AuditExecution, user: "User") -> None:
    _log(s, user, "audit_execution.delete", "AuditExecution", ex.id, f"Audit record for {ex.schedule.department} deleted")
    ex.schedule.execution = None
    s.delete(ex)


def compliance_score(entries: list[dict]) -> int:
    """Share of OK + AFI findings over all findings, 0..100; 100 when there are none."""
    if not entries:
        return 100
    counts = count_findings(entries)
    return round_half_up((counts["OK"] + counts["AFI"]) / len(entries) * 100)


def summary(s: "Session", start: date, end: date) -> dict[str, Any]:
    if end < start:
        raise ValidationError("end_date must not be before start_date.")
    schedules = list(s.scalars(select(AuditSchedule).where(AuditSchedule.date >= start, AuditSchedule.date <= end)))
    executions = list(
        s.scalars(
            select(AuditExecution)
            .where(
                AuditExecution.date >= start,
                AuditExecution.date <= end,
                AuditExecution.status == EXECUTION_SUBMITTED,
            )
            .order_by(AuditExecution.date.desc(), AuditExecution.id.desc())
        )
    )
    all_entries = [e for ex in executions for e in (ex.entries or [])]
    totals = count_findings(all_entries)

    reports = []
    for ex in executions:
        counts = count_findings(ex.entries)
        reports.append(
            {
                "id": ex.id,
                "date": iso(ex.date),
                "department": ex.schedule.department if ex.schedule else "N/A",
                "scope": (ex.schedule.scope if ex.schedule else None) or "",
                "auditors": [a.name for a in ex.schedule.auditors] if ex.schedule else [],
                "nc_count": counts["NC"],
                "afi_count": counts["AFI"],
            }
        )

    return {
        "stats": {
            "total_schedules": len(schedules),
            "completed_schedules": sum(1 for sch in schedules if sch.status == SCHEDULE_COMPLETED),
            "total_nc": totals["NC"],
            "total_afi": totals["AFI"],
            "compliance_score": compliance_score(all_entries),
        },
        "reports": reports,
    }
