from __future__ import annotations

from datetime import date, datetime, time, timedelta
from io import BytesIO
from typing import TYPE_CHECKING, Any

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from sqlalchemy import or_, select

from app.ims.models import AuditEvent, User
from app.ims.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

SECTION_ENTITY_TYPES: dict[str, tuple[str, ...]] = {
    "documents": ("Document",),
    "objectives": ("Objective",),
    "risks": ("Risk",),
    "audits": ("AuditParticipant", "AuditPlan", "AuditSchedule", "AuditExecution"),
    "org_chart": ("OrgNode",),
    "flowcharts": ("Flowchart",),
    "competency": (
        "Competency",
        "JobRole",
        "CompetencyRequirement",
        "EmployeeSkill",
        "TrainingProgram",
        "TrainingPlan",
    ),
    "users": ("User",),
    "settings": ("SystemSetting",),
}

SECTION_LABELS = {
    "documents": "Documents",
    "objectives": "Objectives",
    "risks": "Risks",
    "audits": "Internal Audit",
    "org_chart": "Org Chart",
    "flowcharts": "Flowcharts",
    "competency": "Competency",
    "users": "Users",
    "settings": "Settings",
}

EXPORT_HEADERS = ("Timestamp", "User", "Action", "Section", "Details")
_EXPORT_WIDTHS = (20, 25, 28, 16, 60)
_HEADER_FILL = PatternFill(start_color="FFE0E0E0", end_color="FFE0E0E0", fill_type="solid")


def section_for(entity_type: str | None) -> str:
    for key, types in SECTION_ENTITY_TYPES.items():
        if entity_type in types:
            return SECTION_LABELS[key]
    return "Other"


def actor_label(ev: AuditEvent) -> str:
    if ev.actor is not None:
        return ev.actor.full_name or ev.actor.email
    return ev.actor_user_email or "System"


def event_to_dict(ev: AuditEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "timestamp": iso(ev.created_at),
        "action": ev.action,
        "entity_type": ev.entity_type,
        "entity_id": ev.entity_id,
        "section": section_for(ev.entity_type),
        "details": ev.details,
        "reason": ev.reason,
        "request_id": ev.request_id,
        "client_ip": ev.client_ip,
        "user": (
            {"id": ev.actor.id, "email": ev.actor.email, "name": ev.actor.full_name}
            if ev.actor is not None
            else None
        ),
        "user_label": actor_label(ev),
    }


def list_events(
    s: "Session",
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    section: str | None = None,
    action: str | None = None,
    search: str | None = None,
) -> list[AuditEvent]:
    q = select(AuditEvent).outerjoin(User, AuditEvent.actor_user_id == User.id)
    if start_date:
        q = q.where(AuditEvent.created_at >= datetime.combine(start_date, time.min))
    if end_date:
        # inclusive end-date (whole day)
        q = q.where(AuditEvent.created_at < datetime.combine(end_date + timedelta(days=1), time.min))
    if section and section != "all":
        types = SECTION_ENTITY_TYPES.get(section.lower())
        if types is None:
            return []
        q = q.where(AuditEvent.entity_type.in_(types))
    if action and action != "all":
        q = q.where(or_(AuditEvent.action == action, AuditEvent.action.endswith(f".{action}", autoescape=True)))
    if search:
        like = f"%{search.lower()}%"
        q = q.where(
            or_(
                AuditEvent.details.ilike(like),
                AuditEvent.reason.ilike(like),
                AuditEvent.actor_user_email.ilike(like),
                User.first_name.ilike(like),
                User.last_name.ilike(like),
            )
        )
    q = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
    return list(s.scalars(q))


def export_workbook(events: list[AuditEvent]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Audit Logs"
    ws.append(list(EXPORT_HEADERS))
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.fill = _HEADER_FILL
    for col, width in zip("ABCDE", _EXPORT_WIDTHS):
        ws.column_dimensions[col].width = width

    for ev in events:
        ws.append(
            [
                ev.created_at.strftime("%Y-%m-%d %H:%M:%S") if ev.created_at else "",
                actor_label(ev),
                ev.action,
                section_for(ev.entity_type),
                ev.details or "",
            ]
        )

    out = BytesIO()
    wb.save(out)
    return out.getvalue()
