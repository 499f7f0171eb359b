from __future__ import annotations

from io import BytesIO

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.ims.audit import record_event
from app.ims.constants import SETTING_AUDIT_REPORT_HEADER
from app.ims.db import db_session
from app.ims.errors import ValidationError
from app.ims.modules.internal_audit import service
from app.ims.modules.internal_audit.report import build_audit_report
from app.ims.modules.settings.service import get_value
from app.ims.rbac import require_permission
from app.ims.utils import parse_date, parse_int

bp = Blueprint("internal_audit", __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


@bp.get("/audit-participants")
@require_permission("audits.view")
def list_participants():
    ptype = (request.args.get("type") or "").strip() or None
    return jsonify([service.participant_to_dict(p) for p in service.list_participants(db_session(), ptype)])


@bp.post("/audit-participants")
@require_permission("audits.edit")
def create_participant():
    s = db_session()
    p = service.create_participant(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.participant_to_dict(p)), 201


@bp.post("/audit-participants/with-file")
@require_permission("audits.edit")
def create_participant_with_file():
    s = db_session()
    payload = {k: request.form.get(k) for k in ("type", "name", "email", "department", "remarks")}
    f = request.files.get("file")
    if f is not None and f.filename and not service.certificate_extension_allowed(f.filename):
        raise ValidationError("Only PDF, Word and image files (pdf, doc, docx, jpg, jpeg, png) are allowed.")
    p = service.create_participant(s, payload, g.current_user)
    if f is not None and f.filename:
        service.attach_certificate(
            s, p, file_bytes=f.read(), filename=f.filename, content_type=f.mimetype, user=g.current_user
        )
    s.commit()
    return jsonify(service.participant_to_dict(p)), 201


@bp.put("/audit-participants/<int:participant_id>")
@require_permission("audits.edit")
def update_participant(participant_id: int):
    s = db_session()
    p = service.update_participant(s, service.get_participant(s, participant_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.participant_to_dict(p))


@bp.put("/audit-participants/<int:participant_id>/certificate")
@require_permission("audits.edit")
def upload_certificate(participant_id: int):
    s = db_session()
    p = service.get_participant(s, participant_id)
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ValidationError("file is required.")
    service.attach_certificate(s, p, file_bytes=f.read(), filename=f.filename, content_type=f.mimetype, user=g.current_user)
    s.commit()
    return jsonify(service.participant_to_dict(p))


@bp.get("/audit-participants/<int:participant_id>/certificate")
@require_permission("audits.view")
def download_certificate(participant_id: int):
    p = service.get_participant(db_session(), participant_id)
    fobj = service.open_certificate(p)
    return send_file(fobj, mimetype=p.certificate_content_type, as_attachment=False, download_name=p.certificate_name)


@bp.delete("/audit-participants/<int:participant_id>")
@require_permission("audits.edit")
def delete_participant(participant_id: int):
    s = db_session()
    service.delete_participant(s, service.get_participant(s, participant_id), g.current_user)
    s.commit()
    return "", 204


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@bp.get("/audit-plans")
@require_permission("audits.view")
def list_plans():
    year = (request.args.get("year") or "").strip() or None
    return jsonify([service.plan_to_dict(p) for p in service.list_plans(db_session(), year)])


@bp.post("/audit-plans")
@require_permission("audits.edit")
def upsert_plan():
    s = db_session()
    plan = service.upsert_plan(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.plan_to_dict(plan) if plan is not None else None)


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@bp.get("/audit-schedules")
@require_permission("audits.view")
def list_schedules():
    return jsonify([service.schedule_to_dict(x) for x in service.list_schedules(db_session())])


@bp.post("/audit-schedules")
@require_permission("audits.edit")
def create_schedule():
    s = db_session()
    sch = service.create_schedule(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.schedule_to_dict(sch)), 201


@bp.get("/audit-schedules/<int:schedule_id>")
@require_permission("audits.view")
def get_schedule(schedule_id: int):
    return jsonify(service.schedule_to_dict(service.get_schedule(db_session(), schedule_id)))


@bp.put("/audit-schedules/<int:schedule_id>")
@require_permission("audits.edit")
def update_schedule(schedule_id: int):
    s = db_session()
    sch = service.update_schedule(s, service.get_schedule(s, schedule_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.schedule_to_dict(sch))


@bp.delete("/audit-schedules/<int:schedule_id>")
@require_permission("audits.edit")
def delete_schedule(schedule_id: int):
    s = db_session()
    service.delete_schedule(s, service.get_schedule(s, schedule_id), g.current_user)
    s.commit()
    return "", 204


# ---------------------------------------------------------------------------
# Executions
# ---------------------------------------------------------------------------


@bp.get("/audit-executions")
@require_permission("audits.view")
def list_executions():
    try:
        schedule_id = parse_int(request.args.get("schedule_id"))
    except ValueError as e:
        raise ValidationError("schedule_id must be an integer.") from e
    return jsonify([service.execution_to_dict(x) for x in service.list_executions(db_session(), schedule_id)])


@bp.get("/audit-executions/summary")
@require_permission("audits.view")
def execution_summary():
    try:
        start = parse_date(request.args.get("start_date"))
        end = parse_date(request.args.get("end_date"))
    except ValueError as e:
        raise ValidationError("start_date and end_date must be YYYY-MM-DD dates.") from e
    if start is None or end is None:
        raise ValidationError("start_date and end_date are required.")
    return jsonify(service.summary(db_session(), start, end))


@bp.post("/audit-executions")
@require_permission("audits.edit")
def create_execution():
    s = db_session()
    ex = service.create_execution(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.execution_to_dict(ex)), 201


@bp.get("/audit-executions/<int:execution_id>")
@require_permission("audits.view")
def get_execution(execution_id: int):
    s = db_session()
    return jsonify(service.execution_detail(s, service.get_execution(s, execution_id)))


@bp.put("/audit-executions/<int:execution_id>")
@require_permission("audits.edit")
def update_execution(execution_id: int):
    s = db_session()
    ex = service.update_execution(s, service.get_execution(s, execution_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.execution_to_dict(ex))


@bp.delete("/audit-executions/<int:execution_id>")
@require_permission("audits.edit")
def delete_execution(execution_id: int):
    s = db_session()
    service.delete_execution(s, service.get_execution(s, execution_id), g.current_user)
    s.commit()
    return "", 204


@bp.get("/audit-executions/<int:execution_id>/pdf")
@require_permission("audits.view")
def export_pdf(execution_id: int):
    s = db_session()
    ex = service.get_execution(s, execution_id)
    pdf = build_audit_report(
        ex,
        service.auditees_for(s, ex.schedule.department),
        header_overrides=get_value(s, SETTING_AUDIT_REPORT_HEADER),
        logo_path=current_app.config.get("REPORT_LOGO_PATH") or None,
    )
    record_event(
        s,
        actor=g.current_user,
        action="audit_execution.export",
        entity_type="AuditExecution",
        entity_id=ex.id,
        details=f"Audit report PDF exported for {ex.schedule.department}",
    )
    s.commit()
    filename = f"internal-audit-{ex.schedule.department}-{ex.date.isoformat()}.pdf".replace(" ", "_")
    return send_file(BytesIO(pdf), mimetype="application/pdf", as_attachment=True, download_name=filename)
