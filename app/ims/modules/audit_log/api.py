from __future__ import annotations

from io import BytesIO

from flask import Blueprint, g, jsonify, request, send_file

from app.ims.audit import record_event
from app.ims.db import db_session
from app.ims.errors import ValidationError
from app.ims.modules.audit_log import service
from app.ims.rbac import require_permission
from app.ims.utils import parse_date, utcnow

bp = Blueprint("audit_log", __name__)


def _filters() -> dict:
    try:
        start_date = parse_date(request.args.get("start_date") or request.args.get("startDate"))
        end_date = parse_date(request.args.get("end_date") or request.args.get("endDate"))
    except ValueError as e:
        raise ValidationError("start_date and end_date must be YYYY-MM-DD dates.") from e
    return {
        "start_date": start_date,
        "end_date": end_date,
        "section": (request.args.get("section") or "").strip() or None,
        "action": (request.args.get("action") or "").strip() or None,
        "search": (request.args.get("search") or "").strip() or None,
    }


@bp.get("")
@require_permission("audit_log.view")
def list_logs():
    events = service.list_events(db_session(), **_filters())
    return jsonify([service.event_to_dict(ev) for ev in events])


@bp.get("/export")
@require_permission("audit_log.view")
def export_logs():
    s = db_session()
    filters = _filters()
    events = service.list_events(s, **filters)
    data = service.export_workbook(events)
    record_event(
        s,
        actor=g.current_user,
        action="audit_log.export",
        entity_type="AuditLog",
        entity_id="export",
        metadata={k: str(v) for k, v in filters.items() if v},
    )
    s.commit()
    return send_file(
        BytesIO(data),
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        as_attachment=True,
        download_name=f"audit-logs-{utcnow().strftime('%Y%m%d')}.xlsx",
        max_age=0,
    )
