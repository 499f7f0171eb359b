from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.modules.flowcharts import service
from app.ims.rbac import require_permission

bp = Blueprint("flowcharts", __name__)


@bp.get("")
@require_permission("flowcharts.view")
def list_flowcharts():
    return jsonify([service.flowchart_to_dict(f) for f in service.list_flowcharts(db_session())])


@bp.get("/latest")
@require_permission("flowcharts.view")
def latest():
    f = service.latest_flowchart(db_session())
    return jsonify(service.flowchart_to_dict(f) if f is not None else None)


@bp.get("/<flowchart_id>")
@require_permission("flowcharts.view")
def get_flowchart(flowchart_id: str):
    return jsonify(service.flowchart_to_dict(service.get_flowchart(db_session(), flowchart_id)))


@bp.post("")
@require_permission("flowcharts.edit")
def save_flowchart():
    s = db_session()
    data = request.get_json(silent=True)
    f = service.save_flowchart(s, data if isinstance(data, dict) else {}, g.current_user)
    s.commit()
    return jsonify(service.flowchart_to_dict(f))
