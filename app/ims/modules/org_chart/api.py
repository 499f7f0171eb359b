from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.errors import ValidationError
from app.ims.modules.org_chart import service
from app.ims.rbac import require_permission

bp = Blueprint("org_chart", __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


@bp.get("")
@require_permission("org_chart.view")
def list_nodes():
    return jsonify([service.node_to_dict(n) for n in service.list_nodes(db_session())])


@bp.get("/tree")
@require_permission("org_chart.view")
def tree():
    return jsonify(service.build_tree(service.list_nodes(db_session())))


@bp.get("/<node_id>")
@require_permission("org_chart.view")
def get_node(node_id: str):
    return jsonify(service.node_to_dict(service.get_node(db_session(), node_id)))


@bp.post("")
@require_permission("org_chart.edit")
def create_node():
    s = db_session()
    n = service.create_node(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.node_to_dict(n)), 201


@bp.post("/bulk")
@require_permission("org_chart.edit")
def bulk_upsert():
    s = db_session()
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        data = data.get("nodes")
    result = service.bulk_upsert(s, data, g.current_user)
    s.commit()
    return jsonify(result)


@bp.post("/import")
@require_permission("org_chart.edit")
def import_workbook():
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ValidationError("file is required.")
    if not f.filename.lower().endswith(".xlsx"):
        raise ValidationError("Only .xlsx files are supported.")
    s = db_session()
    result = service.import_workbook(s, f.read(), g.current_user)
    s.commit()
    return jsonify(result)


@bp.put("/<node_id>")
@require_permission("org_chart.edit")
def update_node(node_id: str):
    s = db_session()
    n = service.update_node(s, service.get_node(s, node_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.node_to_dict(n))


@bp.delete("/<node_id>")
@require_permission("org_chart.edit")
def delete_node(node_id: str):
    s = db_session()
    service.delete_node(s, service.get_node(s, node_id), g.current_user)
    s.commit()
    return jsonify({"deleted": True})
