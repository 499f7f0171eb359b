from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.modules.objectives import service
from app.ims.rbac import require_permission

bp = Blueprint("objectives", __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _filters() -> dict:
    return {k: (request.args.get(k) or "").strip() or None for k in ("type", "status", "department", "search")}


@bp.get("")
@require_permission("objectives.view")
def list_objectives():
    s = db_session()
    return jsonify([service.objective_to_dict(o) for o in service.list_objectives(s, _filters())])


@bp.get("/dashboard")
@require_permission("objectives.view")
def dashboard():
    return jsonify(service.dashboard(db_session(), _filters()))


@bp.post("")
@require_permission("objectives.edit")
def create_objective():
    s = db_session()
    o = service.create_objective(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.objective_to_dict(o)), 201


@bp.get("/<int:objective_id>")
@require_permission("objectives.view")
def get_objective(objective_id: int):
    o = service.get_objective(db_session(), objective_id)
    return jsonify(service.objective_to_dict(o, include_measurements=True))


@bp.patch("/<int:objective_id>")
@bp.put("/<int:objective_id>")
@require_permission("objectives.edit")
def update_objective(objective_id: int):
    s = db_session()
    o = service.update_objective(s, service.get_objective(s, objective_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.objective_to_dict(o))


@bp.delete("/<int:objective_id>")
@require_permission("objectives.edit")
def delete_objective(objective_id: int):
    s = db_session()
    service.delete_objective(s, service.get_objective(s, objective_id), g.current_user)
    s.commit()
    return "", 204


@bp.post("/<int:objective_id>/measurements")
@require_permission("objectives.edit")
def add_measurement(objective_id: int):
    s = db_session()
    m = service.add_measurement(s, service.get_objective(s, objective_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.measurement_to_dict(m)), 201


@bp.get("/<int:objective_id>/measurements")
@require_permission("objectives.view")
def list_measurements(objective_id: int):
    s = db_session()
    o = service.get_objective(s, objective_id)
    return jsonify([service.measurement_to_dict(m) for m in service.list_measurements(s, o)])


@bp.delete("/measurements/<int:measurement_id>")
@require_permission("objectives.edit")
def delete_measurement(measurement_id: int):
    s = db_session()
    service.delete_measurement(s, measurement_id, g.current_user)
    s.commit()
    return "", 204
