from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.modules.risks import service
from app.ims.rbac import require_permission
from app.ims.utils import clean_str

bp = Blueprint("risks", __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _comments() -> str | None:
    body = _body()
    return clean_str(body.get("review_comments") or body.get("comments"))


@bp.get("")
@require_permission("risks.view")
def list_risks():
    s = db_session()
    filters = {k: (request.args.get(k) or "").strip() or None for k in ("type", "status", "level", "department", "search")}
    return jsonify([service.risk_to_dict(r) for r in service.list_risks(s, filters)])


@bp.get("/dashboard")
@require_permission("risks.view")
def dashboard():
    return jsonify(service.dashboard(db_session(), (request.args.get("type") or "").strip() or None))


@bp.post("")
@require_permission("risks.edit")
def create_risk():
    s = db_session()
    r = service.create_risk(s, _body(), g.current_user)
    s.commit()
    return jsonify(service.risk_to_dict(r)), 201


@bp.get("/<int:risk_id>")
@require_permission("risks.view")
def get_risk(risk_id: int):
    return jsonify(service.risk_to_dict(service.get_risk(db_session(), risk_id)))


@bp.patch("/<int:risk_id>")
@require_permission("risks.edit")
def update_risk(risk_id: int):
    s = db_session()
    r = service.update_risk(s, service.get_risk(s, risk_id), _body(), g.current_user)
    s.commit()
    return jsonify(service.risk_to_dict(r))


@bp.delete("/<int:risk_id>")
@require_permission("risks.edit")
def delete_risk(risk_id: int):
    s = db_session()
    service.delete_risk(s, service.get_risk(s, risk_id), g.current_user)
    s.commit()
    return "", 204


@bp.post("/<int:risk_id>/submit")
@require_permission("risks.edit")
def submit_risk(risk_id: int):
    s = db_session()
    r = service.submit_risk(s, service.get_risk(s, risk_id), g.current_user)
    s.commit()
    return jsonify(service.risk_to_dict(r))


@bp.post("/<int:risk_id>/approve")
@require_permission("risks.review")
def approve_risk(risk_id: int):
    s = db_session()
    r = service.approve_risk(s, service.get_risk(s, risk_id), g.current_user, _comments())
    s.commit()
    return jsonify(service.risk_to_dict(r))


@bp.post("/<int:risk_id>/reject")
@require_permission("risks.review")
def reject_risk(risk_id: int):
    s = db_session()
    r = service.reject_risk(s, service.get_risk(s, risk_id), g.current_user, _comments())
    s.commit()
    return jsonify(service.risk_to_dict(r))


@bp.post("/<int:risk_id>/close")
@require_permission("risks.review")
def close_risk(risk_id: int):
    s = db_session()
    r = service.close_risk(s, service.get_risk(s, risk_id), g.current_user, _comments())
    s.commit()
    return jsonify(service.risk_to_dict(r))
