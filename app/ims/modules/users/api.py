from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.modules.users import service
from app.ims.rbac import require_login, require_permission

bp = Blueprint("users", __name__)


@bp.get("")
@require_permission("users.view")
def list_users():
    s = db_session()
    include_job_role = (request.args.get("include") or "") == "job_role"
    return jsonify([service.user_to_dict(u, include_job_role=include_job_role) for u in service.list_users(s)])


@bp.get("/<int:user_id>")
@require_login
def get_user(user_id: int):
    s = db_session()
    return jsonify(service.user_to_dict(service.get_user(s, user_id), include_job_role=True))


@bp.put("/<int:user_id>")
@require_permission("users.manage")
def update_user(user_id: int):
    s = db_session()
    user = service.update_user(s, service.get_user(s, user_id), request.get_json(silent=True) or {}, g.current_user)
    s.commit()
    return jsonify(service.user_to_dict(user))


@bp.put("/<int:user_id>/activate")
@require_permission("users.manage")
def activate_user(user_id: int):
    s = db_session()
    user = service.set_active(s, service.get_user(s, user_id), True, g.current_user)
    s.commit()
    return jsonify(service.user_to_dict(user))


@bp.put("/<int:user_id>/deactivate")
@require_permission("users.manage")
def deactivate_user(user_id: int):
    s = db_session()
    user = service.set_active(s, service.get_user(s, user_id), False, g.current_user)
    s.commit()
    return jsonify(service.user_to_dict(user))


@bp.delete("/<int:user_id>")
@require_permission("users.manage")
def delete_user(user_id: int):
    s = db_session()
    service.delete_user(s, service.get_user(s, user_id), g.current_user)
    s.commit()
    return "", 204
