from flask import Blueprint, g, jsonify, request

from app.ims.db import db_session
from app.ims.errors import ValidationError
from app.ims.modules.settings import service
from app.ims.rbac import require_login, require_permission

bp = Blueprint("settings", __name__)


@bp.get("")
@require_permission("settings.manage")
def list_settings():
    s = db_session()
    return jsonify([service.setting_to_dict(st) for st in service.list_settings(s)])


@bp.get("/<key>")
@require_login
def get_setting(key: str):
    s = db_session()
    return jsonify({"key": key, "value": service.get_value(s, key)})


@bp.post("/<key>")
@require_permission("settings.manage")
def upsert_setting(key: str):
    s = db_session()
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or "value" not in body:
        raise ValidationError('Body must be a JSON object with a "value" field.')
    st = service.upsert_setting(s, key, body["value"], g.current_user)
    s.commit()
    return jsonify(service.setting_to_dict(st))
