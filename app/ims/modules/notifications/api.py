from flask import Blueprint, g, jsonify

from app.ims.db import db_session
from app.ims.modules.notifications import service
from app.ims.rbac import require_login

bp = Blueprint("notifications", __name__)


@bp.get("")
@require_login
def list_notifications():
    s = db_session()
    return jsonify([service.notification_to_dict(n) for n in service.recent_for_user(s, g.current_user.id)])


@bp.put("/<int:notification_id>/read")
@require_login
def mark_read(notification_id: int):
    s = db_session()
    n = service.mark_read(s, notification_id, g.current_user.id)
    s.commit()
    return jsonify(service.notification_to_dict(n))


@bp.put("/read-all")
@require_login
def mark_all_read():
    s = db_session()
    count = service.mark_all_read(s, g.current_user.id)
    s.commit()
    return jsonify({"updated": count})
