from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import select, update

from app.ims.errors import NotFoundError
from app.ims.modules.notifications.models import Notification
from app.ims.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

RECENT_LIMIT = 20


def notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "message": n.message,
        "is_read": n.is_read,
        "document_id": n.document_id,
        "created_at": iso(n.created_at),
    }


def notify(s: "Session", user_id: int | None, message: str, document_id: int | None = None) -> Notification | None:
    if user_id is None:
        return None
    n = Notification(user_id=user_id, message=message, document_id=document_id)
    s.add(n)
    return n


def recent_for_user(s: "Session", user_id: int) -> list[Notification]:
    q = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(RECENT_LIMIT)
    )
    return list(s.scalars(q))


def mark_read(s: "Session", notification_id: int, user_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    if not n or n.user_id != user_id:
        raise NotFoundError("Notification not found.")
    n.is_read = True
    return n


def mark_all_read(s: "Session", user_id: int) -> int:
    res = s.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    return res.rowcount or 0
