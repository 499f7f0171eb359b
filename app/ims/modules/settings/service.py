from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from app.ims.audit import record_event
from app.ims.errors import ValidationError
from app.ims.modules.settings.models import SystemSetting
from app.ims.utils import iso, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.ims.models import User

MAX_KEY_LENGTH = 128


def setting_to_dict(st: SystemSetting) -> dict:
    return {"key": st.key, "value": st.value, "updated_at": iso(st.updated_at)}


def list_settings(s: "Session") -> list[SystemSetting]:
    return list(s.scalars(select(SystemSetting).order_by(SystemSetting.key)))


def get_value(s: "Session", key: str, default: Any = None) -> Any:
    st = s.get(SystemSetting, key)
    return st.value if st is not None else default


def upsert_setting(s: "Session", key: str, value: Any, user: "User") -> SystemSetting:
    key = (key or "").strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationError("Setting key is required (max 128 characters).")
    st = s.get(SystemSetting, key)
    if st is None:
        st = SystemSetting(key=key, value=value)
        s.add(st)
    else:
        st.value = value
        st.updated_at = utcnow()
    record_event(
        s,
        actor=user,
        action="setting.update",
        entity_type="SystemSetting",
        entity_id=key,
        details=f"Setting '{key}' updated",
    )
    return st
