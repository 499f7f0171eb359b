from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select
from werkzeug.security import generate_password_hash

from app.ims.audit import record_event
from app.ims.constants import ROLE_VIEWER
from app.ims.errors import ConflictError, NotFoundError, ValidationError, raise_if_errors
from app.ims.models import Role, User
from app.ims.utils import clean_str, iso, text_value

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def user_to_dict(user: User, *, include_permissions: bool = False, include_job_role: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "name": user.full_name,
        "department": user.department,
        "job_role_id": user.job_role_id,
        "roles": user.role_keys,
        "is_active": user.is_active,
        "created_at": iso(user.created_at),
        "updated_at": iso(user.updated_at),
    }
    if include_job_role:
        jr = user.job_role
        out["job_role"] = {"id": jr.id, "title": jr.title, "department": jr.department} if jr else None
    if include_permissions:
        out["permissions"] = sorted({p.key for r in user.roles for p in r.permissions})
    return out


def get_user(s: "Session", user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found.")
    return user


def list_users(s: "Session") -> list[User]:
    return list(s.scalars(select(User).order_by(User.last_name, User.first_name, User.email)))


def _resolve_roles(s: "Session", keys: Any) -> list[Role]:
    if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
        raise ValidationError("roles must be a list of role keys.")
    roles = list(s.scalars(select(Role).where(Role.key.in_(keys))))
    unknown = sorted(set(keys) - {r.key for r in roles})
    if unknown:
        raise ValidationError(f"Unknown role(s): {', '.join(unknown)}")
    return roles


def _email_taken(s: "Session", email: str, exclude_id: int | None = None) -> bool:
    q = select(func.count()).select_from(User).where(User.email == email)
    if exclude_id is not None:
        q = q.where(User.id != exclude_id)
    return bool(s.scalar(q))


def _check_job_role(s: "Session", job_role_id: Any) -> int | None:
    from app.ims.modules.competency.models import JobRole

    if job_role_id in (None, ""):
        return None
    try:
        jr_id = int(job_role_id)
    except (TypeError, ValueError) as e:
        raise ValidationError("job_role_id must be an integer.") from e
    if not s.get(JobRole, jr_id):
        raise ValidationError(f"Job role {jr_id} not found.")
    return jr_id


def create_user(s: "Session", payload: dict, actor: User | None) -> User:
    """Create an account. Used by /auth/register (admin only) and seeding."""
    email = text_value(payload.get("email")).lower()
    password = payload.get("password")
    if not isinstance(password, str):
        password = ""

    errors = []
    if not _EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    raise_if_errors(errors)
    if _email_taken(s, email):
        raise ValidationError("Email already registered.")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        first_name=clean_str(payload.get("first_name")),
        last_name=clean_str(payload.get("last_name")),
        department=clean_str(payload.get("department")),
        job_role_id=_check_job_role(s, payload.get("job_role_id")),
        is_active=True,
    )
    user.roles.extend(_resolve_roles(s, payload.get("roles") or [ROLE_VIEWER]))
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=user.id,
        details=f"User {user.email} registered",
        metadata={"roles": user.role_keys},
    )
    return user


def update_user(s: "Session", user: User, payload: dict, actor: User) -> User:
    changes: dict[str, Any] = {}

    if "email" in payload:
        email = text_value(payload.get("email")).lower()
        if not _EMAIL_RE.match(email):
            raise ValidationError("A valid email is required.")
        if email != user.email:
            if _email_taken(s, email, exclude_id=user.id):
                raise ValidationError("Email already registered.")
            changes["email"] = {"old": user.email, "new": email}
            user.email = email

    for field in ("first_name", "last_name", "department"):
        if field in payload:
            new = clean_str(payload.get(field))
            if new != getattr(user, field):
                changes[field] = {"old": getattr(user, field), "new": new}
                setattr(user, field, new)

    if "job_role_id" in payload:
        new_jr = _check_job_role(s, payload.get("job_role_id"))
        if new_jr != user.job_role_id:
            changes["job_role_id"] = {"old": user.job_role_id, "new": new_jr}
            user.job_role_id = new_jr

    if "roles" in payload:
        roles = _resolve_roles(s, payload.get("roles"))
        new_keys = sorted(r.key for r in roles)
        if new_keys != user.role_keys:
            changes["roles"] = {"old": user.role_keys, "new": new_keys}
            user.roles = roles

    if "password" in payload and payload.get("password"):
        password = payload["password"]
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        user.password_hash = generate_password_hash(password)
        changes["password"] = "changed"

    record_event(
        s,
        actor=actor,
        action="user.update",
        entity_type="User",
        entity_id=user.id,
        details=f"User {user.email} updated",
        metadata={"changes": changes},
    )
    return user


def set_active(s: "Session", user: User, active: bool, actor: User) -> User:
    if not active and user.id == actor.id:
        raise ValidationError("You cannot deactivate your own account.")
    user.is_active = active
    verb = "activate" if active else "deactivate"
    record_event(
        s,
        actor=actor,
        action=f"user.{verb}",
        entity_type="User",
        entity_id=user.id,
        details=f"User {user.email} {verb}d",
    )
    return user


def delete_user(s: "Session", user: User, actor: User) -> None:
    from app.ims.modules.documents.models import Document
    from app.ims.modules.objectives.models import Objective
    from app.ims.modules.risks.models import Risk

    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account.")
    owned = (
        s.scalar(select(func.count()).select_from(Document).where(Document.owner_id == user.id))
        or s.scalar(select(func.count()).select_from(Risk).where(Risk.owner_id == user.id))
        or s.scalar(select(func.count()).select_from(Objective).where(Objective.owner_id == user.id))
    )
    if owned:
        raise ConflictError("User owns records; deactivate the account instead.")

    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=user.id,
        details=f"User {user.email} deleted",
    )
    s.delete(user)
