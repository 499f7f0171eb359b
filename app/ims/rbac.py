from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify

from app.ims.models import User


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    for role in user.roles:
        for perm in role.permissions:
            if perm.key == permission_key:
                return True
    return False


def user_has_role(user: User | None, role_key: str) -> bool:
    if not user:
        return False
    return any(r.key == role_key for r in user.roles)


def _unauthenticated():
    return jsonify({"error": "unauthenticated", "message": "Login required."}), 401


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            return _unauthenticated()
        return fn(*args, **kwargs)

    return wrapped


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            if not user or not user.is_active:
                return _unauthenticated()
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                current_app.logger.warning(
                    "Forbidden: missing_permission=%s user=%s request_id=%s",
                    permission_key,
                    user.email,
                    getattr(g, "request_id", None),
                )
                return jsonify({"error": "forbidden", "message": f"Missing permission: {permission_key}"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator
