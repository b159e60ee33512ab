from functools import wraps
from flask import g, jsonify

from services.errors import Unauthorized

# roles that carry the staff capability the booking engine checks
STAFF_ROLES = ("ADMIN", "STAFF")


def role_names(user=None) -> set:
    user = user if user is not None else getattr(g, "user", None)
    return {r.name for r in user.roles} if user else set()


def is_staff(user=None) -> bool:
    """The `authorized` flag handed to engine operations for the current caller."""
    return bool(role_names(user).intersection(STAFF_ROLES))


def ensure_owner_or_staff(owner_id):
    """Clients may only see their own records; staff may see any."""
    user = getattr(g, "user", None)
    if user is None or (user.id != owner_id and not is_staff(user)):
        raise Unauthorized()


def require_roles(*allowed: str):
    """
    Usage: @require_roles("ADMIN") or bare @require_roles() for any staff role.
    """
    allowed = set(allowed or STAFF_ROLES)

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if getattr(g, "user", None) is None:
                return jsonify(error="Authentication required"), 401
            if not role_names().intersection(allowed):
                return jsonify(error="Forbidden"), 403
            return fn(*args, **kwargs)
        return wrapper
    return decorator
