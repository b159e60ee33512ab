from functools import wraps
from flask import g, jsonify

from models import db
from models.user import User
from security.session import session_from_request


def load_current_user():
    """before_request hook: resolve the salon_session cookie to g.user (or None)."""
    sess = session_from_request()
    g.session = sess
    g.user = db.session.get(User, sess.user_id) if sess else None


def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
