import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.session import LoginSession


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _cookie_name() -> str:
    return current_app.config.get("AUTH_COOKIE_NAME", "salon_session")


def start_session(user_id: int):
    """
    Log a user in: revoke their other sessions and open a new one.
    Returns (raw token for the cookie, number of sessions revoked).
    """
    revoked = (
        LoginSession.query
        .filter_by(user_id=user_id, revoked=False)
        .update({"revoked": True})
    )

    raw_token = secrets.token_urlsafe(32)
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)
    db.session.add(LoginSession(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        expires_at=datetime.utcnow() + timedelta(seconds=lifetime),
        ip=request.headers.get("X-Forwarded-For", request.remote_addr),
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    ))
    db.session.commit()
    return raw_token, revoked


def session_from_request():
    """The live session behind the request's cookie, touched for idle tracking, or None."""
    raw_token = request.cookies.get(_cookie_name())
    if not raw_token:
        return None

    sess = LoginSession.query.filter_by(token_hash=_hash_token(raw_token)).first()
    now = datetime.utcnow()
    if not sess or not sess.is_live(now, current_app.config.get("IDLE_TIMEOUT_SECONDS", 20 * 60)):
        return None

    sess.last_seen_at = now
    db.session.commit()
    return sess


def end_session() -> bool:
    raw_token = request.cookies.get(_cookie_name())
    if not raw_token:
        return False
    sess = LoginSession.query.filter_by(token_hash=_hash_token(raw_token)).first()
    if not sess:
        return False
    sess.revoked = True
    db.session.commit()
    return True


def set_session_cookie(resp, raw_token: str):
    cfg = current_app.config
    resp.set_cookie(
        _cookie_name(),
        raw_token,
        httponly=True,
        secure=cfg.get("SESSION_COOKIE_SECURE", False),
        samesite=cfg.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=cfg.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60),
        path="/",
    )
    return resp


def clear_session_cookie(resp):
    resp.delete_cookie(_cookie_name(), path="/")
    return resp
