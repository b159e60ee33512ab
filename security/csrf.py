import hmac
import secrets
from flask import g, request, jsonify, current_app

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

# login/registration bootstrap the token; PayFast's ITN is authenticated by its signature;
# /availability is a read-only lookup sent as POST
CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/register",
    "/availability",
    "/health",
    "/webhooks/payfast",
}

UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def issue_csrf_token(resp):
    """Double-submit token: JS reads the cookie and echoes it in X-CSRF-Token."""
    resp.set_cookie(
        CSRF_COOKIE,
        secrets.token_urlsafe(32),
        httponly=False,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )
    return resp


def csrf_protect():
    """before_request hook; only cookie-authenticated, state-changing calls are checked."""
    if request.method not in UNSAFE_METHODS or request.path in CSRF_EXEMPT_PATHS:
        return None
    if getattr(g, "user", None) is None:
        return None

    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or not hmac.compare_digest(cookie_token, header_token):
        return jsonify(error="CSRF validation failed"), 403
    return None
