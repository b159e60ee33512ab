import bcrypt
from flask import current_app, has_app_context

MIN_PASSWORD_LENGTH = 8
DEFAULT_ROUNDS = 12


def validate_password(plain_password: str):
    """Returns (ok, [messages]) for the registration form."""
    errors = []
    if not isinstance(plain_password, str) or len(plain_password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    elif plain_password.isdigit() or plain_password.isalpha():
        errors.append("Password must mix letters and numbers")
    return (not errors), errors


def _rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS))
    return DEFAULT_ROUNDS


def hash_password(plain_password: str) -> str:
    if not isinstance(plain_password, str) or not plain_password:
        raise ValueError("Password must be a non-empty string")
    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt(rounds=_rounds()))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False
