"""Session cookies issued once a login link has been consumed."""

import time

from flask import current_app
from itsdangerous import BadSignature, URLSafeTimedSerializer

from linkgate.models.user import User

TOKEN_VERSION = 1
SESSION_TOKEN_SALT = "linkgate-session"


def get_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=SESSION_TOKEN_SALT)


def create_session_token(user: User, lifetime_seconds: int | None = None) -> str:
    """Sign a session for ``user``.

    The user's ``login_salt`` goes into the token, and ``User.set_password``
    rotates it, so a password change logs the user out everywhere.
    """
    if lifetime_seconds is None:
        lifetime_seconds = current_app.config["SESSION_LIFETIME_SECONDS"]

    return get_serializer().dumps(
        {
            "v": TOKEN_VERSION,
            "u": user.username,
            "e": int(time.time()) + lifetime_seconds,
            "ls": user.login_salt,
        }
    )


def verify_session_token(token: str) -> User | None:
    """Return the user a session token belongs to, or None if it no longer holds.

    A token stops holding when its signature, version or expiry is wrong, or
    when its user was deleted, disabled or has changed password since.
    """
    try:
        payload = get_serializer().loads(token)
    except BadSignature:
        return None

    if not isinstance(payload, dict) or payload.get("v") != TOKEN_VERSION:
        return None
    if payload.get("e", 0) < time.time() or not payload.get("u"):
        return None

    user = User.get(payload["u"])
    if user is None or not user.enabled or payload.get("ls") != user.login_salt:
        return None
    return user
