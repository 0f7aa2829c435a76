"""Authentication blueprint - request, consume and end login-link sessions (JSON)."""

import logging

from flask import Blueprint, current_app, g, jsonify, make_response, request
from werkzeug.wrappers import Response

from linkgate.models.user import User
from linkgate.services import email_service, token_service
from linkgate.services.errors import ExpiredLoginLink, InvalidLoginLink
from linkgate.services.login_link import LoginLinkHandler

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/auth")

SESSION_COOKIE = "lg_session"


def get_login_link_handler() -> LoginLinkHandler:
    """Return the login link handler configured for the current app."""
    return current_app.extensions["linkgate"]


def _resolve_identifier(identifier: str) -> User | None:
    """Resolve an email address or username to an enabled user.

    An email shared by several accounts resolves to nobody.
    """
    if "@" in identifier:
        users = User.get_by_email(identifier)
        return users[0] if len(users) == 1 else None

    user = User.get(identifier)
    if user is None or not user.enabled:
        return None
    return user


@bp.route("/login", methods=["POST"])
def login() -> tuple[Response, int]:
    """Email a login link to the identified user.

    Unknown identifiers get the same answer as known ones.
    """
    data = request.get_json(silent=True) or request.form
    identifier = (data.get("identifier") or "").strip()
    if not identifier:
        return jsonify({"error": "identifier is required"}), 400

    user = _resolve_identifier(identifier)
    if user is None:
        logger.info(f"Login link requested for unknown identifier {identifier!r}")
        return jsonify({"status": "sent"}), 202

    handler = get_login_link_handler()
    link = handler.create_login_link(user, request=request)

    if not email_service.send_login_link(user.email, link.url, handler.lifetime_seconds):
        logger.error(f"Failed to send login link to {user.email} for user {user.username}")
        return jsonify({"error": "Failed to send login email"}), 500

    return jsonify({"status": "sent"}), 202


@bp.route("/check")
def check_login_link() -> Response | tuple[Response, int]:
    """Consume a login link and start a session."""
    try:
        user = get_login_link_handler().consume_login_link(request)
    except ExpiredLoginLink as e:
        return jsonify({"error": "expired", "message": e.message}), 410
    except InvalidLoginLink as e:
        logger.info(f"Rejected login link: {e.message}")
        return jsonify({"error": "invalid", "message": e.message}), 400

    user.touch_last_authenticated()
    lifetime = current_app.config.get("SESSION_LIFETIME_SECONDS", 86400)
    response = make_response(jsonify({"username": user.username}))
    response.set_cookie(
        SESSION_COOKIE,
        token_service.create_session_token(user, lifetime),
        httponly=True,
        samesite="Lax",
        secure=request.is_secure,
        max_age=lifetime,
    )
    return response


@bp.route("/me")
def me() -> Response | tuple[Response, int]:
    """Describe the logged-in user."""
    if g.get("user") is None:
        return jsonify({"error": "not authenticated"}), 401
    return jsonify({"username": g.user.username, "email": g.user.email})


@bp.route("/logout", methods=["POST"])
def logout() -> Response:
    """Clear the session cookie."""
    response = make_response(jsonify({"status": "logged_out"}))
    response.delete_cookie(SESSION_COOKIE)
    return response


@bp.before_app_request
def load_user() -> None:
    """Load the current user from the session cookie on every request."""
    g.user = None
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        g.user = token_service.verify_session_token(token)
