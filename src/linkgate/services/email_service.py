"""Login link delivery through the outbox mail service.

The outbox is reached either through its SQLite database, when it runs on
the same host, or through its HTTP API.
"""

import json
import uuid
from datetime import UTC, datetime
from typing import Any

import apsw
import httpx
from flask import current_app
from markupsafe import escape

SOURCE_APP = "linkgate"

LOGIN_LINK_SUBJECT = "Your login link"

LOGIN_LINK_TEXT = """Click the link below to log in:
{url}

This link expires in {minutes} minutes.

If you didn't request this, you can safely ignore this email.
"""

LOGIN_LINK_HTML = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
    <p>
        <a href="{url}"
           style="display: inline-block; padding: 12px 24px; background: #1095c1;
                  color: white; text-decoration: none; border-radius: 4px;">
            Log In
        </a>
    </p>
    <p style="color: #666; font-size: 14px;">Or copy this link: {url}</p>
    <p style="color: #666; font-size: 14px;">This link expires in {minutes} minutes.</p>
    <p style="color: #999; font-size: 12px;">
        If you didn't request this, you can safely ignore this email.
    </p>
</body>
</html>
"""


def _message(to_email: str, subject: str, body_text: str, body_html: str | None) -> dict[str, Any]:
    return {
        "from_address": current_app.config.get("MAIL_SENDER", ""),
        "to": [to_email],
        "subject": subject,
        "body": body_html or body_text,
        "body_type": "html" if body_html else "plain",
        "source_app": SOURCE_APP,
    }


def _queue_in_outbox_db(db_path: str, message: dict[str, Any]) -> bool:
    """Insert ``message`` into the outbox's ``message`` table."""
    if not message["from_address"]:
        current_app.logger.error("MAIL_SENDER not configured")
        return False

    now = datetime.now(UTC).isoformat()
    try:
        conn = apsw.Connection(db_path)
        try:
            conn.execute("PRAGMA busy_timeout = 5000")
            conn.execute(
                "INSERT INTO message (uuid, status, delivery_type, from_address, "
                "to_recipients, subject, body, body_type, source_app, created_at, updated_at) "
                "VALUES (?, 'queued', 'email', ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    str(uuid.uuid4()),
                    message["from_address"],
                    json.dumps(message["to"]),
                    message["subject"],
                    message["body"],
                    message["body_type"],
                    message["source_app"],
                    now,
                    now,
                ),
            )
        finally:
            conn.close()
    except apsw.Error as e:
        current_app.logger.error(f"Outbox DB rejected mail to {message['to'][0]}: {e}")
        return False

    return True


def _post_to_outbox_api(base_url: str, api_key: str, message: dict[str, Any]) -> bool:
    """POST ``message`` to the outbox HTTP API. Only 201 counts as queued."""
    try:
        resp = httpx.post(
            f"{base_url.rstrip('/')}/api/v1/messages",
            json=message,
            headers={"X-API-Key": api_key},
            timeout=10.0,
        )
    except httpx.HTTPError as e:
        current_app.logger.error(f"Outbox API unreachable for mail to {message['to'][0]}: {e}")
        return False

    if resp.status_code != 201:
        current_app.logger.error(f"Outbox API error: {resp.status_code} - {resp.text}")
        return False
    return True


def send_email(to_email: str, subject: str, body_text: str, body_html: str | None = None) -> bool:
    """Queue an email with the outbox. Returns False when it could not be queued."""
    config = current_app.config
    message = _message(to_email, subject, body_text, body_html)

    if config.get("OUTBOX_DB_PATH"):
        queued = _queue_in_outbox_db(config["OUTBOX_DB_PATH"], message)
    elif config.get("OUTBOX_URL") and config.get("OUTBOX_API_KEY"):
        queued = _post_to_outbox_api(config["OUTBOX_URL"], config["OUTBOX_API_KEY"], message)
    else:
        current_app.logger.error(
            "Email not configured: set OUTBOX_DB_PATH, or OUTBOX_URL and OUTBOX_API_KEY"
        )
        return False

    if queued:
        current_app.logger.info(f"Queued '{subject}' for {to_email}")
    return queued


def send_login_link(to_email: str, login_link: str, lifetime_seconds: int) -> bool:
    """Email ``login_link`` to ``to_email``, saying how long it stays valid."""
    minutes = max(1, lifetime_seconds // 60)
    return send_email(
        to_email,
        LOGIN_LINK_SUBJECT,
        LOGIN_LINK_TEXT.format(url=login_link, minutes=minutes),
        LOGIN_LINK_HTML.format(url=escape(login_link), minutes=minutes),
    )
