"""User model."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, fields
from datetime import UTC, datetime

from werkzeug.security import generate_password_hash

from linkgate.db import get_db, transaction


@dataclass
class User:
    username: str
    email: str
    fullname: str
    password_hash: str
    enabled: bool
    login_salt: str
    last_authenticated_at: datetime | None
    created_at: str
    updated_at: str

    # Columns a caller may change through update()
    EDITABLE = ("email", "fullname", "enabled")

    @staticmethod
    def _select(where: str) -> str:
        columns = ", ".join(f.name for f in fields(User))
        return f"SELECT {columns} FROM user WHERE {where}"

    @classmethod
    def _from_row(cls, row: tuple) -> User:
        user = cls(*row)
        user.enabled = bool(user.enabled)
        if user.last_authenticated_at:
            user.last_authenticated_at = datetime.fromisoformat(str(user.last_authenticated_at))
        return user

    @staticmethod
    def get(username: str) -> User | None:
        """Look a user up by username, ignoring case."""
        row = get_db().execute(
            User._select("LOWER(username) = ?"), (username.lower(),)
        ).fetchone()
        return User._from_row(row) if row else None

    @staticmethod
    def get_by_email(email: str) -> list[User]:
        """Enabled users with this email address (case-insensitive)."""
        rows = get_db().execute(
            User._select("LOWER(email) = ? AND enabled = 1"), (email.lower(),)
        ).fetchall()
        return [User._from_row(row) for row in rows]

    @staticmethod
    def create(
        username: str,
        email: str,
        fullname: str = "",
        password: str | None = None,
        enabled: bool = True,
    ) -> User:
        """Insert a user. The username is stored lowercase; no password means link-only login."""
        now = datetime.now(UTC).isoformat()
        user = User(
            username=username.lower(),
            email=email,
            fullname=fullname,
            password_hash=generate_password_hash(password) if password else "",
            enabled=enabled,
            login_salt=secrets.token_hex(8),
            last_authenticated_at=None,
            created_at=now,
            updated_at=now,
        )

        with transaction() as cursor:
            cursor.execute(
                "INSERT INTO user (username, email, fullname, password_hash, enabled, "
                "login_salt, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    user.username,
                    user.email,
                    user.fullname,
                    user.password_hash,
                    int(user.enabled),
                    user.login_salt,
                    now,
                    now,
                ),
            )
        return user

    def update(self, **changes: str | bool) -> None:
        """Change editable fields, e.g. ``user.update(email="x@example.com", enabled=False)``.

        Changing the email invalidates outstanding login links when ``email`` is
        one of the signed properties.
        """
        unknown = set(changes) - set(self.EDITABLE)
        if unknown:
            raise ValueError(f"Cannot update user field(s): {', '.join(sorted(unknown))}")
        if not changes:
            return

        now = datetime.now(UTC).isoformat()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        values = [int(v) if isinstance(v, bool) else v for v in changes.values()]

        with transaction() as cursor:
            cursor.execute(
                f"UPDATE user SET {assignments}, updated_at = ? WHERE username = ?",
                (*values, now, self.username),
            )

        for column, value in changes.items():
            setattr(self, column, value)
        self.updated_at = now

    def set_password(self, password: str) -> None:
        """Replace the password hash and rotate the login salt.

        Outstanding login links and sessions for this user stop verifying.
        """
        self.password_hash = generate_password_hash(password)
        self.login_salt = secrets.token_hex(8)
        self.updated_at = datetime.now(UTC).isoformat()

        with transaction() as cursor:
            cursor.execute(
                "UPDATE user SET password_hash = ?, login_salt = ?, updated_at = ? "
                "WHERE username = ?",
                (self.password_hash, self.login_salt, self.updated_at, self.username),
            )

    def touch_last_authenticated(self) -> None:
        """Record a successful login now (UTC, whole seconds)."""
        now = datetime.now(UTC).replace(microsecond=0)

        with transaction() as cursor:
            cursor.execute(
                "UPDATE user SET last_authenticated_at = ? WHERE username = ?",
                (now.isoformat(), self.username),
            )
        self.last_authenticated_at = now

    def delete(self) -> None:
        with transaction() as cursor:
            cursor.execute("DELETE FROM user WHERE username = ?", (self.username,))
