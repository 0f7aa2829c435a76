"""User lookup used when a login link is consumed."""

import copy
from typing import Any, Protocol

from linkgate.services.errors import UserNotFound


class UserProvider(Protocol):
    """Protocol that all user providers must implement."""

    def load_user_by_identifier(self, identifier: str) -> Any:
        """Return the user named by ``identifier`` or raise ``UserNotFound``."""
        ...


class DatabaseUserProvider:
    """Loads users from the Linkgate database (Flask app context required)."""

    def load_user_by_identifier(self, identifier: str) -> Any:
        from linkgate.models.user import User

        user = User.get(identifier)
        if user is None or not user.enabled:
            raise UserNotFound(identifier)
        return user


class InMemoryUserProvider:
    """Dict-backed provider. Each lookup returns a copy of the stored user."""

    def __init__(self, users: dict[str, Any] | None = None, identifier_attr: str = "username") -> None:
        self.identifier_attr = identifier_attr
        self._users: dict[str, Any] = dict(users or {})

    def add_user(self, user: Any) -> None:
        self._users[str(getattr(user, self.identifier_attr))] = user

    def load_user_by_identifier(self, identifier: str) -> Any:
        try:
            return copy.copy(self._users[identifier])
        except KeyError:
            raise UserNotFound(identifier) from None
