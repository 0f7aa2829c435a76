import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import pytest

from linkgate import create_app
from linkgate.services.errors import UserNotFound

SECRET = "s3cret"
NOW = 1_601_234_400


class FakeClock:
    """Settable stand-in for time.time()."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class LinkUser:
    username: str
    email: str
    password_hash: str
    last_authenticated_at: datetime | None = None


class RecordingUrlGenerator:
    """URL generator double that records every call."""

    def __init__(self, url: str = "https://example.com/login/verify", error: Exception | None = None):
        self.url = url
        self.error = error
        self.calls: list[tuple[str, dict[str, Any], Any]] = []

    def generate(self, endpoint, params, context=None):
        self.calls.append((endpoint, dict(params), context))
        if self.error is not None:
            raise self.error
        return self.url


class DictUserProvider:
    def __init__(self) -> None:
        self.users: dict[str, LinkUser] = {}

    def create_user(self, user: LinkUser) -> None:
        self.users[user.username] = user

    def load_user_by_identifier(self, identifier: str) -> LinkUser:
        if identifier not in self.users:
            raise UserNotFound(identifier)
        user = self.users[identifier]
        return LinkUser(user.username, user.email, user.password_hash, user.last_authenticated_at)


def create_signature_hash(
    username: str, expires: int, extra_fields: list[str], secret: str = SECRET
) -> str:
    """Independent reimplementation of the signature format, for assertions."""
    fields = [base64.b64encode(username.encode()).decode(), str(expires)]
    fields += [base64.b64encode(field.encode()).decode() for field in extra_fields]
    digest = hmac.new(secret.encode(), ":".join(fields).encode(), hashlib.sha256).hexdigest()
    return base64.b64encode(digest.encode()).decode()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ryan():
    return LinkUser("weaverryan", "ryan@symfonycasts.com", "pwhash")


@pytest.fixture
def app_config(tmp_path):
    return {
        "TESTING": True,
        "SECRET_KEY": SECRET,
        "DATABASE_PATH": str(tmp_path / "linkgate.sqlite3"),
        "SERVER_NAME": "example.com",
        "USAGE_STORE": "memory",
        "LOGIN_LINK_MAX_USES": 3,
    }


@pytest.fixture
def app(app_config, monkeypatch):
    monkeypatch.delenv("LINKGATE_DB", raising=False)
    return create_app(test_config=app_config)


@pytest.fixture
def client(app):
    return app.test_client()
