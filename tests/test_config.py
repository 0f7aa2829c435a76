import pytest

from linkgate import create_app
from linkgate.config import (
    KEY_MAP,
    REGISTRY,
    ConfigType,
    defaults,
    parse_value,
    resolve_entry,
    serialize_value,
)
from linkgate.db import SCHEMA_VERSION, get_schema_version
from linkgate.models import AppSetting


def test_every_entry_maps_to_a_flask_key():
    assert {entry.key for entry in REGISTRY} == set(KEY_MAP)


def test_resolve_entry():
    entry = resolve_entry("login_link.max_uses")

    assert entry is not None
    assert entry.type is ConfigType.OPTIONAL_INT
    assert resolve_entry("no.such.key") is None


@pytest.mark.parametrize(
    "key, raw, expected",
    [
        ("server.port", "8080", 8080),
        ("server.debug", "yes", True),
        ("server.debug", "off", False),
        ("login_link.max_uses", "3", 3),
        ("login_link.max_uses", "  ", None),
        ("login_link.extra_properties", "email, password_hash,,", ["email", "password_hash"]),
        ("login_link.route_name", "auth.check_login_link", "auth.check_login_link"),
    ],
)
def test_parse_value(key, raw, expected):
    assert parse_value(resolve_entry(key), raw) == expected


@pytest.mark.parametrize(
    "key, value, expected",
    [
        ("server.debug", True, "true"),
        ("login_link.max_uses", None, ""),
        ("login_link.max_uses", 5, "5"),
        ("login_link.extra_properties", ["email", "last_authenticated_at"], "email, last_authenticated_at"),
    ],
)
def test_serialize_value(key, value, expected):
    entry = resolve_entry(key)

    assert serialize_value(entry, value) == expected
    assert parse_value(entry, expected) == value


def test_defaults():
    values = defaults()

    assert values["LOGIN_LINK_LIFETIME_SECONDS"] == 600
    assert values["LOGIN_LINK_MAX_USES"] is None
    assert values["USAGE_STORE"] == "sqlite"
    assert values["SERVER_NAME"] is None

    values["LOGIN_LINK_EXTRA_PROPERTIES"].append("fullname")
    assert defaults()["LOGIN_LINK_EXTRA_PROPERTIES"] == ["email", "password_hash"]


@pytest.mark.parametrize(
    "key, raw",
    [("server.port", "eighty"), ("server.debug", "maybe"), ("login_link.max_uses", "3.5")],
)
def test_parse_value_rejects_garbage(key, raw):
    with pytest.raises(ValueError, match=key):
        parse_value(resolve_entry(key), raw)


def test_proxy_entries_map_to_flask_keys():
    assert KEY_MAP["proxy.x_forwarded_proto"] == "PROXY_X_FORWARDED_PROTO"
    assert resolve_entry("proxy.x_forwarded_prefix").default == 0


# ---------------------------------------------------------------------------
# Stored settings
# ---------------------------------------------------------------------------


def test_app_setting_round_trip(app):
    with app.app_context():
        assert AppSetting.get("login_link.max_uses") is None

        AppSetting.set("login_link.max_uses", 5)
        AppSetting.set("login_link.extra_properties", ["email"])
        assert AppSetting.get("login_link.max_uses") == 5
        assert AppSetting.get("login_link.extra_properties") == ["email"]

        AppSetting.unset("login_link.max_uses")
        assert AppSetting.get("login_link.max_uses") is None


def test_app_setting_rejects_unknown_keys(app):
    with app.app_context():
        with pytest.raises(KeyError):
            AppSetting.set("secret_key", "nope")
        with pytest.raises(KeyError):
            AppSetting.get("no.such.key")
        with pytest.raises(KeyError):
            AppSetting.unset("secret_key")


def test_stored_settings_apply_to_new_apps(app, monkeypatch):
    with app.app_context():
        AppSetting.set("session.lifetime_seconds", 60)
        AppSetting.set("server.debug", True)
    monkeypatch.setenv("LINKGATE_DB", app.config["DATABASE_PATH"])

    reloaded = create_app()

    assert reloaded.config["SESSION_LIFETIME_SECONDS"] == 60
    assert reloaded.config["DEBUG"] is True


def test_schema_version(app):
    with app.app_context():
        assert get_schema_version() == SCHEMA_VERSION
