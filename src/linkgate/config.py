"""Typed settings.

Each setting has a dotted key (how it is stored in the ``app_setting``
table), the ``app.config`` name the application reads, a type used to parse
the stored string, and a default.
"""

from dataclasses import dataclass
from enum import Enum


class ConfigType(Enum):
    STRING = "string"
    INT = "int"
    OPTIONAL_INT = "optional_int"
    BOOL = "bool"
    STRING_LIST = "string_list"


ConfigValue = str | int | bool | list[str] | None


@dataclass(frozen=True, slots=True)
class ConfigEntry:
    key: str
    flask_key: str
    type: ConfigType
    default: ConfigValue
    description: str
    secret: bool = False


def _hops(header: str) -> ConfigEntry:
    name = header.lower().replace("-", "_")
    return ConfigEntry(
        f"proxy.{name}",
        f"PROXY_{name.upper()}",
        ConfigType.INT,
        0,
        f"Number of proxies whose {header} header is trusted",
    )


REGISTRY: list[ConfigEntry] = [
    ConfigEntry("server.host", "HOST", ConfigType.STRING, "0.0.0.0", "Address wsgi.py listens on"),
    ConfigEntry("server.port", "PORT", ConfigType.INT, 5100, "Port wsgi.py listens on"),
    ConfigEntry("server.debug", "DEBUG", ConfigType.BOOL, False, "Run with the Flask debugger"),
    ConfigEntry(
        "server.server_name",
        "SERVER_NAME",
        ConfigType.STRING,
        "",
        "Public host name for links built outside a request",
    ),
    ConfigEntry("mail.mail_sender", "MAIL_SENDER", ConfigType.STRING, "", "From address of login emails"),
    ConfigEntry("outbox.db_path", "OUTBOX_DB_PATH", ConfigType.STRING, "", "Outbox SQLite file, when local"),
    ConfigEntry("outbox.url", "OUTBOX_URL", ConfigType.STRING, "", "Outbox API base URL"),
    ConfigEntry(
        "outbox.api_key", "OUTBOX_API_KEY", ConfigType.STRING, "", "Outbox API key", secret=True
    ),
    ConfigEntry(
        "login_link.lifetime_seconds",
        "LOGIN_LINK_LIFETIME_SECONDS",
        ConfigType.INT,
        600,
        "Seconds a login link stays valid",
    ),
    ConfigEntry(
        "login_link.route_name",
        "LOGIN_LINK_ROUTE_NAME",
        ConfigType.STRING,
        "auth.check_login_link",
        "Endpoint that consumes login links",
    ),
    ConfigEntry(
        "login_link.max_uses",
        "LOGIN_LINK_MAX_USES",
        ConfigType.OPTIONAL_INT,
        None,
        "Times one link may be used (empty for unlimited)",
    ),
    ConfigEntry(
        "login_link.extra_properties",
        "LOGIN_LINK_EXTRA_PROPERTIES",
        ConfigType.STRING_LIST,
        ["email", "password_hash"],
        "User fields signed into each link; changing one voids the user's links",
    ),
    ConfigEntry(
        "login_link.usage_store",
        "USAGE_STORE",
        ConfigType.STRING,
        "sqlite",
        "Where link uses are counted: sqlite, memory or redis",
    ),
    ConfigEntry(
        "login_link.usage_retention_seconds",
        "USAGE_RETENTION_SECONDS",
        ConfigType.INT,
        3600,
        "Seconds a use counter is kept; must exceed the link lifetime",
    ),
    ConfigEntry(
        "login_link.redis_url", "REDIS_URL", ConfigType.STRING, "", "Redis URL", secret=True
    ),
    _hops("X-Forwarded-For"),
    _hops("X-Forwarded-Proto"),
    _hops("X-Forwarded-Host"),
    _hops("X-Forwarded-Prefix"),
    ConfigEntry(
        "session.lifetime_seconds",
        "SESSION_LIFETIME_SECONDS",
        ConfigType.INT,
        86400,
        "Seconds a login session lasts",
    ),
]

_BY_KEY: dict[str, ConfigEntry] = {e.key: e for e in REGISTRY}

# registry key -> app.config key
KEY_MAP: dict[str, str] = {e.key: e.flask_key for e in REGISTRY}

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off", "")


def resolve_entry(key: str) -> ConfigEntry | None:
    return _BY_KEY.get(key)


def parse_value(entry: ConfigEntry, raw: str) -> ConfigValue:
    """Turn a stored string into a value of the entry's type.

    Raises ``ValueError`` naming the setting when ``raw`` does not parse.
    """
    text = raw.strip()
    try:
        match entry.type:
            case ConfigType.STRING:
                return raw
            case ConfigType.INT:
                return int(text)
            case ConfigType.OPTIONAL_INT:
                return int(text) if text else None
            case ConfigType.BOOL:
                if text.lower() in _TRUE:
                    return True
                if text.lower() in _FALSE:
                    return False
                raise ValueError(f"not a boolean: {raw!r}")
            case ConfigType.STRING_LIST:
                return [item.strip() for item in raw.split(",") if item.strip()]
    except ValueError as e:
        raise ValueError(f"Bad value for {entry.key}: {e}") from None
    raise AssertionError(entry.type)


def serialize_value(entry: ConfigEntry, value: ConfigValue) -> str:
    """Inverse of ``parse_value``."""
    if entry.type is ConfigType.BOOL:
        return "true" if value else "false"
    if value is None:
        return ""
    if entry.type is ConfigType.STRING_LIST and isinstance(value, list):
        return ", ".join(value)
    return str(value)


def defaults() -> dict[str, ConfigValue]:
    """``app.config`` defaults for every setting."""
    values: dict[str, ConfigValue] = {}
    for entry in REGISTRY:
        default = entry.default
        values[entry.flask_key] = list(default) if isinstance(default, list) else default
    # Flask wants None, not "", when there is no server name
    values["SERVER_NAME"] = None
    return values
