"""Settings stored in the ``app_setting`` table, typed through the config registry."""

import apsw

from linkgate.config import ConfigValue, parse_value, resolve_entry, serialize_value
from linkgate.db import get_db, transaction

SECRET_KEY_SETTING = "secret_key"


def read_raw_settings(conn: apsw.Connection) -> dict[str, str]:
    """Return every stored setting as raw strings, keyed by registry key."""
    return {
        str(key): str(value) for key, value in conn.execute("SELECT key, value FROM app_setting")
    }


class AppSetting:
    @staticmethod
    def get(key: str) -> ConfigValue:
        """Return the stored value of a registry setting, or its default when unset."""
        entry = resolve_entry(key)
        if entry is None:
            raise KeyError(f"Unknown setting: {key}")

        row = get_db().execute("SELECT value FROM app_setting WHERE key = ?", (key,)).fetchone()
        return parse_value(entry, row[0]) if row else entry.default

    @staticmethod
    def set(key: str, value: ConfigValue) -> None:
        """Store a registry setting. Takes effect the next time the app is created."""
        entry = resolve_entry(key)
        if entry is None:
            raise KeyError(f"Unknown setting: {key}")

        with transaction() as cursor:
            cursor.execute(
                "INSERT INTO app_setting (key, value, description) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, serialize_value(entry, value), entry.description),
            )

    @staticmethod
    def unset(key: str) -> None:
        """Forget a stored setting so its default applies again."""
        if resolve_entry(key) is None:
            raise KeyError(f"Unknown setting: {key}")

        with transaction() as cursor:
            cursor.execute("DELETE FROM app_setting WHERE key = ?", (key,))
