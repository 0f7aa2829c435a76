"""Linkgate - passwordless login links."""

from pathlib import Path
from typing import Any

import apsw
import click
from flask import Flask

from linkgate.config import REGISTRY, defaults, parse_value

__all__ = ["create_app"]


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    """Application factory for Linkgate.

    Settings come from the ``app_setting`` table of the database, or from
    ``test_config`` when one is given.
    """
    from linkgate.db import close_db, init_db_at, resolve_db_path

    db_path = resolve_db_path(test_config)
    instance_path = Path(db_path).parent
    instance_path.mkdir(parents=True, exist_ok=True)

    app = Flask(__name__, instance_path=str(instance_path), instance_relative_config=True)
    app.config.from_mapping(defaults())
    app.config.update(SECRET_KEY="dev", DATABASE_PATH=db_path)

    init_db_at(db_path)

    if test_config is None:
        _load_settings(app)
    else:
        app.config.from_mapping(test_config)
        app.config["DATABASE_PATH"] = db_path

    # An empty server name means "use the request host"
    app.config["SERVER_NAME"] = app.config.get("SERVER_NAME") or None

    _install_proxy_fix(app)
    app.teardown_appcontext(close_db)

    from linkgate.blueprints import auth

    app.register_blueprint(auth.bp)

    from linkgate.services.login_link import LoginLinkHandler
    from linkgate.services.user_provider import DatabaseUserProvider

    app.extensions["linkgate"] = LoginLinkHandler.from_config(app, DatabaseUserProvider())
    _register_commands(app)
    app.logger.info(
        f"Login links: lifetime={app.config['LOGIN_LINK_LIFETIME_SECONDS']}s "
        f"max_uses={app.config['LOGIN_LINK_MAX_USES']} "
        f"properties={app.config['LOGIN_LINK_EXTRA_PROPERTIES']}"
    )

    return app


def _load_settings(app: Flask) -> None:
    """Copy stored settings into ``app.config``, parsed by their registry type."""
    from linkgate.models.app_setting import SECRET_KEY_SETTING, read_raw_settings

    conn = apsw.Connection(app.config["DATABASE_PATH"], flags=apsw.SQLITE_OPEN_READONLY)
    try:
        stored = read_raw_settings(conn)
    finally:
        conn.close()

    if SECRET_KEY_SETTING in stored:
        app.config["SECRET_KEY"] = stored[SECRET_KEY_SETTING]

    for entry in REGISTRY:
        raw = stored.get(entry.key)
        if raw is not None:
            app.config[entry.flask_key] = parse_value(entry, raw)


def _register_commands(app: Flask) -> None:
    @app.cli.command("purge-usage")
    def purge_usage() -> None:
        """Delete expired login link usage counters."""
        store = app.extensions["linkgate"].signature_hasher.usage_store
        if store is None:
            click.echo("No usage store configured (login_link.max_uses is unset).")
            return
        removed = store.purge_expired()
        click.echo(f"Purged {removed} expired usage counters.")


def _install_proxy_fix(app: Flask) -> None:
    """Trust X-Forwarded-* headers for the configured number of proxy hops."""
    hops = {
        name: int(app.config.get(f"PROXY_X_FORWARDED_{name.upper()}") or 0)
        for name in ("for", "proto", "host", "prefix")
    }
    if not any(hops.values()):
        return

    from werkzeug.middleware.proxy_fix import ProxyFix

    app.wsgi_app = ProxyFix(  # type: ignore[method-assign]
        app.wsgi_app,
        x_for=hops["for"],
        x_proto=hops["proto"],
        x_host=hops["host"],
        x_prefix=hops["prefix"],
    )
