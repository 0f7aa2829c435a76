"""Absolute URL generation for login links.

Rather than temporarily swapping the router's context to the originating
request and restoring it afterwards, callers pass an immutable ``UrlContext``
describing where the link should point. Generation never mutates shared state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from flask import Flask, current_app, has_app_context, url_for
from werkzeug.wrappers import Request


@dataclass(frozen=True, slots=True)
class UrlContext:
    host: str
    scheme: str = "http"
    script_root: str = ""
    locale: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> UrlContext:
        """Derive a context from an originating request (host, scheme, prefix, locale)."""
        view_args = getattr(request, "view_args", None) or {}
        locale = view_args.get("locale")
        return cls(
            host=request.host,
            scheme=request.scheme,
            script_root=request.script_root,
            locale=str(locale) if locale else None,
        )


class UrlGenerator(Protocol):
    """Protocol for building absolute URLs to a named endpoint."""

    def generate(
        self, endpoint: str, params: dict[str, Any], context: UrlContext | None = None
    ) -> str: ...


class FlaskUrlGenerator:
    """Builds URLs from a Flask application's URL map."""

    def __init__(self, app: Flask) -> None:
        self.app = app

    def _accepts_locale(self, endpoint: str) -> bool:
        try:
            rules = self.app.url_map.iter_rules(endpoint)
        except KeyError:
            # unknown endpoint, let build() raise BuildError
            return False
        return any("locale" in rule.arguments for rule in rules)

    def generate(
        self, endpoint: str, params: dict[str, Any], context: UrlContext | None = None
    ) -> str:
        """Return an absolute URL for ``endpoint``.

        Raises ``werkzeug.routing.BuildError`` if the endpoint cannot be built.
        """
        if context is not None:
            values = dict(params)
            if context.locale and "locale" not in values and self._accepts_locale(endpoint):
                values["locale"] = context.locale
            adapter = self.app.url_map.bind(
                context.host,
                script_name=context.script_root or "/",
                url_scheme=context.scheme,
            )
            return adapter.build(endpoint, values, force_external=True)

        if has_app_context() and current_app._get_current_object() is self.app:  # type: ignore[attr-defined]
            return url_for(endpoint, _external=True, **params)

        with self.app.app_context():
            return url_for(endpoint, _external=True, **params)
