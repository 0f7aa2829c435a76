"""Creation and consumption of passwordless login links."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from flask import Flask
from werkzeug.wrappers import Request

from linkgate.services.errors import InvalidLoginLink, UserNotFound
from linkgate.services.signature import SignatureHasher
from linkgate.services.url_generator import UrlContext, UrlGenerator
from linkgate.services.usage_store import UsageStore
from linkgate.services.user_provider import UserProvider

logger = logging.getLogger(__name__)

DEFAULT_LIFETIME_SECONDS = 600
DEFAULT_ROUTE_NAME = "auth.check_login_link"


@dataclass(frozen=True, slots=True)
class LoginLink:
    url: str


@dataclass(frozen=True, slots=True)
class LoginLinkDetails:
    identifier: str
    expires_at: int
    extra_fields: tuple[str, ...]
    url: str

    @property
    def login_link(self) -> LoginLink:
        return LoginLink(self.url)


class LoginLinkHandler:
    """Issues signed login links and turns presented links back into users."""

    def __init__(
        self,
        url_generator: UrlGenerator,
        user_provider: UserProvider,
        signature_hasher: SignatureHasher,
        lifetime_seconds: int = DEFAULT_LIFETIME_SECONDS,
        route_name: str = DEFAULT_ROUTE_NAME,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if lifetime_seconds <= 0:
            raise ValueError("lifetime_seconds must be positive")
        self.url_generator = url_generator
        self.user_provider = user_provider
        self.signature_hasher = signature_hasher
        self.lifetime_seconds = lifetime_seconds
        self.route_name = route_name
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        app: Flask,
        user_provider: UserProvider,
        usage_store: UsageStore | None = None,
    ) -> LoginLinkHandler:
        """Build a handler from the ``LOGIN_LINK_*`` settings of a Flask app."""
        from linkgate.services.url_generator import FlaskUrlGenerator
        from linkgate.services.usage_store import create_usage_store

        config = app.config
        lifetime = int(config.get("LOGIN_LINK_LIFETIME_SECONDS", DEFAULT_LIFETIME_SECONDS))
        max_uses = config.get("LOGIN_LINK_MAX_USES")

        if max_uses is not None and usage_store is None:
            usage_store = create_usage_store(config)
        if usage_store is not None and usage_store.retention_seconds <= lifetime:
            raise ValueError(
                f"Usage retention ({usage_store.retention_seconds}s) must exceed "
                f"the login link lifetime ({lifetime}s)"
            )

        hasher = SignatureHasher(
            config["SECRET_KEY"],
            config.get("LOGIN_LINK_EXTRA_PROPERTIES", []),
            usage_store=usage_store,
            max_uses=max_uses,
        )
        return cls(
            FlaskUrlGenerator(app),
            user_provider,
            hasher,
            lifetime_seconds=lifetime,
            route_name=config.get("LOGIN_LINK_ROUTE_NAME", DEFAULT_ROUTE_NAME),
        )

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------

    def create_login_link_details(
        self,
        user: Any,
        request: Request | None = None,
        lifetime: int | None = None,
    ) -> LoginLinkDetails:
        """Sign ``user`` and build the link, returning everything that went into it.

        When ``request`` is given, the link points at the host, scheme and
        script root the request arrived on.
        """
        identifier = self.signature_hasher.identifier_of(user)
        extra_fields = self.signature_hasher.extra_fields_of(user)
        if lifetime is None:
            lifetime = self.lifetime_seconds
        elif lifetime <= 0:
            raise ValueError("lifetime must be positive")
        expires_at = int(self._clock()) + lifetime
        signature = self.signature_hasher.compute_signature_hash(identifier, expires_at, extra_fields)

        context = UrlContext.from_request(request) if request is not None else None
        url = self.url_generator.generate(
            self.route_name,
            {"user": identifier, "expires": expires_at, "hash": signature},
            context,
        )
        logger.info(f"Created login link for {identifier!r} expiring at {expires_at}")
        return LoginLinkDetails(identifier, expires_at, tuple(extra_fields), url)

    def create_login_link(
        self,
        user: Any,
        request: Request | None = None,
        lifetime: int | None = None,
    ) -> LoginLink:
        """Create a signed login link for ``user``."""
        return self.create_login_link_details(user, request, lifetime).login_link

    # -------------------------------------------------------------------
    # Consumption
    # -------------------------------------------------------------------

    def consume_login_link(self, request: Request | Mapping[str, str]) -> Any:
        """Validate the link parameters of ``request`` and return its user.

        ``request`` is a Werkzeug request or a mapping of its query parameters.

        Raises:
            InvalidLoginLink: parameters are missing or malformed, the user is
                unknown, or the signature does not match.
            ExpiredLoginLink: the link is past its lifetime or usage budget.
        """
        args = request.args if isinstance(request, Request) else request

        identifier = args.get("user")
        if not identifier:
            raise InvalidLoginLink("Missing user from link.")

        signature = args.get("hash")
        if not signature:
            raise InvalidLoginLink('Missing "hash" parameter.')

        expires = args.get("expires")
        if not expires or not expires.isascii() or not expires.isdigit():
            raise InvalidLoginLink("Expires parameter is not an integer.")
        try:
            expires_at = int(expires)
        except ValueError:
            # more digits than int() will convert
            raise InvalidLoginLink("Expires parameter is not an integer.") from None

        try:
            user = self.user_provider.load_user_by_identifier(identifier)
        except UserNotFound:
            logger.debug(f"Login link presented for unknown user {identifier!r}")
            raise InvalidLoginLink() from None

        self.signature_hasher.verify_user(user, expires_at, signature)
        logger.info(f"Consumed login link for {identifier!r}")
        return user
