"""Signature creation and verification for login links.

A signature binds the user identifier, the expiry timestamp, and the current
values of a configured list of user properties. Because verification recomputes
the hash from the properties as they are *now*, changing any of them (password
hash, email, last login...) invalidates every outstanding link for that user.
"""

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any
from urllib.parse import quote

from linkgate.services.errors import ExpiredLoginLink, InvalidLoginLink
from linkgate.services.properties import (
    Extractor,
    PropertySpec,
    build_extractors,
    compile_extractor,
    extract_fields,
)
from linkgate.services.usage_store import UsageStore

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = ":"


def _b64(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def usage_key(signature: str) -> str:
    """Key under which uses of ``signature`` are counted (RFC 3986 raw URL encoding)."""
    return quote(signature, safe="")


class SignatureHasher:
    """Computes and checks login link signatures.

    When ``max_uses`` is set, each successful verification is recorded in
    ``usage_store`` and a signature stops verifying once it reaches the limit.
    """

    def __init__(
        self,
        secret_key: str | bytes,
        extra_properties: Iterable[PropertySpec] = (),
        usage_store: UsageStore | None = None,
        max_uses: int | None = None,
        identifier: str | Extractor = "username",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret_key:
            raise ValueError("A non-empty secret key is required to sign login links")
        if max_uses is not None:
            if isinstance(max_uses, bool) or not isinstance(max_uses, int) or max_uses < 1:
                raise ValueError("max_uses must be a positive integer or None")
            if usage_store is None:
                raise ValueError("max_uses requires a usage store")

        self._secret = secret_key.encode("utf-8") if isinstance(secret_key, str) else secret_key
        self.extractors = build_extractors(extra_properties)
        self.usage_store = usage_store
        self.max_uses = max_uses
        self._identifier = compile_extractor(identifier) if isinstance(identifier, str) else identifier
        self._clock = clock

    @property
    def extra_property_names(self) -> list[str]:
        return [name for name, _ in self.extractors]

    def identifier_of(self, user: Any) -> str:
        """Return the identifier that names ``user`` in a link."""
        return str(self._identifier(user))

    def extra_fields_of(self, user: Any) -> list[str]:
        """Resolve the configured properties of ``user`` in order."""
        return extract_fields(user, self.extractors)

    def compute_signature_hash(
        self, identifier: str, expires_at: int, extra_fields: Sequence[str]
    ) -> str:
        """Compute the signature for an identifier, expiry, and resolved properties."""
        parts = [_b64(identifier), str(int(expires_at))]
        parts.extend(_b64(field) for field in extra_fields)
        payload = FIELD_SEPARATOR.join(parts).encode("utf-8")
        digest = hmac.new(self._secret, payload, hashlib.sha256).hexdigest()
        return base64.b64encode(digest.encode("ascii")).decode("ascii")

    def sign(self, user: Any, expires_at: int) -> str:
        """Sign ``user`` for a link expiring at ``expires_at`` (unix seconds)."""
        return self.compute_signature_hash(
            self.identifier_of(user), expires_at, self.extra_fields_of(user)
        )

    def verify(
        self,
        identifier: str,
        expires_at: int,
        extra_fields: Sequence[str],
        signature: str,
    ) -> None:
        """Check a presented signature, recording one use on success.

        Checks in order: expiry, usage budget, signature. An expired link is
        reported as expired even when its signature is also wrong. Concurrent
        uses of the last remaining use are settled by the store's atomic
        increment: only the caller that reaches ``max_uses`` succeeds.

        Raises:
            ExpiredLoginLink: the link is past ``expires_at`` or its usage budget.
            InvalidLoginLink: the signature does not match.
        """
        if expires_at < int(self._clock()):
            raise ExpiredLoginLink()

        key = usage_key(signature)
        if self.max_uses is not None:
            assert self.usage_store is not None
            if self.usage_store.get(key) >= self.max_uses:
                logger.info(f"Login link for {identifier!r} exhausted its {self.max_uses} uses")
                raise ExpiredLoginLink()

        expected = self.compute_signature_hash(identifier, expires_at, extra_fields)
        if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8")):
            raise InvalidLoginLink()

        if self.max_uses is not None:
            assert self.usage_store is not None
            # The increment is the atomic step; the get above only rejects early.
            count = self.usage_store.increment(key)
            if count > self.max_uses:
                logger.info(f"Login link for {identifier!r} lost the race for its last use")
                raise ExpiredLoginLink()
            logger.debug(f"Login link for {identifier!r} used {count}/{self.max_uses} times")

    def verify_user(self, user: Any, expires_at: int, signature: str) -> None:
        """Verify ``signature`` against the current state of a loaded user."""
        self.verify(self.identifier_of(user), expires_at, self.extra_fields_of(user), signature)
