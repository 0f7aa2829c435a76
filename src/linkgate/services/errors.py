"""Exceptions raised while creating and consuming login links."""


class LoginLinkError(Exception):
    """Base class for the two user-facing login link failures."""

    default_message = "This login link cannot be used."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidLoginLink(LoginLinkError):
    """The link is malformed, forged, tampered with, or names an unknown user."""

    default_message = "Invalid or expired login link."


class ExpiredLoginLink(LoginLinkError):
    """The link was genuine but is past its lifetime or its usage budget."""

    default_message = "This login link has expired. Please request a new one."


class UserNotFound(Exception):
    """Raised by user providers when no user matches an identifier."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"No user found for identifier {identifier!r}")
