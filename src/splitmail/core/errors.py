"""Error taxonomy shared by the transport and domain layers."""

from __future__ import annotations


class SplitmailError(RuntimeError):
    """Base class for every failure surfaced to callers.

    ``str(exc)`` carries diagnostic detail for logs. ``public_message`` is
    what an outer layer may echo back to a user.
    """

    status_code: int = 500
    generic_message: str | None = None

    @property
    def public_message(self) -> str:
        """Return a message that is safe to show to the end user."""
        if self.generic_message is not None:
            return self.generic_message
        return str(self)


class AuthError(SplitmailError):
    """The bearer credential was rejected."""

    status_code = 401
    generic_message = "authentication failed"


class NetworkError(SplitmailError):
    """Transport failure or non-success HTTP status."""

    status_code = 500
    generic_message = "network error"


class NotConnectedError(SplitmailError):
    """An operation ran before session discovery completed."""

    status_code = 503

    def __init__(self, message: str = "not connected to email server") -> None:
        super().__init__(message)


class NotFoundError(SplitmailError):
    """A referenced message, rule, or blob does not exist."""

    status_code = 404

    @property
    def public_message(self) -> str:
        return f"not found: {self}"


class BadRequestError(SplitmailError):
    """Malformed caller input."""

    status_code = 400

    @property
    def public_message(self) -> str:
        return f"bad request: {self}"


class InternalError(SplitmailError):
    """The remote service violated the protocol contract."""

    status_code = 500
    generic_message = "internal error"


__all__ = [
    "AuthError",
    "BadRequestError",
    "InternalError",
    "NetworkError",
    "NotConnectedError",
    "NotFoundError",
    "SplitmailError",
]
