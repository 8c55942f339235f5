"""Exception types raised by the venue gateway."""

from typing import Optional


class GatewayError(Exception):
    """Base class for all gateway failures."""


class ConfigurationError(GatewayError):
    """A call needs configuration that is missing, e.g. API credentials."""


class SigningError(GatewayError):
    """The request could not be signed (malformed secret key)."""


class TransportError(GatewayError):
    """Network or HTTP failure while talking to the venue."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            return f"{base} (HTTP {self.status})"
        return base
