"""
Exceptions for the Ingress SDK.
"""
from typing import Optional


class IngressError(Exception):
    """Base exception for all Ingress SDK errors."""
    pass


class EncodingError(IngressError):
    """Raised when a canonical call cannot be built from the given input."""
    pass


class SigningError(IngressError):
    """Raised when an identity cannot produce a signature."""
    pass


class KeyFormatError(SigningError):
    """Raised when key material matches none of the supported identity types."""
    pass


class TransportError(IngressError):
    """Raised when the network transport fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class DecodeError(IngressError):
    """
    Raised when response bytes cannot be decoded.

    The undecoded bytes stay available on ``raw`` for manual inspection.
    """

    def __init__(self, message: str, raw: Optional[bytes] = None):
        self.raw = raw
        super().__init__(message)


class MalformedResponseError(DecodeError):
    """Raised when a response does not have the expected outer structure."""
    pass


class InvalidArtifact(IngressError):
    """Raised when a persisted artifact matches none of the known shapes."""
    pass


class EnvelopeVerificationError(IngressError):
    """Raised when an envelope's signature or fields do not check out."""
    pass


class EnvelopeExpiredError(IngressError):
    """Raised when an envelope is submitted after its ingress expiry."""

    def __init__(self, message: str, expiry_ns: int):
        self.expiry_ns = expiry_ns
        super().__init__(message)
