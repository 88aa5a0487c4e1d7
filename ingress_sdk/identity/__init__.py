"""
Identity module for the Ingress SDK.

This module turns PEM key material into one of the supported identities
and exposes the signature helpers used to verify envelopes. Keys are
loaded from bytes handed in by the caller; storing them is out of scope.
"""
import logging
from typing import Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..exceptions import KeyFormatError
from .crypto import verify_signature
from .types import AnonymousIdentity, Ed25519Identity, Identity, Secp256k1Identity

__all__ = [
    'Identity',
    'AnonymousIdentity',
    'Ed25519Identity',
    'Secp256k1Identity',
    'load_identity',
    'verify_signature',
]

logger = logging.getLogger(__name__)


def load_identity(pem: Optional[Union[str, bytes]]) -> Identity:
    """
    Select the identity variant matching the given PEM key material.

    Empty or missing key material selects the anonymous identity. Anything
    else must be an unencrypted secp256k1 or ed25519 private key.

    Args:
        pem: PEM text or bytes, or None

    Returns:
        Identity

    Raises:
        KeyFormatError: If the key material is not a supported private key
    """
    if pem is None:
        return AnonymousIdentity()
    if isinstance(pem, str):
        pem = pem.encode("utf-8")
    if not pem.strip():
        return AnonymousIdentity()

    try:
        private_key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyFormatError(f"Unrecognized key format: {e}") from e

    if isinstance(private_key, Ed25519PrivateKey):
        identity: Identity = Ed25519Identity(private_key)
    elif isinstance(private_key, ec.EllipticCurvePrivateKey) and isinstance(private_key.curve, ec.SECP256K1):
        identity = Secp256k1Identity(private_key)
    else:
        key_type = getattr(getattr(private_key, "curve", None), "name", type(private_key).__name__)
        raise KeyFormatError(f"Unsupported key type: {key_type}")

    # Log truncated principal for privacy
    logger.debug("Loaded %s for %s…", type(identity).__name__, identity.sender.to_text()[:11])
    return identity
