"""
Cryptographic operations for the identity module.
"""
import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.utils import (
    decode_dss_signature, encode_dss_signature
)

from ..exceptions import KeyFormatError
from .ec_constants import SECP256K1_COMPONENT_LENGTH, SECP256K1_HALF_N, SECP256K1_N

logger = logging.getLogger(__name__)


def der_signature_to_raw(der_signature: bytes) -> bytes:
    """
    Convert a DER ECDSA signature into 64-byte ``r||s`` in low-S form.

    Args:
        der_signature: DER-encoded ECDSA signature

    Returns:
        Raw signature bytes
    """
    r, s = decode_dss_signature(der_signature)
    if s > SECP256K1_HALF_N:
        s = SECP256K1_N - s
    return (
        r.to_bytes(SECP256K1_COMPONENT_LENGTH, "big")
        + s.to_bytes(SECP256K1_COMPONENT_LENGTH, "big")
    )


def raw_signature_to_der(raw_signature: bytes) -> bytes:
    """Convert a 64-byte ``r||s`` signature into DER."""
    if len(raw_signature) != 2 * SECP256K1_COMPONENT_LENGTH:
        raise ValueError(f"Raw ECDSA signature must be 64 bytes, got {len(raw_signature)}")
    r = int.from_bytes(raw_signature[:SECP256K1_COMPONENT_LENGTH], "big")
    s = int.from_bytes(raw_signature[SECP256K1_COMPONENT_LENGTH:], "big")
    return encode_dss_signature(r, s)


def verify_signature(public_key_der: bytes, signature: bytes, message: bytes) -> bool:
    """
    Verify a signature made by an ed25519 or secp256k1 identity.

    Args:
        public_key_der: DER-encoded SubjectPublicKeyInfo of the signer
        signature: Raw signature bytes as produced by Identity.sign
        message: Signed message

    Returns:
        True if the signature is valid, False otherwise

    Raises:
        KeyFormatError: If the public key is of an unsupported type
    """
    try:
        public_key = serialization.load_der_public_key(public_key_der)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise KeyFormatError(f"Cannot load sender public key: {e}") from e

    try:
        if isinstance(public_key, Ed25519PublicKey):
            public_key.verify(signature, message)
        elif isinstance(public_key, ec.EllipticCurvePublicKey) and isinstance(public_key.curve, ec.SECP256K1):
            public_key.verify(raw_signature_to_der(signature), message, ec.ECDSA(hashes.SHA256()))
        else:
            raise KeyFormatError(f"Unsupported public key type: {type(public_key).__name__}")
    except (InvalidSignature, ValueError) as e:
        logger.debug("Signature verification failed: %s", e)
        return False
    return True
