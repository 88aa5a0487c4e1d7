"""
Identity types.

Identities form a closed set: anonymous, secp256k1 and ed25519. Each one
reports its sender principal and signs messages; the private key never
leaves the object.
"""
from abc import ABC, abstractmethod
from typing import Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..exceptions import SigningError
from ..principal import Principal
from .crypto import der_signature_to_raw


class Identity(ABC):
    """Capability to sign ingress messages on behalf of a principal."""

    @property
    @abstractmethod
    def sender(self) -> Principal:
        """Principal that signed messages are sent from."""
        pass

    @property
    @abstractmethod
    def public_key_der(self) -> Optional[bytes]:
        """DER-encoded SubjectPublicKeyInfo, or None for the anonymous identity."""
        pass

    @abstractmethod
    def sign(self, message: bytes) -> bytes:
        """
        Sign a message.

        Raises:
            SigningError: If this identity cannot sign
        """
        pass

    @property
    def is_anonymous(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(sender={self.sender.to_text()!r})"


class AnonymousIdentity(Identity):
    """Identity without a key; messages from it carry no signature."""

    @property
    def sender(self) -> Principal:
        return Principal.anonymous()

    @property
    def public_key_der(self) -> Optional[bytes]:
        return None

    @property
    def is_anonymous(self) -> bool:
        return True

    def sign(self, message: bytes) -> bytes:
        raise SigningError("The anonymous identity cannot produce signatures")

    def __eq__(self, other) -> bool:
        return isinstance(other, AnonymousIdentity)

    def __hash__(self) -> int:
        return hash(AnonymousIdentity)


class _KeyIdentity(Identity):
    """Shared plumbing for identities backed by a private key."""

    def __init__(self, private_key):
        self._private_key = private_key
        self._public_key_der = private_key.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo
        )
        self._sender = Principal.self_authenticating(self._public_key_der)

    @property
    def sender(self) -> Principal:
        return self._sender

    @property
    def public_key_der(self) -> Optional[bytes]:
        return self._public_key_der

    @abstractmethod
    def to_pem(self) -> bytes:
        """Serialize the private key as unencrypted PEM."""
        pass


class Ed25519Identity(_KeyIdentity):
    """
    Ed25519 identity (the "basic" identity).

    Ed25519 signatures are deterministic: signing the same message twice
    yields identical bytes.
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        super().__init__(private_key)

    @classmethod
    def generate(cls) -> "Ed25519Identity":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Ed25519Identity":
        """Build an identity from a 32-byte private key seed."""
        if len(seed) != 32:
            raise SigningError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def to_pem(self) -> bytes:
        return self._private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption()
        )


class Secp256k1Identity(_KeyIdentity):
    """
    ECDSA secp256k1 identity.

    Signatures are 64-byte ``r||s`` over SHA-256 in low-S form. The ECDSA
    nonce is random, so re-signing identical input gives different bytes.
    """

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256K1):
            raise SigningError(f"Expected a secp256k1 key, got {private_key.curve.name}")
        super().__init__(private_key)

    @classmethod
    def generate(cls) -> "Secp256k1Identity":
        return cls(ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_secret(cls, secret: bytes) -> "Secp256k1Identity":
        """Build an identity from a 32-byte big-endian private scalar."""
        try:
            key = ec.derive_private_key(int.from_bytes(secret, "big"), ec.SECP256K1())
        except ValueError as e:
            raise SigningError(f"Invalid secp256k1 secret: {e}") from e
        return cls(key)

    def sign(self, message: bytes) -> bytes:
        der = self._private_key.sign(message, ec.ECDSA(hashes.SHA256()))
        return der_signature_to_raw(der)

    def to_pem(self) -> bytes:
        return self._private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption()
        )
