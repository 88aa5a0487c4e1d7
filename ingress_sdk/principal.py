"""
Principal identifiers.

A principal is an opaque byte string of at most 29 bytes. Its textual form
is the base32 encoding of a CRC32 checksum followed by the raw bytes,
lower-cased and grouped in chunks of five characters.
"""
import base64
import hashlib
import zlib
from dataclasses import dataclass
from typing import Optional, Union

from .exceptions import EncodingError

MAX_PRINCIPAL_LENGTH = 29

# Class suffixes appended to derived principals
SELF_AUTHENTICATING_SUFFIX = 0x02
ANONYMOUS_SUFFIX = 0x04

ACCOUNT_DOMAIN_SEPARATOR = b"\x0aaccount-id"


@dataclass(frozen=True)
class Principal:
    """
    An Internet Computer principal (a canister id or a sender id).

    Attributes:
        raw: The raw principal bytes
    """
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)):
            raise EncodingError(f"Principal bytes expected, got {type(self.raw).__name__}")
        if len(self.raw) > MAX_PRINCIPAL_LENGTH:
            raise EncodingError(
                f"Principal is {len(self.raw)} bytes long, at most {MAX_PRINCIPAL_LENGTH} allowed"
            )
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_text(cls, text: str) -> "Principal":
        """
        Parse the textual form of a principal.

        Args:
            text: Principal text such as ``ryjl3-tyaaa-aaaaa-aaaba-cai``

        Returns:
            Principal

        Raises:
            EncodingError: If the text is not a well-formed principal
        """
        if not isinstance(text, str) or not text:
            raise EncodingError("Principal text must be a non-empty string")

        compact = text.replace("-", "").upper()
        padding = "=" * (-len(compact) % 8)
        try:
            decoded = base64.b32decode(compact + padding)
        except (ValueError, TypeError) as e:
            raise EncodingError(f"Invalid principal text '{text}': {e}") from e

        if len(decoded) < 4:
            raise EncodingError(f"Invalid principal text '{text}': too short")

        principal = cls(decoded[4:])
        if principal.to_text() != text:
            raise EncodingError(f"Invalid principal text '{text}': checksum or grouping mismatch")
        return principal

    @classmethod
    def from_hex(cls, value: str) -> "Principal":
        try:
            return cls(bytes.fromhex(value))
        except ValueError as e:
            raise EncodingError(f"Invalid principal hex '{value}': {e}") from e

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(bytes([ANONYMOUS_SUFFIX]))

    @classmethod
    def management_canister(cls) -> "Principal":
        return cls(b"")

    @classmethod
    def self_authenticating(cls, public_key_der: bytes) -> "Principal":
        """Derive the principal of a DER-encoded public key."""
        digest = hashlib.sha224(public_key_der).digest()
        return cls(digest + bytes([SELF_AUTHENTICATING_SUFFIX]))

    @classmethod
    def from_canister_index(cls, index: int) -> "Principal":
        """Build the id of a canister allocated from the first subnet range."""
        return cls(index.to_bytes(8, "big") + b"\x01\x01")

    @property
    def is_anonymous(self) -> bool:
        return self.raw == bytes([ANONYMOUS_SUFFIX])

    def to_text(self) -> str:
        checksum = zlib.crc32(self.raw).to_bytes(4, "big")
        encoded = base64.b32encode(checksum + self.raw).decode("ascii").lower().rstrip("=")
        return "-".join(encoded[i:i + 5] for i in range(0, len(encoded), 5))

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"Principal({self.to_text()!r})"


def as_principal(value: Union[Principal, str, bytes]) -> Principal:
    """Coerce principal text, raw bytes or a Principal into a Principal."""
    if isinstance(value, Principal):
        return value
    if isinstance(value, str):
        return Principal.from_text(value)
    if isinstance(value, (bytes, bytearray)):
        return Principal(bytes(value))
    raise EncodingError(f"Cannot interpret {type(value).__name__} as a principal")


def account_identifier(principal: Principal, subaccount: Optional[bytes] = None) -> str:
    """
    Compute the ledger account identifier of a principal.

    Args:
        principal: Owner of the account
        subaccount: Optional 32-byte subaccount (defaults to all zeros)

    Returns:
        64-character lowercase hex account identifier
    """
    if subaccount is None:
        subaccount = bytes(32)
    if len(subaccount) != 32:
        raise EncodingError(f"Subaccount must be 32 bytes, got {len(subaccount)}")

    digest = hashlib.sha224(ACCOUNT_DOMAIN_SEPARATOR + principal.raw + subaccount).digest()
    checksum = zlib.crc32(digest).to_bytes(4, "big")
    return (checksum + digest).hex()


LEDGER_CANISTER_ID = Principal.from_canister_index(2)
GOVERNANCE_CANISTER_ID = Principal.from_canister_index(1)
