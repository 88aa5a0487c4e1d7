"""
Canonical call encoding and request ids.

A request id is the representation-independent hash of a call's content
map: every field is hashed on its own and the sorted field hashes are hashed
together, so re-encoding the content never changes the id. Envelopes that
were signed and persisted earlier depend on this scheme staying stable.
"""
import hashlib
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .exceptions import DecodeError, EncodingError
from .principal import Principal, as_principal

# Ingress messages may not expire more than five minutes in the future
DEFAULT_INGRESS_EXPIRY_SECONDS = 5 * 60
PERMITTED_DRIFT_SECONDS = 60

REQUEST_ID_LENGTH = 32


class CallKind(str, Enum):
    """Kind of request carried by an envelope."""
    QUERY = "query"
    UPDATE = "update"
    READ_STATE = "read_state"

    @property
    def request_type(self) -> str:
        # Update calls go over the wire as "call"
        if self is CallKind.UPDATE:
            return "call"
        return self.value


@dataclass(frozen=True)
class RequestId:
    """Correlation key between a submitted update call and its status."""
    digest: bytes

    def __post_init__(self):
        if len(self.digest) != REQUEST_ID_LENGTH:
            raise EncodingError(
                f"Request id must be {REQUEST_ID_LENGTH} bytes, got {len(self.digest)}"
            )

    @classmethod
    def from_hex(cls, value: str) -> "RequestId":
        if value.startswith("0x"):
            value = value[2:]
        try:
            return cls(bytes.fromhex(value))
        except ValueError as e:
            raise EncodingError(f"Invalid request id '{value}': {e}") from e

    @property
    def hex(self) -> str:
        return self.digest.hex()

    def __str__(self) -> str:
        return "0x" + self.hex


@dataclass(frozen=True)
class CanonicalCall:
    """
    Normalized representation of a query or update call, before signing.

    The argument bytes are opaque here; producing a valid payload is the
    caller's job.
    """
    sender: Principal
    destination: Principal
    method: str
    argument_bytes: bytes
    call_kind: CallKind
    expiry: int
    nonce: Optional[bytes] = None

    def content(self) -> Dict[str, Any]:
        """Return the content map that is hashed, signed and sent."""
        content: Dict[str, Any] = {
            "request_type": self.call_kind.request_type,
            "sender": self.sender.raw,
            "canister_id": self.destination.raw,
            "method_name": self.method,
            "arg": self.argument_bytes,
            "ingress_expiry": self.expiry,
        }
        if self.nonce is not None:
            content["nonce"] = self.nonce
        return content

    @classmethod
    def from_content(cls, content: Mapping[str, Any]) -> "CanonicalCall":
        """
        Rebuild a call from a decoded content map.

        Raises:
            EncodingError: If the map is not a query or call content map
        """
        request_type = content.get("request_type")
        if request_type == "call":
            kind = CallKind.UPDATE
        elif request_type == "query":
            kind = CallKind.QUERY
        else:
            raise EncodingError(f"Not a call content map: request_type={request_type!r}")

        try:
            return cls(
                sender=Principal(content["sender"]),
                destination=Principal(content["canister_id"]),
                method=content["method_name"],
                argument_bytes=bytes(content["arg"]),
                call_kind=kind,
                expiry=int(content["ingress_expiry"]),
                nonce=content.get("nonce"),
            )
        except (KeyError, TypeError) as e:
            raise EncodingError(f"Incomplete call content map: {e}") from e


def default_expiry(seconds: int = DEFAULT_INGRESS_EXPIRY_SECONDS) -> int:
    """Return an ingress expiry ``seconds`` from now, in nanoseconds."""
    return time.time_ns() + (seconds - PERMITTED_DRIFT_SECONDS) * 1_000_000_000


def build_call(
    sender: Union[Principal, str, bytes],
    destination: Union[Principal, str, bytes],
    method: str,
    argument_bytes: bytes,
    kind: CallKind,
    expiry: Optional[int] = None,
    nonce: Optional[bytes] = None
) -> CanonicalCall:
    """
    Build a canonical call.

    Args:
        sender: Principal of the signing identity
        destination: Canister id receiving the call
        method: Method name, must not be empty
        argument_bytes: Encoded arguments, accepted as-is
        kind: CallKind.QUERY or CallKind.UPDATE
        expiry: Ingress expiry in nanoseconds since the epoch (defaults to
            five minutes from now)
        nonce: Optional nonce making otherwise identical calls distinct

    Returns:
        CanonicalCall

    Raises:
        EncodingError: If the method is empty or a principal is malformed
    """
    if not isinstance(method, str) or not method:
        raise EncodingError("Method name must be a non-empty string")
    if kind not in (CallKind.QUERY, CallKind.UPDATE):
        raise EncodingError(f"Unsupported call kind for a canister call: {kind}")
    if not isinstance(argument_bytes, (bytes, bytearray)):
        raise EncodingError("Argument bytes must be bytes")
    if expiry is None:
        expiry = default_expiry()
    if expiry < 0:
        raise EncodingError("Ingress expiry must not be negative")

    return CanonicalCall(
        sender=as_principal(sender),
        destination=as_principal(destination),
        method=method,
        argument_bytes=bytes(argument_bytes),
        call_kind=kind,
        expiry=int(expiry),
        nonce=bytes(nonce) if nonce is not None else None,
    )


def read_state_content(
    sender: Principal,
    paths: Sequence[Sequence[bytes]],
    expiry: Optional[int] = None
) -> Dict[str, Any]:
    """Build the content map of a read_state request."""
    return {
        "request_type": CallKind.READ_STATE.request_type,
        "sender": sender.raw,
        "paths": [[bytes(label) for label in path] for path in paths],
        "ingress_expiry": default_expiry() if expiry is None else int(expiry),
    }


def encode_leb128(value: int) -> bytes:
    """Unsigned LEB128 encoding of a non-negative integer."""
    if value < 0:
        raise EncodingError("Cannot LEB128-encode a negative number")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_leb128(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Decode an unsigned LEB128 number.

    Returns:
        The number and the offset just past it

    Raises:
        DecodeError: If the data ends before the number does
    """
    result = 0
    shift = 0
    pos = offset
    while pos < len(data):
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return result, pos
    raise DecodeError(f"Truncated LEB128 number at offset {offset}", raw=bytes(data))


def _hash_value(value: Any) -> bytes:
    if isinstance(value, bool):
        raise EncodingError("Booleans cannot be hashed into a request id")
    if isinstance(value, (bytes, bytearray)):
        return hashlib.sha256(bytes(value)).digest()
    if isinstance(value, str):
        return hashlib.sha256(value.encode("utf-8")).digest()
    if isinstance(value, int):
        return hashlib.sha256(encode_leb128(value)).digest()
    if isinstance(value, (list, tuple)):
        return hashlib.sha256(b"".join(_hash_value(v) for v in value)).digest()
    if isinstance(value, Mapping):
        return hash_of_map(value)
    raise EncodingError(f"Cannot hash value of type {type(value).__name__}")


def hash_of_map(content: Mapping[str, Any]) -> bytes:
    """Representation-independent hash of a map; ``None`` values are skipped."""
    pairs: List[bytes] = []
    for key, value in content.items():
        if value is None:
            continue
        pairs.append(hashlib.sha256(key.encode("utf-8")).digest() + _hash_value(value))
    pairs.sort()
    return hashlib.sha256(b"".join(pairs)).digest()


def request_id(call: Union[CanonicalCall, Mapping[str, Any]]) -> RequestId:
    """
    Compute the request id of a canonical call or of a raw content map.

    Pure function: equal inputs always give equal ids, whatever the field
    order of the content map.
    """
    content = call.content() if isinstance(call, CanonicalCall) else call
    return RequestId(hash_of_map(content))
