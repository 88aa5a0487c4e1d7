"""
CBOR helpers for envelopes and replica responses.
"""
from typing import Any, Dict, Optional

import cbor2

from .exceptions import MalformedResponseError

# Semantic tag marking a self-describing CBOR document
SELF_DESCRIBE_TAG = 55799


def dumps(value: Any) -> bytes:
    """Encode with deterministic map ordering."""
    return cbor2.dumps(value, canonical=True)


def loads(data: bytes) -> Any:
    """
    Decode CBOR, unwrapping the self-describe tag if present.

    Raises:
        MalformedResponseError: If the bytes are not valid CBOR
    """
    try:
        value = cbor2.loads(data)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise MalformedResponseError(f"Invalid CBOR data: {e}", raw=data) from e
    while isinstance(value, cbor2.CBORTag) and value.tag == SELF_DESCRIBE_TAG:
        value = value.value
    return value


def encode_envelope(
    content: Dict[str, Any],
    sender_pubkey: Optional[bytes] = None,
    sender_sig: Optional[bytes] = None
) -> bytes:
    """Wrap a content map and its signature into envelope bytes."""
    envelope: Dict[str, Any] = {"content": content}
    if sender_pubkey is not None:
        envelope["sender_pubkey"] = sender_pubkey
    if sender_sig is not None:
        envelope["sender_sig"] = sender_sig
    return cbor2.dumps(cbor2.CBORTag(SELF_DESCRIBE_TAG, envelope), canonical=True)


def decode_envelope(data: bytes) -> Dict[str, Any]:
    """
    Decode envelope bytes into a map with ``content`` and optional signature fields.

    Raises:
        MalformedResponseError: If the bytes are not an envelope
    """
    envelope = loads(data)
    if not isinstance(envelope, dict) or not isinstance(envelope.get("content"), dict):
        raise MalformedResponseError("Envelope is missing its content map", raw=data)
    return envelope
