"""
Envelope signing.

Signing is pure CPU work: no network or disk access happens here, so the
functions below are safe to call from any thread and offline.
"""
import logging
from typing import Any, Dict, Optional, Union

from .cbor import encode_envelope
from .exceptions import EncodingError, EnvelopeVerificationError, IngressError, SigningError
from .identity import Identity
from .identity.crypto import verify_signature
from .models import Envelope, SignedCallBundle
from .principal import Principal, as_principal
from .request_id import (
    CallKind, CanonicalCall, RequestId, read_state_content, request_id
)

logger = logging.getLogger(__name__)

IC_REQUEST_DOMAIN_SEPARATOR = b"\x0aic-request"
REQUEST_STATUS_LABEL = b"request_status"


def _sign_content(identity: Identity, content: Dict[str, Any]) -> bytes:
    """Sign a content map and return the envelope bytes."""
    rid = request_id(content)
    if identity.is_anonymous:
        return encode_envelope(content)
    signature = identity.sign(IC_REQUEST_DOMAIN_SEPARATOR + rid.digest)
    return encode_envelope(content, identity.public_key_der, signature)


def _check_sender(identity: Identity, sender: Principal) -> None:
    if identity.sender != sender:
        raise SigningError(
            f"Call sender {sender} does not match the signing identity {identity.sender}"
        )


def sign_call(identity: Identity, call: CanonicalCall) -> Envelope:
    """
    Sign a canonical call.

    The signature covers the request id, which is the hash of the canonical
    content, and the envelope embeds the sender's DER public key.

    Args:
        identity: Identity whose principal is the call's sender
        call: Canonical query or update call

    Returns:
        Envelope

    Raises:
        SigningError: If the identity cannot sign this call
    """
    _check_sender(identity, call.sender)
    if identity.is_anonymous and call.call_kind == CallKind.UPDATE:
        raise SigningError("Update calls must be signed; the anonymous identity cannot sign")

    rid = request_id(call)
    content = _sign_content(identity, call.content())
    logger.debug("Signed %s call %s.%s (request id %s)",
                 call.call_kind.value, call.destination, call.method, rid.hex)

    return Envelope(
        call_type=call.call_kind,
        sender=call.sender.to_text(),
        canister_id=call.destination.to_text(),
        method_name=call.method,
        request_id=rid.hex if call.call_kind == CallKind.UPDATE else None,
        content=content.hex(),
        arg=call.argument_bytes.hex(),
    )


def sign_status_query(
    identity: Identity,
    request_id_value: RequestId,
    destination: Union[Principal, str, bytes],
    expiry: Optional[int] = None
) -> Envelope:
    """
    Sign a read_state request asking for the status of ``request_id_value``.

    Polling is itself an authenticated request, so the status query must be
    signed by the same principal that submitted the call.

    Args:
        identity: Signing identity
        request_id_value: Id of the update call to poll
        destination: Canister the update call was sent to
        expiry: Ingress expiry in nanoseconds (defaults to five minutes from now)

    Returns:
        Envelope with call_type READ_STATE

    Raises:
        SigningError: If the identity cannot sign
    """
    if identity.is_anonymous:
        raise SigningError("Status queries must be signed; the anonymous identity cannot sign")

    destination = as_principal(destination)
    content = read_state_content(
        identity.sender,
        [[REQUEST_STATUS_LABEL, request_id_value.digest]],
        expiry
    )
    envelope_bytes = _sign_content(identity, content)
    logger.debug("Signed status query for request id %s", request_id_value.hex)

    return Envelope(
        call_type=CallKind.READ_STATE,
        sender=identity.sender.to_text(),
        canister_id=destination.to_text(),
        method_name=None,
        request_id=request_id_value.hex,
        content=envelope_bytes.hex(),
        arg=None,
    )


def sign_call_and_status_query(identity: Identity, call: CanonicalCall) -> SignedCallBundle:
    """
    Sign an update call together with the status query used to poll it.

    Both envelopes carry the same request id and share the call's expiry.
    """
    if call.call_kind != CallKind.UPDATE:
        raise EncodingError("Only update calls have a status to poll")

    call_envelope = sign_call(identity, call)
    status_envelope = sign_status_query(
        identity, request_id(call), call.destination, expiry=call.expiry
    )
    return SignedCallBundle(
        call_envelope=call_envelope,
        status_query_envelope=status_envelope,
    )


def verify_envelope(envelope: Envelope) -> RequestId:
    """
    Check that an envelope is internally consistent and correctly signed.

    The request id is recomputed from the signed content and every
    denormalized field of the envelope must match that content.

    Args:
        envelope: Envelope to verify

    Returns:
        The request id recomputed from the signed content

    Raises:
        EnvelopeVerificationError: If any check fails
    """
    try:
        decoded = envelope.decoded()
        content = decoded["content"]
        rid = request_id(content)
        sender = Principal(content.get("sender", b""))
    except (IngressError, TypeError) as e:
        raise EnvelopeVerificationError(f"Cannot decode envelope content: {e}") from e

    if sender.to_text() != envelope.sender:
        raise EnvelopeVerificationError("Envelope sender does not match the signed content")

    if envelope.call_type == CallKind.READ_STATE:
        _verify_read_state_fields(envelope, content)
    else:
        _verify_call_fields(envelope, content, rid)

    pubkey = decoded.get("sender_pubkey")
    signature = decoded.get("sender_sig")
    if pubkey is None and signature is None:
        if not sender.is_anonymous:
            raise EnvelopeVerificationError("Envelope from a non-anonymous sender is unsigned")
        return rid
    if pubkey is None or signature is None:
        raise EnvelopeVerificationError("Envelope carries only half of a signature")

    if Principal.self_authenticating(pubkey) != sender:
        raise EnvelopeVerificationError("Sender public key does not belong to the sender principal")
    try:
        valid = verify_signature(pubkey, signature, IC_REQUEST_DOMAIN_SEPARATOR + rid.digest)
    except SigningError as e:
        raise EnvelopeVerificationError(str(e)) from e
    if not valid:
        raise EnvelopeVerificationError(f"Invalid signature for request id {rid.hex}")
    return rid


def _verify_call_fields(envelope: Envelope, content: Dict[str, Any], rid: RequestId) -> None:
    try:
        call = CanonicalCall.from_content(content)
    except IngressError as e:
        raise EnvelopeVerificationError(str(e)) from e

    if call.call_kind != envelope.call_type:
        raise EnvelopeVerificationError(
            f"Envelope call type {envelope.call_type.value} does not match the signed content"
        )
    if call.destination.to_text() != envelope.canister_id:
        raise EnvelopeVerificationError("Envelope canister id does not match the signed content")
    if call.method != envelope.method_name:
        raise EnvelopeVerificationError("Envelope method name does not match the signed content")
    if envelope.arg is not None and call.argument_bytes != envelope.argument_bytes:
        raise EnvelopeVerificationError("Envelope arguments do not match the signed content")
    if envelope.call_type == CallKind.UPDATE and envelope.request_id != rid.hex:
        raise EnvelopeVerificationError(
            f"Envelope request id {envelope.request_id} does not match computed {rid.hex}"
        )


def _verify_read_state_fields(envelope: Envelope, content: Dict[str, Any]) -> None:
    if content.get("request_type") != CallKind.READ_STATE.request_type:
        raise EnvelopeVerificationError("Envelope call type read_state does not match the signed content")
    expected = [REQUEST_STATUS_LABEL, bytes.fromhex(envelope.request_id)]
    paths = content.get("paths") or []
    try:
        found = any([bytes(label) for label in path] == expected for path in paths)
    except TypeError as e:
        raise EnvelopeVerificationError(f"Malformed read_state paths: {e}") from e
    if not found:
        raise EnvelopeVerificationError(
            f"Status query does not ask for request id {envelope.request_id}"
        )
