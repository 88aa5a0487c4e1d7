"""
Ingress SDK - offline signing and later submission of Internet Computer calls.

Typical flow: build a canonical call, sign it on an air-gapped machine,
persist the envelopes as JSON, then submit them from a networked machine
and poll update calls until they reach a terminal state.
"""
from .artifact import dump_artifact, load_artifact, read_artifact, write_artifact
from .client import IngressClient, SubmissionResult
from .decoder import InterfaceTypeContext, decode_query_response, is_query, parse_query_response, render
from .exceptions import (
    DecodeError, EncodingError, EnvelopeExpiredError, EnvelopeVerificationError, IngressError,
    InvalidArtifact, KeyFormatError, MalformedResponseError, SigningError, TransportError
)
from .identity import AnonymousIdentity, Ed25519Identity, Identity, Secp256k1Identity, load_identity
from .models import Envelope, SignedCallBundle
from .principal import GOVERNANCE_CANISTER_ID, LEDGER_CANISTER_ID, Principal, account_identifier
from .request_id import CallKind, CanonicalCall, RequestId, build_call, request_id
from .signing import sign_call, sign_call_and_status_query, sign_status_query, verify_envelope
from .status import PollOutcome, PollPolicy, PollStatus, poll, poll_sync
from .transport import HttpTransport, ReplicaTransport, StubTransport, TransportConfig, get_transport
from .version import __version__

__all__ = [
    "IngressClient", "SubmissionResult",
    "Principal", "account_identifier", "LEDGER_CANISTER_ID", "GOVERNANCE_CANISTER_ID",
    "CallKind", "CanonicalCall", "RequestId", "build_call", "request_id",
    "Identity", "AnonymousIdentity", "Ed25519Identity", "Secp256k1Identity", "load_identity",
    "sign_call", "sign_status_query", "sign_call_and_status_query", "verify_envelope",
    "Envelope", "SignedCallBundle",
    "load_artifact", "dump_artifact", "read_artifact", "write_artifact",
    "PollPolicy", "PollOutcome", "PollStatus", "poll", "poll_sync",
    "InterfaceTypeContext", "decode_query_response", "parse_query_response", "render", "is_query",
    "ReplicaTransport", "TransportConfig", "HttpTransport", "StubTransport", "get_transport",
    "IngressError", "EncodingError", "SigningError", "KeyFormatError", "TransportError",
    "DecodeError", "MalformedResponseError", "InvalidArtifact", "EnvelopeVerificationError",
    "EnvelopeExpiredError",
    "__version__",
]
