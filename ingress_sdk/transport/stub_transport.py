"""
Stub-based transport implementation.

This module provides an in-memory transport that records what was sent and
answers from scripted responses. It is used for dry runs and tests, where
no replica is reachable.
"""
import logging
import threading
from collections import deque
from typing import Deque, List, Optional, Tuple, Union

from .. import cbor
from ..exceptions import TransportError
from ..principal import Principal
from ..request_id import RequestId, encode_leb128
from .transport import ReplicaTransport

# Configure logger
logger = logging.getLogger(__name__)

ScriptedResponse = Union[bytes, TransportError]


def replied_response(arg: bytes) -> bytes:
    """Flat CBOR response of a call or query that replied with ``arg``."""
    return cbor.dumps({"status": "replied", "reply": {"arg": arg}})


def rejected_response(code: int, message: str) -> bytes:
    """Flat CBOR response of a rejected call or query."""
    return cbor.dumps({"status": "rejected", "reject_code": code, "reject_message": message})


def status_response(status: str) -> bytes:
    """Flat CBOR status response without a reply, e.g. ``processing``."""
    return cbor.dumps({"status": status})


def certificate_response(
    request_id: RequestId,
    status: str,
    reply: Optional[bytes] = None,
    reject_code: Optional[int] = None,
    reject_message: Optional[str] = None
) -> bytes:
    """
    read_state response carrying a certificate with a request status subtree.

    The certificate is not signed; only the hash tree is populated.
    """
    leaves = [[2, b"status", [3, status.encode("utf-8")]]]
    if reply is not None:
        leaves.append([2, b"reply", [3, reply]])
    if reject_code is not None:
        leaves.append([2, b"reject_code", [3, encode_leb128(reject_code)]])
    if reject_message is not None:
        leaves.append([2, b"reject_message", [3, reject_message.encode("utf-8")]])

    subtree = leaves[0]
    for leaf in leaves[1:]:
        subtree = [1, subtree, leaf]

    tree = [1,
            [4, bytes(32)],
            [2, b"request_status", [2, request_id.digest, subtree]]]
    certificate = cbor.dumps({"tree": tree, "signature": bytes(48)})
    return cbor.dumps({"certificate": certificate})


class StubTransport(ReplicaTransport):
    """
    A scripted, in-memory replica transport.

    Responses are consumed in the order they were queued. Queueing a
    TransportError makes the matching request raise it instead.
    """

    def __init__(self, default_status: Optional[bytes] = None):
        """
        Initialize the stub transport.

        Args:
            default_status: Status response returned once the scripted
                status responses are used up (None raises TransportError)
        """
        self.default_status = default_status
        self.calls: List[Tuple[Principal, bytes, RequestId]] = []
        self.queries: List[Tuple[Principal, bytes]] = []
        self.status_queries: List[Tuple[Principal, bytes]] = []
        self.call_error: Optional[TransportError] = None
        self._query_responses: Deque[ScriptedResponse] = deque()
        self._status_responses: Deque[ScriptedResponse] = deque()
        self._lock = threading.Lock()

    def queue_query_response(self, *responses: ScriptedResponse) -> None:
        with self._lock:
            self._query_responses.extend(responses)

    def queue_status_response(self, *responses: ScriptedResponse) -> None:
        with self._lock:
            self._status_responses.extend(responses)

    def call(self, destination: Principal, envelope: bytes, request_id: RequestId) -> None:
        with self._lock:
            self.calls.append((destination, envelope, request_id))
        logger.debug(f"StubTransport.call to {destination} with request id {request_id.hex}")
        if self.call_error is not None:
            raise self.call_error

    def query(self, destination: Principal, envelope: bytes) -> bytes:
        with self._lock:
            self.queries.append((destination, envelope))
            response = self._query_responses.popleft() if self._query_responses else None
        if response is None:
            raise TransportError("No scripted query response left")
        return self._answer(response)

    def query_for_status(self, destination: Principal, envelope: bytes) -> bytes:
        with self._lock:
            self.status_queries.append((destination, envelope))
            if self._status_responses:
                response: Optional[ScriptedResponse] = self._status_responses.popleft()
            else:
                response = self.default_status
        if response is None:
            raise TransportError("No scripted status response left")
        return self._answer(response)

    @staticmethod
    def _answer(response: ScriptedResponse) -> bytes:
        if isinstance(response, TransportError):
            raise response
        return response
