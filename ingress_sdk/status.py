"""
Status polling for update calls.

An update call is accepted by the network before it executes, so its result
has to be fetched afterwards with signed status queries. ``poll`` repeats
the status query with an increasing delay until the call reaches a terminal
state or the policy's budget runs out:

    Submitted -> {Unknown, Processing} -> {Replied, Rejected, Done} | TimedOut

Each poll loop only owns its own envelope, request id and counters, so any
number of loops can run concurrently on one event loop. Cancelling the task
running ``poll`` is always safe: nothing signed is ever mutated.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, List, Optional

from . import cbor
from .exceptions import DecodeError, EncodingError, MalformedResponseError, TransportError
from .models import Envelope
from .request_id import RequestId, decode_leb128
from .transport import ReplicaTransport
from .transport._rate_limited_log import rate_limited_log

logger = logging.getLogger(__name__)


class PollStatus(str, Enum):
    """Observed state of an update call."""
    REPLIED = "replied"
    REJECTED = "rejected"
    DONE = "done"
    UNKNOWN = "unknown"
    PROCESSING = "processing"
    TIMED_OUT = "timed_out"
    TRANSPORT_ERROR = "transport_error"


# States reported by the network that end polling
NETWORK_TERMINAL = frozenset({PollStatus.REPLIED, PollStatus.REJECTED, PollStatus.DONE})


@dataclass(frozen=True)
class PollPolicy:
    """
    Back-off and budget for a status poll loop.

    The delay between status queries starts at ``initial_delay`` and is
    multiplied by ``multiplier`` after every query, capped at ``max_delay``.
    The loop gives up with TIMED_OUT once ``max_elapsed`` seconds have passed
    or after ``max_iterations`` status queries, and with TRANSPORT_ERROR
    after ``max_transport_errors`` consecutive failed queries.

    Attributes:
        initial_delay: First delay in seconds
        multiplier: Growth factor of the delay
        max_delay: Upper bound of a single delay in seconds
        max_elapsed: Overall time budget in seconds
        max_iterations: Optional cap on the number of status queries
        max_transport_errors: Consecutive transport failures tolerated
    """
    initial_delay: float = 0.5
    multiplier: float = 1.5
    max_delay: float = 10.0
    max_elapsed: float = 300.0
    max_iterations: Optional[int] = None
    max_transport_errors: int = 5

    def __post_init__(self):
        if self.initial_delay < 0 or self.max_delay < self.initial_delay:
            raise ValueError("Delays must satisfy 0 <= initial_delay <= max_delay")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.max_transport_errors < 1:
            raise ValueError("max_transport_errors must be at least 1")

    def delays(self) -> Iterator[float]:
        """Yield the non-decreasing sequence of delays between status queries."""
        delay = self.initial_delay
        while True:
            yield min(delay, self.max_delay)
            delay = min(delay * self.multiplier, self.max_delay)


@dataclass(frozen=True)
class PollOutcome:
    """Result of a poll loop."""
    status: PollStatus
    request_id: RequestId
    reply: Optional[bytes] = None
    reject_code: Optional[int] = None
    reject_message: Optional[str] = None
    detail: Optional[str] = None
    iterations: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in NETWORK_TERMINAL or self.status == PollStatus.TIMED_OUT

    def describe(self) -> str:
        """Human-readable summary of the outcome."""
        if self.status == PollStatus.REPLIED:
            return f"Replied with {len(self.reply or b'')} bytes"
        if self.status == PollStatus.REJECTED:
            return f"Rejected (code {self.reject_code}): {self.reject_message}"
        if self.status == PollStatus.DONE:
            return "Done: the reply is no longer available"
        if self.status == PollStatus.TIMED_OUT:
            return (
                f"The call is still pending after {self.iterations} status queries. "
                f"Check its status later with request id {self.request_id}"
            )
        if self.status == PollStatus.TRANSPORT_ERROR:
            return f"Could not reach the network: {self.detail}"
        return f"Status {self.status.value}"


@dataclass(frozen=True)
class StatusReply:
    """Fields of one status response."""
    status: Optional[str] = None
    reply: Optional[bytes] = None
    reject_code: Optional[int] = None
    reject_message: Optional[str] = None

    def classify(self) -> PollStatus:
        if self.reject_code is not None and self.reject_message is not None:
            return PollStatus.REJECTED
        if self.reply is not None:
            return PollStatus.REPLIED
        # Replied or rejected without the data means it was pruned
        if self.status in ("done", "replied", "rejected"):
            return PollStatus.DONE
        if self.status in ("received", "processing"):
            return PollStatus.PROCESSING
        return PollStatus.UNKNOWN


def _reject_code(data: bytes) -> int:
    try:
        return decode_leb128(data)[0]
    except DecodeError as e:
        raise MalformedResponseError(f"Bad reject code in certificate: {e}", raw=data) from e


def _find_label(tree: Any, label: bytes) -> Optional[Any]:
    tag = tree[0]
    if tag == 1:
        found = _find_label(tree[1], label)
        return found if found is not None else _find_label(tree[2], label)
    if tag == 2:
        return tree[2] if bytes(tree[1]) == label else None
    if tag in (0, 3, 4):
        return None
    raise MalformedResponseError(f"Unknown hash tree node tag {tag!r}")


def lookup_path(tree: Any, path: List[bytes]) -> Optional[bytes]:
    """
    Look up a leaf in a certificate hash tree.

    Returns:
        The leaf value, or None if the path is absent or pruned

    Raises:
        MalformedResponseError: If the tree is not a valid hash tree
    """
    node = tree
    try:
        for label in path:
            node = _find_label(node, label)
            if node is None:
                return None
        if node[0] == 3:
            return bytes(node[1])
    except (IndexError, TypeError, KeyError) as e:
        raise MalformedResponseError(f"Malformed hash tree: {e}") from e
    return None


def parse_status_response(raw: bytes, request_id_value: RequestId) -> StatusReply:
    """
    Extract the status of ``request_id_value`` from a raw status response.

    Both certificate responses and flat status maps are understood.

    Raises:
        MalformedResponseError: If the response has neither shape
    """
    response = cbor.loads(raw)
    if not isinstance(response, dict):
        raise MalformedResponseError("Status response is not a CBOR map", raw=raw)

    if "certificate" in response:
        certificate = cbor.loads(response["certificate"])
        if not isinstance(certificate, dict) or "tree" not in certificate:
            raise MalformedResponseError("Certificate has no hash tree", raw=raw)
        # TODO: verify the certificate signature against the network root key
        tree = certificate["tree"]
        prefix = [b"request_status", request_id_value.digest]

        status = lookup_path(tree, prefix + [b"status"])
        reply = lookup_path(tree, prefix + [b"reply"])
        code = lookup_path(tree, prefix + [b"reject_code"])
        message = lookup_path(tree, prefix + [b"reject_message"])
        try:
            return StatusReply(
                status=status.decode("utf-8") if status is not None else None,
                reply=reply,
                reject_code=_reject_code(code) if code is not None else None,
                reject_message=message.decode("utf-8") if message is not None else None,
            )
        except UnicodeDecodeError as e:
            raise MalformedResponseError(f"Invalid text in certificate: {e}", raw=raw) from e

    reply = response.get("reply")
    arg = reply.get("arg") if isinstance(reply, dict) else None
    code = response.get("reject_code")
    message = response.get("reject_message")
    status = response.get("status")
    return StatusReply(
        status=status if isinstance(status, str) else None,
        reply=bytes(arg) if isinstance(arg, (bytes, bytearray)) else None,
        reject_code=code if isinstance(code, int) else None,
        reject_message=message if isinstance(message, str) else None,
    )


async def poll(
    transport: ReplicaTransport,
    status_envelope: Envelope,
    request_id_value: Optional[RequestId] = None,
    policy: Optional[PollPolicy] = None,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic
) -> PollOutcome:
    """
    Poll the status of an update call until it reaches a terminal state.

    Args:
        transport: Transport used for status queries
        status_envelope: Signed status query (read_state) envelope
        request_id_value: Request id being polled (defaults to the envelope's)
        policy: Back-off and budget (defaults to PollPolicy())
        sleep: Coroutine used to wait between queries
        clock: Monotonic clock used for the elapsed-time budget

    Returns:
        PollOutcome

    Raises:
        EncodingError: If the envelope does not poll ``request_id_value``
    """
    policy = policy or PollPolicy()
    envelope_rid = status_envelope.request_id_value
    if request_id_value is None:
        if envelope_rid is None:
            raise EncodingError("Status envelope carries no request id")
        request_id_value = envelope_rid
    elif envelope_rid != request_id_value:
        raise EncodingError(
            f"Status envelope polls {status_envelope.request_id}, not {request_id_value.hex}"
        )

    destination = status_envelope.destination
    envelope_bytes = status_envelope.content_bytes
    delays = policy.delays()
    started = clock()
    consecutive_errors = 0
    iteration = 0

    while True:
        iteration += 1
        try:
            raw = await asyncio.to_thread(transport.query_for_status, destination, envelope_bytes)
        except TransportError as e:
            consecutive_errors += 1
            rate_limited_log(
                f"Status query for {request_id_value.hex} failed ({consecutive_errors}/"
                f"{policy.max_transport_errors}): {e}",
                level="warning",
                logger_instance=logger,
                key=f"poll:{request_id_value.hex}",
            )
            if consecutive_errors >= policy.max_transport_errors:
                logger.error("Giving up on %s after %d transport errors", request_id_value.hex, consecutive_errors)
                return PollOutcome(
                    status=PollStatus.TRANSPORT_ERROR,
                    request_id=request_id_value,
                    detail=e.detail or str(e),
                    iterations=iteration,
                )
        else:
            consecutive_errors = 0
            try:
                status = parse_status_response(raw, request_id_value)
            except MalformedResponseError as e:
                logger.warning("Ignoring malformed status response for %s: %s", request_id_value.hex, e)
                status = StatusReply()

            state = status.classify()
            logger.debug("Request %s is %s (iteration %d)", request_id_value.hex, state.value, iteration)
            if state in NETWORK_TERMINAL:
                return PollOutcome(
                    status=state,
                    request_id=request_id_value,
                    reply=status.reply,
                    reject_code=status.reject_code,
                    reject_message=status.reject_message,
                    iterations=iteration,
                )

        if policy.max_iterations is not None and iteration >= policy.max_iterations:
            break
        delay = next(delays)
        if clock() - started + delay > policy.max_elapsed:
            break
        await sleep(delay)

    logger.info("Request %s still pending after %d status queries", request_id_value.hex, iteration)
    return PollOutcome(status=PollStatus.TIMED_OUT, request_id=request_id_value, iterations=iteration)


def poll_sync(
    transport: ReplicaTransport,
    status_envelope: Envelope,
    request_id_value: Optional[RequestId] = None,
    policy: Optional[PollPolicy] = None
) -> PollOutcome:
    """Blocking wrapper around ``poll`` for callers without an event loop."""
    return asyncio.run(poll(transport, status_envelope, request_id_value, policy))
