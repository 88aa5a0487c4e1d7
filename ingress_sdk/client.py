"""
IngressClient - submits signed envelopes and follows them to a result.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .decoder import InterfaceTypeContext, parse_query_response, render
from .exceptions import EncodingError, EnvelopeExpiredError
from .models import Envelope, SignedCallBundle
from .request_id import CallKind, RequestId
from .status import PollOutcome, PollPolicy, PollStatus, poll
from .transport import ReplicaTransport

Submittable = Union[Envelope, SignedCallBundle]


@dataclass(frozen=True)
class SubmissionResult:
    """
    Result of submitting one envelope or bundle.

    Attributes:
        status: ``replied``, ``rejected``, ``submitted`` or a PollStatus value;
            ``error`` if submission failed before a status was known
        output: Rendered reply or a human-readable description
        request_id: Request id of an update call
        outcome: Poll outcome for bundles
        error: Exception raised while processing this item
    """
    status: str
    output: str = ""
    request_id: Optional[RequestId] = None
    outcome: Optional[PollOutcome] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status not in (
            PollStatus.REJECTED.value, PollStatus.TIMED_OUT.value, PollStatus.TRANSPORT_ERROR.value
        )


class IngressClient:
    """
    Client for submitting pre-signed envelopes.

    The client never signs anything: it only forwards envelopes produced
    offline, polls update calls and renders replies.
    """

    def __init__(
        self,
        transport: ReplicaTransport,
        context: Optional[InterfaceTypeContext] = None,
        policy: Optional[PollPolicy] = None,
        logger: Optional[logging.Logger] = None,
        clock_ns: Callable[[], int] = time.time_ns
    ):
        """
        Initialize the IngressClient

        Args:
            transport: Transport used to reach the network
            context: Interface descriptions for rendering (defaults to the bundled ones)
            policy: Poll policy for update calls
            logger: Optional logger instance
            clock_ns: Wall clock in nanoseconds, used for expiry checks
        """
        self.transport = transport
        self.context = context if context is not None else InterfaceTypeContext.bundled()
        self.policy = policy or PollPolicy()
        self.logger = logger or logging.getLogger(__name__)
        self._clock_ns = clock_ns

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        self.transport.close()

    def check_expiry(self, envelope: Envelope) -> None:
        """
        Raises:
            EnvelopeExpiredError: If the envelope's ingress expiry has passed
        """
        expiry = envelope.ingress_expiry
        now = self._clock_ns()
        if expiry <= now:
            raise EnvelopeExpiredError(
                f"Envelope for {envelope.canister_id} expired {(now - expiry) / 1e9:.0f}s ago; sign it again",
                expiry,
            )

    def send(self, envelope: Envelope) -> Union[str, RequestId]:
        """
        Submit a single envelope.

        Args:
            envelope: Query or update envelope

        Returns:
            For a query, the rendered reply (or the rejection text);
            for an update, its RequestId

        Raises:
            EnvelopeExpiredError: If the envelope expired before submission
            TransportError: If the network could not be reached
            MalformedResponseError: If a query response is malformed
        """
        if envelope.call_type == CallKind.READ_STATE:
            raise EncodingError("Status query envelopes are submitted with resume()")
        self.check_expiry(envelope)
        destination = envelope.destination

        if envelope.call_type == CallKind.QUERY:
            return self._query(envelope)[1]

        rid = envelope.request_id_value
        self.logger.info(f"Submitting update {envelope.method_name} to {envelope.canister_id} ({rid.hex})")
        self.transport.call(destination, envelope.content_bytes, rid)
        return rid

    def _query(self, envelope: Envelope) -> Tuple[bool, str]:
        destination = envelope.destination
        self.logger.info(f"Sending query {envelope.method_name} to {envelope.canister_id}")
        raw = self.transport.query(destination, envelope.content_bytes)
        response = parse_query_response(raw)
        if not response.replied:
            self.logger.info("Query %s was rejected with code %s", envelope.method_name, response.reject_code)
            return False, response.describe()
        return True, render(response.reply, destination, envelope.method_name, self.context)

    def _render_outcome(self, outcome: PollOutcome, destination, method: Optional[str]) -> str:
        if outcome.status == PollStatus.REPLIED and method is not None:
            return render(outcome.reply or b"", destination, method, self.context)
        return outcome.describe()

    async def submit_and_poll(self, bundle: SignedCallBundle) -> SubmissionResult:
        """
        Submit an update call and poll it until it reaches a terminal state.

        Raises:
            EnvelopeExpiredError: If the call envelope expired
            TransportError: If the call could not be submitted
        """
        envelope = bundle.call_envelope
        rid = await asyncio.to_thread(self.send, envelope)
        outcome = await poll(self.transport, bundle.status_query_envelope, rid, self.policy)
        return SubmissionResult(
            status=outcome.status.value,
            output=self._render_outcome(outcome, envelope.destination, envelope.method_name),
            request_id=rid,
            outcome=outcome,
        )

    async def resume(self, status_envelope: Envelope, method_name: Optional[str] = None) -> SubmissionResult:
        """
        Poll an already submitted update call, e.g. after a TIMED_OUT outcome.

        Args:
            status_envelope: Signed status query envelope of the call
            method_name: Method of the call, used to render the reply

        Raises:
            EncodingError: If the envelope is not a status query
        """
        if status_envelope.call_type != CallKind.READ_STATE:
            raise EncodingError("resume() needs a read_state envelope")
        outcome = await poll(self.transport, status_envelope, policy=self.policy)
        return SubmissionResult(
            status=outcome.status.value,
            output=self._render_outcome(outcome, status_envelope.destination, method_name),
            request_id=outcome.request_id,
            outcome=outcome,
        )

    async def _process(self, item: Submittable) -> SubmissionResult:
        if isinstance(item, SignedCallBundle):
            return await self.submit_and_poll(item)
        if item.call_type == CallKind.QUERY:
            self.check_expiry(item)
            replied, output = await asyncio.to_thread(self._query, item)
            return SubmissionResult(status="replied" if replied else "rejected", output=output)
        rid = await asyncio.to_thread(self.send, item)
        return SubmissionResult(status="submitted", output=f"Submitted request id {rid}", request_id=rid)

    async def send_all(self, items: Sequence[Submittable]) -> List[SubmissionResult]:
        """
        Process envelopes and bundles concurrently.

        A failure of one item is recorded in that item's result and does not
        affect the others. Results are in input order.
        """
        gathered = await asyncio.gather(*(self._process(item) for item in items), return_exceptions=True)
        results = []
        for item, result in zip(items, gathered):
            if isinstance(result, BaseException):
                self.logger.warning("Submission failed: %s", result)
                request_id_value = item.request_id if isinstance(item, SignedCallBundle) else item.request_id_value
                results.append(SubmissionResult(status="error", output=str(result),
                                                request_id=request_id_value, error=result))
            else:
                results.append(result)
        return results

    def describe(self, envelope: Envelope) -> Dict[str, Optional[str]]:
        """Display data for an envelope, with its arguments rendered as Candid text."""
        arguments = None
        if envelope.method_name is not None:
            arguments = render(envelope.argument_bytes, envelope.destination, envelope.method_name,
                               self.context, part="args")
        return {
            "call_type": envelope.call_type.value,
            "sender": envelope.sender,
            "canister_id": envelope.canister_id,
            "method_name": envelope.method_name,
            "request_id": envelope.request_id,
            "arguments": arguments,
        }
