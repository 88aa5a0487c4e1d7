"""
Tests for status parsing and the status poll loop.
"""
import asyncio

import pytest

from ingress_sdk import cbor
from ingress_sdk.exceptions import EncodingError, MalformedResponseError, TransportError
from ingress_sdk.request_id import RequestId, encode_leb128
from ingress_sdk.signing import sign_call_and_status_query, sign_status_query
from ingress_sdk.status import (
    PollOutcome, PollPolicy, PollStatus, StatusReply, lookup_path, parse_status_response, poll, poll_sync
)
from ingress_sdk.transport import StubTransport
from ingress_sdk.transport.stub_transport import (
    certificate_response, rejected_response, replied_response, status_response
)

from conftest import NAT_42, TEST_CANISTER, TEST_EXPIRY


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


@pytest.fixture
def bundle(ed25519_identity, update_call):
    return sign_call_and_status_query(ed25519_identity, update_call)


@pytest.fixture
def fake_clock():
    return FakeClock()


def run_poll(transport, bundle, fake_clock, policy=None):
    return asyncio.run(poll(
        transport, bundle.status_query_envelope, bundle.request_id, policy,
        sleep=fake_clock.sleep, clock=fake_clock,
    ))


class TestPollPolicy:
    """Tests for the back-off schedule."""

    def test_defaults(self):
        policy = PollPolicy()
        assert policy.initial_delay == 0.5
        assert policy.multiplier == 1.5
        assert policy.max_delay == 10.0
        assert policy.max_elapsed == 300.0
        assert policy.max_iterations is None
        assert policy.max_transport_errors == 5

    def test_delays_non_decreasing_and_capped(self):
        delays = PollPolicy().delays()
        values = [next(delays) for _ in range(30)]
        assert values[0] == 0.5
        assert all(a <= b for a, b in zip(values, values[1:]))
        assert max(values) == 10.0

    @pytest.mark.parametrize("kwargs", [
        {"initial_delay": -1},
        {"initial_delay": 5, "max_delay": 1},
        {"multiplier": 0.5},
        {"max_iterations": 0},
        {"max_transport_errors": 0},
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            PollPolicy(**kwargs)


class TestStatusParsing:
    """Tests for both status response shapes."""

    def test_flat_replied(self):
        rid = RequestId(bytes(32))
        reply = parse_status_response(replied_response(NAT_42), rid)
        assert reply.classify() == PollStatus.REPLIED
        assert reply.reply == NAT_42

    def test_flat_rejected(self):
        reply = parse_status_response(rejected_response(3, "bad"), RequestId(bytes(32)))
        assert reply.classify() == PollStatus.REJECTED
        assert reply.reject_code == 3
        assert reply.reject_message == "bad"

    @pytest.mark.parametrize("status,expected", [
        ("received", PollStatus.PROCESSING),
        ("processing", PollStatus.PROCESSING),
        ("done", PollStatus.DONE),
        ("replied", PollStatus.DONE),
        ("rejected", PollStatus.DONE),
        ("unknown", PollStatus.UNKNOWN),
        ("whatever", PollStatus.UNKNOWN),
    ])
    def test_flat_status(self, status, expected):
        assert parse_status_response(status_response(status), RequestId(bytes(32))).classify() == expected

    def test_certificate_replied(self):
        rid = RequestId(b"\x01" * 32)
        reply = parse_status_response(certificate_response(rid, "replied", reply=NAT_42), rid)
        assert reply.status == "replied"
        assert reply.reply == NAT_42
        assert reply.classify() == PollStatus.REPLIED

    def test_certificate_rejected(self):
        rid = RequestId(b"\x01" * 32)
        raw = certificate_response(rid, "rejected", reject_code=300, reject_message="canister trapped")
        reply = parse_status_response(raw, rid)
        assert reply.reject_code == 300
        assert reply.classify() == PollStatus.REJECTED

    def test_certificate_for_other_request_is_unknown(self):
        raw = certificate_response(RequestId(b"\x01" * 32), "replied", reply=NAT_42)
        assert parse_status_response(raw, RequestId(b"\x02" * 32)).classify() == PollStatus.UNKNOWN

    def test_lookup_path(self):
        tree = [1, [2, b"a", [3, b"x"]], [2, b"b", [2, b"c", [3, b"y"]]]]
        assert lookup_path(tree, [b"a"]) == b"x"
        assert lookup_path(tree, [b"b", b"c"]) == b"y"
        assert lookup_path(tree, [b"b", b"d"]) is None
        assert lookup_path([4, bytes(32)], [b"a"]) is None

    def test_malformed_tree(self):
        with pytest.raises(MalformedResponseError):
            lookup_path([9, b"?"], [b"a"])

    def test_not_cbor(self):
        with pytest.raises(MalformedResponseError):
            parse_status_response(b"\xff\xff", RequestId(bytes(32)))

    def test_certificate_without_tree(self):
        raw = cbor.dumps({"certificate": cbor.dumps({"signature": b""})})
        with pytest.raises(MalformedResponseError):
            parse_status_response(raw, RequestId(bytes(32)))

    def test_leb128_reject_code(self):
        rid = RequestId(bytes(32))
        raw = certificate_response(rid, "rejected", reject_code=624485, reject_message="m")
        assert parse_status_response(raw, rid).reject_code == 624485
        assert encode_leb128(624485) == b"\xe5\x8e\x26"


class TestPoll:
    """Tests for the poll loop."""

    def test_replied_after_unknowns(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(
            status_response("unknown"), status_response("unknown"), replied_response(NAT_42)
        )
        outcome = run_poll(transport, bundle, fake_clock)
        assert outcome.status == PollStatus.REPLIED
        assert outcome.reply == NAT_42
        assert outcome.iterations == 3
        assert outcome.request_id == bundle.request_id
        assert len(transport.status_queries) == 3

    def test_rejected(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(status_response("processing"), rejected_response(3, "bad"))
        outcome = run_poll(transport, bundle, fake_clock)
        assert outcome.status == PollStatus.REJECTED
        assert outcome.reject_code == 3
        assert outcome.reject_message == "bad"
        assert outcome.describe() == "Rejected (code 3): bad"

    def test_done(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(status_response("done"))
        outcome = run_poll(transport, bundle, fake_clock)
        assert outcome.status == PollStatus.DONE
        assert outcome.iterations == 1

    def test_pruned_reply_is_done(self, bundle, fake_clock):
        """A replied status whose reply was pruned ends the poll"""
        transport = StubTransport()
        transport.queue_status_response(certificate_response(bundle.request_id, "replied"))
        outcome = run_poll(transport, bundle, fake_clock)
        assert outcome.status == PollStatus.DONE
        assert outcome.iterations == 1
        assert len(transport.status_queries) == 1

    def test_max_iterations(self, bundle, fake_clock):
        transport = StubTransport(default_status=status_response("unknown"))
        outcome = run_poll(transport, bundle, fake_clock, PollPolicy(max_iterations=2))
        assert outcome.status == PollStatus.TIMED_OUT
        assert outcome.iterations == 2
        assert outcome.is_terminal
        assert bundle.request_id.hex in outcome.describe()

    def test_max_elapsed(self, bundle, fake_clock):
        transport = StubTransport(default_status=status_response("processing"))
        policy = PollPolicy(initial_delay=1, multiplier=2, max_delay=4, max_elapsed=10)
        outcome = run_poll(transport, bundle, fake_clock, policy)
        assert outcome.status == PollStatus.TIMED_OUT
        # Sleeps of 1, 2, 4 fit in the budget; the next 4 would exceed it
        assert fake_clock.sleeps == [1, 2, 4]
        assert fake_clock.now <= 10

    def test_delays_follow_policy(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(*[status_response("unknown")] * 4, replied_response(NAT_42))
        run_poll(transport, bundle, fake_clock)
        assert fake_clock.sleeps == [0.5, 0.75, 1.125, 1.6875]

    def test_transient_transport_errors(self, bundle, fake_clock):
        """Errors below the budget do not end polling"""
        transport = StubTransport()
        transport.queue_status_response(
            TransportError("connection reset"), TransportError("connection reset"), replied_response(NAT_42)
        )
        outcome = run_poll(transport, bundle, fake_clock)
        assert outcome.status == PollStatus.REPLIED
        assert outcome.iterations == 3

    def test_transport_error_budget(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(*[TransportError("down", detail="503")] * 3)
        outcome = run_poll(transport, bundle, fake_clock, PollPolicy(max_transport_errors=3))
        assert outcome.status == PollStatus.TRANSPORT_ERROR
        assert outcome.detail == "503"
        assert not outcome.is_terminal

    def test_errors_must_be_consecutive(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(
            TransportError("down"), status_response("unknown"), TransportError("down"), replied_response(NAT_42)
        )
        outcome = run_poll(transport, bundle, fake_clock, PollPolicy(max_transport_errors=2))
        assert outcome.status == PollStatus.REPLIED

    def test_malformed_response_is_unknown(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(b"\xff", replied_response(NAT_42))
        outcome = run_poll(transport, bundle, fake_clock)
        assert outcome.status == PollStatus.REPLIED
        assert outcome.iterations == 2

    def test_envelope_request_id_mismatch(self, bundle, fake_clock):
        with pytest.raises(EncodingError):
            asyncio.run(poll(StubTransport(), bundle.status_query_envelope, RequestId(bytes(32))))

    def test_request_id_defaults_to_envelope(self, bundle, fake_clock):
        transport = StubTransport()
        transport.queue_status_response(replied_response(NAT_42))
        outcome = asyncio.run(poll(transport, bundle.status_query_envelope,
                                   sleep=fake_clock.sleep, clock=fake_clock))
        assert outcome.request_id == bundle.request_id

    def test_concurrent_polls_are_independent(self, ed25519_identity, fake_clock):
        """Two loops on one transport only see their own request ids"""
        transport = StubTransport(default_status=status_response("unknown"))
        rids = [RequestId(bytes([i]) * 32) for i in (1, 2)]
        envelopes = [sign_status_query(ed25519_identity, rid, TEST_CANISTER, expiry=TEST_EXPIRY) for rid in rids]

        async def run_both():
            return await asyncio.gather(*(
                poll(transport, env, policy=PollPolicy(max_iterations=3), sleep=fake_clock.sleep, clock=fake_clock)
                for env in envelopes
            ))

        outcomes = asyncio.run(run_both())
        assert [o.request_id for o in outcomes] == rids
        assert all(o.status == PollStatus.TIMED_OUT for o in outcomes)
        assert len(transport.status_queries) == 6

    def test_cancellation(self, bundle):
        """Cancelling the polling task stops it without side effects"""
        transport = StubTransport(default_status=status_response("processing"))

        async def cancel_soon():
            task = asyncio.create_task(poll(transport, bundle.status_query_envelope,
                                            policy=PollPolicy(initial_delay=10, max_delay=10)))
            while not transport.status_queries:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(cancel_soon())
        assert len(transport.status_queries) == 1

    def test_poll_sync(self, bundle):
        transport = StubTransport()
        transport.queue_status_response(replied_response(NAT_42))
        outcome = poll_sync(transport, bundle.status_query_envelope)
        assert outcome.status == PollStatus.REPLIED


class TestOutcome:
    """Tests for outcome descriptions."""

    def test_describe(self):
        rid = RequestId(bytes(32))
        assert PollOutcome(PollStatus.REPLIED, rid, reply=b"abc").describe() == "Replied with 3 bytes"
        assert "no longer available" in PollOutcome(PollStatus.DONE, rid).describe()
        assert "boom" in PollOutcome(PollStatus.TRANSPORT_ERROR, rid, detail="boom").describe()

    def test_classify_prefers_reject(self):
        assert StatusReply(status="replied", reply=b"", reject_code=1, reject_message="x").classify() == PollStatus.REJECTED

    def test_classify_incomplete_reject_is_done(self):
        assert StatusReply(status="rejected", reject_code=4).classify() == PollStatus.DONE
        assert StatusReply(status="rejected", reject_message="x").classify() == PollStatus.DONE
