"""
Pytest fixtures for the Ingress SDK tests.
"""
import pytest

from ingress_sdk.identity import AnonymousIdentity, Ed25519Identity, Secp256k1Identity
from ingress_sdk.principal import LEDGER_CANISTER_ID, Principal
from ingress_sdk.request_id import CallKind, build_call
from ingress_sdk.transport import StubTransport
from ingress_sdk.transport._rate_limited_log import reset_rate_limits

# Constants for testing
TEST_SEED = bytes(range(32))
TEST_SECRET = bytes.fromhex("c9a9c7cd1c4e1a9d2e5a5c2d2b7e0f3a8d6c4b2a1908f7e6d5c4b3a2918f7e6d")
TEST_CANISTER = Principal(bytes.fromhex("00000000000004d2"))
# Far enough in the future that test envelopes never expire
TEST_EXPIRY = 4_000_000_000 * 1_000_000_000
# Candid for the single value (42 : nat)
NAT_42 = b"DIDL\x00\x01\x7d\x2a"


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Rate-limited log state is global; isolate each test."""
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def ed25519_identity():
    """Deterministic Ed25519 identity"""
    return Ed25519Identity.from_seed(TEST_SEED)


@pytest.fixture
def secp256k1_identity():
    """Deterministic secp256k1 identity"""
    return Secp256k1Identity.from_secret(TEST_SECRET)


@pytest.fixture
def anonymous_identity():
    return AnonymousIdentity()


@pytest.fixture
def update_call(ed25519_identity):
    """Update call from the Ed25519 identity to the test canister"""
    return build_call(
        ed25519_identity.sender,
        TEST_CANISTER,
        "transfer",
        NAT_42,
        CallKind.UPDATE,
        expiry=TEST_EXPIRY,
    )


@pytest.fixture
def query_call(ed25519_identity):
    """Query call from the Ed25519 identity to the test canister"""
    return build_call(
        ed25519_identity.sender,
        TEST_CANISTER,
        "balance",
        NAT_42,
        CallKind.QUERY,
        expiry=TEST_EXPIRY,
    )


@pytest.fixture
def ledger_query(ed25519_identity):
    """Query call to the ledger's account_balance_dfx method"""
    return build_call(
        ed25519_identity.sender,
        LEDGER_CANISTER_ID,
        "account_balance_dfx",
        b"DIDL\x00\x00",
        CallKind.QUERY,
        expiry=TEST_EXPIRY,
    )


@pytest.fixture
def stub_transport():
    return StubTransport()
