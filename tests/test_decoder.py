"""
Tests for query response unwrapping and interface-aware rendering.
"""
import logging

import pytest

from ingress_sdk import cbor
from ingress_sdk.candid import idl_hash
from ingress_sdk.decoder import (
    InterfaceTypeContext, decode_query_response, is_query, parse_query_response, render
)
from ingress_sdk.exceptions import MalformedResponseError
from ingress_sdk.principal import GOVERNANCE_CANISTER_ID, LEDGER_CANISTER_ID, Principal
from ingress_sdk.request_id import encode_leb128
from ingress_sdk.transport.stub_transport import rejected_response, replied_response

from conftest import NAT_42, TEST_CANISTER


# (record { e8s = 100 : nat64 }) as returned by account_balance_dfx
ICPTS_100 = b"DIDL\x01\x6c\x01" + encode_leb128(idl_hash("e8s")) + b"\x78\x01\x00" + (100).to_bytes(8, "little")

BALANCE_DID = """
service : {
    balance : (text) -> (nat) query;
    deposit : (nat) -> (record { total : nat });
}
"""


class TestQueryResponse:
    """Tests for unwrapping raw query responses."""

    def test_replied(self):
        assert decode_query_response(replied_response(NAT_42)) == NAT_42

    def test_rejected(self):
        decoded = decode_query_response(rejected_response(3, "bad"))
        assert decoded == b"Rejected (code 3): bad"

    def test_parse_rejected(self):
        response = parse_query_response(rejected_response(5, "canister trapped"))
        assert not response.replied
        assert response.reject_code == 5
        assert response.reject_message == "canister trapped"

    def test_self_describing_tag_accepted(self):
        raw = b"\xd9\xd9\xf7" + replied_response(NAT_42)
        assert decode_query_response(raw) == NAT_42

    def test_not_cbor(self):
        with pytest.raises(MalformedResponseError) as excinfo:
            decode_query_response(b"\xff")
        assert excinfo.value.raw == b"\xff"

    def test_missing_fields(self):
        with pytest.raises(MalformedResponseError):
            decode_query_response(cbor.dumps({"status": "replied"}))
        with pytest.raises(MalformedResponseError):
            decode_query_response(cbor.dumps([1, 2]))


class TestRender:
    """Tests for rendering with and without interface descriptions."""

    def test_untyped_when_no_interface(self):
        """A destination absent from the context still renders"""
        context = InterfaceTypeContext({})
        assert render(NAT_42, TEST_CANISTER, "balance", context) == "(42 : nat)"

    def test_typed_with_interface(self):
        context = InterfaceTypeContext({TEST_CANISTER: BALANCE_DID})
        assert render(NAT_42, TEST_CANISTER, "balance", context) == "(42 : nat)"

    def test_typed_names(self):
        reply = b"DIDL\x01\x6c\x01" + encode_leb128(idl_hash("total")) + b"\x7d\x01\x00\x05"
        context = InterfaceTypeContext({TEST_CANISTER.to_text(): BALANCE_DID})
        assert render(reply, TEST_CANISTER, "deposit", context) == "(record { total = 5 : nat })"
        assert render(reply, TEST_CANISTER, "unknown_method", context).startswith("(record { _")

    def test_args_part(self):
        context = InterfaceTypeContext({TEST_CANISTER: BALANCE_DID})
        assert render(NAT_42, TEST_CANISTER, "deposit", context, part="args") == "(42 : nat)"
        with pytest.raises(ValueError):
            render(NAT_42, TEST_CANISTER, "deposit", context, part="both")

    def test_bundled_ledger_interface(self):
        rendered = render(ICPTS_100, LEDGER_CANISTER_ID, "account_balance_dfx", InterfaceTypeContext.bundled())
        assert rendered == "(record { e8s = 100 : nat64 })"

    def test_no_context_renders_field_ids(self):
        rendered = render(ICPTS_100, LEDGER_CANISTER_ID, "account_balance_dfx")
        assert rendered == f"(record {{ _{idl_hash('e8s')}_ = 100 : nat64 }})"

    def test_undecodable_bytes(self):
        rendered = render(b"not candid", TEST_CANISTER, "balance", InterfaceTypeContext({}))
        assert rendered.startswith("Failed to decode Candid data")
        assert b"not candid".hex() in rendered

    def test_oversized_vector_fails_to_decode(self):
        data = b"DIDL\x01\x6d\x7f\x01\x00" + encode_leb128(1 << 40)
        rendered = render(data, TEST_CANISTER, "balance", InterfaceTypeContext({}))
        assert rendered.startswith("Failed to decode Candid data")
        assert "zero-sized" in rendered

    def test_unparsable_interface_falls_back(self, caplog):
        context = InterfaceTypeContext({TEST_CANISTER: "service : { broken"})
        with caplog.at_level(logging.WARNING, logger="ingress_sdk.decoder"):
            assert render(NAT_42, TEST_CANISTER, "balance", context) == "(42 : nat)"
            assert render(NAT_42, TEST_CANISTER, "balance", context) == "(42 : nat)"
        # Parsed once, logged once
        assert len([r for r in caplog.records if "unparsable" in r.getMessage()]) == 1

    def test_bad_escape_in_interface_falls_back(self, caplog):
        context = InterfaceTypeContext({TEST_CANISTER: r'service : { "\zz" : (text) -> (nat) query }'})
        with caplog.at_level(logging.WARNING, logger="ingress_sdk.decoder"):
            assert render(NAT_42, TEST_CANISTER, "balance", context) == "(42 : nat)"
        assert any("Invalid escape" in r.getMessage() for r in caplog.records)
        assert not is_query(context, TEST_CANISTER, "balance")


class TestInterfaceContext:
    """Tests for the interface context and query detection."""

    def test_bundled_is_query(self):
        context = InterfaceTypeContext.bundled()
        assert is_query(context, LEDGER_CANISTER_ID, "account_balance_dfx")
        assert not is_query(context, LEDGER_CANISTER_ID, "send_dfx")
        assert is_query(context, GOVERNANCE_CANISTER_ID, "list_neurons")
        assert not is_query(context, GOVERNANCE_CANISTER_ID, "manage_neuron")

    def test_unknown_canister_is_not_query(self):
        assert not is_query(InterfaceTypeContext({}), TEST_CANISTER, "balance")

    def test_no_context_is_not_query(self):
        assert not is_query(None, LEDGER_CANISTER_ID, "account_balance_dfx")

    def test_from_sources_overrides_bundled(self):
        context = InterfaceTypeContext.from_sources(
            {LEDGER_CANISTER_ID: "service : { account_balance_dfx : () -> () }"}
        )
        assert not is_query(context, LEDGER_CANISTER_ID, "account_balance_dfx")
        assert is_query(context, GOVERNANCE_CANISTER_ID, "get_neuron_info")

    def test_from_sources_without_bundled(self):
        context = InterfaceTypeContext.from_sources({TEST_CANISTER: BALANCE_DID}, include_bundled=False)
        assert LEDGER_CANISTER_ID not in context
        assert TEST_CANISTER in context
        assert context.resolve(TEST_CANISTER, "balance") is not None

    def test_keys_accept_text_and_principals(self):
        context = InterfaceTypeContext({"aaaaa-aa": BALANCE_DID})
        assert Principal.management_canister() in context
        assert is_query(context, "aaaaa-aa", "balance")
