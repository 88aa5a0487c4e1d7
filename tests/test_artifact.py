"""
Tests for persisted envelope models and artifact files.
"""
import dataclasses
import io
import json

import pytest
from pydantic import ValidationError

from ingress_sdk.artifact import dump_artifact, load_artifact, read_artifact, write_artifact
from ingress_sdk.exceptions import InvalidArtifact
from ingress_sdk.models import Envelope, SignedCallBundle
from ingress_sdk.request_id import CallKind
from ingress_sdk.signing import sign_call, sign_call_and_status_query


@pytest.fixture
def update_envelope(ed25519_identity, update_call):
    return sign_call(ed25519_identity, update_call)


@pytest.fixture
def query_envelope(ed25519_identity, query_call):
    return sign_call(ed25519_identity, query_call)


@pytest.fixture
def bundle(ed25519_identity, update_call):
    return sign_call_and_status_query(ed25519_identity, update_call)


class TestEnvelopeModel:
    """Tests for the Envelope model's validation."""

    def test_json_field_order(self, update_envelope):
        """Field order is part of the file format"""
        keys = list(json.loads(update_envelope.model_dump_json()).keys())
        assert keys == ["call_type", "sender", "canister_id", "method_name", "request_id", "content", "arg"]

    def test_call_type_values(self, update_envelope, query_envelope, bundle):
        assert json.loads(update_envelope.model_dump_json())["call_type"] == "update"
        assert json.loads(query_envelope.model_dump_json())["call_type"] == "query"
        status = json.loads(bundle.status_query_envelope.model_dump_json())
        assert status["call_type"] == "read_state"
        assert status["method_name"] is None
        assert status["arg"] is None

    def test_query_with_request_id_rejected(self, query_envelope):
        data = query_envelope.model_dump()
        data["request_id"] = "00" * 32
        with pytest.raises(ValidationError):
            Envelope(**data)

    def test_update_without_request_id_rejected(self, update_envelope):
        data = update_envelope.model_dump()
        data["request_id"] = None
        with pytest.raises(ValidationError):
            Envelope(**data)

    def test_bad_principal_rejected(self, update_envelope):
        data = update_envelope.model_dump()
        data["canister_id"] = "not-a-principal"
        with pytest.raises(ValidationError):
            Envelope(**data)

    def test_uppercase_hex_rejected(self, update_envelope):
        data = update_envelope.model_dump()
        data["content"] = data["content"].upper()
        with pytest.raises(ValidationError):
            Envelope(**data)

    def test_envelope_is_immutable(self, update_envelope):
        with pytest.raises(ValidationError):
            update_envelope.method_name = "other"

    def test_decoded_properties(self, update_envelope, update_call):
        assert update_envelope.destination == update_call.destination
        assert update_envelope.sender_principal == update_call.sender
        assert update_envelope.argument_bytes == update_call.argument_bytes
        assert update_envelope.ingress_expiry == update_call.expiry


class TestBundleModel:
    """Tests for the SignedCallBundle model's pairing rules."""

    def test_mismatched_request_ids(self, bundle, ed25519_identity, update_call):
        other = sign_call_and_status_query(
            ed25519_identity,
            dataclasses.replace(update_call, method="other"),
        )
        with pytest.raises(ValidationError):
            SignedCallBundle(call_envelope=bundle.call_envelope,
                             status_query_envelope=other.status_query_envelope)

    def test_query_envelope_is_not_a_call(self, bundle, query_envelope):
        with pytest.raises(ValidationError):
            SignedCallBundle(call_envelope=query_envelope,
                             status_query_envelope=bundle.status_query_envelope)


class TestArtifact:
    """Tests for loading and dumping artifacts."""

    def test_single_envelope(self, query_envelope):
        assert load_artifact(dump_artifact(query_envelope)) == [query_envelope]

    def test_envelope_list(self, query_envelope, update_envelope):
        items = load_artifact(dump_artifact([query_envelope, update_envelope]))
        assert items == [query_envelope, update_envelope]

    def test_bundle_list(self, bundle):
        items = load_artifact(dump_artifact([bundle, bundle]))
        assert len(items) == 2
        assert all(isinstance(item, SignedCallBundle) for item in items)

    def test_single_bundle(self, bundle):
        items = load_artifact(dump_artifact(bundle))
        assert items == [bundle]

    def test_envelope_list_preferred_over_bundle_list(self):
        """An empty list is an empty envelope list"""
        assert load_artifact("[]") == []

    def test_dump_is_compact_json(self, query_envelope, update_envelope):
        text = dump_artifact([query_envelope, update_envelope])
        assert " " not in text
        assert json.loads(text)[1]["call_type"] == "update"

    def test_mixed_list_rejected(self, tmp_path, query_envelope, bundle):
        """A list of envelopes and bundles would not load back"""
        with pytest.raises(InvalidArtifact, match="not both"):
            dump_artifact([query_envelope, bundle])
        path = tmp_path / "mixed.json"
        with pytest.raises(InvalidArtifact):
            write_artifact(path, [bundle, query_envelope])
        assert not path.exists()

    def test_invalid_json(self):
        with pytest.raises(InvalidArtifact, match="Invalid JSON content"):
            load_artifact("{not json")

    def test_unknown_shape(self):
        with pytest.raises(InvalidArtifact):
            load_artifact(json.dumps({"something": "else"}))

    def test_file_round_trip(self, tmp_path, bundle):
        path = tmp_path / "message.json"
        write_artifact(path, [bundle])
        assert read_artifact(path) == [bundle]

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidArtifact):
            read_artifact(tmp_path / "missing.json")

    def test_stdin_and_stdout(self, monkeypatch, capsys, query_envelope):
        write_artifact("-", query_envelope)
        written = capsys.readouterr().out
        monkeypatch.setattr("sys.stdin", io.StringIO(written))
        items = read_artifact("-")
        assert items == [query_envelope]
        assert items[0].call_type == CallKind.QUERY
