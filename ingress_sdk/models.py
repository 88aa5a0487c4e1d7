"""
Data models for the Ingress SDK.

These are the shapes persisted to disk between signing and submission, so
field names and order are part of the file format.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .cbor import decode_envelope
from .exceptions import EncodingError
from .principal import Principal
from .request_id import CallKind, RequestId


def _check_hex(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return value
    if value != value.lower():
        raise ValueError(f"{field} must be lowercase hex")
    try:
        bytes.fromhex(value)
    except ValueError:
        raise ValueError(f"{field} must be a hex string")
    return value


class Envelope(BaseModel):
    """A signed ingress message, ready for transport or persistence."""
    model_config = ConfigDict(frozen=True)

    call_type: CallKind
    sender: str
    canister_id: str
    method_name: Optional[str] = None
    request_id: Optional[str] = None
    content: str
    arg: Optional[str] = None

    @field_validator("sender", "canister_id")
    @classmethod
    def validate_principal(cls, v: str) -> str:
        try:
            Principal.from_text(v)
        except EncodingError as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        if not v:
            raise ValueError("content must not be empty")
        return _check_hex(v, "content")

    @field_validator("arg")
    @classmethod
    def validate_arg(cls, v: Optional[str]) -> Optional[str]:
        return _check_hex(v, "arg")

    @field_validator("request_id")
    @classmethod
    def validate_request_id(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) != 64:
            raise ValueError("request_id must be a 64-character hex string")
        return _check_hex(v, "request_id")

    @model_validator(mode="after")
    def check_call_type_fields(self) -> "Envelope":
        if self.call_type == CallKind.QUERY and self.request_id is not None:
            raise ValueError("query envelopes do not carry a request_id")
        if self.call_type != CallKind.QUERY and self.request_id is None:
            raise ValueError(f"{self.call_type.value} envelopes require a request_id")
        if self.call_type != CallKind.READ_STATE and not self.method_name:
            raise ValueError(f"{self.call_type.value} envelopes require a method_name")
        return self

    @property
    def content_bytes(self) -> bytes:
        return bytes.fromhex(self.content)

    @property
    def argument_bytes(self) -> bytes:
        return bytes.fromhex(self.arg) if self.arg is not None else b""

    @property
    def destination(self) -> Principal:
        return Principal.from_text(self.canister_id)

    @property
    def sender_principal(self) -> Principal:
        return Principal.from_text(self.sender)

    @property
    def request_id_value(self) -> Optional[RequestId]:
        return RequestId.from_hex(self.request_id) if self.request_id is not None else None

    def decoded(self) -> Dict[str, Any]:
        """Decode the CBOR envelope carried in ``content``."""
        return decode_envelope(self.content_bytes)

    @property
    def ingress_expiry(self) -> int:
        """Ingress expiry of the signed content, in nanoseconds."""
        return int(self.decoded()["content"]["ingress_expiry"])


class SignedCallBundle(BaseModel):
    """An update call envelope paired with the envelope that polls its status."""
    model_config = ConfigDict(frozen=True)

    call_envelope: Envelope
    status_query_envelope: Envelope

    @model_validator(mode="after")
    def check_pairing(self) -> "SignedCallBundle":
        if self.call_envelope.call_type != CallKind.UPDATE:
            raise ValueError("call_envelope must be an update envelope")
        if self.status_query_envelope.call_type != CallKind.READ_STATE:
            raise ValueError("status_query_envelope must be a read_state envelope")
        if self.call_envelope.request_id != self.status_query_envelope.request_id:
            raise ValueError("call and status query envelopes must share a request_id")
        if self.call_envelope.canister_id != self.status_query_envelope.canister_id:
            raise ValueError("call and status query envelopes must target the same canister")
        return self

    @property
    def request_id(self) -> RequestId:
        return RequestId.from_hex(self.call_envelope.request_id)
