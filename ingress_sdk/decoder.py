"""
Response decoding.

Query responses are unwrapped into the reply's Candid bytes, which are then
rendered as Candid text. When the destination's interface is known, the
rendering uses the interface's field names; otherwise the wire field ids
are shown. Rendering never raises: a reply that cannot be decoded is
reported in the returned text and the caller keeps the raw bytes.
"""
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Mapping, Optional, Tuple, Union

from . import cbor
from .candid import CandidSyntaxError, Func, Interface, TypeEnv, decode_args, parse_interface, render_args
from .exceptions import DecodeError, MalformedResponseError
from .interfaces import bundled_sources
from .principal import Principal, as_principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResponse:
    """Unwrapped query response."""
    replied: bool
    reply: Optional[bytes] = None
    reject_code: Optional[int] = None
    reject_message: Optional[str] = None

    def describe(self) -> str:
        if self.replied:
            return f"Replied with {len(self.reply or b'')} bytes"
        return f"Rejected (code {self.reject_code}): {self.reject_message}"


def parse_query_response(raw: bytes) -> QueryResponse:
    """
    Parse a raw query response.

    Raises:
        MalformedResponseError: If the bytes are neither a reply nor a rejection
    """
    response = cbor.loads(raw)
    if not isinstance(response, dict):
        raise MalformedResponseError("Query response is not a CBOR map", raw=raw)

    code = response.get("reject_code")
    message = response.get("reject_message")
    if isinstance(code, int) and isinstance(message, str):
        return QueryResponse(replied=False, reject_code=code, reject_message=message)

    reply = response.get("reply")
    arg = reply.get("arg") if isinstance(reply, dict) else None
    if isinstance(arg, (bytes, bytearray)):
        return QueryResponse(replied=True, reply=bytes(arg))

    raise MalformedResponseError("Query response has neither a reply nor a rejection", raw=raw)


def decode_query_response(raw: bytes) -> bytes:
    """
    Unwrap a raw query response.

    Returns:
        The reply's Candid bytes, or for a rejection the UTF-8 text
        ``Rejected (code N): message``

    Raises:
        MalformedResponseError: If the response is malformed
    """
    response = parse_query_response(raw)
    if response.replied:
        return response.reply
    return response.describe().encode("utf-8")


class InterfaceTypeContext:
    """
    Read-only map from canister ids to interface descriptions.

    Sources are parsed lazily on first use. A source that fails to parse is
    logged once and treated as absent, so rendering falls back to untyped
    output instead of failing.
    """

    def __init__(self, sources: Optional[Mapping[Union[str, Principal], str]] = None):
        self._sources: Dict[str, str] = {
            str(as_principal(canister)): source for canister, source in (sources or {}).items()
        }
        self._parsed: Dict[str, Optional[Interface]] = {}
        self._lock = Lock()

    @classmethod
    def bundled(cls) -> "InterfaceTypeContext":
        """Context holding the interfaces shipped with the SDK."""
        return cls(bundled_sources())

    @classmethod
    def from_sources(cls, sources: Mapping[Union[str, Principal], str], include_bundled: bool = True) -> "InterfaceTypeContext":
        """Context from user-supplied .did sources, optionally on top of the bundled ones."""
        merged: Dict[Union[str, Principal], str] = dict(bundled_sources()) if include_bundled else {}
        merged.update({str(as_principal(k)): v for k, v in sources.items()})
        return cls(merged)

    def __contains__(self, canister) -> bool:
        return str(as_principal(canister)) in self._sources

    def interface(self, canister: Union[str, Principal]) -> Optional[Interface]:
        key = str(as_principal(canister))
        with self._lock:
            if key in self._parsed:
                return self._parsed[key]
            source = self._sources.get(key)
            parsed = None
            if source is not None:
                try:
                    parsed = parse_interface(source)
                except CandidSyntaxError as e:
                    logger.warning("Ignoring unparsable interface for %s: %s", key, e)
            self._parsed[key] = parsed
            return parsed

    def resolve(self, destination: Union[str, Principal], method: str) -> Optional[Tuple[TypeEnv, Func]]:
        """Return the type environment and function type of a method, if known."""
        interface = self.interface(destination)
        if interface is None:
            return None
        func = interface.method(method)
        if func is None:
            return None
        return interface.env, func


def render(
    data: bytes,
    destination: Union[str, Principal],
    method: str,
    context: Optional[InterfaceTypeContext] = None,
    part: str = "rets"
) -> str:
    """
    Render Candid bytes as text.

    Args:
        data: Candid-encoded arguments or results
        destination: Canister the bytes were sent to or received from
        method: Method name
        context: Interface descriptions, or None for untyped rendering
        part: ``"args"`` to name argument types, ``"rets"`` for results

    Returns:
        Candid text, or a description of the decoding failure
    """
    if part not in ("args", "rets"):
        raise ValueError(f"part must be 'args' or 'rets', not {part!r}")
    try:
        decoded = decode_args(data)
    except DecodeError as e:
        logger.debug("Could not decode Candid bytes for %s.%s: %s", destination, method, e)
        return f"Failed to decode Candid data ({len(data)} bytes, hex {data.hex()}): {e}"

    resolved = context.resolve(destination, method) if context is not None else None
    if resolved is not None:
        env, func = resolved
        try:
            return render_args(decoded, func.args if part == "args" else func.rets, env)
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning("Typed rendering of %s.%s failed, showing field ids: %s", destination, method, e)
    return render_args(decoded)


def is_query(context: Optional[InterfaceTypeContext], destination: Union[str, Principal], method: str) -> bool:
    """Whether the destination's interface annotates ``method`` as a query."""
    if context is None:
        return False
    resolved = context.resolve(destination, method)
    return resolved is not None and resolved[1].is_query

