"""
Rendering of decoded Candid values in Candid's textual syntax.
"""
import re
from typing import Any, Optional, Sequence

from .decoder import DecodedArgs, VariantValue
from .types import (
    CandidType, Field, Func, INTEGER_TYPES, Opt, Primitive, Record, Service, TypeEnv, Variant, Vec
)

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _quote_text(value: str) -> str:
    out = ['"']
    for ch in value:
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif ord(ch) < 0x20 or ord(ch) == 0x7F:
            out.append(f"\\u{{{ord(ch):x}}}")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def _quote_blob(value: bytes) -> str:
    return 'blob "' + "".join(f"\\{b:02x}" for b in value) + '"'


def _label(field: Field) -> str:
    if field.name is None:
        return f"_{field.id}_"
    if _IDENT_RE.match(field.name):
        return field.name
    return _quote_text(field.name)


class _Renderer:
    """
    Walks a value along its wire type and, when available, the matching
    interface type. Interface types only contribute field names; structure
    always comes from the wire.
    """

    def __init__(self, wire_env: TypeEnv, names_env: Optional[TypeEnv] = None):
        self.wire_env = wire_env
        self.names_env = names_env or TypeEnv()

    def _named(self, candid_type: Optional[CandidType]) -> Optional[CandidType]:
        if candid_type is None:
            return None
        try:
            return self.names_env.resolve(candid_type)
        except KeyError:
            return None

    def value(self, value: Any, wire_type: CandidType, named_type: Optional[CandidType] = None) -> str:
        t = self.wire_env.resolve(wire_type)
        named = self._named(named_type)

        if isinstance(t, Primitive):
            name = t.name
            if name in ("null", "reserved"):
                return "null"
            if name == "bool":
                return "true" if value else "false"
            if name in INTEGER_TYPES:
                return f"{value} : {name}"
            if name in ("float32", "float64"):
                return f"{value!r} : {name}"
            if name == "text":
                return _quote_text(value)
            if name == "principal":
                return f'principal "{value}"'
            return f"{value!r}"

        if isinstance(t, Opt):
            if value is None:
                return "null"
            inner_named = named.inner if isinstance(named, Opt) else None
            return "opt " + self.value(value, t.inner, inner_named)

        if isinstance(t, Vec):
            if isinstance(value, (bytes, bytearray)):
                return _quote_blob(bytes(value))
            inner_named = named.inner if isinstance(named, Vec) else None
            if not value:
                return "vec {}"
            return "vec { " + "; ".join(self.value(v, t.inner, inner_named) for v in value) + " }"

        if isinstance(t, Record):
            return self.record(value, t, named if isinstance(named, Record) else None)

        if isinstance(t, Variant):
            return self.variant(value, t, named if isinstance(named, Variant) else None)

        if isinstance(t, Func):
            principal, method = value
            return f'func "{principal}".{method}'

        if isinstance(t, Service):
            return f'service "{value}"'

        return repr(value)

    def record(self, value: dict, wire: Record, named: Optional[Record]) -> str:
        if not wire.fields:
            return "record {}"
        parts = []
        tuple_like = wire.is_tuple and (named is None or named.is_tuple)
        for wire_field in wire.fields:
            named_field = named.field_by_id(wire_field.id) if named is not None else None
            rendered = self.value(
                value[wire_field.id], wire_field.type,
                named_field.type if named_field is not None else None
            )
            if tuple_like:
                parts.append(rendered)
            else:
                label = _label(named_field if named_field is not None else wire_field)
                parts.append(f"{label} = {rendered}")
        return "record { " + "; ".join(parts) + " }"

    def variant(self, value: VariantValue, wire: Variant, named: Optional[Variant]) -> str:
        wire_field = wire.field_by_id(value.field_id)
        named_field = named.field_by_id(value.field_id) if named is not None else None
        label = _label(named_field if named_field is not None else wire_field)
        if self.wire_env.resolve(wire_field.type) == Primitive("null"):
            return f"variant {{ {label} }}"
        rendered = self.value(
            value.value, wire_field.type,
            named_field.type if named_field is not None else None
        )
        return f"variant {{ {label} = {rendered} }}"


def render_args(
    decoded: DecodedArgs,
    named_types: Optional[Sequence[CandidType]] = None,
    names_env: Optional[TypeEnv] = None
) -> str:
    """
    Render a decoded Candid message as a parenthesized value tuple.

    Args:
        decoded: Output of ``decode_args``
        named_types: Interface types of the values, used for field names
        names_env: Type definitions the interface types refer to

    Returns:
        Text such as ``(42 : nat)`` or ``(record { e8s = 100 : nat64 })``
    """
    renderer = _Renderer(decoded.env, names_env)
    parts = []
    for index, (wire_type, value) in enumerate(zip(decoded.types, decoded.values)):
        named = None
        if named_types is not None and index < len(named_types):
            named = named_types[index]
        parts.append(renderer.value(value, wire_type, named))
    return "(" + ", ".join(parts) + ")"
