"""
Candid binary decoder.

A Candid message carries its own type table, so it can always be decoded
without an interface description. Record and variant labels only travel as
numeric field ids; mapping them back to names needs the interface.
"""
import struct
from dataclasses import dataclass
from typing import Any, Tuple

from ..exceptions import DecodeError, EncodingError
from ..principal import Principal
from ..request_id import decode_leb128
from .types import (
    CandidType, Field, Func, Opt, Primitive, Record, Ref, Service, TypeEnv, Variant, Vec
)

MAGIC = b"DIDL"
MAX_DEPTH = 256
# Elements that take no bytes on the wire, summed over a whole message
MAX_ZERO_SIZED_ELEMENTS = 2_000_000

PRIMITIVE_CODES = {
    -1: "null", -2: "bool", -3: "nat", -4: "int",
    -5: "nat8", -6: "nat16", -7: "nat32", -8: "nat64",
    -9: "int8", -10: "int16", -11: "int32", -12: "int64",
    -13: "float32", -14: "float64", -15: "text", -16: "reserved",
    -17: "empty", -24: "principal",
}

OPT_CODE = -18
VEC_CODE = -19
RECORD_CODE = -20
VARIANT_CODE = -21
FUNC_CODE = -22
SERVICE_CODE = -23

FUNC_MODES = {1: "query", 2: "oneway", 3: "composite_query"}

_FIXED_INTS = {
    "nat8": (1, False), "nat16": (2, False), "nat32": (4, False), "nat64": (8, False),
    "int8": (1, True), "int16": (2, True), "int32": (4, True), "int64": (8, True),
}


@dataclass(frozen=True)
class VariantValue:
    """Decoded variant: the chosen field id and its value."""
    field_id: int
    value: Any


@dataclass(frozen=True)
class DecodedArgs:
    """A decoded Candid message."""
    types: Tuple[CandidType, ...]
    values: Tuple[Any, ...]
    env: TypeEnv


class _Reader:

    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def read(self, n: int) -> bytes:
        if n < 0 or self.pos + n > len(self.data):
            raise DecodeError(
                f"Unexpected end of Candid data at offset {self.pos} (wanted {n} bytes)",
                raw=self.data,
            )
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def byte(self) -> int:
        return self.read(1)[0]

    def leb(self) -> int:
        value, self.pos = decode_leb128(self.data, self.pos)
        return value

    def sleb(self) -> int:
        result = 0
        shift = 0
        while True:
            b = self.byte()
            result |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                break
        if b & 0x40:
            result -= 1 << shift
        return result

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    @property
    def exhausted(self) -> bool:
        return self.pos >= len(self.data)


class _Decoder:

    def __init__(self, data: bytes):
        self.reader = _Reader(data)
        self.raw = data
        self.env = TypeEnv()
        self.table_size = 0
        self.zero_sized = 0

    def error(self, message: str) -> DecodeError:
        return DecodeError(message, raw=self.raw)

    def type_ref(self, code: int) -> CandidType:
        if code >= 0:
            if code >= self.table_size:
                raise self.error(f"Type index {code} out of range")
            return Ref(code)
        name = PRIMITIVE_CODES.get(code)
        if name is None:
            raise self.error(f"Unknown type code {code}")
        return Primitive(name)

    def read_fields(self) -> Tuple[Field, ...]:
        fields = []
        previous = -1
        for _ in range(self.reader.leb()):
            field_id = self.reader.leb()
            if field_id <= previous:
                raise self.error("Record or variant field ids are not strictly increasing")
            previous = field_id
            fields.append(Field(field_id, self.type_ref(self.reader.sleb())))
        return tuple(fields)

    def read_type_table(self) -> None:
        r = self.reader
        self.table_size = r.leb()
        for index in range(self.table_size):
            code = r.sleb()
            if code == OPT_CODE:
                entry: CandidType = Opt(self.type_ref(r.sleb()))
            elif code == VEC_CODE:
                entry = Vec(self.type_ref(r.sleb()))
            elif code == RECORD_CODE:
                entry = Record(self.read_fields())
            elif code == VARIANT_CODE:
                entry = Variant(self.read_fields())
            elif code == FUNC_CODE:
                args = tuple(self.type_ref(r.sleb()) for _ in range(r.leb()))
                rets = tuple(self.type_ref(r.sleb()) for _ in range(r.leb()))
                modes = tuple(FUNC_MODES.get(r.byte(), "unknown") for _ in range(r.leb()))
                entry = Func(args, rets, modes)
            elif code == SERVICE_CODE:
                methods = []
                for _ in range(r.leb()):
                    name = self.read_text()
                    methods.append((name, self.type_ref(r.sleb())))
                entry = Service(tuple(methods))
            else:
                raise self.error(f"Unsupported type table entry code {code}")
            self.env.define(index, entry)

    def read_text(self) -> str:
        data = self.reader.read(self.reader.leb())
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise self.error(f"Invalid UTF-8 in Candid text: {e}") from e

    def read_principal(self) -> Principal:
        if self.reader.byte() != 1:
            raise self.error("Opaque principal references are not supported")
        try:
            return Principal(self.reader.read(self.reader.leb()))
        except EncodingError as e:
            raise self.error(str(e)) from e

    def is_zero_sized(self, candid_type: CandidType, seen: frozenset = frozenset()) -> bool:
        t = self.env.resolve(candid_type)
        if isinstance(t, Primitive):
            return t.name in ("null", "reserved")
        if isinstance(t, Record):
            if t in seen or len(seen) > MAX_DEPTH:
                return False
            return all(self.is_zero_sized(f.type, seen | {t}) for f in t.fields)
        return False

    def read_value(self, candid_type: CandidType, depth: int = 0) -> Any:
        if depth > MAX_DEPTH:
            raise self.error("Candid value nested too deeply")
        try:
            t = self.env.resolve(candid_type)
        except KeyError as e:
            raise self.error(f"Unresolvable type: {e}") from e
        r = self.reader

        if isinstance(t, Primitive):
            name = t.name
            if name in ("null", "reserved"):
                return None
            if name == "bool":
                flag = r.byte()
                if flag > 1:
                    raise self.error(f"Invalid bool byte {flag}")
                return bool(flag)
            if name == "nat":
                return r.leb()
            if name == "int":
                return r.sleb()
            if name in _FIXED_INTS:
                size, signed = _FIXED_INTS[name]
                return int.from_bytes(r.read(size), "little", signed=signed)
            if name == "float32":
                return struct.unpack("<f", r.read(4))[0]
            if name == "float64":
                return struct.unpack("<d", r.read(8))[0]
            if name == "text":
                return self.read_text()
            if name == "principal":
                return self.read_principal()
            raise self.error(f"Cannot decode a value of type {name}")

        if isinstance(t, Opt):
            flag = r.byte()
            if flag == 0:
                return None
            if flag != 1:
                raise self.error(f"Invalid opt flag {flag}")
            return self.read_value(t.inner, depth + 1)

        if isinstance(t, Vec):
            length = r.leb()
            try:
                inner = self.env.resolve(t.inner)
                zero_sized = self.is_zero_sized(inner)
            except KeyError as e:
                raise self.error(f"Unresolvable type: {e}") from e
            if inner == Primitive("nat8"):
                return r.read(length)
            if zero_sized:
                self.zero_sized += length
                if self.zero_sized > MAX_ZERO_SIZED_ELEMENTS:
                    raise self.error(f"Too many zero-sized vector elements ({self.zero_sized})")
            elif length > r.remaining:
                raise self.error(f"Vector length {length} exceeds the {r.remaining} remaining bytes")
            return [self.read_value(t.inner, depth + 1) for _ in range(length)]

        if isinstance(t, Record):
            return {f.id: self.read_value(f.type, depth + 1) for f in t.fields}

        if isinstance(t, Variant):
            index = r.leb()
            if index >= len(t.fields):
                raise self.error(f"Variant index {index} out of range")
            chosen = t.fields[index]
            return VariantValue(chosen.id, self.read_value(chosen.type, depth + 1))

        if isinstance(t, Func):
            if r.byte() != 1:
                raise self.error("Opaque function references are not supported")
            return (self.read_principal(), self.read_text())

        if isinstance(t, Service):
            return self.read_principal()

        raise self.error(f"Unsupported type {t!r}")

    def decode(self) -> DecodedArgs:
        if self.reader.read(4) != MAGIC:
            raise self.error("Missing DIDL magic number")
        self.read_type_table()
        types = tuple(self.type_ref(self.reader.sleb()) for _ in range(self.reader.leb()))
        values = tuple(self.read_value(t) for t in types)
        if not self.reader.exhausted:
            raise self.error(f"{len(self.raw) - self.reader.pos} trailing bytes after Candid values")
        return DecodedArgs(types, values, self.env)


def decode_args(data: bytes) -> DecodedArgs:
    """
    Decode a Candid message.

    Args:
        data: Candid-encoded bytes, starting with ``DIDL``

    Returns:
        DecodedArgs with the wire types, the values and the wire type table

    Raises:
        DecodeError: If the bytes are not a well-formed Candid message
    """
    return _Decoder(bytes(data)).decode()
