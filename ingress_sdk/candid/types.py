"""
Candid type model.

Types coming from the wire and types parsed from an interface description
share these classes. Named or indexed references (``Ref``) are resolved
through a ``TypeEnv``, which makes recursive types possible.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union


class CandidType:
    """Base class of all Candid types."""
    pass


@dataclass(frozen=True)
class Primitive(CandidType):
    name: str


@dataclass(frozen=True)
class Opt(CandidType):
    inner: CandidType


@dataclass(frozen=True)
class Vec(CandidType):
    inner: CandidType


@dataclass(frozen=True)
class Field:
    id: int
    type: CandidType
    name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name if self.name is not None else f"_{self.id}_"


@dataclass(frozen=True)
class Record(CandidType):
    fields: Tuple[Field, ...] = ()

    def field_by_id(self, field_id: int) -> Optional[Field]:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None

    @property
    def is_tuple(self) -> bool:
        return all(f.id == i and f.name is None for i, f in enumerate(self.fields))


@dataclass(frozen=True)
class Variant(CandidType):
    fields: Tuple[Field, ...] = ()

    def field_by_id(self, field_id: int) -> Optional[Field]:
        for f in self.fields:
            if f.id == field_id:
                return f
        return None


@dataclass(frozen=True)
class Func(CandidType):
    args: Tuple[CandidType, ...] = ()
    rets: Tuple[CandidType, ...] = ()
    modes: Tuple[str, ...] = ()

    @property
    def is_query(self) -> bool:
        return "query" in self.modes or "composite_query" in self.modes


@dataclass(frozen=True)
class Service(CandidType):
    methods: Tuple[Tuple[str, CandidType], ...] = ()

    def method(self, name: str) -> Optional[CandidType]:
        for method_name, method_type in self.methods:
            if method_name == name:
                return method_type
        return None


@dataclass(frozen=True)
class Ref(CandidType):
    """Reference to a named type definition or to a wire type table entry."""
    key: Union[str, int]


NULL = Primitive("null")
BOOL = Primitive("bool")
NAT = Primitive("nat")
INT = Primitive("int")
NAT8 = Primitive("nat8")
TEXT = Primitive("text")
RESERVED = Primitive("reserved")
EMPTY = Primitive("empty")
PRINCIPAL = Primitive("principal")

PRIMITIVE_NAMES = (
    "null", "bool", "nat", "int", "nat8", "nat16", "nat32", "nat64",
    "int8", "int16", "int32", "int64", "float32", "float64",
    "text", "reserved", "empty", "principal",
)

INTEGER_TYPES = frozenset({
    "nat", "int", "nat8", "nat16", "nat32", "nat64", "int8", "int16", "int32", "int64",
})


def idl_hash(name: str) -> int:
    """Field id of a textual record or variant label."""
    h = 0
    for byte in name.encode("utf-8"):
        h = (h * 223 + byte) % (1 << 32)
    return h


class TypeEnv:
    """Table of type definitions used to resolve references."""

    def __init__(self, definitions: Optional[Dict[Union[str, int], CandidType]] = None):
        self.definitions: Dict[Union[str, int], CandidType] = dict(definitions or {})

    def __contains__(self, key) -> bool:
        return key in self.definitions

    def define(self, key: Union[str, int], candid_type: CandidType) -> None:
        self.definitions[key] = candid_type

    def resolve(self, candid_type: CandidType) -> CandidType:
        """
        Follow references until a concrete type is reached.

        Raises:
            KeyError: If a reference is undefined or only refers to itself
        """
        seen = set()
        while isinstance(candid_type, Ref):
            if candid_type.key in seen:
                raise KeyError(f"Type {candid_type.key!r} is defined in terms of itself")
            seen.add(candid_type.key)
            candid_type = self.definitions[candid_type.key]
        return candid_type
