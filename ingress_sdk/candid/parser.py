"""
Parser for Candid interface descriptions (.did files).

Only the parts needed to name and type method arguments and results are
kept: type definitions and the service's method table. Imports are skipped.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .types import (
    PRIMITIVE_NAMES, CandidType, Field, Func, NAT8, Opt, Primitive, Record, Ref,
    Service, TypeEnv, Variant, Vec, idl_hash
)

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
    |(?P<line_comment>//[^\n]*)
    |(?P<block_comment>/\*.*?\*/)
    |(?P<arrow>->)
    |(?P<text>"(?:[^"\\]|\\.)*")
    |(?P<number>0x[0-9a-fA-F_]+|[0-9][0-9_]*)
    |(?P<ident>[A-Za-z_][A-Za-z0-9_]*)
    |(?P<punct>[{}();:,=])
    """,
    re.VERBOSE | re.DOTALL,
)

_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", "\\": "\\", '"': '"', "'": "'"}


class CandidSyntaxError(ValueError):
    """Raised when an interface description cannot be parsed."""

    def __init__(self, message: str, position: int):
        self.position = position
        super().__init__(f"{message} at offset {position}")


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    pos: int


def _unquote(literal: str, position: int) -> str:
    try:
        return _unescape(literal[1:-1])
    except (ValueError, IndexError) as e:
        raise CandidSyntaxError(f"Invalid escape in {literal}", position) from e


def _unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        nxt = body[i + 1]
        if nxt in _ESCAPES:
            out.append(_ESCAPES[nxt])
            i += 2
        elif nxt == "u" and body[i + 2:i + 3] == "{":
            end = body.index("}", i)
            out.append(chr(int(body[i + 3:end].replace("_", ""), 16)))
            i = end + 1
        else:
            out.append(chr(int(body[i + 1:i + 3], 16)))
            i += 3
    return "".join(out)


def tokenize(source: str) -> List[_Token]:
    tokens = []
    pos = 0
    while pos < len(source):
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise CandidSyntaxError(f"Unexpected character {source[pos]!r}", pos)
        kind = match.lastgroup
        if kind not in ("ws", "line_comment", "block_comment"):
            tokens.append(_Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


@dataclass(frozen=True)
class Interface:
    """A parsed interface description: its type definitions and service."""
    env: TypeEnv
    service: Optional[Service]
    init_args: Tuple[CandidType, ...] = ()

    def method(self, name: str) -> Optional[Func]:
        """Look up a method's function type, following type aliases."""
        if self.service is None:
            return None
        method_type = self.service.method(name)
        if method_type is None:
            return None
        try:
            resolved = self.env.resolve(method_type)
        except KeyError:
            return None
        return resolved if isinstance(resolved, Func) else None


class _Parser:

    def __init__(self, source: str):
        self.tokens = tokenize(source)
        self.index = 0
        self.env = TypeEnv()
        self.end = len(source)

    # Token helpers

    def peek(self) -> Optional[_Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def at(self, value: str) -> bool:
        token = self.peek()
        return token is not None and token.kind != "text" and token.value == value

    def next(self) -> _Token:
        token = self.peek()
        if token is None:
            raise CandidSyntaxError("Unexpected end of input", self.end)
        self.index += 1
        return token

    def expect(self, value: str) -> _Token:
        token = self.next()
        if token.kind == "text" or token.value != value:
            raise CandidSyntaxError(f"Expected {value!r}, found {token.value!r}", token.pos)
        return token

    def accept(self, value: str) -> bool:
        if self.at(value):
            self.index += 1
            return True
        return False

    def ident(self) -> str:
        token = self.next()
        if token.kind != "ident":
            raise CandidSyntaxError(f"Expected identifier, found {token.value!r}", token.pos)
        return token.value

    def name(self) -> str:
        token = self.next()
        if token.kind == "ident":
            return token.value
        if token.kind == "text":
            return _unquote(token.value, token.pos)
        raise CandidSyntaxError(f"Expected name, found {token.value!r}", token.pos)

    # Grammar

    def program(self) -> Interface:
        service = None
        init_args: Tuple[CandidType, ...] = ()
        while self.peek() is not None:
            if self.accept("type"):
                type_name = self.name()
                self.expect("=")
                self.env.define(type_name, self.datatype())
            elif self.accept("import"):
                self.next()
            elif self.accept("service"):
                service, init_args = self.actor()
            else:
                token = self.next()
                raise CandidSyntaxError(f"Unexpected token {token.value!r}", token.pos)
            self.accept(";")
        return Interface(self.env, service, init_args)

    def actor(self) -> Tuple[Service, Tuple[CandidType, ...]]:
        token = self.peek()
        if token is not None and token.kind == "ident":
            self.next()
        self.expect(":")
        init_args: Tuple[CandidType, ...] = ()
        if self.at("("):
            init_args = self.tuple_type()
            self.expect("->")
        if self.at("{"):
            return self.actor_type(), init_args
        ref = self.ident()
        try:
            resolved = self.env.resolve(Ref(ref))
        except KeyError as e:
            raise CandidSyntaxError(f"Undefined service type {ref!r}", token.pos if token else 0) from e
        if not isinstance(resolved, Service):
            raise CandidSyntaxError(f"{ref!r} is not a service type", token.pos if token else 0)
        return resolved, init_args

    def actor_type(self) -> Service:
        self.expect("{")
        methods = []
        while not self.accept("}"):
            method_name = self.name()
            self.expect(":")
            if self.at("("):
                method_type: CandidType = self.func_type()
            else:
                method_type = Ref(self.ident())
            methods.append((method_name, method_type))
            if not self.accept(";"):
                self.expect("}")
                break
        return Service(tuple(methods))

    def func_type(self) -> Func:
        args = self.tuple_type()
        self.expect("->")
        rets = self.tuple_type()
        modes = []
        while True:
            token = self.peek()
            if token is not None and token.kind == "ident" and token.value in ("query", "oneway", "composite_query"):
                modes.append(self.next().value)
            else:
                break
        return Func(args, rets, tuple(modes))

    def tuple_type(self) -> Tuple[CandidType, ...]:
        self.expect("(")
        items = []
        while not self.accept(")"):
            items.append(self.arg_type())
            if not self.accept(","):
                self.expect(")")
                break
        return tuple(items)

    def arg_type(self) -> CandidType:
        # Argument names are documentation only
        token = self.peek()
        following = self.tokens[self.index + 1] if self.index + 1 < len(self.tokens) else None
        if token is not None and token.kind in ("ident", "text") and following is not None and following.value == ":":
            self.index += 2
        return self.datatype()

    def datatype(self) -> CandidType:
        token = self.next()
        if token.kind != "ident":
            raise CandidSyntaxError(f"Expected a type, found {token.value!r}", token.pos)
        keyword = token.value
        if keyword in PRIMITIVE_NAMES:
            return Primitive(keyword)
        if keyword == "opt":
            return Opt(self.datatype())
        if keyword == "vec":
            return Vec(self.datatype())
        if keyword == "blob":
            return Vec(NAT8)
        if keyword == "record":
            return Record(self.fields(variant=False))
        if keyword == "variant":
            return Variant(self.fields(variant=True))
        if keyword == "func":
            if self.at("("):
                return self.func_type()
            return Ref(self.ident())
        if keyword == "service":
            if self.at("{"):
                return self.actor_type()
            return Ref(self.ident())
        return Ref(keyword)

    def fields(self, variant: bool) -> Tuple[Field, ...]:
        self.expect("{")
        fields = []
        position = 0
        while not self.accept("}"):
            fields.append(self.field(position, variant))
            position = fields[-1].id + 1
            if not self.accept(";"):
                self.expect("}")
                break
        ids = [f.id for f in fields]
        if len(set(ids)) != len(ids):
            raise CandidSyntaxError("Duplicate field id", self.tokens[self.index - 1].pos)
        return tuple(sorted(fields, key=lambda f: f.id))

    def field(self, position: int, variant: bool) -> Field:
        token = self.peek()
        following = self.tokens[self.index + 1] if self.index + 1 < len(self.tokens) else None
        labelled = following is not None and following.kind == "punct" and following.value == ":"

        if token is not None and token.kind == "number" and labelled:
            self.index += 2
            return Field(int(token.value.replace("_", ""), 0), self.datatype())
        if token is not None and token.kind in ("ident", "text") and labelled:
            self.index += 2
            field_name = token.value if token.kind == "ident" else _unquote(token.value, token.pos)
            return Field(idl_hash(field_name), self.datatype(), field_name)
        if variant and token is not None and (
            token.kind == "text" or (token.kind == "ident" and token.value not in _TYPE_KEYWORDS)
        ):
            # A bare variant tag carries null
            self.index += 1
            field_name = token.value if token.kind == "ident" else _unquote(token.value, token.pos)
            return Field(idl_hash(field_name), Primitive("null"), field_name)
        return Field(position, self.datatype())


_TYPE_KEYWORDS = frozenset(PRIMITIVE_NAMES) | {"opt", "vec", "blob", "record", "variant", "func", "service"}


def parse_interface(source: str) -> Interface:
    """
    Parse a Candid interface description.

    Args:
        source: Text of a .did file

    Returns:
        Interface with the named type definitions and the service, if any

    Raises:
        CandidSyntaxError: If the text is not a valid interface description
    """
    return _Parser(source).program()
