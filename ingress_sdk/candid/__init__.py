"""
Candid support: binary decoding, interface parsing and textual rendering.
"""
from .decoder import DecodedArgs, VariantValue, decode_args
from .parser import CandidSyntaxError, Interface, parse_interface
from .render import render_args
from .types import (
    CandidType, Field, Func, Opt, Primitive, Record, Ref, Service, TypeEnv, Variant, Vec, idl_hash
)

__all__ = [
    'DecodedArgs', 'VariantValue', 'decode_args',
    'CandidSyntaxError', 'Interface', 'parse_interface',
    'render_args',
    'CandidType', 'Field', 'Func', 'Opt', 'Primitive', 'Record', 'Ref', 'Service',
    'TypeEnv', 'Variant', 'Vec', 'idl_hash',
]
