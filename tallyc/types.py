"""
Value types shared by the compiler, the ABI and the execution machine.
"""

from typing import Any

from .contract_ast import SimpleType, ListType, MapType, TypeExpr


PRIMITIVE_TYPES = {"bytes32", "uint", "bool", "string"}

# Types allowed as map keys
KEY_TYPES = {"bytes32", "uint", "bool", "string"}

BYTES32_LENGTH = 32
UINT_MAX = 2 ** 256 - 1


class ValueTypeError(ValueError):
    """Raised when a value does not match its declared type."""


def type_to_str(type_expr) -> str:
    """Canonical string form of a type, as written in the ABI."""
    if isinstance(type_expr, str):
        return type_expr
    if isinstance(type_expr, SimpleType):
        return type_expr.name
    if isinstance(type_expr, ListType):
        return f"list<{type_to_str(type_expr.element_type)}>"
    if isinstance(type_expr, MapType):
        return f"map<{type_to_str(type_expr.key_type)},{type_to_str(type_expr.value_type)}>"
    return str(type_expr)


def parse_type(text: str) -> TypeExpr:
    """Parse a canonical type string back into a type node."""
    text = text.strip()
    if "<" not in text:
        if text not in PRIMITIVE_TYPES:
            raise ValueTypeError(f"Unknown type: {text!r}")
        return SimpleType(name=text)

    if not text.endswith(">"):
        raise ValueTypeError(f"Malformed type: {text!r}")
    head, inner = text[:-1].split("<", 1)
    args = _split_type_args(inner)
    if head == "list" and len(args) == 1:
        return ListType(element_type=parse_type(args[0]))
    if head == "map" and len(args) == 2:
        return MapType(key_type=parse_type(args[0]), value_type=parse_type(args[1]))
    raise ValueTypeError(f"Malformed type: {text!r}")


def _split_type_args(inner: str) -> list:
    """Split 'a, map<b,c>' on top-level commas."""
    args = []
    depth = 0
    current = ""
    for char in inner:
        if char == "<":
            depth += 1
        elif char == ">":
            depth -= 1
        if char == "," and depth == 0:
            args.append(current)
            current = ""
        else:
            current += char
    args.append(current)
    return [a.strip() for a in args]


def is_known_type(type_expr) -> bool:
    """Check that a type node only uses known primitives and valid keys."""
    if isinstance(type_expr, SimpleType):
        return type_expr.name in PRIMITIVE_TYPES
    if isinstance(type_expr, ListType):
        return is_known_type(type_expr.element_type)
    if isinstance(type_expr, MapType):
        return (
            isinstance(type_expr.key_type, SimpleType)
            and type_expr.key_type.name in KEY_TYPES
            and is_known_type(type_expr.value_type)
        )
    return False


def default_value(type_expr) -> Any:
    """Zero value for a type (what an unset storage slot reads as)."""
    if isinstance(type_expr, str):
        type_expr = parse_type(type_expr)
    if isinstance(type_expr, ListType):
        return []
    if isinstance(type_expr, MapType):
        return {}
    return {
        "bytes32": "",
        "uint": 0,
        "bool": False,
        "string": "",
    }[type_expr.name]


def check_value(type_expr, value: Any, label: str = "value"):
    """
    Raise ValueTypeError unless value fits the type.

    bytes32 values are strings of at most 32 UTF-8 bytes; uint values are
    non-negative integers below 2**256.
    """
    if isinstance(type_expr, str):
        type_expr = parse_type(type_expr)

    if isinstance(type_expr, ListType):
        if not isinstance(value, (list, tuple)):
            raise ValueTypeError(f"{label}: expected {type_to_str(type_expr)}, got {type(value).__name__}")
        for i, item in enumerate(value):
            check_value(type_expr.element_type, item, f"{label}[{i}]")
        return

    if isinstance(type_expr, MapType):
        if not isinstance(value, dict):
            raise ValueTypeError(f"{label}: expected {type_to_str(type_expr)}, got {type(value).__name__}")
        for key, item in value.items():
            check_value(type_expr.key_type, key, f"{label} key")
            check_value(type_expr.value_type, item, f"{label}[{key!r}]")
        return

    name = type_expr.name
    if name == "bytes32":
        if not isinstance(value, str):
            raise ValueTypeError(f"{label}: expected bytes32, got {type(value).__name__}")
        if len(value.encode("utf-8")) > BYTES32_LENGTH:
            raise ValueTypeError(f"{label}: {value!r} is longer than {BYTES32_LENGTH} bytes")
    elif name == "uint":
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueTypeError(f"{label}: expected uint, got {type(value).__name__}")
        if value < 0 or value > UINT_MAX:
            raise ValueTypeError(f"{label}: {value} is out of uint range")
    elif name == "bool":
        if not isinstance(value, bool):
            raise ValueTypeError(f"{label}: expected bool, got {type(value).__name__}")
    elif name == "string":
        if not isinstance(value, str):
            raise ValueTypeError(f"{label}: expected string, got {type(value).__name__}")
    else:
        raise ValueTypeError(f"Unknown type: {name!r}")
