"""
tallyc - compiler for the tally contract language.

This package provides:
- parser: Lark grammar and transformer into the contract AST
- validate: semantic checks run before code generation
- codegen: lowering to the stack-machine program and its binary payload
- artifact: produce(source) -> Artifact (bytecode + ABI)
"""

from .artifact import (
    Artifact,
    AbiEntry,
    AbiParam,
    CompilationError,
    produce,
    produce_file,
    lint,
)
from .codegen import decode_program, encode_program
from .types import check_value, default_value, parse_type, ValueTypeError

__all__ = [
    # Artifact
    "Artifact",
    "AbiEntry",
    "AbiParam",
    "CompilationError",
    "produce",
    "produce_file",
    "lint",
    # Program encoding
    "decode_program",
    "encode_program",
    # Types
    "check_value",
    "default_value",
    "parse_type",
    "ValueTypeError",
]
