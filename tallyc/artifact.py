"""
Artifact production: contract source -> binary payload + interface descriptor.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple, Dict, Any

from lark.exceptions import UnexpectedInput, VisitError

from .contract_ast import Contract
from .parser import parse
from .validate import validate_contract, ValidationError
from .codegen import generate_program, encode_program
from .types import type_to_str, parse_type, ValueTypeError


VIEW = "view"
NONPAYABLE = "nonpayable"


class CompilationError(Exception):
    """Raised when contract source cannot be compiled.

    Carries every diagnostic found; nothing is produced.
    """

    def __init__(self, diagnostics: List[ValidationError], source_name: str = "<source>"):
        self.diagnostics = diagnostics
        self.source_name = source_name
        lines = [self.format_diagnostic(d) for d in diagnostics]
        super().__init__("Compilation failed:\n" + "\n".join(lines))

    def format_diagnostic(self, diagnostic: ValidationError) -> str:
        loc = f":{diagnostic.line}" if diagnostic.line else ""
        return f"{self.source_name}{loc}: {diagnostic.severity}: {diagnostic.message}"


# =============================================================================
# Interface descriptor (ABI)
# =============================================================================

@dataclass(frozen=True)
class AbiParam:
    """One named, typed input."""
    name: str
    type: str

    def to_dict(self) -> dict:
        return {"name": self.name, "type": self.type}

    @classmethod
    def from_dict(cls, data: Any) -> 'AbiParam':
        _expect_keys(data, {"name", "type"}, "ABI parameter")
        if not isinstance(data["name"], str) or not isinstance(data["type"], str):
            raise ValueError("ABI parameter name and type must be strings")
        try:
            parse_type(data["type"])
        except ValueTypeError as e:
            raise ValueError(str(e)) from e
        return cls(name=data["name"], type=data["type"])


@dataclass(frozen=True)
class AbiEntry:
    """One operation signature with its mutability flag."""
    name: str
    kind: str                               # "constructor" or "function"
    inputs: Tuple[AbiParam, ...] = ()
    outputs: Tuple[str, ...] = ()
    mutability: str = NONPAYABLE           # "view" or "nonpayable"

    @property
    def read_only(self) -> bool:
        return self.mutability == VIEW

    @property
    def signature(self) -> str:
        args = ",".join(p.type for p in self.inputs)
        return f"{self.name}({args})"

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "name": self.name,
            "inputs": [p.to_dict() for p in self.inputs],
            "outputs": [{"name": "", "type": t} for t in self.outputs],
            "stateMutability": self.mutability,
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'AbiEntry':
        """Strict inverse of to_dict; raises ValueError on any other shape."""
        _expect_keys(data, {"type", "name", "inputs", "outputs", "stateMutability"}, "ABI entry")
        if data["type"] not in ("constructor", "function"):
            raise ValueError(f"Unknown ABI entry type: {data['type']!r}")
        if not isinstance(data["name"], str) or not data["name"]:
            raise ValueError("ABI entry name must be a non-empty string")
        if data["stateMutability"] not in (VIEW, NONPAYABLE):
            raise ValueError(f"Unknown state mutability: {data['stateMutability']!r}")
        if not isinstance(data["inputs"], list) or not isinstance(data["outputs"], list):
            raise ValueError("ABI inputs and outputs must be lists")

        outputs = []
        for out in data["outputs"]:
            _expect_keys(out, {"name", "type"}, "ABI output")
            if not isinstance(out["type"], str):
                raise ValueError("ABI output type must be a string")
            try:
                parse_type(out["type"])
            except ValueTypeError as e:
                raise ValueError(str(e)) from e
            outputs.append(out["type"])

        return cls(
            name=data["name"],
            kind=data["type"],
            inputs=tuple(AbiParam.from_dict(p) for p in data["inputs"]),
            outputs=tuple(outputs),
            mutability=data["stateMutability"],
        )


def _expect_keys(data: Any, keys: set, what: str):
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object, got {type(data).__name__}")
    missing = keys - set(data)
    extra = set(data) - keys
    if missing:
        raise ValueError(f"{what} is missing {', '.join(sorted(missing))}")
    if extra:
        raise ValueError(f"{what} has unexpected {', '.join(sorted(extra))}")


def build_abi(contract: Contract) -> Tuple[AbiEntry, ...]:
    """Constructor first, then functions in source order."""
    entries = []
    ctor = contract.constructor
    entries.append(AbiEntry(
        name="constructor",
        kind="constructor",
        inputs=tuple(AbiParam(p.name, type_to_str(p.type)) for p in ctor.params),
        mutability=NONPAYABLE,
    ))
    for func in contract.functions:
        entries.append(AbiEntry(
            name=func.name,
            kind="function",
            inputs=tuple(AbiParam(p.name, type_to_str(p.type)) for p in func.params),
            outputs=(type_to_str(func.returns),) if func.returns is not None else (),
            mutability=VIEW if func.view else NONPAYABLE,
        ))
    return tuple(entries)


# =============================================================================
# Artifact
# =============================================================================

@dataclass(frozen=True)
class Artifact:
    """Compiled contract: binary payload plus interface descriptor."""
    contract_name: str
    bytecode: bytes
    abi: Tuple[AbiEntry, ...]
    warnings: Tuple[ValidationError, ...] = field(default=(), compare=False)

    @property
    def bytecode_hex(self) -> str:
        return "0x" + self.bytecode.hex()

    @property
    def constructor(self) -> AbiEntry:
        return next(e for e in self.abi if e.kind == "constructor")

    def abi_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.abi]


def produce(source: str, source_name: str = "<source>") -> Artifact:
    """Compile contract source into an Artifact.

    Raises CompilationError carrying every diagnostic when the source does
    not parse or does not validate.
    """
    try:
        contract = parse(source)
    except UnexpectedInput as e:
        context = e.get_context(source).rstrip()
        message = f"Syntax error at column {e.column}:\n{context}"
        raise CompilationError([ValidationError(message, e.line, e.column)], source_name) from e
    except VisitError as e:
        raise CompilationError([ValidationError(str(e.orig_exc))], source_name) from e

    result = validate_contract(contract)
    if result.has_errors:
        raise CompilationError(result.errors, source_name)

    program = generate_program(contract)
    return Artifact(
        contract_name=contract.name,
        bytecode=encode_program(program),
        abi=build_abi(contract),
        warnings=tuple(result.warnings),
    )


def produce_file(path) -> Artifact:
    """Compile a contract file."""
    path = Path(path)
    return produce(path.read_text(), source_name=str(path))


def lint(source: str) -> List[ValidationError]:
    """Parse and validate only, returning errors followed by warnings."""
    try:
        contract = parse(source)
    except UnexpectedInput as e:
        return [ValidationError(f"Syntax error at column {e.column}", e.line, e.column)]
    except VisitError as e:
        return [ValidationError(str(e.orig_exc))]
    result = validate_contract(contract)
    return result.errors + result.warnings
