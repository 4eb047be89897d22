"""
Code generation: lower a validated Contract AST to the stack-machine program
that the ledger executes, and encode it as the binary payload.

Instructions are [opcode, operand] pairs:

    PUSH v          push literal v
    LOAD n / STORE n            local or parameter n
    SLOAD n / SSTORE n          storage variable n
    SLOAD_KEY n / SSTORE_KEY n  key of storage map n (missing keys read as zero)
    INDEX           container[key]
    LIST k          pop k values into a list
    BINOP op / UNOP op
    CALL [name, k]  builtin with k arguments
    DUP / POP
    JUMP t / JUMPF t            unconditional / pop and jump if false
    REQUIRE e       pop condition, revert with error e if false
    RETURN          pop and return
    STOP            end of body, returns nothing
"""

import json
from typing import Dict, List, Any

from .contract_ast import (
    Contract, ConstructorDecl, FunctionDecl,
    AssignStmt, IndexAssignStmt, RequireStmt, ReturnStmt, ForStmt, IfStmt,
    Identifier, Literal, BinaryExpr, UnaryExpr, CallExpr, IndexExpr,
    ListLiteralExpr, BinaryOperator, MapType,
)
from .types import parse_type, type_to_str


MAGIC = b"TALLY\x01"
PROGRAM_FORMAT = 1


class CodeGenerator:
    """Emit instructions for one constructor or function body."""

    def __init__(self, contract: Contract):
        self.storage = {f.name: f.type for f in contract.storage}
        self.code: List[List[Any]] = []
        self._hidden = 0

    def emit(self, op: str, arg: Any = None) -> int:
        self.code.append([op, arg])
        return len(self.code) - 1

    def patch(self, index: int, target: int):
        self.code[index][1] = target

    def here(self) -> int:
        return len(self.code)

    def _hidden_local(self, prefix: str) -> str:
        self._hidden += 1
        return f"${prefix}{self._hidden}"

    # =========================================================================
    # Bodies
    # =========================================================================

    def compile_body(self, body) -> List[List[Any]]:
        for stmt in body:
            self.statement(stmt)
        self.emit("STOP")
        return self.code

    def statement(self, stmt):
        if isinstance(stmt, AssignStmt):
            self.expression(stmt.value)
            if stmt.target in self.storage:
                self.emit("SSTORE", stmt.target)
            else:
                self.emit("STORE", stmt.target)

        elif isinstance(stmt, IndexAssignStmt):
            self.expression(stmt.key)
            self.expression(stmt.value)
            self.emit("SSTORE_KEY", stmt.target)

        elif isinstance(stmt, RequireStmt):
            self.expression(stmt.condition)
            self.emit("REQUIRE", stmt.error)

        elif isinstance(stmt, ReturnStmt):
            self.expression(stmt.value)
            self.emit("RETURN")

        elif isinstance(stmt, ForStmt):
            items = self._hidden_local("items")
            counter = self._hidden_local("i")
            self.expression(stmt.iterable)
            self.emit("STORE", items)
            self.emit("PUSH", 0)
            self.emit("STORE", counter)

            loop_start = self.here()
            self.emit("LOAD", counter)
            self.emit("LOAD", items)
            self.emit("CALL", ["LENGTH", 1])
            self.emit("BINOP", BinaryOperator.LT.name)
            exit_jump = self.emit("JUMPF", None)

            self.emit("LOAD", items)
            self.emit("LOAD", counter)
            self.emit("INDEX")
            self.emit("STORE", stmt.var)
            for inner in stmt.body:
                self.statement(inner)

            self.emit("LOAD", counter)
            self.emit("PUSH", 1)
            self.emit("BINOP", BinaryOperator.ADD.name)
            self.emit("STORE", counter)
            self.emit("JUMP", loop_start)
            self.patch(exit_jump, self.here())

        elif isinstance(stmt, IfStmt):
            self.expression(stmt.condition)
            else_jump = self.emit("JUMPF", None)
            for inner in stmt.then_body:
                self.statement(inner)
            if stmt.else_body:
                end_jump = self.emit("JUMP", None)
                self.patch(else_jump, self.here())
                for inner in stmt.else_body:
                    self.statement(inner)
                self.patch(end_jump, self.here())
            else:
                self.patch(else_jump, self.here())

        else:
            raise TypeError(f"Cannot compile statement {stmt!r}")

    # =========================================================================
    # Expressions
    # =========================================================================

    def expression(self, expr):
        if isinstance(expr, Literal):
            self.emit("PUSH", expr.value)

        elif isinstance(expr, Identifier):
            if expr.name in self.storage:
                self.emit("SLOAD", expr.name)
            else:
                self.emit("LOAD", expr.name)

        elif isinstance(expr, BinaryExpr):
            if expr.op in (BinaryOperator.AND, BinaryOperator.OR):
                # Short-circuit: leave the left value when it decides the result
                self.expression(expr.left)
                self.emit("DUP")
                if expr.op == BinaryOperator.OR:
                    self.emit("UNOP", "NOT")
                skip = self.emit("JUMPF", None)
                self.emit("POP")
                self.expression(expr.right)
                self.patch(skip, self.here())
            else:
                self.expression(expr.left)
                self.expression(expr.right)
                self.emit("BINOP", expr.op.name)

        elif isinstance(expr, UnaryExpr):
            self.expression(expr.operand)
            self.emit("UNOP", expr.op.name)

        elif isinstance(expr, CallExpr):
            for arg in expr.args:
                self.expression(arg)
            self.emit("CALL", [expr.name, len(expr.args)])

        elif isinstance(expr, IndexExpr):
            target = expr.object
            if (isinstance(target, Identifier)
                    and isinstance(self.storage.get(target.name), MapType)):
                self.expression(expr.index)
                self.emit("SLOAD_KEY", target.name)
            else:
                self.expression(target)
                self.expression(expr.index)
                self.emit("INDEX")

        elif isinstance(expr, ListLiteralExpr):
            for element in expr.elements:
                self.expression(element)
            self.emit("LIST", len(expr.elements))

        else:
            raise TypeError(f"Cannot compile expression {expr!r}")


def _params(params) -> List[List[str]]:
    return [[p.name, type_to_str(p.type)] for p in params]


def generate_program(contract: Contract) -> Dict[str, Any]:
    """Lower a validated contract to its program dictionary."""
    ctor: ConstructorDecl = contract.constructor
    functions = {}
    for func in contract.functions:
        func: FunctionDecl
        functions[func.name] = {
            "params": _params(func.params),
            "view": func.view,
            "returns": type_to_str(func.returns) if func.returns is not None else None,
            "code": CodeGenerator(contract).compile_body(func.body),
        }

    return {
        "format": PROGRAM_FORMAT,
        "contract": contract.name,
        "storage": [[f.name, type_to_str(f.type)] for f in contract.storage],
        "errors": [e.name for e in contract.errors],
        "constructor": {
            "params": _params(ctor.params),
            "code": CodeGenerator(contract).compile_body(ctor.body),
        },
        "functions": functions,
    }


def encode_program(program: Dict[str, Any]) -> bytes:
    """Binary payload: magic header followed by canonical JSON."""
    canonical = json.dumps(program, sort_keys=True, separators=(',', ':'))
    return MAGIC + canonical.encode("utf-8")


def decode_program(payload: bytes) -> Dict[str, Any]:
    """Inverse of encode_program; raises ValueError on anything else."""
    if not payload.startswith(MAGIC):
        raise ValueError("Payload does not start with the tally program header")
    try:
        program = json.loads(payload[len(MAGIC):].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Payload is not a valid program: {e}") from e
    if not isinstance(program, dict) or program.get("format") != PROGRAM_FORMAT:
        raise ValueError("Unsupported program format")
    _check_program(program)
    return program


def _check_program(program: Dict[str, Any]):
    storage = program.get("storage")
    if not isinstance(storage, list) or not all(_is_pair(slot) for slot in storage):
        raise ValueError("Program storage must be a list of [name, type] pairs")
    for name, type_str in storage:
        try:
            parse_type(type_str)
        except ValueError as e:
            raise ValueError(f"Program storage {name!r}: {e}") from e

    _check_body("constructor", program.get("constructor"))
    functions = program.get("functions")
    if not isinstance(functions, dict):
        raise ValueError("Program functions must be a mapping")
    for name, func in functions.items():
        _check_body(name, func)
        if not isinstance(func.get("view"), bool):
            raise ValueError(f"Program function {name!r} has no view flag")
        returns = func.get("returns")
        if returns is not None and not isinstance(returns, str):
            raise ValueError(f"Program function {name!r} has a malformed return type")


def _check_body(name: str, body: Any):
    if not isinstance(body, dict):
        raise ValueError(f"Program body {name!r} must be a mapping")
    params = body.get("params")
    if not isinstance(params, list) or not all(_is_pair(p) for p in params):
        raise ValueError(f"Program body {name!r} has malformed params")
    code = body.get("code")
    if not isinstance(code, list) or not all(
        isinstance(ins, list) and len(ins) == 2 and isinstance(ins[0], str) for ins in code
    ):
        raise ValueError(f"Program body {name!r} has malformed code")


def _is_pair(value: Any) -> bool:
    return (isinstance(value, list) and len(value) == 2
            and all(isinstance(v, str) for v in value))
