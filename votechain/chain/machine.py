"""
Stack machine that executes compiled tally programs inside the ledger.

How this works:

A program is the decoded binary payload of a deployment. Its constructor
runs once, inside the deployment transaction, against freshly zeroed
storage. Every later transaction or read-only call runs one function body
against the contract's storage.

The machine meters "gas": every instruction has a cost and storage access
costs more. A run that exceeds its gas allowance stops with OutOfGas.

The machine never commits anything itself. The ledger hands it a private
copy of the storage and keeps that copy only if the run finishes cleanly.
"""

import copy
import json
from typing import Any, Dict, List, Optional

from tallyc.types import check_value, default_value, parse_type, UINT_MAX, ValueTypeError


# =============================================================================
# Gas schedule
# =============================================================================

GAS_DEFAULT = 3
GAS_COSTS = {
    "SLOAD": 200,
    "SLOAD_KEY": 200,
    "SSTORE": 5000,
    "SSTORE_KEY": 5000,
    "CALL": 20,
    "REQUIRE": 5,
}


# =============================================================================
# Errors
# =============================================================================

class MachineError(Exception):
    """Execution stopped; no state change may be kept."""
    reason = "fault"


class Revert(MachineError):
    """A REQUIRE failed with a named contract error."""
    reason = "reverted"

    def __init__(self, error: str):
        self.error = error
        super().__init__(f"reverted: {error}")


class OutOfGas(MachineError):
    """Gas allowance exhausted."""
    reason = "out_of_gas"

    def __init__(self, gas_limit: int):
        self.gas_limit = gas_limit
        super().__init__(f"out of gas (limit {gas_limit})")


class InvalidArguments(MachineError):
    """Arguments do not match the function's parameters."""
    reason = "invalid_arguments"


class StaticWriteViolation(MachineError):
    """Storage write attempted during a read-only call."""
    reason = "static_write"


class UnknownFunction(MachineError):
    """No function with that name in the program."""
    reason = "unknown_function"


class ExecutionFault(MachineError):
    """Arithmetic, indexing or type fault while executing."""
    reason = "fault"


# =============================================================================
# Machine
# =============================================================================

class Machine:
    """Run one constructor or function body of a program."""

    def __init__(self, program: Dict[str, Any], storage: Dict[str, Any],
                 gas_limit: int, static: bool = False):
        self.program = program
        self.storage = storage
        self.gas_limit = gas_limit
        self.static = static
        self.gas_used = 0
        self.storage_types = {name: parse_type(t) for name, t in program["storage"]}

    # =========================================================================
    # Entry points
    # =========================================================================

    def run_constructor(self, args: List[Any]) -> None:
        """Zero every storage slot, then run the constructor body."""
        for name, type_expr in self.storage_types.items():
            self.storage[name] = default_value(type_expr)
        ctor = self.program["constructor"]
        self._execute(ctor["code"], self._bind_args("constructor", ctor["params"], args))

    def run_function(self, name: str, args: List[Any]) -> Any:
        """Run a function body and return its result (None when it returns nothing)."""
        func = self.program["functions"].get(name)
        if func is None:
            raise UnknownFunction(f"no function named {name!r}")
        if func["view"]:
            self.static = True
        result = self._execute(func["code"], self._bind_args(name, func["params"], args))
        if func["returns"] is not None and result is not None:
            try:
                check_value(func["returns"], result, f"{name} result")
            except ValueTypeError as e:
                raise ExecutionFault(str(e)) from e
        return copy.deepcopy(result)

    def is_view(self, name: str) -> Optional[bool]:
        func = self.program["functions"].get(name)
        return None if func is None else func["view"]

    # =========================================================================
    # Internals
    # =========================================================================

    def _bind_args(self, name: str, params: List[List[str]], args: List[Any]) -> Dict[str, Any]:
        if len(args) != len(params):
            raise InvalidArguments(f"{name} takes {len(params)} argument(s), got {len(args)}")
        bound = {}
        for (param_name, param_type), value in zip(params, args):
            try:
                check_value(param_type, value, param_name)
            except ValueTypeError as e:
                raise InvalidArguments(str(e)) from e
            bound[param_name] = _normalize(copy.deepcopy(value))
        return bound

    def _charge(self, op: str):
        self.gas_used += GAS_COSTS.get(op, GAS_DEFAULT)
        if self.gas_used > self.gas_limit:
            raise OutOfGas(self.gas_limit)

    def _write(self, name: str):
        if self.static:
            raise StaticWriteViolation(f"write to {name!r} during a read-only call")

    def _execute(self, code: List[List[Any]], local: Dict[str, Any]) -> Any:
        try:
            return self._run(code, local)
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as e:
            # Malformed program: stack underflow, missing slot, bad operand
            raise ExecutionFault(f"malformed program: {e!r}") from e

    def _run(self, code: List[List[Any]], local: Dict[str, Any]) -> Any:
        stack: List[Any] = []
        pc = 0

        while pc < len(code):
            op, arg = code[pc]
            self._charge(op)
            pc += 1

            if op == "PUSH":
                stack.append(arg)
            elif op == "LOAD":
                if arg not in local:
                    raise ExecutionFault(f"read of unset local {arg!r}")
                stack.append(local[arg])
            elif op == "STORE":
                local[arg] = stack.pop()
            elif op == "SLOAD":
                stack.append(self.storage[arg])
            elif op == "SSTORE":
                self._write(arg)
                value = _normalize(stack.pop())
                self._check_storage(arg, value)
                self.storage[arg] = copy.deepcopy(value)
            elif op == "SLOAD_KEY":
                key = stack.pop()
                value_type = self.storage_types[arg].value_type
                stack.append(self.storage[arg].get(key, default_value(value_type)))
            elif op == "SSTORE_KEY":
                self._write(arg)
                value = _normalize(stack.pop())
                key = stack.pop()
                map_type = self.storage_types[arg]
                try:
                    check_value(map_type.key_type, key, f"{arg} key")
                    check_value(map_type.value_type, value, f"{arg}[{key!r}]")
                except ValueTypeError as e:
                    raise ExecutionFault(str(e)) from e
                self.storage[arg][key] = copy.deepcopy(value)
            elif op == "INDEX":
                key = stack.pop()
                stack.append(_index(stack.pop(), key))
            elif op == "LIST":
                items = stack[len(stack) - arg:] if arg else []
                del stack[len(stack) - arg:]
                stack.append(items)
            elif op == "BINOP":
                right = stack.pop()
                left = stack.pop()
                stack.append(_binop(arg, left, right))
            elif op == "UNOP":
                stack.append(_unop(arg, stack.pop()))
            elif op == "CALL":
                name, argc = arg
                args = stack[len(stack) - argc:] if argc else []
                del stack[len(stack) - argc:]
                stack.append(_builtin(name, args))
            elif op == "DUP":
                stack.append(stack[-1])
            elif op == "POP":
                stack.pop()
            elif op == "JUMP":
                pc = arg
            elif op == "JUMPF":
                if not _truth(stack.pop()):
                    pc = arg
            elif op == "REQUIRE":
                if not _truth(stack.pop()):
                    raise Revert(arg)
            elif op == "RETURN":
                return stack.pop()
            elif op == "STOP":
                return None
            else:
                raise ExecutionFault(f"unknown opcode {op!r}")

        return None

    def _check_storage(self, name: str, value: Any):
        try:
            check_value(self.storage_types[name], value, name)
        except ValueTypeError as e:
            raise ExecutionFault(str(e)) from e


# =============================================================================
# Operations
# =============================================================================

def _normalize(value: Any) -> Any:
    """Tuples become lists so stored values compare and serialize uniformly."""
    if isinstance(value, tuple):
        return [_normalize(v) for v in value]
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def _is_uint(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _truth(value: Any) -> bool:
    if not isinstance(value, bool):
        raise ExecutionFault(f"expected bool condition, got {type(value).__name__}")
    return value


def _index(container: Any, key: Any) -> Any:
    if isinstance(container, list):
        if not _is_uint(key) or not 0 <= key < len(container):
            raise ExecutionFault(f"index {key!r} out of range")
        return container[key]
    if isinstance(container, dict):
        if key not in container:
            raise ExecutionFault(f"missing key {key!r}")
        return container[key]
    raise ExecutionFault(f"cannot index {type(container).__name__}")


def _binop(op: str, left: Any, right: Any) -> Any:
    if op in ("EQ", "NEQ"):
        equal = type(left) is type(right) and left == right
        return equal if op == "EQ" else not equal

    if op in ("AND", "OR"):
        left, right = _truth(left), _truth(right)
        return (left and right) if op == "AND" else (left or right)

    if op == "ADD" and isinstance(left, str) and isinstance(right, str):
        return left + right
    if op == "ADD" and isinstance(left, list) and isinstance(right, list):
        return left + right

    if op in ("LT", "GT", "LTE", "GTE"):
        comparable = (_is_uint(left) and _is_uint(right)) or (
            isinstance(left, str) and isinstance(right, str))
        if not comparable:
            raise ExecutionFault(f"cannot compare {type(left).__name__} and {type(right).__name__}")
        return {
            "LT": left < right,
            "GT": left > right,
            "LTE": left <= right,
            "GTE": left >= right,
        }[op]

    if not (_is_uint(left) and _is_uint(right)):
        raise ExecutionFault(f"{op} needs uint operands")
    if op == "ADD":
        result = left + right
    elif op == "SUB":
        result = left - right
    elif op == "MUL":
        result = left * right
    elif op == "DIV":
        if right == 0:
            raise ExecutionFault("division by zero")
        result = left // right
    else:
        raise ExecutionFault(f"unknown operator {op!r}")

    if result < 0:
        raise ExecutionFault("arithmetic underflow")
    if result > UINT_MAX:
        raise ExecutionFault("arithmetic overflow")
    return result


def _unop(op: str, operand: Any) -> Any:
    if op == "NOT":
        return not _truth(operand)
    if op == "NEG":
        if not _is_uint(operand):
            raise ExecutionFault("NEG needs a uint operand")
        if operand != 0:
            raise ExecutionFault("arithmetic underflow")
        return 0
    raise ExecutionFault(f"unknown operator {op!r}")


def _builtin(name: str, args: List[Any]) -> Any:
    if name == "LENGTH":
        (value,) = args
        if not isinstance(value, (list, str, dict)):
            raise ExecutionFault(f"LENGTH of {type(value).__name__}")
        return len(value)
    if name == "CONTAINS":
        items, needle = args
        if not isinstance(items, (list, dict)):
            raise ExecutionFault(f"CONTAINS on {type(items).__name__}")
        return any(type(item) is type(needle) and item == needle for item in items)
    if name == "UNIQUE":
        (items,) = args
        if not isinstance(items, list):
            raise ExecutionFault(f"UNIQUE of {type(items).__name__}")
        keys = {json.dumps(item, sort_keys=True) for item in items}
        return len(keys) == len(items)
    raise ExecutionFault(f"unknown builtin {name!r}")
