"""
Semantic validation for contract ASTs.

These checks run after parsing but before code generation to catch
errors that the grammar can't express.
"""

from dataclasses import dataclass, field
from typing import List, Set, Dict, Optional

from .contract_ast import (
    Contract, FunctionDecl, ConstructorDecl, Param,
    AssignStmt, IndexAssignStmt, RequireStmt, ReturnStmt, ForStmt, IfStmt,
    Identifier, Literal, BinaryExpr, UnaryExpr, CallExpr, IndexExpr,
    ListLiteralExpr, MapType,
)
from .types import is_known_type, type_to_str


@dataclass
class ValidationError:
    """A validation error with location info."""
    message: str
    line: int = 0
    column: int = 0
    severity: str = "error"  # "error" or "warning"

    def __str__(self):
        loc = f"line {self.line}" if self.line else "unknown location"
        return f"[{self.severity}] {loc}: {self.message}"


@dataclass
class ValidationResult:
    """Result of validation."""
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def add_error(self, message: str, line: int = 0, column: int = 0):
        self.errors.append(ValidationError(message, line, column, "error"))

    def add_warning(self, message: str, line: int = 0, column: int = 0):
        self.warnings.append(ValidationError(message, line, column, "warning"))

    def merge(self, other: 'ValidationResult'):
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def __str__(self):
        lines = []
        for err in self.errors:
            lines.append(str(err))
        for warn in self.warnings:
            lines.append(str(warn))
        return "\n".join(lines)


# =============================================================================
# Built-in functions
# =============================================================================

# name -> number of arguments
BUILTIN_FUNCTIONS = {
    "LENGTH": 1,
    "CONTAINS": 2,
    "UNIQUE": 1,
}


# =============================================================================
# Suggestions
# =============================================================================

def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        return levenshtein_distance(b, a)
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def find_similar(name: str, candidates, max_distance: int = 2) -> List[str]:
    """Find names within max_distance edits, closest first."""
    scored = []
    for candidate in candidates:
        distance = levenshtein_distance(name.lower(), candidate.lower())
        if distance <= max_distance:
            scored.append((distance, candidate))
    return [c for _, c in sorted(scored)]


def format_alternatives(names: List[str]) -> str:
    """Render a 'did you mean' suffix, or '' when there is nothing to suggest."""
    if not names:
        return ""
    if len(names) == 1:
        return f" (did you mean '{names[0]}'?)"
    quoted = ", ".join(f"'{n}'" for n in names[:-1])
    return f" (did you mean {quoted} or '{names[-1]}'?)"


# =============================================================================
# Contract Context for Validation
# =============================================================================

@dataclass
class ContractContext:
    """Context for validation containing all contract-level definitions."""
    storage: Dict[str, object] = field(default_factory=dict)
    error_names: Set[str] = field(default_factory=set)
    used_errors: Set[str] = field(default_factory=set)

    @classmethod
    def from_contract(cls, contract: Contract) -> 'ContractContext':
        ctx = cls()
        for f in contract.storage:
            ctx.storage.setdefault(f.name, f.type)
        for err in contract.errors:
            ctx.error_names.add(err.name)
        return ctx


@dataclass
class Scope:
    """Names visible inside one constructor or function body."""
    callable_name: str
    params: Set[str] = field(default_factory=set)
    locals: Set[str] = field(default_factory=set)
    view: bool = False
    returns: bool = False
    is_constructor: bool = False

    def visible(self, ctx: ContractContext) -> Set[str]:
        return self.params | self.locals | set(ctx.storage)


def validate_contract(contract: Contract) -> ValidationResult:
    """Run all validations on a contract."""
    result = ValidationResult()
    ctx = ContractContext.from_contract(contract)

    if not contract.constructors:
        result.add_error(f"Contract '{contract.name}' has no constructor")
    elif len(contract.constructors) > 1:
        result.add_error(
            f"Contract '{contract.name}' declares {len(contract.constructors)} constructors; "
            "exactly one is allowed",
            contract.constructors[1].line,
        )

    result.merge(_check_duplicates(contract))

    for f in contract.storage:
        if not is_known_type(f.type):
            result.add_error(f"Storage '{f.name}' has unknown type '{type_to_str(f.type)}'", f.line)

    for ctor in contract.constructors:
        result.merge(validate_constructor(ctor, ctx))

    for func in contract.functions:
        result.merge(validate_function(func, ctx))

    for err in contract.errors:
        if err.name not in ctx.used_errors:
            result.add_warning(f"Error '{err.name}' is declared but never raised", err.line)

    return result


def _check_duplicates(contract: Contract) -> ValidationResult:
    result = ValidationResult()

    def check(kind, items):
        seen = set()
        for item in items:
            if item.name in seen:
                result.add_error(f"Duplicate {kind} '{item.name}'", getattr(item, "line", 0))
            seen.add(item.name)

    check("storage variable", contract.storage)
    check("function", contract.functions)
    check("error", contract.errors)
    return result


def _validate_params(params: List[Param], owner: str, line: int) -> ValidationResult:
    result = ValidationResult()
    seen = set()
    for param in params:
        if param.name in seen:
            result.add_error(f"Duplicate parameter '{param.name}' in {owner}", line)
        seen.add(param.name)
        if not is_known_type(param.type):
            result.add_error(
                f"Parameter '{param.name}' of {owner} has unknown type '{type_to_str(param.type)}'",
                line,
            )
    return result


def validate_constructor(ctor: ConstructorDecl, ctx: ContractContext) -> ValidationResult:
    """Validate the constructor declaration."""
    result = _validate_params(ctor.params, "constructor", ctor.line)
    scope = Scope(
        callable_name="constructor",
        params={p.name for p in ctor.params},
        is_constructor=True,
    )
    for stmt in ctor.body:
        result.merge(validate_statement(stmt, scope, ctx))
    return result


def validate_function(func: FunctionDecl, ctx: ContractContext) -> ValidationResult:
    """Validate a function declaration."""
    result = _validate_params(func.params, f"function '{func.name}'", func.line)

    if func.returns is not None and not is_known_type(func.returns):
        result.add_error(
            f"Function '{func.name}' returns unknown type '{type_to_str(func.returns)}'",
            func.line,
        )

    scope = Scope(
        callable_name=func.name,
        params={p.name for p in func.params},
        view=func.view,
        returns=func.returns is not None,
    )
    for stmt in func.body:
        result.merge(validate_statement(stmt, scope, ctx))

    if func.returns is not None and not _contains_return(func.body):
        result.add_warning(f"Function '{func.name}' declares a return type but never returns", func.line)

    return result


def _contains_return(body) -> bool:
    for stmt in body:
        if isinstance(stmt, ReturnStmt):
            return True
        if isinstance(stmt, ForStmt) and _contains_return(stmt.body):
            return True
        if isinstance(stmt, IfStmt) and (
            _contains_return(stmt.then_body) or _contains_return(stmt.else_body)
        ):
            return True
    return False


# =============================================================================
# Statements
# =============================================================================

def validate_statement(stmt, scope: Scope, ctx: ContractContext) -> ValidationResult:
    """Validate one statement, recording new locals in scope."""
    result = ValidationResult()
    where = scope.callable_name

    if isinstance(stmt, AssignStmt):
        result.merge(validate_expression(stmt.value, scope, ctx))
        if stmt.target in scope.params:
            result.add_error(f"Cannot assign to parameter '{stmt.target}' in {where}", stmt.line)
        elif stmt.target in ctx.storage:
            if scope.view:
                result.add_error(
                    f"View function '{where}' writes storage '{stmt.target}'", stmt.line
                )
        else:
            scope.locals.add(stmt.target)

    elif isinstance(stmt, IndexAssignStmt):
        result.merge(validate_expression(stmt.key, scope, ctx))
        result.merge(validate_expression(stmt.value, scope, ctx))
        target_type = ctx.storage.get(stmt.target)
        if target_type is None:
            suggestions = find_similar(stmt.target, ctx.storage)
            result.add_error(
                f"Indexed assignment to '{stmt.target}', which is not a storage map"
                + format_alternatives(suggestions),
                stmt.line,
            )
        elif not isinstance(target_type, MapType):
            result.add_error(
                f"Indexed assignment to '{stmt.target}' of type '{type_to_str(target_type)}'; "
                "only maps can be assigned by key",
                stmt.line,
            )
        elif scope.view:
            result.add_error(f"View function '{where}' writes storage '{stmt.target}'", stmt.line)

    elif isinstance(stmt, RequireStmt):
        result.merge(validate_expression(stmt.condition, scope, ctx))
        if stmt.error not in ctx.error_names:
            suggestions = find_similar(stmt.error, ctx.error_names)
            result.add_error(
                f"REQUIRE raises undeclared error '{stmt.error}'" + format_alternatives(suggestions),
                stmt.line,
            )
        ctx.used_errors.add(stmt.error)

    elif isinstance(stmt, ReturnStmt):
        result.merge(validate_expression(stmt.value, scope, ctx))
        if scope.is_constructor:
            result.add_error("RETURN is not allowed in the constructor", stmt.line)
        elif not scope.returns:
            result.add_error(f"Function '{where}' returns a value but declares no return type", stmt.line)

    elif isinstance(stmt, ForStmt):
        result.merge(validate_expression(stmt.iterable, scope, ctx))
        if stmt.var in scope.visible(ctx):
            result.add_error(f"Loop variable '{stmt.var}' shadows an existing name in {where}", stmt.line)
        scope.locals.add(stmt.var)
        for inner in stmt.body:
            result.merge(validate_statement(inner, scope, ctx))

    elif isinstance(stmt, IfStmt):
        result.merge(validate_expression(stmt.condition, scope, ctx))
        for inner in stmt.then_body + stmt.else_body:
            result.merge(validate_statement(inner, scope, ctx))

    return result


# =============================================================================
# Expressions
# =============================================================================

def validate_expression(expr, scope: Scope, ctx: ContractContext) -> ValidationResult:
    """Check that every identifier resolves and builtins get the right arity."""
    result = ValidationResult()

    if isinstance(expr, Identifier):
        visible = scope.visible(ctx)
        if expr.name not in visible:
            suggestions = find_similar(expr.name, visible)
            result.add_error(
                f"Undefined name '{expr.name}' in {scope.callable_name}"
                + format_alternatives(suggestions),
                expr.line,
                expr.column,
            )

    elif isinstance(expr, Literal):
        pass

    elif isinstance(expr, BinaryExpr):
        result.merge(validate_expression(expr.left, scope, ctx))
        result.merge(validate_expression(expr.right, scope, ctx))

    elif isinstance(expr, UnaryExpr):
        result.merge(validate_expression(expr.operand, scope, ctx))

    elif isinstance(expr, CallExpr):
        expected = BUILTIN_FUNCTIONS.get(expr.name)
        if expected is None:
            result.add_error(f"Unknown builtin '{expr.name}'", expr.line)
        elif len(expr.args) != expected:
            result.add_error(
                f"{expr.name} takes {expected} argument(s), got {len(expr.args)}", expr.line
            )
        for arg in expr.args:
            result.merge(validate_expression(arg, scope, ctx))

    elif isinstance(expr, IndexExpr):
        result.merge(validate_expression(expr.object, scope, ctx))
        result.merge(validate_expression(expr.index, scope, ctx))

    elif isinstance(expr, ListLiteralExpr):
        for element in expr.elements:
            result.merge(validate_expression(element, scope, ctx))

    return result
