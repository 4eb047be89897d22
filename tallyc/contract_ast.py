"""
AST node definitions for the tally contract language.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Any, Union
from enum import Enum, auto


# =============================================================================
# Expression AST nodes
# =============================================================================

class BinaryOperator(Enum):
    """Binary operators."""
    # Arithmetic
    ADD = auto()       # +
    SUB = auto()       # -
    MUL = auto()       # *
    DIV = auto()       # /
    # Comparison
    EQ = auto()        # ==
    NEQ = auto()       # !=
    LT = auto()        # <
    GT = auto()        # >
    LTE = auto()       # <=
    GTE = auto()       # >=
    # Boolean
    AND = auto()       # and
    OR = auto()        # or


class UnaryOperator(Enum):
    """Unary operators."""
    NOT = auto()       # not
    NEG = auto()       # - (unary minus)


OPERATOR_SYMBOLS = {
    BinaryOperator.ADD: "+",
    BinaryOperator.SUB: "-",
    BinaryOperator.MUL: "*",
    BinaryOperator.DIV: "/",
    BinaryOperator.EQ: "==",
    BinaryOperator.NEQ: "!=",
    BinaryOperator.LT: "<",
    BinaryOperator.GT: ">",
    BinaryOperator.LTE: "<=",
    BinaryOperator.GTE: ">=",
    BinaryOperator.AND: "and",
    BinaryOperator.OR: "or",
}


@dataclass
class Identifier:
    """Variable, parameter or storage reference."""
    name: str
    line: int = 0
    column: int = 0


@dataclass
class Literal:
    """Literal value (string, number, bool)."""
    value: Any
    type: str  # "string", "number", "bool"
    line: int = 0
    column: int = 0


@dataclass
class BinaryExpr:
    """Binary operation: left op right."""
    left: 'Expr'
    op: BinaryOperator
    right: 'Expr'
    line: int = 0
    column: int = 0


@dataclass
class UnaryExpr:
    """Unary operation: op operand."""
    op: UnaryOperator
    operand: 'Expr'
    line: int = 0
    column: int = 0


@dataclass
class CallExpr:
    """Builtin call: LENGTH(x), CONTAINS(xs, x), UNIQUE(xs)."""
    name: str
    args: List['Expr'] = field(default_factory=list)
    line: int = 0
    column: int = 0


@dataclass
class IndexExpr:
    """Index access: object[index]."""
    object: 'Expr'
    index: 'Expr'
    line: int = 0
    column: int = 0


@dataclass
class ListLiteralExpr:
    """List literal: [a, b, c]."""
    elements: List['Expr'] = field(default_factory=list)
    line: int = 0
    column: int = 0


Expr = Union[
    Identifier, Literal, BinaryExpr, UnaryExpr, CallExpr, IndexExpr,
    ListLiteralExpr,
]


# =============================================================================
# Type AST nodes
# =============================================================================

@dataclass
class SimpleType:
    """Primitive type: bytes32, uint, bool, string."""
    name: str

    def __str__(self):
        return self.name


@dataclass
class ListType:
    """list<T>."""
    element_type: 'TypeExpr'

    def __str__(self):
        return f"list<{self.element_type}>"


@dataclass
class MapType:
    """map<K, V>."""
    key_type: 'TypeExpr'
    value_type: 'TypeExpr'

    def __str__(self):
        return f"map<{self.key_type}, {self.value_type}>"


TypeExpr = Union[SimpleType, ListType, MapType]


# =============================================================================
# Statements
# =============================================================================

@dataclass
class AssignStmt:
    """name = value (storage variable or local)."""
    target: str
    value: Expr
    line: int = 0


@dataclass
class IndexAssignStmt:
    """name[key] = value (storage map)."""
    target: str
    key: Expr
    value: Expr
    line: int = 0


@dataclass
class RequireStmt:
    """REQUIRE(condition, ErrorName)."""
    condition: Expr
    error: str
    line: int = 0


@dataclass
class ReturnStmt:
    """RETURN value."""
    value: Expr
    line: int = 0


@dataclass
class ForStmt:
    """FOR var IN iterable ( body )."""
    var: str
    iterable: Expr
    body: List['Statement'] = field(default_factory=list)
    line: int = 0


@dataclass
class IfStmt:
    """IF condition ( then ) ELSE ( otherwise )."""
    condition: Expr
    then_body: List['Statement'] = field(default_factory=list)
    else_body: List['Statement'] = field(default_factory=list)
    line: int = 0


Statement = Union[AssignStmt, IndexAssignStmt, RequireStmt, ReturnStmt, ForStmt, IfStmt]


# =============================================================================
# Declarations
# =============================================================================

@dataclass
class Param:
    """Constructor or function parameter."""
    name: str
    type: TypeExpr


@dataclass
class Field:
    """Storage variable."""
    name: str
    type: TypeExpr
    line: int = 0


@dataclass
class ErrorDecl:
    """Named revert reason."""
    name: str
    description: Optional[str] = None
    line: int = 0


@dataclass
class ConstructorDecl:
    """Constructor, run once by the deployment transaction."""
    params: List[Param] = field(default_factory=list)
    body: List[Statement] = field(default_factory=list)
    line: int = 0


@dataclass
class FunctionDecl:
    """Callable contract function."""
    name: str
    params: List[Param] = field(default_factory=list)
    view: bool = False
    returns: Optional[TypeExpr] = None
    body: List[Statement] = field(default_factory=list)
    line: int = 0


@dataclass
class Contract:
    """Root AST node for a contract source file."""
    name: str = ""
    description: Optional[str] = None
    errors: List[ErrorDecl] = field(default_factory=list)
    storage: List[Field] = field(default_factory=list)
    constructors: List[ConstructorDecl] = field(default_factory=list)
    functions: List[FunctionDecl] = field(default_factory=list)

    @property
    def constructor(self) -> Optional[ConstructorDecl]:
        return self.constructors[0] if self.constructors else None

    def get_function(self, name: str) -> Optional[FunctionDecl]:
        for func in self.functions:
            if func.name == name:
                return func
        return None


# =============================================================================
# Helpers
# =============================================================================

def expr_to_string(expr) -> str:
    """Render an expression back to source form."""
    if isinstance(expr, Identifier):
        return expr.name
    if isinstance(expr, Literal):
        if expr.type == "string":
            return f'"{expr.value}"'
        if expr.type == "bool":
            return "true" if expr.value else "false"
        return str(expr.value)
    if isinstance(expr, BinaryExpr):
        left = expr_to_string(expr.left)
        right = expr_to_string(expr.right)
        return f"({left} {OPERATOR_SYMBOLS[expr.op]} {right})"
    if isinstance(expr, UnaryExpr):
        operand = expr_to_string(expr.operand)
        if expr.op == UnaryOperator.NOT:
            return f"not {operand}"
        return f"-{operand}"
    if isinstance(expr, CallExpr):
        args = ", ".join(expr_to_string(a) for a in expr.args)
        return f"{expr.name}({args})"
    if isinstance(expr, IndexExpr):
        return f"{expr_to_string(expr.object)}[{expr_to_string(expr.index)}]"
    if isinstance(expr, ListLiteralExpr):
        return "[" + ", ".join(expr_to_string(e) for e in expr.elements) + "]"
    return str(expr)
