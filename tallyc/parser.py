"""
Parser for the tally contract language using Lark.

Uses the grammar in contract.lark and Lark's LALR parser to produce AST
nodes defined in contract_ast.py.
"""

from pathlib import Path
from lark import Lark, Transformer, v_args

from .contract_ast import (
    Contract, ErrorDecl, Field, Param, ConstructorDecl, FunctionDecl,
    AssignStmt, IndexAssignStmt, RequireStmt, ReturnStmt, ForStmt, IfStmt,
    # Expression AST
    Identifier, Literal, BinaryExpr, UnaryExpr, CallExpr, IndexExpr,
    ListLiteralExpr, BinaryOperator, UnaryOperator,
    # Type AST
    SimpleType, ListType, MapType,
)


GRAMMAR_PATH = Path(__file__).parent / "contract.lark"


@v_args(inline=True)
class ContractTransformer(Transformer):
    """Transform Lark parse tree into our AST nodes."""

    # =========================================================================
    # Top-level
    # =========================================================================

    def start(self, contract, *decls):
        for decl in decls:
            if isinstance(decl, ErrorDecl):
                contract.errors.append(decl)
            elif isinstance(decl, list):
                contract.storage.extend(decl)
            elif isinstance(decl, ConstructorDecl):
                contract.constructors.append(decl)
            elif isinstance(decl, FunctionDecl):
                contract.functions.append(decl)
        return contract

    def contract_decl(self, name, description=None):
        return Contract(
            name=str(name),
            description=self._unquote(description) if description else None,
        )

    def error_decl(self, name, description=None):
        return ErrorDecl(
            name=str(name),
            description=self._unquote(description) if description else None,
            line=name.line,
        )

    # =========================================================================
    # Storage and types
    # =========================================================================

    def storage_block(self, *fields):
        return [f for f in fields if isinstance(f, Field)]

    def field(self, name, type_expr):
        return Field(name=str(name), type=type_expr, line=name.line)

    def simple_type(self, name):
        return SimpleType(name=str(name))

    def generic_type(self, name, *type_args):
        name_str = str(name)
        if name_str == "list":
            if len(type_args) != 1:
                raise ValueError(f"list<> takes 1 type argument, got {len(type_args)}")
            return ListType(element_type=type_args[0])
        if name_str == "map":
            if len(type_args) != 2:
                raise ValueError(f"map<> takes 2 type arguments, got {len(type_args)}")
            return MapType(key_type=type_args[0], value_type=type_args[1])
        raise ValueError(f"Unknown generic type: {name_str}")

    # =========================================================================
    # Callables
    # =========================================================================

    def constructor_decl(self, params, body):
        return ConstructorDecl(params=params or [], body=body)

    def function_decl(self, name, params, view, returns, body):
        return FunctionDecl(
            name=str(name),
            params=params or [],
            view=view is not None,
            returns=returns,
            body=body,
            line=name.line,
        )

    def returns_clause(self, type_expr):
        return type_expr

    def param_list(self, *params):
        return list(params)

    def param(self, name, type_expr):
        return Param(name=str(name), type=type_expr)

    def block(self, *statements):
        return list(statements)

    # =========================================================================
    # Statements
    # =========================================================================

    def assign_stmt(self, name, value):
        return AssignStmt(target=str(name), value=value, line=name.line)

    def index_assign_stmt(self, name, key, value):
        return IndexAssignStmt(target=str(name), key=key, value=value, line=name.line)

    def require_stmt(self, condition, error):
        return RequireStmt(condition=condition, error=str(error), line=error.line)

    def return_stmt(self, value):
        return ReturnStmt(value=value, line=getattr(value, "line", 0))

    def for_stmt(self, var, iterable, body):
        return ForStmt(var=str(var), iterable=iterable, body=body, line=var.line)

    def if_stmt(self, condition, then_body, else_body=None):
        return IfStmt(
            condition=condition,
            then_body=then_body,
            else_body=else_body or [],
            line=getattr(condition, "line", 0),
        )

    # =========================================================================
    # Expressions
    # =========================================================================

    def _binary(self, left, op, right):
        return BinaryExpr(left=left, op=op, right=right, line=getattr(left, "line", 0))

    def or_op(self, left, right):
        return self._binary(left, BinaryOperator.OR, right)

    def and_op(self, left, right):
        return self._binary(left, BinaryOperator.AND, right)

    def not_op(self, operand):
        return UnaryExpr(op=UnaryOperator.NOT, operand=operand, line=getattr(operand, "line", 0))

    def neg(self, operand):
        return UnaryExpr(op=UnaryOperator.NEG, operand=operand, line=getattr(operand, "line", 0))

    def eq(self, left, right):
        return self._binary(left, BinaryOperator.EQ, right)

    def ne(self, left, right):
        return self._binary(left, BinaryOperator.NEQ, right)

    def lt(self, left, right):
        return self._binary(left, BinaryOperator.LT, right)

    def le(self, left, right):
        return self._binary(left, BinaryOperator.LTE, right)

    def gt(self, left, right):
        return self._binary(left, BinaryOperator.GT, right)

    def ge(self, left, right):
        return self._binary(left, BinaryOperator.GTE, right)

    def add(self, left, right):
        return self._binary(left, BinaryOperator.ADD, right)

    def sub(self, left, right):
        return self._binary(left, BinaryOperator.SUB, right)

    def mul(self, left, right):
        return self._binary(left, BinaryOperator.MUL, right)

    def div(self, left, right):
        return self._binary(left, BinaryOperator.DIV, right)

    def index(self, obj, idx):
        return IndexExpr(object=obj, index=idx, line=getattr(obj, "line", 0))

    def number(self, token):
        return Literal(value=int(token), type="number", line=token.line, column=token.column)

    def string(self, token):
        return Literal(value=self._unquote(token), type="string",
                       line=token.line, column=token.column)

    def true(self):
        return Literal(value=True, type="bool")

    def false(self):
        return Literal(value=False, type="bool")

    def name(self, token):
        return Identifier(name=str(token), line=token.line, column=token.column)

    def call(self, builtin, args=None):
        return CallExpr(name=str(builtin), args=args or [], line=builtin.line)

    def builtin(self, token):
        return token

    def list_literal(self, args=None):
        return ListLiteralExpr(elements=args or [])

    def arg_list(self, *exprs):
        return list(exprs)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _unquote(self, s):
        s = str(s)
        if s.startswith('"') and s.endswith('"'):
            return s[1:-1].replace('\\"', '"').replace('\\\\', '\\')
        return s


# Create parser instance
_parser = None


def get_parser():
    """Get or create the Lark parser instance."""
    global _parser
    if _parser is None:
        with open(GRAMMAR_PATH) as f:
            grammar = f.read()
        _parser = Lark(
            grammar,
            parser='lalr',
            propagate_positions=True,
            maybe_placeholders=True,
        )
    return _parser


def parse(source: str) -> Contract:
    """Parse contract source code into a Contract AST."""
    parser = get_parser()
    tree = parser.parse(source)
    transformer = ContractTransformer()
    return transformer.transform(tree)


def parse_file(path) -> Contract:
    """Parse a contract file into a Contract AST."""
    with open(path) as f:
        return parse(f.read())
