"""
Tax formula engine: restricted expressions over attribute variables.

Tax rules carry their computation as formula text, for example::

    ([RealEstateType]=="PB" || [RealEstateUsage]=="COM") ? [ResidualValue]*0.75/100 : 0

Formulas are tokenized and parsed into a Python ``ast.Expression`` tree
built only from an allow-listed set of node types, then evaluated by a
tree walker. Nothing is ever handed to ``eval``/``compile``.

Language (identifiers and keywords are case-insensitive):
  - Literals: numbers (Decimal), 'text' or "text", true, false, null
  - Variables: [Any Key] or bare identifiers
  - Arithmetic: + - * / %, unary - and +
  - Comparison: == = != <> < <= > >=
  - Logical: && || ! and the keywords and, or, not
  - Conditional: cond ? a : b
  - Functions: abs(x), min(a, ...), max(a, ...), round(x[, places]),
    if(cond, a, b)

Semantics:
  - Numbers are Decimal throughout; float never enters arithmetic.
  - ``+`` adds numbers or concatenates two strings.
  - ``==``/``!=`` across unrelated types compare unequal; ordering
    across them is an evaluation error.
  - Logical operands and conditions must be booleans; &&, ||, ?: and
    if() only evaluate what they need.
  - Every referenced variable must be bound (possibly to null) before
    evaluation starts.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from functools import lru_cache
from typing import Any, NamedTuple

from taxflow_kernel.domain.attribute_types import parse_boolean, parse_number
from taxflow_kernel.domain.attribute_validator import index_attributes
from taxflow_kernel.domain.attributes import ExtendedAttribute
from taxflow_kernel.exceptions import (
    FormulaEvaluationError,
    FormulaSyntaxError,
    UnboundVariableError,
)

# Reserved variable carrying the caller-supplied base amount
AMOUNT_VARIABLE = "amount"

# Functions allowed in formulas -> (min args, max args or None)
ALLOWED_FUNCTIONS: dict[str, tuple[int, int | None]] = {
    "abs": (1, 1),
    "min": (1, None),
    "max": (1, None),
    "round": (1, 2),
    "if": (3, 3),
}

_ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.UnaryOp,
    ast.BinOp,
    ast.Compare,
    ast.IfExp,
    ast.Call,
    ast.Name,
    ast.Constant,
)


def normalize_name(name: str) -> str:
    """Variable names are trimmed and compared case-insensitively."""
    return name.strip().casefold()


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class _Token(NamedTuple):
    kind: str  # NUMBER, STRING, NAME, IDENT, OP, EOF
    text: str
    pos: int


_NUMBER = re.compile(r"(?:\d+(?:\.\d+)?|\.\d+)(?:[eE][+-]?\d+)?")
_IDENT = re.compile(r"[^\W\d]\w*")
_OPERATORS = (
    "&&", "||", "==", "!=", "<>", "<=", ">=",
    "+", "-", "*", "/", "%", "<", ">", "=", "!", "?", ":", "(", ")", ",",
)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(expression)

    while pos < length:
        char = expression[pos]

        if char.isspace():
            pos += 1
            continue

        number = _NUMBER.match(expression, pos)
        if number:
            tokens.append(_Token("NUMBER", number.group(), pos))
            pos = number.end()
            continue

        if char in ("'", '"'):
            text, end = _read_string(expression, pos)
            tokens.append(_Token("STRING", text, pos))
            pos = end
            continue

        if char == "[":
            end = expression.find("]", pos + 1)
            if end == -1:
                raise FormulaSyntaxError(expression, "unterminated [variable]", pos)
            name = expression[pos + 1:end]
            if not name.strip():
                raise FormulaSyntaxError(expression, "empty [variable] name", pos)
            tokens.append(_Token("NAME", name, pos))
            pos = end + 1
            continue

        ident = _IDENT.match(expression, pos)
        if ident:
            tokens.append(_Token("IDENT", ident.group(), pos))
            pos = ident.end()
            continue

        for op in _OPERATORS:
            if expression.startswith(op, pos):
                tokens.append(_Token("OP", op, pos))
                pos += len(op)
                break
        else:
            raise FormulaSyntaxError(expression, f"unexpected character {char!r}", pos)

    tokens.append(_Token("EOF", "", length))
    return tokens


def _read_string(expression: str, start: int) -> tuple[str, int]:
    quote = expression[start]
    chars: list[str] = []
    pos = start + 1
    while pos < len(expression):
        char = expression[pos]
        if char == "\\" and pos + 1 < len(expression):
            chars.append(_ESCAPES.get(expression[pos + 1], expression[pos + 1]))
            pos += 2
            continue
        if char == quote:
            return "".join(chars), pos + 1
        chars.append(char)
        pos += 1
    raise FormulaSyntaxError(expression, "unterminated string literal", start)


# ---------------------------------------------------------------------------
# Parser (recursive descent -> ast nodes)
# ---------------------------------------------------------------------------

_EQUALITY_OPS: dict[str, type[ast.cmpop]] = {
    "==": ast.Eq, "=": ast.Eq, "!=": ast.NotEq, "<>": ast.NotEq,
}
_RELATIONAL_OPS: dict[str, type[ast.cmpop]] = {
    "<": ast.Lt, "<=": ast.LtE, ">": ast.Gt, ">=": ast.GtE,
}
_ADDITIVE_OPS: dict[str, type[ast.operator]] = {"+": ast.Add, "-": ast.Sub}
_MULTIPLICATIVE_OPS: dict[str, type[ast.operator]] = {
    "*": ast.Mult, "/": ast.Div, "%": ast.Mod,
}
_KEYWORD_CONSTANTS = {"true": True, "false": False, "null": None}


class _Parser:
    def __init__(self, expression: str):
        self._expression = expression
        self._tokens = _tokenize(expression)
        self._index = 0

    def parse(self) -> ast.Expression:
        body = self._ternary()
        token = self._peek()
        if token.kind != "EOF":
            raise self._error(f"unexpected {token.text!r}", token)
        return ast.Expression(body=body)

    # -- token helpers --

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _accept_op(self, *ops: str) -> str | None:
        token = self._peek()
        if token.kind == "OP" and token.text in ops:
            self._index += 1
            return token.text
        return None

    def _accept_keyword(self, keyword: str) -> bool:
        token = self._peek()
        if token.kind == "IDENT" and token.text.lower() == keyword:
            self._index += 1
            return True
        return False

    def _expect_op(self, op: str) -> None:
        if self._accept_op(op) is None:
            token = self._peek()
            found = token.text or "end of formula"
            raise self._error(f"expected {op!r}, found {found!r}", token)

    def _error(self, reason: str, token: _Token) -> FormulaSyntaxError:
        return FormulaSyntaxError(self._expression, reason, token.pos)

    # -- grammar, lowest precedence first --

    def _ternary(self) -> ast.expr:
        test = self._or()
        if self._accept_op("?") is None:
            return test
        body = self._ternary()
        self._expect_op(":")
        orelse = self._ternary()
        return ast.IfExp(test=test, body=body, orelse=orelse)

    def _or(self) -> ast.expr:
        values = [self._and()]
        while self._accept_op("||") or self._accept_keyword("or"):
            values.append(self._and())
        return values[0] if len(values) == 1 else ast.BoolOp(op=ast.Or(), values=values)

    def _and(self) -> ast.expr:
        values = [self._equality()]
        while self._accept_op("&&") or self._accept_keyword("and"):
            values.append(self._equality())
        return values[0] if len(values) == 1 else ast.BoolOp(op=ast.And(), values=values)

    def _equality(self) -> ast.expr:
        node = self._relational()
        while (op := self._accept_op(*_EQUALITY_OPS)) is not None:
            right = self._relational()
            node = ast.Compare(left=node, ops=[_EQUALITY_OPS[op]()], comparators=[right])
        return node

    def _relational(self) -> ast.expr:
        node = self._additive()
        while (op := self._accept_op(*_RELATIONAL_OPS)) is not None:
            right = self._additive()
            node = ast.Compare(left=node, ops=[_RELATIONAL_OPS[op]()], comparators=[right])
        return node

    def _additive(self) -> ast.expr:
        node = self._multiplicative()
        while (op := self._accept_op(*_ADDITIVE_OPS)) is not None:
            node = ast.BinOp(left=node, op=_ADDITIVE_OPS[op](), right=self._multiplicative())
        return node

    def _multiplicative(self) -> ast.expr:
        node = self._unary()
        while (op := self._accept_op(*_MULTIPLICATIVE_OPS)) is not None:
            node = ast.BinOp(left=node, op=_MULTIPLICATIVE_OPS[op](), right=self._unary())
        return node

    def _unary(self) -> ast.expr:
        if self._accept_op("!") or self._accept_keyword("not"):
            return ast.UnaryOp(op=ast.Not(), operand=self._unary())
        if self._accept_op("-"):
            return ast.UnaryOp(op=ast.USub(), operand=self._unary())
        if self._accept_op("+"):
            return ast.UnaryOp(op=ast.UAdd(), operand=self._unary())
        return self._primary()

    def _primary(self) -> ast.expr:
        token = self._advance()

        if token.kind == "NUMBER":
            return ast.Constant(value=Decimal(token.text))
        if token.kind == "STRING":
            return ast.Constant(value=token.text)
        if token.kind == "NAME":
            return ast.Name(id=normalize_name(token.text), ctx=ast.Load())
        if token.kind == "IDENT":
            lowered = token.text.lower()
            if lowered in _KEYWORD_CONSTANTS:
                return ast.Constant(value=_KEYWORD_CONSTANTS[lowered])
            if self._accept_op("("):
                return ast.Call(
                    func=ast.Name(id=lowered, ctx=ast.Load()),
                    args=self._arguments(),
                    keywords=[],
                )
            return ast.Name(id=normalize_name(token.text), ctx=ast.Load())
        if token.kind == "OP" and token.text == "(":
            node = self._ternary()
            self._expect_op(")")
            return node

        found = token.text or "end of formula"
        raise self._error(f"unexpected {found!r}", token)

    def _arguments(self) -> list[ast.expr]:
        args: list[ast.expr] = []
        if self._accept_op(")"):
            return args
        args.append(self._ternary())
        while self._accept_op(","):
            args.append(self._ternary())
        self._expect_op(")")
        return args


# ---------------------------------------------------------------------------
# Validation (config-time, never raises)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FormulaASTError:
    """A validation error found in a formula."""

    expression: str
    message: str
    node_type: str = ""
    position: int = 0


def validate_formula(expression: str) -> list[FormulaASTError]:
    """Validate a formula against the restricted grammar.

    Returns a list of errors. Empty list means the formula is valid.
    """
    try:
        tree = _Parser(expression.strip()).parse()
    except FormulaSyntaxError as e:
        return [
            FormulaASTError(
                expression=expression,
                message=f"Syntax error: {e.reason}",
                position=e.position,
            )
        ]

    errors: list[FormulaASTError] = []
    _validate_node(tree, expression, errors)
    return errors


def _validate_node(
    node: ast.AST, expression: str, errors: list[FormulaASTError]
) -> None:
    """Recursively validate an AST node."""
    if not isinstance(node, _ALLOWED_NODES):
        errors.append(
            FormulaASTError(
                expression=expression,
                message=f"Disallowed AST node type: {type(node).__name__}",
                node_type=type(node).__name__,
            )
        )
        return

    if isinstance(node, ast.Call):
        name = node.func.id if isinstance(node.func, ast.Name) else type(node.func).__name__
        arity = ALLOWED_FUNCTIONS.get(name)
        if arity is None:
            errors.append(
                FormulaASTError(
                    expression=expression,
                    message=f"Disallowed function call: {name}",
                    node_type="Call",
                )
            )
        else:
            low, high = arity
            if len(node.args) < low or (high is not None and len(node.args) > high):
                expected = str(low) if low == high else f"{low}..{high or 'n'}"
                errors.append(
                    FormulaASTError(
                        expression=expression,
                        message=(
                            f"Function {name}() takes {expected} argument(s), "
                            f"got {len(node.args)}"
                        ),
                        node_type="Call",
                    )
                )
        for arg in node.args:
            _validate_node(arg, expression, errors)
        return

    if isinstance(node, ast.Constant):
        if not isinstance(node.value, (Decimal, str, bool, type(None))):
            errors.append(
                FormulaASTError(
                    expression=expression,
                    message=f"Disallowed constant type: {type(node.value).__name__}",
                    node_type="Constant",
                )
            )
        return

    for child in ast.iter_child_nodes(node):
        if isinstance(child, (ast.expr_context, ast.operator, ast.unaryop,
                              ast.boolop, ast.cmpop)):
            continue
        _validate_node(child, expression, errors)


# ---------------------------------------------------------------------------
# Compilation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CompiledFormula:
    """A parsed and validated formula, safe to share and re-evaluate."""

    expression: str
    tree: ast.Expression
    variables: frozenset[str]


@lru_cache(maxsize=1024)
def compile_formula(expression: str) -> CompiledFormula:
    """
    Parse and validate a formula.

    Raises:
        FormulaSyntaxError: malformed formula or disallowed construct.
    """
    text = expression.strip()
    if not text:
        raise FormulaSyntaxError(expression, "empty formula", 0)

    tree = _Parser(text).parse()
    errors: list[FormulaASTError] = []
    _validate_node(tree, expression, errors)
    if errors:
        raise FormulaSyntaxError(
            expression, "; ".join(e.message for e in errors), errors[0].position
        )

    function_names = {id(node.func) for node in ast.walk(tree) if isinstance(node, ast.Call)}
    variables = frozenset(
        node.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Name) and id(node) not in function_names
    )
    return CompiledFormula(expression=expression, tree=tree, variables=variables)


def formula_variables(expression: str) -> frozenset[str]:
    """Normalized names of the variables a formula references."""
    return compile_formula(expression).variables


# ---------------------------------------------------------------------------
# Binding and result coercion
# ---------------------------------------------------------------------------


def coerce_variable(raw: str | None) -> Any:
    """Raw attribute text -> Decimal, then bool, else the raw string."""
    if raw is None:
        return None
    number = parse_number(raw)
    if number is not None:
        return number
    flag = parse_boolean(raw)
    if flag is not None:
        return flag
    return raw


def bind_attributes(
    attributes: Iterable[ExtendedAttribute],
    amount: Decimal | int | float | None = None,
    declared_keys: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Build formula variables from attributes.

    Declared keys with no attribute are bound to None, so formulas can test
    optional attributes that were not supplied. ``amount``, when given,
    is bound under ``AMOUNT_VARIABLE``.
    """
    bindings: dict[str, Any] = {normalize_name(key): None for key in declared_keys if key.strip()}
    for name, attribute in index_attributes(attributes).items():
        bindings[name] = coerce_variable(attribute.value)
    if amount is not None:
        bindings[AMOUNT_VARIABLE] = _normalize_value(amount)
    return bindings


def coerce_result(value: Any) -> Decimal | None:
    """Formula result -> Decimal, or None when it carries no amount."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        result = Decimal(str(value))
        return result if result.is_finite() else None
    if isinstance(value, str):
        return parse_number(value)
    return None


def _normalize_value(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    return value


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def evaluate_formula(expression: str, bindings: Mapping[str, Any]) -> Any:
    """
    Evaluate a formula against variable bindings.

    Binding names are matched case-insensitively. Returns the raw result
    (Decimal, bool, str or None); use ``coerce_result`` for an amount.

    Raises:
        FormulaSyntaxError: malformed formula.
        UnboundVariableError: a referenced variable has no binding.
        FormulaEvaluationError: runtime fault.
    """
    compiled = compile_formula(expression)
    env = {normalize_name(k): _normalize_value(v) for k, v in bindings.items()}

    missing = compiled.variables - env.keys()
    if missing:
        raise UnboundVariableError(expression, list(missing))

    return _Evaluator(expression, env).visit(compiled.tree.body)


def _is_number(value: Any) -> bool:
    return isinstance(value, Decimal)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, Decimal):
        return "number"
    if isinstance(value, str):
        return "string"
    return type(value).__name__


class _Evaluator:
    """Walks a compiled tree. Holds no state beyond one evaluation."""

    def __init__(self, expression: str, env: Mapping[str, Any]):
        self._expression = expression
        self._env = env

    def _fail(self, reason: str) -> FormulaEvaluationError:
        return FormulaEvaluationError(self._expression, reason)

    def visit(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Constant):
            return node.value
        if isinstance(node, ast.Name):
            return self._env[node.id]
        if isinstance(node, ast.BoolOp):
            return self._bool_op(node)
        if isinstance(node, ast.UnaryOp):
            return self._unary_op(node)
        if isinstance(node, ast.BinOp):
            return self._bin_op(node)
        if isinstance(node, ast.Compare):
            return self._compare(node)
        if isinstance(node, ast.IfExp):
            if self._condition(node.test):
                return self.visit(node.body)
            return self.visit(node.orelse)
        if isinstance(node, ast.Call):
            return self._call(node)
        raise self._fail(f"unsupported node {type(node).__name__}")

    def _condition(self, node: ast.AST) -> bool:
        value = self.visit(node)
        if not isinstance(value, bool):
            raise self._fail(f"expected boolean condition, got {_type_name(value)}")
        return value

    def _number(self, node: ast.AST, context: str) -> Decimal:
        value = self.visit(node)
        if not _is_number(value):
            raise self._fail(f"{context} expects a number, got {_type_name(value)}")
        return value

    def _bool_op(self, node: ast.BoolOp) -> bool:
        if isinstance(node.op, ast.And):
            return all(self._condition(v) for v in node.values)
        return any(self._condition(v) for v in node.values)

    def _unary_op(self, node: ast.UnaryOp) -> Any:
        if isinstance(node.op, ast.Not):
            return not self._condition(node.operand)
        operand = self._number(node.operand, "unary operator")
        return -operand if isinstance(node.op, ast.USub) else +operand

    def _bin_op(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)

        if isinstance(node.op, ast.Add) and isinstance(left, str) and isinstance(right, str):
            return left + right
        if not (_is_number(left) and _is_number(right)):
            raise self._fail(
                f"arithmetic on {_type_name(left)} and {_type_name(right)}"
            )
        try:
            if isinstance(node.op, ast.Add):
                return left + right
            if isinstance(node.op, ast.Sub):
                return left - right
            if isinstance(node.op, ast.Mult):
                return left * right
            if isinstance(node.op, ast.Div):
                return left / right
            return left % right
        except ArithmeticError as e:
            raise self._fail(type(e).__name__) from e

    def _compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        right = self.visit(node.comparators[0])
        op = node.ops[0]

        if isinstance(op, (ast.Eq, ast.NotEq)):
            equal = _equals(left, right)
            return equal if isinstance(op, ast.Eq) else not equal

        comparable = (_is_number(left) and _is_number(right)) or (
            isinstance(left, str) and isinstance(right, str)
        )
        if not comparable:
            raise self._fail(f"cannot order {_type_name(left)} and {_type_name(right)}")
        if isinstance(op, ast.Lt):
            return left < right
        if isinstance(op, ast.LtE):
            return left <= right
        if isinstance(op, ast.Gt):
            return left > right
        return left >= right

    def _call(self, node: ast.Call) -> Any:
        name = node.func.id

        if name == "if":
            if self._condition(node.args[0]):
                return self.visit(node.args[1])
            return self.visit(node.args[2])
        if name == "abs":
            return abs(self._number(node.args[0], "abs()"))
        if name in ("min", "max"):
            values = [self._number(arg, f"{name}()") for arg in node.args]
            return min(values) if name == "min" else max(values)
        if name == "round":
            value = self._number(node.args[0], "round()")
            places = self._number(node.args[1], "round()") if len(node.args) > 1 else Decimal(0)
            if places != places.to_integral_value():
                raise self._fail("round() places must be a whole number")
            try:
                return value.quantize(Decimal(1).scaleb(-int(places)), rounding=ROUND_HALF_UP)
            except ArithmeticError as e:
                raise self._fail(f"round() failed: {type(e).__name__}") from e
        raise self._fail(f"unknown function {name}()")


def _equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False
