"""Condition expressions for file, dependency, and hook inclusion.

A small boolean language, parsed once when a blueprint is
loaded and evaluated once per entry when a project is generated::

    Feature == true
    DatabaseDriver != "" && not empty(AuthType)
    startswith(ModulePath, "github.com/") or Framework == "gin"

Operators: ``==``, ``!=``, ``&&``/``and``, ``||``/``or``, ``!``/``not`` and
parentheses.  A bare operand in a boolean position is a non-empty test.
Referencing a variable that is not in the evaluation context is an
``ExpressionError``, never silently false.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Union

from .errors import ExpressionError


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
      (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<number>-?\d+)
    | (?P<op>==|!=|&&|\|\||!|\(|\)|,)
    | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

_KEYWORD_OPS = {"and": "&&", "or": "||", "not": "!"}


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    pos: int


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), body)


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(source)
    while pos < length:
        if source[pos].isspace():
            pos += 1
            continue
        match = _TOKEN_RE.match(source, pos)
        if match is None:
            raise ExpressionError(
                f"unexpected character {source[pos]!r} at position {pos}", source
            )
        kind = match.lastgroup or ""
        text = match.group(kind)
        if kind == "name" and text in _KEYWORD_OPS:
            tokens.append(_Token("op", _KEYWORD_OPS[text], pos))
        elif kind == "name" and text in ("true", "false"):
            tokens.append(_Token("bool", text, pos))
        else:
            tokens.append(_Token(kind, text, pos))
        pos = match.end()
    return tokens


# ---------------------------------------------------------------------------
# Value semantics
# ---------------------------------------------------------------------------


def _truthy(value: Any) -> bool:
    """Non-empty test: bools as-is, strings and sequences by length, ints by value."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (str, tuple, list, dict, set, frozenset)):
        return len(value) > 0
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def _as_bool_text(value: str) -> bool | None:
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def _equal(left: Any, right: Any) -> bool:
    if isinstance(left, bool) and isinstance(right, str):
        return _as_bool_text(right) is left
    if isinstance(right, bool) and isinstance(left, str):
        return _as_bool_text(left) is right
    if isinstance(left, bool) or isinstance(right, bool):
        return left is right
    if isinstance(left, int) and isinstance(right, str):
        return str(left) == right
    if isinstance(right, int) and isinstance(left, str):
        return left == str(right)
    if isinstance(left, list):
        left = tuple(left)
    if isinstance(right, list):
        right = tuple(right)
    return left == right


def _contains(container: Any, item: Any) -> bool:
    if isinstance(container, str):
        return str(item) in container
    if isinstance(container, (tuple, list, set, frozenset)):
        return any(_equal(element, item) for element in container)
    raise ExpressionError(f"contains() expects a string or list, got {type(container).__name__}")


_FUNCTIONS: dict[str, tuple[int, Callable[..., Any]]] = {
    "empty": (1, lambda x: not _truthy(x)),
    "nonempty": (1, _truthy),
    "contains": (2, _contains),
    "startswith": (2, lambda x, y: str(x).startswith(str(y))),
    "endswith": (2, lambda x, y: str(x).endswith(str(y))),
    "lower": (1, lambda x: str(x).lower()),
    "upper": (1, lambda x: str(x).upper()),
}


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Literal:
    value: Any

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        return self.value

    def names(self) -> Iterator[str]:
        return iter(())


@dataclass(frozen=True)
class Name:
    name: str

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        if self.name not in variables:
            raise ExpressionError(f"unknown variable '{self.name}'")
        return variables[self.name]

    def names(self) -> Iterator[str]:
        yield self.name


@dataclass(frozen=True)
class Not:
    operand: "Node"

    def evaluate(self, variables: Mapping[str, Any]) -> bool:
        return not _truthy(self.operand.evaluate(variables))

    def names(self) -> Iterator[str]:
        return self.operand.names()


@dataclass(frozen=True)
class BoolOp:
    op: str
    operands: tuple["Node", ...]

    def evaluate(self, variables: Mapping[str, Any]) -> bool:
        # Every operand is evaluated so an unknown name errors regardless of
        # the values of its neighbours.
        values = [_truthy(operand.evaluate(variables)) for operand in self.operands]
        return all(values) if self.op == "&&" else any(values)

    def names(self) -> Iterator[str]:
        for operand in self.operands:
            yield from operand.names()


@dataclass(frozen=True)
class Compare:
    op: str
    left: "Node"
    right: "Node"

    def evaluate(self, variables: Mapping[str, Any]) -> bool:
        result = _equal(self.left.evaluate(variables), self.right.evaluate(variables))
        return result if self.op == "==" else not result

    def names(self) -> Iterator[str]:
        yield from self.left.names()
        yield from self.right.names()


@dataclass(frozen=True)
class Call:
    func: str
    args: tuple["Node", ...]

    def evaluate(self, variables: Mapping[str, Any]) -> Any:
        _, fn = _FUNCTIONS[self.func]
        return fn(*(arg.evaluate(variables) for arg in self.args))

    def names(self) -> Iterator[str]:
        for arg in self.args:
            yield from arg.names()


Node = Union[Literal, Name, Not, BoolOp, Compare, Call]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = _tokenize(source)
        self.pos = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise ExpressionError("unexpected end of expression", self.source)
        self.pos += 1
        return token

    def _at_op(self, *ops: str) -> bool:
        token = self._peek()
        return token is not None and token.kind == "op" and token.value in ops

    def _expect_op(self, op: str) -> None:
        token = self._next()
        if token.kind != "op" or token.value != op:
            raise ExpressionError(
                f"expected {op!r} at position {token.pos}, found {token.value!r}",
                self.source,
            )

    def parse(self) -> Node:
        if not self.tokens:
            raise ExpressionError("empty expression", self.source)
        node = self._or()
        trailing = self._peek()
        if trailing is not None:
            raise ExpressionError(
                f"unexpected {trailing.value!r} at position {trailing.pos}", self.source
            )
        return node

    def _or(self) -> Node:
        operands = [self._and()]
        while self._at_op("||"):
            self.pos += 1
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else BoolOp("||", tuple(operands))

    def _and(self) -> Node:
        operands = [self._not()]
        while self._at_op("&&"):
            self.pos += 1
            operands.append(self._not())
        return operands[0] if len(operands) == 1 else BoolOp("&&", tuple(operands))

    def _not(self) -> Node:
        if self._at_op("!"):
            self.pos += 1
            return Not(self._not())
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._operand()
        if self._at_op("==", "!="):
            op = self._next().value
            right = self._operand()
            return Compare(op, left, right)
        return left

    def _operand(self) -> Node:
        token = self._next()
        if token.kind == "string":
            return Literal(_unquote(token.value))
        if token.kind == "number":
            return Literal(int(token.value))
        if token.kind == "bool":
            return Literal(token.value == "true")
        if token.kind == "op" and token.value == "(":
            node = self._or()
            self._expect_op(")")
            return node
        if token.kind == "name":
            if self._at_op("("):
                return self._call(token)
            return Name(token.value)
        raise ExpressionError(
            f"unexpected {token.value!r} at position {token.pos}", self.source
        )

    def _call(self, name: _Token) -> Node:
        if name.value not in _FUNCTIONS:
            raise ExpressionError(f"unknown function '{name.value}'", self.source)
        self._expect_op("(")
        args: list[Node] = []
        if not self._at_op(")"):
            args.append(self._or())
            while self._at_op(","):
                self.pos += 1
                args.append(self._or())
        self._expect_op(")")
        arity, _ = _FUNCTIONS[name.value]
        if len(args) != arity:
            raise ExpressionError(
                f"{name.value}() takes {arity} argument(s), got {len(args)}", self.source
            )
        return Call(name.value, tuple(args))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class Expression:
    """A compiled condition.  Equal sources compile to equal expressions."""

    __slots__ = ("source", "root")

    def __init__(self, source: str, root: Node) -> None:
        self.source = source
        self.root = root

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Expression):
            return NotImplemented
        return self.source == other.source and self.root == other.root

    def __hash__(self) -> int:
        return hash((self.source, self.root))

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"

    @property
    def references(self) -> tuple[str, ...]:
        """Variable names referenced by the expression, sorted and de-duplicated."""
        return tuple(sorted(set(self.root.names())))

    def evaluate(self, variables: Mapping[str, Any]) -> bool:
        try:
            return _truthy(self.root.evaluate(variables))
        except ExpressionError as exc:
            if exc.expression is None:
                raise ExpressionError(exc.message, self.source) from None
            raise

    def __str__(self) -> str:
        return self.source


def parse_expression(source: str) -> Expression:
    """Compile *source*; raises ``ExpressionError`` when it is malformed."""
    return Expression(source=source.strip(), root=_Parser(source.strip()).parse())


def evaluate(expr: Expression | str | None, variables: Mapping[str, Any]) -> bool:
    """Evaluate *expr* against *variables*.  ``None`` or blank means always true."""
    if expr is None:
        return True
    if isinstance(expr, str):
        if not expr.strip():
            return True
        expr = parse_expression(expr)
    return expr.evaluate(variables)
