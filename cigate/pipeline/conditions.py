"""Boolean expression language for job conditions.

Conditions are evaluated over resolved template inputs:

    run-coverage == true
    inputs.language != 'node' && !skip-tests
    (os == "linux" || os == "macos") && publish

Grammar (lowest to highest precedence):

    expr       := or
    or         := and ('||' and)*
    and        := unary ('&&' unary)*
    unary      := '!' unary | comparison
    comparison := primary (('==' | '!=') primary)?
    primary    := literal | identifier | '(' expr ')'
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Collection, List, Mapping, Optional, Set, Tuple

from cigate.errors import ConditionSyntaxError, UndefinedConditionVariable


_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<op>==|!=|&&|\|\||!|\(|\))
  | (?P<string>'[^']*'|"[^"]*")
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_][A-Za-z0-9_\-]*)?)
    """,
    re.VERBOSE,
)

_KEYWORDS = {"true": True, "false": False, "null": None}


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    pos: int


# AST nodes

@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Var:
    name: str


@dataclass(frozen=True)
class Not:
    operand: Any


@dataclass(frozen=True)
class Compare:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class BoolOp:
    op: str  # "&&" or "||"
    operands: Tuple[Any, ...]


def tokenize(expression: str) -> List[Token]:
    tokens = []
    pos = 0
    while pos < len(expression):
        match = _TOKEN_RE.match(expression, pos)
        if not match:
            raise ConditionSyntaxError(
                f"Unexpected character {expression[pos]!r} at position {pos} in condition {expression!r}"
            )
        kind = match.lastgroup
        if kind != "ws":
            tokens.append(Token(kind, match.group(), pos))
        pos = match.end()
    return tokens


class _Parser:
    def __init__(self, expression: str):
        self.expression = expression
        self.tokens = tokenize(expression)
        self.index = 0

    def _peek(self) -> Optional[Token]:
        if self.index < len(self.tokens):
            return self.tokens[self.index]
        return None

    def _accept(self, text: str) -> bool:
        token = self._peek()
        if token is not None and token.kind == "op" and token.text == text:
            self.index += 1
            return True
        return False

    def _error(self, message: str) -> ConditionSyntaxError:
        return ConditionSyntaxError(f"{message} in condition {self.expression!r}")

    def parse(self):
        if not self.tokens:
            raise self._error("Empty expression")
        node = self._or()
        token = self._peek()
        if token is not None:
            raise self._error(f"Unexpected token {token.text!r} at position {token.pos}")
        return node

    def _or(self):
        operands = [self._and()]
        while self._accept("||"):
            operands.append(self._and())
        return operands[0] if len(operands) == 1 else BoolOp("||", tuple(operands))

    def _and(self):
        operands = [self._unary()]
        while self._accept("&&"):
            operands.append(self._unary())
        return operands[0] if len(operands) == 1 else BoolOp("&&", tuple(operands))

    def _unary(self):
        if self._accept("!"):
            return Not(self._unary())
        return self._comparison()

    def _comparison(self):
        left = self._primary()
        for op in ("==", "!="):
            if self._accept(op):
                return Compare(op, left, self._primary())
        return left

    def _primary(self):
        token = self._peek()
        if token is None:
            raise self._error("Unexpected end of expression")

        if token.kind == "op" and token.text == "(":
            self.index += 1
            node = self._or()
            if not self._accept(")"):
                raise self._error("Missing closing parenthesis")
            return node

        self.index += 1
        if token.kind == "string":
            return Literal(token.text[1:-1])
        if token.kind == "number":
            text = token.text
            return Literal(float(text) if "." in text else int(text))
        if token.kind == "ident":
            if token.text in _KEYWORDS:
                return Literal(_KEYWORDS[token.text])
            name = token.text
            if name.startswith("inputs."):
                name = name[len("inputs."):]
            elif "." in name:
                raise self._error(f"Unsupported reference {name!r} (only inputs.* may be referenced)")
            return Var(name)

        raise self._error(f"Unexpected token {token.text!r} at position {token.pos}")


@lru_cache(maxsize=512)
def parse(expression: str):
    """Parse a condition into an immutable AST (cached, parsing is pure)."""
    return _Parser(expression).parse()


def referenced_names(expression: str) -> Set[str]:
    """Input names referenced by a condition."""
    names: Set[str] = set()

    def walk(node):
        if isinstance(node, Var):
            names.add(node.name)
        elif isinstance(node, Not):
            walk(node.operand)
        elif isinstance(node, Compare):
            walk(node.left)
            walk(node.right)
        elif isinstance(node, BoolOp):
            for operand in node.operands:
                walk(operand)

    walk(parse(expression))
    return names


def _equals(left: Any, right: Any) -> bool:
    # true == 1 must not hold
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def evaluate(
    expression: str,
    values: Mapping[str, Any],
    known: Optional[Collection[str]] = None,
    template: Optional[str] = None,
    job_id: Optional[str] = None,
) -> bool:
    """
    Evaluate a condition against resolved input values.

    Args:
        expression: Condition source text
        values: Resolved input values (absent optionals are simply missing)
        known: All input names declared by the template; defaults to values' keys
        template: Template name, for error context
        job_id: Job id, for error context

    Returns:
        Truth value of the condition

    Raises:
        ConditionSyntaxError: If the expression cannot be parsed
        UndefinedConditionVariable: If the expression references an undeclared input
    """
    known_names = set(known) if known is not None else set(values)

    def resolve(node):
        if isinstance(node, Literal):
            return node.value
        if isinstance(node, Var):
            return values.get(node.name)
        if isinstance(node, Not):
            return not resolve(node.operand)
        if isinstance(node, Compare):
            result = _equals(resolve(node.left), resolve(node.right))
            return result if node.op == "==" else not result
        if isinstance(node, BoolOp):
            if node.op == "&&":
                return all(resolve(operand) for operand in node.operands)
            return any(resolve(operand) for operand in node.operands)
        raise TypeError(f"Unknown condition node: {node!r}")

    try:
        tree = parse(expression)
    except ConditionSyntaxError as e:
        e.template = e.template or template
        e.job_id = e.job_id or job_id
        raise

    # Checked up front so short-circuiting cannot hide a bad reference
    undefined = sorted(referenced_names(expression) - known_names)
    if undefined:
        raise UndefinedConditionVariable(
            f"Condition {expression!r} references undefined input '{undefined[0]}'",
            template=template,
            job_id=job_id,
            input_name=undefined[0],
        )

    return bool(resolve(tree))
