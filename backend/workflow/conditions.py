"""Condition evaluator: sandboxed boolean expressions over step outputs.

Expressions are written in the editor's expression syntax, e.g.::

    {{@http-1:Fetch.status}} === 200 && {{@http-1:Fetch.body}}.includes("ok")

Evaluation happens in three guarded stages:

1. The raw expression is validated against the grammar below, with each
   reference token standing in as a placeholder name.
2. Each reference token is replaced by a generated variable name
   (``__v0``, ``__v1``, ...) and its resolved value is bound separately,
   so substituted values are never parsed.
3. The substituted expression is validated again and interpreted by a
   small AST walker. Nothing is ever compiled or passed to ``eval``.

Grammar::

    expr       := or
    or         := and (('||' | 'or') and)*
    and        := not (('&&' | 'and') not)*
    not        := ('!' | 'not') not | comparison
    comparison := unary [('==' | '!=' | '===' | '!==' | '<' | '<=' | '>' | '>=') unary]
    unary      := '-' unary | postfix
    postfix    := primary ('.' 'length' | '.' METHOD '(' args ')' | '[' expr ']')*
    primary    := NUMBER | STRING | literal | NAME | '(' expr ')' | '[' args ']'

Any failure at any stage evaluates to ``False`` with no resolved values.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from core.exceptions import ExpressionEvaluationError, ExpressionSyntaxError, ValidationError
from core.utils import to_display_string
from workflow.templates import TEMPLATE_PATTERN, Outputs, lookup_reference

logger = structlog.get_logger(__name__)


# ─── Tokenizer ────────────────────────────────────────────────

_OPERATORS = (
    "===", "!==", "==", "!=", "<=", ">=", "&&", "||",
    "<", ">", "!", "(", ")", "[", "]", ",", ".", "-",
)
_NUMBER = re.compile(r"\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_NAME = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "\\": "\\", "'": "'", '"': '"'}

LITERALS = {
    "true": True, "True": True,
    "false": False, "False": False,
    "null": None, "None": None, "undefined": None,
}
WORD_OPERATORS = {"and": "&&", "or": "||", "not": "!"}


@dataclass
class Token:
    kind: str  # num, str, name, op, eof
    value: Any
    pos: int


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch in "'\"":
            value, i = _read_string(text, i)
            tokens.append(Token("str", value, i))
            continue

        match = _NUMBER.match(text, i)
        if match:
            raw = match.group(0)
            number = float(raw) if any(c in raw for c in ".eE") else int(raw)
            tokens.append(Token("num", number, i))
            i = match.end()
            continue

        match = _NAME.match(text, i)
        if match:
            word = match.group(0)
            if word in WORD_OPERATORS:
                tokens.append(Token("op", WORD_OPERATORS[word], i))
            else:
                tokens.append(Token("name", word, i))
            i = match.end()
            continue

        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token("op", op, i))
                i += len(op)
                break
        else:
            raise ExpressionSyntaxError(f"Unexpected character {ch!r} at position {i}")

    tokens.append(Token("eof", None, len(text)))
    return tokens


def _read_string(text: str, start: int) -> Tuple[str, int]:
    quote = text[start]
    chars = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            chars.append(_ESCAPES.get(text[i + 1], text[i + 1]))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise ExpressionSyntaxError(f"Unterminated string starting at position {start}")


# ─── AST ──────────────────────────────────────────────────────

@dataclass
class Literal:
    value: Any


@dataclass
class Name:
    id: str


@dataclass
class ArrayLiteral:
    items: List[Any]


@dataclass
class UnaryOp:
    op: str
    operand: Any


@dataclass
class LogicalOp:
    op: str
    left: Any
    right: Any


@dataclass
class Compare:
    op: str
    left: Any
    right: Any


@dataclass
class Length:
    target: Any


@dataclass
class MethodCall:
    target: Any
    method: str
    args: List[Any] = field(default_factory=list)


@dataclass
class Index:
    target: Any
    index: Any


COMPARISON_OPERATORS = ("==", "!=", "===", "!==", "<", "<=", ">", ">=")


# ─── Parser ───────────────────────────────────────────────────

class Parser:
    """Recursive-descent parser producing the AST above.

    ``allowed_names`` is the closed set of variable names the expression
    may reference; any other identifier is a syntax error.
    """

    def __init__(self, tokens: List[Token], allowed_names: Sequence[str] = ()):
        self._tokens = tokens
        self._pos = 0
        self._allowed = set(allowed_names)

    @property
    def _current(self) -> Token:
        return self._tokens[self._pos]

    def _advance(self) -> Token:
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _accept(self, *ops: str) -> Optional[str]:
        token = self._current
        if token.kind == "op" and token.value in ops:
            self._pos += 1
            return token.value
        return None

    def _expect(self, op: str) -> None:
        if not self._accept(op):
            token = self._current
            raise ExpressionSyntaxError(
                f"Expected {op!r} at position {token.pos}, found {token.value!r}"
            )

    def parse(self) -> Any:
        if self._current.kind == "eof":
            raise ExpressionSyntaxError("Empty expression")
        node = self._or()
        if self._current.kind != "eof":
            token = self._current
            raise ExpressionSyntaxError(f"Unexpected {token.value!r} at position {token.pos}")
        return node

    def _or(self) -> Any:
        node = self._and()
        while self._accept("||"):
            node = LogicalOp("||", node, self._and())
        return node

    def _and(self) -> Any:
        node = self._not()
        while self._accept("&&"):
            node = LogicalOp("&&", node, self._not())
        return node

    def _not(self) -> Any:
        if self._accept("!"):
            return UnaryOp("!", self._not())
        return self._comparison()

    def _comparison(self) -> Any:
        left = self._unary()
        op = self._accept(*COMPARISON_OPERATORS)
        if op is None:
            return left
        node = Compare(op, left, self._unary())
        if self._current.kind == "op" and self._current.value in COMPARISON_OPERATORS:
            raise ExpressionSyntaxError(
                f"Chained comparison at position {self._current.pos}; use && to combine"
            )
        return node

    def _unary(self) -> Any:
        if self._accept("-"):
            return UnaryOp("-", self._unary())
        return self._postfix()

    def _postfix(self) -> Any:
        node = self._primary()
        while True:
            if self._accept("."):
                token = self._advance()
                if token.kind != "name":
                    raise ExpressionSyntaxError(f"Expected property name at position {token.pos}")
                if token.value == "length":
                    node = Length(node)
                elif token.value in METHODS:
                    self._expect("(")
                    node = MethodCall(node, token.value, self._arguments(")"))
                else:
                    raise ExpressionSyntaxError(
                        f"Property or method {token.value!r} is not allowed"
                    )
            elif self._accept("["):
                index = self._or()
                self._expect("]")
                node = Index(node, index)
            else:
                return node

    def _arguments(self, closing: str) -> List[Any]:
        args: List[Any] = []
        if self._accept(closing):
            return args
        while True:
            args.append(self._or())
            if self._accept(closing):
                return args
            self._expect(",")

    def _primary(self) -> Any:
        token = self._advance()
        if token.kind in ("num", "str"):
            return Literal(token.value)
        if token.kind == "name":
            if token.value in LITERALS:
                return Literal(LITERALS[token.value])
            if token.value in self._allowed:
                return Name(token.value)
            raise ExpressionSyntaxError(f"Unknown identifier {token.value!r}")
        if token.kind == "op" and token.value == "(":
            node = self._or()
            self._expect(")")
            return node
        if token.kind == "op" and token.value == "[":
            return ArrayLiteral(self._arguments("]"))
        if token.kind == "eof":
            raise ExpressionSyntaxError("Unexpected end of expression")
        raise ExpressionSyntaxError(f"Unexpected {token.value!r} at position {token.pos}")


def parse_expression(text: str, allowed_names: Sequence[str] = ()) -> Any:
    return Parser(tokenize(text), allowed_names).parse()


# ─── Value semantics ──────────────────────────────────────────

def truthy(value: Any) -> bool:
    """Truthiness of the editor's expression language (empty arrays are true)."""
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if text == "":
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def strict_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def loose_equal(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    scalar = (str, int, float, bool)
    if isinstance(left, scalar) and isinstance(right, scalar):
        return to_number(left) == to_number(right)
    return strict_equal(left, right)


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "===":
        return strict_equal(left, right)
    if op == "!==":
        return not strict_equal(left, right)
    if op == "==":
        return loose_equal(left, right)
    if op == "!=":
        return not loose_equal(left, right)

    if isinstance(left, str) and isinstance(right, str):
        a, b = left, right
    else:
        a, b = to_number(left), to_number(right)
        if math.isnan(a) or math.isnan(b):
            return False
    if op == "<":
        return a < b
    if op == "<=":
        return a <= b
    if op == ">":
        return a > b
    return a >= b


def _require_str(method: str, target: Any) -> str:
    if not isinstance(target, str):
        raise ExpressionEvaluationError(
            f"{method}() is not available on {type(target).__name__}"
        )
    return target


def _includes(target: Any, needle: Any = None) -> bool:
    if isinstance(target, list):
        return any(strict_equal(item, needle) for item in target)
    return to_display_string(needle) in _require_str("includes", target)


def _index_of(target: Any, needle: Any = None) -> int:
    if isinstance(target, list):
        for i, item in enumerate(target):
            if strict_equal(item, needle):
                return i
        return -1
    return _require_str("indexOf", target).find(to_display_string(needle))


def _to_string(target: Any) -> str:
    if isinstance(target, list):
        return ",".join(to_display_string(item) for item in target)
    return to_display_string(target)


METHODS: Dict[str, Callable[..., Any]] = {
    "includes": _includes,
    "indexOf": _index_of,
    "startsWith": lambda t, s="": _require_str("startsWith", t).startswith(to_display_string(s)),
    "endsWith": lambda t, s="": _require_str("endsWith", t).endswith(to_display_string(s)),
    "toLowerCase": lambda t: _require_str("toLowerCase", t).lower(),
    "toUpperCase": lambda t: _require_str("toUpperCase", t).upper(),
    "trim": lambda t: _require_str("trim", t).strip(),
    "toString": _to_string,
}


# ─── Interpreter ──────────────────────────────────────────────

def interpret(node: Any, env: Mapping[str, Any]) -> Any:
    """Evaluate a parsed expression against bound variables."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, Name):
        return env.get(node.id)
    if isinstance(node, ArrayLiteral):
        return [interpret(item, env) for item in node.items]
    if isinstance(node, LogicalOp):
        left = interpret(node.left, env)
        if node.op == "&&":
            return interpret(node.right, env) if truthy(left) else left
        return left if truthy(left) else interpret(node.right, env)
    if isinstance(node, UnaryOp):
        operand = interpret(node.operand, env)
        if node.op == "!":
            return not truthy(operand)
        return -to_number(operand)
    if isinstance(node, Compare):
        return _compare(node.op, interpret(node.left, env), interpret(node.right, env))
    if isinstance(node, Length):
        target = interpret(node.target, env)
        return len(target) if isinstance(target, (str, list)) else None
    if isinstance(node, MethodCall):
        target = interpret(node.target, env)
        args = [interpret(arg, env) for arg in node.args]
        try:
            return METHODS[node.method](target, *args)
        except TypeError as e:
            raise ExpressionEvaluationError(f"Bad arguments for {node.method}(): {e}")
    if isinstance(node, Index):
        target = interpret(node.target, env)
        key = interpret(node.index, env)
        if isinstance(target, (list, str)) and _is_number(key) and float(key).is_integer():
            i = int(key)
            return target[i] if 0 <= i < len(target) else None
        if isinstance(target, dict) and isinstance(key, str):
            return target.get(key)
        return None
    raise ExpressionEvaluationError(f"Unsupported expression node {type(node).__name__}")


# ─── Evaluator ────────────────────────────────────────────────

@dataclass
class ConditionResult:
    """Outcome of a condition plus the referenced values, for audit logs."""

    result: bool
    resolved_values: Dict[str, Any] = field(default_factory=dict)


class ConditionEvaluator:
    """Evaluates condition expressions against the execution output map."""

    def __init__(self, max_length: Optional[int] = None):
        self._max_length = max_length

    def pre_validate(self, expression: str) -> None:
        """Validate the raw expression before any value is looked up.

        Raises:
            ValidationError: If the expression is outside the grammar
        """
        if self._max_length and len(expression) > self._max_length:
            raise ValidationError(
                f"Expression is longer than {self._max_length} characters"
            )
        placeholders: List[str] = []

        def _placeholder(_match: "re.Match[str]") -> str:
            placeholders.append(f"__ref{len(placeholders)}")
            return placeholders[-1]

        parse_expression(TEMPLATE_PATTERN.sub(_placeholder, expression), placeholders)

    def substitute(self, expression: str, outputs: Outputs) -> Tuple[str, Dict[str, Any], Dict[str, Any]]:
        """Replace reference tokens with generated names.

        Returns:
            (transformed expression, bound variables, resolved values by reference text)
        """
        variables: Dict[str, Any] = {}
        resolved: Dict[str, Any] = {}

        def _bind(match: "re.Match[str]") -> str:
            found, value = lookup_reference(match.group(1), match.group(2), outputs)
            if not found:
                logger.debug("condition_reference_unresolved", reference=match.group(0))
                return match.group(0)
            name = f"__v{len(variables)}"
            variables[name] = value
            resolved[match.group(2)] = value
            return name

        return TEMPLATE_PATTERN.sub(_bind, expression), variables, resolved

    def evaluate(self, expression: Any, outputs: Outputs) -> ConditionResult:
        """Evaluate a condition; never raises."""
        if isinstance(expression, bool):
            return ConditionResult(expression)
        if not isinstance(expression, str):
            return ConditionResult(truthy(expression))

        try:
            self.pre_validate(expression)
        except ValidationError as e:
            logger.warning("condition_prevalidation_failed", error=str(e))
            return ConditionResult(False)

        try:
            transformed, variables, resolved = self.substitute(expression, outputs)
            tree = parse_expression(transformed, list(variables))
            result = truthy(interpret(tree, variables))
        except ValidationError as e:
            logger.warning("condition_validation_failed", error=str(e))
            return ConditionResult(False)
        except Exception as e:
            logger.error("condition_evaluation_failed", error=str(e))
            return ConditionResult(False)

        logger.info("condition_evaluated", result=result)
        return ConditionResult(result, resolved)


def evaluate_condition(expression: Any, outputs: Outputs, max_length: Optional[int] = None) -> ConditionResult:
    """Convenience wrapper around ConditionEvaluator.evaluate."""
    return ConditionEvaluator(max_length=max_length).evaluate(expression, outputs)
