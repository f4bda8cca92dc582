from __future__ import annotations

import ast
import logging
import math
import operator
import re
from typing import Any, Callable

from ledgerlens.core.errors import EvaluatorRejected

logger = logging.getLogger(__name__)

_MAX_EXPRESSION_CHARS = 500
_MAX_EXPONENT = 1000
# Upper bound on the decimal digits a single power may produce.
_MAX_RESULT_DIGITS = 400
_MAX_ROUND_DIGITS = 100

_FUNCTIONS: dict[str, Callable[..., Any]] = {
    "sqrt": math.sqrt,
    "abs": abs,
    "round": round,
    "min": min,
    "max": max,
    "floor": math.floor,
    "ceil": math.ceil,
    "pow": pow,
    "log": math.log,
    "exp": math.exp,
}
_CONSTANTS: dict[str, float] = {"pi": math.pi, "e": math.e}

_BINARY: dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY: dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_NAMES = "|".join(sorted([*_FUNCTIONS, *_CONSTANTS], key=len, reverse=True))
_WHITELISTED_NAME = re.compile(rf"\b(?:math\.)?(?:{_NAMES})\b")
_ALLOWED_RESIDUE = re.compile(r"^[0-9.+\-*/%(),\s]*$")

_FUNC_NAMES = "|".join(sorted(_FUNCTIONS, key=len, reverse=True))
_PERCENT_OF = re.compile(r"(\d+(?:\.\d+)?)\s*(?:%|percent)\s*of\s+(\d+(?:\.\d+)?)", re.IGNORECASE)
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}\b)")
_SPAN = re.compile(rf"(?:\b(?:math\.)?(?:{_FUNC_NAMES})\b|\d+(?:\.\d+)?|\*\*|[-+*/%().,\s])+")
_OPERATOR = re.compile(r"[-+*/%]|\b(?:math\.)?(?:" + _FUNC_NAMES + r")\b")


def _check_characters(expression: str) -> None:
    # After removing whitelisted names only digits, operators and grouping may remain.
    residue = _WHITELISTED_NAME.sub(" ", expression)
    if not _ALLOWED_RESIDUE.match(residue):
        raise EvaluatorRejected("expression contains disallowed characters")


def _check_power(base: Any, exponent: Any) -> None:
    if isinstance(exponent, (int, float)) and abs(exponent) > _MAX_EXPONENT:
        raise EvaluatorRejected("exponent out of range")
    if not isinstance(base, (int, float)) or not isinstance(exponent, (int, float)) or base == 0:
        return
    # Nested powers grow the base, so the size of the result is bounded as well.
    if exponent * math.log10(abs(base)) > _MAX_RESULT_DIGITS:
        raise EvaluatorRejected("result out of range")


def _resolve_callable(node: ast.AST) -> str:
    if isinstance(node, ast.Name) and node.id in _FUNCTIONS:
        return node.id
    if (
        isinstance(node, ast.Attribute)
        and isinstance(node.value, ast.Name)
        and node.value.id == "math"
        and node.attr in _FUNCTIONS
    ):
        return node.attr
    raise EvaluatorRejected("call to non-whitelisted function")


def _eval(node: ast.AST) -> Any:
    if isinstance(node, ast.Expression):
        return _eval(node.body)
    if isinstance(node, ast.Constant):
        # bool is an int subclass; reject it along with strings and bytes.
        if type(node.value) in (int, float):
            return node.value
        raise EvaluatorRejected("non-numeric literal")
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY:
        return _UNARY[type(node.op)](_eval(node.operand))
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY:
        left = _eval(node.left)
        right = _eval(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return _BINARY[type(node.op)](left, right)
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if (
        isinstance(node, ast.Attribute)
        and isinstance(node.value, ast.Name)
        and node.value.id == "math"
        and node.attr in _CONSTANTS
    ):
        return _CONSTANTS[node.attr]
    if isinstance(node, ast.Call):
        name = _resolve_callable(node.func)
        if node.keywords:
            raise EvaluatorRejected("keyword arguments are not allowed")
        if any(isinstance(arg, ast.Starred) for arg in node.args):
            raise EvaluatorRejected("argument unpacking is not allowed")
        args = [_eval(arg) for arg in node.args]
        if name == "pow":
            if len(args) != 2:
                raise EvaluatorRejected("pow takes exactly two arguments")
            _check_power(args[0], args[1])
        if name == "round" and len(args) > 1:
            if not isinstance(args[1], int) or abs(args[1]) > _MAX_ROUND_DIGITS:
                raise EvaluatorRejected("round precision out of range")
        return _FUNCTIONS[name](*args)
    raise EvaluatorRejected(f"unsupported element: {type(node).__name__}")


def evaluate(expression: str) -> float:
    text = (expression or "").strip()
    if not text:
        raise EvaluatorRejected("empty expression")
    if len(text) > _MAX_EXPRESSION_CHARS:
        raise EvaluatorRejected("expression too long")
    _check_characters(text)
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise EvaluatorRejected("expression is not valid arithmetic") from exc
    try:
        result = _eval(tree)
        if isinstance(result, bool) or not isinstance(result, (int, float)):
            raise EvaluatorRejected("result is not a number")
        value = float(result)
    except EvaluatorRejected:
        raise
    except (ArithmeticError, ValueError, TypeError, RecursionError) as exc:
        # ZeroDivisionError and OverflowError are ArithmeticError subclasses.
        raise EvaluatorRejected(f"evaluation failed: {type(exc).__name__}") from exc
    if not math.isfinite(value):
        raise EvaluatorRejected("result is not finite")
    logger.debug("calculator_evaluated expression=%s result=%s", text, value)
    return value


def extract_expression(question: str) -> str | None:
    # Normalise common phrasing before looking for the arithmetic span.
    text = _THOUSANDS.sub("", question or "")
    text = _PERCENT_OF.sub(lambda m: f"({m.group(1)}/100*{m.group(2)})", text)
    text = text.replace("×", "*").replace("÷", "/").replace("^", "**")
    text = re.sub(r"(?<=\d)\s*[xX]\s*(?=\d)", "*", text)

    best: str | None = None
    for match in _SPAN.finditer(text):
        span = match.group(0).strip().rstrip(".,").strip()
        if not re.search(r"\d", span) or not _OPERATOR.search(span):
            continue
        if best is None or len(span) > len(best):
            best = span
    return best
