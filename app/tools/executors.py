"""Homework tools the assistant can call.

Each tool returns plain text that is folded back into the conversation.
Ordinary misses (bad expression, no article, translator not configured)
come back as explanatory text; unexpected HTTP failures raise.
"""
import ast
import logging
import math
import operator
from typing import Any, Callable, Union

import httpx

from app.config import Settings

logger = logging.getLogger(__name__)

Number = Union[int, float]

LANGUAGE_CODES = {"swedish": "SV", "english": "EN"}

WIKIPEDIA_USER_AGENT = "family-homework-helper/1.0"

_BINARY_OPERATORS: dict[type, Callable[[Any, Any], Number]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPERATORS: dict[type, Callable[[Any], Number]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

_FUNCTIONS: dict[str, Callable[..., Number]] = {
    "sqrt": math.sqrt,
    "abs": abs,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "log": math.log,
}

_CONSTANTS: dict[str, float] = {"pi": math.pi, "e": math.e}

# Keeps "9**9**9" and nested powers from hanging the worker
MAX_EXPONENT = 1000
MAX_RESULT_DIGITS = 1000
MAX_RESULT_BITS = math.ceil(MAX_RESULT_DIGITS * math.log2(10))


class ExpressionError(ValueError):
    """Expression uses something other than plain arithmetic."""


def _check_power(base: Number, exponent: Number) -> None:
    if abs(exponent) > MAX_EXPONENT:
        raise ExpressionError("Exponent too large")
    if abs(base) > 1 and exponent > 0 and exponent * math.log10(abs(base)) > MAX_RESULT_DIGITS:
        raise ExpressionError("Result too large")


def _check_result(value: Any) -> Number:
    if isinstance(value, complex):
        raise ExpressionError("Result is not a real number")
    if isinstance(value, int) and value.bit_length() > MAX_RESULT_BITS:
        raise ExpressionError("Result too large")
    return value


def _evaluate_node(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _evaluate_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return _check_result(node.value)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate_node(node.left)
        right = _evaluate_node(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return _check_result(_BINARY_OPERATORS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _check_result(_UNARY_OPERATORS[type(node.op)](_evaluate_node(node.operand)))
    if isinstance(node, ast.Name) and node.id in _CONSTANTS:
        return _CONSTANTS[node.id]
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in _FUNCTIONS
        and not node.keywords
    ):
        args = [_evaluate_node(arg) for arg in node.args]
        return _check_result(_FUNCTIONS[node.func.id](*args))
    raise ExpressionError(f"Unsupported element: {type(node).__name__}")


def evaluate_expression(expression: str) -> Number:
    """
    Evaluate an arithmetic expression without eval().

    Supports numbers, + - * / // % ** (also ^ as power), parentheses,
    sqrt/abs/round/floor/ceil/sin/cos/tan/log and the constants pi and e.

    Raises:
        ExpressionError: For anything outside that grammar
        ArithmeticError: For e.g. division by zero
    """
    normalized = expression.replace("^", "**").replace("×", "*").replace("÷", "/")
    try:
        tree = ast.parse(normalized.strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid syntax: {e.msg}") from e
    return _evaluate_node(tree)


def _format_number(value: Number) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    if isinstance(value, float):
        return f"{value:.10g}"
    return str(value)


def calculate(expression: str) -> str:
    """Tool: calculate."""
    try:
        result = _format_number(evaluate_expression(expression))
    except (ExpressionError, ArithmeticError, TypeError, ValueError) as e:
        logger.debug(f"Calculation rejected: expression={expression!r}, reason={e}")
        return (
            f'Could not calculate "{expression}". '
            "Check that it is a valid mathematical expression."
        )
    return f'Calculation of "{expression}" = {result}'


def translate(
    text: str,
    from_language: str,
    to_language: str,
    *,
    http: httpx.Client,
    settings: Settings,
) -> str:
    """Tool: translate between Swedish and English via DeepL."""
    source = LANGUAGE_CODES.get(from_language.lower())
    target = LANGUAGE_CODES.get(to_language.lower())
    if source is None or target is None:
        return (
            f"Can only translate between Swedish and English, "
            f"not from {from_language} to {to_language}."
        )
    if source == target:
        return f'Translation: "{text}"'
    if not settings.DEEPL_API_KEY:
        return (
            f'Translation from {from_language} to {to_language}: "{text}" '
            "(translator is not configured)"
        )

    response = http.post(
        settings.DEEPL_API_URL,
        headers={"Authorization": f"DeepL-Auth-Key {settings.DEEPL_API_KEY}"},
        json={"text": [text], "source_lang": source, "target_lang": target},
    )
    response.raise_for_status()
    translations = response.json().get("translations") or []
    if not translations:
        return f'Could not translate "{text}". Try rephrasing it.'
    return f'Translation: "{translations[0].get("text") or text}"'


def _wikipedia_api(settings: Settings) -> str:
    return f"https://{settings.WIKIPEDIA_LANGUAGE}.wikipedia.org/w/api.php"


def _wikipedia_summary_url(settings: Settings, title: str) -> str:
    slug = title.replace(" ", "_")
    return f"https://{settings.WIKIPEDIA_LANGUAGE}.wikipedia.org/api/rest_v1/page/summary/{slug}"


def _wikipedia_search(http: httpx.Client, settings: Settings, query: str, limit: int) -> dict[str, Any]:
    response = http.get(
        _wikipedia_api(settings),
        params={
            "action": "query",
            "list": "search",
            "srsearch": query,
            "srlimit": limit,
            "srinfo": "suggestion",
            "format": "json",
        },
        headers={"User-Agent": WIKIPEDIA_USER_AGENT},
    )
    response.raise_for_status()
    return response.json().get("query") or {}


def check_spelling(word: str, *, http: httpx.Client, settings: Settings) -> str:
    """
    Tool: best-effort spelling feedback.

    Uses the encyclopedia's search suggestion as the proposed spelling.
    """
    result = _wikipedia_search(http, settings, word, limit=1)
    suggestion = (result.get("searchinfo") or {}).get("suggestion")
    if suggestion and suggestion.lower() != word.lower():
        return f'"{word}" may be misspelled. Did you mean "{suggestion}"?'
    if result.get("search"):
        return f'"{word}" looks correctly spelled.'
    return f'Could not find any spelling suggestion for "{word}".'


def truncate_excerpt(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def search_information(query: str, subject: str, *, http: httpx.Client, settings: Settings) -> str:
    """Tool: look up facts in the encyclopedia, first hit only."""
    result = _wikipedia_search(http, settings, query, limit=1)
    hits = result.get("search") or []
    if not hits:
        return (
            f'Found no information about "{query}" in {subject}. '
            "Try rephrasing the question."
        )

    title = hits[0]["title"]
    response = http.get(
        _wikipedia_summary_url(settings, title),
        headers={"User-Agent": WIKIPEDIA_USER_AGENT},
    )
    if response.status_code == httpx.codes.NOT_FOUND:
        return f'Found no article about "{query}". Try another question.'
    response.raise_for_status()

    extract = response.json().get("extract") or ""
    if not extract:
        return f'The article "{title}" has no summary. Try another question.'
    excerpt = truncate_excerpt(extract, settings.WIKIPEDIA_EXCERPT_CHARS)
    return f'Information about "{query}" ({subject}):\n\n{excerpt}\n\nSource: Wikipedia'
