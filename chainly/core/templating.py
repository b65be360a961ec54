"""
Template & Expression Engine

Node configuration references earlier results in two ways:

- **Templates** build strings. Text outside ``{{ }}`` passes through,
  ``{{path.to.value}}`` is substituted, ``{{json value}}`` serialises a
  sub-value and ``{{lookup obj "key"}}`` does dynamic property access.
  ``{{a.b["key"]}}`` is rewritten to ``{{lookup a.b "key"}}`` before
  compiling. Rendering is done by a sandboxed Jinja2 environment.
- **Expressions** produce typed values for conditions, switches and set
  fields. ``{{`` / ``}}`` are stripped and the rest is evaluated by
  simpleeval with ``&&``, ``||``, ``!``, ``===`` and ``!==`` accepted.

Missing paths resolve to empty output (templates) or ``None``
(expressions). Malformed syntax and expressions that fail while being
evaluated (division by zero, arithmetic on a missing value) raise the
non-retriable ``TemplateSyntaxError`` carrying the offending text.

One ``TemplateEngine`` is built at process start and handed to every
executor; it holds no per-run state.

Example:
    >>> engine = TemplateEngine()
    >>> engine.render("Hello {{user.name}}", {"user": {"name": "Ada"}})
    'Hello Ada'
    >>> engine.evaluate("{{order.total}} > 100 && order.paid", {"order": {"total": 150, "paid": True}})
    True
"""

import ast
import json
import logging
import operator
import re
from collections.abc import Mapping
from typing import Any, Dict, Optional

import jinja2
from jinja2.sandbox import SandboxedEnvironment
from simpleeval import (
    DEFAULT_OPERATORS,
    DISALLOW_METHODS,
    EvalWithCompoundTypes,
    FeatureNotAvailable,
    FunctionNotDefined,
)

from .exceptions import TemplateSyntaxError

logger = logging.getLogger(__name__)

# {{path["key"]}} -> {{lookup path "key"}}
BRACKET_NOTATION = re.compile(r"""\{\{([^}]*?)\[["']([^"']+)["']\]\}\}""")

# {{json foo}} / {{lookup foo "bar"}} -> {{ json(foo) }} / {{ lookup(foo, "bar") }}
HELPER_CALL = re.compile(r"\{\{\s*(json|lookup)\s+(.+?)\s*\}\}")
HELPER_ARG = re.compile(r""""[^"]*"|'[^']*'|\S+""")

PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
DELIMITERS = re.compile(r"\{\{|\}\}")
STRING_LITERAL = re.compile(r""""(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*'""")

_JS_OPERATORS = (
    (re.compile(r"!=="), "!="),
    (re.compile(r"==="), "=="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
)

_LITERALS = {"true": True, "false": False, "null": None, "undefined": None}

SAFE_FUNCTIONS = {
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "len": len,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
}


# ============================================================================
# HELPERS
# ============================================================================

def json_helper(value: Any) -> str:
    if isinstance(value, jinja2.Undefined):
        value = None
    return json.dumps(value, indent=2, default=str)


def lookup_helper(obj: Any, key: Any) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    if isinstance(obj, (list, tuple)):
        try:
            return obj[int(key)]
        except (ValueError, IndexError):
            return None
    return None


def _finalize(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def to_display_string(value: Any) -> str:
    """String form of an expression result when spliced into text."""
    rendered = _finalize(value)
    return rendered if isinstance(rendered, str) else str(rendered)


def transform_bracket_notation(template: str) -> str:
    return BRACKET_NOTATION.sub(
        lambda m: f'{{{{lookup {m.group(1).strip()} "{m.group(2)}"}}}}',
        template,
    )


def _translate_helper_calls(template: str) -> str:
    def replace(match: re.Match) -> str:
        args = HELPER_ARG.findall(match.group(2))
        return "{{ %s(%s) }}" % (match.group(1), ", ".join(args))

    return HELPER_CALL.sub(replace, template)


def to_expression_syntax(text: str) -> str:
    """
    Turn a template-style condition into a Python expression.

    ``{{`` and ``}}`` are removed and JavaScript-style logical operators are
    rewritten outside string literals.
    """
    stripped = DELIMITERS.sub("", text).strip()

    pieces = []
    last = 0
    for literal in STRING_LITERAL.finditer(stripped):
        pieces.append(_translate_operators(stripped[last:literal.start()]))
        pieces.append(literal.group(0))
        last = literal.end()
    pieces.append(_translate_operators(stripped[last:]))
    return "".join(pieces).strip()


def _translate_operators(code: str) -> str:
    for pattern, replacement in _JS_OPERATORS:
        code = pattern.sub(replacement, code)
    return code


# ============================================================================
# JINJA ENVIRONMENT
# ============================================================================

class _ContextEnvironment(SandboxedEnvironment):
    """
    Dot access on dicts reads keys, never methods.

    Without this ``{{data.items}}`` would render the bound ``dict.items``.
    """

    def getattr(self, obj, attribute):
        if isinstance(obj, Mapping):
            if attribute in obj:
                return obj[attribute]
            return self.undefined(obj=obj, name=attribute)
        return super().getattr(obj, attribute)


# ============================================================================
# EXPRESSION EVALUATOR
# ============================================================================

def _tolerant(op):
    def compare(left, right):
        try:
            return op(left, right)
        except TypeError:
            return False
    return compare


_OPERATORS = dict(DEFAULT_OPERATORS)
_OPERATORS.update({
    ast.Lt: _tolerant(operator.lt),
    ast.LtE: _tolerant(operator.le),
    ast.Gt: _tolerant(operator.gt),
    ast.GtE: _tolerant(operator.ge),
    ast.In: _tolerant(lambda a, b: a in b),
    ast.NotIn: _tolerant(lambda a, b: a not in b),
})


class _ContextEvaluator(EvalWithCompoundTypes):
    """simpleeval with lenient lookups: missing names, keys and attributes are None."""

    def __init__(self, names: Dict[str, Any]):
        super().__init__(operators=_OPERATORS, functions=SAFE_FUNCTIONS, names=names)

    def _eval_name(self, node):
        if node.id in self.names:
            return self.names[node.id]
        if node.id in _LITERALS:
            return _LITERALS[node.id]
        if node.id in self.functions:
            return self.functions[node.id]
        return None

    def _eval_attribute(self, node):
        value = self._eval(node.value)
        if isinstance(value, Mapping):
            return value.get(node.attr)
        if value is None:
            return None
        if node.attr == "length" and isinstance(value, (list, tuple, str)):
            return len(value)
        if node.attr.startswith("_"):
            raise FeatureNotAvailable(f"Access to private attribute '{node.attr}' is not allowed")
        if node.attr in DISALLOW_METHODS:
            raise FeatureNotAvailable(f"Method '{node.attr}' is not allowed")
        return getattr(value, node.attr, None)

    def _eval_subscript(self, node):
        container = self._eval(node.value)
        key = self._eval(node.slice)
        if container is None:
            return None
        try:
            return container[key]
        except (KeyError, IndexError, TypeError):
            return None


# ============================================================================
# TEMPLATE ENGINE
# ============================================================================

class TemplateEngine:
    """Shared, stateless renderer/evaluator used by every node executor."""

    def __init__(self):
        # Only {{ }} is syntax; block, comment and line markers are never
        # expected in node configuration text.
        self._env = _ContextEnvironment(
            block_start_string="\x00{%",
            block_end_string="%}\x00",
            comment_start_string="\x00{#",
            comment_end_string="#}\x00",
            undefined=jinja2.ChainableUndefined,
            autoescape=False,
            finalize=_finalize,
            keep_trailing_newline=True,
        )
        self._env.globals.update({"json": json_helper, "lookup": lookup_helper})

    def prepare(self, template: str) -> str:
        """Apply the bracket-notation and helper-call rewrites."""
        return _translate_helper_calls(transform_bracket_notation(template))

    def render(self, template: Optional[str], context: Mapping[str, Any]) -> str:
        """Render a template string against the context."""
        if template is None:
            return ""
        if not isinstance(template, str):
            template = str(template)
        if "{{" not in template:
            return template

        source = self.prepare(template)
        try:
            compiled = self._env.from_string(source)
            return compiled.render(dict(context))
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateSyntaxError(f"Invalid template: {exc.message}", fragment=template) from exc
        except jinja2.TemplateError as exc:
            raise TemplateSyntaxError(f"Template could not be rendered: {exc}", fragment=template) from exc

    def evaluate(self, expression: Any, context: Mapping[str, Any]) -> Any:
        """
        Evaluate an expression to a typed value.

        Non-string input is returned unchanged so numeric or boolean
        configuration values can be passed straight through.
        """
        if not isinstance(expression, str):
            return expression
        source = to_expression_syntax(expression)
        if not source:
            return None

        evaluator = _ContextEvaluator(dict(context))
        try:
            return evaluator.eval(source)
        except SyntaxError as exc:
            raise TemplateSyntaxError(f"Invalid expression: {exc.msg}", fragment=expression) from exc
        except (FeatureNotAvailable, FunctionNotDefined) as exc:
            raise TemplateSyntaxError(f"Unsupported expression: {exc}", fragment=expression) from exc
        except Exception as exc:
            raise TemplateSyntaxError(
                f"Failed to evaluate expression: {type(exc).__name__}: {exc}", fragment=expression
            ) from exc

    def interpolate(self, text: str, context: Mapping[str, Any]) -> str:
        """Replace every ``{{expr}}`` in ``text`` with its evaluated value."""
        return PLACEHOLDER.sub(
            lambda m: to_display_string(self.evaluate(m.group(1), context)),
            text,
        )

    def evaluate_value(self, value: Any, context: Mapping[str, Any]) -> Any:
        """
        Resolve a free-form field value.

        - no placeholders: JSON-decoded if possible, else the raw string
        - a single ``{{expr}}``: the typed result of the expression
        - mixed text: each placeholder evaluated and spliced in
        """
        if not isinstance(value, str):
            return value
        if not PLACEHOLDER.search(value):
            try:
                return json.loads(value)
            except ValueError:
                return value

        single = re.fullmatch(r"\{\{([^}]+)\}\}", value.strip())
        if single:
            return self.evaluate(single.group(1), context)
        return self.interpolate(value, context)
