"""
Execution Context

The context is the bag of named variables threaded from node to node during
a run. It is a plain JSON-compatible dict so it can be memoised by the step
runner, stored on RunStep rows and restored on resume.

Contexts are never mutated in place. Every helper here returns a new dict:

    >>> ctx = {"trigger": {"id": 1}}
    >>> new_ctx = with_variable(ctx, "http", {"status": 200})
    >>> ctx
    {'trigger': {'id': 1}}
    >>> list(new_ctx)
    ['trigger', 'http']
"""

import base64
import copy
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Optional

Context = Dict[str, Any]

_PATH_TOKEN = re.compile(r"""([^.\[\]]+)|\[\s*(?:"([^"]*)"|'([^']*)'|(\d+))\s*\]""")


def with_variable(context: Mapping[str, Any], name: str, value: Any) -> Context:
    """Return a copy of ``context`` with ``name`` added or overwritten."""
    updated = dict(context)
    updated[name] = value
    return updated


def without_key(context: Mapping[str, Any], key: str) -> Context:
    """Return a copy of ``context`` without ``key`` (no-op if absent)."""
    return {k: v for k, v in context.items() if k != key}


def merge_context(base: Optional[Mapping[str, Any]], *patches: Optional[Mapping[str, Any]]) -> Context:
    """
    Shallow merge, later patches win.

    ``None`` patches are skipped so callers can pass optional data directly.
    """
    merged: Context = dict(base or {})
    for patch in patches:
        if patch:
            merged.update(patch)
    return merged


def snapshot(context: Mapping[str, Any]) -> Context:
    """Deep, JSON-safe copy used for RunStep and Approval records."""
    return make_json_serializable(copy.deepcopy(dict(context)))


def split_path(path: str) -> list:
    """
    Split ``a.b["c"][0]`` into ``["a", "b", "c", 0]``.

    Surrounding ``{{ }}`` are tolerated.
    """
    path = strip_delimiters(path)
    parts: list = []
    for match in _PATH_TOKEN.finditer(path):
        plain, double_quoted, single_quoted, index = match.groups()
        if plain is not None:
            parts.append(plain.strip())
        elif double_quoted is not None:
            parts.append(double_quoted)
        elif single_quoted is not None:
            parts.append(single_quoted)
        else:
            parts.append(int(index))
    return [p for p in parts if p != ""]


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """
    Walk a dotted/bracket path through nested dicts and lists.

    Missing segments resolve to ``None`` instead of raising.
    """
    current: Any = context
    for part in split_path(path):
        if isinstance(current, Mapping):
            key = str(part) if isinstance(part, int) and str(part) in current else part
            current = current.get(key)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            return None
        if current is None:
            return None
    return current


def strip_delimiters(text: str) -> str:
    """``"{{ a.b }}"`` -> ``"a.b"``"""
    text = text.strip()
    if text.startswith("{{") and text.endswith("}}"):
        text = text[2:-2]
    return text.strip()


def clean_context(context: Mapping[str, Any], hidden_prefixes: Iterable[str] = ("_",)) -> Context:
    """Context without internal bookkeeping keys (``_lastWait``, ``_errorHandlerInfo``...)."""
    prefixes = tuple(hidden_prefixes)
    return {k: v for k, v in context.items() if not k.startswith(prefixes)}


def make_json_serializable(obj: Any) -> Any:
    """
    Recursively convert non-JSON-serializable objects to serializable format.

    Handles:
    - datetime/date -> ISO 8601 string
    - bytes -> base64 string
    - sets and tuples -> lists
    - custom objects -> str(obj)
    """
    if isinstance(obj, Mapping):
        return {str(k): make_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return [make_json_serializable(item) for item in obj]
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, bytes):
        return base64.b64encode(obj).decode('ascii')
    elif obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    else:
        return str(obj)
