# expressions.py
# `${{ scope.name }}` substitution for runs-on labels and capability params.
# Only dotted lookups are supported, there are no operators or functions.
from __future__ import annotations

import re
from typing import Any, Mapping

from .errors import ConfigError

_EXPR = re.compile(r"\$\{\{\s*([A-Za-z_][\w-]*(?:\.[A-Za-z_][\w-]*)*)\s*\}\}")


def _lookup(path: str, context: Mapping[str, Any]) -> Any:
    cur: Any = context
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur:
            raise ConfigError(f"Unknown expression reference: {path}", known=sorted(context))
        cur = cur[part]
    return cur


def render(value: Any, context: Mapping[str, Any]) -> Any:
    """
    Render expressions inside `value`.

    Strings are substituted; lists and dicts are rendered recursively;
    anything else is returned unchanged. A string that is exactly one
    expression keeps the referenced value's type.
    """
    if isinstance(value, str):
        whole = _EXPR.fullmatch(value.strip())
        if whole:
            return _lookup(whole.group(1), context)
        return _EXPR.sub(lambda m: str(_lookup(m.group(1), context)), value)
    if isinstance(value, Mapping):
        return {k: render(v, context) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [render(v, context) for v in value]
    return value


def has_expression(value: str) -> bool:
    return bool(_EXPR.search(value))
