"""Template evaluator for ``{{ path }}`` references."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List

from pagekit.canonical_json import compact_dumps
from pagekit.dotted_path import MISSING, lookup


UNDEFINED = MISSING

_PURE_REF = re.compile(r"^\s*\{\{([^{}]+)\}\}\s*$")
_REF = re.compile(r"\{\{([^{}]+)\}\}")


@dataclass
class ExpressionEvalError(Exception):
    code: str
    message: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _check_ctx(ctx: Any) -> None:
    if not isinstance(ctx, dict):
        raise ExpressionEvalError("EXPR_CTX_INVALID", "context must be object", "$")


def _to_text(value: Any) -> str:
    if value is MISSING or value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    if isinstance(value, (int, float)):
        return json.dumps(value)
    if isinstance(value, (dict, list, tuple)):
        try:
            return compact_dumps(value)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def template_refs(template: Any) -> List[str]:
    """Paths referenced by a template, in order of appearance."""
    if not isinstance(template, str):
        return []
    return [match.group(1).strip() for match in _REF.finditer(template)]


def evaluate(template: Any, ctx: dict) -> Any:
    """Evaluate ``template`` against ``ctx``.

    - non-strings and strings without ``{{`` come back unchanged;
    - a lone ``{{ path }}`` returns the resolved value with its type, or ``UNDEFINED``;
    - anything else interpolates each reference as text, misses becoming ``""``.
    """
    if not isinstance(template, str):
        return template
    _check_ctx(ctx)

    pure = _PURE_REF.match(template)
    if pure:
        return lookup(ctx, pure.group(1).strip())

    if "{{" not in template:
        return template

    return _REF.sub(lambda m: _to_text(lookup(ctx, m.group(1).strip())), template)


def to_jsonable(value: Any) -> Any:
    if value is MISSING:
        return None
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


def evaluate_props(props: Any, ctx: dict) -> Dict[str, Any]:
    if not isinstance(props, dict):
        return {}
    return {key: evaluate(value, ctx) for key, value in props.items()}


def computed_node(node: dict, ctx: dict) -> dict:
    """Live-preview copy of ``node``: props and label evaluated, children recursed."""
    _check_ctx(ctx)
    out = {key: value for key, value in node.items() if key not in ("props", "label", "children")}
    out["props"] = to_jsonable(evaluate_props(node.get("props"), ctx))
    if "label" in node:
        out["label"] = to_jsonable(evaluate(node.get("label"), ctx))
    children = node.get("children")
    if isinstance(children, list):
        out["children"] = [computed_node(child, ctx) for child in children if isinstance(child, dict)]
    return out
