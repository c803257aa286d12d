"""Deterministic JSON serialization for page trees and data contexts."""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any

from .dotted_path import MISSING


class CanonicalJsonTypeError(TypeError):
    """Raised when a value is outside the JSON-like value set."""


def _validate(obj: Any, path: str = "$") -> None:
    if obj is MISSING:
        raise CanonicalJsonTypeError(f"Undefined value at {path}")
    if isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(
                    f"Unsupported key type at {path}: {type(key).__name__}"
                )
            _validate(value, f"{path}.{key}")
        return
    if isinstance(obj, (list, tuple)):
        for idx, item in enumerate(obj):
            _validate(item, f"{path}[{idx}]")
        return
    if obj is None or isinstance(obj, (str, int, bool)):
        return
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return
    raise CanonicalJsonTypeError(
        f"Unsupported type at {path}: {type(obj).__name__}"
    )


def find_invalid_value(obj: Any) -> str | None:
    """Describe the first value outside the JSON-like set, or None when there is none."""
    try:
        _validate(obj)
    except (CanonicalJsonTypeError, ValueError) as exc:
        return str(exc)
    return None


def is_json_like(obj: Any) -> bool:
    return find_invalid_value(obj) is None


def reject_non_finite(constant: str) -> Any:
    """``parse_constant`` hook for ``json.loads``: NaN and Infinity are not JSON."""
    raise ValueError(f"Non-finite number not allowed: {constant}")


def canonical_dumps(obj: Any) -> str:
    """Serialize to canonical JSON: sorted keys, no whitespace, non-ASCII kept."""
    _validate(obj)
    return json.dumps(
        obj,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def compact_dumps(obj: Any) -> str:
    """Compact JSON in insertion order, as shown to users in interpolated text."""
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), allow_nan=False)


def tree_hash(tree: Any) -> str:
    """Return the SHA-256 identity of a tree (or any JSON-like value)."""
    data = canonical_dumps(tree).encode("utf-8")
    return f"sha256:{hashlib.sha256(data).hexdigest()}"
