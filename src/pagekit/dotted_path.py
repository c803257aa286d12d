"""Dotted path lookup for template references and response mapping."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List


class _Missing:
    """Marker for a path that does not resolve.

    Distinct from ``None`` so a present-but-null value survives lookup.
    """

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "undefined"

    def __copy__(self) -> "_Missing":
        return self

    def __deepcopy__(self, memo: dict) -> "_Missing":
        return self


MISSING = _Missing()

_BRACKET = re.compile(r"\[([^\[\]]*)\]")


@dataclass
class PathSyntaxError(Exception):
    message: str
    path: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.message} (path={self.path!r})"


def split_path(path: str) -> List[str]:
    """Split ``a.b[0].c`` into ``["a", "b", "0", "c"]``.

    Empty segments (``a..b``, leading/trailing dots) are dropped.
    """
    if not isinstance(path, str):
        raise PathSyntaxError("path must be string", repr(path))
    normalized = _BRACKET.sub(lambda m: "." + m.group(1).strip().strip("'\""), path)
    return [part.strip() for part in normalized.split(".") if part.strip()]


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        if segment in current:
            return current[segment]
        return MISSING
    if isinstance(current, (list, tuple)):
        if not segment.isdigit():
            return MISSING
        idx = int(segment)
        if idx >= len(current):
            return MISSING
        return current[idx]
    return MISSING


def lookup(doc: Any, path: str) -> Any:
    """Resolve ``path`` against ``doc``; return ``MISSING`` when any segment misses.

    A path that is itself a top-level key of a mapping resolves to that key
    before being split, so literal dotted keys stay addressable.
    """
    if isinstance(doc, dict) and path in doc:
        return doc[path]
    segments = split_path(path)
    if not segments:
        return MISSING
    current = doc
    for segment in segments:
        current = _step(current, segment)
        if current is MISSING:
            return MISSING
    return current

