"""Page editor kernel utilities."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, find_invalid_value, is_json_like, reject_non_finite, tree_hash
from .dotted_path import MISSING, PathSyntaxError, lookup, split_path

__all__ = [
    "CanonicalJsonTypeError",
    "MISSING",
    "PathSyntaxError",
    "canonical_dumps",
    "find_invalid_value",
    "is_json_like",
    "lookup",
    "reject_non_finite",
    "split_path",
    "tree_hash",
]
