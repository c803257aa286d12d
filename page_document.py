"""Persisted page document format: export, import and tree validation."""

from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any, Dict, List, Tuple

from action_plan import plan_actions
from pagekit.canonical_json import find_invalid_value, reject_non_finite
from tree_store import CONTAINER_KINDS, ROOT_KIND, ComponentNode, TreeStore, is_component_kind


Issue = Dict[str, Any]

DOCUMENT_VERSION = os.getenv("PAGEKIT_DOC_VERSION", "1.0").strip() or "1.0"

logger = logging.getLogger("pagekit.document")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _validate_node(
    node: Any,
    path: str,
    seen_ids: Dict[str, str],
    errors: List[Issue],
    warnings: List[Issue],
    is_root: bool,
) -> None:
    if not isinstance(node, dict):
        errors.append(_issue("NODE_INVALID", "node must be object", path))
        return

    node_id = node.get("id")
    if not isinstance(node_id, str) or not node_id:
        errors.append(_issue("NODE_ID_INVALID", "id must be non-empty string", f"{path}.id"))
    elif node_id in seen_ids:
        errors.append(_issue("NODE_ID_DUPLICATE", f"Duplicate id: {node_id}", f"{path}.id", {"first": seen_ids[node_id]}))
    else:
        seen_ids[node_id] = path

    kind = node.get("type")
    if not is_component_kind(kind):
        errors.append(_issue("NODE_TYPE_UNKNOWN", f"Unknown component type: {kind}", f"{path}.type"))
        return
    if is_root and kind != ROOT_KIND:
        errors.append(_issue("ROOT_NOT_PAGE", "root must be of type page", f"{path}.type"))
    if not is_root and kind == ROOT_KIND:
        errors.append(_issue("PAGE_NOT_ROOT", "page may only appear at the root", f"{path}.type"))

    if "props" not in node:
        warnings.append(_issue("NODE_PROPS_MISSING", "props missing; defaulted to {}", f"{path}.props"))
    elif not isinstance(node.get("props"), dict):
        errors.append(_issue("NODE_PROPS_INVALID", "props must be object", f"{path}.props"))
    if "style" in node and not isinstance(node.get("style"), dict):
        errors.append(_issue("NODE_STYLE_INVALID", "style must be object", f"{path}.style"))
    if "label" in node and node.get("label") is not None and not isinstance(node.get("label"), str):
        errors.append(_issue("NODE_LABEL_INVALID", "label must be string", f"{path}.label"))

    events = node.get("events")
    if events is not None:
        if not isinstance(events, dict):
            errors.append(_issue("NODE_EVENTS_INVALID", "events must be object", f"{path}.events"))
        else:
            for event_name, actions in events.items():
                planned = plan_actions(actions)
                event_path = f"{path}.events.{event_name}"
                for issue in planned["errors"]:
                    warnings.append(_issue(issue["code"], issue["message"], f"{event_path}{(issue['path'] or '$')[1:]}"))
                for issue in planned["warnings"]:
                    warnings.append(_issue(issue["code"], issue["message"], f"{event_path}{(issue['path'] or '$')[1:]}"))

    children = node.get("children")
    if kind in CONTAINER_KINDS:
        if children is None:
            warnings.append(_issue("NODE_CHILDREN_MISSING", "container children missing; defaulted to []", f"{path}.children"))
            return
        if not isinstance(children, list):
            errors.append(_issue("NODE_CHILDREN_INVALID", "children must be list", f"{path}.children"))
            return
        for idx, child in enumerate(children):
            _validate_node(child, f"{path}.children[{idx}]", seen_ids, errors, warnings, is_root=False)
    elif "children" in node:
        errors.append(_issue("LEAF_HAS_CHILDREN", f"{kind} cannot have children", f"{path}.children"))


def validate_tree(root: Any) -> Tuple[List[Issue], List[Issue]]:
    """Check the tree invariants: one page root, unique ids, leaf/container shape by type.

    Values must stay in the JSON-like set (no NaN or Infinity), or the tree
    could not be hashed or exported afterwards.

    Action configs that would fail at run time are reported as warnings only;
    the action pipeline reports them again per action when they run.
    """
    errors: List[Issue] = []
    warnings: List[Issue] = []
    problem = find_invalid_value(root)
    if problem is not None:
        errors.append(_issue("NODE_VALUE_INVALID", problem, "root"))
    _validate_node(root, "root", {}, errors, warnings, is_root=True)
    return errors, warnings


def _normalize(node: ComponentNode) -> ComponentNode:
    if not isinstance(node.get("props"), dict):
        node["props"] = {}
    if node.get("type") in CONTAINER_KINDS:
        if node.get("children") is None:
            node["children"] = []
        for child in node["children"]:
            _normalize(child)
    return node


def export_document(store: TreeStore, version: str | None = None) -> dict:
    return {"version": version or DOCUMENT_VERSION, "root": store.snapshot()}


def dumps_document(store: TreeStore, version: str | None = None) -> str:
    return json.dumps(export_document(store, version), ensure_ascii=False, indent=2)


def import_document(store: TreeStore, source: Any) -> dict:
    """Load a document (JSON text, bytes or an already parsed object) into ``store``.

    All-or-nothing: on any error the current tree stays as it was. The data
    context is not touched.
    """
    errors: List[Issue] = []
    warnings: List[Issue] = []

    doc = source
    if isinstance(source, (bytes, bytearray)):
        try:
            source = source.decode("utf-8")
        except UnicodeDecodeError as exc:
            errors.append(_issue("DOC_JSON_INVALID", f"Invalid JSON: {exc}", "$"))
            return {"ok": False, "errors": errors, "warnings": warnings, "version": None}
    if isinstance(source, str):
        try:
            doc = json.loads(source, parse_constant=reject_non_finite)
        except ValueError as exc:
            errors.append(_issue("DOC_JSON_INVALID", f"Invalid JSON: {exc}", "$"))
            logger.warning("document_import_rejected code=DOC_JSON_INVALID")
            return {"ok": False, "errors": errors, "warnings": warnings, "version": None}

    if not isinstance(doc, dict) or "root" not in doc:
        errors.append(_issue("DOC_ROOT_MISSING", "Invalid schema file: root missing", "root"))
        logger.warning("document_import_rejected code=DOC_ROOT_MISSING")
        return {"ok": False, "errors": errors, "warnings": warnings, "version": None}

    version = doc.get("version")
    if version is not None and not isinstance(version, str):
        warnings.append(_issue("DOC_VERSION_INVALID", "version should be string", "version"))

    tree_errors, tree_warnings = validate_tree(doc["root"])
    warnings.extend(tree_warnings)
    if tree_errors:
        errors.extend(tree_errors)
        logger.warning("document_import_rejected code=DOC_TREE_INVALID errors=%s", len(tree_errors))
        return {"ok": False, "errors": errors, "warnings": warnings, "version": version}

    store.replace_tree(_normalize(copy.deepcopy(doc["root"])))
    logger.info("document_imported version=%s warnings=%s", version, len(warnings))
    return {"ok": True, "errors": errors, "warnings": warnings, "version": version}
