"""In-memory page tree store with copy-on-write structural edits."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Dict, Iterator, List, Set, Tuple

from pagekit.canonical_json import tree_hash
from pagekit.dotted_path import MISSING


ComponentNode = Dict[str, Any]
Located = Tuple[ComponentNode, "ComponentNode | None", int]

ROOT_KIND = "page"
CONTAINER_KINDS = frozenset({"page", "container", "row", "column"})
LEAF_KINDS = frozenset({"input", "button", "text", "image", "table", "select"})
COMPONENT_KINDS = CONTAINER_KINDS | LEAF_KINDS

logger = logging.getLogger("pagekit.tree")


def is_component_kind(kind: Any) -> bool:
    return isinstance(kind, str) and kind in COMPONENT_KINDS


def is_container(node: Any) -> bool:
    if not isinstance(node, dict) or not isinstance(node.get("type"), str):
        return False
    return node["type"] in CONTAINER_KINDS


def initial_root() -> ComponentNode:
    return {
        "id": "root",
        "type": ROOT_KIND,
        "label": "Page Root",
        "props": {},
        "children": [],
        "style": {"padding": "20px", "minHeight": "100%"},
    }


def new_id(kind: str) -> str:
    return f"{kind}_{uuid.uuid4().hex[:12]}"


def new_node(kind: str) -> ComponentNode:
    if not is_component_kind(kind) or kind == ROOT_KIND:
        raise ValueError(f"Unsupported component kind: {kind}")
    node: ComponentNode = {
        "id": new_id(kind),
        "type": kind,
        "label": kind,
        "props": {},
        "style": {"display": "flex", "gap": "10px"} if kind == "row" else {},
    }
    if kind in CONTAINER_KINDS:
        node["children"] = []
    return node


def iter_nodes(root: ComponentNode) -> Iterator[Located]:
    """Depth-first pre-order walk yielding ``(node, parent, index)``."""
    stack: List[Located] = [(root, None, 0)]
    while stack:
        node, parent, index = stack.pop()
        yield node, parent, index
        children = node.get("children")
        if isinstance(children, list):
            for idx in range(len(children) - 1, -1, -1):
                child = children[idx]
                if isinstance(child, dict):
                    stack.append((child, node, idx))


def collect_ids(root: ComponentNode) -> List[Any]:
    return [node.get("id") for node, _, _ in iter_nodes(root)]


def _locate(root: ComponentNode, node_id: str) -> Located | None:
    for node, parent, index in iter_nodes(root):
        if node.get("id") == node_id:
            return node, parent, index
    return None


def _prepare_subtree(node: Any, used_ids: Set[Any]) -> bool:
    """Fix ids and container/leaf shape of a subtree about to be inserted.

    Returns False when the subtree holds something that can never be inserted.
    """
    if not isinstance(node, dict):
        return False
    kind = node.get("type")
    if not is_component_kind(kind) or kind == ROOT_KIND:
        return False
    node_id = node.get("id")
    if not isinstance(node_id, str) or not node_id or node_id in used_ids:
        node_id = new_id(kind)
        while node_id in used_ids:
            node_id = new_id(kind)
        node["id"] = node_id
    used_ids.add(node_id)
    if not isinstance(node.get("props"), dict):
        node["props"] = {}
    if kind in CONTAINER_KINDS:
        children = node.get("children")
        if children is None:
            node["children"] = []
        elif not isinstance(children, list):
            return False
        for child in node["children"]:
            if not _prepare_subtree(child, used_ids):
                return False
    else:
        node.pop("children", None)
    return True


class TreeStore:
    """Owner of one editing session: the page tree, the data context and the selection.

    Committed trees are never mutated in place; every structural edit works on a
    deep copy and swaps it in only once the whole edit succeeded. A reader holding
    ``store.root`` keeps seeing the tree as it was when it read it.
    """

    def __init__(self, root: ComponentNode | None = None, context: dict | None = None) -> None:
        self._root: ComponentNode = copy.deepcopy(root) if root is not None else initial_root()
        self._context: Dict[str, Any] = copy.deepcopy(context) if context else {}
        self._selected_id: str | None = None

    # -- reads -------------------------------------------------------------

    @property
    def root(self) -> ComponentNode:
        return self._root

    @property
    def root_id(self) -> Any:
        return self._root.get("id")

    @property
    def context(self) -> Dict[str, Any]:
        return copy.deepcopy(self._context)

    @property
    def selected_id(self) -> str | None:
        return self._selected_id

    def snapshot(self) -> ComponentNode:
        return copy.deepcopy(self._root)

    def tree_hash(self) -> str:
        return tree_hash(self._root)

    def find_by_id(self, node_id: str) -> ComponentNode | None:
        found = _locate(self._root, node_id)
        if found is None:
            return None
        return copy.deepcopy(found[0])

    def find_parent(self, node_id: str) -> ComponentNode | None:
        found = _locate(self._root, node_id)
        if found is None or found[1] is None:
            return None
        return copy.deepcopy(found[1])

    # -- structure ---------------------------------------------------------

    def _commit(self, new_root: ComponentNode, op: str, node_id: Any) -> None:
        self._root = new_root
        logger.debug("tree_commit op=%s id=%s", op, node_id)

    def _reject(self, op: str, node_id: Any, reason: str) -> bool:
        logger.debug("tree_noop op=%s id=%s reason=%s", op, node_id, reason)
        return False

    def insert_child(self, parent_id: str, node: ComponentNode) -> str | None:
        """Append ``node`` under a container; return the id it was stored under.

        Missing or colliding ids (on the node or anywhere in its subtree) are
        replaced with fresh ones. Returns None when nothing was inserted.
        """
        working = copy.deepcopy(self._root)
        found = _locate(working, parent_id)
        if found is None:
            self._reject("insert", parent_id, "parent_not_found")
            return None
        parent = found[0]
        if not is_container(parent):
            self._reject("insert", parent_id, "parent_not_container")
            return None
        item = copy.deepcopy(node)
        used_ids = set(collect_ids(working))
        if not _prepare_subtree(item, used_ids):
            self._reject("insert", parent_id, "node_invalid")
            return None
        if not isinstance(parent.get("children"), list):
            parent["children"] = []
        parent["children"].append(item)
        self._commit(working, "insert", item["id"])
        return item["id"]

    def add_component(self, parent_id: str, kind: str) -> str | None:
        if not is_component_kind(kind) or kind == ROOT_KIND:
            self._reject("add", parent_id, f"kind_invalid:{kind}")
            return None
        inserted = self.insert_child(parent_id, new_node(kind))
        if inserted is not None:
            self._selected_id = inserted
        return inserted

    def update_fields(self, node_id: str, fields: Dict[str, Any]) -> bool:
        """Shallow-merge ``fields`` onto a node.

        ``id`` and ``children`` are not editable here, and ``type`` may only
        change within the container kinds or within the leaf kinds.
        """
        if not isinstance(fields, dict):
            return self._reject("update", node_id, "fields_invalid")
        working = copy.deepcopy(self._root)
        found = _locate(working, node_id)
        if found is None:
            return self._reject("update", node_id, "not_found")
        node = found[0]
        if "children" in fields:
            return self._reject("update", node_id, "children_not_editable")
        if "id" in fields and fields["id"] != node.get("id"):
            return self._reject("update", node_id, "id_not_editable")
        if "type" in fields and fields["type"] != node.get("type"):
            kind = fields["type"]
            if not is_component_kind(kind) or ROOT_KIND in (kind, node.get("type")):
                return self._reject("update", node_id, "type_invalid")
            if (kind in CONTAINER_KINDS) != is_container(node):
                return self._reject("update", node_id, "container_change")
        node.update(copy.deepcopy(fields))
        self._commit(working, "update", node_id)
        return True

    def remove(self, node_id: str) -> bool:
        if node_id == self.root_id:
            return self._reject("remove", node_id, "root")
        working = copy.deepcopy(self._root)
        found = _locate(working, node_id)
        if found is None or found[1] is None:
            return self._reject("remove", node_id, "not_found")
        node, parent, index = found
        removed_ids = set(collect_ids(node))
        del parent["children"][index]
        self._commit(working, "remove", node_id)
        if self._selected_id in removed_ids:
            self._selected_id = None
        return True

    def reorder_sibling(self, node_id: str, direction: str) -> bool:
        if direction not in ("up", "down"):
            raise ValueError(f"Unsupported direction: {direction}")
        if node_id == self.root_id:
            return self._reject("reorder", node_id, "root")
        working = copy.deepcopy(self._root)
        found = _locate(working, node_id)
        if found is None or found[1] is None:
            return self._reject("reorder", node_id, "not_found")
        _, parent, index = found
        siblings = parent["children"]
        new_index = index - 1 if direction == "up" else index + 1
        if new_index < 0 or new_index >= len(siblings):
            return self._reject("reorder", node_id, "at_edge")
        siblings[index], siblings[new_index] = siblings[new_index], siblings[index]
        self._commit(working, "reorder", node_id)
        return True

    def move_to(self, drag_id: str, target_id: str, index: int) -> bool:
        """Reparent ``drag_id`` under ``target_id`` at ``index`` (clamped).

        The target is looked up after the dragged subtree is detached, so a
        move into the node's own descendant finds no target and is rejected.
        """
        if drag_id == self.root_id:
            return self._reject("move", drag_id, "root")
        if drag_id == target_id:
            return self._reject("move", drag_id, "self_target")
        working = copy.deepcopy(self._root)
        found = _locate(working, drag_id)
        if found is None or found[1] is None:
            return self._reject("move", drag_id, "not_found")
        dragged, parent, position = found
        del parent["children"][position]

        target_found = _locate(working, target_id)
        if target_found is None:
            return self._reject("move", drag_id, "target_not_found")
        target = target_found[0]
        if not is_container(target):
            return self._reject("move", drag_id, "target_not_container")
        if not isinstance(target.get("children"), list):
            target["children"] = []
        safe_index = min(max(int(index), 0), len(target["children"]))
        target["children"].insert(safe_index, dragged)
        self._commit(working, "move", drag_id)
        return True

    def replace_tree(self, new_root: ComponentNode) -> None:
        """Swap in a whole new tree. The caller is responsible for its invariants."""
        self._root = copy.deepcopy(new_root)
        self._selected_id = None
        logger.info("tree_replaced root_id=%s", self._root.get("id") if isinstance(self._root, dict) else None)

    # -- data context and selection ---------------------------------------

    def set_context_value(self, key: str, value: Any) -> None:
        if not isinstance(key, str):
            raise TypeError("context key must be string")
        updated = dict(self._context)
        if value is MISSING:
            updated.pop(key, None)
        else:
            updated[key] = copy.deepcopy(value)
        self._context = updated

    def reset_context(self, context: dict | None = None) -> None:
        self._context = copy.deepcopy(context) if context else {}

    def select(self, node_id: str | None) -> None:
        self._selected_id = node_id
