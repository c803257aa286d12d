import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from expression_eval import UNDEFINED
from tree_store import TreeStore, collect_ids, initial_root, new_node


def _leaf(node_id: str, kind: str = "text") -> dict:
    return {"id": node_id, "type": kind, "props": {}}


def _box(node_id: str, children=None, kind: str = "container") -> dict:
    return {"id": node_id, "type": kind, "props": {}, "children": list(children or [])}


def _child_ids(node: dict) -> list:
    return [child["id"] for child in node.get("children", [])]


class TestTreeStore(unittest.TestCase):
    def setUp(self) -> None:
        root = initial_root()
        root["children"] = [
            _box("c1", [_leaf("t1"), _leaf("t2"), _box("r1", [_leaf("b1", "button")], kind="row")]),
            _leaf("t3"),
            _box("col1", kind="column"),
        ]
        self.store = TreeStore(root=root, context={"user": {"name": "Alice"}})

    def test_initial_root_is_page(self) -> None:
        store = TreeStore()
        self.assertEqual(store.root["type"], "page")
        self.assertEqual(store.root["id"], "root")
        self.assertEqual(store.root["children"], [])
        self.assertEqual(store.context, {})

    def test_find_by_id_pre_order_and_copy(self) -> None:
        found = self.store.find_by_id("b1")
        self.assertEqual(found["type"], "button")
        found["props"]["mutated"] = True
        self.assertNotIn("mutated", self.store.find_by_id("b1")["props"])
        self.assertIsNone(self.store.find_by_id("nope"))

    def test_find_by_id_first_duplicate_wins(self) -> None:
        root = initial_root()
        root["children"] = [_box("c1", [_leaf("dup", "button")]), _leaf("dup", "text")]
        store = TreeStore(root=root)
        self.assertEqual(store.find_by_id("dup")["type"], "button")

    def test_find_parent(self) -> None:
        self.assertEqual(self.store.find_parent("b1")["id"], "r1")
        self.assertIsNone(self.store.find_parent("root"))
        self.assertIsNone(self.store.find_parent("nope"))

    def test_insert_child_appends(self) -> None:
        inserted = self.store.insert_child("c1", _leaf("t9"))
        self.assertEqual(inserted, "t9")
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t1", "t2", "r1", "t9"])

    def test_insert_into_leaf_is_noop(self) -> None:
        before = self.store.tree_hash()
        self.assertIsNone(self.store.insert_child("t1", _leaf("t9")))
        self.assertIsNone(self.store.insert_child("missing", _leaf("t9")))
        self.assertEqual(self.store.tree_hash(), before)
        self.assertNotIn("children", self.store.find_by_id("t1"))

    def test_insert_synthesizes_ids(self) -> None:
        no_id = self.store.insert_child("root", {"type": "text", "props": {}})
        dup = self.store.insert_child("root", _leaf("t1"))
        self.assertTrue(no_id.startswith("text_"))
        self.assertNotEqual(dup, "t1")
        ids = collect_ids(self.store.root)
        self.assertEqual(len(ids), len(set(ids)))

    def test_insert_subtree_re_ids_collisions(self) -> None:
        subtree = _box("c1", [_leaf("t1"), _leaf("fresh"), _leaf("fresh")])
        inserted = self.store.insert_child("col1", subtree)
        self.assertIsNotNone(inserted)
        ids = collect_ids(self.store.root)
        self.assertEqual(len(ids), len(set(ids)))
        self.assertIn("fresh", ids)

    def test_uniqueness_over_many_inserts(self) -> None:
        for _ in range(50):
            self.store.add_component("root", "text")
            self.store.insert_child("c1", _leaf("t1"))
        ids = collect_ids(self.store.root)
        self.assertEqual(len(ids), len(set(ids)))

    def test_insert_normalizes_shape(self) -> None:
        leaf_id = self.store.insert_child("root", {"id": "x1", "type": "image", "children": [_leaf("y")]})
        box_id = self.store.insert_child("root", {"id": "x2", "type": "row"})
        self.assertNotIn("children", self.store.find_by_id(leaf_id))
        self.assertEqual(self.store.find_by_id(box_id)["children"], [])
        self.assertIsNone(self.store.find_by_id("y"))

    def test_insert_rejects_unknown_kind_and_page(self) -> None:
        before = self.store.tree_hash()
        self.assertIsNone(self.store.insert_child("root", {"id": "z", "type": "video"}))
        self.assertIsNone(self.store.insert_child("root", {"id": "p2", "type": "page", "children": []}))
        self.assertIsNone(self.store.insert_child("root", _box("c9", [{"id": "bad", "type": "video"}])))
        self.assertEqual(self.store.tree_hash(), before)

    def test_insert_with_non_string_kind_is_noop(self) -> None:
        before = self.store.tree_hash()
        self.assertIsNone(self.store.insert_child("root", {"type": ["x"]}))
        self.assertIsNone(self.store.insert_child("root", {"id": "d", "type": {"kind": "text"}}))
        self.assertIsNone(self.store.insert_child("root", _box("c9", [{"id": "bad", "type": None}])))
        self.assertIsNone(self.store.add_component("root", ["row"]))
        self.assertEqual(self.store.tree_hash(), before)

    def test_add_component_defaults_and_selects(self) -> None:
        new_id = self.store.add_component("c1", "row")
        node = self.store.find_by_id(new_id)
        self.assertEqual(node["label"], "row")
        self.assertEqual(node["children"], [])
        self.assertEqual(node["style"], {"display": "flex", "gap": "10px"})
        self.assertEqual(self.store.selected_id, new_id)
        self.assertIsNone(self.store.add_component("t1", "text"))
        self.assertIsNone(self.store.add_component("root", "page"))

    def test_new_node_leaf_has_no_children(self) -> None:
        self.assertNotIn("children", new_node("button"))
        with self.assertRaises(ValueError):
            new_node("page")

    def test_update_fields_shallow_merge(self) -> None:
        self.assertTrue(self.store.update_fields("t1", {"label": "Title", "props": {"content": "{{ user.name }}"}}))
        node = self.store.find_by_id("t1")
        self.assertEqual(node["label"], "Title")
        self.assertEqual(node["props"], {"content": "{{ user.name }}"})
        self.assertTrue(self.store.update_fields("t1", {"type": "button"}))
        self.assertEqual(self.store.find_by_id("t1")["type"], "button")

    def test_update_fields_guards(self) -> None:
        before = self.store.tree_hash()
        self.assertFalse(self.store.update_fields("missing", {"label": "x"}))
        self.assertFalse(self.store.update_fields("t1", {"id": "renamed"}))
        self.assertFalse(self.store.update_fields("t1", {"children": []}))
        self.assertFalse(self.store.update_fields("t1", {"type": "container"}))
        self.assertFalse(self.store.update_fields("c1", {"type": "text"}))
        self.assertFalse(self.store.update_fields("root", {"type": "container"}))
        self.assertFalse(self.store.update_fields("t1", {"type": ["button"]}))
        self.assertFalse(self.store.update_fields("t1", {"label": "x", "children": []}))
        self.assertEqual(self.store.tree_hash(), before)

    def test_remove_detaches_subtree(self) -> None:
        self.store.select("b1")
        self.assertTrue(self.store.remove("c1"))
        self.assertEqual(_child_ids(self.store.root), ["t3", "col1"])
        self.assertIsNone(self.store.find_by_id("b1"))
        self.assertIsNone(self.store.selected_id)

    def test_remove_keeps_unrelated_selection(self) -> None:
        self.store.select("t3")
        self.assertTrue(self.store.remove("t1"))
        self.assertEqual(self.store.selected_id, "t3")

    def test_remove_root_or_missing_is_noop(self) -> None:
        before = self.store.tree_hash()
        self.assertFalse(self.store.remove("root"))
        self.assertFalse(self.store.remove("missing"))
        self.assertEqual(self.store.tree_hash(), before)

    def test_reorder_sibling(self) -> None:
        self.assertTrue(self.store.reorder_sibling("t2", "up"))
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t2", "t1", "r1"])
        self.assertTrue(self.store.reorder_sibling("t2", "down"))
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t1", "t2", "r1"])

    def test_reorder_boundaries_are_noops(self) -> None:
        before = self.store.tree_hash()
        self.assertFalse(self.store.reorder_sibling("t1", "up"))
        self.assertFalse(self.store.reorder_sibling("r1", "down"))
        self.assertFalse(self.store.reorder_sibling("root", "up"))
        self.assertFalse(self.store.reorder_sibling("missing", "down"))
        self.assertEqual(self.store.tree_hash(), before)

    def test_reorder_rejects_unknown_direction(self) -> None:
        with self.assertRaises(ValueError):
            self.store.reorder_sibling("t1", "left")

    def test_move_to_reparents_intact(self) -> None:
        subtree = self.store.find_by_id("r1")
        self.assertTrue(self.store.move_to("r1", "col1", 0))
        self.assertEqual(_child_ids(self.store.find_by_id("col1")), ["r1"])
        self.assertEqual(self.store.find_by_id("r1"), subtree)
        self.assertEqual(collect_ids(self.store.root).count("r1"), 1)
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t1", "t2"])

    def test_move_to_clamps_index(self) -> None:
        self.assertTrue(self.store.move_to("t3", "c1", 99))
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t1", "t2", "r1", "t3"])
        self.assertTrue(self.store.move_to("t3", "c1", -5))
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t3", "t1", "t2", "r1"])

    def test_move_within_same_parent(self) -> None:
        self.assertTrue(self.store.move_to("t1", "c1", 2))
        self.assertEqual(_child_ids(self.store.find_by_id("c1")), ["t2", "r1", "t1"])

    def test_move_into_own_descendant_is_noop(self) -> None:
        before = self.store.tree_hash()
        self.assertFalse(self.store.move_to("c1", "r1", 0))
        self.assertEqual(self.store.tree_hash(), before)
        self.assertEqual(self.store.find_parent("r1")["id"], "c1")

    def test_move_failures_leave_tree_unchanged(self) -> None:
        before = self.store.tree_hash()
        self.assertFalse(self.store.move_to("root", "c1", 0))
        self.assertFalse(self.store.move_to("c1", "c1", 0))
        self.assertFalse(self.store.move_to("missing", "c1", 0))
        self.assertFalse(self.store.move_to("t1", "missing", 0))
        self.assertFalse(self.store.move_to("t1", "t3", 0))
        self.assertEqual(self.store.tree_hash(), before)
        self.assertNotIn("children", self.store.find_by_id("t3"))

    def test_snapshots_are_not_mutated_by_edits(self) -> None:
        held = self.store.root
        held_hash = self.store.tree_hash()
        self.store.move_to("t3", "c1", 0)
        self.store.remove("col1")
        self.store.update_fields("t1", {"label": "changed"})
        self.assertNotEqual(self.store.tree_hash(), held_hash)
        self.assertEqual(_child_ids(held), ["c1", "t3", "col1"])
        self.assertNotIn("label", held["children"][0]["children"][0])

    def test_replace_tree(self) -> None:
        self.store.select("t1")
        new_root = initial_root()
        new_root["children"] = [_leaf("only")]
        self.store.replace_tree(new_root)
        self.assertEqual(_child_ids(self.store.root), ["only"])
        self.assertIsNone(self.store.selected_id)
        new_root["children"].clear()
        self.assertEqual(_child_ids(self.store.root), ["only"])

    def test_set_context_value_replaces_top_level(self) -> None:
        self.store.set_context_value("user", {"email": "a@b.c"})
        self.assertEqual(self.store.context["user"], {"email": "a@b.c"})
        self.store.set_context_value("user.name", "Bob")
        self.assertEqual(self.store.context["user.name"], "Bob")
        self.assertEqual(self.store.context["user"], {"email": "a@b.c"})

    def test_set_context_undefined_removes_key(self) -> None:
        self.store.set_context_value("user", UNDEFINED)
        self.assertNotIn("user", self.store.context)

    def test_context_reads_are_copies(self) -> None:
        ctx = self.store.context
        ctx["user"]["name"] = "Mallory"
        self.assertEqual(self.store.context["user"]["name"], "Alice")
        self.store.reset_context({"fresh": 1})
        self.assertEqual(self.store.context, {"fresh": 1})

    def test_select_accepts_any_id(self) -> None:
        self.store.select("does-not-exist")
        self.assertEqual(self.store.selected_id, "does-not-exist")
        self.store.select(None)
        self.assertIsNone(self.store.selected_id)


if __name__ == "__main__":
    unittest.main()
