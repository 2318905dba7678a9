import unittest

from trem.errors import DuplicateNodeError, LockedNodeError, NodeNotFoundError, TypeMismatchError
from trem.models import FileNode, FolderNode, dump_tree, load_tree
from trem.tree import (
    duplicate_ids,
    find_node,
    find_parent,
    insert_child,
    iter_nodes,
    node_ids,
    remove_node,
    rename_node,
    toggle_open,
    update_content,
    upsert_file,
)


def _sample_tree():
    return [
        FolderNode(id="media", name="media", locked=True, children=[
            FolderNode(id="raw", name="raw", children=[
                FileNode(id="clip", name="clip.mp4"),
            ]),
        ]),
        FolderNode(id="docs", name="docs", children=[
            FileNode(id="readme", name="README.md", content="hello"),
            FolderNode(id="nested", name="nested", children=[
                FileNode(id="deep", name="deep.txt", content="x"),
            ]),
        ]),
        FileNode(id="top", name="top.txt", content=""),
    ]


class TreeLookupTests(unittest.TestCase):
    def test_iter_nodes_is_depth_first_preorder(self) -> None:
        self.assertEqual(
            node_ids(_sample_tree()),
            ["media", "raw", "clip", "docs", "readme", "nested", "deep", "top"],
        )

    def test_find_node_returns_none_when_absent(self) -> None:
        tree = _sample_tree()
        self.assertEqual(find_node(tree, "deep").name, "deep.txt")
        self.assertIsNone(find_node(tree, "missing"))

    def test_find_parent(self) -> None:
        tree = _sample_tree()
        self.assertEqual(find_parent(tree, "deep").id, "nested")
        self.assertIsNone(find_parent(tree, "docs"))

    def test_json_round_trip_keeps_kinds(self) -> None:
        restored = load_tree(dump_tree(_sample_tree()))
        self.assertIsInstance(restored[0], FolderNode)
        self.assertIsInstance(find_node(restored, "readme"), FileNode)
        self.assertEqual(find_node(restored, "readme").content, "hello")


class TreeMutationTests(unittest.TestCase):
    def test_insert_appends_in_insertion_order(self) -> None:
        tree = _sample_tree()
        tree = insert_child(tree, "docs", FileNode(id="b", name="b.txt"))
        tree = insert_child(tree, "docs", FileNode(id="a", name="a.txt"))
        self.assertEqual([c.id for c in find_node(tree, "docs").children], ["readme", "nested", "b", "a"])

    def test_insert_at_root(self) -> None:
        tree = insert_child(_sample_tree(), None, FolderNode(id="extra", name="extra"))
        self.assertEqual(tree[-1].id, "extra")

    def test_insert_into_missing_parent_raises(self) -> None:
        with self.assertRaises(NodeNotFoundError):
            insert_child(_sample_tree(), "missing", FileNode(id="n", name="n"))

    def test_insert_into_file_raises_type_mismatch(self) -> None:
        with self.assertRaises(TypeMismatchError):
            insert_child(_sample_tree(), "readme", FileNode(id="n", name="n"))

    def test_insert_duplicate_id_raises(self) -> None:
        with self.assertRaises(DuplicateNodeError):
            insert_child(_sample_tree(), "docs", FileNode(id="deep", name="again"))
        with self.assertRaises(DuplicateNodeError):
            insert_child(_sample_tree(), None, FolderNode(id="f", name="f", children=[FileNode(id="top", name="t")]))

    def test_mutations_do_not_touch_the_previous_tree(self) -> None:
        before = _sample_tree()
        after = update_content(before, "deep", "changed")
        self.assertEqual(find_node(before, "deep").content, "x")
        self.assertEqual(find_node(after, "deep").content, "changed")
        # untouched subtrees are shared
        self.assertIs(before[0], after[0])
        self.assertIsNot(before[1], after[1])

    def test_remove_takes_subtree_and_keeps_siblings(self) -> None:
        tree = remove_node(_sample_tree(), "nested")
        ids = node_ids(tree)
        self.assertNotIn("nested", ids)
        self.assertNotIn("deep", ids)
        self.assertIn("readme", ids)
        self.assertIn("top", ids)

    def test_remove_unknown_id_is_noop(self) -> None:
        tree = _sample_tree()
        self.assertEqual(node_ids(remove_node(tree, "missing")), node_ids(tree))

    def test_remove_refuses_locked_subtree(self) -> None:
        # children of a locked folder are not locked themselves
        self.assertNotIn("clip", node_ids(remove_node(_sample_tree(), "clip")))
        with self.assertRaises(LockedNodeError):
            remove_node(_sample_tree(), "media")

    def test_update_content_on_folder_raises(self) -> None:
        with self.assertRaises(TypeMismatchError):
            update_content(_sample_tree(), "docs", "nope")

    def test_update_content_on_missing_raises(self) -> None:
        with self.assertRaises(NodeNotFoundError):
            update_content(_sample_tree(), "missing", "nope")

    def test_rename_keeps_id(self) -> None:
        tree = rename_node(_sample_tree(), "readme", "INDEX.md")
        self.assertEqual(find_node(tree, "readme").name, "INDEX.md")

    def test_rename_locked_raises(self) -> None:
        with self.assertRaises(LockedNodeError):
            rename_node(_sample_tree(), "media", "footage")

    def test_toggle_open_flips_flag(self) -> None:
        tree = toggle_open(_sample_tree(), "docs")
        self.assertTrue(find_node(tree, "docs").isOpen)
        tree = toggle_open(tree, "docs")
        self.assertFalse(find_node(tree, "docs").isOpen)

    def test_upsert_file_replaces_existing_content(self) -> None:
        tree = upsert_file(_sample_tree(), "docs", FileNode(id="readme", name="README.md", content="new"))
        self.assertEqual(find_node(tree, "readme").content, "new")
        self.assertEqual(sum(1 for n in iter_nodes(tree) if n.id == "readme"), 1)
        tree = upsert_file(tree, "docs", FileNode(id="fresh", name="fresh.md", content="f"))
        self.assertEqual(find_parent(tree, "fresh").id, "docs")

    def test_ids_stay_unique_across_mutations(self) -> None:
        tree = _sample_tree()
        tree = insert_child(tree, "nested", FileNode(id="n1", name="n1"))
        tree = rename_node(tree, "n1", "renamed")
        tree = remove_node(tree, "top")
        tree = insert_child(tree, None, FileNode(id="top", name="top again"))
        self.assertEqual(duplicate_ids(tree), [])


if __name__ == "__main__":
    unittest.main()
