import json
import unittest

from trem.commits import CommitEngine, get_commit, list_commits, next_commit_number
from trem.models import FileNode, FolderNode, Repository, load_tree
from trem.skeleton import build_skeleton
from trem.tree import find_node, insert_child, update_content


class _FakeRepoStore:
    def __init__(self, fail: bool = False, raises: bool = False) -> None:
        self.fail = fail
        self.raises = raises
        self.updates: list[tuple[int, dict]] = []

    async def update(self, repo_id, updates):
        if self.raises:
            raise RuntimeError("disk full")
        self.updates.append((repo_id, updates))
        return not self.fail


def _repository() -> Repository:
    return Repository(id=7, name="demo", tree=build_skeleton("demo", "", "2024-01-01T00:00:00+00:00"))


class NextCommitNumberTests(unittest.TestCase):
    def test_empty_or_missing_commits_folder_starts_at_one(self) -> None:
        self.assertEqual(next_commit_number([]), 1)
        self.assertEqual(next_commit_number([FolderNode(id="commits", name="commits")]), 1)

    def test_uses_highest_existing_number(self) -> None:
        tree = [FolderNode(id="commits", name="commits", children=[
            FileNode(id="commit_0001", name="0001.json"),
            FileNode(id="commit_0004", name="0004.json"),
        ])]
        self.assertEqual(next_commit_number(tree), 5)


class CommitEngineTests(unittest.IsolatedAsyncioTestCase):
    async def test_commit_appends_node_and_persists_once(self) -> None:
        store = _FakeRepoStore()
        engine = CommitEngine(store, author="tester")
        repository = _repository()
        new_tree = update_content(repository.tree, "desc_scenes", "# Scenes")

        commit = await engine.commit(repository, "feat: updated scenes.md", new_tree)

        self.assertIsNotNone(commit)
        self.assertEqual(commit.id, "0001")
        self.assertEqual(commit.author, "tester")
        self.assertEqual(len(store.updates), 1)
        repo_id, payload = store.updates[0]
        self.assertEqual(repo_id, 7)
        persisted = load_tree(payload["tree"])
        self.assertIsNotNone(find_node(persisted, "commit_0001"))
        self.assertEqual(find_node(persisted, "desc_scenes").content, "# Scenes")
        node = find_node(repository.tree, "commit_0001")
        self.assertEqual(node.name, "0001.json")
        self.assertEqual(json.loads(node.content)["message"], "feat: updated scenes.md")

    async def test_ids_increase_without_gaps(self) -> None:
        engine = CommitEngine(_FakeRepoStore())
        repository = _repository()
        ids = []
        for idx in range(3):
            tree = update_content(repository.tree, "desc_video", f"v{idx}")
            ids.append((await engine.commit(repository, f"edit {idx}", tree)).id)
        self.assertEqual(ids, ["0001", "0002", "0003"])
        self.assertEqual([c.message for c in list_commits(repository.tree)], ["edit 0", "edit 1", "edit 2"])
        self.assertEqual(get_commit(repository.tree, "commit_0002").message, "edit 1")
        self.assertEqual(get_commit(repository.tree, "0003").message, "edit 2")
        self.assertIsNone(get_commit(repository.tree, "0009"))

    async def test_missing_commits_folder_is_recreated(self) -> None:
        engine = CommitEngine(_FakeRepoStore())
        repository = Repository(id=1, name="bare", tree=[FileNode(id="f", name="f.txt")])
        commit = await engine.commit(repository, "first", insert_child(repository.tree, None, FileNode(id="g", name="g")))
        self.assertEqual(commit.id, "0001")
        self.assertIsInstance(find_node(repository.tree, "commits"), FolderNode)

    async def test_failed_write_keeps_optimistic_tree_without_commit(self) -> None:
        for store in (_FakeRepoStore(fail=True), _FakeRepoStore(raises=True)):
            engine = CommitEngine(store)
            repository = _repository()
            new_tree = update_content(repository.tree, "desc_video", "changed")

            commit = await engine.commit(repository, "feat: updated video.md", new_tree)

            self.assertIsNone(commit)
            self.assertEqual(find_node(repository.tree, "desc_video").content, "changed")
            self.assertEqual(list_commits(repository.tree), [])


if __name__ == "__main__":
    unittest.main()
