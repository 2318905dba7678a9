"""Commit engine: snapshot every tree mutation into commits/ and persist it."""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

from trem import config
from trem.models import Commit, FileNode, FolderNode, Repository, dump_tree
from trem.observability import record_commit, start_span
from trem.skeleton import COMMITS_ID
from trem.tree import Tree, find_node, insert_child

logger = logging.getLogger("trem.commits")

_COMMIT_NAME_RE = re.compile(r"^(\d+)\.json$")


def _commit_number(node) -> int | None:
    match = _COMMIT_NAME_RE.match(node.name or "")
    if match:
        return int(match.group(1))
    if node.id.startswith("commit_") and node.id[len("commit_"):].isdigit():
        return int(node.id[len("commit_"):])
    return None


def next_commit_number(tree: Tree) -> int:
    """One greater than the highest commit number currently under commits/."""
    folder = find_node(tree, COMMITS_ID)
    if not isinstance(folder, FolderNode) or not folder.children:
        return 1
    numbers = [n for n in (_commit_number(child) for child in folder.children) if n is not None]
    highest = max(numbers, default=0)
    if highest == 0:
        highest = len(folder.children)
    return highest + 1


def _parse_commit(node: FileNode) -> Optional[Commit]:
    try:
        payload = json.loads(node.content or "{}")
        return Commit(**payload)
    except Exception as e:
        logger.warning("Unreadable commit record %s: %s", node.id, e)
        return None


def list_commits(tree: Tree) -> list[Commit]:
    """Commit records under commits/, oldest first."""
    folder = find_node(tree, COMMITS_ID)
    if not isinstance(folder, FolderNode):
        return []
    commits = [_parse_commit(child) for child in folder.children if isinstance(child, FileNode)]
    return [c for c in commits if c is not None]


def get_commit(tree: Tree, commit_id: str) -> Optional[Commit]:
    token = commit_id.removeprefix("commit_")
    for commit in list_commits(tree):
        if commit.id == token:
            return commit
    return None


class CommitEngine:
    """Appends a commit node for each mutation and persists the whole repository in one write."""

    def __init__(self, repo_store: Any, author: str | None = None, id_width: int | None = None):
        self.repo_store = repo_store
        self.author = author or config.COMMIT_AUTHOR
        self.id_width = id_width or config.COMMIT_ID_WIDTH

    def _with_commit(self, tree: Tree, commit: Commit) -> Tree:
        node = FileNode(
            id=f"commit_{commit.id}",
            name=f"{commit.id}.json",
            icon="commit",
            iconColor="text-orange-400",
            content=json.dumps(commit.model_dump(), indent=2),
            locked=True,
        )
        if not isinstance(find_node(tree, COMMITS_ID), FolderNode):
            logger.info("commits/ missing, recreating it at the root")
            tree = insert_child(tree, None, FolderNode(id=COMMITS_ID, name="commits", locked=True))
        return insert_child(tree, COMMITS_ID, node)

    async def commit(
        self,
        repository: Repository,
        message: str,
        new_tree: Tree,
        changes: str = "filesystem_update",
    ) -> Optional[Commit]:
        """Record ``new_tree`` as the repository's state.

        Returns the commit, or None when the persistence write failed. In that
        case ``new_tree`` is still installed in memory and the commit is not
        considered created.
        """
        number = next_commit_number(new_tree)
        commit = Commit(
            id=str(number).zfill(self.id_width),
            message=message,
            author=self.author,
            timestamp=datetime.now(timezone.utc).isoformat(),
            changes=changes,
        )
        tree_with_commit = self._with_commit(new_tree, commit)

        with start_span("trem.commit", {"repository.id": repository.id, "commit.id": commit.id}):
            try:
                written = await self.repo_store.update(
                    repository.id,
                    {"tree": dump_tree(tree_with_commit), "assets": list(repository.assets)},
                )
            except Exception as e:
                written = False
                logger.error("Commit %s failed to persist for repository %s: %s", commit.id, repository.id, e)

        if not written:
            logger.error("Auto-commit failed: %r left uncommitted in repository %s", message, repository.id)
            repository.tree = list(new_tree)
            record_commit("failed", repository_id=repository.id)
            return None

        repository.tree = tree_with_commit
        repository.updatedAt = commit.timestamp
        record_commit("created", repository_id=repository.id)
        logger.info("Commit created: %s.json - %r (repository %s)", commit.id, message, repository.id)
        return commit
