"""Copy-on-write tree store.

Every mutation returns a new root list. Only the nodes on the path from the
root to the changed node are copied; untouched subtrees are shared between
the old and the new tree, so a caller holding an older tree never observes
the change.
"""
from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Iterator, Optional, Union

from trem.errors import DuplicateNodeError, LockedNodeError, NodeNotFoundError, TypeMismatchError
from trem.models import FileNode, FolderNode

logger = logging.getLogger("trem.tree")

AnyNode = Union[FolderNode, FileNode]
Tree = list[AnyNode]


def iter_nodes(nodes: Tree) -> Iterator[AnyNode]:
    """Depth-first, pre-order walk."""
    for node in nodes:
        yield node
        if isinstance(node, FolderNode):
            yield from iter_nodes(node.children)


def find_node(nodes: Tree, node_id: str) -> Optional[AnyNode]:
    """Return the first node with ``node_id`` (depth-first), or None."""
    for node in iter_nodes(nodes):
        if node.id == node_id:
            return node
    return None


def find_parent(nodes: Tree, node_id: str) -> Optional[FolderNode]:
    for node in iter_nodes(nodes):
        if isinstance(node, FolderNode) and any(child.id == node_id for child in node.children):
            return node
    return None


def node_ids(nodes: Tree) -> list[str]:
    return [node.id for node in iter_nodes(nodes)]


def duplicate_ids(nodes: Tree) -> list[str]:
    counts = Counter(node_ids(nodes))
    return sorted(node_id for node_id, count in counts.items() if count > 1)


def _subtree_has_lock(node: AnyNode) -> bool:
    return any(item.locked for item in iter_nodes([node]))


def _update_first(nodes: Tree, node_id: str, fn: Callable[[AnyNode], AnyNode]) -> Optional[Tree]:
    for idx, node in enumerate(nodes):
        if node.id == node_id:
            updated = list(nodes)
            updated[idx] = fn(node)
            return updated
        if isinstance(node, FolderNode):
            children = _update_first(node.children, node_id, fn)
            if children is not None:
                updated = list(nodes)
                updated[idx] = node.model_copy(update={"children": children})
                return updated
    return None


def _prune(nodes: Tree, node_id: str) -> tuple[Tree, bool]:
    changed = False
    result: Tree = []
    for node in nodes:
        if node.id == node_id:
            changed = True
            continue
        if isinstance(node, FolderNode):
            children, child_changed = _prune(node.children, node_id)
            if child_changed:
                node = node.model_copy(update={"children": children})
                changed = True
        result.append(node)
    return result, changed


def insert_child(nodes: Tree, parent_id: Optional[str], child: AnyNode) -> Tree:
    """Append ``child`` to the end of ``parent_id``'s children.

    ``parent_id=None`` appends at the root level.
    """
    existing = set(node_ids(nodes))
    for node_id in node_ids([child]):
        if node_id in existing:
            raise DuplicateNodeError(node_id)

    if parent_id is None:
        return [*nodes, child]

    parent = find_node(nodes, parent_id)
    if parent is None:
        raise NodeNotFoundError(parent_id, f"Parent {parent_id} not found")
    if not isinstance(parent, FolderNode):
        raise TypeMismatchError(parent_id, expected="folder", actual=parent.kind)

    updated = _update_first(
        nodes,
        parent_id,
        lambda folder: folder.model_copy(update={"children": [*folder.children, child]}),
    )
    return updated if updated is not None else list(nodes)


def remove_node(nodes: Tree, node_id: str) -> Tree:
    """Remove every node with ``node_id`` together with its subtree.

    Unknown ids are a no-op. A subtree holding a locked node is refused.
    """
    for node in iter_nodes(nodes):
        if node.id == node_id and _subtree_has_lock(node):
            raise LockedNodeError(node_id)
    pruned, changed = _prune(nodes, node_id)
    if not changed:
        logger.debug("remove_node: %s not present, nothing removed", node_id)
    return pruned


def update_content(nodes: Tree, node_id: str, content: str) -> Tree:
    node = find_node(nodes, node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    if not isinstance(node, FileNode):
        raise TypeMismatchError(node_id, expected="file", actual=node.kind)
    if node.locked:
        raise LockedNodeError(node_id)
    return _update_first(nodes, node_id, lambda item: item.model_copy(update={"content": content}))


def upsert_file(nodes: Tree, parent_id: str, child: FileNode) -> Tree:
    """Replace the content of ``child.id`` if present, otherwise insert it under ``parent_id``."""
    if find_node(nodes, child.id) is not None:
        return update_content(nodes, child.id, child.content or "")
    return insert_child(nodes, parent_id, child)


def rename_node(nodes: Tree, node_id: str, name: str) -> Tree:
    node = find_node(nodes, node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    if node.locked:
        raise LockedNodeError(node_id)
    return _update_first(nodes, node_id, lambda item: item.model_copy(update={"name": name}))


def toggle_open(nodes: Tree, node_id: str) -> Tree:
    node = find_node(nodes, node_id)
    if node is None:
        raise NodeNotFoundError(node_id)
    return _update_first(nodes, node_id, lambda item: item.model_copy(update={"isOpen": not item.isOpen}))
