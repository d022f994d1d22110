"""Virtual file tree built from a flat list of repository paths.

The tree is a nested mapping from path segment to either a ``FileNode``
carrying text content or a ``DirectoryNode`` holding more entries::

    {"src": DirectoryNode({"main.js": FileNode("...")}), "package.json": FileNode("...")}
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from gittyup.files.cache import FileFetchError
from gittyup.logging import get_logger

if TYPE_CHECKING:
    from gittyup.files.cache import FileContentCache

log = get_logger("files")


@dataclass
class FileNode:
    contents: str
    failed: bool = False  # True for placeholders standing in for unreadable files


@dataclass
class DirectoryNode:
    entries: dict[str, FileNode | DirectoryNode] = field(default_factory=dict)


FileTree = dict[str, FileNode | DirectoryNode]


def placeholder_contents(error: BaseException) -> str:
    return f"// Error loading file: {error}"


def _split(path: str) -> list[str]:
    parts = [part for part in path.split("/") if part and part != "."]
    if not parts or ".." in parts:
        raise ValueError(f"Invalid repository path: {path!r}")
    return parts


def insert_file(tree: FileTree, path: str, node: FileNode) -> None:
    """Place ``node`` at ``path``, creating intermediate directories."""
    *dirs, name = _split(path)
    current = tree
    for part in dirs:
        entry = current.get(part)
        if not isinstance(entry, DirectoryNode):
            entry = DirectoryNode()
            current[part] = entry
        current = entry.entries
    current[name] = node


def find_file(tree: FileTree, path: str) -> FileNode | None:
    """Look up the file at ``path``, or None."""
    try:
        *dirs, name = _split(path)
    except ValueError:
        return None
    current = tree
    for part in dirs:
        entry = current.get(part)
        if not isinstance(entry, DirectoryNode):
            return None
        current = entry.entries
    node = current.get(name)
    return node if isinstance(node, FileNode) else None


async def build_file_tree(
    cache: FileContentCache,
    repository_id: str,
    commit_id: str,
    paths: Iterable[str],
) -> FileTree:
    """Fetch every path through ``cache`` and assemble the tree.

    Fetches run concurrently. A path that fails to load becomes a placeholder
    file whose content describes the error; the remaining paths are
    unaffected.
    """
    paths = list(paths)

    async def load(path: str) -> FileNode:
        try:
            return FileNode(contents=await cache.fetch(repository_id, commit_id, path))
        except FileFetchError as e:
            log.warning("Failed to load file %s: %s", path, e)
            return FileNode(contents=placeholder_contents(e), failed=True)

    nodes = await asyncio.gather(*(load(path) for path in paths))

    tree: FileTree = {}
    for path, node in zip(paths, nodes):
        try:
            insert_file(tree, path, node)
        except ValueError as e:
            log.warning("Skipping %s: %s", path, e)
    return tree


def write_tree(tree: FileTree, root: Path) -> int:
    """Materialize ``tree`` under ``root``. Returns the number of files written."""
    written = 0
    for name, node in tree.items():
        target = root / name
        if isinstance(node, DirectoryNode):
            target.mkdir(parents=True, exist_ok=True)
            written += write_tree(node.entries, target)
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(node.contents, encoding="utf-8")
            written += 1
    return written


def count_files(tree: FileTree) -> int:
    return sum(
        count_files(node.entries) if isinstance(node, DirectoryNode) else 1
        for node in tree.values()
    )
