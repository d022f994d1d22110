"""Repository file access: the content cache and the virtual file tree."""

from gittyup.files.cache import FileContentCache, FileFetchError
from gittyup.files.tree import (
    DirectoryNode,
    FileNode,
    FileTree,
    build_file_tree,
    count_files,
    find_file,
    insert_file,
    write_tree,
)

__all__ = [
    "FileContentCache",
    "FileFetchError",
    "DirectoryNode",
    "FileNode",
    "FileTree",
    "build_file_tree",
    "count_files",
    "find_file",
    "insert_file",
    "write_tree",
]
