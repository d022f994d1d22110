"""Tests for the virtual file tree."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from gittyup.files import (
    DirectoryNode,
    FileContentCache,
    FileNode,
    build_file_tree,
    count_files,
    find_file,
    insert_file,
    write_tree,
)


class TestInsertFile:
    def test_nested_paths(self) -> None:
        tree: dict = {}
        insert_file(tree, "src/app/main.js", FileNode("x"))
        insert_file(tree, "src/util.js", FileNode("y"))
        insert_file(tree, "package.json", FileNode("{}"))

        src = tree["src"]
        assert isinstance(src, DirectoryNode)
        assert isinstance(src.entries["app"], DirectoryNode)
        assert src.entries["util.js"] == FileNode("y")
        assert count_files(tree) == 3

    @pytest.mark.parametrize("path", ["", "/", "../etc/passwd", "a/../../b"])
    def test_rejects_bad_paths(self, path: str) -> None:
        with pytest.raises(ValueError):
            insert_file({}, path, FileNode("x"))

    def test_find_file(self) -> None:
        tree: dict = {}
        insert_file(tree, "src/main.js", FileNode("x"))
        assert find_file(tree, "src/main.js") == FileNode("x")
        assert find_file(tree, "src") is None
        assert find_file(tree, "src/other.js") is None
        assert find_file(tree, "../x") is None


class TestBuildFileTree:
    @pytest.mark.asyncio
    async def test_failed_fetch_becomes_placeholder(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/broken.js"):
                return httpx.Response(500)
            return httpx.Response(200, text="ok:" + request.url.path.rsplit("/", 1)[-1])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            cache = FileContentCache("http://rooms.test", client=client)
            tree = await build_file_tree(cache, "r1", "c1", ["a.js", "lib/broken.js"])

        assert find_file(tree, "a.js") == FileNode("ok:a.js")
        broken = find_file(tree, "lib/broken.js")
        assert broken is not None
        assert broken.failed
        assert broken.contents == "// Error loading file: HTTP error! status: 500"

    @pytest.mark.asyncio
    async def test_empty_file_list(self) -> None:
        cache = FileContentCache("http://rooms.test")
        assert await build_file_tree(cache, "r1", "c1", []) == {}


class TestWriteTree:
    def test_write_tree(self, tmp_path: Path) -> None:
        tree: dict = {}
        insert_file(tree, "src/main.js", FileNode("main"))
        insert_file(tree, "package.json", FileNode("{}"))

        assert write_tree(tree, tmp_path) == 2
        assert (tmp_path / "src" / "main.js").read_text() == "main"
        assert (tmp_path / "package.json").read_text() == "{}"
