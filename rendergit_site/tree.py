"""
Tree Renderer: one listing page per directory, one content page per file.
"""

from __future__ import annotations

import html
import logging
import pathlib
from typing import Iterator, Optional

from .highlight import MARKDOWN_EXTENSIONS, BlobHighlighter, escape_plain, is_binary, render_markdown
from .objects import EntryKind, Tree, TreeEntry
from .repository import Repository
from .templates import Page, file_page, tree_page

logger = logging.getLogger(__name__)

README_NAMES = ("readme", "readme.md", "readme.markdown", "readme.txt")


class TreeRenderer:
    def __init__(self, repo: Repository, highlighter: BlobHighlighter) -> None:
        self.repo = repo
        self.highlighter = highlighter

    def render(self, tree: Tree, path_prefix: str = "") -> Iterator[Page]:
        """Pages for `tree` (found at `path_prefix`) and everything below it, in tree order."""
        sizes = {
            entry.name: len(self.repo.read_blob(entry.id).data)
            for entry in tree.entries
            if entry.kind in (EntryKind.FILE, EntryKind.LINK)
        }
        yield tree_page(path_prefix, tree, self._readme(tree), sizes)
        for entry in tree.entries:
            path = f"{path_prefix}/{entry.name}" if path_prefix else entry.name
            if entry.kind is EntryKind.TREE:
                yield from self.render(self.repo.read_tree(entry.id), path)
            elif entry.kind in (EntryKind.FILE, EntryKind.LINK):
                yield self.render_file(entry, path)

    def render_file(self, entry: TreeEntry, path: str) -> Page:
        data = self.repo.read_blob(entry.id).data
        if entry.kind is EntryKind.LINK:
            target = data.decode("utf-8", errors="replace")
            return file_page(path, f'<p>Symbolic link to <code>{html.escape(target)}</code></p>')
        attachment = data if is_binary(data) else None
        return file_page(path, self.highlighter.highlight(data, entry.name), attachment)

    def _readme(self, tree: Tree) -> str:
        entry: Optional[TreeEntry] = None
        for candidate in tree.entries:
            if candidate.kind is EntryKind.FILE and candidate.name.lower() in README_NAMES:
                entry = candidate
                break
        if entry is None:
            return ""
        data = self.repo.read_blob(entry.id).data
        if is_binary(data):
            return ""
        text = data.decode("utf-8", errors="replace")
        if pathlib.PurePosixPath(entry.name.lower()).suffix in MARKDOWN_EXTENSIONS:
            try:
                return render_markdown(text)
            except Exception as e:
                logger.warning("Rendering %s as markdown failed (%s)", entry.name, e)
        return escape_plain(text)
