"""
Page Emitter: the only part of the pipeline that writes anything.

Every page kind maps to a fixed location under the output root, so two runs
over the same repository produce the same file set, byte for byte.
"""

from __future__ import annotations

import logging
import os
import pathlib
from typing import Callable, Optional, Union

from .errors import OutputWriteFailure
from .repository import RepositoryMetadata
from .templates import (
    DEFAULT_CSS,
    STYLESHEET_NAME,
    Page,
    PageKind,
    dir_component,
    file_page_name,
    redirect_document,
    render_document,
)

logger = logging.getLogger(__name__)

Layout = Callable[[Page, str], str]


class PageEmitter:
    def __init__(self, output_root: Union[str, pathlib.Path],
                 metadata: Optional[RepositoryMetadata] = None,
                 layout: Optional[Layout] = None) -> None:
        self.output_root = pathlib.Path(output_root)
        if layout is None:
            meta = metadata or RepositoryMetadata(self.output_root.name, "", "")
            layout = lambda page, root: render_document(page, meta, root)
        self.layout = layout

    def target_path(self, page: Page) -> pathlib.Path:
        parts = page.path.split("/") if page.path else []
        if page.kind is PageKind.LOG:
            return self.output_root / "log.html"
        if page.kind is PageKind.COMMIT:
            return self.output_root / "commit" / f"{page.path}.html"
        if page.kind is PageKind.TREE:
            return self.output_root.joinpath("tree", *map(dir_component, parts), "index.html")
        dirs = map(dir_component, parts[:-1])
        return self.output_root.joinpath("tree", *dirs, file_page_name(parts[-1]))

    def attachment_path(self, page: Page) -> pathlib.Path:
        return self.output_root.joinpath("raw", *page.path.split("/"))

    def _root_from(self, target: pathlib.Path) -> str:
        depth = len(target.relative_to(self.output_root).parts) - 1
        return "../" * depth

    def _write(self, path: pathlib.Path, data: bytes) -> None:
        try:
            # concurrent callers may create the same directory; exist_ok covers it
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise OutputWriteFailure(str(path), e.strerror or str(e))

    def emit(self, page: Page) -> pathlib.Path:
        target = self.target_path(page)
        document = self.layout(page, self._root_from(target))
        self._write(target, document.encode("utf-8", errors="surrogateescape"))
        if page.attachment is not None:
            self._write(self.attachment_path(page), page.attachment)
        logger.debug("Wrote %s", target)
        return target

    def write_static(self, pygments_css: str) -> None:
        """The stylesheet (kept if it already exists, so it can be customised) and index.html."""
        css_path = self.output_root / STYLESHEET_NAME
        try:
            self.output_root.mkdir(parents=True, exist_ok=True)
            with open(css_path, "x", encoding="utf-8") as f:
                f.write(pygments_css + "\n" + DEFAULT_CSS)
        except FileExistsError:
            logger.debug("Keeping existing %s", css_path)
        except OSError as e:
            raise OutputWriteFailure(str(css_path), e.strerror or str(e))
        self._write(self.output_root / "index.html", redirect_document("log.html").encode("utf-8"))


def emit_page(page: Page, output_root: Union[str, pathlib.Path],
              metadata: Optional[RepositoryMetadata] = None) -> pathlib.Path:
    return PageEmitter(output_root, metadata).emit(page)


def ensure_writable(output_root: Union[str, pathlib.Path]) -> None:
    root = pathlib.Path(output_root)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputWriteFailure(str(root), e.strerror or str(e))
    if not os.access(root, os.W_OK):
        raise OutputWriteFailure(str(root), "directory is not writable")
