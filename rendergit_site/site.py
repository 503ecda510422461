"""
The whole conversion: repository in, static site out.

    repository -> commit walk -> diffs, tree pages, highlighted blobs -> emitter

Diffs and page writes go through a thread pool. Each task reads immutable
objects and writes its own file, and results are consumed in submission
order, so the output does not depend on scheduling.
"""

from __future__ import annotations

import logging
import os
import pathlib
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from .diff import DEFAULT_CONTEXT_LINES, DiffEngine
from .emitter import PageEmitter, ensure_writable
from .highlight import MAX_HIGHLIGHT_BYTES, BlobHighlighter
from .objects import Commit
from .repository import Repository
from .templates import commit_page, log_page
from .tree import TreeRenderer
from .walker import CommitWalker, WalkOrder

logger = logging.getLogger(__name__)


def default_jobs() -> int:
    return min(8, os.cpu_count() or 1)


@dataclass
class SiteConfig:
    jobs: int = field(default_factory=default_jobs)
    context_lines: int = DEFAULT_CONTEXT_LINES
    max_highlight_bytes: int = MAX_HIGHLIGHT_BYTES


@dataclass
class SiteResult:
    output_dir: pathlib.Path
    head: str
    commits: int
    pages: int
    files: List[pathlib.Path] = field(default_factory=list)


def generate(repo_path: Union[str, pathlib.Path], output_dir: Union[str, pathlib.Path],
             config: Optional[SiteConfig] = None) -> SiteResult:
    """Render `repo_path` into `output_dir`. Raises RendergitError on any fatal failure."""
    config = config or SiteConfig()
    started = time.monotonic()
    out = pathlib.Path(output_dir)

    with Repository.open(repo_path) as repo:
        metadata = repo.read_metadata()
        head = repo.resolve_head()
        logger.info("Rendering %s (HEAD %s) into %s", metadata.name, head[:12], out)
        ensure_writable(out)

        highlighter = BlobHighlighter(config.max_highlight_bytes)
        engine = DiffEngine(repo, config.context_lines)
        emitter = PageEmitter(out, metadata)
        emitter.write_static(highlighter.stylesheet())

        commits = list(CommitWalker(repo).walk(head, WalkOrder.DATE))
        logger.info("Found %d commits", len(commits))

        written: List[pathlib.Path] = []
        with ThreadPoolExecutor(max_workers=max(1, config.jobs)) as pool:
            def render_commit(commit: Commit) -> Tuple[pathlib.Path, Tuple[int, int, int]]:
                # keep only the stats; the full diff is dropped once its page is written
                diff = engine.diff_commit(commit.id)
                return emitter.emit(commit_page(commit, diff, highlighter)), diff.stats

            rendered = list(pool.map(render_commit, commits))
            logger.info("Wrote %d commit pages", len(rendered))

            written.append(emitter.emit(log_page(commits, [stats for _, stats in rendered])))
            written.extend(target for target, _ in rendered)

            head_tree = repo.read_tree(repo.read_commit(head).tree)
            renderer = TreeRenderer(repo, highlighter)
            written.extend(pool.map(emitter.emit, renderer.render(head_tree, "")))

    logger.info("Wrote %d pages in %.1fs", len(written), time.monotonic() - started)
    return SiteResult(out, head, len(commits), len(written), written)
