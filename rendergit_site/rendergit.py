#!/usr/bin/env python3
"""
Render a local git repository into a static, browsable HTML site.

Features
- Commit log, newest first, with per-commit diffstat
- One page per commit with metadata and a highlighted unified diff
- One listing page per directory of HEAD's tree, READMEs rendered below it
- One page per file, syntax-highlighted via Pygments
  * Binary files get a placeholder and a link to the raw bytes
  * Unknown file types are shown as plain text

Usage
    rendergit-site path/to/repo path/to/output

Output layout
    log.html, commit/<id>.html, tree/**/index.html, tree/**/<file>.html, raw/**, style.css
"""

from __future__ import annotations

import argparse
import logging
import sys
import webbrowser
from typing import List, Optional

from .errors import RendergitError
from .highlight import MAX_HIGHLIGHT_BYTES
from .diff import DEFAULT_CONTEXT_LINES
from .site import SiteConfig, default_jobs, generate

logger = logging.getLogger(__name__)


def non_negative_int(value: str) -> int:
    n = int(value)
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be 0 or more, got {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Render a git repository into a static HTML site")
    ap.add_argument("repo", help="Path to the repository (work tree or bare)")
    ap.add_argument("output", help="Directory to write the HTML files into")
    ap.add_argument("-j", "--jobs", type=int, default=default_jobs(), help="Worker threads for diffs and page writes")
    ap.add_argument("--context", type=non_negative_int, default=DEFAULT_CONTEXT_LINES, help="Context lines around each diff hunk")
    ap.add_argument("--max-highlight-bytes", type=int, default=MAX_HIGHLIGHT_BYTES, help="Files larger than this are shown as plain text")
    ap.add_argument("--open", action="store_true", help="Open the commit log in a browser when done")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    config = SiteConfig(jobs=args.jobs, context_lines=args.context,
                        max_highlight_bytes=args.max_highlight_bytes)
    try:
        result = generate(args.repo, args.output, config)
    except RendergitError as e:
        logger.error("%s", e)
        return 1

    print(f"✓ Rendered {result.commits} commits into {result.pages} pages under {result.output_dir}",
          file=sys.stderr)
    if args.open:
        log_path = (result.output_dir / "log.html").resolve()
        print(f"Opening {log_path} in browser...", file=sys.stderr)
        webbrowser.open(f"file://{log_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
