"""
HTML for every page of the site, plus the Page record the renderers produce
and the emitter writes.

Fragments only ever link relative to their own location; the shared layout
gets told how far the page sits below the output root.
"""

from __future__ import annotations

import enum
import html
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from .diff import ChangeStatus, Diff, format_patch
from .highlight import BlobHighlighter
from .objects import Commit, EntryKind, Signature, Tree, TreeEntry
from .repository import RepositoryMetadata

STYLESHEET_NAME = "style.css"

DEFAULT_CSS = """
body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Helvetica, Arial, sans-serif;
       margin: 0 auto; max-width: 1100px; padding: 1rem; color: #24292f; }
nav h1 { margin: 0 0 .25rem 0; }
ul.inline { list-style: none; padding: 0; }
ul.inline li { display: inline; margin-right: 1rem; }
table { border-collapse: collapse; width: 100%; }
th, td { text-align: left; padding: .2rem .5rem; border-bottom: 1px solid #eaeef2; }
.numeric { text-align: right; }
td.numeric, td.mode { font-family: monospace; }
pre { overflow-x: auto; }
dl.commit dt { font-weight: 600; }
.status-added { color: #1a7f37; }
.status-deleted { color: #cf222e; }
.status-modified { color: #9a6700; }
.binary-placeholder, .muted { color: #57606a; font-style: italic; }
footer { margin-top: 2rem; color: #57606a; font-size: .85rem; }
"""


class PageKind(enum.Enum):
    LOG = "log"
    COMMIT = "commit"
    TREE = "tree"
    FILE = "file"


@dataclass(frozen=True)
class Page:
    kind: PageKind
    path: str       # "" for the log, commit id, or repository path
    title: str
    body: str       # HTML fragment placed inside <main>
    attachment: Optional[bytes] = None  # raw bytes published under raw/


def _escape(name: str) -> str:
    return name.replace("~", "~~")


def dir_component(name: str) -> str:
    """Output directory name for a tree directory. Never ends in ".html"."""
    escaped = _escape(name)
    return escaped + "~" if escaped.endswith(".html") else escaped


def file_page_name(name: str) -> str:
    """Output file name for a file page. "index.html" is taken by the directory listing."""
    escaped = _escape(name)
    return "index~.html" if escaped == "index" else f"{escaped}.html"


def bytes_human(n: int) -> str:
    units = ["B", "KiB", "MiB", "GiB", "TiB"]
    f = float(n)
    i = 0
    while f >= 1024.0 and i < len(units) - 1:
        f /= 1024.0
        i += 1
    if i == 0:
        return f"{int(f)} {units[i]}"
    return f"{f:.1f} {units[i]}"


def esc(value: object) -> str:
    return html.escape(str(value))


def href(path: str) -> str:
    # names are decoded with surrogateescape; percent-encode the original bytes
    return quote(path.encode("utf-8", errors="surrogateescape"), safe="/~")


def render_document(page: Page, metadata: RepositoryMetadata, root: str) -> str:
    """Wrap a page fragment in the site layout. `root` leads back to the output root."""
    header: List[str] = [f"<h1>{esc(metadata.name)}</h1>"]
    if metadata.description:
        header.append(f"<p>{esc(metadata.description)}</p>")
    if metadata.url:
        header.append(f'<pre>git clone <a href="{esc(metadata.url)}">{esc(metadata.url)}</a></pre>')
    header.append(
        '<ul class="inline">'
        f'<li><a href="{root}log.html">Commits</a></li>'
        f'<li><a href="{root}tree/index.html">Files</a></li>'
        "</ul>"
    )
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width">
<title>{esc(page.title)} &ndash; {esc(metadata.name)}</title>
<link rel="stylesheet" href="{root}{STYLESHEET_NAME}">
</head>
<body>
<nav>
{chr(10).join(header)}
</nav>
<main>
{page.body}
</main>
<footer>Generated by rendergit-site, a static git browser generator.</footer>
</body>
</html>
"""


def redirect_document(target: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta http-equiv="refresh" content="0; url={target}">
<title>Redirecting</title>
</head>
<body><a href="{target}">{target}</a></body>
</html>
"""


# ---- commits -----------------------------------------------------------------

def format_time(sig: Signature) -> str:
    return sig.datetime.isoformat(sep=" ")


def format_date(sig: Signature) -> str:
    return sig.datetime.strftime("%Y-%m-%d")


def log_page(commits: Sequence[Commit], stats: Sequence[Tuple[int, int, int]]) -> Page:
    """`stats` holds Diff.stats for each commit, in the same order."""
    rows: List[str] = []
    for commit, (files, plus, minus) in zip(commits, stats):
        rows.append(
            "<tr>"
            f'<td><abbr title="{esc(format_time(commit.committer))}">{format_date(commit.committer)}</abbr></td>'
            f'<td><a href="commit/{commit.id}.html">{esc(commit.summary) or "(no message)"}</a></td>'
            f"<td>{esc(commit.author.name)}</td>"
            f'<td class="numeric">{files}</td>'
            f'<td class="numeric">+{plus}</td>'
            f'<td class="numeric">-{minus}</td>'
            "</tr>"
        )
    body = (
        '<table class="log">\n<thead><tr><th>Date</th><th>Commit message</th><th>Author</th>'
        '<th class="numeric">Files</th><th class="numeric">+</th><th class="numeric">-</th></tr></thead>\n'
        f"<tbody>\n{chr(10).join(rows)}\n</tbody>\n</table>"
    )
    return Page(PageKind.LOG, "", "Commit log", body)


def _signature(sig: Signature) -> str:
    return (f'{esc(sig.name)} &lt;<a href="mailto:{esc(sig.email)}">{esc(sig.email)}</a>&gt;'
            f" {esc(format_time(sig))}")


def commit_page(commit: Commit, diff: Diff, highlighter: BlobHighlighter) -> Page:
    files, plus, minus = diff.stats
    meta = [f"<dt>commit</dt><dd>{commit.id}</dd>"]
    for parent in commit.parents:
        meta.append(f'<dt>parent</dt><dd><a href="{parent}.html">{parent}</a></dd>')
    meta.append(f"<dt>author</dt><dd>{_signature(commit.author)}</dd>")
    meta.append(f"<dt>committer</dt><dd>{_signature(commit.committer)}</dd>")
    meta.append(f"<dt>message</dt><dd><pre>{esc(commit.message.rstrip())}</pre></dd>")

    stat_rows = []
    for change in diff.changes:
        status = change.status.value
        stat_rows.append(
            f'<tr><td class="status-{status}">{status}</td>'
            f'<td><a href="#{esc(anchor(change.path))}">{esc(change.path)}</a></td>'
            f'<td class="numeric">+{change.insertions}</td>'
            f'<td class="numeric">-{change.deletions}</td></tr>'
        )
    stat_rows.append(
        f'<tr><td></td><td>{files} file{"s" if files != 1 else ""} changed</td>'
        f'<td class="numeric">+{plus}</td><td class="numeric">-{minus}</td></tr>'
    )
    meta.append(f'<dt>diffstat</dt><dd><table class="diffstat">{"".join(stat_rows)}</table></dd>')

    sections = []
    for change in diff.changes:
        status = change.status.value
        if change.binary:
            content = '<p class="binary-placeholder">Binary files differ.</p>'
        elif not change.hunks:
            content = '<p class="muted">No content changes.</p>'
        else:
            content = highlighter.highlight_patch(format_patch(change))
        sections.append(
            f'<section class="file-change" id="{esc(anchor(change.path))}">'
            f'<h3><span class="status-{status}">{status}</span> {esc(change.path)}</h3>'
            f"{content}</section>"
        )
    title = f"Commit {commit.id[:12]}"
    body = (f"<h2>{esc(commit.summary)}</h2>\n<dl class=\"commit\">{''.join(meta)}</dl>\n"
            + "\n".join(sections))
    return Page(PageKind.COMMIT, commit.id, title, body)


def anchor(path: str) -> str:
    return "file-" + "".join(ch if ch.isalnum() or ch in "-_" else "-" for ch in path)


# ---- trees -------------------------------------------------------------------

def entry_mode(entry: TreeEntry) -> str:
    if entry.kind is EntryKind.TREE:
        return "drwxr-xr-x"
    if entry.kind is EntryKind.LINK:
        return "lrwxrwxrwx"
    if entry.kind is EntryKind.SUBMODULE:
        return "m---------"
    return "-rwxr-xr-x" if entry.executable else "-rw-r--r--"


def breadcrumb(parts: Sequence[str], is_dir: bool) -> str:
    """Links to every ancestor listing of a page, ending with its own name."""
    depth = len(parts) if is_dir else len(parts) - 1
    crumbs = [f'<a href="{"../" * depth}index.html">root</a>']
    for i, part in enumerate(parts):
        up = depth - i - 1
        if i == len(parts) - 1:
            crumbs.append(esc(part))
        else:
            crumbs.append(f'<a href="{"../" * up}index.html">{esc(part)}</a>')
    return '<p class="breadcrumb">' + " / ".join(crumbs) + "</p>"


def tree_row(entry: TreeEntry, size: Optional[int] = None) -> str:
    if entry.kind is EntryKind.TREE:
        link = f'<a href="{href(dir_component(entry.name))}/index.html">{esc(entry.name)}/</a>'
    elif entry.kind is EntryKind.SUBMODULE:
        link = f'{esc(entry.name)} <span class="muted">@ {entry.id}</span>'
    else:
        link = f'<a href="{href(file_page_name(entry.name))}">{esc(entry.name)}</a>'
    size_cell = bytes_human(size) if size is not None else ""
    return (f'<tr><td class="mode">{entry_mode(entry)}</td>'
            f'<td class="numeric">{size_cell}</td><td>{link}</td></tr>')


def tree_page(path: str, tree: Tree, readme_html: str = "",
              sizes: Optional[Dict[str, int]] = None) -> Page:
    """Listing for `tree`. `sizes` maps entry names to blob sizes; other rows get no size."""
    sizes = sizes or {}
    parts = path.split("/") if path else []
    rows = "\n".join(tree_row(entry, sizes.get(entry.name)) for entry in tree.entries)
    body = (
        breadcrumb(parts, is_dir=True)
        + '\n<table class="tree">\n<thead><tr><th>Mode</th><th class="numeric">Size</th><th>Name</th></tr></thead>\n'
        + f"<tbody>\n{rows}\n</tbody>\n</table>"
    )
    if readme_html:
        body += f'\n<article class="readme">{readme_html}</article>'
    return Page(PageKind.TREE, path, path or "Files", body)


def file_page(path: str, content_html: str, attachment: Optional[bytes] = None) -> Page:
    parts = path.split("/")
    body = breadcrumb(parts, is_dir=False)
    if attachment is not None:
        up = "../" * len(parts)
        body += f'\n<p><a href="{up}raw/{href(path)}">See raw</a></p>'
    body += f'\n<div class="blob">{content_html}</div>'
    return Page(PageKind.FILE, path, path, body, attachment)
