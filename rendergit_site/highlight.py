"""
Blob Highlighter: file content -> HTML fragment.

- Binary content (a NUL byte in the first 8 KiB) is never highlighted
- The language comes from a static extension table, looked up in Pygments
- Anything unknown, oversized, undecodable or that makes Pygments fail is
  rendered as escaped plain text instead
"""

from __future__ import annotations

import html
import logging
import pathlib
from typing import Dict, Optional

import markdown  # Python-Markdown
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.lexers.diff import DiffLexer

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192
MAX_HIGHLIGHT_BYTES = 512 * 1024
BINARY_PLACEHOLDER = '<p class="binary-placeholder">Binary file not shown</p>'
MARKDOWN_EXTENSIONS = {".md", ".markdown", ".mdown", ".mkd", ".mkdn"}

# extension (lowercase, with dot) -> Pygments lexer alias
EXTENSION_LANGUAGES: Dict[str, str] = {
    ".py": "python", ".pyw": "python", ".pyi": "python",
    ".js": "javascript", ".mjs": "javascript", ".cjs": "javascript", ".jsx": "jsx",
    ".ts": "typescript", ".tsx": "tsx",
    ".html": "html", ".htm": "html", ".xml": "xml", ".svg": "xml",
    ".css": "css", ".scss": "scss", ".sass": "sass", ".less": "less",
    ".json": "json", ".jsonl": "json",
    ".yaml": "yaml", ".yml": "yaml", ".toml": "toml", ".ini": "ini", ".cfg": "ini",
    ".md": "markdown", ".markdown": "markdown", ".rst": "rst",
    ".c": "c", ".h": "c", ".cc": "cpp", ".cpp": "cpp", ".cxx": "cpp", ".hpp": "cpp",
    ".rs": "rust", ".go": "go", ".java": "java", ".kt": "kotlin", ".kts": "kotlin",
    ".scala": "scala", ".swift": "swift", ".cs": "csharp", ".fs": "fsharp",
    ".rb": "ruby", ".php": "php", ".pl": "perl", ".lua": "lua", ".r": "r",
    ".hs": "haskell", ".ml": "ocaml", ".ex": "elixir", ".exs": "elixir", ".erl": "erlang",
    ".clj": "clojure", ".lisp": "common-lisp", ".el": "emacs-lisp", ".scm": "scheme",
    ".sh": "bash", ".bash": "bash", ".zsh": "zsh", ".fish": "fish",
    ".ps1": "powershell", ".bat": "batch", ".cmd": "batch",
    ".sql": "sql", ".diff": "diff", ".patch": "diff",
    ".tex": "latex", ".nix": "nix", ".proto": "protobuf", ".dart": "dart",
    ".vim": "vim", ".zig": "zig", ".jl": "julia",
}

# whole file names that say more than their (missing) extension
FILENAME_LANGUAGES: Dict[str, str] = {
    "makefile": "make",
    "gnumakefile": "make",
    "dockerfile": "docker",
    "cmakelists.txt": "cmake",
    "meson.build": "meson",
    ".gitignore": "ini",
    ".gitattributes": "ini",
    ".gitmodules": "ini",
}


def is_binary(data: bytes, window: int = BINARY_SNIFF_BYTES) -> bool:
    return b"\x00" in data[:window]


def language_for(filename: str) -> Optional[str]:
    name = pathlib.PurePosixPath(filename).name.lower()
    if name in FILENAME_LANGUAGES:
        return FILENAME_LANGUAGES[name]
    return EXTENSION_LANGUAGES.get(pathlib.PurePosixPath(name).suffix)


def escape_plain(text: str) -> str:
    return f'<pre class="plain">{html.escape(text)}</pre>'


def render_markdown(md_text: str) -> str:
    return markdown.markdown(md_text, extensions=["fenced_code", "tables", "toc"])


class BlobHighlighter:
    def __init__(self, max_bytes: int = MAX_HIGHLIGHT_BYTES) -> None:
        self.max_bytes = max_bytes
        self.formatter = HtmlFormatter(nowrap=False, lineanchors="L")
        self.diff_formatter = HtmlFormatter(nowrap=False)

    def stylesheet(self) -> str:
        return self.formatter.get_style_defs(".highlight")

    def highlight(self, content: bytes, filename: str) -> str:
        if is_binary(content):
            return BINARY_PLACEHOLDER
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("%s is not UTF-8, rendering as plain text", filename)
            return escape_plain(content.decode("utf-8", errors="replace"))
        if len(content) > self.max_bytes:
            return escape_plain(text)
        language = language_for(filename)
        if language is None:
            return escape_plain(text)
        try:
            lexer = get_lexer_by_name(language, stripnl=False, ensurenl=False)
            return highlight(text, lexer, self.formatter)
        except Exception as e:
            logger.warning("Highlighting %s as %s failed (%s); using plain text", filename, language, e)
            return escape_plain(text)

    def highlight_patch(self, patch_text: str) -> str:
        try:
            return highlight(patch_text, DiffLexer(stripnl=False), self.diff_formatter)
        except Exception as e:
            logger.warning("Highlighting a patch failed (%s); using plain text", e)
            return escape_plain(patch_text)
