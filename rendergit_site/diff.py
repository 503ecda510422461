"""
Diff Engine: what changed between two tree snapshots.

Trees are compared with a single merge-join over their (already sorted)
entries; files that differ get a line-level patch computed with Myers'
greedy O(ND) algorithm and grouped into unified-diff hunks.

Renames and copies are not detected: a moved file is a delete plus an add.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .highlight import is_binary
from .objects import EntryKind, Tree, TreeEntry
from .repository import Repository

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LINES = 3
# edits one region may need before it is shown as a whole-region replacement
MAX_EDIT_COST = 2000


class ChangeStatus(enum.Enum):
    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class DiffLine:
    op: str      # " ", "-" or "+"
    text: bytes  # includes the line terminator, if the line had one


@dataclass(frozen=True)
class Hunk:
    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: Tuple[DiffLine, ...]

    @property
    def header(self) -> str:
        return f"@@ -{_range(self.old_start, self.old_count)} +{_range(self.new_start, self.new_count)} @@"


def _range(start: int, count: int) -> str:
    return str(start) if count == 1 else f"{start},{count}"


@dataclass(frozen=True)
class FileChange:
    path: str
    status: ChangeStatus
    old_id: Optional[str] = None
    new_id: Optional[str] = None
    old_mode: Optional[int] = None
    new_mode: Optional[int] = None
    hunks: Tuple[Hunk, ...] = ()
    binary: bool = False

    @property
    def insertions(self) -> int:
        return sum(1 for h in self.hunks for line in h.lines if line.op == "+")

    @property
    def deletions(self) -> int:
        return sum(1 for h in self.hunks for line in h.lines if line.op == "-")


@dataclass(frozen=True)
class Diff:
    old_tree: Optional[str]
    new_tree: str
    changes: Tuple[FileChange, ...] = field(default_factory=tuple)

    @property
    def stats(self) -> Tuple[int, int, int]:
        """(files changed, insertions, deletions)"""
        return (
            len(self.changes),
            sum(c.insertions for c in self.changes),
            sum(c.deletions for c in self.changes),
        )


# ---- line diff ---------------------------------------------------------------

def split_lines(data: bytes) -> List[bytes]:
    """Split on "\\n" only, keeping terminators, so "".join() gives data back."""
    parts = data.split(b"\n")
    lines = [p + b"\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _bisect(a: Sequence[bytes], b: Sequence[bytes]) -> Optional[Tuple[int, int]]:
    """Split point (x, y) where the forward and reverse Myers searches meet.

    Only O(D) state is kept per search. Returns None once the cost reaches
    MAX_EDIT_COST without the searches meeting.
    """
    n, m = len(a), len(b)
    delta = n - m
    front = delta % 2 != 0
    forward: Dict[int, int] = {1: 0}
    reverse: Dict[int, int] = {1: 0}
    k1start = k1end = k2start = k2end = 0
    for d in range(min((n + m + 1) // 2, MAX_EDIT_COST // 2)):
        for k1 in range(-d + k1start, d + 1 - k1end, 2):
            if k1 == -d or (k1 != d and forward.get(k1 - 1, -1) < forward.get(k1 + 1, -1)):
                x1 = forward[k1 + 1]
            else:
                x1 = forward[k1 - 1] + 1
            y1 = x1 - k1
            while x1 < n and y1 < m and a[x1] == b[y1]:
                x1 += 1
                y1 += 1
            forward[k1] = x1
            if x1 > n:
                k1end += 2
            elif y1 > m:
                k1start += 2
            elif front:
                x2 = reverse.get(delta - k1, -1)
                if x2 != -1 and x1 >= n - x2:
                    return x1, y1
        for k2 in range(-d + k2start, d + 1 - k2end, 2):
            if k2 == -d or (k2 != d and reverse.get(k2 - 1, -1) < reverse.get(k2 + 1, -1)):
                x2 = reverse[k2 + 1]
            else:
                x2 = reverse[k2 - 1] + 1
            y2 = x2 - k2
            while x2 < n and y2 < m and a[n - x2 - 1] == b[m - y2 - 1]:
                x2 += 1
                y2 += 1
            reverse[k2] = x2
            if x2 > n:
                k2end += 2
            elif y2 > m:
                k2start += 2
            elif not front:
                k1 = delta - k2
                x1 = forward.get(k1, -1)
                if x1 != -1 and x1 >= n - x2:
                    return x1, x1 - k1
    return None


def _edit_script(a: Sequence[bytes], b: Sequence[bytes], out: List[Tuple[str, bytes]]) -> None:
    prefix = 0
    while prefix < len(a) and prefix < len(b) and a[prefix] == b[prefix]:
        prefix += 1
    suffix = 0
    while (suffix < len(a) - prefix and suffix < len(b) - prefix
           and a[-1 - suffix] == b[-1 - suffix]):
        suffix += 1
    out.extend((" ", line) for line in a[:prefix])
    old, new = a[prefix:len(a) - suffix], b[prefix:len(b) - suffix]

    if len(old) == 1 and old[0] in new:
        i = new.index(old[0])
        out.extend(("+", line) for line in new[:i])
        out.append((" ", old[0]))
        out.extend(("+", line) for line in new[i + 1:])
    elif len(new) == 1 and new[0] in old:
        i = old.index(new[0])
        out.extend(("-", line) for line in old[:i])
        out.append((" ", new[0]))
        out.extend(("-", line) for line in old[i + 1:])
    else:
        split = _bisect(old, new) if len(old) > 1 and len(new) > 1 else None
        if split is None:
            out.extend(("-", line) for line in old)
            out.extend(("+", line) for line in new)
        else:
            x, y = split
            _edit_script(old[:x], new[:y], out)
            _edit_script(old[x:], new[y:], out)

    out.extend((" ", line) for line in a[len(a) - suffix:])


def diff_lines(old: Sequence[bytes], new: Sequence[bytes]) -> List[Tuple[str, bytes]]:
    """Edit script turning old into new, as (op, line) pairs.

    Minimal unless a region needs more than MAX_EDIT_COST edits, in which case
    that region is replaced wholesale. Within each changed run deletions come
    before insertions.
    """
    ops: List[Tuple[str, bytes]] = []
    _edit_script(list(old), list(new), ops)
    out: List[Tuple[str, bytes]] = []
    added: List[Tuple[str, bytes]] = []
    for op in ops:
        if op[0] == "+":
            added.append(op)
            continue
        if op[0] == " ":
            out.extend(added)
            added = []
        out.append(op)
    out.extend(added)
    return out


def make_hunks(ops: Sequence[Tuple[str, bytes]],
               context: int = DEFAULT_CONTEXT_LINES) -> List[Hunk]:
    changed = [i for i, (op, _) in enumerate(ops) if op != " "]
    if not changed:
        return []
    groups: List[Tuple[int, int]] = []
    first = last = changed[0]
    for i in changed[1:]:
        if i - last - 1 > 2 * context:
            groups.append((first, last))
            first = i
        last = i
    groups.append((first, last))

    # old/new line numbers before each op
    old_pos = [0] * (len(ops) + 1)
    new_pos = [0] * (len(ops) + 1)
    for i, (op, _) in enumerate(ops):
        old_pos[i + 1] = old_pos[i] + (op != "+")
        new_pos[i + 1] = new_pos[i] + (op != "-")

    hunks: List[Hunk] = []
    for first, last in groups:
        start = max(0, first - context)
        end = min(len(ops), last + context + 1)
        old_count = old_pos[end] - old_pos[start]
        new_count = new_pos[end] - new_pos[start]
        hunks.append(Hunk(
            old_start=old_pos[start] + (1 if old_count else 0),
            old_count=old_count,
            new_start=new_pos[start] + (1 if new_count else 0),
            new_count=new_count,
            lines=tuple(DiffLine(op, text) for op, text in ops[start:end]),
        ))
    return hunks


def apply_hunks(old: Sequence[bytes], hunks: Iterable[Hunk]) -> List[bytes]:
    """Rebuild the new lines from the old ones; raises ValueError on a mismatch."""
    out: List[bytes] = []
    pos = 0
    for hunk in hunks:
        start = hunk.old_start if hunk.old_count == 0 else hunk.old_start - 1
        if start < pos:
            raise ValueError(f"overlapping hunk {hunk.header}")
        out.extend(old[pos:start])
        pos = start
        for line in hunk.lines:
            if line.op == "+":
                out.append(line.text)
                continue
            if pos >= len(old) or old[pos] != line.text:
                raise ValueError(f"hunk {hunk.header} does not match line {pos + 1}")
            if line.op == " ":
                out.append(line.text)
            pos += 1
    out.extend(old[pos:])
    return out


def format_patch(change: FileChange) -> str:
    """Unified diff text for one file change."""
    old = "/dev/null" if change.status is ChangeStatus.ADDED else f"a/{change.path}"
    new = "/dev/null" if change.status is ChangeStatus.DELETED else f"b/{change.path}"
    out = [f"--- {old}\n", f"+++ {new}\n"]
    if change.binary:
        out.append(f"Binary files {old} and {new} differ\n")
    for hunk in change.hunks:
        out.append(hunk.header + "\n")
        for line in hunk.lines:
            text = line.text.decode("utf-8", errors="replace")
            out.append(line.op + text)
            if not text.endswith("\n"):
                out.append("\n\\ No newline at end of file\n")
    return "".join(out)


# ---- tree diff ---------------------------------------------------------------

def _key(entry: TreeEntry) -> bytes:
    return entry.sort_key.encode("utf-8", errors="surrogateescape")


class DiffEngine:
    def __init__(self, repo: Repository, context_lines: int = DEFAULT_CONTEXT_LINES) -> None:
        self.repo = repo
        self.context_lines = context_lines

    def diff(self, old_tree_id: Optional[str], new_tree_id: str) -> Diff:
        old = self.repo.read_tree(old_tree_id) if old_tree_id else None
        new = self.repo.read_tree(new_tree_id)
        changes = self._diff_trees(old, new, "")
        return Diff(old_tree_id, new_tree_id, tuple(changes))

    def diff_commit(self, commit_id: str) -> Diff:
        """A commit against its first parent (merges included), or the empty tree."""
        commit = self.repo.read_commit(commit_id)
        parents = self.repo.parents_of(commit)
        old_tree = self.repo.read_commit(parents[0]).tree if parents else None
        logger.debug("Diffing %s against %s", commit_id[:12], parents[0][:12] if parents else "the empty tree")
        return self.diff(old_tree, commit.tree)

    def _diff_trees(self, old: Optional[Tree], new: Optional[Tree], prefix: str) -> List[FileChange]:
        olds = old.entries if old is not None else ()
        news = new.entries if new is not None else ()
        changes: List[FileChange] = []
        i = j = 0
        while i < len(olds) or j < len(news):
            o = olds[i] if i < len(olds) else None
            n = news[j] if j < len(news) else None
            if n is None or (o is not None and _key(o) < _key(n)):
                changes.extend(self._one_sided(o, prefix, ChangeStatus.DELETED))
                i += 1
            elif o is None or _key(n) < _key(o):
                changes.extend(self._one_sided(n, prefix, ChangeStatus.ADDED))
                j += 1
            else:
                changes.extend(self._both_sides(o, n, prefix))
                i += 1
                j += 1
        return changes

    def _one_sided(self, entry: TreeEntry, prefix: str, status: ChangeStatus) -> List[FileChange]:
        path = prefix + entry.name
        if entry.kind is EntryKind.TREE:
            tree = self.repo.read_tree(entry.id)
            if status is ChangeStatus.ADDED:
                return self._diff_trees(None, tree, path + "/")
            return self._diff_trees(tree, None, path + "/")
        if status is ChangeStatus.ADDED:
            return [self._file_change(path, status, None, entry)]
        return [self._file_change(path, status, entry, None)]

    def _both_sides(self, old: TreeEntry, new: TreeEntry, prefix: str) -> List[FileChange]:
        if old.kind is not new.kind:
            return (self._one_sided(old, prefix, ChangeStatus.DELETED)
                    + self._one_sided(new, prefix, ChangeStatus.ADDED))
        if old.id == new.id:
            return []
        path = prefix + new.name
        if new.kind is EntryKind.TREE:
            return self._diff_trees(self.repo.read_tree(old.id), self.repo.read_tree(new.id), path + "/")
        return [self._file_change(path, ChangeStatus.MODIFIED, old, new)]

    def _content(self, entry: Optional[TreeEntry]) -> bytes:
        if entry is None:
            return b""
        if entry.kind is EntryKind.SUBMODULE:
            return f"Subproject commit {entry.id}\n".encode()
        return self.repo.read_blob(entry.id).data

    def _file_change(self, path: str, status: ChangeStatus,
                     old: Optional[TreeEntry], new: Optional[TreeEntry]) -> FileChange:
        old_data = self._content(old)
        new_data = self._content(new)
        binary = is_binary(old_data) or is_binary(new_data)
        hunks: Tuple[Hunk, ...] = ()
        if not binary:
            ops = diff_lines(split_lines(old_data), split_lines(new_data))
            hunks = tuple(make_hunks(ops, self.context_lines))
        return FileChange(
            path=path,
            status=status,
            old_id=old.id if old else None,
            new_id=new.id if new else None,
            old_mode=old.mode if old else None,
            new_mode=new.mode if new else None,
            hunks=hunks,
            binary=binary,
        )
