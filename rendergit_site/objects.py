"""
In-memory model of the git objects the generator reads, and the decoders
that turn a raw object payload into it.

Every object on disk is "<type> <size>\\0<payload>", addressed by the digest
of exactly those bytes. The payload layouts handled here:

- commit: header lines ("tree", "parent"*, "author", "committer", ...),
  a blank line, then the message
- tree: repeated "<octal mode> <name>\\0<raw digest>"
- tag: like a commit, pointing at another object
- blob: opaque bytes
"""

from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from .errors import CorruptObject

OBJECT_TYPES = ("commit", "tree", "blob", "tag")


class EntryKind(enum.Enum):
    FILE = "file"
    TREE = "tree"
    LINK = "link"
    SUBMODULE = "submodule"


_MODE_KINDS: Dict[int, EntryKind] = {
    0o100644: EntryKind.FILE,
    0o100755: EntryKind.FILE,
    0o100664: EntryKind.FILE,  # written by very old git versions
    0o040000: EntryKind.TREE,
    0o120000: EntryKind.LINK,
    0o160000: EntryKind.SUBMODULE,
}


@dataclass(frozen=True)
class Signature:
    name: str
    email: str
    timestamp: int
    offset_minutes: int

    @property
    def datetime(self) -> datetime:
        tz = timezone(timedelta(minutes=self.offset_minutes))
        return datetime.fromtimestamp(self.timestamp, tz)


@dataclass(frozen=True)
class Commit:
    id: str
    tree: str
    parents: Tuple[str, ...]
    author: Signature
    committer: Signature
    message: str

    @property
    def summary(self) -> str:
        lines = self.message.strip().splitlines()
        return lines[0] if lines else ""

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


@dataclass(frozen=True)
class TreeEntry:
    name: str
    mode: int
    kind: EntryKind
    id: str

    @property
    def sort_key(self) -> str:
        # git orders subtrees as if their name ended in "/"
        return self.name + "/" if self.kind is EntryKind.TREE else self.name

    @property
    def executable(self) -> bool:
        return self.kind is EntryKind.FILE and bool(self.mode & 0o111)


@dataclass(frozen=True)
class Tree:
    id: str
    entries: Tuple[TreeEntry, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, name: str) -> Optional[TreeEntry]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


@dataclass(frozen=True)
class Blob:
    id: str
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Tag:
    id: str
    object: str
    type: str
    tag: str


def hash_object(obj_type: str, payload: bytes, algorithm: str = "sha1") -> str:
    """Digest of an object exactly as git computes it."""
    header = f"{obj_type} {len(payload)}\0".encode()
    return hashlib.new(algorithm, header + payload).hexdigest()


def split_header(object_id: str, raw: bytes) -> Tuple[str, bytes]:
    """Split a decompressed loose object into (type, payload), checking the size."""
    nul = raw.find(b"\0")
    if nul < 0:
        raise CorruptObject(object_id, "missing object header")
    try:
        obj_type, size_text = raw[:nul].decode("ascii").split(" ")
        size = int(size_text)
    except ValueError:
        raise CorruptObject(object_id, f"malformed header {raw[:nul]!r}")
    if obj_type not in OBJECT_TYPES:
        raise CorruptObject(object_id, f"unknown object type {obj_type!r}")
    payload = raw[nul + 1:]
    if len(payload) != size:
        raise CorruptObject(object_id, f"header says {size} bytes, found {len(payload)}")
    return obj_type, payload


def _decode(data: bytes, encoding: str = "utf-8") -> str:
    try:
        return data.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        return data.decode("utf-8", errors="replace")


def parse_signature(object_id: str, value: bytes, encoding: str = "utf-8") -> Signature:
    # "Name <email> 1700000000 +0100"
    lt = value.find(b"<")
    gt = value.find(b">", lt)
    if lt < 0 or gt < 0:
        raise CorruptObject(object_id, f"malformed signature {value!r}")
    name = _decode(value[:lt].strip(), encoding)
    email = _decode(value[lt + 1:gt], encoding)
    rest = value[gt + 1:].split()
    try:
        timestamp = int(rest[0]) if rest else 0
        tz = rest[1].decode("ascii") if len(rest) > 1 else "+0000"
        sign = -1 if tz.startswith("-") else 1
        digits = tz.lstrip("+-")
        offset = sign * (int(digits[:-2] or "0") * 60 + int(digits[-2:]))
    except (ValueError, UnicodeDecodeError):
        raise CorruptObject(object_id, f"malformed signature time {value!r}")
    return Signature(name, email, timestamp, offset)


def _parse_headers(object_id: str, payload: bytes) -> Tuple[List[Tuple[bytes, bytes]], bytes]:
    """Header lines of a commit or tag, with continuation lines folded in."""
    headers: List[Tuple[bytes, bytes]] = []
    pos = 0
    while pos < len(payload):
        end = payload.find(b"\n", pos)
        if end < 0:
            end = len(payload)
        line = payload[pos:end]
        pos = end + 1
        if not line:
            return headers, payload[pos:]
        if line.startswith(b" "):
            if not headers:
                raise CorruptObject(object_id, "continuation line before any header")
            key, value = headers[-1]
            headers[-1] = (key, value + b"\n" + line[1:])
            continue
        key, _, value = line.partition(b" ")
        headers.append((key, value))
    return headers, b""


def parse_commit(object_id: str, payload: bytes) -> Commit:
    headers, message = _parse_headers(object_id, payload)
    encoding = "utf-8"
    for key, value in headers:
        if key == b"encoding":
            encoding = value.decode("ascii", errors="replace")
    tree = None
    parents: List[str] = []
    author = committer = None
    for key, value in headers:
        if key == b"tree":
            tree = value.decode("ascii", errors="replace")
        elif key == b"parent":
            parents.append(value.decode("ascii", errors="replace"))
        elif key == b"author":
            author = parse_signature(object_id, value, encoding)
        elif key == b"committer":
            committer = parse_signature(object_id, value, encoding)
    if tree is None:
        raise CorruptObject(object_id, "commit has no tree")
    if committer is None:
        raise CorruptObject(object_id, "commit has no committer")
    return Commit(
        id=object_id,
        tree=tree,
        parents=tuple(parents),
        author=author or committer,
        committer=committer,
        message=_decode(message, encoding),
    )


def parse_tree(object_id: str, payload: bytes, digest_size: int = 20) -> Tree:
    entries: List[TreeEntry] = []
    seen = set()
    pos = 0
    while pos < len(payload):
        space = payload.find(b" ", pos)
        nul = payload.find(b"\0", space)
        if space < 0 or nul < 0 or nul + 1 + digest_size > len(payload):
            raise CorruptObject(object_id, f"truncated tree entry at byte {pos}")
        try:
            mode = int(payload[pos:space], 8)
        except ValueError:
            raise CorruptObject(object_id, f"bad mode {payload[pos:space]!r}")
        kind = _MODE_KINDS.get(mode)
        if kind is None:
            raise CorruptObject(object_id, f"unknown mode {mode:o}")
        name = payload[space + 1:nul].decode("utf-8", errors="surrogateescape")
        if name in ("", ".", "..") or "/" in name:
            raise CorruptObject(object_id, f"invalid entry name {name!r}")
        if name in seen:
            raise CorruptObject(object_id, f"duplicate entry {name!r}")
        seen.add(name)
        target = payload[nul + 1:nul + 1 + digest_size].hex()
        entries.append(TreeEntry(name, mode, kind, target))
        pos = nul + 1 + digest_size
    # stable, and a no-op for trees git itself wrote
    entries.sort(key=lambda e: e.sort_key.encode("utf-8", errors="surrogateescape"))
    return Tree(object_id, tuple(entries))


def parse_tag(object_id: str, payload: bytes) -> Tag:
    fields = dict(_parse_headers(object_id, payload)[0])
    try:
        return Tag(
            id=object_id,
            object=fields[b"object"].decode("ascii"),
            type=fields[b"type"].decode("ascii"),
            tag=fields.get(b"tag", b"").decode("utf-8", errors="replace"),
        )
    except (KeyError, UnicodeDecodeError):
        raise CorruptObject(object_id, "malformed tag")
