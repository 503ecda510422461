"""
Repository fixtures for the test suite.

Repositories are written object by object, exactly as git lays them out on
disk (zlib-deflated loose objects, ref files, packfiles with an index), so
the tests need no git binary and control every timestamp.
"""

from __future__ import annotations

import hashlib
import pathlib
import struct
import zlib
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

BASE_TIME = 1_700_000_000

FILE = 0o100644
EXECUTABLE = 0o100755
TREE = 0o040000
LINK = 0o120000
SUBMODULE = 0o160000


class Link(str):
    """A symlink target inside a files dict."""


class Submodule(str):
    """A pinned submodule commit id inside a files dict."""


FileSpec = Union[str, bytes, "Dict[str, FileSpec]", Tuple[int, Union[str, bytes]]]


class RepoBuilder:
    def __init__(self, root: pathlib.Path, bare: bool = False) -> None:
        self.root = root
        self.gitdir = root if bare else root / ".git"
        (self.gitdir / "objects").mkdir(parents=True, exist_ok=True)
        (self.gitdir / "refs" / "heads").mkdir(parents=True, exist_ok=True)
        (self.gitdir / "refs" / "tags").mkdir(parents=True, exist_ok=True)
        (self.gitdir / "HEAD").write_text("ref: refs/heads/main\n")
        self.clock = BASE_TIME
        self.head: Optional[str] = None

    # ---- objects -------------------------------------------------------------

    @staticmethod
    def object_id(obj_type: str, payload: bytes) -> str:
        return hashlib.sha1(f"{obj_type} {len(payload)}\0".encode() + payload).hexdigest()

    def write_object(self, obj_type: str, payload: bytes) -> str:
        oid = self.object_id(obj_type, payload)
        path = self.gitdir / "objects" / oid[:2] / oid[2:]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(zlib.compress(f"{obj_type} {len(payload)}\0".encode() + payload))
        return oid

    def blob(self, data: Union[str, bytes]) -> str:
        return self.write_object("blob", data.encode() if isinstance(data, str) else data)

    def tree(self, files: Dict[str, FileSpec]) -> str:
        entries: List[Tuple[bytes, int, str]] = []
        for name, spec in files.items():
            if isinstance(spec, dict):
                entries.append((name.encode("utf-8", "surrogateescape"), TREE, self.tree(spec)))
            elif isinstance(spec, Link):
                entries.append((name.encode("utf-8", "surrogateescape"), LINK, self.blob(str(spec))))
            elif isinstance(spec, Submodule):
                entries.append((name.encode("utf-8", "surrogateescape"), SUBMODULE, str(spec)))
            elif isinstance(spec, tuple):
                mode, data = spec
                entries.append((name.encode("utf-8", "surrogateescape"), mode, self.blob(data)))
            else:
                entries.append((name.encode("utf-8", "surrogateescape"), FILE, self.blob(spec)))
        entries.sort(key=lambda e: e[0] + b"/" if e[1] == TREE else e[0])
        payload = b"".join(
            f"{mode:o} ".encode() + name + b"\0" + bytes.fromhex(oid)
            for name, mode, oid in entries
        )
        return self.write_object("tree", payload)

    def commit(self, tree: str, parents: Sequence[str] = (), message: str = "commit",
               timestamp: Optional[int] = None, author: str = "Ada Lovelace <ada@example.com>") -> str:
        if timestamp is None:
            self.clock += 60
            timestamp = self.clock
        lines = [f"tree {tree}"]
        lines += [f"parent {p}" for p in parents]
        lines.append(f"author {author} {timestamp} +0100")
        lines.append(f"committer {author} {timestamp} +0100")
        payload = ("\n".join(lines) + "\n\n" + message + "\n").encode()
        return self.write_object("commit", payload)

    def commit_files(self, files: Dict[str, FileSpec], message: str = "commit",
                     parents: Optional[Sequence[str]] = None, timestamp: Optional[int] = None,
                     ref: str = "refs/heads/main") -> str:
        if parents is None:
            parents = [self.head] if self.head else []
        oid = self.commit(self.tree(files), parents, message, timestamp)
        self.set_ref(ref, oid)
        self.head = oid
        return oid

    def tag(self, target: str, name: str, obj_type: str = "commit") -> str:
        payload = (
            f"object {target}\ntype {obj_type}\ntag {name}\n"
            f"tagger Ada Lovelace <ada@example.com> {BASE_TIME} +0000\n\nrelease\n"
        ).encode()
        return self.write_object("tag", payload)

    # ---- refs and control files ----------------------------------------------

    def set_ref(self, ref: str, oid: str) -> None:
        path = self.gitdir / ref
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(oid + "\n")

    def set_head(self, value: str) -> None:
        (self.gitdir / "HEAD").write_text(value + "\n")

    def write_control(self, name: str, text: str) -> None:
        (self.gitdir / name).write_text(text)

    def loose_path(self, oid: str) -> pathlib.Path:
        return self.gitdir / "objects" / oid[:2] / oid[2:]


# ---- packfiles ---------------------------------------------------------------

PACK_TYPES = {"commit": 1, "tree": 2, "blob": 3, "tag": 4}


def _entry_header(type_num: int, size: int) -> bytes:
    out = bytearray()
    byte = (type_num << 4) | (size & 0x0F)
    size >>= 4
    while size:
        out.append(byte | 0x80)
        byte = size & 0x7F
        size >>= 7
    out.append(byte)
    return bytes(out)


def _varint(n: int) -> bytes:
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _ofs_distance(distance: int) -> bytes:
    out = [distance & 0x7F]
    distance >>= 7
    while distance:
        distance -= 1
        out.insert(0, 0x80 | (distance & 0x7F))
        distance >>= 7
    return bytes(out)


def make_delta(base: bytes, copy_len: int, insert: bytes) -> bytes:
    """Delta that copies base[:copy_len] and appends `insert` (both < 128 bytes)."""
    assert copy_len < 256 and len(insert) < 128
    delta = _varint(len(base)) + _varint(copy_len + len(insert))
    if copy_len:
        delta += bytes([0x90, copy_len])
    if insert:
        delta += bytes([len(insert)]) + insert
    return delta


class PackWriter:
    """Builds a version 2 pack plus its version 2 index."""

    def __init__(self) -> None:
        self.body = bytearray()
        self.entries: List[Tuple[str, int, int]] = []  # (id, offset, crc)

    def _add(self, oid: str, raw: bytes) -> int:
        offset = 12 + len(self.body)
        self.body += raw
        self.entries.append((oid, offset, zlib.crc32(raw)))
        return offset

    def add(self, obj_type: str, payload: bytes) -> Tuple[str, int]:
        oid = RepoBuilder.object_id(obj_type, payload)
        raw = _entry_header(PACK_TYPES[obj_type], len(payload)) + zlib.compress(payload)
        return oid, self._add(oid, raw)

    def add_ofs_delta(self, obj_type: str, payload: bytes, base_offset: int, delta: bytes) -> str:
        oid = RepoBuilder.object_id(obj_type, payload)
        offset = 12 + len(self.body)
        raw = _entry_header(6, len(delta)) + _ofs_distance(offset - base_offset) + zlib.compress(delta)
        self._add(oid, raw)
        return oid

    def add_ref_delta(self, obj_type: str, payload: bytes, base_id: str, delta: bytes) -> str:
        oid = RepoBuilder.object_id(obj_type, payload)
        raw = _entry_header(7, len(delta)) + bytes.fromhex(base_id) + zlib.compress(delta)
        self._add(oid, raw)
        return oid

    def write(self, pack_dir: pathlib.Path, name: str = "pack-test") -> None:
        pack_dir.mkdir(parents=True, exist_ok=True)
        pack = b"PACK" + struct.pack(">II", 2, len(self.entries)) + bytes(self.body)
        pack_sum = hashlib.sha1(pack).digest()
        (pack_dir / f"{name}.pack").write_bytes(pack + pack_sum)

        entries = sorted(self.entries)
        fanout = [0] * 256
        for oid, _, _ in entries:
            fanout[int(oid[:2], 16)] += 1
        total = 0
        for i in range(256):
            total += fanout[i]
            fanout[i] = total
        idx = b"\xfftOc" + struct.pack(">I", 2) + struct.pack(">256I", *fanout)
        idx += b"".join(bytes.fromhex(oid) for oid, _, _ in entries)
        idx += b"".join(struct.pack(">I", crc) for _, _, crc in entries)
        idx += b"".join(struct.pack(">I", offset) for _, offset, _ in entries)
        idx += pack_sum
        idx += hashlib.sha1(idx).digest()
        (pack_dir / f"{name}.idx").write_bytes(idx)


@pytest.fixture
def repo_builder(tmp_path: pathlib.Path) -> RepoBuilder:
    return RepoBuilder(tmp_path / "repo")


@pytest.fixture
def two_commit_repo(repo_builder: RepoBuilder) -> RepoBuilder:
    """Commit 1 adds a.txt = "hello\\n", commit 2 changes it to "hello world\\n"."""
    repo_builder.first = repo_builder.commit_files({"a.txt": "hello\n"}, "add a.txt")
    repo_builder.second = repo_builder.commit_files({"a.txt": "hello world\n"}, "greet the world")
    return repo_builder


@pytest.fixture
def nested_repo(repo_builder: RepoBuilder) -> RepoBuilder:
    repo_builder.commit_files({
        "README.md": "# Demo\n\nSome *text*.\n",
        "src": {"main.txt": "main\n"},
    }, "initial layout")
    return repo_builder
