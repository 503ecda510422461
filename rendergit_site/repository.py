"""
Repository Reader: opens a git directory and serves commits, trees and
blobs by id, from loose objects or packfiles.

One Repository instance owns the object cache for a run. Nothing here is
module-level state, so separate runs over separate repositories never share
anything.
"""

from __future__ import annotations

import logging
import pathlib
import re
import threading
import zlib
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from .errors import CorruptObject, CorruptRepository, RepositoryNotFound
from .objects import (
    Blob,
    Commit,
    Tree,
    hash_object,
    parse_commit,
    parse_tag,
    parse_tree,
    split_header,
)
from .pack import Pack

logger = logging.getLogger(__name__)

MAX_SYMREF_DEPTH = 5
MAX_TAG_DEPTH = 10
DIGEST_SIZES = {"sha1": 20, "sha256": 32}

_SECTION_RE = re.compile(r'^\[\s*([A-Za-z0-9.-]+)(?:\s+"((?:[^"\\]|\\.)*)")?\s*\]')


@dataclass(frozen=True)
class RepositoryMetadata:
    name: str
    description: str
    url: str


def read_git_config(path: pathlib.Path) -> Dict[str, str]:
    """
    Flatten a git config file into {"section.subsection.key": value}.

    Only what the generator needs: plain and quoted values, both subsection
    spellings, comments. Includes and multi-valued keys are ignored (last wins).
    """
    values: Dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return values
    section = ""
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line[0] in "#;":
            continue
        m = _SECTION_RE.match(line)
        if m:
            name, sub = m.group(1), m.group(2)
            if sub is not None:
                section = f"{name.lower()}.{sub}"
            elif "." in name:
                head, _, rest = name.partition(".")
                section = f"{head.lower()}.{rest}"
            else:
                section = name.lower()
            continue
        key, sep, value = line.partition("=")
        value = value.strip() if sep else "true"
        if value.startswith('"') and value.endswith('"') and len(value) >= 2:
            value = value[1:-1]
        else:
            value = re.split(r"\s[#;]", value, maxsplit=1)[0].strip()
        values[f"{section}.{key.strip().lower()}"] = value
    return values


def _read_stripped(path: pathlib.Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace").strip()
    except OSError:
        return ""


class Repository:
    """A git repository opened read-only for the duration of one run."""

    def __init__(self, path: pathlib.Path, gitdir: pathlib.Path,
                 commondir: pathlib.Path, bare: bool) -> None:
        self.path = path
        self.gitdir = gitdir
        self.commondir = commondir
        self.bare = bare
        self.config = read_git_config(commondir / "config")
        self.algorithm = self.config.get("extensions.objectformat", "sha1").lower()
        if self.algorithm not in DIGEST_SIZES:
            raise CorruptRepository(str(gitdir), f"unsupported object format {self.algorithm!r}")
        self.digest_size = DIGEST_SIZES[self.algorithm]
        self.objects_dir = commondir / "objects"
        self.packs = self._open_packs()
        self.shallow: FrozenSet[str] = frozenset(
            _read_stripped(commondir / "shallow").split()
        )
        self._cache: Dict[str, Union[Commit, Tree]] = {}
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path: Union[str, pathlib.Path]) -> "Repository":
        root = pathlib.Path(path)
        if not root.exists():
            raise RepositoryNotFound(str(path), "no such directory")
        root = root.resolve()
        dotgit = root / ".git"
        bare = False
        if dotgit.is_dir():
            gitdir = dotgit
        elif dotgit.is_file():
            pointer = _read_stripped(dotgit)
            if not pointer.startswith("gitdir:"):
                raise RepositoryNotFound(str(path), "malformed .git file")
            gitdir = (root / pointer[len("gitdir:"):].strip()).resolve()
        else:
            gitdir = root
            bare = True

        commondir = gitdir
        pointer = _read_stripped(gitdir / "commondir")
        if pointer:
            commondir = (gitdir / pointer).resolve()

        if not (commondir / "objects").is_dir() or not (gitdir / "HEAD").is_file():
            raise RepositoryNotFound(str(path))
        logger.debug("Opened repository %s (git dir %s)", root, gitdir)
        return cls(root, gitdir, commondir, bare)

    def _open_packs(self) -> List[Pack]:
        pack_dir = self.objects_dir / "pack"
        if not pack_dir.is_dir():
            return []
        packs = []
        for idx in sorted(pack_dir.glob("*.idx")):
            if idx.with_suffix(".pack").exists():
                packs.append(Pack(idx, self.digest_size))
        return packs

    def close(self) -> None:
        for pack in self.packs:
            pack.close()
        self.packs = []

    def __enter__(self) -> "Repository":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---- references ----------------------------------------------------------

    def _packed_refs(self) -> Dict[str, str]:
        refs: Dict[str, str] = {}
        text = _read_stripped(self.commondir / "packed-refs")
        for line in text.splitlines():
            if not line or line.startswith(("#", "^")):
                continue
            parts = line.split(" ", 1)
            if len(parts) == 2:
                refs[parts[1].strip()] = parts[0]
        return refs

    def _is_object_id(self, value: str) -> bool:
        return len(value) == self.digest_size * 2 and all(c in "0123456789abcdef" for c in value)

    def resolve_ref(self, name: str) -> str:
        """Follow a (possibly symbolic) reference down to an object id."""
        current = name
        for _ in range(MAX_SYMREF_DEPTH + 1):
            base = self.gitdir if current == "HEAD" else self.commondir
            value = _read_stripped(base / current)
            if not value:
                value = self._packed_refs().get(current, "")
            if not value:
                raise CorruptRepository(str(self.gitdir), f"reference {current} does not resolve")
            if value.startswith("ref:"):
                current = value[len("ref:"):].strip()
                continue
            value = value.lower()
            if not self._is_object_id(value):
                raise CorruptRepository(str(self.gitdir), f"reference {current} holds {value!r}")
            return value
        raise CorruptRepository(str(self.gitdir), f"symbolic reference loop at {name}")

    def resolve_head(self) -> str:
        """The commit HEAD points at, peeling annotated tags."""
        object_id = self.resolve_ref("HEAD")
        for _ in range(MAX_TAG_DEPTH):
            try:
                obj_type, payload = self.read_raw(object_id)
            except CorruptObject as e:
                raise CorruptRepository(str(self.gitdir), f"HEAD points at an unreadable object: {e}")
            if obj_type == "commit":
                return object_id
            if obj_type != "tag":
                raise CorruptRepository(str(self.gitdir), f"HEAD points at a {obj_type}")
            object_id = parse_tag(object_id, payload).object
        raise CorruptRepository(str(self.gitdir), "tag chain too long")

    # ---- objects -------------------------------------------------------------

    def _read_loose(self, object_id: str) -> Optional[bytes]:
        path = self.objects_dir / object_id[:2] / object_id[2:]
        try:
            compressed = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CorruptObject(object_id, f"cannot read {path}: {e}")
        try:
            return zlib.decompress(compressed)
        except zlib.error as e:
            raise CorruptObject(object_id, f"cannot inflate loose object: {e}")

    def read_raw(self, object_id: str) -> Tuple[str, bytes]:
        """(type, payload) of any object, verified against its id."""
        if not self._is_object_id(object_id):
            raise CorruptObject(object_id, "not a valid object id")
        raw = self._read_loose(object_id)
        if raw is not None:
            obj_type, payload = split_header(object_id, raw)
        else:
            for pack in self.packs:
                if object_id in pack:
                    obj_type, payload = pack.read(object_id, self.read_raw)
                    break
            else:
                raise CorruptObject(object_id, "not found in object database")
        if hash_object(obj_type, payload, self.algorithm) != object_id:
            raise CorruptObject(object_id, "content does not match its digest")
        return obj_type, payload

    def _read_typed(self, object_id: str, expected: str) -> bytes:
        obj_type, payload = self.read_raw(object_id)
        if obj_type != expected:
            raise CorruptObject(object_id, f"expected a {expected}, found a {obj_type}")
        return payload

    def _cached(self, object_id: str, expected: str, parse):
        obj = self._cache.get(object_id)
        if obj is None:
            with self._lock:
                obj = self._cache.get(object_id)
                if obj is None:
                    obj = parse(object_id, self._read_typed(object_id, expected))
                    self._cache[object_id] = obj
        return obj

    def read_commit(self, object_id: str) -> Commit:
        return self._cached(object_id, "commit", parse_commit)

    def read_tree(self, object_id: str) -> Tree:
        return self._cached(
            object_id, "tree",
            lambda oid, payload: parse_tree(oid, payload, self.digest_size),
        )

    def read_blob(self, object_id: str) -> Blob:
        # not cached: blobs are read once per page or diff and can be large
        return Blob(object_id, self._read_typed(object_id, "blob"))

    def parents_of(self, commit: Commit) -> Tuple[str, ...]:
        if commit.id in self.shallow:
            return ()
        return commit.parents

    # ---- metadata ------------------------------------------------------------

    @property
    def name(self) -> str:
        name = self.path.name
        if name == ".git":
            return self.path.parent.name
        if self.bare and name.endswith(".git"):
            name = name[:-4]
        return name

    def read_metadata(self) -> RepositoryMetadata:
        description = _read_stripped(self.commondir / "description")
        url = _read_stripped(self.commondir / "url") or self.config.get("remote.origin.url", "")
        return RepositoryMetadata(self.name, description, url)
