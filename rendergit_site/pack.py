"""
Read-only access to git packfiles.

A pack is a sequence of deflated objects. Each entry starts with a varint
header carrying the object type and inflated size; delta entries
(OFS_DELTA, REF_DELTA) store instructions to rebuild the object from a base
object elsewhere in the pack (or, for REF_DELTA, anywhere in the store).
The matching .idx file maps object ids to pack offsets.
"""

from __future__ import annotations

import bisect
import logging
import mmap
import pathlib
import struct
import zlib
from typing import Callable, Dict, List, Optional, Tuple

from .errors import CorruptObject, CorruptRepository

logger = logging.getLogger(__name__)

IDX_V2_MAGIC = b"\xfftOc"

TYPE_NAMES = {1: "commit", 2: "tree", 3: "blob", 4: "tag"}
OFS_DELTA = 6
REF_DELTA = 7

# Resolves a REF_DELTA base that may live outside this pack.
BaseLookup = Callable[[str], Tuple[str, bytes]]


def _map(path: pathlib.Path) -> mmap.mmap:
    with path.open("rb") as f:
        return mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)


class PackIndex:
    """Sorted id -> offset table from a version 1 or 2 .idx file."""

    def __init__(self, path: pathlib.Path, digest_size: int = 20) -> None:
        self.path = path
        self.digest_size = digest_size
        data = path.read_bytes()
        try:
            if data[:4] == IDX_V2_MAGIC:
                self.names, self.offsets = self._parse_v2(data)
            else:
                self.names, self.offsets = self._parse_v1(data)
        except struct.error:
            raise CorruptRepository(str(path), "truncated pack index")

    def _parse_v1(self, data: bytes) -> Tuple[List[bytes], List[int]]:
        count = struct.unpack_from(">I", data, 255 * 4)[0]
        names: List[bytes] = []
        offsets: List[int] = []
        pos = 256 * 4
        width = 4 + self.digest_size
        for i in range(count):
            entry = data[pos + i * width:pos + (i + 1) * width]
            if len(entry) != width:
                raise CorruptRepository(str(self.path), "truncated pack index")
            offsets.append(struct.unpack(">I", entry[:4])[0])
            names.append(entry[4:])
        return names, offsets

    def _parse_v2(self, data: bytes) -> Tuple[List[bytes], List[int]]:
        version = struct.unpack_from(">I", data, 4)[0]
        if version != 2:
            raise CorruptRepository(str(self.path), f"unsupported pack index version {version}")
        count = struct.unpack_from(">I", data, 8 + 255 * 4)[0]
        pos = 8 + 256 * 4
        size = self.digest_size
        names = [data[pos + i * size:pos + (i + 1) * size] for i in range(count)]
        pos += count * size
        pos += count * 4  # crc32 table
        small = struct.unpack_from(f">{count}I", data, pos)
        pos += count * 4
        offsets: List[int] = []
        for value in small:
            if value & 0x80000000:
                # index into the 64-bit offset table that follows
                large = (value & 0x7FFFFFFF) * 8
                offsets.append(struct.unpack_from(">Q", data, pos + large)[0])
            else:
                offsets.append(value)
        return names, offsets

    def find(self, object_id: str) -> Optional[int]:
        raw = bytes.fromhex(object_id)
        i = bisect.bisect_left(self.names, raw)
        if i < len(self.names) and self.names[i] == raw:
            return self.offsets[i]
        return None

    def __contains__(self, object_id: str) -> bool:
        return self.find(object_id) is not None

    def __len__(self) -> int:
        return len(self.names)


def _read_varint(data: bytes, pos: int) -> Tuple[int, int]:
    result = shift = 0
    while True:
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return result, pos


def apply_delta(base: bytes, delta: bytes) -> bytes:
    """Rebuild an object from its base and a git delta instruction stream."""
    src_size, pos = _read_varint(delta, 0)
    dst_size, pos = _read_varint(delta, pos)
    if src_size != len(base):
        raise ValueError(f"delta expects a {src_size} byte base, got {len(base)}")
    out = bytearray()
    while pos < len(delta):
        op = delta[pos]
        pos += 1
        if op & 0x80:
            offset = size = 0
            for i in range(4):
                if op & (1 << i):
                    offset |= delta[pos] << (8 * i)
                    pos += 1
            for i in range(3):
                if op & (1 << (4 + i)):
                    size |= delta[pos] << (8 * i)
                    pos += 1
            if size == 0:
                size = 0x10000
            if offset + size > len(base):
                raise ValueError("delta copies past the end of its base")
            out += base[offset:offset + size]
        elif op:
            out += delta[pos:pos + op]
            pos += op
        else:
            raise ValueError("reserved delta opcode 0")
    if len(out) != dst_size:
        raise ValueError(f"delta produced {len(out)} bytes, expected {dst_size}")
    return bytes(out)


class Pack:
    """A packfile and its index, memory-mapped read-only."""

    def __init__(self, idx_path: pathlib.Path, digest_size: int = 20) -> None:
        self.index = PackIndex(idx_path, digest_size)
        self.path = idx_path.with_suffix(".pack")
        self.digest_size = digest_size
        try:
            self._data = _map(self.path)
        except (OSError, ValueError) as e:
            raise CorruptRepository(str(self.path), f"cannot map pack: {e}")
        if self._data[:4] != b"PACK":
            raise CorruptRepository(str(self.path), "not a packfile")
        logger.debug("Opened %s (%d objects)", self.path.name, len(self.index))

    def __contains__(self, object_id: str) -> bool:
        return object_id in self.index

    def close(self) -> None:
        self._data.close()

    def read(self, object_id: str, lookup: BaseLookup) -> Tuple[str, bytes]:
        offset = self.index.find(object_id)
        if offset is None:
            raise CorruptObject(object_id, f"not in {self.path.name}")
        try:
            return self._read_at(offset, lookup, {})
        except (ValueError, IndexError, zlib.error) as e:
            raise CorruptObject(object_id, f"bad pack entry at offset {offset}: {e}")

    def _inflate(self, pos: int, size: int) -> bytes:
        d = zlib.decompressobj()
        out = bytearray()
        chunk = 64 * 1024
        while not d.eof:
            if pos >= len(self._data):
                raise ValueError("pack entry runs past end of file")
            out += d.decompress(self._data[pos:pos + chunk])
            pos += chunk
        if len(out) != size:
            raise ValueError(f"inflated {len(out)} bytes, header says {size}")
        return bytes(out)

    def _read_at(self, offset: int, lookup: BaseLookup,
                 seen: Dict[int, Tuple[str, bytes]]) -> Tuple[str, bytes]:
        if offset in seen:
            return seen[offset]
        data = self._data
        pos = offset
        byte = data[pos]
        pos += 1
        type_num = (byte >> 4) & 0x7
        size = byte & 0x0F
        shift = 4
        while byte & 0x80:
            byte = data[pos]
            pos += 1
            size |= (byte & 0x7F) << shift
            shift += 7

        if type_num in TYPE_NAMES:
            result = (TYPE_NAMES[type_num], self._inflate(pos, size))
        elif type_num == OFS_DELTA:
            byte = data[pos]
            pos += 1
            distance = byte & 0x7F
            while byte & 0x80:
                byte = data[pos]
                pos += 1
                distance = ((distance + 1) << 7) | (byte & 0x7F)
            base_type, base = self._read_at(offset - distance, lookup, seen)
            result = (base_type, apply_delta(base, self._inflate(pos, size)))
        elif type_num == REF_DELTA:
            base_id = bytes(data[pos:pos + self.digest_size]).hex()
            pos += self.digest_size
            base_offset = self.index.find(base_id)
            if base_offset is not None:
                base_type, base = self._read_at(base_offset, lookup, seen)
            else:
                base_type, base = lookup(base_id)
            result = (base_type, apply_delta(base, self._inflate(pos, size)))
        else:
            raise ValueError(f"unknown pack object type {type_num}")
        seen[offset] = result
        return result
