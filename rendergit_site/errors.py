"""
Error kinds raised while turning a repository into a static site.

Read and write errors are fatal and propagate to the caller; rendering
problems (highlighting, text decoding) are handled where they happen and
never show up here.
"""

from __future__ import annotations


class RendergitError(Exception):
    """Base class for every failure the generator reports."""


class RepositoryNotFound(RendergitError):
    def __init__(self, path: str, reason: str = "not a git repository") -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path


class CorruptRepository(RendergitError):
    """The reference store cannot be read or does not resolve."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path


class CorruptObject(RendergitError):
    """A stored object is missing or does not decode to what it claims to be."""

    def __init__(self, object_id: str, reason: str) -> None:
        super().__init__(f"object {object_id}: {reason}")
        self.object_id = object_id


class GraphCycleDetected(RendergitError):
    def __init__(self, object_id: str) -> None:
        super().__init__(f"commit {object_id} is its own ancestor")
        self.object_id = object_id


class OutputWriteFailure(RendergitError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"cannot write {path}: {reason}")
        self.path = path
