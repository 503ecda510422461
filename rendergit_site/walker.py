"""
Commit Walker: the history reachable from one commit, each commit once.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, Iterator, List, Tuple

from .errors import GraphCycleDetected
from .objects import Commit
from .repository import Repository

logger = logging.getLogger(__name__)

_ON_PATH = 1
_DONE = 2


class WalkOrder(enum.Enum):
    DATE = "date"          # newest first
    REVERSE = "reverse"    # oldest first


class CommitWalker:
    """
    Walks parent links depth-first from a start commit.

    The visited map belongs to the walker and is rebuilt on every call to
    walk(), so the same walker can be asked for the same history again.
    """

    def __init__(self, repo: Repository) -> None:
        self.repo = repo
        self._state: Dict[str, int] = {}

    def _collect(self, start_id: str) -> List[Commit]:
        self._state = {start_id: _ON_PATH}
        start = self.repo.read_commit(start_id)
        stack: List[Tuple[Commit, Iterator[str]]] = [
            (start, iter(self.repo.parents_of(start)))
        ]
        found: List[Commit] = []
        while stack:
            commit, parents = stack[-1]
            for parent_id in parents:
                state = self._state.get(parent_id)
                if state == _ON_PATH:
                    raise GraphCycleDetected(parent_id)
                if state is None:
                    self._state[parent_id] = _ON_PATH
                    parent = self.repo.read_commit(parent_id)
                    stack.append((parent, iter(self.repo.parents_of(parent))))
                    break
            else:
                self._state[commit.id] = _DONE
                found.append(commit)
                stack.pop()
        logger.debug("Walked %d commits from %s", len(found), start_id[:12])
        return found

    def walk(self, start_id: str, order: WalkOrder = WalkOrder.DATE) -> Iterator[Commit]:
        commits = self._collect(start_id)
        commits.sort(key=lambda c: (-c.committer.timestamp, c.id))
        if order is WalkOrder.REVERSE:
            commits.reverse()
        yield from commits


def walk(repo: Repository, start_id: str, order: WalkOrder = WalkOrder.DATE) -> Iterator[Commit]:
    return CommitWalker(repo).walk(start_id, order)
