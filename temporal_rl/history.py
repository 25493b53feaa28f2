# history.py
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Tuple

if TYPE_CHECKING:
    from temporal_rl.state import AgentState, Grid

DEFAULT_HISTORY_LIMIT = 512


@dataclass(frozen=True)
class Snapshot:
    grid: "Grid"
    agent: "AgentState"
    score: int
    path_len: int  # len(active_path) when taken


@dataclass(frozen=True)
class History:
    """
    Bounded, append-only log of past states used by REWIND.

    The store is immutable: ``push`` and ``truncate`` return new stores.
    Grids and agents are themselves immutable, so snapshots share structure
    with the live state instead of being deep-copied every tick. Once
    ``limit`` entries are held the oldest one is dropped (ring buffer).
    """
    entries: Tuple[Snapshot, ...] = ()
    limit: int = DEFAULT_HISTORY_LIMIT

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Snapshot]:
        return iter(self.entries)

    def __getitem__(self, idx: int) -> Snapshot:
        return self.entries[idx]

    def push(self, snapshot: Snapshot) -> "History":
        entries = self.entries + (snapshot,)
        if self.limit > 0 and len(entries) > self.limit:
            entries = entries[len(entries) - self.limit:]
        return History(entries=entries, limit=self.limit)

    def restore_index(self, steps: int) -> int:
        return max(0, len(self.entries) - int(steps))

    def restore_point(self, steps: int) -> Tuple[int, Snapshot]:
        """Index and snapshot ``steps`` entries back (clamped to the oldest)."""
        if not self.entries:
            raise IndexError("restore_point() on empty history")
        idx = self.restore_index(steps)
        return idx, self.entries[idx]

    def truncate(self, index: int) -> "History":
        """Drop everything from ``index`` on (the abandoned future)."""
        return History(entries=self.entries[:max(0, int(index))], limit=self.limit)
