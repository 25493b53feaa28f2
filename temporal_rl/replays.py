# replays.py
"""
Episode traces for later inspection.

A replay holds the initial board (ASCII rows), every position and action,
the per-tick reward and the ticks at which notable events happened. Replays
are grouped by level in a single JSON file.
"""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Tuple

# info keys from DungeonEnv.step that get a marker track
MARKERS = ("blocked", "hit_trap", "picked_coin", "rewound")


@dataclass
class EpisodeReplay:
    level: int
    attempt: int
    episode_idx: int
    mode: str
    epsilon: float
    result: str
    done_reason: str

    positions: List[Tuple[int, int]] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)
    rewards: List[int] = field(default_factory=list)
    markers: Dict[str, List[int]] = field(default_factory=dict)
    grid0: List[str] = field(default_factory=list)

    @property
    def steps(self) -> int:
        return len(self.actions)

    @property
    def total_reward(self) -> int:
        return sum(self.rewards)

    @property
    def success(self) -> bool:
        return self.result == "WIN"

    def ticks_with(self, marker: str) -> List[int]:
        return self.markers.get(marker, [])

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["positions"] = [list(p) for p in self.positions]
        d["steps"] = self.steps
        d["total_reward"] = self.total_reward
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EpisodeReplay":
        known = {f.name for f in fields(cls)}
        rep = cls(**{k: v for k, v in d.items() if k in known})
        rep.positions = [(int(x), int(y)) for x, y in rep.positions]
        return rep


class ReplayRecorder:
    """Collects one episode tick by tick from ``DungeonEnv.step`` results."""

    def __init__(self, grid0: List[str], start: Tuple[int, int]):
        self.grid0 = list(grid0)
        self.positions = [(int(start[0]), int(start[1]))]
        self.actions: List[str] = []
        self.rewards: List[int] = []
        self.markers: Dict[str, List[int]] = {}

    def record(self, position: Tuple[int, int], reward: int, info: Dict[str, Any]) -> None:
        tick = len(self.actions)
        self.actions.append(str(info.get("action", "")))
        self.positions.append((int(position[0]), int(position[1])))
        self.rewards.append(int(reward))
        for name in MARKERS:
            if info.get(name):
                self.markers.setdefault(name, []).append(tick)

    def finish(self, **meta: Any) -> EpisodeReplay:
        meta["epsilon"] = round(float(meta.get("epsilon", 0.0)), 4)
        return EpisodeReplay(
            positions=list(self.positions),
            actions=list(self.actions),
            rewards=list(self.rewards),
            markers={k: list(v) for k, v in self.markers.items()},
            grid0=list(self.grid0),
            **meta,
        )


class ReplayStore:
    """Replays grouped by level, persisted as ``{"<level>": [replay, ...]}``."""

    def __init__(self, path: str):
        self.path = path
        self.data: Dict[int, List[EpisodeReplay]] = {}

    def add(self, rep: EpisodeReplay) -> None:
        self.data.setdefault(int(rep.level), []).append(rep)

    def save(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        payload = {str(lv): [r.to_dict() for r in reps] for lv, reps in sorted(self.data.items())}
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)

    def load(self) -> None:
        if not os.path.exists(self.path):
            raise FileNotFoundError(self.path)
        with open(self.path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        self.data = {int(lv): [EpisodeReplay.from_dict(d) for d in reps] for lv, reps in payload.items()}

    def levels(self) -> List[int]:
        return sorted(self.data)

    def get_episodes(self, level: int) -> List[EpisodeReplay]:
        return self.data.get(int(level), [])
