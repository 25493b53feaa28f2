# pathfinding.py
"""
Grid search helpers.

- ``bfs_dist``: breadth-first distance map from one cell
- ``is_reachable``: flood-fill connectivity check used by the generator
- ``astar``: shortest safe path (walls and lethal traps excluded) used by the
  agent's deterministic TEST mode
"""
from __future__ import annotations

import heapq
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from temporal_rl.state import (
    AgentAction, Cell, Grid, MOVES, Position, manhattan,
)

logger = logging.getLogger(__name__)

INF = 10**9

Passable = Callable[[Cell], bool]


def non_wall(cell: Cell) -> bool:
    return not cell.is_wall


def safe_cell(cell: Cell) -> bool:
    """Walkable without risking the rewind-or-die lock."""
    return not (cell.is_wall or cell.is_lethal)


def neighbors(grid: Grid, pos: Position, passable: Passable = non_wall):
    size = len(grid)
    for action in MOVES:
        dx, dy = action.delta
        nxt = pos.moved(dx, dy)
        if not (0 <= nxt.x < size and 0 <= nxt.y < size):
            continue
        if not passable(grid[nxt.y][nxt.x]):
            continue
        yield action, nxt


def bfs_dist(grid: Grid, start: Position, passable: Passable = non_wall) -> List[List[int]]:
    size = len(grid)
    dist = [[INF] * size for _ in range(size)]
    q = deque([start])
    dist[start.y][start.x] = 0

    while q:
        cur = q.popleft()
        nd = dist[cur.y][cur.x] + 1
        for _, nxt in neighbors(grid, cur, passable):
            if dist[nxt.y][nxt.x] > nd:
                dist[nxt.y][nxt.x] = nd
                q.append(nxt)
    return dist


def is_reachable(grid: Grid, a: Position, b: Position, passable: Passable = non_wall) -> bool:
    return bfs_dist(grid, a, passable)[b.y][b.x] < INF


@dataclass(order=True)
class _Node:
    f: int
    g: int
    order: int
    pos: Position = field(compare=False)


@dataclass
class PathResult:
    """Result of an A* search: the actions to take, empty when no path exists."""
    actions: List[AgentAction]
    found: bool

    def __bool__(self) -> bool:
        return self.found

    def __len__(self) -> int:
        return len(self.actions)

    @property
    def first(self) -> Optional[AgentAction]:
        return self.actions[0] if self.actions else None


def astar(grid: Grid, start: Position, goal: Position, passable: Passable = safe_cell) -> PathResult:
    """Shortest path with the Manhattan heuristic over ``passable`` cells."""
    start, goal = Position(*start), Position(*goal)
    if start == goal:
        return PathResult(actions=[], found=True)

    counter = 0
    open_heap: List[_Node] = [_Node(manhattan(start, goal), 0, counter, start)]
    g_score: Dict[Position, int] = {start: 0}
    came_from: Dict[Position, tuple] = {}
    closed = set()

    while open_heap:
        node = heapq.heappop(open_heap)
        cur = node.pos
        if cur == goal:
            actions: List[AgentAction] = []
            while cur in came_from:
                prev, action = came_from[cur]
                actions.append(action)
                cur = prev
            actions.reverse()
            return PathResult(actions=actions, found=True)

        if cur in closed:
            continue
        closed.add(cur)

        for action, nxt in neighbors(grid, cur, passable):
            g = node.g + 1
            if g < g_score.get(nxt, INF):
                g_score[nxt] = g
                came_from[nxt] = (cur, action)
                counter += 1
                heapq.heappush(open_heap, _Node(g + manhattan(nxt, goal), g, counter, nxt))

    logger.debug("No safe path from %s to %s", start, goal)
    return PathResult(actions=[], found=False)
