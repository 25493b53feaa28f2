# dungeon.py
"""
Procedural dungeon generator.

A level is carved out of solid rock in three passes:

1. two biased random walks from START (1,1) to GOAL (size-2,size-2), the
   second one detouring through a waypoint near the opposite corner;
2. short dead-end branches dug from random open cells until the open area
   reaches ``target_open_density`` - every branch cell is a *bait cell*;
3. bait cells become traps (poison in true dead ends, spikes elsewhere),
   START/GOAL are stamped and 5..9 coins are scattered on what is left.

The random walks can give up after ``2*size^2`` steps, so the result is
checked with a flood fill and regenerated when START and GOAL ended up
disconnected.
"""
from __future__ import annotations

import logging
import random
from typing import List, Optional, Tuple

from temporal_rl.config import CFG, LevelConfig, SimulationConfig, level_config
from temporal_rl.pathfinding import is_reachable
from temporal_rl.state import (
    COIN_CELL, EMPTY_CELL, GOAL_CELL, START_CELL, WALL_CELL,
    Cell, CellKind, Grid, Position, TrapKind, trap_cell,
)

logger = logging.getLogger(__name__)

DIRS = ((1, 0), (-1, 0), (0, 1), (0, -1))

MutableGrid = List[List[Cell]]


def start_position() -> Position:
    return Position(1, 1)


def goal_position(size: int) -> Position:
    return Position(size - 2, size - 2)


class _Carver:
    """Mutable working copy used while a single level is being dug."""

    def __init__(self, lc: LevelConfig, rng: random.Random):
        self.lc = lc
        self.size = lc.size
        self.rng = rng
        self.cells: MutableGrid = [[WALL_CELL] * self.size for _ in range(self.size)]

    # interior only: the outer ring always stays rock
    def is_valid(self, x: int, y: int) -> bool:
        return 0 < x < self.size - 1 and 0 < y < self.size - 1

    def is_wall(self, x: int, y: int) -> bool:
        return self.is_valid(x, y) and self.cells[y][x].is_wall

    def is_open(self, x: int, y: int) -> bool:
        return self.is_valid(x, y) and not self.cells[y][x].is_wall

    def open_neighbors(self, x: int, y: int) -> int:
        return sum(1 for dx, dy in DIRS if self.is_open(x + dx, y + dy))

    def carve_path(self, start: Position, end: Position, bias_x: int, bias_y: int) -> List[Position]:
        rng = self.rng
        path: List[Position] = []
        cx, cy = start
        steps = 0
        max_steps = self.size * self.size * 2

        while (cx, cy) != (end.x, end.y) and steps < max_steps:
            path.append(Position(cx, cy))
            self.cells[cy][cx] = EMPTY_CELL

            dx, dy = end.x - cx, end.y - cy
            moves: List[Tuple[int, int]] = []
            if dx > 0:
                moves.append((1, 0))
            if dx < 0:
                moves.append((-1, 0))
            if dy > 0:
                moves.append((0, 1))
            if dy < 0:
                moves.append((0, -1))

            # organic wiggle
            if rng.random() < 0.4:
                moves.extend(DIRS)

            if bias_x != 0 and rng.random() < 0.3:
                moves.append((bias_x, 0))
            if bias_y != 0 and rng.random() < 0.3:
                moves.append((0, bias_y))

            valid = [m for m in moves if self.is_valid(cx + m[0], cy + m[1])]
            if not valid:
                break
            mx, my = rng.choice(valid)
            cx, cy = cx + mx, cy + my
            steps += 1

        path.append(end)
        self.cells[end.y][end.x] = EMPTY_CELL
        return path

    def dig_branches(self, filled: int, target_density: float) -> List[Position]:
        rng = self.rng
        size = self.size
        total_area = size * size
        max_attempts = size * 100
        max_branch_len = 6 + self.lc.level
        bait: List[Position] = []

        attempts = 0
        while filled / total_area < target_density and attempts < max_attempts:
            attempts += 1
            rx = rng.randint(1, size - 2)
            ry = rng.randint(1, size - 2)
            if not self.is_open(rx, ry):
                continue

            ddx, ddy = rng.choice(DIRS)
            bx, by = rx + ddx, ry + ddy
            branch_len = 0

            while branch_len < max_branch_len:
                if not self.is_wall(bx, by):
                    break
                # stop before reconnecting to existing open space
                if self.open_neighbors(bx, by) > 1:
                    break

                self.cells[by][bx] = EMPTY_CELL
                bait.append(Position(bx, by))
                filled += 1
                branch_len += 1

                if rng.random() < self.lc.branching_factor:
                    bx, by = bx + ddx, by + ddy
                else:
                    tx, ty = rng.choice(DIRS)
                    bx, by = bx + tx, by + ty
        return bait

    def place_traps(self, bait: List[Position], reserved: Tuple[Position, ...]) -> None:
        rng = self.rng
        density = self.lc.trap_density
        for p in bait:
            if p in reserved:
                continue
            if self.open_neighbors(p.x, p.y) == 1:
                if rng.random() < density:
                    self.cells[p.y][p.x] = trap_cell(TrapKind.POISON)
            elif rng.random() < density * 0.2:
                self.cells[p.y][p.x] = trap_cell(TrapKind.SPIKE)

    def freeze(self) -> Grid:
        return tuple(tuple(row) for row in self.cells)


def _generate_once(lc: LevelConfig, rng: random.Random, cfg: SimulationConfig) -> Grid:
    carver = _Carver(lc, rng)
    size = lc.size
    start = start_position()
    goal = goal_position(size)

    path1 = carver.carve_path(start, goal, 1, -1)
    waypoint = Position(3, size - 4)
    path2 = carver.carve_path(start, waypoint, -1, 1) + carver.carve_path(waypoint, goal, 1, 1)

    bait = carver.dig_branches(len(path1) + len(path2), cfg.target_open_density)

    carver.cells[goal.y][goal.x] = GOAL_CELL
    carver.cells[start.y][start.x] = START_CELL
    carver.place_traps(bait, reserved=(start, goal))

    return scatter_coins(carver.freeze(), rng, cfg)


def scatter_coins(grid: Grid, rng: Optional[random.Random] = None, cfg: SimulationConfig = CFG) -> Grid:
    """
    Remove every coin from ``grid`` and drop ``min_coins..max_coins`` new ones
    on randomly chosen EMPTY cells. Geometry and hazards are left untouched.
    """
    rng = rng or random.Random()
    rows = [list(row) for row in grid]
    empties: List[Position] = []
    for y, row in enumerate(rows):
        for x, cell in enumerate(row):
            if cell.is_coin:
                row[x] = EMPTY_CELL
            if row[x].kind is CellKind.EMPTY:
                empties.append(Position(x, y))

    coin_count = rng.randint(cfg.min_coins, cfg.max_coins)
    rng.shuffle(empties)
    for p in empties[:coin_count]:
        rows[p.y][p.x] = COIN_CELL
    return tuple(tuple(row) for row in rows)


def generate(level: int, rng: Optional[random.Random] = None, cfg: SimulationConfig = CFG) -> Grid:
    """Build a grid for difficulty ``level`` (>= 1)."""
    lc = level_config(level, cfg)
    rng = rng or random.Random()
    start = start_position()
    goal = goal_position(lc.size)

    grid: Grid = ()
    attempts = max(1, int(cfg.max_generation_attempts))
    for attempt in range(1, attempts + 1):
        grid = _generate_once(lc, rng, cfg)
        if is_reachable(grid, start, goal):
            if attempt > 1:
                logger.debug("Level %d connected after %d attempts", lc.level, attempt)
            return grid

    logger.warning(
        "Level %d: GOAL unreachable after %d attempts, shipping last grid", lc.level, attempts
    )
    return grid
