# state.py
"""
Data model of the simulation.

Everything here is immutable: grids are tuples of rows of frozen cells, and
agent/simulation states are frozen dataclasses updated with
``dataclasses.replace``. A snapshot taken for the rewind history can therefore
share structure with the live state without any risk of aliasing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, List, NamedTuple, Optional, Tuple

from temporal_rl.config import (
    CFG, SimulationConfig, ACTION_DELTAS,
    WALL, EMPTY, START, GOAL, SPIKE, POISON, PIT, TRIGGER,
    KEY, MONEY_BAG, COIN, DOOR, DOOR_OPEN,
)
from temporal_rl.history import History


class CellKind(Enum):
    EMPTY = "EMPTY"
    WALL = "WALL"
    START = "START"
    GOAL = "GOAL"
    TRAP = "TRAP"
    ITEM = "ITEM"
    DOOR = "DOOR"


class TrapKind(Enum):
    SPIKE = "SPIKE"        # damage only
    POISON = "POISON"      # lethal: rewind or die
    PIT = "PIT"            # lethal: rewind or die
    TRIGGER = "TRIGGER"    # toggles a door


class ItemKind(Enum):
    KEY = "KEY"
    MONEY_BAG = "MONEY_BAG"
    COIN = "COIN"


class AgentAction(Enum):
    UP = "UP"
    DOWN = "DOWN"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    REWIND = "REWIND"
    WAIT = "WAIT"

    @property
    def is_movement(self) -> bool:
        return self.value in ACTION_DELTAS

    @property
    def delta(self) -> Tuple[int, int]:
        return ACTION_DELTAS.get(self.value, (0, 0))

    @property
    def opposite(self) -> Optional["AgentAction"]:
        return _OPPOSITES.get(self)


MOVES: Tuple[AgentAction, ...] = (
    AgentAction.UP, AgentAction.DOWN, AgentAction.LEFT, AgentAction.RIGHT,
)

_OPPOSITES = {
    AgentAction.UP: AgentAction.DOWN,
    AgentAction.DOWN: AgentAction.UP,
    AgentAction.LEFT: AgentAction.RIGHT,
    AgentAction.RIGHT: AgentAction.LEFT,
}


class StatusEffect(Enum):
    NONE = "NONE"
    POISONED = "POISONED"
    FALLEN = "FALLEN"
    TRAPPED_WAITING_REWIND = "TRAPPED_WAITING_REWIND"


class GameResult(Enum):
    WIN = "WIN"
    LOSS = "LOSS"


class Mode(Enum):
    TRAINING = "TRAINING"
    INFERENCE = "INFERENCE"
    TEST = "TEST"


class Position(NamedTuple):
    x: int
    y: int

    @property
    def key(self) -> str:
        return f"{self.x},{self.y}"

    def moved(self, dx: int, dy: int) -> "Position":
        return Position(self.x + dx, self.y + dy)


def manhattan(a: Position, b: Position) -> int:
    return abs(a.x - b.x) + abs(a.y - b.y)


# -------------------------
# Cells
# -------------------------
@dataclass(frozen=True)
class Cell:
    kind: CellKind
    trap: Optional[TrapKind] = None
    item: Optional[ItemKind] = None
    value: Optional[int] = None
    is_open: bool = False
    target: Optional[Position] = None  # door toggled by a trigger trap

    @property
    def is_wall(self) -> bool:
        return self.kind is CellKind.WALL

    @property
    def is_lethal(self) -> bool:
        return self.kind is CellKind.TRAP and self.trap in (TrapKind.POISON, TrapKind.PIT)

    @property
    def is_coin(self) -> bool:
        return self.kind is CellKind.ITEM and self.item is ItemKind.COIN


EMPTY_CELL = Cell(CellKind.EMPTY)
WALL_CELL = Cell(CellKind.WALL)
START_CELL = Cell(CellKind.START)
GOAL_CELL = Cell(CellKind.GOAL)
COIN_CELL = Cell(CellKind.ITEM, item=ItemKind.COIN)


def trap_cell(kind: TrapKind, target: Optional[Position] = None) -> Cell:
    return Cell(CellKind.TRAP, trap=kind, target=target)


def item_cell(kind: ItemKind, value: Optional[int] = None) -> Cell:
    return Cell(CellKind.ITEM, item=kind, value=value)


def door_cell(is_open: bool = False) -> Cell:
    return Cell(CellKind.DOOR, is_open=is_open)


_CHAR_TO_CELL = {
    WALL: WALL_CELL,
    EMPTY: EMPTY_CELL,
    START: START_CELL,
    GOAL: GOAL_CELL,
    SPIKE: trap_cell(TrapKind.SPIKE),
    POISON: trap_cell(TrapKind.POISON),
    PIT: trap_cell(TrapKind.PIT),
    TRIGGER: trap_cell(TrapKind.TRIGGER),
    KEY: item_cell(ItemKind.KEY),
    MONEY_BAG: item_cell(ItemKind.MONEY_BAG, value=1),
    COIN: COIN_CELL,
    DOOR: door_cell(False),
    DOOR_OPEN: door_cell(True),
}

_TRAP_CHARS = {
    TrapKind.SPIKE: SPIKE,
    TrapKind.POISON: POISON,
    TrapKind.PIT: PIT,
    TrapKind.TRIGGER: TRIGGER,
}

_ITEM_CHARS = {
    ItemKind.KEY: KEY,
    ItemKind.MONEY_BAG: MONEY_BAG,
    ItemKind.COIN: COIN,
}


def cell_char(cell: Cell) -> str:
    if cell.kind is CellKind.TRAP:
        return _TRAP_CHARS[cell.trap]
    if cell.kind is CellKind.ITEM:
        return _ITEM_CHARS[cell.item]
    if cell.kind is CellKind.DOOR:
        return DOOR_OPEN if cell.is_open else DOOR
    return {
        CellKind.EMPTY: EMPTY,
        CellKind.WALL: WALL,
        CellKind.START: START,
        CellKind.GOAL: GOAL,
    }[cell.kind]


# -------------------------
# Grids
# -------------------------
Grid = Tuple[Tuple[Cell, ...], ...]


def grid_from_layout(layout: Iterable[str]) -> Grid:
    """Parse an ASCII layout (one string per row) into a square grid."""
    rows = [row for row in layout]
    size = len(rows)
    if size == 0:
        raise ValueError("Empty layout")
    if any(len(row) != size for row in rows):
        raise ValueError(f"Layout must be square ({size}x{size})")

    grid: List[Tuple[Cell, ...]] = []
    for y, row in enumerate(rows):
        cells = []
        for x, ch in enumerate(row):
            if ch not in _CHAR_TO_CELL:
                raise ValueError(f"Unknown layout symbol {ch!r} at ({x},{y})")
            cells.append(_CHAR_TO_CELL[ch])
        grid.append(tuple(cells))
    return tuple(grid)


def grid_to_layout(grid: Grid) -> List[str]:
    return ["".join(cell_char(c) for c in row) for row in grid]


def grid_size(grid: Grid) -> int:
    return len(grid)


def in_bounds(grid: Grid, pos: Position) -> bool:
    return 0 <= pos.y < len(grid) and 0 <= pos.x < len(grid[0])


def cell_at(grid: Grid, pos: Position) -> Optional[Cell]:
    if not in_bounds(grid, pos):
        return None
    return grid[pos.y][pos.x]


def with_cell(grid: Grid, pos: Position, cell: Cell) -> Grid:
    """Return a new grid with one cell replaced; untouched rows are shared."""
    row = grid[pos.y]
    new_row = row[:pos.x] + (cell,) + row[pos.x + 1:]
    return grid[:pos.y] + (new_row,) + grid[pos.y + 1:]


def find_cells(grid: Grid, kind: CellKind) -> List[Position]:
    out: List[Position] = []
    for y, row in enumerate(grid):
        for x, cell in enumerate(row):
            if cell.kind is kind:
                out.append(Position(x, y))
    return out


def find_cell(grid: Grid, kind: CellKind) -> Optional[Position]:
    found = find_cells(grid, kind)
    return found[0] if found else None


# -------------------------
# Agent / simulation state
# -------------------------
@dataclass(frozen=True)
class AgentState:
    position: Position
    health: int = CFG.max_health
    rewind_budget: int = CFG.initial_rewind_budget
    steps_taken: int = 0
    keys_collected: int = 0
    coins: int = 0
    visited_traps: FrozenSet[str] = frozenset()
    traps_triggered: int = 0
    status_effect: StatusEffect = StatusEffect.NONE

    @property
    def is_trapped(self) -> bool:
        return self.status_effect is StatusEffect.TRAPPED_WAITING_REWIND


def fresh_agent(start: Position, cfg: SimulationConfig = CFG) -> AgentState:
    return AgentState(
        position=Position(*start),
        health=cfg.max_health,
        rewind_budget=cfg.initial_rewind_budget,
    )


@dataclass(frozen=True)
class SimulationState:
    grid: Grid
    agent: AgentState
    score: int = 0
    history: History = field(default_factory=History)
    episode: int = 1
    is_game_over: bool = False
    game_result: Optional[GameResult] = None
    active_path: Tuple[Position, ...] = ()
    abandoned_paths: Tuple[Tuple[Position, ...], ...] = ()
    global_known_traps: FrozenSet[str] = frozenset()
    logs: Tuple[str, ...] = ()


def new_simulation_state(
    grid: Grid,
    cfg: SimulationConfig = CFG,
    episode: int = 1,
    known_traps: FrozenSet[str] = frozenset(),
    message: Optional[str] = None,
) -> SimulationState:
    """Fresh episode on ``grid``: agent on START, empty history and paths."""
    start = find_cell(grid, CellKind.START)
    if start is None:
        raise ValueError("No START cell found in grid.")
    return SimulationState(
        grid=grid,
        agent=fresh_agent(start, cfg),
        score=0,
        history=History(limit=cfg.history_limit),
        episode=int(episode),
        active_path=(start,),
        global_known_traps=frozenset(known_traps),
        logs=(message,) if message else (),
    )
