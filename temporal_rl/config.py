# config.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

# ========= Cell legend =========
WALL = "#"
EMPTY = "."
START = "S"
GOAL = "G"
SPIKE = "^"
POISON = "P"
PIT = "O"
TRIGGER = "T"
KEY = "K"
MONEY_BAG = "$"
COIN = "c"
DOOR = "D"          # closed
DOOR_OPEN = "_"
AGENT = "A"         # render only

# ========= Actions =========
# (dx, dy) with y growing downwards
ACTION_DELTAS = {
    "UP": (0, -1),
    "DOWN": (0, 1),
    "LEFT": (-1, 0),
    "RIGHT": (1, 0),
}

# max retries on a level before the policy is frozen
FAILURE_LIMITS: Dict[int, int] = {
    1: 5,
    2: 4,
    3: 3,
    4: 2,
    5: 1,
}
DEFAULT_FAILURE_LIMIT = 5


@dataclass(frozen=True)
class SimulationConfig:
    # Rewind
    rewind_cost: int = -5
    rewind_steps: int = 5
    initial_rewind_budget: int = 5

    # Rewards
    step_penalty: int = -1
    trap_penalty: int = -50
    goal_reward: int = 100
    coin_reward: int = 10
    revisit_penalty: int = -10          # retreading an abandoned timeline
    re_enter_poison_penalty: int = -20  # on top of trap_penalty
    blocked_penalty: int = -2
    rejected_rewind_penalty: int = -10
    failed_rewind_penalty: int = -5
    locked_move_penalty: int = -5

    # Agent body
    max_health: int = 100
    trap_damage: int = 30               # spikes

    # Bounded stores
    history_limit: int = 512
    log_limit: int = 50

    # Generator
    max_size: int = 22
    base_size: int = 12
    target_open_density: float = 0.65
    min_coins: int = 5
    max_coins: int = 9
    max_generation_attempts: int = 20

    # Episode
    step_limit: int = 600

    # Q-learning
    alpha: float = 0.5
    gamma: float = 0.9
    epsilon: float = 0.85
    epsilon_floor: float = 0.01
    epsilon_decay: float = 0.6
    conservative_epsilon: float = 0.01
    exploit_epsilon: float = 0.05
    reverse_suppression: float = 0.7

    # Randomness
    seed: int = 42


@dataclass(frozen=True)
class LevelConfig:
    level: int
    size: int
    trap_density: float
    branching_factor: float


def level_config(level: int, cfg: SimulationConfig = None) -> LevelConfig:
    """Curriculum: grid size and hazard density grow with the level."""
    cfg = CFG if cfg is None else cfg
    if int(level) < 1:
        raise ValueError(f"Invalid level {level}. Levels start at 1.")
    level = int(level)
    return LevelConfig(
        level=level,
        size=min(cfg.max_size, cfg.base_size + 2 * (level - 1)),
        trap_density=min(0.8, 0.2 + 0.12 * level),
        branching_factor=min(0.9, 0.4 + 0.05 * level),
    )


def failure_limit(level: int) -> int:
    return FAILURE_LIMITS.get(int(level), DEFAULT_FAILURE_LIMIT)


CFG = SimulationConfig()
