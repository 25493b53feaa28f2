# agent_qlearning.py
from __future__ import annotations

import logging
import pickle
import random
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from temporal_rl.config import CFG
from temporal_rl.pathfinding import astar
from temporal_rl.state import (
    AgentAction, AgentState, CellKind, Grid, MOVES, Mode, Position, find_cell,
)

logger = logging.getLogger(__name__)

StateKey = Tuple[int, int, str, bool]  # (x, y, status_effect, has_rewind)
QTable = Dict[StateKey, Dict[AgentAction, float]]

DEFAULT_Q = {
    AgentAction.UP: 0.0,
    AgentAction.DOWN: 0.0,
    AgentAction.LEFT: 0.0,
    AgentAction.RIGHT: 0.0,
    AgentAction.REWIND: -5.0,
    AgentAction.WAIT: -10.0,
}


def state_key(agent: AgentState) -> StateKey:
    return (
        int(agent.position.x),
        int(agent.position.y),
        agent.status_effect.value,
        agent.rewind_budget > 0,
    )


@dataclass
class QLearningAgent:
    alpha: float = CFG.alpha
    gamma: float = CFG.gamma
    epsilon: float = CFG.epsilon
    seed: Optional[int] = None

    mode: Mode = field(default=Mode.TRAINING, init=False)
    last_action: Optional[AgentAction] = field(default=None, init=False)
    has_solved_once: bool = field(default=False, init=False)

    def __post_init__(self):
        self.rng = random.Random(self.seed)
        # Q[state_key][action] = value
        self.q: QTable = {}

    def _ensure_state(self, agent: AgentState) -> Dict[AgentAction, float]:
        key = state_key(agent)
        if key not in self.q:
            self.q[key] = dict(DEFAULT_Q)
        return self.q[key]

    # -------------------------
    # Modes & schedules
    # -------------------------
    def set_mode(self, mode: Mode) -> None:
        self.mode = Mode(mode)
        logger.info("Agent mode -> %s", self.mode.value)

    def reset_hard(self, level: int = 1) -> None:
        """Forget everything: empty table, level-appropriate exploration."""
        self.q = {}
        self.epsilon = max(0.15, 0.90 - level * 0.18)
        self.has_solved_once = False
        self.last_action = None
        self.mode = Mode.TRAINING

    def reset_for_next_level(self, level: int) -> None:
        """Curriculum continuity: keep the table, reset exploration only."""
        self.epsilon = max(0.1, 0.80 - level * 0.1)
        self.has_solved_once = False
        self.last_action = None

    def decay_epsilon(self) -> None:
        if self.mode is Mode.TRAINING:
            self.epsilon = max(CFG.epsilon_floor, self.epsilon * CFG.epsilon_decay)

    def force_conservative_policy(self) -> None:
        self.epsilon = CFG.conservative_epsilon

    def maximize_exploitation(self) -> None:
        self.epsilon = CFG.exploit_epsilon
        self.has_solved_once = True

    @property
    def effective_epsilon(self) -> float:
        return self.epsilon if self.mode is Mode.TRAINING else 0.0

    # -------------------------
    # Acting
    # -------------------------
    def select_action(self, agent: AgentState, grid: Optional[Grid] = None) -> AgentAction:
        # trapped: rewinding is the only sensible answer
        if agent.is_trapped:
            return AgentAction.REWIND

        if self.mode is Mode.TEST and grid is not None:
            return self.optimal_action(agent, grid)

        if self.rng.random() < self.effective_epsilon:
            return self.smart_random_move()

        return self.greedy_action(agent)

    def greedy_action(self, agent: AgentState) -> AgentAction:
        """Highest-valued action, ties broken uniformly at random."""
        q = self._ensure_state(agent)
        best_q = max(q.values())
        best: List[AgentAction] = [a for a, v in q.items() if v == best_q]
        if not best:
            return self.smart_random_move()
        return self.rng.choice(best)

    def smart_random_move(self) -> AgentAction:
        """Uniform random move that avoids undoing the previous one most of the time."""
        opposite = self.last_action.opposite if self.last_action is not None else None
        if opposite is not None and self.rng.random() < CFG.reverse_suppression:
            return self.rng.choice([a for a in MOVES if a is not opposite])
        return self.rng.choice(MOVES)

    def optimal_action(self, agent: AgentState, grid: Grid) -> AgentAction:
        """First step of the shortest safe path to GOAL (TEST mode)."""
        goal = find_cell(grid, CellKind.GOAL) or Position(1, 1)
        result = astar(grid, agent.position, goal)
        if not result:
            return self.smart_random_move()
        return result.first or AgentAction.WAIT

    # -------------------------
    # Learning
    # -------------------------
    def update(self, prev: AgentState, action: AgentAction, reward: float, nxt: AgentState) -> None:
        """
        One-step Q-learning backup (TRAINING only):
          Q(s,a) <- Q(s,a) + alpha * (r + gamma * max_a' Q(s',a') - Q(s,a))
        WAIT transitions are not learned from.
        """
        if self.mode is not Mode.TRAINING:
            return
        if action is AgentAction.WAIT:
            return

        self.last_action = action
        q_prev = self._ensure_state(prev)
        q_next = self._ensure_state(nxt)

        max_next = max(q_next.values())
        current = q_prev[action]
        q_prev[action] = current + self.alpha * (float(reward) + self.gamma * max_next - current)

    def q_values(self, agent: AgentState) -> Dict[AgentAction, float]:
        return dict(self._ensure_state(agent))

    # -------------------------
    # Persistence
    # -------------------------
    def save(self, path: str) -> None:
        payload = {
            "alpha": self.alpha,
            "gamma": self.gamma,
            "epsilon": self.epsilon,
            "seed": self.seed,
            "q": {k: {a.value: v for a, v in row.items()} for k, row in self.q.items()},
        }
        with open(path, "wb") as f:
            pickle.dump(payload, f)

    @staticmethod
    def load(path: str) -> "QLearningAgent":
        with open(path, "rb") as f:
            payload = pickle.load(f)
        agent = QLearningAgent(
            alpha=payload["alpha"],
            gamma=payload["gamma"],
            epsilon=payload.get("epsilon", CFG.epsilon),
            seed=payload.get("seed"),
        )
        agent.q = {
            tuple(k): {AgentAction(a): float(v) for a, v in row.items()}
            for k, row in payload["q"].items()
        }
        return agent
