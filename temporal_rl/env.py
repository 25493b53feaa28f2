# env.py
from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from temporal_rl.agent_qlearning import QLearningAgent
from temporal_rl.config import AGENT, CFG, SimulationConfig, failure_limit
from temporal_rl.dungeon import generate, scatter_coins
from temporal_rl.state import (
    AgentAction, GameResult, Grid, Mode, SimulationState, StatusEffect,
    grid_to_layout, new_simulation_state,
)
from temporal_rl.transition import step as transition_step

logger = logging.getLogger(__name__)

TEST_LEVEL = 3


@dataclass
class EpisodeStats:
    episode: int
    level: int
    attempt: int
    steps: int
    total_reward: int
    result: str
    done_reason: str
    rewinds_used: int
    trap_count: int
    coins: int

    @property
    def success(self) -> bool:
        return self.result == GameResult.WIN.value


def done_reason_of(state: SimulationState) -> Optional[str]:
    if not state.is_game_over:
        return None
    if state.game_result is GameResult.WIN:
        return "goal"
    if state.agent.status_effect is StatusEffect.POISONED:
        return "poisoned"
    if state.agent.status_effect is StatusEffect.FALLEN:
        return "fallen"
    return "killed"


class DungeonEnv:
    """
    Level/episode controller.

    Owns the live ``SimulationState`` (the transition function is the only
    thing that produces new states; the controller replaces them wholesale on
    retry/advance/reset), the master grid of the current level and the
    curriculum counters. The agent is passed in and kept across levels.

    Expectations:
    - train/evaluate use: tick() until done, then end_episode()
    - step() returns (state, reward, done, info) with info keys
      blocked/hit_trap/picked_coin/rewound + done_reason
    """

    def __init__(self, agent: Optional[QLearningAgent] = None, seed: Optional[int] = None,
                 cfg: SimulationConfig = CFG):
        self.cfg = cfg
        self.seed = cfg.seed if seed is None else int(seed)
        self.rng = random.Random(self.seed)
        self.agent = agent if agent is not None else QLearningAgent(seed=self.seed + 1)

        self.level: int = 1
        self.level_attempt: int = 1
        self.cumulative_score: int = 0
        self.master_grid: Optional[Grid] = None
        self.state: Optional[SimulationState] = None
        self.episode_stats: List[EpisodeStats] = []
        self.ticks: int = 0
        self.done_reason: Optional[str] = None

        if agent is None:
            self.reset_game()
        else:
            # a supplied agent keeps its table and schedule
            self._start_level_one()

    # -------------------------
    # Episode lifecycle
    # -------------------------
    def _begin(self, grid: Grid, episode: int, message: str, known_traps=frozenset()) -> SimulationState:
        self.state = new_simulation_state(
            grid, self.cfg, episode=episode, known_traps=known_traps, message=message,
        )
        self.ticks = 0
        self.done_reason = None
        return self.state

    def _new_master(self, level: int) -> Grid:
        self.master_grid = generate(level, self.rng, self.cfg)
        return self.master_grid

    def _start_level_one(self) -> SimulationState:
        self.level = 1
        self.level_attempt = 1
        self.cumulative_score = 0
        return self._begin(self._new_master(1), 1, "System reset. Training started.")

    def reset_game(self) -> SimulationState:
        """Back to level 1 with a freshly initialised agent."""
        self.agent.reset_hard(1)
        logger.info("Game reset: level 1")
        return self._start_level_one()

    def reset_brain(self) -> SimulationState:
        """User-initiated wipe: same as a game reset, the table is cleared too."""
        return self.reset_game()

    def advance_level(self) -> SimulationState:
        """Commit the level score, move on and keep the agent's table."""
        assert self.state is not None
        self.cumulative_score += self.state.score
        self.level += 1
        self.level_attempt = 1
        self.agent.reset_for_next_level(self.level)
        logger.info("Level %d started (cumulative score %d)", self.level, self.cumulative_score)
        return self._begin(
            self._new_master(self.level),
            self.state.episode + 1,
            f"Level {self.level} started.",
        )

    def retry(self) -> SimulationState:
        """Same geometry and hazards, new coins; known traps are kept."""
        assert self.state is not None and self.master_grid is not None
        self.level_attempt += 1
        grid = scatter_coins(self.master_grid, self.rng, self.cfg)
        return self._begin(
            grid,
            self.state.episode + 1,
            f"Retry #{self.level_attempt} on level {self.level}.",
            known_traps=self.state.global_known_traps,
        )

    def enter_test_mode(self, level: int = TEST_LEVEL) -> SimulationState:
        self.agent.set_mode(Mode.TEST)
        self.level = int(level)
        self.level_attempt = 1
        self.cumulative_score = 0
        return self._begin(self._new_master(self.level), 1, "Test mode: evaluating on a fresh map.")

    def exit_test_mode(self) -> SimulationState:
        self.agent.set_mode(Mode.TRAINING)
        return self.reset_game()

    def set_inference(self, enabled: bool) -> None:
        self.agent.set_mode(Mode.INFERENCE if enabled else Mode.TRAINING)

    # -------------------------
    # Stepping
    # -------------------------
    def step(self, action: AgentAction) -> Tuple[SimulationState, int, bool, Dict[str, Any]]:
        if self.state is None:
            raise RuntimeError("Call reset_game() before step().")

        prev = self.state
        if prev.is_game_over or self.done_reason is not None:
            return prev, 0, True, self._info(prev, prev, action)

        nxt, reward = transition_step(prev, action, self.cfg)
        self.agent.update(prev.agent, action, reward, nxt.agent)
        self.state = nxt
        self.ticks += 1

        if nxt.is_game_over:
            self.done_reason = done_reason_of(nxt)
        elif self.cfg.step_limit and self.ticks >= self.cfg.step_limit:
            self.done_reason = "timeout"

        done = self.done_reason is not None
        return nxt, int(reward), done, self._info(prev, nxt, action)

    def tick(self) -> Tuple[SimulationState, int, bool, Dict[str, Any]]:
        """One cooperative tick: the agent picks, the engine applies."""
        if self.state is None:
            raise RuntimeError("Call reset_game() before tick().")
        action = self.agent.select_action(self.state.agent, self.state.grid)
        return self.step(action)

    def _info(self, prev: SimulationState, nxt: SimulationState, action: AgentAction) -> Dict[str, Any]:
        moved = nxt.agent.position != prev.agent.position
        return {
            "action": action.value,
            "steps": self.ticks,
            "done_reason": self.done_reason,
            "blocked": action.is_movement and not moved and nxt.agent.steps_taken > prev.agent.steps_taken,
            "hit_trap": nxt.agent.traps_triggered > prev.agent.traps_triggered,
            "picked_coin": nxt.agent.coins > prev.agent.coins,
            "rewound": nxt.agent.rewind_budget < prev.agent.rewind_budget,
            "event": nxt.logs[-1] if nxt.logs and nxt.logs is not prev.logs else "",
        }

    def end_episode(self) -> EpisodeStats:
        """
        Record the finished episode and set up the next one:
        win -> next level, loss -> decay exploration (freeze after too many
        failures) and retry the same map.
        """
        assert self.state is not None
        state = self.state
        result = state.game_result or GameResult.LOSS
        stats = EpisodeStats(
            episode=state.episode,
            level=self.level,
            attempt=self.level_attempt,
            steps=self.ticks,
            total_reward=int(state.score),
            result=result.value,
            done_reason=self.done_reason or done_reason_of(state) or "aborted",
            rewinds_used=self.cfg.initial_rewind_budget - state.agent.rewind_budget,
            trap_count=state.agent.traps_triggered,
            coins=state.agent.coins,
        )
        self.episode_stats.append(stats)

        if result is GameResult.WIN:
            self.advance_level()
            return stats

        if self.agent.mode is not Mode.TEST:
            self.agent.decay_epsilon()
        if self.level_attempt >= failure_limit(self.level):
            logger.info(
                "Level %d: %d failed attempts, freezing exploration", self.level, self.level_attempt
            )
            self.agent.force_conservative_policy()
        self.retry()
        return stats

    # -------------------------
    # Views
    # -------------------------
    @property
    def total_score(self) -> int:
        return self.cumulative_score + (self.state.score if self.state is not None else 0)

    def render_ascii(self) -> str:
        if self.state is None:
            return "<no episode>"
        rows = [list(line) for line in grid_to_layout(self.state.grid)]
        pos = self.state.agent.position
        rows[pos.y][pos.x] = AGENT
        return "\n".join("".join(row) for row in rows)
