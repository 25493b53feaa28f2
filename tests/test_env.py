from dataclasses import replace

import pytest

from temporal_rl.agent_qlearning import QLearningAgent
from temporal_rl.config import CFG
from temporal_rl.env import DungeonEnv
from temporal_rl.state import (
    AgentAction, CellKind, GameResult, Mode, Position, fresh_agent, grid_from_layout,
    new_simulation_state,
)

from conftest import GOAL_LAYOUT, ITEMS_LAYOUT, POISON_LAYOUT


def _install(env, layout, **agent_overrides):
    """Swap in a hand-written board as the current level."""
    grid = grid_from_layout(layout)
    env.master_grid = grid
    state = new_simulation_state(grid, env.cfg)
    if agent_overrides:
        state = replace(state, agent=replace(state.agent, **agent_overrides))
    env.state = state
    env.ticks = 0
    env.done_reason = None
    return state


@pytest.fixture
def env():
    return DungeonEnv(agent=QLearningAgent(seed=1), seed=3)


class TestLifecycle:
    def test_starts_on_level_one(self, env):
        assert env.level == 1
        assert env.level_attempt == 1
        assert env.state.agent.position == (1, 1)
        assert env.state.active_path == ((1, 1),)
        assert len(env.state.grid) == 12
        assert env.agent.mode is Mode.TRAINING

    def test_supplied_agent_keeps_its_table(self):
        agent = QLearningAgent(seed=1)
        here = fresh_agent(Position(1, 1))
        agent.update(here, AgentAction.RIGHT, 5, replace(here, position=Position(2, 1)))
        agent.epsilon = 0.3
        table = {k: dict(v) for k, v in agent.q.items()}

        env = DungeonEnv(agent=agent, seed=1)
        assert env.agent is agent
        assert agent.q == table
        assert agent.epsilon == 0.3
        assert env.level == 1
        assert env.state.agent.position == (1, 1)

    def test_own_agent_starts_fresh(self):
        env = DungeonEnv(seed=1)
        assert env.agent.q == {}
        assert env.agent.epsilon == pytest.approx(0.72)

    def test_step_before_reset(self, env):
        env.state = None
        with pytest.raises(RuntimeError):
            env.step(AgentAction.UP)

    def test_win_advances_level(self, env):
        _install(env, GOAL_LAYOUT)
        _, reward, done, info = env.step(AgentAction.RIGHT)
        assert reward == 99
        assert done
        assert info["done_reason"] == "goal"
        table_size = len(env.agent.q)

        stats = env.end_episode()
        assert stats.success
        assert stats.done_reason == "goal"
        assert env.level == 2
        assert env.level_attempt == 1
        assert env.cumulative_score == 99
        assert env.total_score == 99
        assert len(env.agent.q) == table_size
        assert env.agent.epsilon == pytest.approx(0.6)
        assert env.state.global_known_traps == frozenset()
        assert env.state.episode == 2
        assert len(env.state.grid) == 14

    def test_loss_retries_same_map(self, env):
        _install(env, POISON_LAYOUT, rewind_budget=0)
        epsilon = env.agent.epsilon
        _, _, done, info = env.step(AgentAction.RIGHT)
        assert done
        assert info["done_reason"] == "poisoned"
        assert info["hit_trap"]

        stats = env.end_episode()
        assert not stats.success
        assert stats.result == GameResult.LOSS.value
        assert env.level == 1
        assert env.level_attempt == 2
        assert env.cumulative_score == 0
        assert env.agent.epsilon == pytest.approx(epsilon * CFG.epsilon_decay)
        assert env.state.global_known_traps == frozenset({"2,1"})
        assert env.state.score == 0
        assert env.state.agent.position == (1, 1)

        for row_a, row_b in zip(env.master_grid, env.state.grid):
            for a, b in zip(row_a, row_b):
                if a.is_coin or a.kind is CellKind.EMPTY:
                    assert b.is_coin or b.kind is CellKind.EMPTY
                else:
                    assert a == b

    def test_repeated_failure_freezes_exploration(self, env):
        _install(env, POISON_LAYOUT, rewind_budget=0)
        env.level_attempt = 5
        env.step(AgentAction.RIGHT)
        env.end_episode()
        assert env.agent.epsilon == CFG.conservative_epsilon

    def test_no_decay_in_test_mode(self, env):
        env.enter_test_mode()
        assert env.level == 3
        _install(env, POISON_LAYOUT, rewind_budget=0)
        epsilon = env.agent.epsilon
        env.step(AgentAction.RIGHT)
        env.end_episode()
        assert env.agent.epsilon == epsilon
        assert env.agent.mode is Mode.TEST

    def test_exit_test_mode(self, env):
        env.enter_test_mode()
        env.exit_test_mode()
        assert env.level == 1
        assert env.agent.mode is Mode.TRAINING

    def test_reset_brain_clears_table(self, env):
        env.tick()
        assert env.agent.q
        env.reset_brain()
        assert env.agent.q == {}
        assert env.level == 1

    def test_set_inference(self, env):
        env.set_inference(True)
        assert env.agent.mode is Mode.INFERENCE
        env.set_inference(False)
        assert env.agent.mode is Mode.TRAINING


class TestStepping:
    def test_timeout(self):
        env = DungeonEnv(seed=5, cfg=replace(CFG, step_limit=3))
        results = [env.step(AgentAction.WAIT) for _ in range(3)]
        assert [done for _, _, done, _ in results] == [False, False, True]
        assert results[-1][3]["done_reason"] == "timeout"

        stats = env.end_episode()
        assert stats.result == GameResult.LOSS.value
        assert stats.done_reason == "timeout"
        assert env.level_attempt == 2

    def test_step_after_done_is_inert(self, env):
        _install(env, GOAL_LAYOUT)
        env.step(AgentAction.RIGHT)
        state, reward, done, _ = env.step(AgentAction.DOWN)
        assert reward == 0
        assert done
        assert state is env.state

    def test_info_flags(self, env):
        _install(env, GOAL_LAYOUT)
        _, _, _, info = env.step(AgentAction.UP)
        assert info["blocked"]
        assert info["action"] == "UP"

        _install(env, ITEMS_LAYOUT)
        _, _, _, info = env.step(AgentAction.RIGHT)
        assert info["picked_coin"]
        assert not info["blocked"]

        _install(env, POISON_LAYOUT)
        env.step(AgentAction.RIGHT)
        _, _, _, info = env.step(AgentAction.REWIND)
        assert info["rewound"]
        assert info["event"].startswith("Rewind")

    def test_learning_happens_on_step(self, env):
        _install(env, GOAL_LAYOUT)
        env.step(AgentAction.DOWN)
        assert env.agent.q_values(env.state.history[0].agent)[AgentAction.DOWN] == pytest.approx(-0.5)

    def test_tick(self, env):
        state, reward, done, info = env.tick()
        assert env.ticks == 1
        assert info["action"] in {a.value for a in AgentAction}
        assert state is env.state

    def test_render_ascii(self, env):
        _install(env, GOAL_LAYOUT)
        lines = env.render_ascii().splitlines()
        assert lines[0] == "#####"
        assert lines[1] == "#AG.#"
