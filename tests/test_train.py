import os
from dataclasses import replace

import pandas as pd

from temporal_rl.agent_qlearning import QLearningAgent, state_key
from temporal_rl.config import CFG
from temporal_rl.env import DungeonEnv
from temporal_rl.replays import ReplayStore
from temporal_rl.state import AgentAction, Position, fresh_agent
from temporal_rl.train import METRICS_COLUMNS, TickLoop, TrainConfig, main, train


def _env(step_limit=40, seed=1):
    agent = QLearningAgent(seed=seed + 1)
    return DungeonEnv(agent=agent, seed=seed, cfg=replace(CFG, step_limit=step_limit)), agent


class TestTickLoop:
    def test_pacing(self):
        env, _ = _env(step_limit=3)
        calls = []
        loop = TickLoop(env, tick_delay=0.5, loss_delay=2.0, sleep=calls.append)
        stats = loop.run_episode()
        assert stats is not None
        assert stats.steps == 3
        assert calls == [0.5, 0.5, 2.0]

    def test_stopped_loop_does_nothing(self):
        env, _ = _env()
        loop = TickLoop(env)
        loop.stop()
        assert loop.run_episode() is None
        assert env.episode_stats == []
        assert env.ticks == 0


class TestTrain:
    def test_writes_outputs(self, tmp_path):
        env, agent = _env()
        cfg = TrainConfig(episodes=4, out_dir=str(tmp_path), run_name="r",
                          save_every=2, record_every=2, log_every=2)
        res = train(env, agent, cfg)

        assert res["episodes"] == 4
        df = pd.read_csv(res["metrics_csv"])
        assert list(df.columns) == METRICS_COLUMNS
        assert len(df) == 4
        assert df["episode"].tolist() == [0, 1, 2, 3]
        assert (df["episode_length"] <= 40).all()
        assert os.path.exists(res["qtable_path"])

        store = ReplayStore(res["replays_path"])
        store.load()
        reps = [r for lv in store.levels() for r in store.get_episodes(lv)]
        assert [r.episode_idx for r in reps] == [0, 2]
        assert all(len(r.positions) == r.steps + 1 for r in reps)

    def test_no_replays_by_default(self, tmp_path):
        env, agent = _env()
        res = train(env, agent, TrainConfig(episodes=1, out_dir=str(tmp_path), log_every=1))
        assert res["replays_path"] is None
        assert not os.path.exists(os.path.join(res["out_dir"], "replays.json"))

    def test_table_survives_reload(self, tmp_path):
        env, agent = _env()
        res = train(env, agent, TrainConfig(episodes=2, out_dir=str(tmp_path)))
        loaded = QLearningAgent.load(res["qtable_path"])
        assert loaded.q == agent.q


def test_cli(tmp_path, capsys):
    main(["--episodes", "1", "--out_dir", str(tmp_path), "--run_name", "cli"])
    assert os.path.exists(tmp_path / "cli" / "metrics.csv")
    assert "Training finished" in capsys.readouterr().out


def test_cli_resumes_from_saved_table(tmp_path):
    seeded = QLearningAgent(seed=3)
    here = fresh_agent(Position(1, 1))
    seeded.update(here, AgentAction.DOWN, 7, replace(here, position=Position(1, 2)))
    path = str(tmp_path / "start.pkl")
    seeded.save(path)

    main([
        "--episodes", "1", "--out_dir", str(tmp_path), "--run_name", "resume",
        "--qtable", path, "--rewind_pause", "0", "--win_delay", "0", "--loss_delay", "0",
    ])
    resumed = QLearningAgent.load(str(tmp_path / "resume" / "qtable.pkl"))
    assert state_key(here) in resumed.q
