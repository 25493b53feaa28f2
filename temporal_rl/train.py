# train.py
from __future__ import annotations

import argparse
import csv
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from temporal_rl.agent_qlearning import QLearningAgent
from temporal_rl.config import CFG
from temporal_rl.env import DungeonEnv, EpisodeStats
from temporal_rl.replays import ReplayRecorder, ReplayStore
from temporal_rl.state import AgentAction, GameResult, grid_to_layout

logger = logging.getLogger(__name__)

METRICS_COLUMNS = [
    "episode",
    "level",
    "attempt",
    "epsilon",
    "episode_reward",
    "episode_length",
    "done_reason",
    "success",
    "rewinds_used",
    "trap_count",
    "coins",
    "total_score",
]


@dataclass
class TrainConfig:
    episodes: int = 2000
    max_level: int = 10          # stop once this level is cleared

    # pacing in seconds; 0 = as fast as possible
    tick_delay: float = 0.0
    rewind_pause: float = 0.0   # extra pause after a successful rewind
    win_delay: float = 0.0
    loss_delay: float = 0.0

    out_dir: str = "runs"
    run_name: str = "run_01"
    save_every: int = 200
    record_every: int = 0        # 0 = no replays
    log_every: int = 50


class TickLoop:
    """
    Single-threaded cooperative driver around ``DungeonEnv``.

    A tick is only scheduled after the previous one has been committed, so
    the engine never sees two actions at once. Stopping just means no
    further tick is scheduled.
    """

    def __init__(self, env: DungeonEnv, tick_delay: float = 0.0, rewind_pause: float = 0.0,
                 win_delay: float = 0.0, loss_delay: float = 0.0,
                 sleep: Callable[[float], None] = time.sleep):
        self.env = env
        self.tick_delay = float(tick_delay)
        self.rewind_pause = float(rewind_pause)
        self.win_delay = float(win_delay)
        self.loss_delay = float(loss_delay)
        self._sleep = sleep
        self.running = True

    def stop(self) -> None:
        self.running = False

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def run_episode(self, recorder: Optional[ReplayRecorder] = None) -> Optional[EpisodeStats]:
        """Tick until the episode ends; returns None if stopped half-way."""
        env = self.env
        done = False
        while not done:
            if not self.running:
                return None
            state, reward, done, info = env.tick()
            if recorder is not None:
                recorder.record(state.agent.position, reward, info)

            pause = self.tick_delay
            if info.get("action") == AgentAction.REWIND.value and info.get("rewound"):
                pause += self.rewind_pause
            if not done:
                self._pause(pause)

        won = env.state.game_result is GameResult.WIN
        self._pause(self.win_delay if won else self.loss_delay)
        return env.end_episode()


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def train(env: DungeonEnv, agent: QLearningAgent, cfg: TrainConfig) -> Dict[str, Any]:
    out_path = os.path.join(cfg.out_dir, cfg.run_name)
    _ensure_dir(out_path)

    metrics_path = os.path.join(out_path, "metrics.csv")
    qtable_path = os.path.join(out_path, "qtable.pkl")
    replay_path = os.path.join(out_path, "replays.json")

    with open(metrics_path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(METRICS_COLUMNS)

    loop = TickLoop(
        env,
        tick_delay=cfg.tick_delay,
        rewind_pause=cfg.rewind_pause,
        win_delay=cfg.win_delay,
        loss_delay=cfg.loss_delay,
    )
    store = ReplayStore(replay_path) if cfg.record_every > 0 else None

    rolling_window = 50
    recent_success: List[int] = []
    episodes_run = 0

    try:
        for ep in range(cfg.episodes):
            if env.level > cfg.max_level:
                break

            epsilon = agent.epsilon
            level, attempt = env.level, env.level_attempt

            recorder = None
            if store is not None and ep % cfg.record_every == 0:
                recorder = ReplayRecorder(grid_to_layout(env.state.grid), env.state.agent.position)

            stats = loop.run_episode(recorder)
            if stats is None:
                break
            episodes_run += 1

            success = 1 if stats.success else 0
            recent_success.append(success)
            if len(recent_success) > rolling_window:
                recent_success.pop(0)

            with open(metrics_path, "a", newline="", encoding="utf-8") as f:
                w = csv.writer(f)
                w.writerow([
                    ep,
                    level,
                    attempt,
                    round(epsilon, 6),
                    stats.total_reward,
                    stats.steps,
                    stats.done_reason,
                    success,
                    stats.rewinds_used,
                    stats.trap_count,
                    stats.coins,
                    env.total_score,
                ])

            if recorder is not None:
                store.add(recorder.finish(
                    level=level,
                    attempt=attempt,
                    episode_idx=ep,
                    mode=agent.mode.value,
                    epsilon=epsilon,
                    result=stats.result,
                    done_reason=stats.done_reason,
                ))

            if (ep + 1) % cfg.save_every == 0:
                agent.save(qtable_path)

            if (ep + 1) % cfg.log_every == 0:
                rolling_rate = sum(recent_success) / len(recent_success)
                print(
                    f"ep={ep+1:6d} level={level:2d} try={attempt:2d} eps={epsilon:.4f} "
                    f"R={stats.total_reward:7d} len={stats.steps:4d} done={stats.done_reason} "
                    f"rewinds={stats.rewinds_used} roll_succ({rolling_window})={rolling_rate:.2%}"
                )
    except KeyboardInterrupt:
        logger.warning("Training interrupted, saving what we have")

    agent.save(qtable_path)
    if store is not None:
        store.save()

    return {
        "out_dir": out_path,
        "metrics_csv": metrics_path,
        "qtable_path": qtable_path,
        "replays_path": replay_path if store is not None else None,
        "episodes": episodes_run,
        "final_level": env.level,
        "total_score": env.total_score,
    }


def main(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(description="Train the rewind-capable Q-learning agent")
    ap.add_argument("--episodes", type=int, default=2000)
    ap.add_argument("--max_level", type=int, default=10)
    ap.add_argument("--out_dir", default="runs")
    ap.add_argument("--run_name", default="run_01")
    ap.add_argument("--save_every", type=int, default=200)
    ap.add_argument("--record_every", type=int, default=0, help="Record a replay every N episodes (0 = off)")
    ap.add_argument("--tick_delay", type=float, default=0.0, help="Seconds between ticks")
    ap.add_argument("--rewind_pause", type=float, default=0.0, help="Extra seconds after a rewind")
    ap.add_argument("--win_delay", type=float, default=0.0, help="Seconds to hold a won episode")
    ap.add_argument("--loss_delay", type=float, default=0.0, help="Seconds to hold a lost episode")
    ap.add_argument("--qtable", default=None, help="Resume from a saved Q-table")
    ap.add_argument("--seed", type=int, default=CFG.seed)
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.qtable:
        agent = QLearningAgent.load(args.qtable)
        logger.info("Resuming from %s (%d states)", args.qtable, len(agent.q))
    else:
        agent = QLearningAgent(seed=args.seed + 1)
        agent.reset_hard(1)
    env = DungeonEnv(agent=agent, seed=args.seed)

    cfg = TrainConfig(
        episodes=args.episodes,
        max_level=args.max_level,
        tick_delay=args.tick_delay,
        rewind_pause=args.rewind_pause,
        win_delay=args.win_delay,
        loss_delay=args.loss_delay,
        out_dir=args.out_dir,
        run_name=args.run_name,
        save_every=args.save_every,
        record_every=args.record_every,
    )

    res = train(env, agent, cfg)
    print("Training finished. Outputs:")
    for k, v in res.items():
        print(f"  {k}: {v}")


if __name__ == "__main__":
    main()
