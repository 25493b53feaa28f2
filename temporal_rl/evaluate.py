# evaluate.py
from __future__ import annotations

import argparse
import csv
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from temporal_rl.agent_qlearning import QLearningAgent
from temporal_rl.config import CFG
from temporal_rl.dungeon import generate
from temporal_rl.env import done_reason_of
from temporal_rl.state import Grid, Mode, new_simulation_state
from temporal_rl.transition import step

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = [
    "mode",
    "level",
    "episodes",
    "success_rate",
    "avg_length",
    "avg_reward",
    "avg_rewinds",
    "goal_count",
    "timeout_count",
]


@dataclass
class EvalConfig:
    qtable_path: str = "runs/run_01/qtable.pkl"
    levels: List[int] = field(default_factory=lambda: [1, 2, 3, 4, 5])
    episodes_per_level: int = 20
    modes: List[str] = field(default_factory=lambda: [Mode.TEST.value, Mode.INFERENCE.value])
    step_limit: int = CFG.step_limit
    seed: int = CFG.seed
    out_dir: str = "runs/run_01"
    out_csv: str = "eval_summary.csv"
    verbose: bool = False


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def run_episode(agent: QLearningAgent, grid: Grid, step_limit: int) -> Tuple[str, int, int, int]:
    """Play one episode without learning. Returns (done_reason, reward, length, rewinds)."""
    state = new_simulation_state(grid)
    total = 0
    ticks = 0
    while not state.is_game_over and ticks < step_limit:
        action = agent.select_action(state.agent, state.grid)
        state, reward = step(state, action)
        total += reward
        ticks += 1

    reason = done_reason_of(state) or "timeout"
    rewinds = CFG.initial_rewind_budget - state.agent.rewind_budget
    return reason, total, ticks, rewinds


def evaluate(cfg: EvalConfig, agent: Optional[QLearningAgent] = None) -> Dict[str, Any]:
    if agent is None:
        if not os.path.exists(cfg.qtable_path):
            raise FileNotFoundError(f"Q-table not found: {cfg.qtable_path}")
        agent = QLearningAgent.load(cfg.qtable_path)

    _ensure_dir(cfg.out_dir)
    out_path = os.path.join(cfg.out_dir, cfg.out_csv)

    rows = []
    per_mode: Dict[str, List[float]] = {}

    for mode_name in cfg.modes:
        agent.set_mode(Mode(mode_name))
        # same maps for every mode
        rng = random.Random(cfg.seed)

        for level in cfg.levels:
            goal_count = 0
            timeout_count = 0
            total_reward = 0
            total_len = 0
            total_rewinds = 0

            for ep in range(cfg.episodes_per_level):
                grid = generate(level, rng)
                reason, reward, length, rewinds = run_episode(agent, grid, cfg.step_limit)
                if reason == "goal":
                    goal_count += 1
                elif reason == "timeout":
                    timeout_count += 1
                total_reward += reward
                total_len += length
                total_rewinds += rewinds

                if cfg.verbose:
                    print(f"[{mode_name} L{level}] ep={ep} done={reason} len={length} R={reward}")

            episodes = cfg.episodes_per_level
            success_rate = goal_count / episodes
            rows.append([
                mode_name,
                level,
                episodes,
                round(success_rate, 4),
                round(total_len / episodes, 2),
                round(total_reward / episodes, 2),
                round(total_rewinds / episodes, 2),
                goal_count,
                timeout_count,
            ])
            per_mode.setdefault(mode_name, []).append(success_rate)
            logger.info("%s level %d: success %.2f%%", mode_name, level, 100 * success_rate)

    with open(out_path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(SUMMARY_COLUMNS)
        for row in rows:
            w.writerow(row)

    return {
        "levels": list(cfg.levels),
        "episodes_per_level": cfg.episodes_per_level,
        "macro_success_rate": {m: sum(v) / len(v) for m, v in per_mode.items() if v},
        "rows": rows,
        "saved": out_path,
    }


def main(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(description="Evaluate a trained Q-table on freshly generated dungeons")
    ap.add_argument("--qtable_path", default="runs/run_01/qtable.pkl")
    ap.add_argument("--levels", type=int, nargs="+", default=[1, 2, 3, 4, 5])
    ap.add_argument("--episodes_per_level", type=int, default=20)
    ap.add_argument("--modes", nargs="+", default=[Mode.TEST.value, Mode.INFERENCE.value],
                    choices=[Mode.TEST.value, Mode.INFERENCE.value])
    ap.add_argument("--out_dir", default="runs/run_01")
    ap.add_argument("--seed", type=int, default=CFG.seed)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    cfg = EvalConfig(
        qtable_path=args.qtable_path,
        levels=args.levels,
        episodes_per_level=args.episodes_per_level,
        modes=args.modes,
        out_dir=args.out_dir,
        seed=args.seed,
        verbose=args.verbose,
    )
    overall = evaluate(cfg)

    print("\n=== EVALUATION SUMMARY (macro-average across levels) ===")
    print(f"Levels: {overall['levels']}")
    print(f"Episodes per level: {overall['episodes_per_level']}")
    for mode_name, rate in overall["macro_success_rate"].items():
        print(f"{mode_name:>10s} macro success rate: {rate:.2%}")
    print(f"Saved: {overall['saved']}")


if __name__ == "__main__":
    main()
