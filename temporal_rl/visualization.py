# visualization.py
"""
Offline plots for a training run directory.

Reads ``metrics.csv`` (written by ``train.py``) and, when present,
``eval_summary.csv`` (written by ``evaluate.py``) and produces:

- ``learning_curves.png``: success / reward / length / rewinds per episode
- ``curriculum.png``: level reached and exploration rate
- ``done_reasons.png``: outcome mix per level
- ``eval_per_level.png``: evaluation success per level and mode
- ``roc_confusion.png``: how well the episode reward separates wins from losses
- ``viz_summary.csv`` and ``per_level.csv``
"""
from __future__ import annotations

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from sklearn.metrics import (
    auc,
    confusion_matrix,
    precision_recall_fscore_support,
    roc_curve,
)

logger = logging.getLogger(__name__)

METRICS_NEEDED = {
    "episode", "level", "attempt", "epsilon", "episode_reward", "episode_length",
    "done_reason", "success", "rewinds_used", "trap_count", "coins", "total_score",
}

INT_COLUMNS = (
    "episode", "level", "attempt", "episode_length", "success",
    "rewinds_used", "trap_count", "coins",
)

CURVES = (
    ("success", "Success rate"),
    ("episode_reward", "Episode reward"),
    ("episode_length", "Episode length"),
    ("rewinds_used", "Rewinds used"),
)


@dataclass
class VizConfig:
    run_dir: str = "runs/run_01"
    out_dir: str = "runs/run_01/viz"
    rolling_window: int = 50


def _smooth(values: pd.Series, window: int) -> pd.Series:
    if window <= 1:
        return values
    return values.rolling(window=window, min_periods=max(1, window // 4)).mean()


def _best_threshold(y_true: np.ndarray, scores: np.ndarray) -> Tuple[float, float]:
    """Reward cut-off with the best F1 as a win predictor: (threshold, f1)."""
    candidates = np.unique(scores)
    if len(candidates) > 2000:
        candidates = np.quantile(scores, np.linspace(0.0, 1.0, 2000))

    best = (float(candidates[0]), -1.0)
    for thr in candidates:
        _, _, f1, _ = precision_recall_fscore_support(
            y_true, (scores >= thr).astype(int), average="binary", zero_division=0
        )
        if f1 > best[1]:
            best = (float(thr), float(f1))
    return best


def _save(fig, out_dir: str, name: str) -> str:
    path = os.path.join(out_dir, name)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    logger.debug("wrote %s", path)
    return path


# -------------------------
# Tables
# -------------------------
def load_metrics(run_dir: str) -> pd.DataFrame:
    path = os.path.join(run_dir, "metrics.csv")
    if not os.path.exists(path):
        raise FileNotFoundError(f"Missing file: {path}")
    df = pd.read_csv(path)

    missing = METRICS_NEEDED - set(df.columns)
    if missing:
        raise ValueError(f"{path} missing columns: {sorted(missing)}")

    df = df.astype({c: int for c in INT_COLUMNS})
    df = df.astype({"episode_reward": float, "total_score": float, "epsilon": float, "done_reason": str})
    return df.sort_values("episode").reset_index(drop=True)


def load_eval(run_dir: str) -> Optional[pd.DataFrame]:
    path = os.path.join(run_dir, "eval_summary.csv")
    return pd.read_csv(path) if os.path.exists(path) else None


def macro_table(df: pd.DataFrame) -> Dict[str, float]:
    if df.empty:
        return {"episodes": 0.0}
    return {
        "episodes": float(len(df)),
        "success_rate": float(df["success"].mean()),
        "avg_reward": float(df["episode_reward"].mean()),
        "avg_length": float(df["episode_length"].mean()),
        "avg_rewinds": float(df["rewinds_used"].mean()),
        "avg_traps": float(df["trap_count"].mean()),
        "timeout_rate": float((df["done_reason"] == "timeout").mean()),
        "max_level": float(df["level"].max()),
        "final_total_score": float(df["total_score"].iloc[-1]),
    }


def per_level_table(df: pd.DataFrame) -> pd.DataFrame:
    return df.groupby("level").agg(
        episodes=("episode", "count"),
        success_rate=("success", "mean"),
        avg_reward=("episode_reward", "mean"),
        avg_length=("episode_length", "mean"),
        avg_rewinds=("rewinds_used", "mean"),
        attempts=("attempt", "max"),
    ).reset_index()


# -------------------------
# Figures
# -------------------------
def plot_learning_curves(df: pd.DataFrame, cfg: VizConfig) -> str:
    w = cfg.rolling_window
    fig, axes = plt.subplots(2, 2, figsize=(10, 7), sharex=True)
    for ax, (col, label) in zip(axes.flat, CURVES):
        y = df[col].astype(float)
        ax.plot(df["episode"], y, alpha=0.25, label="per episode")
        ax.plot(df["episode"], _smooth(y, w), label=f"rolling (w={w})")
        ax.set_ylabel(label)
        ax.legend(fontsize="small")
    for ax in axes[-1]:
        ax.set_xlabel("Episode")
    fig.suptitle("Learning curves")
    return _save(fig, cfg.out_dir, "learning_curves.png")


def plot_curriculum(df: pd.DataFrame, cfg: VizConfig) -> str:
    fig, ax = plt.subplots()
    ax.step(df["episode"], df["level"], where="post")
    ax.set_xlabel("Episode")
    ax.set_ylabel("Level")
    eps_ax = ax.twinx()
    eps_ax.plot(df["episode"], df["epsilon"], color="tab:orange")
    eps_ax.set_ylabel("Epsilon")
    ax.set_title("Curriculum progress")
    return _save(fig, cfg.out_dir, "curriculum.png")


def plot_done_reasons(df: pd.DataFrame, cfg: VizConfig) -> str:
    mix = pd.crosstab(df["level"], df["done_reason"], normalize="index")
    fig, ax = plt.subplots(figsize=(max(6, 0.9 * len(mix)), 4.8))
    mix.plot.bar(ax=ax, rot=0)
    ax.set_xlabel("Level")
    ax.set_ylabel("Fraction of episodes")
    ax.set_title("Episode outcome per level")
    return _save(fig, cfg.out_dir, "done_reasons.png")


def plot_eval_per_level(eval_df: pd.DataFrame, cfg: VizConfig) -> str:
    table = eval_df.pivot_table(index="level", columns="mode", values="success_rate")
    fig, ax = plt.subplots()
    table.plot.bar(ax=ax, rot=0)
    ax.set_xlabel("Level")
    ax.set_ylabel("Success rate")
    ax.set_ylim(0, 1)
    ax.set_title("Evaluation success per level")
    return _save(fig, cfg.out_dir, "eval_per_level.png")


def plot_roc_and_confusion(df: pd.DataFrame, cfg: VizConfig) -> Dict[str, float]:
    """
    Treat the episode reward as a score for "this episode was won":
    ROC curve with AUC on the left, confusion matrix at the best-F1 cut-off
    on the right. Returns the numbers, or {} when only one outcome occurs.
    """
    y_true = df["success"].to_numpy(dtype=int)
    scores = df["episode_reward"].to_numpy(dtype=float)
    if len(np.unique(y_true)) < 2:
        return {}

    fpr, tpr, _ = roc_curve(y_true, scores)
    roc_auc = auc(fpr, tpr)
    thr, _ = _best_threshold(y_true, scores)
    y_pred = (scores >= thr).astype(int)
    p, r, f1, _ = precision_recall_fscore_support(y_true, y_pred, average="binary", zero_division=0)
    cm = confusion_matrix(y_true, y_pred, labels=[0, 1])

    fig, (roc_ax, cm_ax) = plt.subplots(1, 2, figsize=(10, 4.5))
    roc_ax.plot(fpr, tpr, label=f"AUC={roc_auc:.3f}")
    roc_ax.plot([0, 1], [0, 1], linestyle="--")
    roc_ax.set_xlabel("False positive rate")
    roc_ax.set_ylabel("True positive rate")
    roc_ax.set_title("ROC (score = episode reward)")
    roc_ax.legend()

    im = cm_ax.imshow(cm, interpolation="nearest")
    fig.colorbar(im, ax=cm_ax)
    cm_ax.set_xticks([0, 1], labels=["Pred loss", "Pred win"])
    cm_ax.set_yticks([0, 1], labels=["True loss", "True win"])
    for (i, j), n in np.ndenumerate(cm):
        cm_ax.text(j, i, str(n), ha="center", va="center")
    cm_ax.set_title(f"Confusion at reward >= {thr:.1f}")
    _save(fig, cfg.out_dir, "roc_confusion.png")

    return {
        "roc_auc": float(roc_auc),
        "best_thr_reward": thr,
        "precision_at_best_thr": float(p),
        "recall_at_best_thr": float(r),
        "f1_at_best_thr": float(f1),
    }


def run_all(cfg: VizConfig) -> List[str]:
    os.makedirs(cfg.out_dir, exist_ok=True)
    df = load_metrics(cfg.run_dir)

    plot_learning_curves(df, cfg)
    plot_curriculum(df, cfg)
    plot_done_reasons(df, cfg)

    eval_df = load_eval(cfg.run_dir)
    if eval_df is not None and not eval_df.empty:
        plot_eval_per_level(eval_df, cfg)

    stats = plot_roc_and_confusion(df, cfg)

    summary_path = os.path.join(cfg.out_dir, "viz_summary.csv")
    pd.DataFrame([{**macro_table(df), **stats}]).to_csv(summary_path, index=False)
    per_level_table(df).to_csv(os.path.join(cfg.out_dir, "per_level.csv"), index=False)

    print("Saved visualizations to:", cfg.out_dir)
    print("Saved summary to:", summary_path)
    return sorted(os.listdir(cfg.out_dir))


def main(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(description="Plot learning curves and outcome summaries for a run")
    ap.add_argument("--run_dir", default="runs/run_01", help="Run dir (contains metrics.csv)")
    ap.add_argument("--out_dir", default=None, help="Where plots go (default: <run_dir>/viz)")
    ap.add_argument("--rolling_window", type=int, default=50)
    args = ap.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    run_all(VizConfig(
        run_dir=args.run_dir,
        out_dir=args.out_dir or os.path.join(args.run_dir, "viz"),
        rolling_window=args.rolling_window,
    ))


if __name__ == "__main__":
    main()
