# transition.py
"""
The deterministic state-transition function.

``step(state, action)`` never mutates its input and never draws random
numbers: the same state and action always give the same next state and
reward. Rule priority:

1. REWIND (only honoured while the agent is trapped)
2. anything else while trapped is locked
3. movement / WAIT (history snapshot first, then cell effects)
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Tuple

from temporal_rl.config import CFG, SimulationConfig
from temporal_rl.history import Snapshot
from temporal_rl.state import (
    EMPTY_CELL, AgentAction, CellKind, GameResult, ItemKind, SimulationState,
    StatusEffect, TrapKind, cell_at, door_cell, with_cell,
)

logger = logging.getLogger(__name__)


def _append_log(state: SimulationState, message: str, cfg: SimulationConfig) -> Tuple[str, ...]:
    logs = state.logs + (message,)
    if cfg.log_limit > 0 and len(logs) > cfg.log_limit:
        logs = logs[len(logs) - cfg.log_limit:]
    return logs


def _log_only(state: SimulationState, message: str, cfg: SimulationConfig) -> SimulationState:
    logger.debug(message)
    return replace(state, logs=_append_log(state, message, cfg))


def step(state: SimulationState, action: AgentAction, cfg: SimulationConfig = CFG) -> Tuple[SimulationState, int]:
    """Apply ``action`` to ``state``. Returns ``(next_state, reward)``."""
    if not isinstance(action, AgentAction):
        raise ValueError(f"Invalid action {action!r}. Must be an AgentAction.")

    if state.is_game_over:
        return state, 0

    if action is AgentAction.REWIND:
        return _rewind(state, cfg)

    if state.agent.is_trapped:
        return (
            _log_only(state, f"Action: {action.value} - movement locked, rewind required", cfg),
            cfg.locked_move_penalty,
        )

    return _move(state, action, cfg)


def _rewind(state: SimulationState, cfg: SimulationConfig) -> Tuple[SimulationState, int]:
    agent = state.agent

    if not agent.is_trapped:
        return (
            _log_only(state, "Rewind rejected: no hazard to undo", cfg),
            cfg.rejected_rewind_penalty,
        )

    if agent.rewind_budget <= 0 or len(state.history) == 0:
        return (
            _log_only(state, "Rewind failed: no budget or no history left", cfg),
            cfg.failed_rewind_penalty,
        )

    idx, snap = state.history.restore_point(cfg.rewind_steps)
    restored = replace(
        snap.agent,
        rewind_budget=agent.rewind_budget - 1,
        status_effect=StatusEffect.NONE,
        traps_triggered=agent.traps_triggered,
    )

    # history indices do not line up with the path (WAIT, blocked moves,
    # entries dropped by the ring buffer); cut where the snapshot was taken
    cut = max(1, snap.path_len)
    kept = state.active_path[:cut]
    discarded = state.active_path[cut - 1:]
    abandoned = state.abandoned_paths + ((discarded,) if discarded else ())

    message = f"Rewind: timeline restored {len(state.history) - idx} steps back"
    logger.debug(message)
    next_state = replace(
        state,
        grid=snap.grid,
        agent=restored,
        score=state.score + cfg.rewind_cost,
        history=state.history.truncate(idx),
        active_path=kept,
        abandoned_paths=abandoned,
        logs=_append_log(state, message, cfg),
    )
    return next_state, cfg.rewind_cost


def _move(state: SimulationState, action: AgentAction, cfg: SimulationConfig) -> Tuple[SimulationState, int]:
    agent = state.agent
    grid = state.grid
    history = state.history.push(
        Snapshot(grid=state.grid, agent=agent, score=state.score, path_len=len(state.active_path))
    )
    steps_taken = agent.steps_taken + 1
    message = f"Action: {action.value}"

    if action is AgentAction.WAIT:
        reward = cfg.step_penalty
        next_state = replace(
            state,
            agent=replace(agent, steps_taken=steps_taken),
            history=history,
            score=state.score + reward,
            logs=_append_log(state, message, cfg),
        )
        return next_state, reward

    dx, dy = action.delta
    target = agent.position.moved(dx, dy)
    cell = cell_at(grid, target)

    if cell is None or cell.is_wall:
        reward = cfg.step_penalty + cfg.blocked_penalty
        next_state = replace(
            state,
            agent=replace(agent, steps_taken=steps_taken),
            history=history,
            score=state.score + reward,
            logs=_append_log(state, message + " (blocked)", cfg),
        )
        return next_state, reward

    reward = cfg.step_penalty
    visited = set(agent.visited_traps)

    if any(target in path for path in state.abandoned_paths):
        reward += cfg.revisit_penalty
        fail_key = f"fail-{target.key}"
        if fail_key not in visited:
            visited.add(fail_key)
            message += " [retreading abandoned timeline]"

    if target in state.active_path:
        reward -= 1

    active_path = state.active_path + (target,)
    coins = agent.coins
    keys = agent.keys_collected
    health = agent.health
    traps_triggered = agent.traps_triggered
    status = agent.status_effect
    known = state.global_known_traps
    is_game_over = False
    game_result = None

    # --- items ---
    if cell.kind is CellKind.ITEM:
        if cell.item is ItemKind.COIN:
            reward += cfg.coin_reward
            coins += 1
            message += f" -> coin (+{cfg.coin_reward})"
        elif cell.item is ItemKind.KEY:
            keys += 1
            message += " -> key"
        elif cell.item is ItemKind.MONEY_BAG:
            coins += cell.value if cell.value is not None else 1
            message += " -> money bag"
        grid = with_cell(grid, target, EMPTY_CELL)

    # --- doors (walking through a closed one leaves it open) ---
    elif cell.kind is CellKind.DOOR and not cell.is_open:
        grid = with_cell(grid, target, door_cell(True))
        message += " -> door opened"

    # --- traps ---
    elif cell.kind is CellKind.TRAP:
        traps_triggered += 1
        if cell.is_lethal:
            if target.key in known:
                reward += cfg.trap_penalty + cfg.re_enter_poison_penalty
                message += f" -> known {cell.trap.value} re-entered"
            else:
                reward += cfg.trap_penalty
                known = known | {target.key}
                message += f" -> {cell.trap.value} discovered"

            if agent.rewind_budget > 0:
                status = StatusEffect.TRAPPED_WAITING_REWIND
                message += ", rewind required"
            else:
                status = StatusEffect.POISONED if cell.trap is TrapKind.POISON else StatusEffect.FALLEN
                is_game_over = True
                game_result = GameResult.LOSS
                message += ", fatal (no rewinds left)"

        elif cell.trap is TrapKind.SPIKE:
            health = max(0, health - cfg.trap_damage)
            reward += int(cfg.trap_penalty / 2)
            message += f" -> spikes (-{cfg.trap_damage} HP)"
            if health <= 0:
                is_game_over = True
                game_result = GameResult.LOSS
                message += ", fatal"

        elif cell.trap is TrapKind.TRIGGER and cell.target is not None:
            door = cell_at(grid, cell.target)
            if door is not None and door.kind is CellKind.DOOR:
                grid = with_cell(grid, cell.target, door_cell(not door.is_open))
                message += " -> trigger toggled a door"

    # --- goal ---
    elif cell.kind is CellKind.GOAL:
        reward += cfg.goal_reward
        is_game_over = True
        game_result = GameResult.WIN
        message += f" -> goal reached (+{cfg.goal_reward})"

    next_agent = replace(
        agent,
        position=target,
        health=health,
        steps_taken=steps_taken,
        keys_collected=keys,
        coins=coins,
        visited_traps=frozenset(visited),
        traps_triggered=traps_triggered,
        status_effect=status,
    )

    if is_game_over:
        logger.debug("Episode over (%s): %s", game_result.value, message)

    next_state = replace(
        state,
        grid=grid,
        agent=next_agent,
        score=state.score + reward,
        history=history,
        is_game_over=is_game_over,
        game_result=game_result,
        active_path=active_path,
        global_known_traps=known,
        logs=_append_log(state, message, cfg),
    )
    return next_state, reward
