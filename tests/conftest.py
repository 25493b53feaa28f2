"""Shared fixtures: small hand-written boards in the config legend."""

from dataclasses import replace

import pytest

from temporal_rl.state import grid_from_layout, new_simulation_state


# S at (1,1), poison right next to it
POISON_LAYOUT = [
    "#####",
    "#SP.#",
    "#...#",
    "#..G#",
    "#####",
]

# S at (1,1), goal right next to it
GOAL_LAYOUT = [
    "#####",
    "#SG.#",
    "#...#",
    "#...#",
    "#####",
]

# coin, money bag and key around the start
ITEMS_LAYOUT = [
    "#####",
    "#Sc$#",
    "#K..#",
    "#..G#",
    "#####",
]

# long corridor ending in poison at (7,1)
CORRIDOR_LAYOUT = [
    "#########",
    "#S.....P#",
    "#.#######",
    "#......G#",
    "#########",
    "#########",
    "#########",
    "#########",
    "#########",
]


def make_state(layout, **agent_overrides):
    state = new_simulation_state(grid_from_layout(layout))
    if agent_overrides:
        state = replace(state, agent=replace(state.agent, **agent_overrides))
    return state


@pytest.fixture
def poison_state():
    return make_state(POISON_LAYOUT)


@pytest.fixture
def goal_state():
    return make_state(GOAL_LAYOUT)


@pytest.fixture
def items_state():
    return make_state(ITEMS_LAYOUT)


@pytest.fixture
def corridor_state():
    return make_state(CORRIDOR_LAYOUT)
