import random
from dataclasses import fields

import pytest

from temporal_rl.config import CFG, LevelConfig, failure_limit, level_config
from temporal_rl.dungeon import generate, goal_position, scatter_coins, start_position
from temporal_rl.pathfinding import is_reachable
from temporal_rl.state import CellKind, TrapKind, find_cells, grid_size


def _count(grid, kind):
    return len(find_cells(grid, kind))


def _coins(grid):
    return sum(1 for row in grid for cell in row if cell.is_coin)


class TestLevelConfig:
    def test_first_level(self):
        lc = level_config(1)
        assert lc.size == 12
        assert lc.trap_density == pytest.approx(0.32)
        assert lc.branching_factor == pytest.approx(0.45)

    def test_size_is_capped(self):
        assert level_config(5).size == 20
        assert level_config(6).size == CFG.max_size
        assert level_config(10).size == CFG.max_size

    def test_densities_are_capped(self):
        lc = level_config(10)
        assert lc.trap_density == pytest.approx(0.8)
        assert lc.branching_factor == pytest.approx(0.9)

    @pytest.mark.parametrize("level", [0, -3])
    def test_invalid_level(self, level):
        with pytest.raises(ValueError):
            level_config(level)

    def test_failure_limits(self):
        assert [failure_limit(lv) for lv in range(1, 7)] == [5, 4, 3, 2, 1, 5]


class TestGenerate:
    @pytest.mark.parametrize("level", range(1, 11))
    def test_board_shape_and_contents(self, level):
        grid = generate(level, random.Random(level))
        size = level_config(level).size
        assert grid_size(grid) == size
        assert all(len(row) == size for row in grid)

        assert find_cells(grid, CellKind.START) == [start_position()]
        assert find_cells(grid, CellKind.GOAL) == [goal_position(size)]

        for i in range(size):
            for cell in (grid[0][i], grid[size - 1][i], grid[i][0], grid[i][size - 1]):
                assert cell.kind is CellKind.WALL

        assert CFG.min_coins <= _coins(grid) <= CFG.max_coins
        for row in grid:
            for cell in row:
                if cell.kind is CellKind.TRAP:
                    assert cell.trap in (TrapKind.SPIKE, TrapKind.POISON)

    def test_goal_reachable_almost_always(self):
        rng = random.Random(1234)
        boards = [(lv, generate(lv, rng)) for lv in range(1, 11) for _ in range(4)]
        connected = sum(
            1 for lv, g in boards
            if is_reachable(g, start_position(), goal_position(level_config(lv).size))
        )
        assert connected / len(boards) >= 0.95

    def test_seeded_generation_is_reproducible(self):
        assert generate(3, random.Random(7)) == generate(3, random.Random(7))

    def test_trap_count_grows_with_level(self):
        rng = random.Random(5)
        low = sum(_count(generate(1, rng), CellKind.TRAP) for _ in range(5))
        high = sum(_count(generate(10, rng), CellKind.TRAP) for _ in range(5))
        assert high > low


class TestScatterCoins:
    def test_geometry_is_preserved(self):
        grid = generate(4, random.Random(3))
        again = scatter_coins(grid, random.Random(99))

        for row_a, row_b in zip(grid, again):
            for a, b in zip(row_a, row_b):
                if a.is_coin or a.kind is CellKind.EMPTY:
                    assert b.is_coin or b.kind is CellKind.EMPTY
                else:
                    assert a == b
        assert CFG.min_coins <= _coins(again) <= CFG.max_coins

    def test_does_not_touch_input(self):
        grid = generate(2, random.Random(11))
        before = [tuple(row) for row in grid]
        scatter_coins(grid, random.Random(0))
        assert [tuple(row) for row in grid] == before


def test_level_config_fields():
    assert [f.name for f in fields(LevelConfig)] == ["level", "size", "trap_density", "branching_factor"]
