import pytest

from temporal_rl.history import History, Snapshot
from temporal_rl.state import Position, fresh_agent


def _snap(i):
    return Snapshot(grid=(), agent=fresh_agent(Position(i, 0)), score=i, path_len=i + 1)


class TestHistory:
    def test_push_returns_new_store(self):
        h0 = History(limit=10)
        h1 = h0.push(_snap(0))
        assert len(h0) == 0
        assert len(h1) == 1
        assert h1[0].score == 0

    def test_ring_buffer_drops_oldest(self):
        h = History(limit=3)
        for i in range(5):
            h = h.push(_snap(i))
        assert len(h) == 3
        assert [s.score for s in h] == [2, 3, 4]

    def test_restore_point(self):
        h = History()
        for i in range(8):
            h = h.push(_snap(i))
        idx, snap = h.restore_point(5)
        assert idx == 3
        assert snap.score == 3

    def test_restore_point_clamps_to_oldest(self):
        h = History().push(_snap(0)).push(_snap(1))
        idx, snap = h.restore_point(5)
        assert idx == 0
        assert snap.score == 0

    def test_restore_point_on_empty_raises(self):
        with pytest.raises(IndexError):
            History().restore_point(5)

    def test_truncate(self):
        h = History(limit=7)
        for i in range(6):
            h = h.push(_snap(i))
        cut = h.truncate(2)
        assert [s.score for s in cut] == [0, 1]
        assert cut.limit == 7
        assert len(h) == 6
