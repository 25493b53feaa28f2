import json

import pytest

from temporal_rl.replays import EpisodeReplay, ReplayRecorder, ReplayStore


def _recorded(level=1):
    rec = ReplayRecorder(["###", "#S#", "###"], (1, 1))
    rec.record((2, 1), -1, {"action": "RIGHT"})
    rec.record((2, 1), -51, {"action": "DOWN", "hit_trap": True})
    rec.record((1, 1), -5, {"action": "REWIND", "rewound": True})
    rec.record((1, 1), -3, {"action": "UP", "blocked": True})
    rec.record((1, 2), 9, {"action": "DOWN", "picked_coin": True})
    return rec.finish(level=level, attempt=2, episode_idx=7, mode="TRAINING",
                      epsilon=0.123456, result="LOSS", done_reason="timeout")


class TestRecorder:
    def test_markers(self):
        rep = _recorded()
        assert rep.steps == 5
        assert rep.total_reward == -51
        assert rep.positions[0] == (1, 1)
        assert len(rep.positions) == 6
        assert rep.ticks_with("hit_trap") == [1]
        assert rep.ticks_with("rewound") == [2]
        assert rep.ticks_with("blocked") == [3]
        assert rep.ticks_with("picked_coin") == [4]
        assert rep.ticks_with("missing") == []
        assert rep.epsilon == 0.1235
        assert not rep.success

    def test_dict_form_is_json_safe(self):
        d = _recorded().to_dict()
        json.dumps(d)
        assert d["positions"][0] == [1, 1]
        assert d["total_reward"] == -51
        assert EpisodeReplay.from_dict(d) == _recorded()


class TestStore:
    def test_save_and_load(self, tmp_path):
        path = tmp_path / "sub" / "replays.json"
        store = ReplayStore(str(path))
        store.add(_recorded(1))
        store.add(_recorded(3))
        store.add(_recorded(3))
        store.save()

        again = ReplayStore(str(path))
        again.load()
        assert again.levels() == [1, 3]
        assert len(again.get_episodes(3)) == 2
        assert again.get_episodes(2) == []
        assert again.get_episodes(1)[0].grid0 == ["###", "#S#", "###"]

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ReplayStore(str(tmp_path / "nope.json")).load()
