import random
import threading

import pytest

from ui.progress import ThinkingTicker

STAGES = [["a1"], ["b1"], ["c1", "c2"]]
TIPS = ["tip1", "tip2"]


@pytest.mark.unit
class TestThinkingTicker:
    def test_advance_walks_stages_then_rotates_last(self):
        ticker = ThinkingTicker(1.0, stages=STAGES, tips=TIPS, rng=random.Random(0))
        states = [ticker.advance() for _ in range(5)]
        assert [s.stage_index for s in states] == [1, 2, 2, 2, 2]
        assert states[0].text == "b1"
        assert all(s.text in ("c1", "c2") for s in states[1:])
        assert states[-1].ticks == 5
        assert all(s.tip in TIPS for s in states)

    def test_start_and_stop(self):
        updates = []
        ticked = threading.Event()

        def on_update(state):
            updates.append(state)
            if state.ticks >= 2:
                ticked.set()

        ticker = ThinkingTicker(0.01, stages=STAGES, tips=TIPS, on_update=on_update)
        ticker.start()
        assert ticker.running
        assert ticked.wait(5.0)
        ticker.stop()
        assert not ticker.running
        assert not ticker.snapshot().running
        assert updates[0].stage_index == 0
        assert updates[0].text == "a1"

    def test_stop_is_idempotent(self):
        ticker = ThinkingTicker(0.01, stages=STAGES, tips=TIPS)
        ticker.stop()
        ticker.start()
        ticker.stop()
        ticker.stop()
        assert not ticker.running

    def test_callback_errors_do_not_stop_ticking(self):
        def boom(state):
            raise RuntimeError("ui gone")

        ticker = ThinkingTicker(1.0, stages=STAGES, tips=TIPS, on_update=boom)
        assert ticker.advance().ticks == 1
