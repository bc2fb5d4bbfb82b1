import threading

import pytest

from realistic_render.loop import Clock, FrameLoop


def test_clock_accumulates():
    clock = Clock()
    assert clock.get_delta() >= 0.0
    first = clock.get_elapsed_time()
    assert clock.get_elapsed_time() >= first


def test_invalid_fps():
    with pytest.raises(ValueError):
        FrameLoop(fps=0)


def test_step_drains_in_order_then_renders():
    loop = FrameLoop()
    events = []
    loop.call_soon(events.append, "load")
    loop.call_soon(events.append, "resize")
    loop.set_animation_loop(lambda elapsed: events.append("frame"))

    loop.step()
    assert events == ["load", "resize", "frame"]
    assert loop.frame_count == 1
    assert loop.pending() == 0


def test_callbacks_queued_during_drain_wait_for_next_frame():
    loop = FrameLoop()
    events = []

    def first():
        events.append("first")
        loop.call_soon(events.append, "second")

    loop.call_soon(first)
    loop.set_animation_loop(lambda elapsed: events.append("frame"))

    loop.step()
    assert events == ["first", "frame"]
    loop.step()
    assert events == ["first", "frame", "second", "frame"]


def test_call_soon_is_thread_safe():
    loop = FrameLoop()
    results = []
    threads = [threading.Thread(target=lambda i=i: loop.call_soon(results.append, i)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert loop.drain() == 20
    assert sorted(results) == list(range(20))


def test_run_until_stopped():
    loop = FrameLoop(fps=1000)

    def tick(elapsed):
        if loop.frame_count >= 4:
            loop.stop()

    loop.set_animation_loop(tick)
    loop.run()
    assert loop.frame_count == 5


def test_frame_exception_propagates():
    loop = FrameLoop(fps=1000)

    def tick(elapsed):
        raise RuntimeError("boom")

    loop.set_animation_loop(tick)
    with pytest.raises(RuntimeError, match="boom"):
        loop.run()
    assert loop.frame_count == 0
