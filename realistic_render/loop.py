"""Host frame loop.

Everything that touches the scene runs on the thread calling ``run()``:
asset completions, resize events and GUI changes are queued with
``call_soon`` from whatever thread produced them and drained in arrival
order before each frame.
"""

import logging
import queue
import threading
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Clock:
    """Monotonic clock reporting elapsed and per-frame time."""

    def __init__(self, auto_start: bool = True):
        self.start_time: Optional[float] = None
        self.old_time: Optional[float] = None
        self.elapsed_time = 0.0
        self.running = False
        if auto_start:
            self.start()

    def start(self) -> None:
        self.start_time = time.perf_counter()
        self.old_time = self.start_time
        self.elapsed_time = 0.0
        self.running = True

    def get_elapsed_time(self) -> float:
        self.get_delta()
        return self.elapsed_time

    def get_delta(self) -> float:
        if not self.running:
            self.start()
            return 0.0
        now = time.perf_counter()
        delta = now - self.old_time
        self.old_time = now
        self.elapsed_time += delta
        return delta


class FrameLoop:
    """Cooperative per-frame scheduler."""

    def __init__(self, fps: float = 60.0):
        """Initialize the frame loop.

        Args:
            fps: Target frames per second for ``run()``
        """
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.frame_interval = 1.0 / fps
        self.clock = Clock(auto_start=False)
        self.frame_count = 0

        self._callbacks: "queue.Queue[tuple]" = queue.Queue()
        self._animation_loop: Optional[Callable[[float], None]] = None
        self._stop_event = threading.Event()

    def call_soon(self, callback: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Queue a callback for the loop thread. Safe from any thread."""
        self._callbacks.put((callback, args, kwargs))

    def set_animation_loop(self, callback: Optional[Callable[[float], None]]) -> None:
        """Set the function called once per frame with the elapsed time."""
        self._animation_loop = callback

    def pending(self) -> int:
        return self._callbacks.qsize()

    def drain(self) -> int:
        """Run every queued callback. Callbacks queued meanwhile wait for the next frame."""
        count = self._callbacks.qsize()
        for _ in range(count):
            try:
                callback, args, kwargs = self._callbacks.get_nowait()
            except queue.Empty:
                break
            callback(*args, **kwargs)
        return count

    def step(self) -> None:
        """Run one frame: queued callbacks, then the animation callback."""
        if not self.clock.running:
            self.clock.start()
        self.drain()
        if self._animation_loop is not None:
            self._animation_loop(self.clock.get_elapsed_time())
        self.frame_count += 1

    def run(self) -> None:
        """Run frames until ``stop()`` is called.

        Exceptions raised by a frame end the loop and propagate.
        """
        self._stop_event.clear()
        logger.info(f"Frame loop running at {1.0 / self.frame_interval:.0f} fps")

        while not self._stop_event.is_set():
            frame_start = time.perf_counter()
            self.step()
            remaining = self.frame_interval - (time.perf_counter() - frame_start)
            if remaining > 0:
                self._stop_event.wait(remaining)

        logger.info(f"Frame loop stopped after {self.frame_count} frames")

    def stop(self) -> None:
        self._stop_event.set()
