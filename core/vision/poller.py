"""Fixed-interval polling.

Live confidence preview, the event window re-check and dashboard refreshes
are all timer-driven re-fetches. They go through the ``Poller`` protocol so a
push-based notifier can replace the timer later.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol


class Poller(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...

    def is_running(self) -> bool:
        ...


PollerFactory = Callable[[str, float, Callable[[], None]], Poller]


class IntervalPoller:
    """Calls ``callback`` every ``interval`` seconds on a daemon thread.

    Errors raised by the callback are logged and do not stop the timer.
    ``cancel()`` is idempotent and safe to call from inside the callback.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], None],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.name = name
        self.interval = interval
        self._callback = callback
        self._logger = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"poller-{self.name}", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.ticks += 1
            try:
                self._callback()
            except Exception as exc:
                self._logger.warning("[Poller] %s tick failed: %s", self.name, exc)

    def cancel(self) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval, 0.1) * 2)

    def is_running(self) -> bool:
        return self._thread is not None and not self._stop.is_set()


def interval_poller_factory(logger: Optional[logging.Logger] = None) -> PollerFactory:
    def factory(name: str, interval: float, callback: Callable[[], None]) -> Poller:
        return IntervalPoller(name, interval, callback, logger=logger)

    return factory
