"""
Timers - Event Loop Scheduling
=============================================
Description: Cancellable one-shot and repeating timers on the running asyncio
             loop. Callbacks are plain callables; anything asynchronous is
             spawned by the owner so task tracking stays in one place. A
             repeating timer re-arms before its callback runs, so a slow
             handler never delays the next tick.
Author: Radar Alert Team
Version: 1.0.0
"""

import asyncio
import logging
from typing import Callable, Optional

log = logging.getLogger('radar_alert.timers')


class Timeout:
    """One-shot timer (setTimeout)."""

    def __init__(self, delay: float, callback: Callable[[], None], name: str = 'timeout'):
        self.delay = max(0.0, float(delay))
        self.callback = callback
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> 'Timeout':
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)
        return self

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self):
        self._handle = None
        try:
            self.callback()
        except Exception as e:
            log.error(f"Timer '{self.name}' callback failed: {e}", exc_info=True)


class Interval:
    """Repeating timer (setInterval)."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str = 'interval'):
        if interval <= 0:
            raise ValueError(f"Interval '{name}' must be positive, got {interval}")
        self.interval = float(interval)
        self.callback = callback
        self.name = name
        self.ticks = 0
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self) -> 'Interval':
        self.cancel()
        self._arm()
        return self

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self):
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.interval, self._fire)

    def _fire(self):
        self._arm()
        self.ticks += 1
        try:
            self.callback()
        except Exception as e:
            log.error(f"Interval '{self.name}' callback failed: {e}", exc_info=True)
