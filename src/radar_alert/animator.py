"""
Animator - Double-Buffered Radar Loop
=============================================
Description: Plays RainViewer radar tile frames over the basemap without
             flicker. Two tile layers alternate: the next frame is loaded
             into the invisible layer and only promoted to full opacity once
             the render target reports its tiles loaded. Playback starts at
             the most recent frame and wraps forever.
Author: Radar Alert Team
Version: 1.2.0

Cross-Fade Cycle (per tick):
    1. next = (index + 1) % len(frames)
    2. inactive.opacity = 0, inactive.url = frames[next]
    3. on loaded: inactive to front at target opacity, active to 0, swap
A transition still waiting on its load suppresses further ticks; after
load_timeout it is abandoned and the next tick retries the same frame.
"""

import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import META_TTL_SEC, OVERLAY_Z_INDEX, RAINVIEWER_META_URL, MapSettings
from .fetch import FetchCache
from .models import FrameDescriptor, Region
from .radar import build_tile_frames, fetch_radar_meta
from .timers import Interval

log = logging.getLogger('radar_alert.animator')


@dataclass
class _Transition:
    token: int
    key: str
    index: int
    started: float


class RadarAnimator:
    def __init__(
        self,
        cache: FetchCache,
        settings: Optional[MapSettings] = None,
        meta_url: str = RAINVIEWER_META_URL,
        meta_ttl: float = META_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.settings = settings or MapSettings()
        self.meta_url = meta_url
        self.meta_ttl = meta_ttl
        self.clock = clock

        self.target = None
        self.frames: List[FrameDescriptor] = []
        self.index = 0
        self.layers: Dict[str, Optional[object]] = {'A': None, 'B': None}
        self.active_key = 'A'
        self.legacy_layer = None

        self._timer: Optional[Interval] = None
        self._pending: Optional[_Transition] = None
        self._tokens = itertools.count(1)

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.active

    @property
    def inactive_key(self) -> str:
        return 'B' if self.active_key == 'A' else 'A'

    @property
    def transition_pending(self) -> bool:
        return self._pending is not None

    async def start(self, target, region: Optional[Region] = None) -> bool:
        """Fetch frames and (re)start the loop. False when no frames exist."""
        s = self.settings
        meta = await fetch_radar_meta(self.cache, self.meta_url, self.meta_ttl)
        frames = build_tile_frames(meta, s.color, s.smooth, s.snow, s.tile_size) if meta else []
        if not frames:
            log.info(f"No radar frames | region={region.name if region else None}")
            return False

        self.target = target
        self.frames = frames
        self.index = len(frames) - 1
        self._pending = None
        start_url = frames[self.index].url

        if len(frames) == 1:
            self._show_single(start_url)
            return True

        if self.legacy_layer is not None:
            target.remove_layer(self.legacy_layer)
            self.legacy_layer = None

        for key in ('A', 'B'):
            layer = self.layers[key]
            if layer is None or not target.has_layer(layer):
                self.layers[key] = target.create_tile_layer(start_url, 0, OVERLAY_Z_INDEX)

        active = self.layers[self.active_key]
        active.set_url(start_url)
        active.set_opacity(s.opacity)
        self.layers[self.inactive_key].set_opacity(0)

        if self._timer is not None:
            self._timer.cancel()
        self._timer = Interval(s.frame_interval, self.tick, name='radar-frames').start()
        log.info(f"Radar loop started | frames={len(frames)} | interval={s.frame_interval}s")
        return True

    def _show_single(self, url: str):
        """One frame needs no double buffer: a single still layer."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for layer in self.layers.values():
            if layer is not None and self.target.has_layer(layer):
                layer.set_opacity(0)
        if self.legacy_layer is None or not self.target.has_layer(self.legacy_layer):
            self.legacy_layer = self.target.create_tile_layer(url, self.settings.opacity, OVERLAY_Z_INDEX)
        else:
            self.legacy_layer.set_url(url)
            self.legacy_layer.set_opacity(self.settings.opacity)
        log.info("Radar still frame shown (single frame available)")

    def tick(self):
        if len(self.frames) < 2 or self.target is None:
            return

        now = self.clock()
        if self._pending is not None:
            waited = now - self._pending.started
            if waited < self.settings.load_timeout:
                log.debug(f"Frame {self._pending.index} still loading ({waited:.2f}s)")
                return
            log.warning(f"Frame {self._pending.index} load timed out after {waited:.1f}s, retrying")
            self._pending = None

        next_idx = (self.index + 1) % len(self.frames)
        key = self.inactive_key
        inactive = self.layers[key]
        token = next(self._tokens)
        self._pending = _Transition(token=token, key=key, index=next_idx, started=now)

        inactive.set_opacity(0)
        inactive.on_loaded(lambda: self._promote(token))
        inactive.set_url(self.frames[next_idx].url)

    def _promote(self, token: int):
        pending = self._pending
        if pending is None or pending.token != token:
            log.debug(f"Stale load signal ignored (token={token})")
            return

        incoming = self.layers[pending.key]
        outgoing = self.layers[self.active_key]
        incoming.bring_to_front()
        incoming.set_opacity(self.settings.opacity)
        outgoing.set_opacity(0)

        self.active_key = pending.key
        self.index = pending.index
        self._pending = None
        log.debug(f"Frame {self.index} active on layer {self.active_key}")

    def stop(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
        if self.target is None:
            return
        # Buffers stay blank until the next start
        for layer in self.layers.values():
            if layer is not None and self.target.has_layer(layer):
                layer.set_opacity(0)
        if self.legacy_layer is not None:
            self.target.remove_layer(self.legacy_layer)
            self.legacy_layer = None
