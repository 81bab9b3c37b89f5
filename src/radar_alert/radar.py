"""
Radar - Imagery Variants & Frame Building
=============================================
Description: The radar display variants the orchestrator chooses between,
             and the RainViewer metadata parsing shared by them. Every variant
             exposes start(region) / stop(); the orchestrator never branches
             on which one it holds.
Author: Radar Alert Team
Version: 1.1.0

Variants:
    basemap-overlay     - MapOverlay (display.py) driving RadarAnimator
    static-image-loop   - StaticImageLoop: center-point PNG frames, no basemap
    single-provider-gif - ProviderGif: the NWS RIDGE loop GIF
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .config import (
    DEFAULT_RADAR_SITE, META_TTL_SEC, NWS_RADAR_GIF_URL, PLACEHOLDER_IMAGE,
    RAINVIEWER_HOST, RAINVIEWER_META_URL, StaticLoopSettings
)
from .errors import MalformedResponse, TransientFetchFailure
from .fetch import FetchCache
from .models import FrameDescriptor, Region
from .timers import Interval
from .viewport import resolve_center

log = logging.getLogger('radar_alert.radar')


class RadarDisplay(ABC):
    @abstractmethod
    async def start(self, region: Optional[Region]) -> bool:
        """Populate the panel for this region. False means fallback imagery."""

    @abstractmethod
    def stop(self) -> None: ...


# === METADATA ===

def _frame_time_and_path(frame: Any):
    if isinstance(frame, dict):
        time = frame.get('time') or frame.get('ts') or frame.get('t')
        path = frame.get('path') or (f"/v2/radar/{time}" if time else None)
    else:
        time = frame
        path = f"/v2/radar/{time}" if time else None
    return time, path


def parse_radar_meta(data: Any, include_nowcast: bool = True) -> Dict[str, Any]:
    """Normalize RainViewer metadata to {'host', 'frames'} (oldest first)."""
    if not isinstance(data, dict):
        raise MalformedResponse("Radar metadata is not a JSON object")
    host = data.get('host') or RAINVIEWER_HOST
    radar = data.get('radar') if isinstance(data.get('radar'), dict) else {}
    past = radar.get('past') if isinstance(radar.get('past'), list) else []
    nowcast = radar.get('nowcast') if isinstance(radar.get('nowcast'), list) else []
    return {'host': host, 'frames': past + nowcast if include_nowcast else past}


def build_tile_frames(meta: Dict[str, Any], color: int = 2, smooth: int = 1,
                      snow: int = 0, tile_size: int = 256) -> List[FrameDescriptor]:
    frames = []
    for raw in meta['frames']:
        time, path = _frame_time_and_path(raw)
        if not path:
            continue
        url = f"{meta['host']}{path}/{tile_size}/{{z}}/{{x}}/{{y}}/{color}/{smooth}_{snow}.png"
        frames.append(FrameDescriptor(timestamp=time, url=url))
    return frames


def build_center_frames(meta: Dict[str, Any], region: Optional[Region],
                        settings: StaticLoopSettings) -> List[FrameDescriptor]:
    lat, lon = resolve_center(region)
    s = settings
    frames = []
    for raw in meta['frames']:
        time, path = _frame_time_and_path(raw)
        if not path:
            continue
        url = f"{meta['host']}{path}/{s.size}/{s.zoom}/{lat}/{lon}/{s.color}/{s.smooth}_{s.snow}.png"
        frames.append(FrameDescriptor(timestamp=time, url=url))
    return frames


async def fetch_radar_meta(cache: FetchCache, url: str = RAINVIEWER_META_URL,
                           ttl: float = META_TTL_SEC, include_nowcast: bool = True) -> Optional[Dict[str, Any]]:
    """Metadata through the cache; None on any fetch or parse failure."""
    try:
        result = await cache.fetch(url, ttl)
        result.require_ok()
        return parse_radar_meta(result.json(), include_nowcast=include_nowcast)
    except (TransientFetchFailure, MalformedResponse) as e:
        log.warning(f"Radar metadata unavailable | url={url} | {e}")
        return None


# === VARIANTS ===

class StaticImageLoop(RadarDisplay):
    """Cycles center-point frame images on the panel (no basemap)."""

    def __init__(self, panel, cache: FetchCache, settings: StaticLoopSettings,
                 meta_url: str = RAINVIEWER_META_URL, meta_ttl: float = META_TTL_SEC,
                 placeholder: str = PLACEHOLDER_IMAGE):
        self.panel = panel
        self.cache = cache
        self.settings = settings
        self.meta_url = meta_url
        self.meta_ttl = meta_ttl
        self.placeholder = placeholder
        self.frames: List[FrameDescriptor] = []
        self.index = 0
        self._timer: Optional[Interval] = None

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.active

    async def start(self, region):
        meta = await fetch_radar_meta(self.cache, self.meta_url, self.meta_ttl, include_nowcast=False)
        self.frames = build_center_frames(meta, region, self.settings) if meta else []
        if not self.frames:
            self.panel.show_image(self.placeholder)
            return False

        self.index = 0
        self.panel.show_image(self.frames[0].url)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = Interval(self.settings.frame_interval, self.tick, name='static-loop').start()
        return True

    def tick(self):
        if not self.frames:
            return
        self.index = (self.index + 1) % len(self.frames)
        self.panel.show_image(self.frames[self.index].url)

    def stop(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class ProviderGif(RadarDisplay):
    """Single animated GIF from the radar site's provider."""

    def __init__(self, panel, template: str = NWS_RADAR_GIF_URL):
        self.panel = panel
        self.template = template

    async def start(self, region):
        site = region.radar_site if region is not None and region.radar_site else DEFAULT_RADAR_SITE
        self.panel.show_image(self.template.replace('{radarSite}', site))
        return True

    def stop(self):
        pass
