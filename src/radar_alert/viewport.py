"""
Viewport - Region Placement
=============================================
Description: Pure geometry that frames a region on the render target. A
             positive radius fits a bounding box; otherwise the target is
             centered at the region with a resolved zoom level. Missing
             coordinates fall back to the continental-US center.
Author: Radar Alert Team
Version: 1.0.0

Equirectangular Approximation:
    half_height = radius_km / 111
    half_width  = radius_km / (111 * cos(lat))
Valid for regional radar ranges, not near the poles.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .config import CONTINENTAL_CENTER, FALLBACK_ZOOM, FIT_PADDING, KM_PER_DEGREE
from .models import Region

log = logging.getLogger('radar_alert.viewport')

MIN_COS_LAT = 0.01


@dataclass(frozen=True)
class BoundingBox:
    south: float
    west: float
    north: float
    east: float

    @property
    def center(self) -> Tuple[float, float]:
        return ((self.south + self.north) / 2, (self.west + self.east) / 2)

    def as_leaflet(self) -> List[List[float]]:
        """[[south, west], [north, east]]"""
        return [[self.south, self.west], [self.north, self.east]]


def resolve_center(region: Optional[Region]) -> Tuple[float, float]:
    lat = region.lat if region is not None and region.lat is not None else None
    lon = region.lon if region is not None and region.lon is not None else None
    if lat is None or lon is None:
        return CONTINENTAL_CENTER
    return lat, lon


def resolve_zoom(region: Optional[Region], default_zoom: Optional[float] = None) -> float:
    """Priority: region.zoom -> configured default -> 8."""
    if region is not None and region.zoom is not None:
        return region.zoom
    if isinstance(default_zoom, (int, float)) and math.isfinite(default_zoom):
        return default_zoom
    return FALLBACK_ZOOM


def radius_bounds(lat: float, lon: float, radius_km: float) -> BoundingBox:
    d_lat = radius_km / KM_PER_DEGREE
    cos_lat = max(math.cos(math.radians(lat)), MIN_COS_LAT)
    d_lon = radius_km / (KM_PER_DEGREE * cos_lat)
    return BoundingBox(south=lat - d_lat, west=lon - d_lon, north=lat + d_lat, east=lon + d_lon)


class ViewportFitter:
    def __init__(self, default_zoom: Optional[float] = None, max_zoom: int = 18,
                 padding: Tuple[int, int] = FIT_PADDING):
        self.default_zoom = default_zoom
        self.max_zoom = max_zoom
        self.padding = padding

    def place(self, target, region: Optional[Region]) -> None:
        lat, lon = resolve_center(region)

        if region is not None and region.radius_km is not None and region.radius_km > 0:
            box = radius_bounds(lat, lon, region.radius_km)
            target.fit_bounds(box, self.padding, self.max_zoom)
            log.debug(f"Fit bounds | region={region.name} | radius={region.radius_km}km | box={box.as_leaflet()}")
        else:
            zoom = resolve_zoom(region, self.default_zoom)
            target.set_viewport_center(lat, lon, zoom)
            log.debug(f"Set view | ({lat:.4f}, {lon:.4f}) z{zoom}")
