"""
Models - Core Data Types
=============================================
Description: Immutable value types shared across the alert pipeline: regions
             loaded from configuration, alert events produced by a poll, radar
             frame descriptors and the display state enumeration.
Author: Radar Alert Team
Version: 1.1.0
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .errors import ConfigurationDefect

log = logging.getLogger('radar_alert.models')


def parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class Region:
    """A watched area: where to look up alerts and how to frame the radar."""
    name: str
    alert_id: Optional[str] = None
    radar_site: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    zoom: Optional[float] = None
    radius_km: Optional[float] = None
    meteoalarm_url: Optional[str] = None

    @classmethod
    def from_config(cls, raw: Any) -> 'Region':
        """
        Build a Region from a config entry.

        Accepts a bare zone string or a mapping using either snake_case or the
        legacy camelCase keys (zone, radarSite, radiusKm, meteoalarmUrl).
        Out-of-range coordinates and non-positive radii are dropped to None so
        the viewport fitter applies its fallbacks.
        """
        if isinstance(raw, str):
            zone = _text(raw)
            if not zone:
                raise ConfigurationDefect("Empty region string")
            return cls(name=zone, alert_id=zone)

        if not isinstance(raw, dict):
            raise ConfigurationDefect(f"Region must be a string or object, got {type(raw).__name__}")

        alert_id = _text(raw.get('alert_id') or raw.get('zone') or raw.get('alertIdentifier'))
        name = _text(raw.get('name')) or alert_id or 'Unnamed Region'

        lat = parse_number(raw.get('lat'))
        if lat is not None and not -90.0 <= lat <= 90.0:
            log.warning(f"Region '{name}': lat {lat} out of range, using fallback center")
            lat = None
        lon = parse_number(raw.get('lon'))
        if lon is not None and not -180.0 <= lon <= 180.0:
            log.warning(f"Region '{name}': lon {lon} out of range, using fallback center")
            lon = None

        radius = parse_number(raw.get('radius_km') or raw.get('radiusKm'))
        if radius is not None and radius <= 0:
            log.warning(f"Region '{name}': radius_km {radius} must be > 0, ignored")
            radius = None

        return cls(
            name=name,
            alert_id=alert_id,
            radar_site=_text(raw.get('radar_site') or raw.get('radarSite')),
            lat=lat,
            lon=lon,
            zoom=parse_number(raw.get('zoom')),
            radius_km=radius,
            meteoalarm_url=_text(raw.get('meteoalarm_url') or raw.get('meteoalarmUrl')),
        )


@dataclass(frozen=True)
class AlertEvent:
    event_type: str
    headline: str
    description: str
    source_region: Region

    @classmethod
    def from_properties(cls, props: Dict[str, Any], region: Region) -> 'AlertEvent':
        return cls(
            event_type=str(props.get('event') or ''),
            headline=str(props.get('headline') or ''),
            description=str(props.get('description') or ''),
            source_region=region,
        )


@dataclass(frozen=True)
class PollResult:
    """Outcome of one poll; replaces the previous one wholesale."""
    active: bool
    event: Optional[AlertEvent] = None

    @property
    def region(self) -> Optional[Region]:
        return self.event.source_region if self.event else None


@dataclass(frozen=True)
class FrameDescriptor:
    timestamp: Any
    url: str


class DisplayState(Enum):
    IDLE = 'idle'
    SHOWING = 'showing'
    REPEAT_SCHEDULED = 'repeat_scheduled'
    HIDDEN = 'hidden'
