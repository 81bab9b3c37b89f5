"""
Config - Global Configuration
=============================================
Description: Centralized defaults for the radar alert service plus the
             RadarAlertConfig loader. Defaults are grouped by the module that
             consumes them; a JSON config file overrides them, with nested
             map/static_loop sections merged key-by-key (null never clobbers
             a default). All durations are in seconds.
Author: Radar Alert Team
Version: 1.2.0
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigurationDefect
from .models import Region, parse_number

log = logging.getLogger('radar_alert.config')

# --- Alert Providers (alerts.py) ---
NWS_ALERT_URL = "https://api.weather.gov/alerts/active/zone/{region}"
NWS_HEADERS = {
    'User-Agent': 'radar-alert (severe weather overlay)',
    'Accept': 'application/geo+json',
}
DEFAULT_ALERT_PROVIDERS = ['nws']
DEFAULT_ALERT_TYPES = [
    "Tornado Warning",
    "Severe Thunderstorm Warning",
    "Severe Thunderstorm Watch",
    "Tropical Storm Warning",
    "Hurricane Warning",
]

# --- Radar Imagery (radar.py / animator.py) ---
NWS_RADAR_GIF_URL = "https://radar.weather.gov/ridge/standard/{radarSite}_loop.gif"
DEFAULT_RADAR_SITE = "KTLX"
RAINVIEWER_META_URL = "https://api.rainviewer.com/public/weather-maps.json"
RAINVIEWER_HOST = "https://tilecache.rainviewer.com"
PLACEHOLDER_IMAGE = "no-radar.png"

RADAR_PROVIDERS = ('basemap-overlay', 'static-image-loop', 'single-provider-gif')
RADAR_PROVIDER_ALIASES = {
    'leaflet': 'basemap-overlay',
    'rainviewer': 'static-image-loop',
    'nws': 'single-provider-gif',
}

# --- Fetch Cache (fetch.py / proxy.py) ---
API_TIMEOUT_SEC = 20         # Upstream response timeout
PROXY_TTL_SEC = 30           # Default cache TTL for alert queries
META_TTL_SEC = 30            # Radar metadata TTL
HELPER_TTL_SEC = 60          # Host-side proxy default TTL

# --- Timing (display.py / alerts.py) ---
SHOW_DURATION_SEC = 15
REPEAT_INTERVAL_SEC = 5 * 60
POLL_INTERVAL_SEC = 60
EXIT_TRANSITION_SEC = 0.5    # Slide-out before the panel is cleared
LAYOUT_SETTLE_SEC = 0.03     # Panel sizing before content is built
REFIT_DELAY_SEC = 0.55       # Re-place viewport after slide-in
DISPLAY_RETRY_SEC = 0.25     # Readiness guard poll
DISPLAY_RETRY_LIMIT = 40     # ~10s before a show is abandoned

# --- Map Overlay (viewport.py / animator.py / render.py) ---
OSM_TILE_URL = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
CONTINENTAL_CENTER = (39.8283, -98.5795)
FALLBACK_ZOOM = 8
KM_PER_DEGREE = 111.0
FIT_PADDING = (12, 12)
OVERLAY_Z_INDEX = 200

MAP_DEFAULTS = {
    'base_url': OSM_TILE_URL,
    'base_max_zoom': 18,
    'zoom': FALLBACK_ZOOM,
    'color': 2,
    'smooth': 1,
    'snow': 0,
    'opacity': 0.9,
    'frame_interval': 0.4,
    'tile_size': 256,
    'load_timeout': 5.0,
}

STATIC_LOOP_DEFAULTS = {
    'size': 512,
    'zoom': 6,
    'color': 2,
    'smooth': 1,
    'snow': 0,
    'frame_interval': 0.3,
}

# --- Audio (audio.py) ---
SOUND_FILE = "alert.wav"
SOUND_VOLUME = 0.8

# --- Filesystem Paths (health.py / server.py) ---
DATA_DIR = Path(os.environ.get('RADAR_ALERT_DATA_DIR', Path.cwd() / 'data'))
HEARTBEAT_FILE = DATA_DIR / "heartbeat.json"
HTML_OUT = DATA_DIR / "overlay.html"

_TILE_TEMPLATE = re.compile(r"\{z\}.*\{x\}.*\{y\}")


def merge_defaults(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow merge that never lets a None override clobber a default."""
    out = dict(base or {})
    if not isinstance(override, dict):
        return out
    for k, v in override.items():
        if v is None:
            continue
        out[k] = v
    return out


def validate_tile_template(url: Any) -> str:
    """Return the trimmed template or raise ConfigurationDefect."""
    if not isinstance(url, str) or not url.strip():
        raise ConfigurationDefect(f"Empty tile template: {url!r}")
    url = url.strip()
    if not _TILE_TEMPLATE.search(url):
        raise ConfigurationDefect(f"Tile template missing {{z}}/{{x}}/{{y}}: {url}")
    return url


def resolve_base_url(url: Any) -> str:
    """Validated base-layer template, or the OSM template on any defect."""
    try:
        return validate_tile_template(url)
    except ConfigurationDefect as e:
        log.warning(f"Base map fallback to OSM: {e}")
        return OSM_TILE_URL


def normalize_radar_provider(name: Any) -> str:
    """Map legacy names onto the three radar display variants."""
    key = str(name or '').strip().lower()
    key = RADAR_PROVIDER_ALIASES.get(key, key)
    if key not in RADAR_PROVIDERS:
        log.warning(f"Unknown radar provider {name!r}, using basemap-overlay")
        return 'basemap-overlay'
    return key


@dataclass
class MapSettings:
    """Basemap + tile overlay parameters."""
    base_url: str = OSM_TILE_URL
    base_max_zoom: int = 18
    zoom: float = FALLBACK_ZOOM
    color: int = 2
    smooth: int = 1
    snow: int = 0
    opacity: float = 0.9
    frame_interval: float = 0.4
    tile_size: int = 256
    load_timeout: float = 5.0

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> 'MapSettings':
        merged = merge_defaults(MAP_DEFAULTS, raw)
        zoom = parse_number(merged.get('zoom'))
        if zoom is None:
            log.warning(f"map.zoom {merged.get('zoom')!r} is not a number, using {FALLBACK_ZOOM}")
            zoom = FALLBACK_ZOOM
        merged['zoom'] = zoom
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in merged.items() if k in known})


@dataclass
class StaticLoopSettings:
    """Single-image RainViewer animation parameters (no basemap)."""
    size: int = 512
    zoom: int = 6
    color: int = 2
    smooth: int = 1
    snow: int = 0
    frame_interval: float = 0.3

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> 'StaticLoopSettings':
        merged = merge_defaults(STATIC_LOOP_DEFAULTS, raw)
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in merged.items() if k in known})


@dataclass
class RadarAlertConfig:
    regions: List[Region] = field(default_factory=list)
    alert_providers: List[str] = field(default_factory=lambda: list(DEFAULT_ALERT_PROVIDERS))
    radar_provider: str = 'basemap-overlay'

    nws_alert_url: str = NWS_ALERT_URL
    nws_radar_url: str = NWS_RADAR_GIF_URL
    rainviewer_meta_url: str = RAINVIEWER_META_URL
    placeholder_image: str = PLACEHOLDER_IMAGE

    alert_types: List[str] = field(default_factory=lambda: list(DEFAULT_ALERT_TYPES))

    show_duration: float = SHOW_DURATION_SEC
    repeat_interval: float = REPEAT_INTERVAL_SEC
    poll_interval: float = POLL_INTERVAL_SEC
    exit_transition: float = EXIT_TRANSITION_SEC
    layout_settle: float = LAYOUT_SETTLE_SEC
    refit_delay: float = REFIT_DELAY_SEC
    display_retry: float = DISPLAY_RETRY_SEC
    display_retry_limit: int = DISPLAY_RETRY_LIMIT

    map: MapSettings = field(default_factory=MapSettings)
    static_loop: StaticLoopSettings = field(default_factory=StaticLoopSettings)

    sound_file: str = SOUND_FILE
    use_proxy: bool = False
    proxy_ttl: float = PROXY_TTL_SEC
    meta_ttl: float = META_TTL_SEC
    tap_to_dismiss: bool = True

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> 'RadarAlertConfig':
        raw = dict(raw or {})
        cfg = cls()

        regions = []
        for i, item in enumerate(raw.pop('regions', None) or []):
            try:
                regions.append(Region.from_config(item))
            except ConfigurationDefect as e:
                log.warning(f"Region #{i} skipped: {e}")
        cfg.regions = regions

        cfg.map = MapSettings.from_dict(raw.pop('map', None))
        cfg.map.base_url = resolve_base_url(cfg.map.base_url)
        cfg.static_loop = StaticLoopSettings.from_dict(raw.pop('static_loop', None))
        cfg.radar_provider = normalize_radar_provider(raw.pop('radar_provider', cfg.radar_provider))

        scalars = {f.name for f in fields(cls)} - {'regions', 'map', 'static_loop', 'radar_provider'}
        for key, value in raw.items():
            if key not in scalars:
                log.warning(f"Unrecognized config key ignored: {key}")
                continue
            if value is None:
                continue
            setattr(cfg, key, value)

        return cfg


def load_config(path: Optional[Path] = None) -> RadarAlertConfig:
    """Load a JSON config file; missing path yields pure defaults."""
    if path is None:
        return RadarAlertConfig()
    path = Path(path)
    with open(path, 'r', encoding='utf-8') as f:
        raw = json.load(f)
    cfg = RadarAlertConfig.from_dict(raw)
    log.info(f"Config loaded: {path} | regions={len(cfg.regions)} | radar={cfg.radar_provider}")
    return cfg
