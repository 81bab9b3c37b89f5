"""
Radar Alert - Severe Weather Radar Overlay
=============================================
Description: Polls weather-alert providers for configured regions and, while
             a qualifying alert is active, shows an animated radar overlay
             framed on the affected region with an audio cue. Repeats on a
             fixed interval until the alert clears or the user dismisses it.
Author: Radar Alert Team
Version: 1.0.0

Modules:
    config   - Global configuration constants and config loader
    fetch    - TTL request cache with proxy delegation
    proxy    - Host-side proxy helper
    alerts   - Alert providers and polling monitor
    viewport - Region placement on the map
    animator - Double-buffered radar tile loop
    radar    - Radar display variants and frame building
    render   - Folium render target and overlay panel
    display  - Alert overlay orchestrator
    audio    - Alert sound cue
    health   - Heartbeat and observability

Usage:
    python -m radar_alert --serve --config radar.json
    python -m radar_alert --once
    python -m uvicorn radar_alert.server:app
"""

__version__ = '1.0.0'
__author__ = 'Radar Alert Team'

from .config import RadarAlertConfig, load_config
from .errors import (
    RadarAlertError, TransientFetchFailure, MalformedResponse,
    RenderTargetUnavailable, ConfigurationDefect
)
from .models import Region, AlertEvent, PollResult, FrameDescriptor, DisplayState
from .fetch import FetchCache, FetchResult
from .proxy import ProxyHelper, create_proxied_cache
from .alerts import AlertMonitor, NWSAlertProvider, MeteoAlarmProvider, build_providers
from .viewport import ViewportFitter, BoundingBox
from .animator import RadarAnimator
from .render import FoliumRenderTarget, OverlayPanel
from .display import DisplayOrchestrator, MapOverlay
from .audio import AudioCue
from .health import write_heartbeat, check_health

__all__ = [
    'RadarAlertConfig',
    'load_config',
    'RadarAlertError',
    'TransientFetchFailure',
    'MalformedResponse',
    'RenderTargetUnavailable',
    'ConfigurationDefect',
    'Region',
    'AlertEvent',
    'PollResult',
    'FrameDescriptor',
    'DisplayState',
    'FetchCache',
    'FetchResult',
    'ProxyHelper',
    'create_proxied_cache',
    'AlertMonitor',
    'NWSAlertProvider',
    'MeteoAlarmProvider',
    'build_providers',
    'ViewportFitter',
    'BoundingBox',
    'RadarAnimator',
    'FoliumRenderTarget',
    'OverlayPanel',
    'DisplayOrchestrator',
    'MapOverlay',
    'AudioCue',
    'write_heartbeat',
    'check_health',
]
