"""
Render - Map Surface & Overlay Panel
=============================================
Description: Capability interface for the tile map the radar is drawn on, a
             Folium-backed implementation of it, and the overlay panel that
             hosts title text, transitions and the radar content. The core
             only ever talks to RenderTarget / TileLayerHandle, never to
             Folium directly.
Author: Radar Alert Team
Version: 1.1.0

Visual Design:
    - Dark glass panel with a flashing red border while an alert is shown
    - slide-in / slide-out classes drive the enter and exit transitions
"""

import asyncio
import html
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

import folium

from .config import CONTINENTAL_CENTER, FALLBACK_ZOOM, OSM_TILE_URL

log = logging.getLogger('radar_alert.render')

DEFAULT_TITLE = "Severe Weather"


class TileLayerHandle(ABC):
    url: str
    opacity: float

    @abstractmethod
    def set_url(self, url: str) -> None: ...

    @abstractmethod
    def set_opacity(self, opacity: float) -> None: ...

    @abstractmethod
    def bring_to_front(self) -> None: ...

    @abstractmethod
    def on_loaded(self, callback: Callable[[], None]) -> None:
        """Register a one-shot callback for the next completed tile load."""


class RenderTarget(ABC):
    @abstractmethod
    def set_viewport_center(self, lat: float, lon: float, zoom: float) -> None: ...

    @abstractmethod
    def fit_bounds(self, box, padding: Tuple[int, int], max_zoom: int) -> None: ...

    @abstractmethod
    def create_base_layer(self, url_template: str, max_zoom: int) -> None: ...

    @abstractmethod
    def create_tile_layer(self, url: str, opacity: float, z_index: int) -> TileLayerHandle: ...

    @abstractmethod
    def has_layer(self, handle: TileLayerHandle) -> bool: ...

    @abstractmethod
    def remove_layer(self, handle: TileLayerHandle) -> None: ...

    @abstractmethod
    def invalidate_size(self) -> None: ...

    @property
    @abstractmethod
    def has_base_layer(self) -> bool: ...


# === FOLIUM IMPLEMENTATION ===

class FoliumTileLayer(TileLayerHandle):
    """
    Server-side tile layer. There is no browser to report tile loads, so a
    load completes on the next loop iteration after the URL is committed,
    which is when the next rendered document would carry it.
    """
    _orders = itertools.count(1)

    def __init__(self, url: str, opacity: float, z_index: int):
        self.url = url
        self.opacity = opacity
        self.z_index = z_index
        self.order = next(self._orders)
        self.loaded = False
        self._callbacks: List[Callable[[], None]] = []

    def set_url(self, url: str) -> None:
        self.url = url
        self.loaded = False
        try:
            asyncio.get_running_loop().call_soon(self._complete_load)
        except RuntimeError:
            self._complete_load()

    def set_opacity(self, opacity: float) -> None:
        self.opacity = opacity

    def bring_to_front(self) -> None:
        self.order = next(self._orders)

    def on_loaded(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def _complete_load(self):
        self.loaded = True
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()


class FoliumRenderTarget(RenderTarget):
    def __init__(self, attribution: str = "RainViewer | OpenStreetMap"):
        self.attribution = attribution
        self.center: Optional[Tuple[float, float]] = None
        self.zoom: Optional[float] = None
        self.bounds = None
        self.padding: Tuple[int, int] = (0, 0)
        self.max_zoom: Optional[int] = None
        self.base_url: Optional[str] = None
        self.base_max_zoom = 18
        self.size_invalidations = 0
        self._layers: List[FoliumTileLayer] = []

    @property
    def has_base_layer(self) -> bool:
        return self.base_url is not None

    @property
    def layers(self) -> List[FoliumTileLayer]:
        return list(self._layers)

    def set_viewport_center(self, lat, lon, zoom):
        self.center = (lat, lon)
        self.zoom = zoom
        self.bounds = None

    def fit_bounds(self, box, padding, max_zoom):
        self.bounds = box
        self.center = box.center
        self.padding = padding
        self.max_zoom = max_zoom

    def create_base_layer(self, url_template, max_zoom):
        self.base_url = url_template
        self.base_max_zoom = max_zoom

    def create_tile_layer(self, url, opacity, z_index):
        layer = FoliumTileLayer(url, opacity, z_index)
        self._layers.append(layer)
        return layer

    def has_layer(self, handle):
        return handle in self._layers

    def remove_layer(self, handle):
        if handle in self._layers:
            self._layers.remove(handle)

    def invalidate_size(self):
        self.size_invalidations += 1

    def render(self) -> folium.Map:
        """Build a Folium map reflecting the current viewport and layers."""
        lat, lon = self.center or CONTINENTAL_CENTER
        m = folium.Map(
            location=[lat, lon],
            zoom_start=self.zoom if self.zoom is not None else FALLBACK_ZOOM,
            tiles=None,
            zoom_control=False,
            prefer_canvas=True,
        )

        folium.TileLayer(
            tiles=self.base_url or OSM_TILE_URL,
            attr=self.attribution,
            max_zoom=self.base_max_zoom,
            name='Base',
        ).add_to(m)

        # Leaflet stacks same-z layers by insertion order, so add back-to-front
        for i, layer in enumerate(sorted(self._layers, key=lambda l: (l.z_index, l.order))):
            folium.TileLayer(
                tiles=layer.url,
                attr=self.attribution,
                name=f'Radar {i}',
                overlay=True,
                opacity=layer.opacity,
                z_index=layer.z_index,
            ).add_to(m)

        if self.bounds is not None:
            m.fit_bounds(self.bounds.as_leaflet(), padding=self.padding, max_zoom=self.max_zoom)
        return m

    def to_html(self) -> str:
        return self.render().get_root().render()

    def save(self, path) -> bool:
        try:
            self.render().save(str(path))
            log.info(f"Map rendered: {path}")
            return True
        except Exception as e:
            log.error(f"Map render failed: {e}", exc_info=True)
            return False


# === OVERLAY PANEL ===

class OverlayPanel:
    """
    The container the alert is shown in. `attached` is cleared by hosts that
    have not mounted the panel yet; the readiness guard waits on it.
    """

    def __init__(self, attached: bool = True):
        self.attached = attached
        self.hidden = False
        self.title = DEFAULT_TITLE
        self.subtitle = ''
        self.displayed = False
        self.flashing = False
        self.classes = set()
        self.content: Optional[str] = None
        self.image_src: Optional[str] = None
        self.map_target: Optional[FoliumRenderTarget] = None

    def is_displayed(self) -> bool:
        return self.attached and not self.hidden

    @property
    def visible(self) -> bool:
        return self.displayed and 'visible' in self.classes

    def set_title(self, title: str, subtitle: str = ''):
        self.title = title or DEFAULT_TITLE
        self.subtitle = subtitle or ''

    def enter(self):
        self.flashing = True
        self.displayed = True
        self.classes.discard('slide-out')
        self.classes.update(('visible', 'slide-in'))

    def begin_exit(self):
        self.flashing = False
        self.classes.discard('slide-in')
        self.classes.add('slide-out')

    def clear(self):
        self.classes.difference_update(('slide-out', 'visible'))
        self.displayed = False
        self.reset_content()

    def reset_content(self):
        self.content = None
        self.image_src = None
        self.map_target = None

    def show_map(self, target):
        self.content = 'map'
        self.map_target = target

    def show_image(self, src: str):
        self.content = 'image'
        self.image_src = src

    def to_html(self) -> str:
        if not self.displayed:
            return "<div class=\"radar-alert\" style=\"display:none\"></div>"

        if self.content == 'map' and self.map_target is not None:
            doc = html.escape(self.map_target.to_html(), quote=True)
            body = f'<iframe class="radar-map" srcdoc="{doc}"></iframe>'
        elif self.content == 'image' and self.image_src:
            body = f'<img class="radar-image" src="{html.escape(self.image_src, quote=True)}"/>'
        else:
            body = ''

        border = 'radar-border flash-border' if self.flashing else 'radar-border'
        classes = ' '.join(sorted(self.classes | {'radar-alert'}))
        return f"""
        <div class="{classes}" style="position:fixed; inset:5%; z-index:10000;
                    background:rgba(10,10,10,0.9); border-radius:10px; padding:12px;
                    color:white; font-family:'Inter', sans-serif;">
            <div class="radar-content">
                <div class="radar-title"><strong>{html.escape(self.title)}</strong><br/>{html.escape(self.subtitle)}</div>
                <div class="radar-img-holder" style="width:100%; height:80vh;">{body}</div>
            </div>
            <div class="{border}"></div>
        </div>
        """
