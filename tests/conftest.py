"""
pytest configuration and shared fixtures for the radar alert tests.

Key concern: tests must not touch the network, an audio device or the real
data directory. We achieve this by:
  1. Injecting FakeTransport into FetchCache so upstream calls are canned
     FetchResults keyed by URL (and counted).
  2. Swapping the Folium render target for FakeTarget, whose tile layers
     only report "loaded" when a test fires them.
  3. Giving AudioCue a recording output instead of sounddevice.
  4. Shrinking every orchestrator delay so timer-driven paths run in
     milliseconds.
"""

import asyncio
import json
import os
import threading

import pytest

os.environ.setdefault("RADAR_ALERT_DATA_DIR", os.path.join(os.path.dirname(__file__), ".data"))

from radar_alert.audio import AudioCue
from radar_alert.config import MapSettings, RadarAlertConfig
from radar_alert.fetch import FetchCache, FetchResult
from radar_alert.models import Region


NWS_URL = "https://alerts.test/zone/{region}"
META_URL = "https://radar.test/weather-maps.json"

RADAR_META = {
    "host": "https://tiles.test",
    "radar": {
        "past": [
            {"time": 100, "path": "/v2/radar/100"},
            {"time": 200, "path": "/v2/radar/200"},
            {"time": 300, "path": "/v2/radar/300"},
        ],
        "nowcast": [],
    },
}


def nws_body(*events):
    return {"features": [{"properties": {"event": e, "headline": f"{e} in effect", "description": ""}}
                         for e in events]}


def ok(url, payload, status=200):
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return FetchResult(ok=True, status=status, body=body, url=url)


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeTransport:
    """Blocking transport stand-in: canned results per URL, counts calls."""

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self.gate = None
        self._lock = threading.Lock()

    def set_json(self, url, payload):
        self.responses[url] = ok(url, payload)

    def set_failure(self, url, status=503, error=None):
        self.responses[url] = FetchResult(ok=False, status=status, body=None, url=url, error=error)

    def count(self, url):
        return sum(1 for u in self.calls if u == url)

    def __call__(self, url, timeout):
        with self._lock:
            self.calls.append(url)
        if self.gate is not None:
            self.gate.wait(timeout=2)
        result = self.responses.get(url)
        if result is None:
            return FetchResult(ok=False, status=404, body=None, url=url)
        return result


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def advance(self, seconds):
        self.now += seconds

    def __call__(self):
        return self.now


class FakeLayer:
    def __init__(self, url, opacity, z_index):
        self.url = url
        self.opacity = opacity
        self.z_index = z_index
        self.fronted = 0
        self.url_history = [url]
        self._callbacks = []

    def set_url(self, url):
        self.url = url
        self.url_history.append(url)

    def set_opacity(self, opacity):
        self.opacity = opacity

    def bring_to_front(self):
        self.fronted += 1

    def on_loaded(self, callback):
        self._callbacks.append(callback)

    def fire_loaded(self):
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()


class FakeTarget:
    def __init__(self):
        self.center = None
        self.zoom = None
        self.bounds = None
        self.base_url = None
        self.base_max_zoom = None
        self.layers = []
        self.invalidations = 0
        self.placements = []

    @property
    def has_base_layer(self):
        return self.base_url is not None

    def set_viewport_center(self, lat, lon, zoom):
        self.center = (lat, lon)
        self.zoom = zoom
        self.bounds = None
        self.placements.append(('center', lat, lon, zoom))

    def fit_bounds(self, box, padding, max_zoom):
        self.bounds = box
        self.center = box.center
        self.placements.append(('bounds', box, padding, max_zoom))

    def create_base_layer(self, url_template, max_zoom):
        self.base_url = url_template
        self.base_max_zoom = max_zoom

    def create_tile_layer(self, url, opacity, z_index):
        layer = FakeLayer(url, opacity, z_index)
        self.layers.append(layer)
        return layer

    def has_layer(self, handle):
        return handle in self.layers

    def remove_layer(self, handle):
        if handle in self.layers:
            self.layers.remove(handle)

    def invalidate_size(self):
        self.invalidations += 1


class RecordingOutput:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def __call__(self, samples, rate):
        if self.fail:
            raise OSError("No audio device")
        self.calls.append((len(samples), rate))


async def drain(orchestrator, rounds=5):
    """Wait for in-flight polls and shows spawned by the orchestrator."""
    for _ in range(rounds):
        tasks = [t for t in list(orchestrator.monitor._tasks) + list(orchestrator._tasks) if not t.done()]
        if not tasks:
            return
        await asyncio.gather(*tasks, return_exceptions=True)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture()
def transport():
    t = FakeTransport()
    t.set_json(META_URL, RADAR_META)
    return t


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def cache(transport, clock):
    return FetchCache(default_ttl=30, transport=transport, clock=clock)


@pytest.fixture()
def ktlx_region():
    return Region(name="Test", alert_id="OKZ025", radar_site="KTLX", lat=35.33, lon=-97.28, zoom=11)


@pytest.fixture()
def make_config(ktlx_region):
    """Config factory with millisecond timings; overrides are attribute names."""

    def _make(**overrides):
        cfg = RadarAlertConfig(
            regions=[ktlx_region],
            nws_alert_url=NWS_URL,
            rainviewer_meta_url=META_URL,
            show_duration=0,
            repeat_interval=60,
            poll_interval=60,
            exit_transition=0.02,
            layout_settle=0,
            refit_delay=0.01,
            display_retry=0.01,
            display_retry_limit=3,
            map=MapSettings(frame_interval=60),
            sound_file=None,
        )
        for key, value in overrides.items():
            setattr(cfg, key, value)
        return cfg

    return _make


@pytest.fixture()
def audio():
    return AudioCue(sound_file=None, output=RecordingOutput())


@pytest.fixture()
async def make_orchestrator(make_config, cache, audio, tmp_path):
    from radar_alert.display import DisplayOrchestrator

    created = []

    def _make(config=None, **kwargs):
        kwargs.setdefault('cache', cache)
        kwargs.setdefault('audio', audio)
        kwargs.setdefault('target_factory', FakeTarget)
        kwargs.setdefault('heartbeat_path', tmp_path / 'heartbeat.json')
        orch = DisplayOrchestrator(config or make_config(), **kwargs)
        created.append(orch)
        return orch

    yield _make

    for orch in created:
        orch.suspend()
