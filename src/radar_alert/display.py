"""
Display - Alert Overlay Orchestrator
=============================================
Description: Top-level state machine. Consumes poll results, decides when the
             radar overlay is shown, repeated and hidden, owns the overlay
             panel and the (reused) map render target, and sequences viewport
             placement, radar imagery and the audio cue. All timers live on
             one asyncio loop and are cancelled before being superseded.
Author: Radar Alert Team
Version: 1.3.0

States:
    IDLE             - no alert, nothing shown
    SHOWING          - overlay visible, hide timer armed
    REPEAT_SCHEDULED - alert still active, waiting for the next repeat tick
    HIDDEN           - hidden by the user or by the hide timer without repeat

Lifecycle:
    start()   - begin polling (first poll immediately)
    suspend() - stop polling, cancel every timer, hide immediately
    resume()  - re-arm polling
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .alerts import AlertMonitor, AlertProvider, build_providers
from .animator import RadarAnimator
from .audio import AudioCue
from .config import HEARTBEAT_FILE, MapSettings, RadarAlertConfig, resolve_base_url
from .errors import RenderTargetUnavailable
from .fetch import FetchCache
from .health import write_heartbeat
from .models import AlertEvent, DisplayState, PollResult, Region
from .proxy import ProxyHelper, create_proxied_cache
from .radar import ProviderGif, RadarDisplay, StaticImageLoop
from .render import DEFAULT_TITLE, FoliumRenderTarget, OverlayPanel
from .timers import Interval, Timeout
from .viewport import ViewportFitter

log = logging.getLogger('radar_alert.display')

DISMISS_NOTIFICATION = "RADAR_ALERT_USER_DISMISS"

TEST_REGION = Region(
    name="Test Region", alert_id="FLZ251", radar_site="KTLX",
    lat=35.33, lon=-97.28, zoom=11,
)


class MapOverlay(RadarDisplay):
    """
    Basemap + animated tile overlay. The render target is created on first
    use and reused for every later show; only viewport and overlay frames
    are refreshed.
    """

    def __init__(self, panel: OverlayPanel, cache: FetchCache, settings: MapSettings,
                 meta_url: str, meta_ttl: float,
                 target_factory: Callable[[], Any] = FoliumRenderTarget):
        self.panel = panel
        self.settings = settings
        self.target_factory = target_factory
        self.target = None
        self.fitter = ViewportFitter(default_zoom=settings.zoom, max_zoom=settings.base_max_zoom)
        self.animator = RadarAnimator(cache, settings, meta_url, meta_ttl)

    def ensure_target(self):
        if self.target is None:
            try:
                self.target = self.target_factory()
            except Exception as e:
                raise RenderTargetUnavailable(f"Map surface could not be created: {e}") from e
            log.info("Map render target created")
        if not self.target.has_base_layer:
            self.target.create_base_layer(resolve_base_url(self.settings.base_url), self.settings.base_max_zoom)
        return self.target

    async def start(self, region):
        target = self.ensure_target()
        self.fitter.place(target, region)
        self.panel.show_map(target)

        ok = await self.animator.start(target, region)

        # Panel has its final size now
        target.invalidate_size()
        self.fitter.place(target, region)
        return ok

    def refit(self, region: Optional[Region]):
        if self.target is not None:
            self.target.invalidate_size()
            self.fitter.place(self.target, region)

    def stop(self):
        self.animator.stop()


class DisplayOrchestrator:
    def __init__(
        self,
        config: RadarAlertConfig,
        cache: Optional[FetchCache] = None,
        panel: Optional[OverlayPanel] = None,
        audio: Optional[AudioCue] = None,
        providers: Optional[List[AlertProvider]] = None,
        target_factory: Callable[[], Any] = FoliumRenderTarget,
        on_dismiss: Optional[Callable[[str, Dict], None]] = None,
        heartbeat_path: Optional[Path] = HEARTBEAT_FILE,
    ):
        self.config = config
        self.helper: Optional[ProxyHelper] = None
        if cache is None:
            if config.use_proxy:
                cache, self.helper = create_proxied_cache(config.proxy_ttl)
            else:
                cache = FetchCache(default_ttl=config.proxy_ttl)
        self.cache = cache
        self.panel = panel or OverlayPanel()
        self.audio = audio or AudioCue(config.sound_file)
        self.on_dismiss = on_dismiss
        self.heartbeat_path = heartbeat_path

        if providers is None:
            providers = build_providers(config.alert_providers, config.nws_alert_url)
        self.monitor = AlertMonitor(
            cache, config.regions, providers,
            alert_types=config.alert_types, ttl=config.proxy_ttl, interval=config.poll_interval,
        )

        self.map_overlay = MapOverlay(
            self.panel, cache, config.map, config.rainviewer_meta_url, config.meta_ttl,
            target_factory=target_factory,
        )
        self.static_loop = StaticImageLoop(
            self.panel, cache, config.static_loop, config.rainviewer_meta_url,
            config.meta_ttl, config.placeholder_image,
        )
        self.provider_gif = ProviderGif(self.panel, config.nws_radar_url)

        self.state = DisplayState.IDLE
        self.result = PollResult(active=False)
        self.radar: Optional[RadarDisplay] = None
        self.shows = 0

        self._repeat: Optional[Interval] = None
        self._hide_timer: Optional[Timeout] = None
        self._exit_timer: Optional[Timeout] = None
        self._refit_timer: Optional[Timeout] = None
        self._tasks: Set[asyncio.Task] = set()
        self._show_gen = 0

    # --- Introspection ---

    @property
    def event(self) -> Optional[AlertEvent]:
        return self.result.event

    @property
    def region(self) -> Optional[Region]:
        return self.result.region

    @property
    def repeat_armed(self) -> bool:
        return self._repeat is not None and self._repeat.active

    def outstanding_timers(self) -> int:
        timers = [self._repeat, self._hide_timer, self._exit_timer, self._refit_timer]
        count = sum(1 for t in timers if t is not None and t.active)
        if self.monitor.running:
            count += 1
        if self.map_overlay.animator.running:
            count += 1
        if self.static_loop.running:
            count += 1
        return count

    def status(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'active': self.result.active,
            'event': self.event.event_type if self.event else None,
            'region': self.region.name if self.region else None,
            'radar_provider': self.config.radar_provider,
            'repeat_armed': self.repeat_armed,
            'polls': self.monitor.poll_count,
            'shows': self.shows,
            'cache': self.cache.stats(),
        }

    # --- Lifecycle ---

    def start(self):
        log.info(f"Starting | regions={len(self.config.regions)} | radar={self.config.radar_provider}")
        self.monitor.start(self.apply_poll_result)

    def suspend(self):
        self.monitor.stop()
        self._cancel_repeat()
        self.hide(immediate=True)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self.state = DisplayState.IDLE
        log.info("Suspended")

    def resume(self):
        log.info("Resuming")
        self.monitor.start(self.apply_poll_result)

    async def close(self):
        self.suspend()
        leaked = self.cache.shutdown()
        if leaked:
            log.warning(f"{leaked} proxied request(s) were still pending at shutdown")
        if self.helper is not None:
            await self.helper.close()

    # --- Alert handling ---

    def apply_poll_result(self, result: PollResult):
        self.result = result
        self.handle_alert_status()
        if self.heartbeat_path is not None:
            write_heartbeat(
                state=self.state.value,
                active=result.active,
                polls=self.monitor.poll_count,
                region=self.region.name if self.region else None,
                event=self.event.event_type if self.event else None,
                cache=self.cache.stats(),
                path=self.heartbeat_path,
            )

    def handle_alert_status(self):
        if self.result.active:
            if not self.repeat_armed:
                self._spawn(self.show_when_ready(self._show_gen))
                self._repeat = Interval(
                    self.config.repeat_interval,
                    lambda: self._spawn(self.show_when_ready(self._show_gen)),
                    name='repeat',
                ).start()
        else:
            self._cancel_repeat()
            self.hide(immediate=True)

    def trigger_test_alert(self):
        region = self.config.regions[0] if self.config.regions else TEST_REGION
        event = AlertEvent(
            event_type="Heat Advisory",
            headline="Test Heat Advisory",
            description="This is a test alert to verify display, map, zoom, and audio.",
            source_region=region,
        )
        log.info(f"Test alert triggered | region={region.name}")
        self.apply_poll_result(PollResult(active=True, event=event))

    def dismiss(self) -> bool:
        """User tap: same path as a cleared alert, plus a dismissal signal."""
        if not self.config.tap_to_dismiss:
            return False
        self._cancel_repeat()
        self.hide(immediate=True)
        self.state = DisplayState.HIDDEN
        log.info("Overlay dismissed by user")
        if self.on_dismiss is not None:
            self.on_dismiss(DISMISS_NOTIFICATION, {})
        return True

    # --- Show / Hide ---

    async def wait_until_displayed(self):
        """Readiness guard: poll the panel, give up after the retry budget."""
        for _ in range(self.config.display_retry_limit + 1):
            if self.panel.is_displayed():
                return
            await asyncio.sleep(self.config.display_retry)
        budget = self.config.display_retry * self.config.display_retry_limit
        raise RenderTargetUnavailable(f"Overlay panel not displayed after {budget:.1f}s")

    async def show_when_ready(self, gen: Optional[int] = None):
        """A hide() after `gen` was taken cancels this show."""
        if gen is None:
            gen = self._show_gen
        try:
            await self.wait_until_displayed()
            await self.show(expected_gen=gen)
        except RenderTargetUnavailable as e:
            log.warning(f"Show abandoned | region={self.region.name if self.region else None} | {e}")
        except Exception as e:
            log.error(f"Show failed: {e}", exc_info=True)

    def select_radar(self) -> RadarDisplay:
        provider = self.config.radar_provider
        if provider == 'static-image-loop':
            return self.static_loop
        if provider == 'single-provider-gif':
            return self.provider_gif
        return self.map_overlay

    async def show(self, expected_gen: Optional[int] = None):
        if expected_gen is not None and expected_gen != self._show_gen:
            log.debug("Show skipped: hidden while waiting for the panel")
            return
        if not self.result.active:
            log.debug("Show skipped: alert no longer active")
            return

        self._cancel_timer('_hide_timer')
        self._cancel_timer('_exit_timer')
        self._show_gen += 1
        gen = self._show_gen

        event, region = self.event, self.region
        title = (event.event_type if event else '') or (region.name if region else '') or DEFAULT_TITLE
        subtitle = (event.headline or event.description) if event else ''
        self.panel.set_title(title, subtitle)

        # Visible before content so the map sizes against the real panel
        self.panel.enter()
        self.state = DisplayState.SHOWING

        await asyncio.sleep(self.config.layout_settle)
        if gen != self._show_gen:
            return

        if self.radar is not None:
            self.radar.stop()
        self.panel.reset_content()
        self.radar = self.select_radar()
        try:
            ok = await self.radar.start(region)
        except Exception:
            if gen == self._show_gen:
                self.hide(immediate=True)
            raise
        if gen != self._show_gen:
            return

        if self.radar is self.map_overlay:
            self._cancel_timer('_refit_timer')
            self._refit_timer = Timeout(
                self.config.refit_delay, lambda: self.map_overlay.refit(region), name='refit'
            ).start()

        self.audio.play()
        self.shows += 1

        if self.config.show_duration > 0:
            self._hide_timer = Timeout(self.config.show_duration, self.hide, name='hide').start()

        log.info(f"SHOW #{self.shows} | {title} | region={region.name if region else None} | imagery={'ok' if ok else 'fallback'}")

    def hide(self, immediate: bool = False):
        self._show_gen += 1
        if self.radar is not None:
            self.radar.stop()
        self._cancel_timer('_hide_timer')
        self._cancel_timer('_refit_timer')
        self._cancel_timer('_exit_timer')

        self.panel.begin_exit()
        if immediate:
            self.panel.clear()
        else:
            self._exit_timer = Timeout(self.config.exit_transition, self.panel.clear, name='exit').start()

        if self.repeat_armed:
            self.state = DisplayState.REPEAT_SCHEDULED
        elif self.result.active:
            self.state = DisplayState.HIDDEN
        else:
            self.state = DisplayState.IDLE

    # --- Internals ---

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_timer(self, attr: str):
        timer = getattr(self, attr)
        if timer is not None:
            timer.cancel()
            setattr(self, attr, None)

    def _cancel_repeat(self):
        self._cancel_timer('_repeat')
