"""
test_display.py — Alert overlay orchestrator state machine.

Verifies that:
  1. No alert in any region → the orchestrator stays Idle.
  2. The KTLX test region with a synthetic "Heat Advisory" goes Idle →
     Showing, titles the panel and centers the map at (35.33, -97.28) z11.
  3. Repeated active results never arm a second repeat timer.
  4. active → inactive hides immediately and clears the repeat timer.
  5. hide(immediate) clears synchronously; hide() clears after the exit
     transition.
  6. suspend() leaves zero outstanding timers.
  7. A show still waiting on the panel is dropped by a clear or a dismissal.
"""

import asyncio

from radar_alert.display import DISMISS_NOTIFICATION, TEST_REGION
from radar_alert.models import AlertEvent, DisplayState, PollResult
from radar_alert.render import OverlayPanel

from conftest import NWS_URL, FakeTarget, drain, nws_body


def active_result(region, event_type="Tornado Warning", headline="Take shelter now"):
    return PollResult(active=True, event=AlertEvent(event_type, headline, "", region))


def zone_url(region):
    return NWS_URL.replace('{region}', region.alert_id)


class TestIdle:

    async def test_no_alert_stays_idle(self, make_orchestrator, transport, ktlx_region):
        transport.set_json(zone_url(ktlx_region), nws_body("Flood Watch"))
        orch = make_orchestrator()

        orch.start()
        await drain(orch)

        assert orch.monitor.poll_count == 1
        assert orch.state is DisplayState.IDLE
        assert not orch.repeat_armed
        assert orch.panel.displayed is False

    async def test_inactive_results_keep_idle(self, make_orchestrator):
        orch = make_orchestrator()
        orch.apply_poll_result(PollResult(active=False))
        orch.apply_poll_result(PollResult(active=False))
        assert orch.state is DisplayState.IDLE


class TestShow:

    async def test_ktlx_heat_advisory_scenario(self, make_orchestrator, audio):
        orch = make_orchestrator()
        assert orch.state is DisplayState.IDLE

        orch.trigger_test_alert()
        await drain(orch)

        assert orch.state is DisplayState.SHOWING
        assert "Heat Advisory" in orch.panel.title
        assert orch.panel.visible
        assert orch.panel.content == 'map'

        target = orch.map_overlay.target
        assert isinstance(target, FakeTarget)
        assert target.center == (35.33, -97.28)
        assert target.zoom == 11
        assert target.has_base_layer
        assert target.invalidations >= 1
        assert audio.last_played == 'tone'

    async def test_test_alert_without_regions_uses_builtin_region(self, make_orchestrator, make_config):
        orch = make_orchestrator(make_config(regions=[]))
        orch.trigger_test_alert()
        await drain(orch)
        assert orch.region == TEST_REGION
        assert orch.map_overlay.target.center == (35.33, -97.28)

    async def test_title_falls_back_to_region_name(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(PollResult(active=True, event=AlertEvent("", "", "Details", ktlx_region)))
        await drain(orch)
        assert orch.panel.title == "Test"
        assert orch.panel.subtitle == "Details"

    async def test_render_target_reused_across_shows(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        target = orch.map_overlay.target

        orch.hide(immediate=True)
        await orch.show()

        assert orch.map_overlay.target is target
        assert len(target.layers) == 2

    async def test_static_image_variant(self, make_orchestrator, make_config, ktlx_region):
        orch = make_orchestrator(make_config(radar_provider='static-image-loop'))
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        assert orch.panel.content == 'image'
        assert "/35.33/-97.28/" in orch.panel.image_src
        assert orch.map_overlay.target is None

    async def test_gif_variant(self, make_orchestrator, make_config, ktlx_region):
        orch = make_orchestrator(make_config(radar_provider='single-provider-gif'))
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        assert orch.panel.image_src.endswith("KTLX_loop.gif")

    async def test_show_abandoned_when_panel_never_displays(self, make_orchestrator, ktlx_region, audio):
        orch = make_orchestrator(panel=OverlayPanel(attached=False))
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        assert orch.state is DisplayState.IDLE
        assert orch.shows == 0
        assert audio.last_played is None

    async def test_waiting_show_dropped_when_alert_clears(self, make_orchestrator, ktlx_region, audio):
        orch = make_orchestrator(panel=OverlayPanel(attached=False))
        orch.apply_poll_result(active_result(ktlx_region))
        await asyncio.sleep(0)

        orch.apply_poll_result(PollResult(active=False))
        orch.panel.attached = True
        await drain(orch)

        assert orch.state is DisplayState.IDLE
        assert not orch.panel.visible
        assert orch.shows == 0
        assert audio.last_played is None

    async def test_waiting_show_dropped_after_dismiss(self, make_orchestrator, ktlx_region, audio):
        orch = make_orchestrator(panel=OverlayPanel(attached=False))
        orch.apply_poll_result(active_result(ktlx_region))
        await asyncio.sleep(0)

        orch.dismiss()
        orch.panel.attached = True
        await drain(orch)

        assert orch.state is DisplayState.HIDDEN
        assert not orch.panel.visible
        assert orch.shows == 0
        assert audio.last_played is None

    async def test_failed_map_surface_hides_panel(self, make_orchestrator, ktlx_region, audio):
        def broken_target():
            raise RuntimeError("no display")

        orch = make_orchestrator(target_factory=broken_target)
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        assert orch.panel.displayed is False
        assert orch.state is DisplayState.REPEAT_SCHEDULED
        assert orch._hide_timer is None
        assert orch.shows == 0
        assert audio.last_played is None

    async def test_static_loop_timer_counted_and_cancelled(self, make_orchestrator, make_config, ktlx_region):
        orch = make_orchestrator(make_config(radar_provider='static-image-loop'))
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        assert orch.static_loop.running
        assert orch.outstanding_timers() == 2

        orch.suspend()

        assert orch.outstanding_timers() == 0

    async def test_hide_timer_hides_after_show_duration(self, make_orchestrator, make_config, ktlx_region):
        orch = make_orchestrator(make_config(show_duration=0.02, exit_transition=0.01))
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        assert orch.state is DisplayState.SHOWING

        await asyncio.sleep(0.1)

        assert orch.state is DisplayState.REPEAT_SCHEDULED
        assert orch.panel.displayed is False


class TestRepeat:

    async def test_repeat_timer_not_duplicated(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        first = orch._repeat
        await drain(orch)

        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        assert orch._repeat is first
        assert orch.repeat_armed
        assert orch.shows == 1

    async def test_repeat_tick_shows_again(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        orch._repeat.callback()
        await drain(orch)

        assert orch.shows == 2
        assert orch.state is DisplayState.SHOWING

    async def test_inactive_hides_and_clears_repeat(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        assert orch.map_overlay.animator.running

        orch.apply_poll_result(PollResult(active=False))

        assert not orch.repeat_armed
        assert orch.state is DisplayState.IDLE
        assert orch.panel.displayed is False
        assert not orch.map_overlay.animator.running

    async def test_inactive_during_pending_cross_fade(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        orch.map_overlay.animator.tick()
        assert orch.map_overlay.animator.transition_pending

        orch.apply_poll_result(PollResult(active=False))

        assert not orch.repeat_armed
        assert not orch.map_overlay.animator.transition_pending


class TestHide:

    async def test_immediate_hide_clears_synchronously(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        orch.hide(immediate=True)

        assert orch.panel.displayed is False
        assert orch.panel.content is None
        assert orch._exit_timer is None

    async def test_delayed_hide_clears_after_exit_transition(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        orch.hide()
        assert 'slide-out' in orch.panel.classes
        assert orch.panel.displayed is True

        await asyncio.sleep(0.05)
        assert orch.panel.displayed is False

    async def test_show_cancels_pending_exit_clear(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        orch.hide()
        await orch.show()
        await asyncio.sleep(0.05)

        assert orch.panel.displayed is True
        assert orch.panel.content == 'map'


class TestDismissAndSuspend:

    async def test_dismiss_hides_and_notifies(self, make_orchestrator, ktlx_region):
        notices = []
        orch = make_orchestrator(on_dismiss=lambda kind, payload: notices.append(kind))
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        assert orch.dismiss() is True
        assert orch.state is DisplayState.HIDDEN
        assert not orch.repeat_armed
        assert notices == [DISMISS_NOTIFICATION]

    async def test_next_active_poll_reshows_after_dismiss(self, make_orchestrator, ktlx_region):
        orch = make_orchestrator()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        orch.dismiss()

        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)

        assert orch.state is DisplayState.SHOWING
        assert orch.shows == 2

    async def test_dismiss_disabled(self, make_orchestrator, make_config):
        orch = make_orchestrator(make_config(tap_to_dismiss=False))
        assert orch.dismiss() is False

    async def test_suspend_leaves_zero_timers(self, make_orchestrator, make_config, transport, ktlx_region):
        transport.set_json(zone_url(ktlx_region), nws_body("Tornado Warning"))
        orch = make_orchestrator(make_config(show_duration=30))
        orch.start()
        orch.apply_poll_result(active_result(ktlx_region))
        await drain(orch)
        assert orch.outstanding_timers() >= 3

        orch.suspend()

        assert orch.outstanding_timers() == 0
        assert orch.state is DisplayState.IDLE
        assert orch.panel.displayed is False

    async def test_resume_polls_again(self, make_orchestrator, transport, ktlx_region):
        transport.set_json(zone_url(ktlx_region), nws_body("Tornado Warning"))
        orch = make_orchestrator()
        orch.start()
        await drain(orch)
        orch.suspend()

        orch.resume()
        await drain(orch)

        assert orch.monitor.running
        assert orch.state is DisplayState.SHOWING

    async def test_heartbeat_written(self, make_orchestrator, tmp_path):
        orch = make_orchestrator()
        orch.apply_poll_result(PollResult(active=False))
        assert (tmp_path / 'heartbeat.json').exists()
