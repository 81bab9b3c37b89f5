"""
test_alerts.py — Alert providers and the polling monitor.

Verifies that:
  1. No matching alert in any region → inactive result.
  2. Region-then-provider order; the first match wins and stops the scan.
  3. Provider failures and malformed bodies count as "no alert".
  4. An empty alert-type filter accepts any event.
  5. A slow poll never overwrites the result of a later one.
"""

import asyncio

import pytest

from radar_alert.alerts import AlertMonitor, MeteoAlarmProvider, NWSAlertProvider, build_providers
from radar_alert.errors import MalformedResponse
from radar_alert.models import PollResult, Region

from conftest import NWS_URL, nws_body, ok

TAMPA = Region(name="Tampa", alert_id="FLZ251", lat=27.94, lon=-82.29, radius_km=25)
OKC = Region(name="OKC", alert_id="OKZ025", radar_site="KTLX", lat=35.33, lon=-97.28)

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item><title>Yellow wind warning for Madrid</title><description>Gusts to 70 km/h</description></item>
  <item><title>Daily summary</title><description>Nothing to report</description></item>
</channel></rss>"""


def zone_url(region):
    return NWS_URL.replace('{region}', region.alert_id)


def monitor(cache, regions, alert_types=("Tornado Warning",), providers=None):
    return AlertMonitor(
        cache, regions,
        providers if providers is not None else [NWSAlertProvider(NWS_URL)],
        alert_types=alert_types, ttl=30, interval=60,
    )


class TestNWSProvider:

    def test_query_url_substitutes_zone(self):
        assert NWSAlertProvider(NWS_URL).resolve_query_url(TAMPA) == "https://alerts.test/zone/FLZ251"

    def test_region_without_zone_is_skipped(self):
        assert NWSAlertProvider(NWS_URL).resolve_query_url(Region(name="Nowhere")) is None

    def test_extracts_feature_properties(self):
        result = ok("u", nws_body("Tornado Warning", "Flood Watch"))
        events = NWSAlertProvider().extract_events(result)
        assert [e['event'] for e in events] == ["Tornado Warning", "Flood Watch"]

    def test_non_object_body_is_malformed(self):
        with pytest.raises(MalformedResponse):
            NWSAlertProvider().extract_events(ok("u", [1, 2, 3]))


class TestMeteoAlarmProvider:

    def test_rss_items_with_warning_keywords(self):
        events = MeteoAlarmProvider().extract_events(ok("u", RSS))
        assert len(events) == 1
        assert events[0]['event'] == 'MeteoAlarm'
        assert 'Madrid' in events[0]['headline']

    def test_json_entries(self):
        body = {"entries": [{"event": "Storm", "title": "Storm warning"}]}
        events = MeteoAlarmProvider().extract_events(ok("u", body))
        assert events == [{'event': 'Storm', 'headline': 'Storm warning', 'description': ''}]

    def test_non_list_json_entries_are_malformed(self):
        with pytest.raises(MalformedResponse):
            MeteoAlarmProvider().extract_events(ok("u", {"features": 5}))

    def test_broken_rss_is_malformed(self):
        with pytest.raises(MalformedResponse):
            MeteoAlarmProvider().extract_events(ok("u", "<rss><channel><item>"))

    def test_build_providers_skips_unknown(self):
        providers = build_providers(['nws', 'bogus', 'MeteoAlarm'], NWS_URL)
        assert [p.name for p in providers] == ['nws', 'meteoalarm']


class TestPoll:

    async def test_no_matching_alert_is_inactive(self, cache, transport):
        transport.set_json(zone_url(TAMPA), nws_body("Flood Watch"))
        transport.set_json(zone_url(OKC), nws_body())

        result = await monitor(cache, [TAMPA, OKC]).poll()

        assert result.active is False
        assert result.event is None

    async def test_first_matching_region_wins(self, cache, transport):
        transport.set_json(zone_url(TAMPA), nws_body("Tornado Warning"))
        transport.set_json(zone_url(OKC), nws_body("Tornado Warning"))

        result = await monitor(cache, [TAMPA, OKC]).poll()

        assert result.active
        assert result.region == TAMPA
        assert result.event.event_type == "Tornado Warning"
        assert transport.count(zone_url(OKC)) == 0

    async def test_failing_region_does_not_block_others(self, cache, transport):
        transport.set_failure(zone_url(TAMPA), status=500)
        transport.set_json(zone_url(OKC), nws_body("Tornado Warning"))

        result = await monitor(cache, [TAMPA, OKC]).poll()

        assert result.active
        assert result.region == OKC

    async def test_malformed_body_counts_as_no_alert(self, cache, transport):
        transport.responses[zone_url(TAMPA)] = ok(zone_url(TAMPA), "not json")
        result = await monitor(cache, [TAMPA]).poll()
        assert result.active is False

    async def test_broken_meteoalarm_feed_does_not_abort_poll(self, cache, transport):
        madrid = Region(name="Madrid", meteoalarm_url="https://feeds.test/es.json")
        transport.set_json(madrid.meteoalarm_url, {"features": 5})
        transport.set_json(zone_url(OKC), nws_body("Tornado Warning"))
        providers = [MeteoAlarmProvider(), NWSAlertProvider(NWS_URL)]

        result = await monitor(cache, [madrid, OKC], providers=providers).poll()

        assert result.active
        assert result.region == OKC

    async def test_unexpected_provider_error_counts_as_no_alert(self, cache, transport):
        class Exploding(NWSAlertProvider):
            def extract_events(self, result):
                raise KeyError("properties")

        transport.set_json(zone_url(TAMPA), nws_body("Tornado Warning"))
        transport.set_json(zone_url(OKC), nws_body("Tornado Warning"))
        providers = [Exploding(NWS_URL)]

        result = await monitor(cache, [TAMPA, OKC], providers=providers).poll()

        assert result.active is False
        assert transport.count(zone_url(OKC)) == 1

    async def test_empty_filter_matches_any_event(self, cache, transport):
        transport.set_json(zone_url(TAMPA), nws_body("Special Weather Statement"))
        result = await monitor(cache, [TAMPA], alert_types=()).poll()
        assert result.active
        assert result.event.event_type == "Special Weather Statement"

    async def test_headline_carried_into_event(self, cache, transport):
        transport.set_json(zone_url(OKC), nws_body("Tornado Warning"))
        result = await monitor(cache, [OKC]).poll()
        assert result.event.headline == "Tornado Warning in effect"


class TestMonitorLifecycle:

    async def test_start_polls_immediately(self, cache, transport):
        transport.set_json(zone_url(OKC), nws_body("Tornado Warning"))
        m = monitor(cache, [OKC])
        received = []

        m.start(received.append)
        await asyncio.gather(*list(m._tasks))

        assert m.running
        assert m.poll_count == 1
        assert received[0].active
        m.stop()
        assert not m.running

    async def test_stale_poll_result_is_dropped(self, cache):
        m = monitor(cache, [OKC])
        release_first = asyncio.Event()
        outcomes = iter([True, False])

        async def fake_poll():
            active = next(outcomes)
            if active:
                await release_first.wait()
            return PollResult(active=active)

        m.poll = fake_poll
        received = []
        m._on_result = received.append

        first = asyncio.create_task(m._poll_and_deliver())
        await asyncio.sleep(0)
        await m._poll_and_deliver()
        release_first.set()
        await first

        assert [r.active for r in received] == [False]
        assert m.last_result.active is False
