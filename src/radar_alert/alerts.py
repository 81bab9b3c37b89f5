"""
Alerts - Provider Polling
=============================================
Description: Polls configured regions against configured alert providers and
             reduces the results to a single PollResult. Iteration is region
             order first, provider order second; the first matching event
             wins and stops the scan. A provider failure only means "no alert
             from this provider for this region".
Author: Radar Alert Team
Version: 1.2.0

Providers:
    nws        - api.weather.gov GeoJSON, zone id substituted into {region}
    meteoalarm - region-supplied RSS or JSON feed URL
"""

import asyncio
import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .config import NWS_ALERT_URL, POLL_INTERVAL_SEC, PROXY_TTL_SEC
from .errors import MalformedResponse, TransientFetchFailure
from .fetch import FetchCache, FetchResult
from .models import AlertEvent, PollResult, Region
from .timers import Interval

log = logging.getLogger('radar_alert.alerts')

METEOALARM_KEYWORDS = ('warning', 'aviso', 'alert', 'watch')


class AlertProvider(ABC):
    name: str = 'provider'

    @abstractmethod
    def resolve_query_url(self, region: Region) -> Optional[str]:
        """URL to query for this region, or None if the region has no key."""

    @abstractmethod
    def extract_events(self, result: FetchResult) -> List[Dict[str, Any]]:
        """Event property dicts (event/headline/description). Raises MalformedResponse."""


class NWSAlertProvider(AlertProvider):
    name = 'nws'

    def __init__(self, template: str = NWS_ALERT_URL):
        self.template = template

    def resolve_query_url(self, region: Region) -> Optional[str]:
        if not region.alert_id:
            return None
        return self.template.replace('{region}', region.alert_id)

    def extract_events(self, result: FetchResult) -> List[Dict[str, Any]]:
        data = result.json()
        if not isinstance(data, dict):
            raise MalformedResponse(f"Expected GeoJSON object from {result.url}")
        features = data.get('features')
        if not isinstance(features, list):
            return []
        events = []
        for feature in features:
            props = feature.get('properties') if isinstance(feature, dict) else None
            if isinstance(props, dict):
                events.append(props)
        return events


class MeteoAlarmProvider(AlertProvider):
    """
    MeteoAlarm feeds differ per deployment, so the region supplies the feed
    URL. RSS items mentioning a warning count as alerts; JSON feeds expose
    features/entries/items.
    """
    name = 'meteoalarm'

    def resolve_query_url(self, region: Region) -> Optional[str]:
        return region.meteoalarm_url

    def extract_events(self, result: FetchResult) -> List[Dict[str, Any]]:
        body = result.body
        if not body:
            raise MalformedResponse(f"Empty body from {result.url}")
        if '<rss' in body:
            return self._from_rss(body, result.url)
        return self._from_json(result.json())

    def _from_rss(self, body: str, url: str) -> List[Dict[str, Any]]:
        try:
            root = ET.fromstring(body)
        except ET.ParseError as e:
            raise MalformedResponse(f"Invalid RSS from {url}: {e}") from e

        events = []
        for item in root.iter('item'):
            title = (item.findtext('title') or '').strip()
            description = (item.findtext('description') or '').strip()
            text = f"{title} {description}".lower()
            if any(k in text for k in METEOALARM_KEYWORDS):
                events.append({'event': 'MeteoAlarm', 'headline': title, 'description': description})
        return events

    def _from_json(self, data: Any) -> List[Dict[str, Any]]:
        if not isinstance(data, dict):
            raise MalformedResponse("Expected JSON object from MeteoAlarm feed")
        entries = data.get('features') or data.get('entries') or data.get('items') or []
        if not isinstance(entries, list):
            raise MalformedResponse(f"MeteoAlarm entries must be a list, got {type(entries).__name__}")
        events = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            props = entry.get('properties') if isinstance(entry.get('properties'), dict) else entry
            events.append({
                'event': props.get('event') or 'MeteoAlarm',
                'headline': props.get('headline') or props.get('title') or '',
                'description': props.get('description') or '',
            })
        return events


PROVIDERS: Dict[str, Callable[..., AlertProvider]] = {
    'nws': NWSAlertProvider,
    'meteoalarm': MeteoAlarmProvider,
}


def build_providers(names: Iterable[str], nws_alert_url: str = NWS_ALERT_URL) -> List[AlertProvider]:
    providers = []
    for name in names:
        key = str(name).strip().lower()
        if key == 'nws':
            providers.append(NWSAlertProvider(nws_alert_url))
        elif key in PROVIDERS:
            providers.append(PROVIDERS[key]())
        else:
            log.warning(f"Unknown alert provider skipped: {name}")
    return providers


class AlertMonitor:
    """
    Polls on a fixed interval. Polls are not serialized: the interval
    re-arms before each poll runs. Each poll carries a sequence number and
    its result is only delivered if no later-started poll has delivered
    already, so a slow poll never overwrites a newer outcome.
    """

    def __init__(
        self,
        cache: FetchCache,
        regions: List[Region],
        providers: List[AlertProvider],
        alert_types: Iterable[str] = (),
        ttl: float = PROXY_TTL_SEC,
        interval: float = POLL_INTERVAL_SEC,
    ):
        self.cache = cache
        self.regions = list(regions)
        self.providers = list(providers)
        self.alert_types: Set[str] = set(alert_types or ())
        self.ttl = ttl
        self.interval = interval

        self.last_result = PollResult(active=False)
        self.poll_count = 0

        self._timer: Optional[Interval] = None
        self._tasks: Set[asyncio.Task] = set()
        self._on_result: Optional[Callable[[PollResult], None]] = None
        self._issued = 0
        self._delivered = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.active

    def matches(self, event_type: str) -> bool:
        return not self.alert_types or event_type in self.alert_types

    def _extract(self, provider: AlertProvider, result: FetchResult) -> List[Dict[str, Any]]:
        try:
            return provider.extract_events(result)
        except MalformedResponse:
            raise
        except Exception as e:
            raise MalformedResponse(f"Unreadable {provider.name} payload: {type(e).__name__}: {e}") from e

    async def poll(self) -> PollResult:
        for region in self.regions:
            for provider in self.providers:
                url = provider.resolve_query_url(region)
                if not url:
                    continue
                try:
                    result = await self.cache.fetch(url, self.ttl)
                    result.require_ok()
                    events = self._extract(provider, result)
                except (TransientFetchFailure, MalformedResponse) as e:
                    log.warning(f"{provider.name} check failed | region={region.name} | url={url} | {e}")
                    continue

                for props in events:
                    event_type = str(props.get('event') or '')
                    if self.matches(event_type):
                        event = AlertEvent.from_properties(props, region)
                        log.info(f"ALERT | {event.event_type} | region={region.name} | provider={provider.name}")
                        return PollResult(active=True, event=event)

        return PollResult(active=False)

    async def _poll_and_deliver(self):
        self._issued += 1
        seq = self._issued
        try:
            result = await self.poll()
        except Exception as e:
            log.error(f"Poll #{seq} failed: {e}", exc_info=True)
            return

        if seq < self._delivered:
            log.debug(f"Poll #{seq} superseded by #{self._delivered}, result dropped")
            return
        self._delivered = seq
        self.poll_count += 1
        self.last_result = result
        if self._on_result is not None:
            self._on_result(result)

    def _spawn_poll(self):
        task = asyncio.get_running_loop().create_task(self._poll_and_deliver())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def start(self, on_result: Callable[[PollResult], None]):
        """Poll once now, then every `interval` seconds."""
        self.stop()
        self._on_result = on_result
        self._spawn_poll()
        self._timer = Interval(self.interval, self._spawn_poll, name='alert-poll').start()
        log.info(f"Polling {len(self.regions)} region(s) x {len(self.providers)} provider(s) every {self.interval}s")

    def stop(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
