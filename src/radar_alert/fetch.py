"""
Fetch - TTL Request Cache
=============================================
Description: Deduplicating, TTL-based cache in front of every upstream call
             (alert feeds, radar metadata). Stores the full outcome of each
             request, failures included, so a failing URL is never retried
             faster than its TTL. Requests run directly through `requests` off
             the event loop, or are delegated to a host-side proxy by message
             id. Never raises: every failure resolves with ok=False.
Author: Radar Alert Team
Version: 1.3.0

Proxy protocol:
    outbound  {"id": "req_7", "url": ..., "ttl": ...}
    inbound   {"id": "req_7", "result": {"ok", "status", "body", "error", "url"}}
"""

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from .config import API_TIMEOUT_SEC, NWS_HEADERS, PROXY_TTL_SEC
from .errors import MalformedResponse, TransientFetchFailure

log = logging.getLogger('radar_alert.fetch')

_TEXT_TYPES = ('application/json', 'application/geo+json', 'application/rss+xml',
               'application/xml', 'text/')


@dataclass
class FetchResult:
    ok: bool
    status: int
    body: Optional[str]
    url: str
    error: Optional[str] = None

    def require_ok(self) -> 'FetchResult':
        if not self.ok:
            raise TransientFetchFailure(self.url, self.status, self.error)
        return self

    def json(self) -> Any:
        """Parse the body, raising MalformedResponse on empty or invalid JSON."""
        if not self.body:
            raise MalformedResponse(f"Empty body from {self.url}")
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise MalformedResponse(f"Invalid JSON from {self.url}: {str(e)[:60]}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ok': self.ok,
            'status': self.status,
            'body': self.body,
            'error': self.error,
            'url': self.url,
        }

    @classmethod
    def from_dict(cls, raw: Any, url: str) -> 'FetchResult':
        if not isinstance(raw, dict):
            return cls(ok=False, status=0, body=None, url=url, error='Malformed proxy result')
        body = raw.get('body')
        return cls(
            ok=bool(raw.get('ok')),
            status=int(raw.get('status') or 0),
            body=body if isinstance(body, str) else None,
            url=raw.get('url') or url,
            error=raw.get('error'),
        )


@dataclass
class CacheEntry:
    key: str
    timestamp: float
    ttl: float
    result: FetchResult

    def is_stale(self, now: float) -> bool:
        return now - self.timestamp >= self.ttl


@dataclass
class PendingRequest:
    id: str
    url: str
    ttl: float
    future: asyncio.Future
    issued_at: float = field(default_factory=time.monotonic)


def requests_transport(url: str, timeout: float = API_TIMEOUT_SEC) -> FetchResult:
    """
    Blocking GET via requests. Only text-like bodies are kept; images and
    other binary payloads record status with body=None.
    """
    try:
        resp = requests.get(url, headers=NWS_HEADERS, timeout=timeout)
    except requests.exceptions.Timeout:
        return FetchResult(ok=False, status=0, body=None, url=url, error='Timeout')
    except requests.exceptions.RequestException as e:
        return FetchResult(ok=False, status=0, body=None, url=url, error=f"Request error: {str(e)[:80]}")

    content_type = resp.headers.get('content-type', '')
    body = resp.text if any(t in content_type for t in _TEXT_TYPES) else None
    return FetchResult(ok=resp.ok, status=resp.status_code, body=body, url=url)


class FetchCache:
    """
    TTL cache keyed by URL.

    transport: blocking callable (url, timeout) -> FetchResult, run in a
               worker thread so the loop is never blocked.
    send:      when given, requests are delegated to a proxy by posting
               {id, url, ttl} through this callable; replies come back via
               resolve().
    clock:     monotonic seconds, injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = PROXY_TTL_SEC,
        transport: Callable[[str, float], FetchResult] = requests_transport,
        send: Optional[Callable[[Dict[str, Any]], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = API_TIMEOUT_SEC,
    ):
        self.default_ttl = default_ttl
        self.transport = transport
        self.send = send
        self.clock = clock
        self.timeout = timeout

        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._pending: Dict[str, PendingRequest] = {}
        self._ids = itertools.count(1)

        self.hits = 0
        self.misses = 0

    @property
    def delegated(self) -> bool:
        return self.send is not None

    async def fetch(self, url: str, ttl: Optional[float] = None) -> FetchResult:
        ttl = self.default_ttl if ttl is None else ttl

        entry = self._entries.get(url)
        if entry and not entry.is_stale(self.clock()):
            self.hits += 1
            log.debug(f"HIT | {url}")
            return entry.result

        # Coalesce concurrent callers onto one upstream request
        inflight = self._inflight.get(url)
        if inflight is not None:
            try:
                return await asyncio.shield(inflight)
            except asyncio.CancelledError:
                if not inflight.cancelled():
                    raise
                return FetchResult(ok=False, status=0, body=None, url=url, error='Request cancelled')

        self.misses += 1
        loop = asyncio.get_running_loop()
        shared = loop.create_future()
        self._inflight[url] = shared
        try:
            result = await self._request(url, ttl)
        except asyncio.CancelledError:
            shared.cancel()
            raise
        except Exception as e:
            log.error(f"Fetch failed unexpectedly | url={url} | {e}", exc_info=True)
            result = FetchResult(ok=False, status=0, body=None, url=url, error=str(e)[:80])
        finally:
            self._inflight.pop(url, None)

        self._entries[url] = CacheEntry(key=url, timestamp=self.clock(), ttl=ttl, result=result)
        if not result.ok:
            log.warning(f"Fetch failed | url={url} | status={result.status} | error={result.error}")
        shared.set_result(result)
        return result

    async def _request(self, url: str, ttl: float) -> FetchResult:
        if self.send is None:
            return await asyncio.to_thread(self.transport, url, self.timeout)

        req_id = f"req_{next(self._ids)}"
        future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = PendingRequest(id=req_id, url=url, ttl=ttl, future=future)
        try:
            self.send({'id': req_id, 'url': url, 'ttl': ttl})
        except Exception as e:
            self._pending.pop(req_id, None)
            return FetchResult(ok=False, status=0, body=None, url=url, error=f"Proxy send failed: {e}")
        try:
            return await future
        except asyncio.CancelledError:
            self._pending.pop(req_id, None)
            raise

    def resolve(self, message: Dict[str, Any]) -> bool:
        """Deliver a proxy response to its waiter. Returns False if unmatched."""
        req_id = message.get('id') if isinstance(message, dict) else None
        pending = self._pending.pop(req_id, None)
        if pending is None:
            log.warning(f"Proxy response for unknown or resolved id: {req_id}")
            return False
        if pending.future.done():
            log.warning(f"Proxy waiter already settled: {req_id}")
            return False
        pending.future.set_result(FetchResult.from_dict(message.get('result'), pending.url))
        return True

    def shutdown(self) -> int:
        """Fail every outstanding delegated request and log it as leaked."""
        leaked = 0
        for req_id, pending in list(self._pending.items()):
            age = time.monotonic() - pending.issued_at
            log.warning(f"LEAKED | id={req_id} | url={pending.url} | age={age:.1f}s")
            if not pending.future.done():
                pending.future.set_result(FetchResult(
                    ok=False, status=0, body=None, url=pending.url, error='Proxy shut down'
                ))
            leaked += 1
        self._pending.clear()
        return leaked

    def clear(self):
        self._entries.clear()

    def stats(self) -> Dict[str, int]:
        return {
            'entries': len(self._entries),
            'pending': len(self._pending),
            'hits': self.hits,
            'misses': self.misses,
        }
