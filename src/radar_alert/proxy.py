"""
Proxy - Host-Side Fetch Helper
=============================================
Description: The host end of the proxy delegation protocol. Receives
             {id, url, ttl} requests, serves them from its own TTL cache
             (direct requests transport) and replies {id, result}. Replies may
             go back in any order; the front-end cache matches them by id.
Author: Radar Alert Team
Version: 1.0.0
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Set, Tuple

from .config import HELPER_TTL_SEC, PROXY_TTL_SEC
from .fetch import FetchCache, FetchResult, requests_transport

log = logging.getLogger('radar_alert.proxy')


class ProxyHelper:
    def __init__(
        self,
        reply: Optional[Callable[[Dict[str, Any]], Any]] = None,
        cache: Optional[FetchCache] = None,
        transport: Callable = requests_transport,
    ):
        self.reply = reply
        self.cache = cache or FetchCache(default_ttl=HELPER_TTL_SEC, transport=transport)
        self._tasks: Set[asyncio.Task] = set()

    async def handle(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Serve one request and post the reply (if a reply channel is bound)."""
        req_id = message.get('id')
        url = message.get('url')
        ttl = message.get('ttl') or HELPER_TTL_SEC

        if not isinstance(url, str) or not url:
            result = FetchResult(ok=False, status=0, body=None, url=str(url), error='Missing url')
        else:
            result = await self.cache.fetch(url, ttl)

        response = {'id': req_id, 'result': result.to_dict()}
        if self.reply is not None:
            self.reply(response)
        return response

    def submit(self, message: Dict[str, Any]):
        """Fire-and-forget entry point used as FetchCache.send."""
        task = asyncio.get_running_loop().create_task(self.handle(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def close(self):
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()


def create_proxied_cache(
    default_ttl: float = PROXY_TTL_SEC,
    transport: Callable = requests_transport,
) -> Tuple[FetchCache, ProxyHelper]:
    """Wire a delegating FetchCache to an in-process ProxyHelper."""
    helper = ProxyHelper(transport=transport)
    cache = FetchCache(default_ttl=default_ttl, send=helper.submit)
    helper.reply = cache.resolve
    log.info("Proxy delegation enabled")
    return cache, helper
