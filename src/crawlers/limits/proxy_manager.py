"""Egress proxy pool: cached health, non-repeating random pick."""

from __future__ import annotations

import asyncio
import json
import random
from typing import Awaitable, Callable, Dict, List, Optional

from src.core.exceptions import FetchException
from src.core.logging import logger, mask_proxy
from src.crawlers.http_client import get_shared_http_client

ProxyProbe = Callable[[str], Awaitable[bool]]


class ProxyManager:
    """Hands out a healthy proxy per request.

    - Health map cached as JSON under `proxy_health_status` (TTL); on a miss
      every proxy is probed concurrently and the map is rewritten
    - `mark_proxy_unhealthy()` flips one entry with compare-and-swap so
      concurrent workers never lose each other's updates
      and keeps the map's expiry, so the re-probe time never moves
    - The previous pick is never repeated while 2+ proxies are healthy
    """

    CACHE_KEY = "proxy_health_status"
    CAS_RETRIES = 5

    def __init__(
        self,
        cache,
        proxies: List[str],
        probe: Optional[ProxyProbe] = None,
        health_ttl: int = 300,
        probe_url: str = "https://www.google.com/robots.txt",
        probe_timeout_s: float = 5.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.cache = cache
        self.proxies = [p for p in proxies if p]
        self.health_ttl = health_ttl
        self.probe_url = probe_url
        self.probe_timeout_s = probe_timeout_s
        self._probe = probe or self._probe_via_http
        self._rng = rng or random.Random()
        self._last_used: Optional[str] = None

    async def get_next_proxy(self) -> Optional[str]:
        """Random healthy proxy, or None (no pool configured / none healthy)."""
        if not self.proxies:
            return None

        healthy = await self.get_healthy_proxies()
        if not healthy:
            logger.warning(f"[PROXY] No healthy proxy among {len(self.proxies)} configured")
            return None

        candidates = healthy
        if len(healthy) >= 2 and self._last_used in healthy:
            candidates = [p for p in healthy if p != self._last_used]

        proxy = self._rng.choice(candidates)
        self._last_used = proxy
        logger.debug(f"[PROXY] Selected {mask_proxy(proxy)} ({len(healthy)} healthy)")
        return proxy

    async def get_healthy_proxies(self) -> List[str]:
        status = self.cache.get_json(self.CACHE_KEY)
        if not status:
            status = await self.check_all_proxies()
            self.cache.set_json(self.CACHE_KEY, status, self.health_ttl)
        return [p for p in self.proxies if status.get(p)]

    async def check_all_proxies(self) -> Dict[str, bool]:
        """Probe every configured proxy concurrently."""
        results = await asyncio.gather(*(self._safe_probe(p) for p in self.proxies))
        status = dict(zip(self.proxies, results))
        healthy = sum(1 for ok in results if ok)
        logger.info(f"[PROXY] Health check done: {healthy}/{len(self.proxies)} healthy")
        return status

    async def _safe_probe(self, proxy: str) -> bool:
        try:
            return bool(await self._probe(proxy))
        except Exception as e:
            logger.warning(f"[PROXY] Probe raised for {mask_proxy(proxy)}: {type(e).__name__}: {e}")
            return False

    async def _probe_via_http(self, proxy: str) -> bool:
        try:
            status, _ = await get_shared_http_client().get_text(
                self.probe_url,
                timeout_s=self.probe_timeout_s,
                proxy=proxy,
                verify=False,
            )
        except FetchException as e:
            logger.info(f"[PROXY] Probe failed for {mask_proxy(proxy)}: {e.reason}")
            return False
        return 200 <= status < 300

    def mark_proxy_unhealthy(self, proxy: Optional[str]) -> bool:
        """Flip one proxy to unhealthy in the cached map.

        Returns:
            True if the map was updated. With no cached map there is nothing
            to flip; the next read re-probes anyway.
        """
        if not proxy:
            return False

        for _ in range(self.CAS_RETRIES):
            raw = self.cache.get(self.CACHE_KEY)
            if raw is None:
                return False
            try:
                status = json.loads(raw)
            except ValueError:
                status = {}
            if status.get(proxy) is False:
                return True
            status[proxy] = False
            if self.cache.compare_and_swap(self.CACHE_KEY, raw, json.dumps(status), keep_ttl=True):
                logger.warning(f"[PROXY] Marked unhealthy: {mask_proxy(proxy)}")
                return True

        logger.warning(f"[PROXY] Could not mark {mask_proxy(proxy)} unhealthy (contention)")
        return False

    def get_status(self) -> Dict[str, object]:
        """Pool snapshot for analytics (does not probe)."""
        cached = self.cache.get_json(self.CACHE_KEY) or {}
        return {
            "configured": len(self.proxies),
            "healthy": sum(1 for p in self.proxies if cached.get(p)),
            "checked": bool(cached),
            "proxies": {mask_proxy(p): cached.get(p) for p in self.proxies},
        }
