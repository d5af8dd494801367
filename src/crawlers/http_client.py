"""Shared HTTP client (curl_cffi)

- One AsyncSession per process; a session per request would pay TLS and
  connection setup on every fetch.
- Proxy and TLS verification are chosen per request.
- Failures are raised as classified FetchException subclasses.
- close() on shutdown.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Dict, Any

from curl_cffi.requests import AsyncSession

from src.core.config import settings
from src.core.exceptions import NetworkTimeoutException, TransportException
from src.core.logging import logger, mask_proxy

_TIMEOUT_MARKERS = ("timed out", "timeout", "operation too slow")


class SharedHttpClient:
    def __init__(
        self,
        impersonate: Optional[str] = None,
        max_clients: Optional[int] = None,
    ) -> None:
        self._lock = asyncio.Lock()
        self._session: Optional[AsyncSession] = None
        self._impersonate = impersonate or settings.scraper_http_impersonate
        self._max_clients = max_clients or settings.scraper_http_max_clients

    async def _ensure_session(self) -> AsyncSession:
        async with self._lock:
            if self._session is not None:
                return self._session
            self._session = AsyncSession(
                impersonate=self._impersonate,
                allow_redirects=True,
                max_clients=self._max_clients,
                trust_env=False,
            )
            return self._session

    async def get_text(
        self,
        url: str,
        *,
        timeout_s: float,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        proxy: Optional[str] = None,
        verify: bool = True,
        impersonate: Optional[str] = None,
    ) -> tuple[int, str]:
        """GET and return (status, body).

        `impersonate` overrides the session fingerprint for this request so it
        can match the User-Agent header.

        Raises:
            NetworkTimeoutException: no answer within timeout_s
            TransportException: connection/TLS/proxy failure
        """
        sess = await self._ensure_session()
        try:
            # Hard ceiling on top of curl's own timeout
            resp = await asyncio.wait_for(
                sess.get(
                    url,
                    params=params,
                    headers=headers,
                    proxy=proxy,
                    verify=verify,
                    timeout=timeout_s,
                    impersonate=impersonate or self._impersonate,
                ),
                timeout=timeout_s + 1.0,
            )
        except asyncio.TimeoutError:
            raise NetworkTimeoutException("GET", timeout_s, {"url": url, "proxy": mask_proxy(proxy)})
        except Exception as e:
            logger.info(f"[HTTP_CLIENT] GET failed via {mask_proxy(proxy)}: {type(e).__name__}: {e!r}")
            if any(marker in str(e).lower() for marker in _TIMEOUT_MARKERS):
                raise NetworkTimeoutException("GET", timeout_s, {"url": url, "proxy": mask_proxy(proxy)})
            raise TransportException("GET", f"{type(e).__name__}: {e}", {"url": url, "proxy": mask_proxy(proxy)})

        status = getattr(resp, "status_code", 0) or 0
        text = getattr(resp, "text", "") or ""
        return status, text

    async def close(self) -> None:
        async with self._lock:
            if self._session is None:
                return
            try:
                await self._session.close()
            except Exception as e:
                logger.debug(f"[HTTP_CLIENT] close failed: {e!r}")
            self._session = None


_shared_http_client: Optional[SharedHttpClient] = None


def get_shared_http_client() -> SharedHttpClient:
    global _shared_http_client
    if _shared_http_client is None:
        _shared_http_client = SharedHttpClient()
    return _shared_http_client


async def shutdown_shared_http_client() -> None:
    if _shared_http_client is not None:
        await _shared_http_client.close()
