"""Google search page fetch (one GET per attempt)."""

from __future__ import annotations

from typing import Dict, Optional

from src.core.config import settings
from src.core.exceptions import HttpStatusException
from src.core.logging import logger, mask_proxy, sanitize_for_log
from src.crawlers.http_client import SharedHttpClient, get_shared_http_client
from src.crawlers.user_agents import UserAgentRotator, build_headers, impersonate_target


class GoogleSearchFetcher:
    """Fetch a SERP for a keyword.

    - rotated User-Agent + browser headers per request, TLS fingerprint
      impersonating the same browser
    - optional proxy; TLS verification off only through a proxy
      (unless `verify_tls_via_proxy`)
    - non-2xx -> HttpStatusException, timeouts/transport errors propagate
      from the HTTP client already classified
    """

    def __init__(
        self,
        http_client: Optional[SharedHttpClient] = None,
        user_agents: Optional[UserAgentRotator] = None,
        search_url: Optional[str] = None,
        results_per_page: Optional[int] = None,
        language: Optional[str] = None,
        country: Optional[str] = None,
        timeout_s: Optional[float] = None,
        verify_tls_via_proxy: Optional[bool] = None,
    ) -> None:
        self.http_client = http_client or get_shared_http_client()
        self.user_agents = user_agents or UserAgentRotator()
        self.search_url = search_url or settings.scraper_search_url
        self.results_per_page = results_per_page or settings.scraper_results_per_page
        self.language = language or settings.scraper_language
        self.country = country if country is not None else settings.scraper_country
        self.timeout_s = timeout_s or settings.scraper_request_timeout_s
        self.verify_tls_via_proxy = (
            settings.scraper_verify_tls_via_proxy if verify_tls_via_proxy is None else verify_tls_via_proxy
        )

    def build_params(self, query: str) -> Dict[str, str]:
        params = {
            "q": query,
            "num": str(self.results_per_page),
            "hl": self.language,
        }
        if self.country:
            params["gl"] = self.country
        return params

    async def fetch(self, query: str, proxy: Optional[str] = None) -> str:
        """Return the SERP HTML for `query`.

        Raises:
            HttpStatusException: non-2xx answer
            NetworkTimeoutException / TransportException: from the HTTP client
        """
        user_agent = self.user_agents.next()
        headers = build_headers(user_agent, self.language)
        verify = True if proxy is None else self.verify_tls_via_proxy

        status, html = await self.http_client.get_text(
            self.search_url,
            params=self.build_params(query),
            headers=headers,
            proxy=proxy,
            verify=verify,
            timeout_s=self.timeout_s,
            impersonate=impersonate_target(user_agent),
        )

        if not 200 <= status < 300:
            logger.info(
                f"[FETCH] HTTP {status} for '{sanitize_for_log(query, 50)}' via {mask_proxy(proxy)}"
            )
            raise HttpStatusException(status, {"query": query, "proxy": mask_proxy(proxy)})

        logger.debug(f"[FETCH] HTTP {status}, {len(html)} bytes via {mask_proxy(proxy)}")
        return html
