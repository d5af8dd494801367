"""User-Agent rotation and browser-like request headers."""

from __future__ import annotations

import random
from typing import Dict, Optional, Sequence


MOBILE_USER_AGENTS = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) CriOS/120.0.6099.119 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 12; SM-G991B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/99.0.4844.88 Mobile Safari/537.36",
    "Mozilla/5.0 (Linux; Android 12; SM-G991U) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/99.0.4844.88 Mobile Safari/537.36",
)

# curl_cffi TLS/HTTP2 fingerprint per browser family; every browser on iOS
# runs on WebKit, so Chrome for iOS shares Safari's fingerprint
IOS_IMPERSONATE = "safari17_2_ios"
ANDROID_CHROME_IMPERSONATE = "chrome99_android"


def impersonate_target(user_agent: str) -> Optional[str]:
    """curl_cffi impersonation target matching `user_agent` (None = client default)."""
    if "iPhone" in user_agent or "iPad" in user_agent:
        return IOS_IMPERSONATE
    if "Android" in user_agent and "Chrome/" in user_agent:
        return ANDROID_CHROME_IMPERSONATE
    return None


class UserAgentRotator:
    """Random User-Agent that never repeats the previous pick (pool of 2+).

    A single-entry pool makes the choice deterministic, which is how tests
    disable rotation.
    """

    def __init__(self, user_agents: Sequence[str] = MOBILE_USER_AGENTS, rng: Optional[random.Random] = None) -> None:
        if not user_agents:
            raise ValueError("user_agents must not be empty")
        self.user_agents = tuple(user_agents)
        self._rng = rng or random.Random()
        self._last: Optional[str] = None

    def next(self) -> str:
        pool = self.user_agents
        if len(pool) >= 2 and self._last is not None:
            pool = tuple(ua for ua in pool if ua != self._last)
        choice = self._rng.choice(pool)
        self._last = choice
        return choice


def build_headers(user_agent: str, language: str = "en") -> Dict[str, str]:
    """Headers a mobile browser sends on a top-level navigation."""
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": f"{language}-US,{language};q=0.9" if language == "en" else f"{language},en;q=0.8",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
    }
