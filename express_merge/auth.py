"""
Admin API access token cache.

One instance lives for the whole process and is handed to the gateway at
construction. A stale token only costs one extra fetch, so there is no lock.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional, Tuple

import requests

from .errors import UpstreamError

log = logging.getLogger(__name__)

# Refresh a little before the platform expires the token.
EXPIRY_MARGIN_SEC = 60.0

TokenFetcher = Callable[[], Tuple[str, Optional[float]]]


def client_credentials_fetcher(shop: str, client_id: str, client_secret: str, timeout: int = 30) -> TokenFetcher:
    token_url = f"https://{shop}/admin/oauth/access_token"
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    data = {"grant_type": "client_credentials", "client_id": client_id, "client_secret": client_secret}

    def _fetch() -> Tuple[str, Optional[float]]:
        resp = requests.post(token_url, headers=headers, data=data, timeout=timeout)
        if resp.status_code >= 400:
            raise UpstreamError(f"Token request failed {resp.status_code}", resp.status_code, resp.text or "")
        j = resp.json()
        token = j.get("access_token")
        if not token:
            raise UpstreamError(f"Token response missing access_token. Response: {json.dumps(j)[:500]}")
        expires_in = j.get("expires_in")
        return token, float(expires_in) if expires_in else None

    return _fetch


class TokenCache:
    def __init__(self, fetch: TokenFetcher, clock: Callable[[], float] = time.time) -> None:
        self._fetch = fetch
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None

    @classmethod
    def static(cls, token: str) -> "TokenCache":
        return cls(lambda: (token, None))

    def get(self, now: Optional[float] = None) -> str:
        now = self._clock() if now is None else now
        if self._token is None or (self._expires_at is not None and now >= self._expires_at):
            return self.refresh(now)
        return self._token

    def refresh(self, now: Optional[float] = None) -> str:
        now = self._clock() if now is None else now
        token, ttl = self._fetch()
        self._token = token
        self._expires_at = None if ttl is None else now + max(ttl - EXPIRY_MARGIN_SEC, 0.0)
        log.info("Fetched Admin API access token" + ("" if ttl is None else f" (ttl={int(ttl)}s)"))
        return token
