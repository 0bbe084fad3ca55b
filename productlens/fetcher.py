from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

import aiohttp

from .errors import FetchError
from .parsers import host_of
from .utils import pick_user_agent

logger = logging.getLogger(__name__)

_BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,hi;q=0.8",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
}


def build_headers(extra: Optional[Mapping[str, str]] = None, user_agent: Optional[str] = None) -> Dict[str, str]:
    headers = dict(_BASE_HEADERS)
    headers["User-Agent"] = user_agent or pick_user_agent()
    if extra:
        headers.update(extra)
    return headers


@dataclass
class FetchResult:
    url: str
    status: int
    html: str
    reason: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 200


class SessionStore:
    """Per-domain cookie strings shared by every fetch in the process."""

    def __init__(self) -> None:
        self._cookies: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, domain: str) -> Optional[str]:
        async with self._lock:
            return self._cookies.get(domain)

    async def merge(self, domain: str, cookies: Mapping[str, str]) -> None:
        if not cookies:
            return
        async with self._lock:
            current: Dict[str, str] = {}
            for pair in (self._cookies.get(domain) or "").split(";"):
                name, sep, value = pair.strip().partition("=")
                if sep and name:
                    current[name] = value
            current.update(cookies)
            self._cookies[domain] = "; ".join(f"{name}={value}" for name, value in current.items())
            logger.debug("Stored %d cookie(s) for %s", len(current), domain)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._cookies)


class HttpFetcher:
    """GET pages with browser-like headers, a redirect cap and optional cookie continuity."""

    def __init__(
        self,
        session_store: Optional[SessionStore] = None,
        timeout: float = 20.0,
        max_redirects: int = 5,
        pacing: Tuple[float, float] = (0.5, 1.5),
    ) -> None:
        self._sessions = session_store or SessionStore()
        self._timeout = timeout
        self._max_redirects = max_redirects
        self._pacing = pacing

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    async def fetch(
        self,
        url: str,
        headers: Optional[Mapping[str, str]] = None,
        *,
        timeout: Optional[float] = None,
        use_session: bool = True,
        paced: bool = True,
        max_bytes: Optional[int] = None,
    ) -> FetchResult:
        request_headers = build_headers(headers)
        domain = host_of(url)
        if use_session:
            cookie = await self._sessions.get(domain)
            if cookie:
                request_headers["Cookie"] = cookie

        if paced and self._pacing[1] > 0:
            await asyncio.sleep(random.uniform(*self._pacing))

        client_timeout = aiohttp.ClientTimeout(total=timeout or self._timeout)
        try:
            async with aiohttp.ClientSession(timeout=client_timeout, cookie_jar=aiohttp.DummyCookieJar()) as session:
                async with session.get(
                    url,
                    headers=request_headers,
                    allow_redirects=True,
                    max_redirects=self._max_redirects,
                ) as response:
                    if max_bytes:
                        raw = b""
                        while len(raw) < max_bytes:
                            chunk = await response.content.read(max_bytes - len(raw))
                            if not chunk:
                                break
                            raw += chunk
                    else:
                        raw = await response.read()
                    html = raw.decode(response.charset or "utf-8", errors="replace")
                    if use_session:
                        received = {name: morsel.value for name, morsel in response.cookies.items()}
                        await self._sessions.merge(domain, received)
                    if response.status != 200:
                        logger.warning("HTTP %s for %s; parsing anyway", response.status, url)
                    return FetchResult(
                        url=str(response.url),
                        status=response.status,
                        html=html,
                        reason=response.reason,
                        headers=dict(response.headers),
                    )
        except asyncio.TimeoutError as exc:
            raise FetchError(url, "timeout") from exc
        except aiohttp.ClientError as exc:
            raise FetchError(url, str(exc) or exc.__class__.__name__) from exc
        except LookupError as exc:
            raise FetchError(url, f"unknown charset: {exc}") from exc
