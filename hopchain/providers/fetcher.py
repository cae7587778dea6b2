"""
HTTP transport for hop resolution. Wraps aiohttp with common defaults,
headers, timeout, and optional proxy support.

The engine only needs ``await fetch(url, headers) -> FetchResponse``; any
object with that coroutine can stand in (tests use a stub).
"""
from __future__ import annotations
import aiohttp
from dataclasses import dataclass, field
from typing import Optional

from ..core.config import Settings, get_settings

ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"


@dataclass
class FetchResponse:
    status: int
    body: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Fetcher:
    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.timeout = aiohttp.ClientTimeout(total=settings.http_timeout, connect=4)
        self.proxy = settings.proxy
        self.user_agent = settings.user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent, "Accept": ACCEPT_HTML,
                         "Accept-Language": "en-US,en;q=0.9"},
                connector=aiohttp.TCPConnector(ssl=False),
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch(
        self,
        url: str,
        headers: dict | None = None,
        *,
        follow_redirects: bool = True,
    ) -> FetchResponse:
        session = await self._get_session()
        async with session.get(
            url,
            headers=headers or {},
            allow_redirects=follow_redirects,
            proxy=self.proxy,
        ) as resp:
            body = await resp.text(errors="replace")
            return FetchResponse(
                status=resp.status,
                body=body,
                url=str(resp.url),
                headers={k: v for k, v in resp.headers.items()},
            )
