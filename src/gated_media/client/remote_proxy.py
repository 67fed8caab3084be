"""Fetch envelopes through a running proxy's ``/ipfsProxy`` endpoint."""

from __future__ import annotations

import asyncio
import time
from typing import Optional, Tuple

import aiohttp

from ..errors import InvalidRequest, TransportFailure, UpstreamFailure, UpstreamTimeout


class RemoteProxyFetcher:
    """Client-side counterpart of `RetrievalProxy.fetch_content`.

    A ``t=<milliseconds>`` query parameter is appended to every request so
    intermediate HTTP caches do not serve a stale body.
    """

    def __init__(
        self,
        proxy_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
        cache_bust: bool = True,
    ):
        self.proxy_url = proxy_url
        self.session = session
        self.timeout = timeout
        self.cache_bust = cache_bust

    async def fetch_content(self, cid: Optional[str]) -> Tuple[bytes, Optional[str]]:
        if not cid:
            raise InvalidRequest("Missing CID")
        params = {"cid": cid}
        if self.cache_bust:
            params["t"] = str(int(time.time() * 1000))
        try:
            if self.session is not None:
                return await self._request(self.session, params)
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                return await self._request(session, params)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(f"Timed out fetching {cid} from {self.proxy_url}") from e
        except aiohttp.ClientError as e:
            raise TransportFailure(str(e) or type(e).__name__) from e

    async def _request(self, session: aiohttp.ClientSession, params: dict) -> Tuple[bytes, Optional[str]]:
        async with session.get(self.proxy_url, params=params) as response:
            if response.status != 200:
                raise UpstreamFailure(response.status, "Failed to fetch encrypted video")
            return await response.read(), response.headers.get("Content-Type")
