"""
Caching retrieval proxy in front of an IPFS HTTP gateway.

The proxy resolves a content identifier to ``(bytes, content_type)``:

    1. Reject an empty or malformed identifier.
    2. Serve a fresh cache entry without touching the network.
    3. Otherwise GET ``<gateway>/ipfs/<cid>`` once, shared by every
       concurrent caller waiting on the same identifier.
    4. Cache only successful responses.

The upstream fetch runs in its own task. A caller that is cancelled stops
waiting for it, but the other callers sharing the fetch still get its result.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Dict, Optional, Tuple
from urllib.parse import quote

import aiohttp

from ..errors import InvalidRequest, TransportFailure, UpstreamFailure, UpstreamTimeout
from .cache import CacheStore

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "https://gateway.pinata.cloud"
DEFAULT_TIMEOUT_SECONDS = 30.0

FetchResult = Tuple[bytes, Optional[str]]

# Characters that would let an identifier leave the /ipfs/<cid> path segment.
_FORBIDDEN_CID_CHARS = frozenset("/\\?#%")


def validate_cid(cid: Optional[str]) -> str:
    """Return `cid` if it can be used as a single gateway path segment.

    Raises:
        InvalidRequest: If `cid` is missing, blank or malformed.
    """
    if not cid or not cid.strip():
        raise InvalidRequest("Missing CID")
    if ".." in cid or any(c in _FORBIDDEN_CID_CHARS or c.isspace() for c in cid):
        raise InvalidRequest("Malformed CID")
    return cid


def gateway_url(base: str, cid: str) -> str:
    return f"{base.rstrip('/')}/ipfs/{quote(cid, safe='')}"


class RetrievalProxy:
    """Resolve content identifiers through a TTL cache and an IPFS gateway.

    Args:
        cache: Cache store shared by every request served by this proxy.
        gateway_base: Gateway root URL; content is fetched from ``/ipfs/<cid>``.
        timeout: Total seconds allowed for one upstream fetch.
        session: Optional aiohttp session to borrow. When omitted the proxy
            opens its own on first use and closes it in `close`.
    """

    def __init__(
        self,
        cache: Optional[CacheStore] = None,
        gateway_base: str = DEFAULT_GATEWAY_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cache = cache if cache is not None else CacheStore()
        self.gateway_base = gateway_base
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._inflight: Dict[str, "asyncio.Task[FetchResult]"] = {}
        self.upstream_requests = 0

    async def __aenter__(self) -> RetrievalProxy:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def fetch_content(self, cid: Optional[str]) -> FetchResult:
        """Return the bytes and content type stored under `cid`.

        Raises:
            InvalidRequest: If `cid` is missing, blank or malformed.
            UpstreamFailure: If the gateway answers with a non-success status.
            UpstreamTimeout: If the gateway does not answer within `timeout`.
            TransportFailure: On any other network-level error.
        """
        cid = validate_cid(cid)

        entry = self.cache.get(cid)
        if entry is not None:
            logger.debug("Cache hit for CID: %s", cid)
            return entry.data, entry.content_type

        task = self._inflight.get(cid)
        if task is None:
            task = asyncio.ensure_future(self._fetch_upstream(cid))
            self._inflight[cid] = task
            task.add_done_callback(functools.partial(self._fetch_done, cid))
        else:
            logger.debug("Joining in-flight fetch for CID: %s", cid)
        return await asyncio.shield(task)

    def _fetch_done(self, cid: str, task: "asyncio.Task[FetchResult]") -> None:
        if self._inflight.get(cid) is task:
            del self._inflight[cid]
        if not task.cancelled():
            # Retrieve the error so a fetch nobody awaited is not reported on GC.
            task.exception()

    async def _fetch_upstream(self, cid: str) -> FetchResult:
        url = gateway_url(self.gateway_base, cid)
        logger.debug("Cache miss for CID: %s, fetching %s", cid, url)
        self.upstream_requests += 1
        session = self._get_session()
        try:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                if response.status < 200 or response.status >= 300:
                    logger.warning("Upstream fetch failed. cid=%s status=%s", cid, response.status)
                    raise UpstreamFailure(response.status)
                data = await response.read()
                content_type = response.headers.get("Content-Type")
        except asyncio.TimeoutError as e:
            logger.warning("Upstream fetch timed out. cid=%s timeout=%s", cid, self.timeout)
            raise UpstreamTimeout(f"Timed out fetching {cid} after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            logger.warning("Upstream fetch error. cid=%s error=%s", cid, e)
            raise TransportFailure(str(e) or type(e).__name__) from e

        self.cache.put(cid, data, content_type)
        return data, content_type
