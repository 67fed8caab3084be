"""Tests for the caching retrieval proxy against a local fake gateway."""

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from gated_media.errors import InvalidRequest, TransportFailure, UpstreamFailure, UpstreamTimeout
from gated_media.retrieval.cache import CacheStore
from gated_media.retrieval.proxy import RetrievalProxy, gateway_url


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_gateway(contents, delay: float = 0.0):
    """Build a fake IPFS gateway app; returns (app, hits)."""
    hits = []

    async def handler(request: web.Request) -> web.Response:
        cid = request.match_info["cid"]
        hits.append(cid)
        if delay:
            await asyncio.sleep(delay)
        if cid not in contents:
            return web.Response(status=404, text="not found")
        body, content_type = contents[cid]
        return web.Response(body=body, content_type=content_type)

    app = web.Application()
    app.router.add_get("/ipfs/{cid}", handler)
    return app, hits


def run_with_gateway(contents, scenario, delay: float = 0.0):
    """Run `scenario(base_url, hits)` while a fake gateway is listening."""
    async def main():
        app, hits = make_gateway(contents, delay)
        async with test_utils.TestServer(app) as server:
            base = f"http://{server.host}:{server.port}"
            return await scenario(base, hits)

    return asyncio.run(main())


def test_gateway_url():
    assert gateway_url("https://gateway.pinata.cloud/", "bafy") == "https://gateway.pinata.cloud/ipfs/bafy"


def test_gateway_url_quotes_segment():
    assert gateway_url("http://gw", "a b") == "http://gw/ipfs/a%20b"


class TestRetrievalProxy:
    """Test cache-then-network resolution."""

    def test_fetch_returns_body_and_content_type(self):
        async def scenario(base, hits):
            async with RetrievalProxy(gateway_base=base) as proxy:
                return await proxy.fetch_content("cid-1")

        data, content_type = run_with_gateway({"cid-1": (b"envelope", "video/mp4")}, scenario)

        assert data == b"envelope"
        assert content_type == "video/mp4"

    def test_second_fetch_within_ttl_is_cache_hit(self):
        """Test that two sequential fetches within TTL hit upstream once."""
        async def scenario(base, hits):
            clock = FakeClock()
            async with RetrievalProxy(CacheStore(clock=clock), gateway_base=base) as proxy:
                first = await proxy.fetch_content("cid-1")
                clock.now += 299
                second = await proxy.fetch_content("cid-1")
                return first, second, list(hits), proxy.upstream_requests

        first, second, hits, upstream = run_with_gateway({"cid-1": (b"abc", "application/octet-stream")}, scenario)

        assert first == second
        assert hits == ["cid-1"]
        assert upstream == 1

    def test_fetch_after_ttl_goes_upstream_again(self):
        async def scenario(base, hits):
            clock = FakeClock()
            async with RetrievalProxy(CacheStore(clock=clock), gateway_base=base) as proxy:
                await proxy.fetch_content("cid-1")
                clock.now += 300
                await proxy.fetch_content("cid-1")
                return list(hits)

        hits = run_with_gateway({"cid-1": (b"abc", "application/octet-stream")}, scenario)
        assert hits == ["cid-1", "cid-1"]

    def test_upstream_404_propagates_and_is_not_cached(self):
        async def scenario(base, hits):
            cache = CacheStore()
            async with RetrievalProxy(cache, gateway_base=base) as proxy:
                with pytest.raises(UpstreamFailure) as exc_info:
                    await proxy.fetch_content("missing")
                return exc_info.value.status, "missing" in cache

        status, cached = run_with_gateway({}, scenario)

        assert status == 404
        assert cached is False

    @pytest.mark.parametrize("cid", [None, "", "   "])
    def test_missing_cid_rejected_without_upstream_call(self, cid):
        async def scenario(base, hits):
            async with RetrievalProxy(gateway_base=base) as proxy:
                with pytest.raises(InvalidRequest):
                    await proxy.fetch_content(cid)
                return list(hits)

        assert run_with_gateway({}, scenario) == []

    @pytest.mark.parametrize("cid", ["../ipns/evil?x=1", "a/b", "cid#frag", "cid%2F..", "bad cid", "..", "a\\b"])
    def test_malformed_cid_rejected_without_upstream_call(self, cid):
        async def scenario(base, hits):
            cache = CacheStore()
            async with RetrievalProxy(cache, gateway_base=base) as proxy:
                with pytest.raises(InvalidRequest):
                    await proxy.fetch_content(cid)
                return list(hits), len(cache)

        assert run_with_gateway({}, scenario) == ([], 0)

    def test_concurrent_misses_share_one_upstream_fetch(self):
        """Test single-flight: concurrent misses for one CID cause one upstream call."""
        async def scenario(base, hits):
            async with RetrievalProxy(gateway_base=base) as proxy:
                results = await asyncio.gather(*(proxy.fetch_content("cid-1") for _ in range(5)))
                return results, list(hits)

        results, hits = run_with_gateway({"cid-1": (b"shared", "video/mp4")}, scenario, delay=0.1)

        assert all(r == (b"shared", "video/mp4") for r in results)
        assert hits == ["cid-1"]

    def test_concurrent_waiters_all_receive_upstream_error(self):
        async def scenario(base, hits):
            async with RetrievalProxy(gateway_base=base) as proxy:
                results = await asyncio.gather(
                    *(proxy.fetch_content("missing") for _ in range(3)),
                    return_exceptions=True,
                )
                return results, list(hits)

        results, hits = run_with_gateway({}, scenario, delay=0.1)

        assert all(isinstance(r, UpstreamFailure) and r.status == 404 for r in results)
        assert hits == ["missing"]

    def test_cancelled_caller_does_not_cancel_shared_fetch(self):
        """Test that cancelling the caller who started a fetch leaves joiners unaffected."""
        async def scenario(base, hits):
            async with RetrievalProxy(gateway_base=base) as proxy:
                first = asyncio.ensure_future(proxy.fetch_content("cid-1"))
                await asyncio.sleep(0.02)
                second = asyncio.ensure_future(proxy.fetch_content("cid-1"))
                await asyncio.sleep(0.02)
                first.cancel()
                result = await second
                return first.cancelled(), result, list(hits), "cid-1" in proxy.cache

        cancelled, result, hits, cached = run_with_gateway(
            {"cid-1": (b"x", "application/octet-stream")}, scenario, delay=0.2
        )

        assert cancelled is True
        assert result == (b"x", "application/octet-stream")
        assert hits == ["cid-1"]
        assert cached is True

    def test_distinct_cids_fetch_independently(self):
        async def scenario(base, hits):
            async with RetrievalProxy(gateway_base=base) as proxy:
                await asyncio.gather(proxy.fetch_content("a"), proxy.fetch_content("b"))
                return sorted(hits)

        contents = {"a": (b"a", "text/plain"), "b": (b"b", "text/plain")}
        assert run_with_gateway(contents, scenario, delay=0.05) == ["a", "b"]

    def test_upstream_timeout(self):
        async def scenario(base, hits):
            cache = CacheStore()
            async with RetrievalProxy(cache, gateway_base=base, timeout=0.05) as proxy:
                with pytest.raises(UpstreamTimeout):
                    await proxy.fetch_content("slow")
                return "slow" in cache

        assert run_with_gateway({"slow": (b"x", "text/plain")}, scenario, delay=0.5) is False

    def test_connection_refused_is_transport_failure(self):
        async def main():
            # Bind and release a port so nothing is listening on it.
            async with test_utils.TestServer(web.Application()) as server:
                base = f"http://{server.host}:{server.port}"
            async with RetrievalProxy(gateway_base=base) as proxy:
                with pytest.raises(TransportFailure):
                    await proxy.fetch_content("cid")

        asyncio.run(main())
