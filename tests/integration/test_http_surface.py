"""Integration tests for the aiohttp proxy and key endpoints."""

import asyncio
import json

import pytest
from aiohttp import test_utils, web

from gated_media.config import Settings
from gated_media.encryption.envelope import generate_key
from gated_media.retrieval.cache import CacheStore
from gated_media.retrieval.proxy import RetrievalProxy
from key_server.app import create_app


KEY = list(range(32))
IV = list(range(100, 112))


def make_gateway(contents, delay: float = 0.0):
    hits = []

    async def handler(request: web.Request) -> web.Response:
        cid = request.match_info["cid"]
        hits.append(cid)
        if delay:
            await asyncio.sleep(delay)
        if cid == "boom":
            return web.Response(status=503, text="unavailable")
        if cid not in contents:
            return web.Response(status=404, text="not found")
        body, content_type = contents[cid]
        headers = {"Content-Type": content_type} if content_type else {}
        return web.Response(body=body, headers=headers)

    app = web.Application()
    app.router.add_get("/ipfs/{cid}", handler)
    return app, hits


def run_surface(scenario, contents=None, settings=None, delay: float = 0.0):
    """Run `scenario(client, hits, proxy)` against the app wired to a fake gateway."""
    async def main():
        gateway_app, hits = make_gateway(contents or {}, delay)
        async with test_utils.TestServer(gateway_app) as gateway:
            base = f"http://{gateway.host}:{gateway.port}"
            cfg = settings or Settings()
            proxy = RetrievalProxy(
                CacheStore(ttl=cfg.cache_ttl_seconds),
                gateway_base=base,
                timeout=cfg.upstream_timeout_seconds,
            )
            async with proxy:
                app = create_app(cfg, proxy=proxy)
                async with test_utils.TestClient(test_utils.TestServer(app)) as client:
                    return await scenario(client, hits, proxy)

    return asyncio.run(main())


class TestIpfsProxyEndpoint:
    """Test GET /ipfsProxy."""

    def test_serves_upstream_body_and_content_type(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/ipfsProxy", params={"cid": "cid-1"})
            return resp.status, await resp.read(), resp.headers.copy()

        status, body, headers = run_surface(scenario, {"cid-1": (b"\x00\x01envelope", "video/mp4")})

        assert status == 200
        assert body == b"\x00\x01envelope"
        assert headers["Content-Type"] == "video/mp4"
        assert headers["Access-Control-Allow-Origin"] == "*"

    def test_api_prefix_route(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/api/ipfsProxy", params={"cid": "cid-1"})
            return resp.status

        assert run_surface(scenario, {"cid-1": (b"x", "video/mp4")}) == 200

    def test_missing_content_type_defaults_to_octet_stream(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/ipfsProxy", params={"cid": "raw"})
            return resp.headers["Content-Type"]

        content_type = run_surface(scenario, {"raw": (b"bytes", None)})
        assert content_type.startswith("application/octet-stream")

    @pytest.mark.parametrize("query", [{}, {"cid": ""}])
    def test_missing_cid_is_400_without_upstream_call(self, query):
        async def scenario(client, hits, proxy):
            resp = await client.get("/ipfsProxy", params=query)
            return resp.status, await resp.json(), resp.headers.get("Access-Control-Allow-Origin"), list(hits)

        status, body, cors, hits = run_surface(scenario)

        assert status == 400
        assert body == {"error": "Missing CID"}
        assert cors == "*"
        assert hits == []

    def test_malformed_cid_is_400_without_upstream_call(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/ipfsProxy", params={"cid": "../ipns/evil?x=1"})
            return resp.status, await resp.json(), list(hits)

        status, body, hits = run_surface(scenario)

        assert status == 400
        assert body == {"error": "Malformed CID"}
        assert hits == []

    def test_upstream_status_is_surfaced_verbatim(self):
        async def scenario(client, hits, proxy):
            not_found = await client.get("/ipfsProxy", params={"cid": "missing"})
            unavailable = await client.get("/ipfsProxy", params={"cid": "boom"})
            return (
                not_found.status, await not_found.json(),
                unavailable.status, await unavailable.json(),
                "missing" in proxy.cache,
            )

        nf_status, nf_body, un_status, un_body, cached = run_surface(scenario)

        assert nf_status == 404
        assert nf_body == {"error": "Failed to fetch IPFS content"}
        assert un_status == 503
        assert un_body == {"error": "Failed to fetch IPFS content"}
        assert cached is False

    def test_repeated_requests_hit_cache(self):
        async def scenario(client, hits, proxy):
            for _ in range(3):
                resp = await client.get("/ipfsProxy", params={"cid": "cid-1"})
                assert resp.status == 200
                await resp.read()
            return list(hits)

        assert run_surface(scenario, {"cid-1": (b"x", "video/mp4")}) == ["cid-1"]

    def test_gateway_timeout_is_504(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/ipfsProxy", params={"cid": "slow"})
            return resp.status, await resp.json()

        settings = Settings(upstream_timeout_seconds=0.05)
        status, body = run_surface(scenario, {"slow": (b"x", "video/mp4")}, settings, delay=0.5)

        assert status == 504
        assert "error" in body

    def test_unreachable_gateway_is_500(self):
        async def main():
            async with test_utils.TestServer(web.Application()) as dead:
                base = f"http://{dead.host}:{dead.port}"
            proxy = RetrievalProxy(gateway_base=base)
            async with proxy:
                app = create_app(Settings(), proxy=proxy)
                async with test_utils.TestClient(test_utils.TestServer(app)) as client:
                    resp = await client.get("/ipfsProxy", params={"cid": "cid"})
                    return resp.status, await resp.json(), resp.headers.get("Access-Control-Allow-Origin")

        status, body, cors = asyncio.run(main())

        assert status == 500
        assert body["error"]
        assert cors == "*"


class TestEncryptionKeyEndpoint:
    """Test GET /getEncryptionKey."""

    def test_returns_configured_key_material(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/getEncryptionKey")
            return resp.status, await resp.json(), resp.headers.get("Access-Control-Allow-Origin")

        settings = Settings(encryption_key=json.dumps(KEY), encryption_iv=json.dumps(IV))
        status, body, cors = run_surface(scenario, settings=settings)

        assert status == 200
        assert body == {"key": KEY, "iv": IV}
        assert cors == "*"

    def test_accepts_hex_configuration(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/api/getEncryptionKey")
            return await resp.json()

        key = generate_key()
        settings = Settings(encryption_key=key.hex(), encryption_iv=bytes(IV).hex())
        body = run_surface(scenario, settings=settings)

        assert bytes(body["key"]) == key
        assert body["iv"] == IV

    def test_not_configured_is_500(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/getEncryptionKey")
            return resp.status, await resp.json()

        status, body = run_surface(scenario)

        assert status == 500
        assert body == {"error": "Encryption key not configured."}

    def test_malformed_configuration_is_500(self):
        async def scenario(client, hits, proxy):
            resp = await client.get("/getEncryptionKey")
            return resp.status, await resp.json()

        settings = Settings(encryption_key="[1, 2, 3]", encryption_iv=json.dumps(IV))
        status, body = run_surface(scenario, settings=settings)

        assert status == 500
        assert body["error"].startswith("Encryption key not configured.")

    def test_access_token_required_when_configured(self):
        async def scenario(client, hits, proxy):
            anonymous = await client.get("/getEncryptionKey")
            wrong = await client.get("/getEncryptionKey", headers={"Authorization": "Bearer nope"})
            right = await client.get("/getEncryptionKey", headers={"Authorization": "Bearer s3cret"})
            return anonymous.status, await anonymous.json(), wrong.status, right.status

        settings = Settings(
            encryption_key=json.dumps(KEY),
            encryption_iv=json.dumps(IV),
            key_access_token="s3cret",
        )
        anon_status, anon_body, wrong_status, right_status = run_surface(scenario, settings=settings)

        assert anon_status == 401
        assert anon_body == {"error": "Unauthorized"}
        assert wrong_status == 401
        assert right_status == 200
