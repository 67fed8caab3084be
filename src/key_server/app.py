# app.py
"""
HTTP surface for gated media: the IPFS retrieval proxy and the key boundary.

Routes:
    GET /ipfsProxy?cid=<cid>     (also /api/ipfsProxy)
        200 binary body, Content-Type mirrored from the gateway
        400 {"error": "Missing CID"}
        <upstream status> {"error": "Failed to fetch IPFS content"}
        504 {"error": <message>} on gateway timeout
        500 {"error": <message>} on any other failure

    GET /getEncryptionKey        (also /api/getEncryptionKey)
        200 {"key": [...], "iv": [...]}
        401 {"error": "Unauthorized"} when an access token is configured
        500 {"error": "Encryption key not configured."}

Every response carries ``Access-Control-Allow-Origin: *``.
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from aiohttp import web

from gated_media.config import KEY_NOT_CONFIGURED, Settings
from gated_media.errors import (
    ConfigurationFailure,
    InvalidRequest,
    UpstreamFailure,
    UpstreamTimeout,
)
from gated_media.retrieval.cache import CacheStore
from gated_media.retrieval.proxy import RetrievalProxy
from gated_media.utils.media_io import content_type_or_default

logger = logging.getLogger(__name__)

SETTINGS_KEY = web.AppKey("settings", Settings)
PROXY_KEY = web.AppKey("proxy", RetrievalProxy)

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status, headers=CORS_HEADERS)


# ---------- middleware ----------

@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Translate library errors into JSON error responses in one place."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except InvalidRequest as e:
        return _error(400, str(e))
    except UpstreamFailure as e:
        return _error(e.status, e.message)
    except UpstreamTimeout as e:
        return _error(504, str(e))
    except ConfigurationFailure as e:
        logger.error("Configuration error on %s: %s", request.path, e)
        return _error(500, str(e))
    except Exception as e:
        logger.exception("Unexpected error on %s", request.path)
        return _error(500, str(e) or type(e).__name__)


# ---------- handlers ----------

async def ipfs_proxy(request: web.Request) -> web.Response:
    cid = request.query.get("cid", "").strip()
    if not cid:
        return _error(400, "Missing CID")
    data, content_type = await request.app[PROXY_KEY].fetch_content(cid)
    return web.Response(
        body=data,
        status=200,
        headers={**CORS_HEADERS, "Content-Type": content_type_or_default(content_type)},
    )


def _authorized(request: web.Request, token: Optional[str]) -> bool:
    if not token:
        return True
    supplied = request.headers.get("Authorization", "")
    return hmac.compare_digest(supplied.encode("utf-8"), f"Bearer {token}".encode("utf-8"))


async def get_encryption_key(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    if not _authorized(request, settings.key_access_token):
        logger.warning("Rejected key request from %s", request.remote)
        return _error(401, "Unauthorized")
    if not settings.encryption_key or not settings.encryption_iv:
        return _error(500, KEY_NOT_CONFIGURED)
    material = settings.key_material()
    return web.json_response(material.to_dict(), headers=CORS_HEADERS)


# ---------- application ----------

def create_app(settings: Optional[Settings] = None, proxy: Optional[RetrievalProxy] = None) -> web.Application:
    """Build the aiohttp application.

    Args:
        settings: Runtime settings; defaults to `Settings()`.
        proxy: Retrieval proxy to serve from. When omitted one is built from
            `settings` and closed on application cleanup.
    """
    if settings is None:
        settings = Settings()
    owns_proxy = proxy is None
    if proxy is None:
        proxy = RetrievalProxy(
            cache=CacheStore(ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries),
            gateway_base=settings.gateway_url,
            timeout=settings.upstream_timeout_seconds,
        )

    app = web.Application(middlewares=[error_middleware])
    app[SETTINGS_KEY] = settings
    app[PROXY_KEY] = proxy

    for prefix in ("", "/api"):
        app.router.add_get(f"{prefix}/ipfsProxy", ipfs_proxy)
        app.router.add_get(f"{prefix}/getEncryptionKey", get_encryption_key)

    if owns_proxy:
        async def _close_proxy(app: web.Application) -> None:
            await app[PROXY_KEY].close()

        app.on_cleanup.append(_close_proxy)

    if not settings.key_access_token:
        logger.warning("Key endpoint has no access token configured; it will serve any caller")
    return app


def run(settings: Settings) -> None:
    """Serve the application until interrupted."""
    web.run_app(create_app(settings), host=settings.host, port=settings.port)
