"""Key-retrieval collaborators used by the envelope consumer.

Each source exposes ``async get_key_material() -> KeyMaterial``. The remote
source talks to the key server's ``/getEncryptionKey`` boundary; the others
serve local or in-memory records for offline decryption and tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import aiohttp

from ..config import KEY_NOT_CONFIGURED
from ..encryption.key_material import KeyMaterial, load_key_material
from ..errors import ConfigurationFailure, InvalidKeyMaterial, TransportFailure, UpstreamFailure, UpstreamTimeout

logger = logging.getLogger(__name__)


class KeySource(Protocol):
    async def get_key_material(self) -> KeyMaterial:
        ...


class StaticKeySource:
    def __init__(self, material: KeyMaterial):
        self.material = material

    async def get_key_material(self) -> KeyMaterial:
        return self.material


class FileKeySource:
    """Read key material from a JSON key file."""

    def __init__(self, path: str):
        self.path = path

    async def get_key_material(self) -> KeyMaterial:
        return load_key_material(self.path)


class RemoteKeySource:
    """Fetch key material from the key server over HTTP.

    Args:
        url: Full URL of the key endpoint.
        session: Optional aiohttp session to borrow.
        token: Bearer token sent when the server requires one.
        timeout: Total seconds allowed for the request.
    """

    def __init__(
        self,
        url: str,
        session: Optional[aiohttp.ClientSession] = None,
        token: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.url = url
        self.session = session
        self.token = token
        self.timeout = timeout

    async def get_key_material(self) -> KeyMaterial:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        try:
            if self.session is not None:
                return await self._request(self.session, headers)
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                return await self._request(session, headers)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(f"Timed out fetching encryption key from {self.url}") from e
        except aiohttp.ClientError as e:
            raise TransportFailure(f"Failed to fetch encryption key: {e}") from e

    async def _request(self, session: aiohttp.ClientSession, headers: dict) -> KeyMaterial:
        async with session.get(self.url, headers=headers) as response:
            if response.status != 200:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None
                error = body.get("error") if isinstance(body, dict) else None
                logger.warning("Key retrieval failed. status=%s error=%s", response.status, error)
                if response.status == 500 and isinstance(error, str) and error.startswith(KEY_NOT_CONFIGURED):
                    raise ConfigurationFailure(error)
                raise UpstreamFailure(response.status, "Failed to fetch encryption key")
            try:
                record = await response.json(content_type=None)
            except ValueError as e:
                raise InvalidKeyMaterial(f"Key endpoint returned invalid JSON: {e}") from e
            return KeyMaterial.from_dict(record)
