"""
Envelope consumer: recombines an envelope and its key material.

The envelope arrives through the retrieval proxy (content network), the key
material through a key source (separate trusted channel). Every failure along
the way collapses into one `PlaybackFailure`; no partial plaintext is ever
handed to the renderer.
"""

from __future__ import annotations

import hmac
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Protocol, Tuple, Union

from ..encryption.envelope import Envelope, decode
from ..errors import GatedMediaError, PlaybackFailure
from ..utils import media_io
from .key_source import KeySource
from .ownership import TokenOwnershipChecker

logger = logging.getLogger(__name__)

LOADED_MESSAGE = "Video loaded!"
FAILED_MESSAGE = "Decryption failed."
NOT_OWNED_MESSAGE = "No, you do not have the NFT"

Renderer = Callable[[bytes, str], Union[None, Awaitable[None]]]


class ContentFetcher(Protocol):
    async def fetch_content(self, cid: Optional[str]) -> Tuple[bytes, Optional[str]]:
        ...


class FileRenderer:
    """Renderer that writes the decrypted media to a file."""

    def __init__(self, path: str):
        self.path = path

    def __call__(self, plaintext: bytes, content_type: str) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        media_io.write_bytes(self.path, plaintext)
        logger.info("Wrote %d bytes of %s to %s", len(plaintext), content_type, self.path)


class EnvelopeConsumer:
    """Fetch, verify and decrypt gated media.

    Args:
        fetcher: Anything with ``fetch_content(cid)``, usually a
            `RetrievalProxy` or `RemoteProxyFetcher`.
        key_source: Collaborator providing the key material.
        content_type: Media type handed to the renderer with the plaintext.
    """

    def __init__(self, fetcher: ContentFetcher, key_source: KeySource, content_type: str = "video/mp4"):
        self.fetcher = fetcher
        self.key_source = key_source
        self.content_type = content_type

    async def consume(self, cid: str) -> bytes:
        """Return the plaintext stored under `cid`.

        Raises:
            PlaybackFailure: For any fetch, key retrieval or authentication
                error. The original error is kept on ``cause``.
        """
        try:
            blob, _ = await self.fetcher.fetch_content(cid)
            env = Envelope.from_bytes(blob)
            material = await self.key_source.get_key_material()
            logger.debug("Nonce from envelope: %s", env.nonce.hex())
            logger.debug("Nonce from key material: %s", material.nonce.hex())
            if not hmac.compare_digest(env.nonce, material.nonce):
                logger.warning(
                    "Nonce mismatch between envelope and key material for CID %s; "
                    "decrypting with the envelope nonce", cid,
                )
            return decode(env, material.key)
        except (GatedMediaError, OSError) as e:
            logger.error("Decryption failed for CID %s: %s", cid, e)
            raise PlaybackFailure(FAILED_MESSAGE, cause=e) from e

    async def play(self, cid: str, renderer: Renderer) -> Tuple[bool, str]:
        """Consume `cid` and hand the plaintext to `renderer`.

        Returns:
            Tuple of (success, message)
        """
        try:
            plaintext = await self.consume(cid)
        except PlaybackFailure as e:
            return False, e.message
        try:
            result = renderer(plaintext, self.content_type)
            if result is not None:
                await result
        except Exception:
            logger.exception("Rendering failed for CID %s", cid)
            return False, FAILED_MESSAGE
        return True, LOADED_MESSAGE

    async def gate_and_play(
        self,
        wallet: str,
        cid: str,
        renderer: Renderer,
        ownership: TokenOwnershipChecker,
    ) -> Tuple[bool, str]:
        """Play `cid` only if `wallet` owns the gating token."""
        if not await ownership.owns_token(wallet):
            logger.info("Wallet %s does not hold the gating token", wallet)
            return False, NOT_OWNED_MESSAGE
        return await self.play(cid, renderer)
