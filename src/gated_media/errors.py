"""Error taxonomy for the gated media pipeline.

Every failure the library raises derives from ``GatedMediaError`` so callers
(CLI, HTTP surface, consumer) can catch one type at their boundary while still
telling the kinds apart:

- InvalidRequest: missing or malformed content identifier
- UpstreamFailure: non-success response from the content network
- TransportFailure: network-level exception (UpstreamTimeout for timeouts)
- AuthenticationFailure: AEAD tag verification failed
- ConfigurationFailure: no secret configured for the key-retrieval boundary
- InvalidKeyMaterial: key-material record has the wrong shape
- PlaybackFailure: the consumer's single user-visible failure
"""

from __future__ import annotations

from typing import Optional


class GatedMediaError(Exception):
    """Base class for all gated media errors."""


class InvalidRequest(GatedMediaError, ValueError):
    pass


class UpstreamFailure(GatedMediaError):
    """The content network answered with a non-success status.

    The status code is preserved so the proxy can surface it verbatim.
    """

    def __init__(self, status: int, message: str = "Failed to fetch IPFS content"):
        super().__init__(f"{message} (status {status})")
        self.status = status
        self.message = message


class TransportFailure(GatedMediaError):
    pass


class UpstreamTimeout(TransportFailure):
    pass


class AuthenticationFailure(GatedMediaError):
    """AEAD verification failed: wrong key, wrong nonce, truncation or tampering."""


class ConfigurationFailure(GatedMediaError):
    pass


class InvalidKeyMaterial(GatedMediaError, ValueError):
    pass


class PlaybackFailure(GatedMediaError):
    """Unified failure reported by the consumer for any underlying error."""

    def __init__(self, message: str = "Decryption failed.", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
