"""
Runtime settings read from the environment.

A ``.env`` file is loaded first (real environment variables win), so secrets
such as the encryption key never need to be passed on the command line.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from .encryption.key_material import KeyMaterial
from .errors import ConfigurationFailure, InvalidKeyMaterial
from .retrieval.cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from .retrieval.proxy import DEFAULT_GATEWAY_URL, DEFAULT_TIMEOUT_SECONDS

ENV_PREFIX = "GATED_MEDIA_"
KEY_NOT_CONFIGURED = "Encryption key not configured."


def _parse_bytes(value: str) -> bytes:
    """Accept either a JSON integer array or a hex string."""
    value = value.strip()
    if value.startswith("["):
        try:
            items = json.loads(value)
        except json.JSONDecodeError as e:
            raise ConfigurationFailure(f"Invalid byte array: {e}") from e
        if not isinstance(items, list) or not all(
            isinstance(i, int) and not isinstance(i, bool) and 0 <= i <= 255 for i in items
        ):
            raise ConfigurationFailure("Byte array entries must be integers 0-255")
        return bytes(items)
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise ConfigurationFailure(f"Invalid hex value: {e}") from e


@dataclass(frozen=True)
class Settings:
    gateway_url: str = DEFAULT_GATEWAY_URL
    cache_ttl_seconds: float = DEFAULT_TTL_SECONDS
    cache_max_entries: Optional[int] = DEFAULT_MAX_ENTRIES
    upstream_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    encryption_key: Optional[str] = None
    encryption_iv: Optional[str] = None
    key_access_token: Optional[str] = None
    rpc_url: Optional[str] = None
    nft_mint: Optional[str] = None
    log_level: str = "WARNING"
    host: str = "127.0.0.1"
    port: int = 8080

    def key_material(self) -> KeyMaterial:
        """Return the configured key material.

        Raises:
            ConfigurationFailure: If the key or IV is missing or malformed.
        """
        if not self.encryption_key or not self.encryption_iv:
            raise ConfigurationFailure(KEY_NOT_CONFIGURED)
        try:
            return KeyMaterial(
                key=_parse_bytes(self.encryption_key),
                nonce=_parse_bytes(self.encryption_iv),
            )
        except InvalidKeyMaterial as e:
            raise ConfigurationFailure(f"{KEY_NOT_CONFIGURED} {e}") from e

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        if not isinstance(level, int):
            raise ConfigurationFailure(f"Invalid logging level: {self.log_level}")
        return level


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationFailure(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from e


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    dotenv_path: Optional[str] = None,
) -> Settings:
    """Build settings from `env` (default: ``os.environ`` after loading ``.env``)."""
    if env is None:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True), override=False)
        env = os.environ

    max_entries = _number(env, "CACHE_MAX_ENTRIES", DEFAULT_MAX_ENTRIES, int)
    settings = Settings(
        gateway_url=env.get(ENV_PREFIX + "GATEWAY_URL", DEFAULT_GATEWAY_URL),
        cache_ttl_seconds=_number(env, "CACHE_TTL_SECONDS", DEFAULT_TTL_SECONDS, float),
        cache_max_entries=max_entries if max_entries > 0 else None,
        upstream_timeout_seconds=_number(env, "UPSTREAM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, float),
        encryption_key=env.get(ENV_PREFIX + "ENCRYPTION_KEY") or None,
        encryption_iv=env.get(ENV_PREFIX + "ENCRYPTION_IV") or None,
        key_access_token=env.get(ENV_PREFIX + "KEY_ACCESS_TOKEN") or None,
        rpc_url=env.get(ENV_PREFIX + "RPC_URL") or None,
        nft_mint=env.get(ENV_PREFIX + "NFT_MINT") or None,
        log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "WARNING"),
        host=env.get(ENV_PREFIX + "HOST", "127.0.0.1"),
        port=_number(env, "PORT", 8080, int),
    )
    if settings.cache_ttl_seconds <= 0:
        raise ConfigurationFailure(f"{ENV_PREFIX}CACHE_TTL_SECONDS must be positive")
    return settings
