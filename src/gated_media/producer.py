"""
Envelope producer: turns a plaintext media file into two artifacts.

    1. The envelope (``nonce || ciphertext+tag``), safe to publish on IPFS.
    2. The key-material record, which must travel through a separate trusted
       channel (e.g. the key server's environment).

Runs once per source asset, offline, before publishing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Tuple

from .encryption import envelope
from .encryption.key_material import KeyMaterial, save_key_material
from .utils import media_io

logger = logging.getLogger(__name__)

DEFAULT_ENVELOPE_PATH = "encryptedVideo.bin"
DEFAULT_KEYFILE_PATH = "encryptionKey.json"


def produce(plaintext: bytes) -> Tuple[bytes, KeyMaterial]:
    """Encrypt `plaintext` under a fresh key.

    Returns:
        Tuple of (envelope bytes, key material)
    """
    key = envelope.generate_key()
    env = envelope.encode(plaintext, key)
    return env.to_bytes(), KeyMaterial(key=key, nonce=env.nonce)


def produce_file(
    input_path: str,
    envelope_path: str = DEFAULT_ENVELOPE_PATH,
    keyfile_path: str = DEFAULT_KEYFILE_PATH,
) -> KeyMaterial:
    """Encrypt a media file and write the envelope and key-material files.

    Outputs are written in sequence; a failure midway can leave the envelope
    without its key file.
    """
    plaintext = media_io.read_bytes(input_path)
    envelope_bytes, material = produce(plaintext)

    Path(envelope_path).parent.mkdir(parents=True, exist_ok=True)
    Path(keyfile_path).parent.mkdir(parents=True, exist_ok=True)
    media_io.write_bytes(envelope_path, envelope_bytes)
    save_key_material(keyfile_path, material)
    logger.info(
        "Produced envelope %s (%d bytes) and key material %s from %s",
        envelope_path, len(envelope_bytes), keyfile_path, input_path,
    )
    return material
