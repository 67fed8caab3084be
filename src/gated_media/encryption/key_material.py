"""Key-material record distributed out of band from the envelope.

On disk and over HTTP the record is JSON with two integer arrays:

    {"key": [32 ints 0-255], "iv": [12 ints 0-255]}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Sequence

from ..errors import InvalidKeyMaterial
from .envelope import KEY_SIZE, NONCE_SIZE


def _to_bytes(values: Any, expected: int, field: str) -> bytes:
    if isinstance(values, (bytes, bytearray)):
        raw = bytes(values)
    else:
        if not isinstance(values, Sequence) or isinstance(values, str):
            raise InvalidKeyMaterial(f"'{field}' must be an array of byte values")
        for v in values:
            if isinstance(v, bool) or not isinstance(v, int) or not 0 <= v <= 255:
                raise InvalidKeyMaterial(f"'{field}' entries must be integers 0-255, got {v!r}")
        raw = bytes(values)
    if len(raw) != expected:
        raise InvalidKeyMaterial(f"'{field}' must have {expected} entries, got {len(raw)}")
    return raw


@dataclass(frozen=True)
class KeyMaterial:
    key: bytes
    nonce: bytes

    def __post_init__(self):
        _to_bytes(self.key, KEY_SIZE, "key")
        _to_bytes(self.nonce, NONCE_SIZE, "iv")

    def to_dict(self) -> Dict[str, list]:
        return {"key": list(self.key), "iv": list(self.nonce)}

    @classmethod
    def from_dict(cls, data: Any) -> "KeyMaterial":
        """Build key material from a parsed JSON record.

        The nonce may be named ``iv`` (the published format) or ``nonce``.
        """
        if not isinstance(data, dict):
            raise InvalidKeyMaterial("Key material must be a JSON object")
        if "key" not in data:
            raise InvalidKeyMaterial("Key material missing 'key'")
        nonce = data.get("iv", data.get("nonce"))
        if nonce is None:
            raise InvalidKeyMaterial("Key material missing 'iv'")
        return cls(key=_to_bytes(data["key"], KEY_SIZE, "key"),
                   nonce=_to_bytes(nonce, NONCE_SIZE, "iv"))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> "KeyMaterial":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidKeyMaterial(f"Key material is not valid JSON: {e}") from e
        return cls.from_dict(data)


def save_key_material(path: str, material: KeyMaterial) -> None:
    Path(path).write_text(material.to_json(), encoding="utf-8")


def load_key_material(path: str) -> KeyMaterial:
    return KeyMaterial.from_json(Path(path).read_text(encoding="utf-8"))
