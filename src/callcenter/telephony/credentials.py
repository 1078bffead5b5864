"""
Credential encryption for per-tenant provider secrets.

Blobs are AES-256-GCM sealed: ``version (1 byte) || nonce (12 bytes) ||
ciphertext+tag``. The tenant id is bound as associated data, so a blob copied
into another tenant's row fails to decrypt. The key is process-wide and fixed
for the process lifetime.
"""

from __future__ import annotations

import base64
import binascii
import json
import math
import os
from collections.abc import Mapping
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from callcenter.shared.logging import get_logger

logger = get_logger(__name__)

BLOB_VERSION = 1
NONCE_SIZE = 12
KEY_SIZE = 32
_HKDF_INFO = b"callcenter.telephony.credentials.v1"


class DecryptionError(Exception):
    """Credential blob is malformed, tampered with, or sealed with another key."""


class CredentialFormatError(ValueError):
    """Credential map would not survive a JSON round trip unchanged."""


def _check_json_value(value: Any, path: str) -> None:
    if value is None or isinstance(value, (str, bool, int)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CredentialFormatError(f"{path}: non-finite number")
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            _check_json_value(item, f"{path}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise CredentialFormatError(f"{path}: key {key!r} is not a string")
            _check_json_value(item, f"{path}.{key}")
        return
    raise CredentialFormatError(f"{path}: unsupported type {type(value).__name__}")


def derive_key(secret: str) -> bytes:
    """Turn the configured secret into a 32-byte AES key.

    A urlsafe-base64 string decoding to exactly 32 bytes is used as-is; any
    other value is treated as a passphrase and stretched with HKDF-SHA256.
    """
    if not secret:
        raise ValueError("credential encryption key must not be empty")

    try:
        raw = base64.urlsafe_b64decode(secret.encode("ascii") + b"=" * (-len(secret) % 4))
    except (binascii.Error, UnicodeEncodeError, ValueError):
        raw = b""
    if len(raw) == KEY_SIZE:
        return raw

    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=_HKDF_INFO,
    ).derive(secret.encode("utf-8"))


def generate_key() -> str:
    """Return a fresh urlsafe-base64 key suitable for CREDENTIAL_ENCRYPTION_KEY."""
    return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


class CredentialCipher:
    """Seals and opens credential maps. Never logs plaintext values."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> "CredentialCipher":
        return cls(derive_key(secret))

    @staticmethod
    def _aad(context: str | None) -> bytes | None:
        return context.encode("utf-8") if context else None

    def encrypt(self, credentials: Mapping[str, Any], *, context: str | None = None) -> bytes:
        """Seal a credential map of JSON values (str keys, no tuples or sets).

        Raises CredentialFormatError for anything that would not decrypt back
        to an equal map.
        """
        if not isinstance(credentials, Mapping):
            raise CredentialFormatError("credentials must be a mapping")
        plaintext_map = dict(credentials)
        _check_json_value(plaintext_map, "credentials")
        plaintext = json.dumps(plaintext_map, sort_keys=True).encode("utf-8")
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, self._aad(context))
        return bytes([BLOB_VERSION]) + nonce + sealed

    def decrypt(self, blob: bytes, *, context: str | None = None) -> dict[str, Any]:
        if not isinstance(blob, (bytes, bytearray, memoryview)):
            raise DecryptionError("Credential blob must be bytes")
        blob = bytes(blob)

        # version + nonce + 16-byte GCM tag at minimum
        if len(blob) < 1 + NONCE_SIZE + 16:
            raise DecryptionError("Credential blob is truncated")
        if blob[0] != BLOB_VERSION:
            raise DecryptionError(f"Unsupported credential blob version: {blob[0]}")

        nonce = blob[1 : 1 + NONCE_SIZE]
        try:
            plaintext = self._aead.decrypt(nonce, blob[1 + NONCE_SIZE :], self._aad(context))
        except InvalidTag as e:
            logger.warning(
                "Credential blob failed authentication",
                extra={"context": context},
            )
            raise DecryptionError("Credential blob failed authentication") from e

        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecryptionError("Credential blob does not hold a JSON object") from e
        if not isinstance(data, dict):
            raise DecryptionError("Credential blob does not hold a JSON object")
        return data
