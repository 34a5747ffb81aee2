"""
Text encryption for blobs written to the secure store.

Blob layout: ``iv_hex (32 chars) || ciphertext_hex``.  A fresh 16-byte IV is
drawn for every call.

Two schemes share that layout:

* ``aes-gcm`` - AES-256-GCM with the IV as nonce and the tag appended to the
  ciphertext.  Tampered or foreign blobs fail authentication.
* ``xor-legacy`` - the mobile app's storage format: UTF-8 bytes XORed with
  the repeating 32-byte key.  The IV is stored but plays no part in the
  transform and there is no integrity tag.  Only use it to read data written
  by the app.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from magda.exceptions import DecryptionError
from magda.security.key_manager import KeyManager

logger = logging.getLogger(__name__)

AES_GCM = "aes-gcm"
XOR_LEGACY = "xor-legacy"
SCHEMES = (AES_GCM, XOR_LEGACY)

IV_SIZE = 16
IV_HEX_LENGTH = IV_SIZE * 2

_HEX_RE = re.compile(r"\A[0-9a-fA-F]*\Z")


def generate_iv() -> bytes:
    return os.urandom(IV_SIZE)


def xor_with_key(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def split_blob(blob: str) -> tuple[bytes, bytes]:
    """Return ``(iv, ciphertext)`` or raise ``DecryptionError`` for malformed input."""
    if not isinstance(blob, str) or len(blob) < IV_HEX_LENGTH:
        raise DecryptionError("Ciphertext too short")
    if len(blob) % 2 or not _HEX_RE.match(blob):
        raise DecryptionError("Ciphertext is not valid hex")
    return bytes.fromhex(blob[:IV_HEX_LENGTH]), bytes.fromhex(blob[IV_HEX_LENGTH:])


class CipherCodec:
    def __init__(self, key_manager: KeyManager, scheme: str = AES_GCM):
        if scheme not in SCHEMES:
            raise ValueError(f"Unknown cipher scheme {scheme!r}; expected one of {SCHEMES}")
        if scheme == XOR_LEGACY:
            logger.warning("Cipher scheme %s has no integrity protection; use it only for legacy data", scheme)
        self._key_manager = key_manager
        self.scheme = scheme

    async def encrypt(self, plaintext: str) -> str:
        key = await self._key_manager.get_or_create_key()
        iv = generate_iv()
        data = plaintext.encode("utf-8")
        if self.scheme == AES_GCM:
            ciphertext = AESGCM(key).encrypt(iv, data, None)
        else:
            ciphertext = xor_with_key(data, key)
        return iv.hex() + ciphertext.hex()

    async def decrypt(self, blob: str) -> str:
        iv, ciphertext = split_blob(blob)
        key = await self._key_manager.get_or_create_key()
        if self.scheme == AES_GCM:
            try:
                data = AESGCM(key).decrypt(iv, ciphertext, None)
            except InvalidTag as exc:
                logger.error("AEAD authentication failed (ciphertext length %d)", len(ciphertext))
                raise DecryptionError("Authentication failed - data may be corrupted or tampered with") from exc
        else:
            data = xor_with_key(ciphertext, key)

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted data is not valid UTF-8") from exc

    async def encrypt_json(self, obj: Any) -> str:
        return await self.encrypt(json.dumps(obj, separators=(",", ":")))

    async def decrypt_json(self, blob: str) -> Any:
        text = await self.decrypt(blob)
        try:
            return json.loads(text)
        except ValueError as exc:
            raise DecryptionError("Decrypted data is not valid JSON") from exc
