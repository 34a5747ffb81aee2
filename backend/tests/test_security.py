"""
Encryption-at-rest tests.

- KeyManager: one key per installation, persisted hex-encoded, never replaced
- CipherCodec: iv_hex || ciphertext_hex blobs for both schemes
"""

import asyncio

import pytest

from magda.db.secure_store import ENCRYPTION_KEY_NAME, MemorySecureStore
from magda.exceptions import DecryptionError, StorageUnavailable
from magda.security import CipherCodec, KeyManager
from magda.security.cipher import AES_GCM, IV_HEX_LENGTH, XOR_LEGACY, xor_with_key

FIXED_KEY = bytes(range(32))


class SlowStore(MemorySecureStore):
    """Yields to the loop on every call so concurrent callers interleave."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.sets = 0

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def set(self, key, value):
        await asyncio.sleep(0)
        self.sets += 1
        await super().set(key, value)


class TestKeyManager:
    """Tests for key creation and reuse"""

    def test_creates_and_persists_key(self):
        """Should generate a 32-byte key and store it hex-encoded"""
        store = MemorySecureStore()
        key = asyncio.run(KeyManager(store).get_or_create_key())

        assert len(key) == 32
        assert asyncio.run(store.get(ENCRYPTION_KEY_NAME)) == key.hex()

    def test_reuses_stored_key(self):
        """Should load the persisted key instead of generating another one"""
        store = MemorySecureStore({ENCRYPTION_KEY_NAME: FIXED_KEY.hex()})
        key = asyncio.run(KeyManager(store).get_or_create_key())
        assert key == FIXED_KEY

    def test_concurrent_first_use_creates_one_key(self):
        """Should write exactly one key when many callers race on an empty store"""
        store = SlowStore()
        manager = KeyManager(store)

        async def scenario():
            return await asyncio.gather(*(manager.get_or_create_key() for _ in range(10)))

        keys = asyncio.run(scenario())

        assert len(set(keys)) == 1
        assert store.sets == 1

    def test_malformed_stored_key_is_not_replaced(self):
        """Should refuse a malformed key rather than orphan existing data"""
        store = MemorySecureStore({ENCRYPTION_KEY_NAME: "not-hex"})

        with pytest.raises(StorageUnavailable):
            asyncio.run(KeyManager(store).get_or_create_key())
        assert asyncio.run(store.get(ENCRYPTION_KEY_NAME)) == "not-hex"

    def test_short_stored_key_is_rejected(self):
        """Should reject a hex key of the wrong length"""
        store = MemorySecureStore({ENCRYPTION_KEY_NAME: "abcd"})
        with pytest.raises(StorageUnavailable):
            asyncio.run(KeyManager(store).get_or_create_key())

    def test_store_errors_become_storage_unavailable(self):
        """Should wrap unexpected store exceptions"""

        class BrokenStore(MemorySecureStore):
            async def get(self, key):
                raise OSError("keychain locked")

        with pytest.raises(StorageUnavailable):
            asyncio.run(KeyManager(BrokenStore()).get_or_create_key())

    def test_failed_creation_can_be_retried(self):
        """Should not cache a failed creation attempt"""

        class OnceBrokenStore(MemorySecureStore):
            failures = 1

            async def set(self, key, value):
                if self.failures:
                    self.failures -= 1
                    raise StorageUnavailable("offline")
                await super().set(key, value)

        manager = KeyManager(OnceBrokenStore())

        async def scenario():
            with pytest.raises(StorageUnavailable):
                await manager.get_or_create_key()
            return await manager.get_or_create_key()

        assert len(asyncio.run(scenario())) == 32


class TestCipherCodec:
    """Tests for blob encryption and decryption"""

    def _codec(self, scheme=AES_GCM, key=FIXED_KEY):
        return CipherCodec(KeyManager(MemorySecureStore({ENCRYPTION_KEY_NAME: key.hex()})), scheme)

    def test_round_trip_unicode(self):
        """Should decrypt what it encrypted, including non-ASCII text"""
        codec = self._codec()

        async def scenario():
            blob = await codec.encrypt("Dr. Müller, 血液検査 🩺")
            return await codec.decrypt(blob)

        assert asyncio.run(scenario()) == "Dr. Müller, 血液検査 🩺"

    def test_blob_layout_and_fresh_iv(self):
        """Should emit lowercase hex with a new 16-byte IV prefix each call"""
        codec = self._codec()

        async def scenario():
            return await codec.encrypt("same"), await codec.encrypt("same")

        first, second = asyncio.run(scenario())

        assert first != second
        assert first[:IV_HEX_LENGTH] != second[:IV_HEX_LENGTH]
        assert all(ch in "0123456789abcdef" for ch in first)
        # 4 bytes of plaintext plus the 16-byte GCM tag
        assert len(first) == IV_HEX_LENGTH + 2 * (4 + 16)

    def test_tampered_blob_fails_authentication(self):
        """Should reject a blob whose ciphertext was modified"""
        codec = self._codec()

        async def scenario():
            blob = await codec.encrypt("secret")
            flipped = "0" if blob[-1] != "0" else "1"
            await codec.decrypt(blob[:-1] + flipped)

        with pytest.raises(DecryptionError):
            asyncio.run(scenario())

    def test_blob_from_another_key_is_rejected(self):
        """Should fail to decrypt data written under a different key"""
        writer = self._codec(key=bytes(32))
        reader = self._codec()

        async def scenario():
            await reader.decrypt(await writer.encrypt("secret"))

        with pytest.raises(DecryptionError):
            asyncio.run(scenario())

    @pytest.mark.parametrize("blob", ["", "abc", "zz" * 20, "a" * 33])
    def test_malformed_blobs(self, blob):
        """Should raise DecryptionError for short, non-hex or odd-length input"""
        with pytest.raises(DecryptionError):
            asyncio.run(self._codec().decrypt(blob))

    def test_xor_legacy_matches_mobile_format(self):
        """Should XOR UTF-8 bytes with the repeating key and ignore the IV"""
        codec = self._codec(XOR_LEGACY)
        blob = asyncio.run(codec.encrypt("hi"))

        assert blob[IV_HEX_LENGTH:] == bytes([ord("h") ^ 0, ord("i") ^ 1]).hex()
        assert asyncio.run(codec.decrypt("00" * 16 + "6868")) == "hi"

    def test_xor_with_key_repeats_key(self):
        """Should wrap around the key for data longer than 32 bytes"""
        data = bytes(40)
        assert xor_with_key(data, FIXED_KEY)[32:] == FIXED_KEY[:8]

    def test_unknown_scheme(self):
        """Should refuse schemes it cannot read back"""
        with pytest.raises(ValueError):
            CipherCodec(KeyManager(MemorySecureStore()), "rot13")

    def test_decrypt_json_rejects_non_json(self):
        """Should map undecodable JSON to DecryptionError"""
        codec = self._codec()

        async def scenario():
            await codec.decrypt_json(await codec.encrypt("{not json"))

        with pytest.raises(DecryptionError):
            asyncio.run(scenario())

    def test_json_is_compact(self):
        """Should serialize JSON without whitespace"""
        codec = self._codec(XOR_LEGACY)
        blob = asyncio.run(codec.encrypt_json({"a": [1, 2]}))
        plain = xor_with_key(bytes.fromhex(blob[IV_HEX_LENGTH:]), FIXED_KEY)
        assert plain == b'{"a":[1,2]}'
