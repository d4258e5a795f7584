"""
Tests for the encryption layer.

Uses the interactive KDF preset so key derivation stays quick.
"""

import asyncio
import time

import nacl.pwhash
import pytest

from autoorganize.config import EncryptionConfig
from autoorganize.core.content_store import ContentStore
from autoorganize.core.encryption import EncryptionLayer
from autoorganize.core.encryption.encryption_layer import SALT_SETTING_KEY
from autoorganize.utils.exceptions import ConfigurationError, EncryptionKeyError
from tests.conftest import TEST_PASSWORD

PLAINTEXT = "Quarterly budget: $12,500 approved by Ada Lovelace".encode()


@pytest.fixture
async def layer(content_store: ContentStore) -> EncryptionLayer:
    encryption = EncryptionLayer(EncryptionConfig(password=TEST_PASSWORD), content_store)
    await encryption.initialize()
    return encryption


class TestEncryptDecrypt:
    """Test encryption round trips."""

    async def test_round_trip(self, layer: EncryptionLayer):
        ciphertext, info = await layer.encrypt(PLAINTEXT)

        assert ciphertext != PLAINTEXT
        assert PLAINTEXT not in ciphertext
        assert info.algorithm == "XSalsa20Poly1305"
        assert info.key_derivation == "argon2id"
        assert await layer.decrypt(ciphertext, info) == PLAINTEXT

    async def test_nonce_differs_per_call(self, layer: EncryptionLayer):
        first, _ = await layer.encrypt(PLAINTEXT)
        second, _ = await layer.encrypt(PLAINTEXT)
        assert first != second

    async def test_xchacha_round_trip(self, content_store: ContentStore):
        encryption = EncryptionLayer(
            EncryptionConfig(algorithm="XChaCha20Poly1305", password=TEST_PASSWORD), content_store
        )
        await encryption.initialize()

        ciphertext, info = await encryption.encrypt(PLAINTEXT)

        assert info.algorithm == "XChaCha20Poly1305"
        assert await encryption.decrypt(ciphertext, info) == PLAINTEXT

    async def test_password_override(self, content_store: ContentStore):
        encryption = EncryptionLayer(EncryptionConfig(), content_store)
        await encryption.initialize()

        ciphertext, info = await encryption.encrypt(PLAINTEXT, password="per-call secret")

        assert not encryption.has_password
        assert await encryption.decrypt(ciphertext, info, password="per-call secret") == PLAINTEXT


class TestKeyErrors:
    """Test missing and wrong keys."""

    async def test_wrong_password(self, layer: EncryptionLayer):
        ciphertext, info = await layer.encrypt(PLAINTEXT)

        with pytest.raises(EncryptionKeyError):
            await layer.decrypt(ciphertext, info, password="not the password")

    async def test_missing_password(self, content_store: ContentStore):
        encryption = EncryptionLayer(EncryptionConfig(), content_store)

        with pytest.raises(EncryptionKeyError):
            await encryption.encrypt(PLAINTEXT)

    async def test_tampered_ciphertext(self, layer: EncryptionLayer):
        ciphertext, info = await layer.encrypt(PLAINTEXT)
        tampered = ciphertext[:-1] + bytes([ciphertext[-1] ^ 0x01])

        with pytest.raises(EncryptionKeyError):
            await layer.decrypt(tampered, info)


class TestSalt:
    async def test_salt_persisted_once(self, content_store: ContentStore):
        first = EncryptionLayer(EncryptionConfig(password=TEST_PASSWORD), content_store)
        await first.initialize()
        ciphertext, info = await first.encrypt(PLAINTEXT)

        second = EncryptionLayer(EncryptionConfig(password=TEST_PASSWORD), content_store)
        await second.initialize()

        assert await content_store.get_setting(f"{SALT_SETTING_KEY}.argon2id") == info.salt
        assert await second.decrypt(ciphertext, info) == PLAINTEXT


class TestConfiguration:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"algorithm": "AES-ECB"},
            {"key_derivation": "md5"},
            {"kdf_strength": "extreme"},
        ],
    )
    def test_invalid_config(self, content_store: ContentStore, overrides):
        with pytest.raises(ConfigurationError):
            EncryptionLayer(EncryptionConfig(**overrides), content_store)


class TestEventLoop:
    async def test_key_derivation_does_not_block_loop(self, layer: EncryptionLayer, monkeypatch):
        original_kdf = nacl.pwhash.argon2id.kdf

        def slow_kdf(*args, **kwargs):
            time.sleep(0.3)
            return original_kdf(*args, **kwargs)

        monkeypatch.setattr(nacl.pwhash.argon2id, "kdf", slow_kdf)

        gaps: list[float] = []
        done = asyncio.Event()

        async def ticker() -> None:
            last = time.perf_counter()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = time.perf_counter()
                gaps.append(now - last)
                last = now

        ticking = asyncio.create_task(ticker())
        try:
            ciphertext, info = await layer.encrypt(PLAINTEXT)
        finally:
            done.set()
            await ticking

        assert await layer.decrypt(ciphertext, info) == PLAINTEXT
        assert len(gaps) > 5
        assert max(gaps) < 0.2
