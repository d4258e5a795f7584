"""
Encryption layer - transparent authenticated encryption for stored content.

Keys are derived from a master password with a password hash KDF and a
salt that is persisted once per content store. Each encrypted record
carries algorithm, KDF and salt, never the key.
"""

import asyncio
import base64
import hashlib

import nacl.bindings
import nacl.exceptions
import nacl.pwhash
import nacl.secret
import nacl.utils

from autoorganize.config import EncryptionConfig
from autoorganize.core.content_store.content_store import ContentStore
from autoorganize.models.document import EncryptionInfo
from autoorganize.utils.exceptions import ConfigurationError, EncryptionKeyError
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)

SALT_SETTING_KEY = "encryption.salt"

_KDF_MODULES = {
    "argon2id": nacl.pwhash.argon2id,
    "argon2i": nacl.pwhash.argon2i,
    "scrypt": nacl.pwhash.scrypt,
}

_ALGORITHMS = ("XSalsa20Poly1305", "XChaCha20Poly1305")


class EncryptionLayer:
    """
    Password-based encryption for document content.

    Supported ciphers:
    - XSalsa20Poly1305 (libsodium secretbox, default)
    - XChaCha20Poly1305 (IETF AEAD)

    Supported KDFs: argon2id (default), argon2i, scrypt.
    """

    def __init__(self, config: EncryptionConfig, content_store: ContentStore):
        if config.algorithm not in _ALGORITHMS:
            raise ConfigurationError(
                f"Unsupported encryption algorithm: {config.algorithm}",
                {"supported": list(_ALGORITHMS)},
            )
        if config.key_derivation not in _KDF_MODULES:
            raise ConfigurationError(
                f"Unsupported key derivation: {config.key_derivation}",
                {"supported": list(_KDF_MODULES)},
            )
        if config.kdf_strength not in ("interactive", "moderate", "sensitive"):
            raise ConfigurationError(f"Unsupported kdf strength: {config.kdf_strength}")

        self.config = config
        self.content_store = content_store
        self._salt: bytes | None = None
        self._key_cache: dict[tuple[str, str, str, bytes], bytes] = {}

    @property
    def has_password(self) -> bool:
        return bool(self.config.password)

    async def initialize(self) -> None:
        """Load the persisted salt, creating it on first use."""
        kdf = _KDF_MODULES[self.config.key_derivation]
        fresh = base64.b64encode(nacl.utils.random(kdf.SALTBYTES)).decode("ascii")
        stored = await self.content_store.set_setting_if_absent(
            f"{SALT_SETTING_KEY}.{self.config.key_derivation}", fresh
        )
        self._salt = base64.b64decode(stored)

    # ═══════════════════════════════════════════════════════════
    # ENCRYPT / DECRYPT
    # ═══════════════════════════════════════════════════════════

    async def encrypt(self, data: bytes, password: str | None = None) -> tuple[bytes, EncryptionInfo]:
        """
        Encrypt bytes with a key derived from the master password.

        Args:
            data: Plaintext bytes
            password: Override for the configured password

        Returns:
            (ciphertext including nonce, encryption info for the record)

        Raises:
            EncryptionKeyError: If no password is available
        """
        if self._salt is None:
            await self.initialize()

        info = EncryptionInfo(
            algorithm=self.config.algorithm,
            key_derivation=self.config.key_derivation,
            kdf_strength=self.config.kdf_strength,
            salt=base64.b64encode(self._salt).decode("ascii"),
        )
        key = await self._derive_key(self._require_password(password), info)

        if info.algorithm == "XChaCha20Poly1305":
            nonce = nacl.utils.random(
                nacl.bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
            )
            ciphertext = nonce + nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
                data, None, nonce, key
            )
        else:
            ciphertext = bytes(nacl.secret.SecretBox(key).encrypt(data))

        return ciphertext, info

    async def decrypt(
        self, ciphertext: bytes, info: EncryptionInfo, password: str | None = None
    ) -> bytes:
        """
        Decrypt bytes produced by :meth:`encrypt`.

        Raises:
            EncryptionKeyError: If no password is available or the key is wrong
        """
        key = await self._derive_key(self._require_password(password), info)
        try:
            if info.algorithm == "XChaCha20Poly1305":
                size = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
                return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
                    ciphertext[size:], None, ciphertext[:size], key
                )
            return nacl.secret.SecretBox(key).decrypt(ciphertext)
        except nacl.exceptions.CryptoError as e:
            raise EncryptionKeyError(
                "Decryption failed: wrong key or corrupted ciphertext",
                {"algorithm": info.algorithm},
            ) from e

    # ═══════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════

    def _require_password(self, password: str | None) -> str:
        password = password or self.config.password
        if not password:
            raise EncryptionKeyError("No encryption password configured")
        return password

    async def _derive_key(self, password: str, info: EncryptionInfo) -> bytes:
        """
        Derive (and cache) the symmetric key for a record's KDF parameters.

        The KDF is memory- and CPU-hard, so it runs in a worker thread.
        """
        kdf = _KDF_MODULES.get(info.key_derivation)
        if kdf is None:
            raise EncryptionKeyError(f"Unknown key derivation: {info.key_derivation}")

        salt = base64.b64decode(info.salt)
        cache_key = (
            hashlib.sha256(password.encode("utf-8")).hexdigest(),
            info.key_derivation,
            info.kdf_strength,
            salt,
        )
        key = self._key_cache.get(cache_key)
        if key is None:
            strength = info.kdf_strength.upper()
            key = await asyncio.to_thread(
                kdf.kdf,
                nacl.secret.SecretBox.KEY_SIZE,
                password.encode("utf-8"),
                salt,
                opslimit=getattr(kdf, f"OPSLIMIT_{strength}"),
                memlimit=getattr(kdf, f"MEMLIMIT_{strength}"),
            )
            self._key_cache[cache_key] = key
            logger.debug(
                "Derived encryption key",
                extra={"kdf": info.key_derivation, "strength": info.kdf_strength},
            )
        return key
