"""
Secret Store

This module provides:
- AES-256-CBC encryption of configuration values, stored as "<ivHex>:<cipherHex>"
- Per-installation key resolution (environment > persisted row > freshly generated)
- A single-flight resolver so concurrent first callers share one key

Known weakness: CBC without an authentication tag gives confidentiality only.
Tampered ciphertext is not detected beyond padding and encoding checks, and a
wrong key is caught with high (not absolute) probability.
"""

import asyncio
import hashlib
import os
import secrets
from typing import Awaitable, Callable, Optional

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from mcp_gateway.core.errors import DecryptionError

logger = structlog.get_logger(__name__)

ENCRYPTION_KEY_CONFIG = "SYSTEM_ENCRYPTION_KEY"
IV_LENGTH = 16


def generate_key() -> str:
    """Generate a random 32-byte key, hex encoded."""
    return secrets.token_hex(32)


def _derive_key(key: str) -> bytes:
    return hashlib.sha256(key.encode("utf-8")).digest()


def encrypt(plaintext: str, key: str) -> str:
    """
    Encrypt a string with a fresh random IV.

    Args:
        plaintext: Value to encrypt
        key: Key string (hashed with SHA-256 into the AES key)

    Returns:
        "<ivHex>:<cipherHex>"
    """
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(_derive_key(key)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return f"{iv.hex()}:{ciphertext.hex()}"


def decrypt(ciphertext: str, key: str) -> str:
    """
    Decrypt a value produced by encrypt().

    Raises:
        DecryptionError: If the value is malformed or the key does not match
    """
    parts = ciphertext.split(":") if isinstance(ciphertext, str) else []
    if len(parts) != 2:
        raise DecryptionError("Invalid encrypted value format")

    try:
        iv = bytes.fromhex(parts[0])
        data = bytes.fromhex(parts[1])
    except ValueError:
        raise DecryptionError("Invalid encrypted value format")

    if len(iv) != IV_LENGTH or not data or len(data) % IV_LENGTH:
        raise DecryptionError("Invalid encrypted value format")

    try:
        decryptor = Cipher(algorithms.AES(_derive_key(key)), modes.CBC(iv)).decryptor()
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except (ValueError, UnicodeDecodeError) as e:
        raise DecryptionError(f"Failed to decrypt value: {e}")


class KeyResolver:
    """
    Resolves the encryption key once per process.

    Resolution order is the explicit key, then the persisted key row, then a
    newly generated key which is persisted through save_key. Concurrent callers
    await the same pending resolution.
    """

    def __init__(
        self,
        load_key: Callable[[], Awaitable[Optional[str]]],
        save_key: Callable[[str], Awaitable[None]],
        env_key: Optional[str] = None
    ):
        self._load_key = load_key
        self._save_key = save_key
        self._env_key = env_key
        self._key: Optional[str] = None
        self._pending: Optional[asyncio.Future] = None

    @property
    def resolved(self) -> bool:
        return self._key is not None

    async def get_key(self) -> str:
        if self._key is not None:
            return self._key

        if self._pending is None:
            self._pending = asyncio.ensure_future(self._resolve())

        pending = self._pending
        try:
            key = await asyncio.shield(pending)
        except Exception:
            # Let the next caller retry from scratch
            if self._pending is pending:
                self._pending = None
            raise

        self._key = key
        return key

    async def _resolve(self) -> str:
        if self._env_key:
            logger.info("Using encryption key from environment")
            return self._env_key

        stored = await self._load_key()
        if stored:
            logger.info("Using persisted encryption key")
            return stored

        key = generate_key()
        await self._save_key(key)
        logger.info("Generated new encryption key")
        return key


class SecretStore:
    """Encrypt-before-write and decrypt-after-read stage used by the record stores."""

    def __init__(self, resolver: KeyResolver):
        self.resolver = resolver

    async def encrypt(self, plaintext: str) -> str:
        return encrypt(plaintext, await self.resolver.get_key())

    async def decrypt(self, ciphertext: str) -> str:
        try:
            return decrypt(ciphertext, await self.resolver.get_key())
        except DecryptionError as e:
            logger.warning("Configuration value could not be decrypted", error=str(e))
            raise
