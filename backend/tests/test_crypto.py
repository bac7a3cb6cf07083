"""
Tests for the secret store.
"""

import asyncio

import pytest

from mcp_gateway.core.crypto import KeyResolver, SecretStore, decrypt, encrypt, generate_key
from mcp_gateway.core.errors import DecryptionError


class TestEncryption:
    """Test AES-CBC encryption helpers."""

    @pytest.mark.parametrize("plaintext", ["sk-test-123", "", "ünïcødé ✓", "x" * 1000])
    def test_round_trip(self, plaintext):
        """Test that decrypt(encrypt(v, k), k) returns v."""
        key = generate_key()
        assert decrypt(encrypt(plaintext, key), key) == plaintext

    def test_format(self):
        """Test that ciphertext is '<ivHex>:<cipherHex>' with a 16-byte IV."""
        iv_hex, cipher_hex = encrypt("value", "key").split(":")
        assert len(bytes.fromhex(iv_hex)) == 16
        assert len(bytes.fromhex(cipher_hex)) % 16 == 0

    def test_fresh_iv_per_message(self):
        """Test that encrypting the same value twice gives different ciphertexts."""
        assert encrypt("same", "key") != encrypt("same", "key")

    def test_wrong_key_never_returns_plaintext(self):
        """Test that decrypting with another key raises or yields a different value."""
        for _ in range(20):
            ciphertext = encrypt("sk-secret-value", "key-one")
            try:
                assert decrypt(ciphertext, "key-two") != "sk-secret-value"
            except DecryptionError:
                pass

    @pytest.mark.parametrize("value", ["", "nocolon", "a:b:c", "zz:zz", "00:00", "0011:" + "00" * 16])
    def test_malformed_input(self, value):
        """Test that malformed ciphertext raises DecryptionError."""
        with pytest.raises(DecryptionError):
            decrypt(value, "key")

    def test_generate_key(self):
        """Test that generated keys are 64 hex characters and unique."""
        key = generate_key()
        assert len(key) == 64
        int(key, 16)
        assert key != generate_key()


class TestKeyResolver:
    """Test encryption key resolution."""

    async def test_environment_key_wins(self):
        """Test that an explicit key is used without touching storage."""
        async def load():
            raise AssertionError("should not load")

        async def save(key):
            raise AssertionError("should not save")

        resolver = KeyResolver(load, save, env_key="env-key")
        assert await resolver.get_key() == "env-key"
        assert resolver.resolved

    async def test_persisted_key_is_reused(self):
        """Test that a stored key is loaded and nothing new is saved."""
        saved = []

        async def load():
            return "stored-key"

        async def save(key):
            saved.append(key)

        resolver = KeyResolver(load, save)
        assert await resolver.get_key() == "stored-key"
        assert saved == []

    async def test_concurrent_first_callers_share_one_key(self):
        """Test that concurrent first resolutions generate and persist exactly one key."""
        saved = []

        async def load():
            await asyncio.sleep(0.01)
            return None

        async def save(key):
            await asyncio.sleep(0.01)
            saved.append(key)

        resolver = KeyResolver(load, save)
        keys = await asyncio.gather(*(resolver.get_key() for _ in range(10)))

        assert len(set(keys)) == 1
        assert saved == [keys[0]]

    async def test_failed_resolution_can_be_retried(self):
        """Test that a failed resolution is not memoized."""
        attempts = []

        async def load():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("store down")
            return "stored-key"

        async def save(key):
            pass

        resolver = KeyResolver(load, save)
        with pytest.raises(RuntimeError):
            await resolver.get_key()
        assert not resolver.resolved

        assert await resolver.get_key() == "stored-key"


class TestSecretStore:
    """Test the encrypt/decrypt pipeline stage."""

    async def test_round_trip(self):
        """Test encrypting and decrypting through the resolved key."""
        async def load():
            return None

        async def save(key):
            pass

        store = SecretStore(KeyResolver(load, save, env_key="k"))
        ciphertext = await store.encrypt("hello")
        assert ciphertext != "hello"
        assert await store.decrypt(ciphertext) == "hello"

    async def test_decrypt_failure_raises(self):
        """Test that a bad ciphertext raises DecryptionError."""
        async def load():
            return None

        async def save(key):
            pass

        store = SecretStore(KeyResolver(load, save, env_key="k"))
        with pytest.raises(DecryptionError):
            await store.decrypt("not-encrypted")
