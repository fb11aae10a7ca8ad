"""
Cryptographic primitives for stage envelope encryption.

This module provides:
- SecureKey: Key wrapper with best-effort zeroization
- AesKeyWrap: AES/ECB/PKCS7 wrapping of data keys under a master key
- AesCbcCipher: AES/CBC/PKCS7 incremental transforms for object data
"""

from __future__ import annotations

import base64
import binascii
import secrets

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CryptoError

# Cryptographic constants
AES_BLOCK_SIZE: int = 16  # 128 bits, also the IV length for CBC
VALID_KEY_SIZES = (16, 24, 32)  # AES-128/192/256


class SecureKey:
    """
    Key wrapper with memory cleanup on deletion.

    Uses bytearray internally for mutable zeroing in __del__.
    Python's garbage collector doesn't guarantee immediate cleanup,
    so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        if len(key_bytes) not in VALID_KEY_SIZES:
            raise CryptoError(
                f"Invalid key size: expected one of {VALID_KEY_SIZES}, got {len(key_bytes)}"
            )
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls, length: int) -> SecureKey:
        """Generate a random key of ``length`` bytes."""
        return cls(secrets.token_bytes(length))

    @classmethod
    def from_base64(cls, encoded: str) -> SecureKey:
        """
        Decode a base64 key, such as a stage master key.

        Raises:
            CryptoError: If the value is not base64 or has an invalid length
        """
        if not encoded:
            raise CryptoError("Master key is empty")
        try:
            decoded = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoError(f"Base64 decode error: {e}")
        return cls(decoded)

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    @property
    def size_bits(self) -> int:
        return len(self._bytes) * 8

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


class AesKeyWrap:
    """
    Wraps data keys under a master key.

    AES in ECB mode with PKCS7 padding and no IV; this is the layout readers
    of previously staged objects expect, so it must not change.
    """

    @staticmethod
    def wrap(master_key: SecureKey, data_key: SecureKey) -> bytes:
        encryptor = Cipher(algorithms.AES(master_key.as_bytes()), modes.ECB()).encryptor()
        padder = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
        padded = padder.update(data_key.as_bytes()) + padder.finalize()
        return encryptor.update(padded) + encryptor.finalize()

    @staticmethod
    def unwrap(master_key: SecureKey, wrapped: bytes) -> SecureKey:
        """
        Recover a data key.

        The data key always has the master key's length; anything else means
        the master key is wrong or the wrapped key is corrupted.

        Raises:
            CryptoError: If unwrapping fails
        """
        if not wrapped or len(wrapped) % AES_BLOCK_SIZE:
            raise CryptoError("Invalid wrapped key length")

        decryptor = Cipher(algorithms.AES(master_key.as_bytes()), modes.ECB()).decryptor()
        unpadder = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
        try:
            padded = decryptor.update(wrapped) + decryptor.finalize()
            key_bytes = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            # Generic error to prevent oracle attacks
            raise CryptoError("Key unwrap failed")

        if len(key_bytes) != len(master_key):
            raise CryptoError("Key unwrap failed")
        return SecureKey(key_bytes)


class CipherTransform:
    """
    Incremental AES/CBC/PKCS7 transform.

    ``update`` may be called any number of times; ``finalize`` exactly once.
    """

    def __init__(self, key: SecureKey, iv: bytes, encrypt: bool) -> None:
        if len(iv) != AES_BLOCK_SIZE:
            raise CryptoError(
                f"Invalid IV size: expected {AES_BLOCK_SIZE}, got {len(iv)}"
            )
        cipher = Cipher(algorithms.AES(key.as_bytes()), modes.CBC(iv))
        self._encrypt = encrypt
        if encrypt:
            self._ctx = cipher.encryptor()
            self._pad = padding.PKCS7(AES_BLOCK_SIZE * 8).padder()
        else:
            self._ctx = cipher.decryptor()
            self._pad = padding.PKCS7(AES_BLOCK_SIZE * 8).unpadder()
        self._finalized = False

    def update(self, data: bytes) -> bytes:
        if self._finalized:
            raise CryptoError("Cipher already finalized")
        if self._encrypt:
            return self._ctx.update(self._pad.update(data))
        return self._pad.update(self._ctx.update(data))

    def finalize(self) -> bytes:
        if self._finalized:
            raise CryptoError("Cipher already finalized")
        self._finalized = True
        if self._encrypt:
            return self._ctx.update(self._pad.finalize()) + self._ctx.finalize()
        try:
            return self._pad.update(self._ctx.finalize()) + self._pad.finalize()
        except ValueError:
            raise CryptoError("Decryption failed")


class AesCbcCipher:
    """AES/CBC/PKCS7 cipher for object data."""

    @staticmethod
    def encryptor(key: SecureKey, iv: bytes) -> CipherTransform:
        return CipherTransform(key, iv, encrypt=True)

    @staticmethod
    def decryptor(key: SecureKey, iv: bytes) -> CipherTransform:
        return CipherTransform(key, iv, encrypt=False)

    @staticmethod
    def encrypt(key: SecureKey, plaintext: bytes, iv: bytes) -> bytes:
        transform = CipherTransform(key, iv, encrypt=True)
        return transform.update(plaintext) + transform.finalize()

    @staticmethod
    def decrypt(key: SecureKey, ciphertext: bytes, iv: bytes) -> bytes:
        transform = CipherTransform(key, iv, encrypt=False)
        return transform.update(ciphertext) + transform.finalize()


def generate_random_bytes(length: int) -> bytes:
    """Generate cryptographically secure random bytes."""
    return secrets.token_bytes(length)
