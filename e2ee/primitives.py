"""
Cryptographic Primitives for End-to-End Encryption

This module provides the foundational cryptographic operations used by the
hybrid message cipher and the password key vault. They are grouped behind a
CryptoProvider object which every component receives explicitly, so tests can
substitute a provider with deterministic randomness.
"""

import os
from typing import Callable, Optional, Tuple

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import CryptoError, KeyGenerationError


# RSA-OAEP key pairs
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

# AES-256-GCM
AES_KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

# PBKDF2-HMAC-SHA256
PBKDF2_ITERATIONS = 100000
SALT_SIZE = 16


def oaep_padding() -> padding.OAEP:
    """OAEP padding with SHA-256 for both the digest and MGF1"""
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None
    )


class CryptoProvider:
    """
    Cryptographic capability used by the engine.

    Wraps key generation, RSA-OAEP, AES-GCM, PBKDF2 and the random source.
    Holds no state besides the random source, so a single instance can be
    shared by concurrent calls.
    """

    def __init__(self, random_source: Optional[Callable[[int], bytes]] = None):
        """
        Args:
            random_source: Callable returning n random bytes (defaults to os.urandom)
        """
        self._random_source = random_source or os.urandom

    def random_bytes(self, length: int) -> bytes:
        """Return `length` bytes from the random source"""
        data = self._random_source(length)
        if len(data) != length:
            raise CryptoError(f"Random source returned {len(data)} bytes, expected {length}")
        return data

    def generate_rsa_keypair(self) -> Tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
        """
        Generate an RSA keypair for OAEP encryption.

        Returns:
            Tuple of (private_key, public_key)

        Raises:
            KeyGenerationError: If the backend cannot generate the key
        """
        try:
            private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT,
                key_size=RSA_KEY_SIZE,
            )
        except (UnsupportedAlgorithm, ValueError) as e:
            raise KeyGenerationError(f"RSA key generation unavailable: {e}") from e
        return private_key, private_key.public_key()

    def rsa_oaep_encrypt(self, public_key: rsa.RSAPublicKey, data: bytes) -> bytes:
        """
        Encrypt a short secret (a session key) with RSA-OAEP-SHA256.

        Raises:
            CryptoError: If the key cannot encrypt the data
        """
        try:
            return public_key.encrypt(data, oaep_padding())
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CryptoError(f"OAEP encryption failed: {e}") from e

    def rsa_oaep_decrypt(self, private_key: rsa.RSAPrivateKey, data: bytes) -> bytes:
        """
        Decrypt an RSA-OAEP-SHA256 ciphertext.

        Raises:
            CryptoError: If decryption fails (wrong key or corrupted data)
        """
        try:
            return private_key.decrypt(data, oaep_padding())
        except (ValueError, UnsupportedAlgorithm) as e:
            raise CryptoError("OAEP decryption failed") from e

    def aes_gcm_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes,
                        associated_data: Optional[bytes] = None) -> bytes:
        """
        Encrypt using AES-GCM.

        Args:
            key: 16, 24 or 32-byte key
            nonce: 12-byte nonce, never reused with the same key
            plaintext: Data to encrypt
            associated_data: Additional authenticated data

        Returns:
            ciphertext + tag (16 bytes)
        """
        if len(nonce) != NONCE_SIZE:
            raise CryptoError(f"Nonce must be {NONCE_SIZE} bytes")
        try:
            return AESGCM(key).encrypt(nonce, plaintext, associated_data)
        except ValueError as e:
            raise CryptoError(f"Encryption failed: {e}") from e

    def aes_gcm_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes,
                        associated_data: Optional[bytes] = None) -> bytes:
        """
        Decrypt using AES-GCM.

        Args:
            key: 16, 24 or 32-byte key
            nonce: 12-byte nonce used at encryption
            ciphertext: Encrypted data followed by the tag
            associated_data: Additional authenticated data

        Returns:
            Decrypted plaintext

        Raises:
            CryptoError: If decryption fails
        """
        if len(ciphertext) < TAG_SIZE:
            raise CryptoError("Ciphertext too short")

        try:
            return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
        except (InvalidTag, ValueError) as e:
            raise CryptoError("Decryption failed: authentication tag mismatch") from e

    def derive_key(self, password: str, salt: bytes,
                   iterations: int = PBKDF2_ITERATIONS, length: int = AES_KEY_SIZE) -> bytes:
        """
        Derive a symmetric key from a password using PBKDF2-HMAC-SHA256.

        Args:
            password: User's password (UTF-8 encoded before derivation)
            salt: Random salt
            iterations: PBKDF2 iteration count
            length: Key length in bytes

        Returns:
            Derived key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=length,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(password.encode("utf-8"))


default_provider = CryptoProvider()
