"""
Password-based escrow of a serialized private key.

The escrow package is a single base64 blob laid out as:

    salt (16 bytes) || nonce (12 bytes) || AES-256-GCM ciphertext + tag

The AES key is derived from the password with PBKDF2-HMAC-SHA256
(100,000 iterations) over a salt that is fresh for every call, so the same
key and password never produce the same package twice.
"""

import logging
from typing import Optional

from .codec import decode_text, encode_bytes
from .exceptions import CryptoError, WrongPasswordError
from .primitives import (
    AES_KEY_SIZE,
    NONCE_SIZE,
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    TAG_SIZE,
    CryptoProvider,
    default_provider,
)

logger = logging.getLogger(__name__)

SALT_END = SALT_SIZE
NONCE_END = SALT_SIZE + NONCE_SIZE
MIN_PACKAGE_SIZE = NONCE_END + TAG_SIZE


class PasswordKeyVault:
    """Encrypts and decrypts a serialized private key under a password."""

    def __init__(self, provider: Optional[CryptoProvider] = None):
        self.provider = provider or default_provider

    def _derive(self, password: str, salt: bytes) -> bytes:
        return self.provider.derive_key(password, salt, iterations=PBKDF2_ITERATIONS, length=AES_KEY_SIZE)

    def protect(self, serialized_private_key: str, password: str) -> str:
        """
        Encrypt a serialized private key for escrow.

        Args:
            serialized_private_key: Private key text from KeyPairManager.export_key
            password: The user's password

        Returns:
            Escrow package as base64 text
        """
        salt = self.provider.random_bytes(SALT_SIZE)
        nonce = self.provider.random_bytes(NONCE_SIZE)
        key = self._derive(password, salt)

        ciphertext = self.provider.aes_gcm_encrypt(key, nonce, serialized_private_key.encode("utf-8"))
        combined = salt + nonce + ciphertext
        logger.debug("Protected private key (%d byte package)", len(combined))
        return encode_bytes(combined)

    def recover(self, package: str, password: str) -> str:
        """
        Decrypt an escrow package.

        Args:
            package: Escrow package produced by protect
            password: The user's password

        Returns:
            The serialized private key text exactly as it was protected

        Raises:
            WrongPasswordError: If the password is wrong or the package is
                corrupted or tampered with
        """
        try:
            combined = decode_text(package)
        except ValueError as e:
            raise WrongPasswordError("Wrong password or corrupted key package") from e

        if len(combined) < MIN_PACKAGE_SIZE:
            raise WrongPasswordError("Wrong password or corrupted key package")

        salt = combined[:SALT_END]
        nonce = combined[SALT_END:NONCE_END]
        ciphertext = combined[NONCE_END:]

        key = self._derive(password, salt)
        try:
            plaintext = self.provider.aes_gcm_decrypt(key, nonce, ciphertext)
            return plaintext.decode("utf-8")
        except (CryptoError, UnicodeDecodeError) as e:
            logger.debug("Escrow package did not authenticate")
            raise WrongPasswordError("Wrong password or corrupted key package") from e

    def rewrap(self, package: str, old_password: str, new_password: str) -> str:
        """
        Re-encrypt an escrow package under a new password.

        Raises:
            WrongPasswordError: If old_password does not open the package
        """
        return self.protect(self.recover(package, old_password), new_password)
