"""
RSA-OAEP key pair lifecycle.

Key pairs are generated through the CryptoProvider and carried as
`cryptography` key objects. On the wire a key is its DER encoding in the
standard format for its role (SubjectPublicKeyInfo for public keys, PKCS#8
for private keys), encoded as base64 text.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .codec import decode_text, encode_bytes
from .exceptions import MalformedKeyError
from .primitives import CryptoProvider, default_provider

logger = logging.getLogger(__name__)

RSAKey = Union[rsa.RSAPublicKey, rsa.RSAPrivateKey]


class KeyRole(str, Enum):
    """Which half of a key pair a serialized key holds"""
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class KeyPair:
    """
    Asymmetric key pair owned by a device.

    Attributes:
        public_key: RSA public key, published to the key directory
        private_key: RSA private key, kept locally and escrowed under a password
    """
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey

    def matches(self) -> bool:
        """Check that both halves belong to the same key"""
        return self.private_key.public_key().public_numbers() == self.public_key.public_numbers()


class KeyPairManager:
    """Generates, serializes and deserializes RSA-OAEP key pairs."""

    def __init__(self, provider: Optional[CryptoProvider] = None):
        self.provider = provider or default_provider

    def generate(self) -> KeyPair:
        """
        Generate a fresh 2048-bit RSA key pair.

        Raises:
            KeyGenerationError: If the cryptographic provider is unavailable
        """
        private_key, public_key = self.provider.generate_rsa_keypair()
        logger.debug("Generated %d-bit RSA key pair", private_key.key_size)
        return KeyPair(public_key=public_key, private_key=private_key)

    def export_key(self, key: RSAKey, role: Union[KeyRole, str]) -> str:
        """
        Serialize a key to portable text.

        Args:
            key: Public or private RSA key
            role: Role the key is exported as

        Returns:
            base64 of the DER `spki` (public) or `pkcs8` (private) encoding
        """
        role = KeyRole(role)
        if role is KeyRole.PUBLIC:
            if isinstance(key, rsa.RSAPrivateKey):
                key = key.public_key()
            if not isinstance(key, rsa.RSAPublicKey):
                raise MalformedKeyError("Expected an RSA public key")
            der = key.public_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PublicFormat.SubjectPublicKeyInfo
            )
        else:
            if not isinstance(key, rsa.RSAPrivateKey):
                raise MalformedKeyError("Expected an RSA private key")
            der = key.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            )
        return encode_bytes(der)

    def import_key(self, text: str, role: Union[KeyRole, str]) -> RSAKey:
        """
        Deserialize a key from portable text.

        Args:
            text: Text produced by export_key
            role: Expected role of the key

        Returns:
            The RSA key object

        Raises:
            MalformedKeyError: If the text is not a valid RSA key of that role
        """
        role = KeyRole(role)
        try:
            der = decode_text(text)
        except ValueError as e:
            raise MalformedKeyError(f"Key text is not valid base64: {e}") from e

        try:
            if role is KeyRole.PUBLIC:
                key = serialization.load_der_public_key(der)
            else:
                key = serialization.load_der_private_key(der, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise MalformedKeyError(f"Not a valid {role.value} key") from e

        expected = rsa.RSAPublicKey if role is KeyRole.PUBLIC else rsa.RSAPrivateKey
        if not isinstance(key, expected):
            raise MalformedKeyError(f"Expected an RSA {role.value} key")
        return key

    def export_pair(self, pair: KeyPair) -> Tuple[str, str]:
        """Serialize both halves, returning (public_text, private_text)"""
        return (
            self.export_key(pair.public_key, KeyRole.PUBLIC),
            self.export_key(pair.private_key, KeyRole.PRIVATE),
        )

    def import_pair(self, public_text: str, private_text: str) -> KeyPair:
        """
        Deserialize a key pair and check that its halves belong together.

        Raises:
            MalformedKeyError: If either half is invalid or they do not match
        """
        pair = KeyPair(
            public_key=self.import_key(public_text, KeyRole.PUBLIC),
            private_key=self.import_key(private_text, KeyRole.PRIVATE),
        )
        if not pair.matches():
            raise MalformedKeyError("Public key does not belong to the private key")
        return pair
