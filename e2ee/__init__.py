"""
End-to-end encryption engine for chat messages.

Implements:
- RSA-OAEP key pairs, serialized as base64 spki / pkcs8
- Hybrid multi-recipient message envelopes (AES-256-GCM + RSA-OAEP)
- Password escrow of the private key (PBKDF2-HMAC-SHA256 + AES-256-GCM)
"""

from .cipher import Envelope, MessageCipher, Recipient
from .codec import canonical_user_id, decode_text, encode_bytes
from .exceptions import (
    CryptoError,
    EnvelopeFormatError,
    KeyGenerationError,
    MalformedKeyError,
    PayloadDecryptionError,
    RecipientKeyInvalidError,
    RecipientKeyMissingError,
    SessionKeyUnwrapError,
    WrongPasswordError,
)
from .keypair import KeyPair, KeyPairManager, KeyRole
from .keystore import KeyStorage, LocalKeyStore, MemoryKeyStorage
from .primitives import CryptoProvider, default_provider
from .vault import PasswordKeyVault

__all__ = [
    'Envelope',
    'MessageCipher',
    'Recipient',
    'canonical_user_id',
    'decode_text',
    'encode_bytes',
    'CryptoError',
    'EnvelopeFormatError',
    'KeyGenerationError',
    'MalformedKeyError',
    'PayloadDecryptionError',
    'RecipientKeyInvalidError',
    'RecipientKeyMissingError',
    'SessionKeyUnwrapError',
    'WrongPasswordError',
    'KeyPair',
    'KeyPairManager',
    'KeyRole',
    'KeyStorage',
    'LocalKeyStore',
    'MemoryKeyStorage',
    'CryptoProvider',
    'default_provider',
    'PasswordKeyVault',
]
