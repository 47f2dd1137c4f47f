"""
Hybrid multi-recipient message encryption.

Each message is encrypted once with a fresh AES-256-GCM session key. The
session key is then wrapped with RSA-OAEP under every recipient's public key.
The result travels as a JSON envelope:

    {"ciphertext": "<b64>", "iv": "<b64>", "keys": {"<user id>": "<b64>", ...}}

The same envelope carries media locators (upload URLs) as well as text.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Union

from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError, field_validator

from .codec import UserId, canonical_user_id, decode_text, encode_bytes
from .exceptions import (
    CryptoError,
    EnvelopeFormatError,
    MalformedKeyError,
    PayloadDecryptionError,
    RecipientKeyInvalidError,
    RecipientKeyMissingError,
    SessionKeyUnwrapError,
)
from .keypair import KeyPairManager, KeyRole
from .primitives import AES_KEY_SIZE, NONCE_SIZE, CryptoProvider, default_provider

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
AES_KEY_SIZES = (16, 24, 32)


class Envelope(BaseModel):
    """
    Wire form of an encrypted message.

    Attributes:
        ciphertext: AES-GCM output (ciphertext + tag), base64
        iv: 12-byte GCM nonce, base64
        keys: Canonical user id -> session key wrapped for that user, base64
        v: Optional format version; absent means version 1
    """
    model_config = ConfigDict(frozen=True)

    ciphertext: StrictStr
    iv: StrictStr
    keys: Dict[StrictStr, StrictStr]
    v: Optional[StrictInt] = None

    @field_validator("keys")
    @classmethod
    def canonicalize_keys(cls, value: Dict[str, str]) -> Dict[str, str]:
        canonical: Dict[str, str] = {}
        for user_id, wrapped in value.items():
            key = canonical_user_id(user_id)
            if key in canonical:
                raise ValueError(f"Duplicate entry for user {key}")
            canonical[key] = wrapped
        return canonical

    @field_validator("v")
    @classmethod
    def check_version(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value != ENVELOPE_VERSION:
            raise ValueError(f"Unsupported envelope version {value}")
        return value

    def to_json(self) -> str:
        """Serialize to the wire form (ciphertext, iv, keys)"""
        return self.model_dump_json(exclude={"v"})

    @classmethod
    def from_json(cls, text: Any) -> "Envelope":
        """
        Parse the wire form.

        Raises:
            EnvelopeFormatError: If the text is not a JSON envelope
        """
        if not isinstance(text, (str, bytes)):
            raise EnvelopeFormatError("Envelope must be JSON text")
        try:
            return cls.model_validate_json(text)
        except ValidationError as e:
            raise EnvelopeFormatError(f"Not an encrypted envelope: {e.error_count()} error(s)") from e


@dataclass(frozen=True)
class Recipient:
    """
    One intended reader of a message.

    Attributes:
        user_id: Numeric or string user identifier
        public_key: Serialized public key, or None if the directory has none
    """
    user_id: UserId
    public_key: Optional[str]

    @classmethod
    def coerce(cls, item: Union["Recipient", Mapping[str, Any], Sequence[Any]]) -> "Recipient":
        """Accept a Recipient, a {userId, publicKey} mapping or a (user_id, public_key) pair"""
        if isinstance(item, Recipient):
            return item
        if isinstance(item, Mapping):
            user_id = item.get("userId", item.get("user_id"))
            public_key = item.get("publicKey", item.get("public_key"))
            return cls(user_id=user_id, public_key=public_key)
        user_id, public_key = item
        return cls(user_id=user_id, public_key=public_key)


class MessageCipher:
    """
    Encrypts messages for a set of recipients and decrypts them for one.

    The cipher does not add the sender to the recipients: callers must list
    the sender too, or they will not be able to read their own messages.
    """

    def __init__(self, provider: Optional[CryptoProvider] = None,
                 key_manager: Optional[KeyPairManager] = None):
        self.provider = provider or default_provider
        self.key_manager = key_manager or KeyPairManager(self.provider)

    def seal(self, plaintext: str, recipients: Iterable[Any]) -> Envelope:
        """
        Build an envelope readable by every recipient.

        Args:
            plaintext: Message text or media locator
            recipients: Recipients (see Recipient.coerce for accepted forms)

        Returns:
            The envelope

        Raises:
            RecipientKeyInvalidError: If any recipient key is absent or unusable
            ValueError: If no recipients are given or a user id repeats
        """
        recipients = [Recipient.coerce(r) for r in recipients]
        if not recipients:
            raise ValueError("At least one recipient is required")

        # Import every key before any encryption so a bad key fails the whole call
        public_keys: Dict[str, rsa.RSAPublicKey] = {}
        for recipient in recipients:
            user_id = canonical_user_id(recipient.user_id)
            if user_id in public_keys:
                raise ValueError(f"Recipient {user_id} listed more than once")
            if not recipient.public_key:
                raise RecipientKeyInvalidError(f"No public key for user {user_id}")
            try:
                public_keys[user_id] = self.key_manager.import_key(recipient.public_key, KeyRole.PUBLIC)
            except MalformedKeyError as e:
                raise RecipientKeyInvalidError(f"Invalid public key for user {user_id}") from e

        session_key = self.provider.random_bytes(AES_KEY_SIZE)
        nonce = self.provider.random_bytes(NONCE_SIZE)
        ciphertext = self.provider.aes_gcm_encrypt(session_key, nonce, plaintext.encode("utf-8"))

        wrapped_keys: Dict[str, str] = {}
        for user_id, public_key in public_keys.items():
            try:
                wrapped = self.provider.rsa_oaep_encrypt(public_key, session_key)
            except CryptoError as e:
                raise RecipientKeyInvalidError(f"Cannot wrap session key for user {user_id}") from e
            wrapped_keys[user_id] = encode_bytes(wrapped)

        logger.debug("Sealed message for %d recipient(s)", len(wrapped_keys))
        return Envelope(
            ciphertext=encode_bytes(ciphertext),
            iv=encode_bytes(nonce),
            keys=wrapped_keys,
        )

    def encrypt(self, plaintext: str, recipients: Iterable[Any]) -> str:
        """
        Encrypt a message for every recipient.

        Returns:
            Envelope JSON text
        """
        return self.seal(plaintext, recipients).to_json()

    def open(self, envelope: Envelope, my_user_id: UserId, my_private_key: rsa.RSAPrivateKey) -> str:
        """
        Decrypt a parsed envelope.

        Raises:
            RecipientKeyMissingError: If the envelope has no key for my_user_id
            SessionKeyUnwrapError: If the wrapped key does not decrypt, or
                my_private_key is not an RSA private key
            PayloadDecryptionError: If iv or ciphertext are corrupted or the
                payload fails authentication
        """
        user_id = canonical_user_id(my_user_id)
        wrapped_text = envelope.keys.get(user_id)
        if wrapped_text is None:
            logger.debug("No session key for user %s among %d entries", user_id, len(envelope.keys))
            raise RecipientKeyMissingError(f"No session key for user {user_id}")

        if not isinstance(my_private_key, rsa.RSAPrivateKey):
            raise SessionKeyUnwrapError("An RSA private key is required to unwrap the session key")

        try:
            session_key = self.provider.rsa_oaep_decrypt(my_private_key, decode_text(wrapped_text))
        except (ValueError, CryptoError) as e:
            raise SessionKeyUnwrapError(f"Cannot unwrap session key for user {user_id}") from e
        if len(session_key) not in AES_KEY_SIZES:
            raise SessionKeyUnwrapError(f"Unwrapped session key has invalid length {len(session_key)}")

        try:
            nonce = decode_text(envelope.iv)
            ciphertext = decode_text(envelope.ciphertext)
        except ValueError as e:
            raise PayloadDecryptionError("Envelope iv or ciphertext is corrupted") from e
        if len(nonce) != NONCE_SIZE:
            raise PayloadDecryptionError(f"Envelope iv must be {NONCE_SIZE} bytes")

        try:
            plaintext = self.provider.aes_gcm_decrypt(session_key, nonce, ciphertext)
        except CryptoError as e:
            raise PayloadDecryptionError("Message failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PayloadDecryptionError("Decrypted message is not UTF-8 text") from e

    def decrypt(self, envelope_text: str, my_user_id: UserId, my_private_key: rsa.RSAPrivateKey) -> str:
        """
        Decrypt envelope JSON text with this user's private key.

        Args:
            envelope_text: Envelope JSON as produced by encrypt
            my_user_id: The reader's user id (numeric or string form)
            my_private_key: The reader's RSA private key

        Returns:
            The message text
        """
        return self.open(Envelope.from_json(envelope_text), my_user_id, my_private_key)
