"""
Encryption session for a logged-in chat account.

Wires the engine to the key directory, the escrow service and local key
storage:
- key setup and escrow on first use or regeneration
- key recovery from escrow when logging in on a new device
- password change with re-encryption of the escrowed key
- sending to all chat participants, the sender included
- reading message content, with a legacy plaintext fallback for text
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import httpx

from e2ee.cipher import MessageCipher, Recipient
from e2ee.codec import UserId, canonical_user_id
from e2ee.exceptions import (
    CryptoError,
    EnvelopeFormatError,
    RecipientKeyInvalidError,
    RecipientKeyMissingError,
    WrongPasswordError,
)
from e2ee.keypair import KeyPairManager
from e2ee.keystore import LocalKeyStore
from e2ee.vault import PasswordKeyVault

from .config import ClientConfig, configure_logging
from .directory import EscrowRecord, KeyDirectoryClient
from .storage import SQLiteKeyStorage

logger = logging.getLogger(__name__)

TEXT_MESSAGE = "TEXT"

INCORRECT_PASSWORD = "Incorrect password"
RECIPIENT_UNUSABLE = "Recipient has no usable key, cannot send"
NO_LOCAL_KEYS = "No encryption keys on this device"
NO_ESCROWED_KEYS = "No encryption keys are stored for this account"
OPERATION_FAILED = "Cryptographic operation failed"


class MissingLocalKeyError(CryptoError):
    """This device holds no key pair yet"""
    pass


class MissingEscrowError(CryptoError):
    """The account has no escrowed key pair on the server"""
    pass


@dataclass(frozen=True)
class DecryptedMessage:
    """
    Readable message content.

    Attributes:
        text: Message text or media locator
        legacy_plaintext: True when the content was not an envelope and is
            shown as stored, unencrypted
    """
    text: str
    legacy_plaintext: bool = False


def user_message(error: Exception) -> str:
    """
    Map an engine error to the text shown to the user.

    Only wrong passwords and unusable recipients get their own message; every
    other failure reads the same so the UI gives no extra signal to someone
    guessing passwords or keys.
    """
    if isinstance(error, WrongPasswordError):
        return INCORRECT_PASSWORD
    if isinstance(error, (RecipientKeyMissingError, RecipientKeyInvalidError)):
        return RECIPIENT_UNUSABLE
    if isinstance(error, MissingLocalKeyError):
        return NO_LOCAL_KEYS
    if isinstance(error, MissingEscrowError):
        return NO_ESCROWED_KEYS
    return OPERATION_FAILED


class E2EESession:
    """
    End-to-end encryption for one account on one device.
    """

    def __init__(self, user_id: UserId, directory: KeyDirectoryClient, key_store: LocalKeyStore,
                 cipher: Optional[MessageCipher] = None, vault: Optional[PasswordKeyVault] = None,
                 key_manager: Optional[KeyPairManager] = None):
        """
        Args:
            user_id: The logged-in user's id
            directory: Key directory and escrow client
            key_store: Local store for this device's key pair
            cipher: Message cipher (default engine provider)
            vault: Password vault (default engine provider)
            key_manager: Key pair manager (default engine provider)
        """
        self.user_id = canonical_user_id(user_id)
        self.directory = directory
        self.key_store = key_store
        self.key_manager = key_manager or key_store.key_manager
        self.cipher = cipher or MessageCipher(key_manager=self.key_manager)
        self.vault = vault or PasswordKeyVault(self.key_manager.provider)

    @classmethod
    def from_config(cls, config: ClientConfig, user_id: UserId, token: str,
                    http_client: Optional[httpx.AsyncClient] = None) -> "E2EESession":
        """
        Build a session for a logged-in account from client configuration.

        Sets up logging at config.log_level, a directory client for
        config.server_url and the account's SQLite key file under
        config.storage_dir.

        Args:
            config: Client configuration
            user_id: The logged-in user's id
            token: Bearer token of the account
            http_client: Optional preconfigured HTTP client (its own timeout applies)
        """
        configure_logging(config.log_level)
        uid = canonical_user_id(user_id)
        directory = KeyDirectoryClient(config.server_url, token, http_client=http_client,
                                       timeout=config.http_timeout)
        storage = SQLiteKeyStorage(config.key_db_path(uid))
        logger.info("Opened key storage for user %s at %s", uid, storage.db_path)
        return cls(uid, directory, LocalKeyStore(storage))

    async def close(self) -> None:
        """Close the directory client and the local key storage"""
        await self.directory.close()
        close_storage = getattr(self.key_store.storage, "close", None)
        if close_storage is not None:
            close_storage()

    async def generate_and_escrow(self, password: str) -> str:
        """
        Generate a new key pair, escrow it and store it on this device.

        The escrow record is uploaded before the local store is overwritten,
        so a failed upload leaves the current keys in place.

        Returns:
            The new serialized public key
        """
        pair = await asyncio.to_thread(self.key_manager.generate)
        public_text, private_text = self.key_manager.export_pair(pair)
        package = await asyncio.to_thread(self.vault.protect, private_text, password)

        await self.directory.sync_keys(EscrowRecord(public_key=public_text, encrypted_private_key=package))
        self.key_store.put(pair)
        logger.info("Generated and escrowed new key pair for user %s", self.user_id)
        return public_text

    async def restore_or_generate(self, password: str) -> bool:
        """
        Make this device's keys available after login.

        Recovers the escrowed key pair with the login password, or generates
        and escrows a new pair if the account has none.

        Returns:
            True if keys were restored from escrow, False if newly generated

        Raises:
            WrongPasswordError: If the escrow record does not open with password
        """
        record = await self.directory.get_my_keys()
        if record is None:
            logger.info("No escrowed keys for user %s, generating", self.user_id)
            await self.generate_and_escrow(password)
            return False

        private_text = await asyncio.to_thread(self.vault.recover, record.encrypted_private_key, password)
        self.key_store.put_serialized(record.public_key, private_text)
        logger.info("Restored escrowed keys for user %s", self.user_id)
        return True

    async def change_password(self, old_password: str, new_password: str) -> None:
        """
        Change the account password and re-encrypt the escrowed private key.

        Raises:
            MissingEscrowError: If the account has no escrowed keys
            WrongPasswordError: If old_password does not open the escrow record
        """
        record = await self.directory.get_my_keys()
        if record is None:
            raise MissingEscrowError("No escrowed keys to re-encrypt")

        package = await asyncio.to_thread(
            self.vault.rewrap, record.encrypted_private_key, old_password, new_password
        )
        await self.directory.change_password(old_password, new_password, package)
        logger.info("Re-encrypted escrowed key for user %s", self.user_id)

    async def build_recipients(self, participant_ids: Iterable[UserId]) -> List[Recipient]:
        """
        Recipients for a message to a chat: this user first, then every other
        participant once, with keys from the directory.

        Raises:
            MissingLocalKeyError: If this device has no key pair
        """
        own_key = self.key_store.get_public_key_text()
        if own_key is None:
            raise MissingLocalKeyError("Generate keys before sending messages")

        others: List[str] = []
        for participant in participant_ids:
            uid = canonical_user_id(participant)
            if uid != self.user_id and uid not in others:
                others.append(uid)

        keys = await asyncio.gather(*(self.directory.get_public_key(uid) for uid in others))
        recipients = [Recipient(user_id=self.user_id, public_key=own_key)]
        recipients.extend(Recipient(user_id=uid, public_key=key) for uid, key in zip(others, keys))
        return recipients

    async def encrypt_for_chat(self, text: str, participant_ids: Iterable[UserId]) -> str:
        """
        Encrypt message content for every participant of a chat.

        Returns:
            Envelope JSON to send as the message content

        Raises:
            RecipientKeyInvalidError: If any participant has no usable key
        """
        recipients = await self.build_recipients(participant_ids)
        return await asyncio.to_thread(self.cipher.encrypt, text, recipients)

    async def encrypt_media_locator(self, locator: str, participant_ids: Iterable[UserId]) -> str:
        """Encrypt an uploaded media URL the same way as message text"""
        return await self.encrypt_for_chat(locator, participant_ids)

    async def read_message(self, content: str, message_type: str = TEXT_MESSAGE,
                           allow_legacy: bool = True) -> DecryptedMessage:
        """
        Decrypt stored message content with this device's key.

        Text content that is not an envelope is returned as legacy plaintext
        when allow_legacy is set. Media locators never fall back.

        Raises:
            MissingLocalKeyError: If this device has no key pair
            CryptoError: Any engine error for the content
        """
        pair = self.key_store.get()
        if pair is None:
            raise MissingLocalKeyError("No key pair on this device")

        try:
            text = await asyncio.to_thread(self.cipher.decrypt, content, self.user_id, pair.private_key)
        except EnvelopeFormatError:
            if allow_legacy and message_type == TEXT_MESSAGE and isinstance(content, str):
                logger.warning("Message content is not encrypted, showing it as legacy plaintext")
                return DecryptedMessage(text=content, legacy_plaintext=True)
            raise
        return DecryptedMessage(text=text)
