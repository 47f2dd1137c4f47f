"""
Local store for the device's own key pair.

The store itself keeps nothing: it reads and writes the serialized pair
through an injected KeyStorage backend, which owns the storage medium.
Writes are last-writer-wins; storing a new pair replaces the old one.
"""

import logging
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

from .keypair import KeyPair, KeyPairManager

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyStorage(Protocol):
    """Persistence capability for one serialized key pair."""

    def save_key_pair(self, public_key: str, private_key: str) -> None:
        """Store the serialized pair, replacing any previous one"""
        ...

    def load_key_pair(self) -> Optional[Tuple[str, str]]:
        """Return (public_key, private_key) text, or None if nothing is stored"""
        ...


class MemoryKeyStorage:
    """KeyStorage kept in process memory (tests, ephemeral sessions)."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def save_key_pair(self, public_key: str, private_key: str) -> None:
        self._data = {"public": public_key, "private": private_key}

    def load_key_pair(self) -> Optional[Tuple[str, str]]:
        if not self._data:
            return None
        return self._data["public"], self._data["private"]


class LocalKeyStore:
    """Holds the device's key pair for the message cipher and the vault."""

    def __init__(self, storage: KeyStorage, key_manager: Optional[KeyPairManager] = None):
        """
        Args:
            storage: Backend that persists the serialized pair
            key_manager: Used to serialize and deserialize keys
        """
        self.storage = storage
        self.key_manager = key_manager or KeyPairManager()

    def put(self, pair: KeyPair) -> None:
        """Store a key pair, overwriting the current one"""
        public_text, private_text = self.key_manager.export_pair(pair)
        self.storage.save_key_pair(public_text, private_text)
        logger.debug("Stored local key pair")

    def put_serialized(self, public_key: str, private_key: str) -> KeyPair:
        """
        Store a serialized pair, e.g. one recovered from escrow.

        Both halves are imported first so a corrupt pair is never persisted.

        Raises:
            MalformedKeyError: If either half is invalid or they do not match
        """
        pair = self.key_manager.import_pair(public_key, private_key)
        self.storage.save_key_pair(public_key, private_key)
        logger.debug("Stored serialized local key pair")
        return pair

    def get(self) -> Optional[KeyPair]:
        """
        Load the stored key pair.

        Returns:
            The key pair, or None if no keys are stored

        Raises:
            MalformedKeyError: If the stored text no longer imports
        """
        stored = self.storage.load_key_pair()
        if stored is None:
            return None
        return self.key_manager.import_pair(*stored)

    def get_public_key_text(self) -> Optional[str]:
        """Serialized public key as published to the key directory"""
        stored = self.storage.load_key_pair()
        return stored[0] if stored else None

    def has_key(self) -> bool:
        return self.storage.load_key_pair() is not None
