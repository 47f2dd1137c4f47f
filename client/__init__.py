"""
Chat client side of end-to-end encryption.

Provides the key directory / escrow HTTP client, local key storage and the
per-account encryption session used when sending and reading messages.
"""

from .config import ClientConfig, configure_logging
from .directory import DirectoryError, EscrowRecord, KeyDirectoryClient
from .session import DecryptedMessage, E2EESession, MissingEscrowError, MissingLocalKeyError, user_message
from .storage import SQLiteKeyStorage

__all__ = [
    'ClientConfig',
    'configure_logging',
    'DirectoryError',
    'EscrowRecord',
    'KeyDirectoryClient',
    'DecryptedMessage',
    'E2EESession',
    'MissingEscrowError',
    'MissingLocalKeyError',
    'user_message',
    'SQLiteKeyStorage',
]
