"""
Local key storage for the chat client.

Persists the device's serialized key pair in a per-account SQLite file.
Keys are stored as the engine serializes them; protecting the file is left
to the operating system account that owns it.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)


class SQLiteKeyStorage:
    """
    KeyStorage backend writing to SQLite.

    One row per key half in a `keys` table; saving a pair replaces both rows
    in a single transaction.
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize key storage.

        Args:
            db_path: Path of the SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db: Optional[sqlite3.Connection] = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._init_database()

    def _init_database(self):
        """Initialize SQLite database"""
        cursor = self.db.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS keys (
                key_type TEXT PRIMARY KEY,
                key_data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self.db.commit()

    def save_key_pair(self, public_key: str, private_key: str) -> None:
        """
        Save the serialized key pair, replacing any stored pair.

        Args:
            public_key: Serialized public key
            private_key: Serialized private key
        """
        if not self.db:
            raise ValueError("Storage is closed")

        timestamp = datetime.now(timezone.utc).isoformat()
        with self.db:
            self.db.executemany(
                "INSERT OR REPLACE INTO keys (key_type, key_data, updated_at) VALUES (?, ?, ?)",
                [("public", public_key, timestamp), ("private", private_key, timestamp)]
            )
        logger.info("Saved key pair to %s", self.db_path)

    def load_key_pair(self) -> Optional[Tuple[str, str]]:
        """
        Load the serialized key pair.

        Returns:
            (public_key, private_key) or None if no pair is stored
        """
        if not self.db:
            raise ValueError("Storage is closed")

        cursor = self.db.cursor()
        cursor.execute("SELECT key_type, key_data FROM keys")
        rows = dict(cursor.fetchall())

        if "public" not in rows or "private" not in rows:
            return None
        return rows["public"], rows["private"]

    def clear(self) -> None:
        """Remove the stored key pair"""
        if not self.db:
            return
        with self.db:
            self.db.execute("DELETE FROM keys")

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None

    def __enter__(self) -> "SQLiteKeyStorage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
