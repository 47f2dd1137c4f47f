"""
Configuration for the chat client's encryption layer.

Values come from WHISPER_* environment variables; cryptographic parameters
are fixed in the engine and are not configurable.
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote


@dataclass
class ClientConfig:
    """Client configuration."""

    server_url: str = "http://localhost:8080"
    storage_dir: Path = field(default_factory=lambda: Path("client_data"))
    log_level: str = "INFO"
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create config from environment variables"""
        return cls(
            server_url=os.environ.get("WHISPER_SERVER_URL", "http://localhost:8080").rstrip("/"),
            storage_dir=Path(os.environ.get("WHISPER_STORAGE_DIR", "client_data")),
            log_level=os.environ.get("WHISPER_LOG_LEVEL", "INFO").upper(),
            http_timeout=float(os.environ.get("WHISPER_HTTP_TIMEOUT", "10")),
        )

    def key_db_path(self, account: str) -> Path:
        """Path of the local key database for an account"""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        return self.storage_dir / f"{quote(account, safe='')}.keys.db"


def configure_logging(level: str = "INFO") -> None:
    """Set up a basic stderr handler for applications using the client"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
