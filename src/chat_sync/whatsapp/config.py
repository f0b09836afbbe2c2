"""Data directory location and engine tunables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DATA_DIR_NAME = ".whats-cli"
DB_FILE_NAME = "store.db"

DEFAULT_MAX_RETRIES = 5
DEFAULT_DEBOUNCE_MS = 300
DEFAULT_MESSAGE_WINDOW = 100


def get_data_dir() -> Path:
    """Return the per-user data directory, creating it if needed.

    ``CHAT_SYNC_DATA_DIR`` overrides the default ``~/.whats-cli``.
    """
    override = os.environ.get("CHAT_SYNC_DATA_DIR")
    data_dir = Path(override).expanduser() if override else Path.home() / DATA_DIR_NAME
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_db_path() -> Path:
    return get_data_dir() / DB_FILE_NAME


@dataclass
class EngineConfig:
    """Retry, debounce and query-window settings for the sync engine."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base_delay: float = 1.0  # seconds, multiplied by the retry count
    retry_max_delay: float = 10.0
    debounce_window: float = DEFAULT_DEBOUNCE_MS / 1000
    max_unwrap_depth: int = 16
    message_window: int = DEFAULT_MESSAGE_WINDOW
    search_limit: int = 100
    global_search_limit: int = 10

    @classmethod
    def from_env(cls) -> EngineConfig:
        return cls(
            max_retries=int(os.environ.get("CHAT_SYNC_MAX_RETRIES", DEFAULT_MAX_RETRIES)),
            debounce_window=int(os.environ.get("CHAT_SYNC_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS)) / 1000,
            message_window=int(os.environ.get("CHAT_SYNC_MESSAGE_WINDOW", DEFAULT_MESSAGE_WINDOW)),
        )

    def retry_delay(self, retry_count: int) -> float:
        """Linear backoff capped at ``retry_max_delay``."""
        return min(self.retry_base_delay * retry_count, self.retry_max_delay)
