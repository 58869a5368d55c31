"""Where the internal license store lives."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from .env import env_bool

APP_DIR_NAME: Final[str] = "licsync"
DEFAULT_DB_FILENAME: Final[str] = "licsync.db"


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    uri: str
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.uri.startswith("sqlite")


def data_dir() -> Path:
    """``LICSYNC_DATA_DIR`` or the platform's per-user data directory."""

    configured = os.getenv("LICSYNC_DATA_DIR")
    if configured:
        return Path(configured).expanduser().resolve()
    if os.name == "nt":
        root = os.getenv("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
    else:
        root = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return (Path(root) / APP_DIR_NAME).expanduser().resolve()


def sqlite_uri(directory: Path, filename: str = DEFAULT_DB_FILENAME) -> str:
    directory.mkdir(parents=True, exist_ok=True)
    return f"sqlite+pysqlite:///{directory / filename}"


def get_database_config() -> DatabaseConfig:
    uri = os.getenv("DATABASE_URI") or sqlite_uri(data_dir())
    return DatabaseConfig(uri=uri, echo=env_bool("LICSYNC_DB_ECHO", False))
