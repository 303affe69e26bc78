"""Runtime configuration for the device store."""
from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Mapping, Optional

DB_NAME = "apps.db"
DEFAULT_STORE_TIMEOUT = 1.0
DEFAULT_WIRED_LABEL = "Wired devices"


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(value: Optional[str], default: float) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def default_data_dir(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    base = env.get("XDG_DATA_HOME")
    root = Path(base) if base else Path.home() / ".local" / "share"
    return root / "voicenotify"


def default_database_url(environ: Mapping[str, str] | None = None) -> str:
    return f"sqlite:///{default_data_dir(environ) / DB_NAME}"


@dataclasses.dataclass(frozen=True)
class Settings:
    """Store and reconciliation settings.

    Parameters
    ----------
    database_url : str
        SQLAlchemy URL of the device database. Defaults to a SQLite file in
        the user data directory.
    store_timeout : float
        Seconds a caller waits for a store to be published before
        :class:`~voicenotify.exceptions.StoreUnavailableError` is raised.
    wired_label : str
        Display name of the wired devices entry.
    sql_echo : bool
        Log every SQL statement through SQLAlchemy.
    """

    database_url: str = dataclasses.field(default_factory=default_database_url)
    store_timeout: float = DEFAULT_STORE_TIMEOUT
    wired_label: str = DEFAULT_WIRED_LABEL
    sql_echo: bool = False

    def __post_init__(self) -> None:
        if self.store_timeout <= 0:
            raise ValueError("store_timeout must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            database_url=env.get("VOICENOTIFY_DATABASE_URL") or default_database_url(env),
            store_timeout=_env_float(env.get("VOICENOTIFY_STORE_TIMEOUT"), DEFAULT_STORE_TIMEOUT),
            wired_label=env.get("VOICENOTIFY_WIRED_LABEL") or DEFAULT_WIRED_LABEL,
            sql_echo=_env_bool(env.get("VOICENOTIFY_SQL_ECHO"), False),
        )

    def with_overrides(self, **changes: object) -> "Settings":
        return dataclasses.replace(self, **{k: v for k, v in changes.items() if v is not None})


__all__ = [
    "DB_NAME",
    "DEFAULT_STORE_TIMEOUT",
    "DEFAULT_WIRED_LABEL",
    "Settings",
    "default_data_dir",
    "default_database_url",
]
