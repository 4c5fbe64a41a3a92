# runtime settings, read from the environment
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_DB_PATH = "data/db.sqlite"

_FALSY = {"0", "false", "no", "off"}


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in _FALSY


@dataclass(frozen=True)
class Settings:
    """
    Settings shared by the database handle and the services.

    Fields:
      - db_path: sqlite file, created on first open
      - db_timeout: seconds a writer waits on a locked database
      - restock_on_cancel: give stock back when an order is cancelled
    """

    db_path: str = DEFAULT_DB_PATH
    db_timeout: float = 5.0
    restock_on_cancel: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        timeout = os.getenv("TINAPA_DB_TIMEOUT")
        return cls(
            db_path=os.getenv("TINAPA_DB_PATH") or DEFAULT_DB_PATH,
            db_timeout=float(timeout) if timeout else 5.0,
            restock_on_cancel=_env_flag("TINAPA_RESTOCK_ON_CANCEL", True),
        )
