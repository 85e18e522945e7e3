from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass
class Settings:
    database_path: Path
    upload_dir: Path
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_path=Path(os.getenv("FLEET_DATABASE", "fleet_checklists.db")),
            upload_dir=Path(os.getenv("FLEET_UPLOAD_DIR", "uploads")),
            log_level=os.getenv("FLEET_LOG_LEVEL", "INFO").upper(),
            host=os.getenv("FLEET_HOST", "127.0.0.1"),
            port=int(os.getenv("FLEET_PORT", "8000")),
        )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(getattr(handler, "_fleet_handler", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._fleet_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
