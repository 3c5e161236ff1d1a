from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class CouchpenterConfig:
    """Options for one Couchpenter instance.

    - setup_file: setup file path, relative paths resolve against the working directory
    - dir: base directory for document file and module references
    - prefix: prepended to every database name
    - db_setup: in-memory setup, bypasses the setup file
    - interval: polling interval (seconds) for live view deploy tracking
    - schedule: cron expression for recurring view warm up
    """

    setup_file: str = "couchpenter.json"
    dir: Path = field(default_factory=Path.cwd)
    prefix: Optional[str] = None
    db_setup: Optional[dict[str, Any]] = None
    interval: Optional[float] = None
    schedule: Optional[str] = None

    @property
    def setup_path(self) -> Path:
        path = Path(self.setup_file)
        if path.is_absolute():
            return path
        return Path.cwd() / path

    @staticmethod
    def from_env(
        *,
        setup_file: Optional[str] = None,
        dir: Optional[str | Path] = None,
        prefix: Optional[str] = None,
        db_setup: Optional[dict[str, Any]] = None,
        interval: Optional[float] = None,
        schedule: Optional[str] = None,
    ) -> "CouchpenterConfig":
        base_dir = dir or os.getenv("COUCHPENTER_DIR") or Path.cwd()
        return CouchpenterConfig(
            setup_file=setup_file or os.getenv("COUCHPENTER_SETUP_FILE") or "couchpenter.json",
            dir=Path(base_dir).resolve(),
            prefix=prefix if prefix is not None else (os.getenv("COUCHPENTER_PREFIX") or None),
            db_setup=db_setup,
            interval=interval,
            schedule=schedule or os.getenv("COUCHPENTER_SCHEDULE") or None,
        )
