"""Configuration module for tunescan."""

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_database_path() -> Path:
    env_path = os.environ.get("TUNESCAN_DB")
    if env_path:
        return Path(env_path)
    data_home = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(data_home) / "tunescan" / "cache.db"


@dataclass
class ScannerConfig:
    progress_interval: int = 100
    max_path_length: int = 4096
    extraction_workers: int = 4
    write_batch_size: int = 200
    # Soft-invalidated rows older than this are purged after every run
    retention_days: int = 7
    scan_interval_hours: int = 6
    state_buffer_size: int = 256

    @property
    def retention_ms(self) -> int:
        return self.retention_days * 24 * 60 * 60 * 1000


@dataclass
class Config:
    database_path: Path = field(default_factory=_default_database_path)
    # None means "derive from well-known music locations"
    default_roots: list[Path] | None = None
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
