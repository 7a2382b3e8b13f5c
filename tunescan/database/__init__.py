"""Database module for tunescan."""

from .cache import CacheStore
from .connection import CacheStoreError, Database
from .models import (
    CacheStats,
    FileCandidate,
    RootKind,
    ScanOutcome,
    ScanRecord,
    ScanRoot,
    TrackMetadata,
)
from .schema import create_schema

__all__ = [
    "CacheStats",
    "CacheStore",
    "CacheStoreError",
    "Database",
    "FileCandidate",
    "RootKind",
    "ScanOutcome",
    "ScanRecord",
    "ScanRoot",
    "TrackMetadata",
    "create_schema",
]
