"""tunescan - An incremental scanner and cache for local music libraries."""

__version__ = "0.1.0"

from tunescan.database import CacheStore, Database
from tunescan.library import MediaLibrary
from tunescan.scanner import ScanOrchestrator

__all__ = ["CacheStore", "Database", "MediaLibrary", "ScanOrchestrator"]
