"""Scanner module for enumeration, reconciliation and scan orchestration."""

from .documents import DirectoryDocumentTree, DocumentNode, DocumentTree, DocumentTreeError
from .enumerator import PathEnumerator
from .events import (
    Cancelled,
    CancellationToken,
    Complete,
    Error,
    Idle,
    Progress,
    Scanning,
    ScanState,
    ScanStateStream,
)
from .filesystem import AUDIO_EXTENSIONS, parse_filename, walk_directory
from .orchestrator import (
    ScanCancelledError,
    ScanError,
    ScanFailedError,
    ScanInProgressError,
    ScanOrchestrator,
)
from .reconcile import ExternalIndex, ReconcileResult, ReconciliationEngine, needs_update

__all__ = [
    "AUDIO_EXTENSIONS",
    "Cancelled",
    "CancellationToken",
    "Complete",
    "DirectoryDocumentTree",
    "DocumentNode",
    "DocumentTree",
    "DocumentTreeError",
    "Error",
    "ExternalIndex",
    "Idle",
    "PathEnumerator",
    "Progress",
    "ReconcileResult",
    "ReconciliationEngine",
    "ScanCancelledError",
    "ScanError",
    "ScanFailedError",
    "ScanInProgressError",
    "ScanOrchestrator",
    "ScanState",
    "ScanStateStream",
    "Scanning",
    "needs_update",
    "parse_filename",
    "walk_directory",
]
