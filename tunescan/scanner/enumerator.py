"""Root enumeration across filesystem and document-tree roots."""

import logging
import os
from collections.abc import Iterator
from pathlib import Path

from tunescan.database.models import FileCandidate, RootKind, ScanRoot
from tunescan.extractor.base import FileHandle
from tunescan.scanner.documents import DocumentTree, DocumentTreeError, walk_document_tree
from tunescan.scanner.filesystem import AUDIO_EXTENSIONS, walk_directory

logger = logging.getLogger(__name__)


class PathEnumerator:
    """Turns a scan root into a stream of audio file candidates.

    The root kind is dispatched here and nowhere else; everything downstream
    only sees :class:`FileCandidate` and :class:`FileHandle`.
    """

    def __init__(
        self,
        documents: DocumentTree | None = None,
        extensions: frozenset[str] = AUDIO_EXTENSIONS,
        max_path_length: int = 4096,
    ) -> None:
        self.documents = documents
        self.extensions = extensions
        self.max_path_length = max_path_length

    def can_read(self, root: ScanRoot) -> bool:
        """Capability check made before a root is enumerated."""
        if root.kind is RootKind.FILESYSTEM:
            path = Path(root.key)
            return path.is_dir() and os.access(path, os.R_OK | os.X_OK)
        if self.documents is None:
            return False
        try:
            return self.documents.can_read(root.key)
        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.warning("Access check failed for %s: %s", root.key, e)
            return False

    def enumerate(self, root: ScanRoot) -> Iterator[FileCandidate]:
        """Fresh traversal of ``root``; an unavailable root yields nothing."""
        if root.kind is RootKind.FILESYSTEM:
            yield from walk_directory(Path(root.key), self.extensions, self.max_path_length)
            return

        if self.documents is None:
            logger.warning("No document tree provider for %s", root.key)
            return

        yield from walk_document_tree(self.documents, root.key, self.extensions)

    def file_handle(self, root: ScanRoot, candidate: FileCandidate) -> FileHandle:
        if root.kind is RootKind.FILESYSTEM:
            return FileHandle(candidate.canonical_path, local_path=Path(candidate.canonical_path))

        documents = self.documents
        if documents is None:
            raise DocumentTreeError(f"No document tree provider for {root.key}")
        return FileHandle(
            candidate.canonical_path,
            local_path=documents.local_path(candidate.canonical_path),
            opener=lambda: documents.open_document(candidate.canonical_path),
        )
