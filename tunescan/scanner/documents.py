"""Document trees: roots reached through opaque handles instead of paths.

A document tree only exposes child listings for a node; there is no path
arithmetic. Every node carries a URI, and file URIs double as canonical
paths in the cache, so they must be stable across listings.
"""

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol

from tunescan.database.models import FileCandidate
from tunescan.scanner.filesystem import AUDIO_EXTENSIONS, is_audio_file

logger = logging.getLogger(__name__)


class DocumentTreeError(Exception):
    """Raised when a document tree or one of its nodes cannot be accessed."""


@dataclass(frozen=True)
class DocumentNode:
    """One entry of a document tree listing."""

    uri: str
    name: str | None
    is_file: bool
    is_directory: bool
    size_bytes: int = 0
    last_modified_ms: int = 0


class DocumentTree(Protocol):
    """Access to document trees granted to the application."""

    def can_read(self, handle_id: str) -> bool:
        """Whether read access to the tree is currently granted."""

    def open_tree(self, handle_id: str) -> DocumentNode:
        """Return the top node of a tree, raising DocumentTreeError if unavailable."""

    def list_children(self, node: DocumentNode) -> list[DocumentNode]:
        """List the direct children of a directory node."""

    def open_document(self, uri: str) -> BinaryIO:
        """Open a file node for binary reading."""

    def local_path(self, uri: str) -> Path | None:
        """Local file backing ``uri``, if there is one."""


class DirectoryDocumentTree:
    """Serves document trees from local directories, one per handle id.

    Handle ids are opaque strings such as ``tree://music``; a node URI is the
    handle id followed by the node's relative path.
    """

    def __init__(self, mounts: dict[str, Path] | None = None) -> None:
        self._mounts: dict[str, Path] = dict(mounts or {})

    def mount(self, handle_id: str, directory: Path) -> None:
        self._mounts[handle_id] = directory

    def unmount(self, handle_id: str) -> None:
        self._mounts.pop(handle_id, None)

    def can_read(self, handle_id: str) -> bool:
        directory = self._mounts.get(handle_id)
        return directory is not None and directory.is_dir() and os.access(directory, os.R_OK)

    def open_tree(self, handle_id: str) -> DocumentNode:
        directory = self._mounts.get(handle_id)
        if directory is None or not directory.is_dir():
            raise DocumentTreeError(f"Document tree not available: {handle_id}")
        return DocumentNode(uri=handle_id, name=directory.name, is_file=False, is_directory=True)

    def list_children(self, node: DocumentNode) -> list[DocumentNode]:
        directory = self._resolve(node.uri)
        children: list[DocumentNode] = []
        try:
            with os.scandir(directory) as entries:
                for entry in sorted(entries, key=lambda e: e.name):
                    child = self._entry_node(node, entry)
                    if child is not None:
                        children.append(child)
        except OSError as e:
            raise DocumentTreeError(f"Cannot list {node.uri}: {e}") from e
        return children

    def _entry_node(self, parent: DocumentNode, entry: os.DirEntry) -> DocumentNode | None:
        try:
            if entry.is_symlink():
                return None
            is_dir = entry.is_dir(follow_symlinks=False)
            is_file = entry.is_file(follow_symlinks=False)
            size, modified = 0, 0
            if is_file:
                stat_result = entry.stat(follow_symlinks=False)
                size, modified = stat_result.st_size, stat_result.st_mtime_ns // 1_000_000
        except OSError as e:
            logger.warning("Skipping unreadable document %s: %s", entry.path, e)
            return None
        return DocumentNode(
            uri=f"{parent.uri.rstrip('/')}/{entry.name}",
            name=entry.name,
            is_file=is_file,
            is_directory=is_dir,
            size_bytes=size,
            last_modified_ms=modified,
        )

    def open_document(self, uri: str) -> BinaryIO:
        try:
            return open(self._resolve(uri), "rb")  # pylint: disable=consider-using-with
        except OSError as e:
            raise DocumentTreeError(f"Cannot open {uri}: {e}") from e

    def local_path(self, uri: str) -> Path | None:
        try:
            return self._resolve(uri)
        except DocumentTreeError:
            return None

    def _resolve(self, uri: str) -> Path:
        for handle_id, directory in self._mounts.items():
            if uri == handle_id:
                return directory
            prefix = handle_id.rstrip("/") + "/"
            if uri.startswith(prefix):
                relative = PurePosixPath(uri[len(prefix) :])
                if ".." in relative.parts:
                    break
                return directory.joinpath(*relative.parts)
        raise DocumentTreeError(f"No document tree owns {uri}")


def walk_document_tree(
    tree: DocumentTree,
    handle_id: str,
    extensions: frozenset[str] = AUDIO_EXTENSIONS,
) -> Iterator[FileCandidate]:
    """Yield audio files of a document tree, files of a node before its subdirectories."""
    try:
        top = tree.open_tree(handle_id)
    except DocumentTreeError as e:
        logger.warning("Skipping document tree %s: %s", handle_id, e)
        return
    yield from _walk_node(tree, top, extensions)


def _walk_node(
    tree: DocumentTree,
    node: DocumentNode,
    extensions: frozenset[str],
) -> Iterator[FileCandidate]:
    try:
        children = tree.list_children(node)
    except DocumentTreeError as e:
        logger.warning("Skipping unreadable document directory %s: %s", node.uri, e)
        return

    for child in children:
        if child.is_file and child.name and is_audio_file(child.name, extensions):
            yield FileCandidate(
                canonical_path=child.uri,
                display_name=child.name,
                size_bytes=max(child.size_bytes, 0),
                last_modified_ms=child.last_modified_ms,
            )

    for child in children:
        if child.is_directory:
            yield from _walk_node(tree, child, extensions)
