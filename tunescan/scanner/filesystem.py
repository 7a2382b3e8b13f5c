"""Filesystem traversal utilities for scanning directories."""

import logging
import os
from collections.abc import Iterator
from pathlib import Path

from tunescan.database.models import FileCandidate, ParsedFilename

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = frozenset({"mp3", "wav", "ogg", "m4a", "flac", "aac", "wma", "opus", "ape"})


def parse_filename(filename: str) -> ParsedFilename:
    if not filename:
        return ParsedFilename(full=filename, base=filename, extension=None)

    dot_index = filename.rfind(".")

    if dot_index <= 0 or dot_index == len(filename) - 1:
        return ParsedFilename(full=filename, base=filename.rstrip("."), extension=None)

    extension = filename[dot_index + 1 :].lower()
    base = filename[:dot_index]

    return ParsedFilename(full=filename, base=base, extension=extension)


def is_audio_file(filename: str, extensions: frozenset[str] = AUDIO_EXTENSIONS) -> bool:
    return parse_filename(filename).extension in extensions


def walk_directory(
    source_root: Path,
    extensions: frozenset[str] = AUDIO_EXTENSIONS,
    max_path_length: int = 4096,
) -> Iterator[FileCandidate]:
    """Yield audio files under ``source_root``, files of a directory before its subdirectories."""
    if not source_root.is_dir():
        logger.warning("Scan root is not a readable directory: %s", source_root)
        return
    yield from _walk_recursive(source_root, extensions, max_path_length)


def _walk_recursive(
    current_dir: Path,
    extensions: frozenset[str],
    max_path_length: int,
) -> Iterator[FileCandidate]:
    files, subdirs = _scan_directory(current_dir, extensions, max_path_length)

    yield from files

    for subdir in subdirs:
        yield from _walk_recursive(subdir, extensions, max_path_length)


def _scan_directory(
    directory: Path,
    extensions: frozenset[str],
    max_path_length: int,
) -> tuple[list[FileCandidate], list[Path]]:
    files: list[FileCandidate] = []
    subdirs: list[Path] = []

    try:
        with os.scandir(directory) as entries:
            for entry in sorted(entries, key=lambda e: e.name):
                if _is_subdirectory(entry):
                    subdirs.append(Path(entry.path))
                    continue
                candidate = _process_entry(entry, extensions, max_path_length)
                if candidate:
                    files.append(candidate)
    except PermissionError:
        logger.warning("Permission denied scanning directory: %s", directory)
    except OSError as e:
        logger.error("Error scanning directory %s: %s", directory, e)

    return files, subdirs


def _is_subdirectory(entry: os.DirEntry) -> bool:
    try:
        return entry.is_dir(follow_symlinks=False)
    except OSError:
        return False


def _process_entry(
    entry: os.DirEntry,
    extensions: frozenset[str],
    max_path_length: int,
) -> FileCandidate | None:
    try:
        if entry.is_symlink():
            return None

        if not entry.is_file(follow_symlinks=False):
            return None

        if not is_audio_file(entry.name, extensions):
            return None

        if len(entry.path) > max_path_length:
            logger.warning("Path too long, skipping: %s", entry.path)
            return None

        stat_result = entry.stat(follow_symlinks=False)

        return FileCandidate(
            canonical_path=entry.path,
            display_name=entry.name,
            size_bytes=stat_result.st_size,
            last_modified_ms=stat_result.st_mtime_ns // 1_000_000,
        )

    except PermissionError:
        logger.warning("Permission denied: %s", entry.path)
        return None
    except FileNotFoundError:
        logger.warning("File disappeared during scan: %s", entry.path)
        return None
    except OSError as e:
        logger.error("Error processing %s: %s", entry.path, e)
        return None
