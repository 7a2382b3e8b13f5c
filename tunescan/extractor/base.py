"""The metadata extraction boundary.

Tag decoders read untrusted binary files, so the scanner only ever talks to
them through :func:`safe_extract`, which turns anything a decoder raises into
an :class:`ExtractionFailure`.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Protocol

from tunescan.database.models import TrackMetadata

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised inside a decoder when a file's tags cannot be read."""


@dataclass(frozen=True)
class FileHandle:
    """A readable audio file, either on disk or behind a document tree."""

    canonical_path: str
    local_path: Path | None = None
    opener: Callable[[], BinaryIO] | None = field(default=None, compare=False)

    def open(self) -> BinaryIO:
        if self.opener is not None:
            return self.opener()
        if self.local_path is not None:
            return open(self.local_path, "rb")  # pylint: disable=consider-using-with
        raise ExtractionError(f"No way to open {self.canonical_path}")


@dataclass(frozen=True)
class ExtractionFailure:
    """Why tags could not be read for a file."""

    canonical_path: str
    reason: str


ExtractionResult = TrackMetadata | ExtractionFailure


class MetadataExtractor(Protocol):
    """Reads tag fields from an audio file."""

    name: str

    def extract(self, handle: FileHandle) -> ExtractionResult:
        """Return metadata, or a failure. Missing fields are None, not errors."""


def safe_extract(extractor: MetadataExtractor, handle: FileHandle) -> ExtractionResult:
    """Call ``extractor`` and never let an exception escape."""
    try:
        return extractor.extract(handle)
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.warning("Tag extraction failed for %s: %s", handle.canonical_path, e)
        return ExtractionFailure(handle.canonical_path, f"{type(e).__name__}: {e}")
