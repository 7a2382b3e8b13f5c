"""Metadata extraction from audio files."""

from tunescan.extractor.base import (
    ExtractionError,
    ExtractionFailure,
    ExtractionResult,
    FileHandle,
    MetadataExtractor,
    safe_extract,
)
from tunescan.extractor.exiftool import ExiftoolExtractor, ExiftoolNotFoundError, ExiftoolRunner
from tunescan.extractor.mutagen_tags import MutagenExtractor

__all__ = [
    "ExiftoolExtractor",
    "ExiftoolNotFoundError",
    "ExiftoolRunner",
    "ExtractionError",
    "ExtractionFailure",
    "ExtractionResult",
    "FileHandle",
    "MetadataExtractor",
    "MutagenExtractor",
    "get_extractor",
    "safe_extract",
]


def get_extractor(name: str) -> MetadataExtractor:
    """Get metadata extractor by name."""
    if name == "mutagen":
        return MutagenExtractor()
    if name == "exiftool":
        return ExiftoolExtractor()
    raise ValueError(f"Unknown extractor: {name}. Available: ['mutagen', 'exiftool']")
