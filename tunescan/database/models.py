"""Data models for the cache database."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Self


class RootKind(Enum):
    """Storage abstraction behind a scan root."""

    FILESYSTEM = "filesystem"
    DOCUMENT_TREE = "document_tree"


@dataclass(frozen=True)
class ScanRoot:
    """A registered top-level location to be scanned."""

    kind: RootKind
    location_path: str | None = None
    tree_handle_id: str | None = None
    is_default: bool = False
    is_enabled: bool = True
    display_name: str = ""

    def __post_init__(self) -> None:
        if (self.location_path is None) == (self.tree_handle_id is None):
            raise ValueError("Exactly one of location_path or tree_handle_id must be set")
        if self.kind is RootKind.FILESYSTEM and self.location_path is None:
            raise ValueError("Filesystem roots need a location_path")
        if self.kind is RootKind.DOCUMENT_TREE and self.tree_handle_id is None:
            raise ValueError("Document tree roots need a tree_handle_id")

    @classmethod
    def filesystem(cls, path: str, **kwargs) -> Self:
        kwargs.setdefault("display_name", path.rstrip("/").rsplit("/", 1)[-1] or path)
        return cls(kind=RootKind.FILESYSTEM, location_path=path, **kwargs)

    @classmethod
    def document_tree(cls, handle_id: str, **kwargs) -> Self:
        kwargs.setdefault("display_name", handle_id)
        return cls(kind=RootKind.DOCUMENT_TREE, tree_handle_id=handle_id, **kwargs)

    @property
    def key(self) -> str:
        """Path or handle id; uniquely identifies the root."""
        if self.location_path is not None:
            return self.location_path
        return self.tree_handle_id  # type: ignore[return-value]

    @property
    def path_prefix(self) -> str:
        """Prefix shared by the canonical paths of every file under this root."""
        return self.key.rstrip("/") or "/"

    def with_enabled(self, enabled: bool) -> "ScanRoot":
        return replace(self, is_enabled=enabled)


@dataclass(frozen=True)
class FileCandidate:
    """An enumerated audio file, before metadata extraction."""

    canonical_path: str
    display_name: str
    size_bytes: int
    last_modified_ms: int


@dataclass(frozen=True)
class TrackMetadata:
    """Tag fields read from an audio file. None means unknown."""

    title: str | None = None
    artist: str | None = None
    album: str | None = None
    album_artist: str | None = None
    genre: str | None = None
    year: int | None = None
    track_number: int | None = None
    duration_ms: int | None = None
    bitrate: int | None = None
    sample_rate: int | None = None


@dataclass
class ScanRecord:
    """Last-known scan result for a single file."""

    canonical_path: str
    file_name: str
    size_bytes: int
    last_modified_ms: int
    scan_timestamp_ms: int
    title: str | None = None
    artist: str | None = None
    album: str | None = None
    album_artist: str | None = None
    genre: str | None = None
    year: int | None = None
    track_number: int | None = None
    duration_ms: int | None = None
    bitrate: int | None = None
    sample_rate: int | None = None
    external_id: int | None = None
    is_valid: bool = True

    @classmethod
    def from_candidate(
        cls,
        candidate: FileCandidate,
        metadata: TrackMetadata | None,
        scan_timestamp_ms: int,
        external_id: int | None = None,
    ) -> Self:
        """Build a record, falling back to the file name when no title is known."""
        meta = metadata or TrackMetadata()
        return cls(
            canonical_path=candidate.canonical_path,
            file_name=candidate.display_name,
            size_bytes=candidate.size_bytes,
            last_modified_ms=candidate.last_modified_ms,
            scan_timestamp_ms=scan_timestamp_ms,
            title=meta.title or candidate.display_name,
            artist=meta.artist,
            album=meta.album,
            album_artist=meta.album_artist,
            genre=meta.genre,
            year=meta.year,
            track_number=meta.track_number,
            duration_ms=meta.duration_ms,
            bitrate=meta.bitrate,
            sample_rate=meta.sample_rate,
            external_id=external_id,
            is_valid=True,
        )


@dataclass
class ScanOutcome:
    """Aggregated counts of one scan run."""

    added: int = 0
    updated: int = 0
    removed: int = 0

    def __add__(self, other: "ScanOutcome") -> "ScanOutcome":
        return ScanOutcome(
            added=self.added + other.added,
            updated=self.updated + other.updated,
            removed=self.removed + other.removed,
        )


@dataclass
class ParsedFilename:
    """Parsed components of a filename."""

    full: str
    base: str
    extension: str | None


@dataclass
class CacheStats:
    """Row counts of the cache table."""

    valid: int = 0
    invalid: int = 0
    total_bytes: int = 0
    last_scan_ms: int | None = None
