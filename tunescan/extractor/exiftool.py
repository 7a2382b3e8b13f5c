"""Exiftool wrapper for audio tag extraction."""

import json
import shutil
import subprocess
from dataclasses import dataclass

from tunescan.database.models import TrackMetadata
from tunescan.extractor.base import ExtractionFailure, ExtractionResult, FileHandle
from tunescan.extractor.parser import (
    clean_text,
    get_first_value,
    parse_track_number,
    parse_year,
    seconds_to_ms,
    to_int,
)


class ExiftoolNotFoundError(Exception):
    """Raised when exiftool is not installed."""


@dataclass
class ExiftoolResult:
    """Result from exiftool extraction."""

    source_file: str
    metadata: dict
    error: str | None = None


# Tag groups exiftool reports for the container formats we scan (-G0)
_TAG_GROUPS = ("ID3", "Vorbis", "QuickTime", "ASF", "APE", "RIFF", "FLAC", "XMP")


def _keys(*names: str) -> tuple[str, ...]:
    return tuple(f"{group}:{name}" for name in names for group in _TAG_GROUPS)


class ExiftoolRunner:
    """Wrapper for exiftool command execution."""

    EXIFTOOL_ARGS = ["-json", "-G0", "-n", "-fast"]

    def __init__(self) -> None:
        self.version = self._check_exiftool()

    def _check_exiftool(self) -> str:
        path = shutil.which("exiftool")
        if not path:
            raise ExiftoolNotFoundError(
                "exiftool is required but not found.\n"
                "Please install exiftool: https://exiftool.org/install.html"
            )

        result = subprocess.run(
            ["exiftool", "-ver"],
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()

    def extract_batch(self, file_paths: list[str]) -> list[ExiftoolResult]:
        """Extract metadata from multiple files in a single exiftool call."""
        if not file_paths:
            return []

        cmd = ["exiftool"] + self.EXIFTOOL_ARGS + file_paths

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            return [ExiftoolResult(fp, {}, str(e)) for fp in file_paths]

        if result.returncode not in (0, 1):
            return [ExiftoolResult(fp, {}, result.stderr) for fp in file_paths]

        try:
            data_list = json.loads(result.stdout) if result.stdout.strip() else []
        except json.JSONDecodeError as e:
            return [ExiftoolResult(fp, {}, f"JSON parse error: {e}") for fp in file_paths]

        data_by_source = {d.get("SourceFile", ""): d for d in data_list}

        results = []
        for fp in file_paths:
            if fp in data_by_source:
                results.append(ExiftoolResult(fp, data_by_source[fp]))
            else:
                results.append(ExiftoolResult(fp, {}, "No output from exiftool"))
        return results

    def extract_stream(self, label: str, data: bytes) -> ExiftoolResult:
        """Extract metadata from file contents piped through stdin."""
        try:
            result = subprocess.run(
                ["exiftool"] + self.EXIFTOOL_ARGS + ["-"],
                input=data,
                capture_output=True,
                check=False,
            )
        except OSError as e:
            return ExiftoolResult(label, {}, str(e))

        if result.returncode not in (0, 1):
            return ExiftoolResult(label, {}, result.stderr.decode(errors="replace"))
        try:
            data_list = json.loads(result.stdout) if result.stdout.strip() else []
        except json.JSONDecodeError as e:
            return ExiftoolResult(label, {}, f"JSON parse error: {e}")
        if not data_list:
            return ExiftoolResult(label, {}, "No output from exiftool")
        return ExiftoolResult(label, data_list[0])

    def extract_single(self, file_path: str) -> ExiftoolResult:
        """Extract metadata from a single file."""
        results = self.extract_batch([file_path])
        return results[0] if results else ExiftoolResult(file_path, {}, "No result")


class ExiftoolExtractor:
    """Metadata extractor backed by the exiftool binary."""

    name = "exiftool"

    def __init__(self, runner: ExiftoolRunner | None = None) -> None:
        self.runner = runner or ExiftoolRunner()

    def extract(self, handle: FileHandle) -> ExtractionResult:
        if handle.local_path is not None:
            result = self.runner.extract_single(str(handle.local_path))
        else:
            with handle.open() as fileobj:
                result = self.runner.extract_stream(handle.canonical_path, fileobj.read())

        if result.error:
            return ExtractionFailure(handle.canonical_path, result.error.strip())
        return metadata_from_exiftool(result.metadata)


def metadata_from_exiftool(meta: dict) -> TrackMetadata:
    """Map exiftool's grouped tag names onto track metadata."""
    return TrackMetadata(
        title=clean_text(get_first_value(meta, *_keys("Title"))),
        artist=clean_text(get_first_value(meta, *_keys("Artist", "Author"))),
        album=clean_text(get_first_value(meta, *_keys("Album", "AlbumTitle"))),
        album_artist=clean_text(get_first_value(meta, *_keys("AlbumArtist", "Band"))),
        genre=clean_text(get_first_value(meta, *_keys("Genre"))),
        year=parse_year(
            get_first_value(meta, *_keys("Year", "Date", "RecordingTime", "ContentCreateDate"))
        ),
        track_number=parse_track_number(get_first_value(meta, *_keys("Track", "TrackNumber"))),
        duration_ms=seconds_to_ms(get_first_value(meta, "Composite:Duration", *_keys("Duration"))),
        bitrate=to_int(
            get_first_value(meta, "MPEG:AudioBitrate", "Composite:AudioBitrate", "ASF:MaxBitrate")
        ),
        sample_rate=to_int(
            get_first_value(
                meta,
                "MPEG:SampleRate",
                "FLAC:SampleRate",
                "Vorbis:SampleRate",
                "QuickTime:AudioSampleRate",
                "RIFF:SampleRate",
            )
        ),
    )
