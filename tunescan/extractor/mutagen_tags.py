"""Tag extraction with mutagen."""

import logging

import mutagen

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

logger = logging.getLogger(__name__)

# Easy-interface keys first, then the raw keys of formats without an easy
# interface (ASF/WMA, APE) or where easy mode is missing a field.
TITLE_KEYS = ("title", "Title", "TIT2", "\xa9nam")
ARTIST_KEYS = ("artist", "Artist", "Author", "TPE1", "\xa9ART")
ALBUM_KEYS = ("album", "Album", "WM/AlbumTitle", "TALB", "\xa9alb")
ALBUM_ARTIST_KEYS = ("albumartist", "Album Artist", "WM/AlbumArtist", "TPE2", "aART")
GENRE_KEYS = ("genre", "Genre", "WM/Genre", "TCON", "\xa9gen")
YEAR_KEYS = ("date", "year", "Year", "WM/Year", "TDRC", "\xa9day")
TRACK_KEYS = ("tracknumber", "Track", "WM/TrackNumber", "TRCK", "trkn")


class MutagenExtractor:
    """Reads ID3, Vorbis comment, MP4, ASF and APE tags through mutagen."""

    name = "mutagen"

    def extract(self, handle: FileHandle) -> ExtractionResult:
        try:
            if handle.local_path is not None:
                audio = mutagen.File(handle.local_path, easy=True)
            else:
                with handle.open() as fileobj:
                    audio = mutagen.File(fileobj, easy=True)
        except (mutagen.MutagenError, OSError) as e:
            logger.debug("mutagen could not read %s: %s", handle.canonical_path, e)
            return ExtractionFailure(handle.canonical_path, str(e) or type(e).__name__)

        if audio is None:
            return ExtractionFailure(handle.canonical_path, "Unrecognized audio format")

        tags = audio.tags if audio.tags is not None else {}
        info = getattr(audio, "info", None)

        return TrackMetadata(
            title=_text(tags, TITLE_KEYS),
            artist=_text(tags, ARTIST_KEYS),
            album=_text(tags, ALBUM_KEYS),
            album_artist=_text(tags, ALBUM_ARTIST_KEYS),
            genre=_text(tags, GENRE_KEYS),
            year=parse_year(_raw(tags, YEAR_KEYS)),
            track_number=parse_track_number(_raw(tags, TRACK_KEYS)),
            duration_ms=seconds_to_ms(getattr(info, "length", None)),
            bitrate=to_int(getattr(info, "bitrate", None)),
            sample_rate=to_int(getattr(info, "sample_rate", None)),
        )


def _lookup(tags, key: str):
    try:
        return tags[key] if key in tags else None
    except (KeyError, ValueError):
        return None


def _raw(tags, keys: tuple[str, ...]):
    value = get_first_value({key: _lookup(tags, key) for key in keys}, *keys)
    # ID3 frames and ASF attributes wrap their payload
    if hasattr(value, "text"):
        text = value.text
        value = text[0] if isinstance(text, list) and text else text
    elif hasattr(value, "value"):
        value = value.value
    return value


def _text(tags, keys: tuple[str, ...]) -> str | None:
    return clean_text(_raw(tags, keys))
