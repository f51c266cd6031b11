"""Call Recording Ingest - Media type utilities.

Maps between declared media types and filename extensions for stored
recordings. Stdlib only; no audio decoding (recordings are stored verbatim).
"""

from pathlib import Path

# Fallback media type when a client declares none
DEFAULT_MEDIA_TYPE = "audio/mpeg"

_EXTENSION_MEDIA_TYPES = {
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "mp4": "audio/mp4",
    "aac": "audio/aac",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "oga": "audio/ogg",
    "opus": "audio/opus",
    "webm": "audio/webm",
    "amr": "audio/amr",
    "3gp": "audio/3gpp",
}

_MEDIA_TYPE_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/mp4": "m4a",
    "audio/x-m4a": "m4a",
    "audio/m4a": "m4a",
    "audio/aac": "aac",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/ogg": "ogg",
    "audio/opus": "opus",
    "audio/webm": "webm",
    "audio/amr": "amr",
    "audio/3gpp": "3gp",
}


def guess_format_from_extension(filename: str) -> str | None:
    """Guess audio format from filename extension.

    Args:
        filename: Filename or path string.

    Returns:
        Lowercase extension without dot, or None if no extension.
    """
    path = Path(filename)
    ext = path.suffix.lower().lstrip(".")
    return ext if ext else None


def normalize_media_type(media_type: str | None, filename: str | None = None) -> str:
    """Resolve the effective media type of a recording.

    Mobile clients send either a full media type ("audio/mpeg") or a bare
    format name ("mp3"); browsers sometimes send "application/octet-stream".
    Only known audio types are kept, since the result becomes the
    Content-Type the object is served with.

    Args:
        media_type: Declared media type or format, may be None.
        filename: Declared filename, used when the media type is unusable.

    Returns:
        Lowercase audio media type, DEFAULT_MEDIA_TYPE if nothing better is known.
    """
    declared = (media_type or "").split(";", 1)[0].strip().lower()

    if declared and "/" not in declared:
        declared = _EXTENSION_MEDIA_TYPES.get(declared.lstrip("."), "")

    if declared in _MEDIA_TYPE_EXTENSIONS:
        return declared

    ext = guess_format_from_extension(filename) if filename else None
    if ext and ext in _EXTENSION_MEDIA_TYPES:
        return _EXTENSION_MEDIA_TYPES[ext]
    return DEFAULT_MEDIA_TYPE


def extension_for(media_type: str, filename: str | None = None) -> str:
    """Choose the stored file extension for a recording.

    The declared filename's extension wins when it is a known audio format,
    otherwise the media type decides. Unknown types fall back to "bin".

    Args:
        media_type: Effective media type (see normalize_media_type).
        filename: Declared original filename.

    Returns:
        Extension without leading dot.
    """
    ext = guess_format_from_extension(filename) if filename else None
    if ext and ext in _EXTENSION_MEDIA_TYPES:
        return ext
    return _MEDIA_TYPE_EXTENSIONS.get(media_type.lower(), "bin")


__all__ = [
    "DEFAULT_MEDIA_TYPE",
    "extension_for",
    "guess_format_from_extension",
    "normalize_media_type",
]
