"""Call Recording Ingest - Canonical path utilities.

Returns canonical Paths. Does NOT create directories.
Directory creation is the responsibility of the calling code.
"""

from pathlib import Path, PurePosixPath

from callrec import config


def recording_object_path(object_key: str, root: Path | None = None) -> Path:
    """Get the local filesystem path for a stored recording object.

    Args:
        object_key: Storage key, e.g. "call-recordings/web_call_<lead>_<ts>_<hash>.mp3".
        root: Optional storage root override (defaults to config.RECORDINGS_DIR).

    Returns:
        Path: {root}/{object_key}

    Raises:
        ValueError: If the key is absolute or escapes the storage root.
    """
    key = PurePosixPath(object_key)
    if key.is_absolute() or ".." in key.parts or not key.parts:
        raise ValueError(f"Invalid object key: {object_key!r}")
    base = root if root is not None else config.RECORDINGS_DIR
    return base.joinpath(*key.parts)


def upload_temp_path(name: str, root: Path | None = None) -> Path:
    """Get the path of a buffered multipart upload.

    Args:
        name: Temp file name (generated by the temp-file provider).
        root: Optional temp directory override (defaults to config.UPLOAD_TMP_DIR).

    Returns:
        Path: {root}/{name}
    """
    if "/" in name or "\\" in name or name in ("", ".", ".."):
        raise ValueError(f"Invalid temp file name: {name!r}")
    base = root if root is not None else config.UPLOAD_TMP_DIR
    return base / name
