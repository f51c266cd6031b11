"""Call Recording Ingest - Temporary buffering of multipart uploads.

Uploaded recordings are spooled into the temp upload directory before they
are read into memory. Each buffered file belongs to exactly one ingestion
attempt, which removes it when the attempt ends.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import BinaryIO

from callrec import config
from callrec.utils.atomic_io import (
    StreamLimitExceeded,
    atomic_stream_to_file,
    cleanup_orphan_temp_files,
)
from callrec.utils.paths import upload_temp_path
from services.recording_ingest.errors import PayloadTooLarge

logger = logging.getLogger(__name__)

# Buffered uploads: upload-<uuid>.rec; in-flight writes carry an extra .tmp suffix
TEMP_FILE_PREFIX = "upload-"
TEMP_FILE_SUFFIX = ".rec"

# Files younger than this may belong to a sibling worker process
STALE_UPLOAD_AGE_SECONDS = 3600


class LocalTempFileProvider:
    """Buffers upload streams into files under a local temp directory."""

    def __init__(self, root: Path | None = None):
        self.root = Path(root) if root is not None else config.UPLOAD_TMP_DIR

    def buffer_to_temp(self, stream: BinaryIO, max_bytes: int | None = None) -> Path:
        """Write a stream to a new temp file.

        The partial file is removed before this method raises, so on failure
        there is nothing for the caller to clean up.

        Args:
            stream: File-like object with read().
            max_bytes: Optional ceiling on accepted bytes.

        Returns:
            Path of the buffered file (owned by the caller from now on).

        Raises:
            PayloadTooLarge: If the stream exceeds max_bytes.
            OSError: If the temp file cannot be written.
        """
        name = f"{TEMP_FILE_PREFIX}{uuid.uuid4().hex}{TEMP_FILE_SUFFIX}"
        path = upload_temp_path(name, self.root)
        try:
            written = atomic_stream_to_file(stream, path, max_bytes=max_bytes)
        except StreamLimitExceeded as e:
            raise PayloadTooLarge(e.limit, e.bytes_read) from e
        logger.debug("Buffered upload to %s (%d bytes)", path, written)
        return path

    def remove_temp(self, path: Path) -> None:
        """Remove a buffered upload. Missing files count as removed.

        Raises:
            OSError: If the file exists but cannot be removed.
        """
        Path(path).unlink(missing_ok=True)


def cleanup_stale_uploads(
    root: Path | None = None,
    older_than_seconds: float | None = STALE_UPLOAD_AGE_SECONDS,
) -> int:
    """Remove buffered uploads left behind by a crashed process.

    Args:
        root: Temp directory (defaults to config.UPLOAD_TMP_DIR).
        older_than_seconds: Minimum file age; None removes everything.

    Returns:
        Number of files removed.
    """
    directory = Path(root) if root is not None else config.UPLOAD_TMP_DIR
    removed = cleanup_orphan_temp_files(
        directory, pattern=f"{TEMP_FILE_PREFIX}*", older_than_seconds=older_than_seconds
    )
    if removed:
        logger.info("Removed %d stale buffered uploads from %s", removed, directory)
    return removed
