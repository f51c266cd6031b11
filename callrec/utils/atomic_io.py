"""Call Recording Ingest - Atomic I/O utilities.

Implements the atomic publish rule:
1. Write to temp path in same directory
2. Flush + best-effort fsync
3. Rename temp -> final (the publish boundary)

This ensures that the final path either contains complete valid data
or does not exist. Partial writes only affect the temp file, and the temp
file is removed on any failure before the rename.

Failpoints:
- ATOMIC_WRITE_AFTER_TMP_WRITE: After writing to temp file, before fsync
- ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME: After fsync, before atomic rename
"""

import os
import time
from pathlib import Path

from callrec.utils.failpoints import maybe_fail


class StreamLimitExceeded(Exception):
    """Raised when a stream yields more bytes than the caller allowed."""

    def __init__(self, limit: int, bytes_read: int):
        self.limit = limit
        self.bytes_read = bytes_read
        super().__init__(f"stream exceeded {limit} bytes (read {bytes_read})")


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, handling partial writes.

    Loops until all bytes are written, handling short writes and EINTR.

    Args:
        fd: File descriptor to write to.
        data: Bytes to write.

    Raises:
        OSError: If write fails or returns 0 bytes unexpectedly.
    """
    total_written = 0
    data_len = len(data)

    while total_written < data_len:
        try:
            written = os.write(fd, data[total_written:])
            if written == 0:
                raise OSError("os.write() returned 0 bytes unexpectedly")
            total_written += written
        except InterruptedError:
            continue


def _remove_quietly(path: Path) -> None:
    try:
        os.remove(path)
    except OSError:
        pass  # Best-effort cleanup


def atomic_write_bytes(
    final_path: str | Path,
    data: bytes,
    temp_suffix: str = ".tmp",
) -> None:
    """Atomically write bytes to a file.

    Idempotent: safe to call even if temp file exists (overwrites temp).
    Never corrupts final path - atomic rename ensures all-or-nothing.

    Args:
        final_path: The target path for the final file.
        data: Bytes to write.
        temp_suffix: Suffix for the temporary file (default: ".tmp").

    Raises:
        OSError: If directory creation, write, or rename fails.
    """
    final_path = Path(final_path)
    temp_path = final_path.with_suffix(final_path.suffix + temp_suffix)

    final_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)

        maybe_fail("ATOMIC_WRITE_AFTER_TMP_WRITE")

        os.fsync(fd)
    except OSError:
        os.close(fd)
        _remove_quietly(temp_path)
        raise
    else:
        os.close(fd)

    _fsync_directory(final_path.parent)

    maybe_fail("ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME")

    # Atomic rename (POSIX guarantees atomicity)
    os.replace(temp_path, final_path)


def _fsync_directory(dir_path: Path) -> None:
    """Best-effort fsync on a directory.

    This helps ensure rename durability on some filesystems.
    Silently ignores errors as this is best-effort.

    Args:
        dir_path: Directory path to sync.
    """
    try:
        fd = os.open(dir_path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except (OSError, AttributeError):
        # O_DIRECTORY may not be available on all platforms
        pass


def atomic_stream_to_file(
    stream,
    final_path: str | Path,
    temp_suffix: str = ".tmp",
    chunk_size: int = 65536,
    max_bytes: int | None = None,
) -> int:
    """Atomically write a stream to a file.

    Used to buffer multipart uploads to disk. The byte count is checked after
    every chunk, so an oversize stream is rejected before it is fully read.

    Args:
        stream: File-like object with read() method.
        final_path: Target path for the output file.
        temp_suffix: Suffix for the temporary file (default: ".tmp").
        chunk_size: Buffer size for reading (default: 64KB).
        max_bytes: Optional ceiling on the number of bytes accepted.

    Returns:
        Total bytes written.

    Raises:
        StreamLimitExceeded: If the stream yields more than max_bytes.
        OSError: If write or rename fails.
    """
    final_path = Path(final_path)
    temp_path = final_path.with_suffix(final_path.suffix + temp_suffix)

    final_path.parent.mkdir(parents=True, exist_ok=True)

    total_bytes = 0
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            total_bytes += len(chunk)
            if max_bytes is not None and total_bytes > max_bytes:
                raise StreamLimitExceeded(max_bytes, total_bytes)
            _write_all(fd, chunk)

        os.fsync(fd)
    except BaseException:
        # Covers StreamLimitExceeded, OSError and caller disconnects alike
        os.close(fd)
        _remove_quietly(temp_path)
        raise
    else:
        os.close(fd)

    os.replace(temp_path, final_path)

    return total_bytes


def cleanup_orphan_temp_files(
    directory: str | Path,
    pattern: str = "*.tmp",
    older_than_seconds: float | None = None,
) -> int:
    """Clean up orphan temp files in a directory.

    Called during startup to remove files left behind by a crashed process.

    Args:
        directory: Directory to scan for temp files.
        pattern: Glob pattern to match (default: "*.tmp").
        older_than_seconds: If given, only files whose mtime is at least this
            old are removed (protects files owned by sibling worker processes).

    Returns:
        Number of files removed.
    """
    directory = Path(directory)
    removed = 0

    if not directory.exists():
        return 0

    cutoff = None if older_than_seconds is None else time.time() - older_than_seconds

    for temp_file in directory.glob(pattern):
        try:
            if cutoff is not None and temp_file.stat().st_mtime > cutoff:
                continue
            temp_file.unlink()
            removed += 1
        except OSError:
            pass  # Best-effort cleanup

    return removed
