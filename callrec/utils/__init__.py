"""Call Recording Ingest - Utility modules."""

from callrec.utils.atomic_io import (
    StreamLimitExceeded,
    atomic_stream_to_file,
    atomic_write_bytes,
    cleanup_orphan_temp_files,
)
from callrec.utils.hashing import sha256_bytes, sha256_text, short_digest
from callrec.utils.media import extension_for, normalize_media_type
from callrec.utils.paths import recording_object_path, upload_temp_path

__all__ = [
    # atomic_io
    "StreamLimitExceeded",
    "atomic_stream_to_file",
    "atomic_write_bytes",
    "cleanup_orphan_temp_files",
    # hashing
    "sha256_bytes",
    "sha256_text",
    "short_digest",
    # media
    "extension_for",
    "normalize_media_type",
    # paths
    "recording_object_path",
    "upload_temp_path",
]
