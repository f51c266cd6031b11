"""Call Recording Ingest - Payload normalization.

Turns either transport encoding into one RecordingPayload:
- multipart: binary part spooled through a temp file, then read into memory
- base64json: the JSON body's audioData decoded in memory (no disk writes)

The normalizer knows nothing about hashing or storage.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from callrec.utils.media import normalize_media_type
from services.recording_ingest.errors import MalformedUpload, PayloadTooLarge, ValidationError

if TYPE_CHECKING:
    from callrec.schemas import MobileCallLogRequest
    from services.recording_ingest.ports import TempFileProvider

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "recording"

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


class SourceEncoding(StrEnum):
    """Transport encoding a recording arrived in."""

    MULTIPART = "multipart"
    BASE64_JSON = "base64json"


@dataclass(frozen=True)
class RecordingPayload:
    """Canonical in-memory recording, independent of transport."""

    source_encoding: SourceEncoding
    raw_bytes: bytes
    declared_filename: str
    declared_media_type: str

    @property
    def size(self) -> int:
        return len(self.raw_bytes)


@dataclass
class MultipartSource:
    """Binary part of a multipart request (stream is None if the part is absent)."""

    stream: BinaryIO | None
    filename: str | None = None
    content_type: str | None = None
    declared_size: int | None = None


@dataclass
class Base64JsonSource:
    """Mobile JSON body carrying base64 audio."""

    body: MobileCallLogRequest


RecordingSource = MultipartSource | Base64JsonSource


def normalize(
    source: RecordingSource,
    *,
    max_bytes: int,
    temp_files: TempFileProvider | None = None,
    on_temp_created: Callable[[Path], None] | None = None,
) -> RecordingPayload:
    """Normalize a recording source into a RecordingPayload.

    Args:
        source: MultipartSource or Base64JsonSource.
        max_bytes: Ceiling on decoded recording size.
        temp_files: Temp-file provider (required for multipart sources).
        on_temp_created: Called with each temp path as soon as it exists;
            the callee becomes responsible for removing it.

    Returns:
        The normalized payload.

    Raises:
        MalformedUpload, PayloadTooLarge, ValidationError.
    """
    if isinstance(source, MultipartSource):
        if temp_files is None:
            raise TypeError("multipart normalization requires a temp-file provider")
        return normalize_multipart(source, temp_files, max_bytes, on_temp_created)
    if isinstance(source, Base64JsonSource):
        return normalize_base64_json(source, max_bytes)
    raise TypeError(f"Unsupported recording source: {type(source).__name__}")


def normalize_multipart(
    source: MultipartSource,
    temp_files: TempFileProvider,
    max_bytes: int,
    on_temp_created: Callable[[Path], None] | None = None,
) -> RecordingPayload:
    """Normalize a multipart binary part.

    The declared part size is checked before anything is buffered; the byte
    count is enforced again while spooling.
    """
    if source.stream is None:
        raise MalformedUpload("No recording file uploaded")

    if source.declared_size is not None and source.declared_size > max_bytes:
        raise PayloadTooLarge(max_bytes, source.declared_size)

    temp_path = temp_files.buffer_to_temp(source.stream, max_bytes=max_bytes)
    if on_temp_created is not None:
        on_temp_created(temp_path)

    raw_bytes = Path(temp_path).read_bytes()
    if not raw_bytes:
        raise MalformedUpload("Recording file is empty")

    filename = source.filename or DEFAULT_FILENAME
    return RecordingPayload(
        source_encoding=SourceEncoding.MULTIPART,
        raw_bytes=raw_bytes,
        declared_filename=filename,
        declared_media_type=normalize_media_type(source.content_type, filename),
    )


def normalize_base64_json(source: Base64JsonSource, max_bytes: int) -> RecordingPayload:
    """Normalize a mobile JSON body. Pure transformation, no disk I/O."""
    body = source.body
    if not body.lead_id or not body.call_status:
        raise ValidationError()

    raw_bytes = decode_audio_data(body.audio_data, max_bytes)

    filename = body.file_name or DEFAULT_FILENAME
    return RecordingPayload(
        source_encoding=SourceEncoding.BASE64_JSON,
        raw_bytes=raw_bytes,
        declared_filename=filename,
        declared_media_type=normalize_media_type(body.audio_format, body.file_name),
    )


def estimate_decoded_size(encoded: str) -> int:
    """Upper bound on the decoded size of a base64 string (no decoding)."""
    padding = len(encoded) - len(encoded.rstrip("="))
    return max(0, (len(encoded) * 3) // 4 - padding)


def decode_audio_data(audio_data: str | None, max_bytes: int) -> bytes:
    """Decode the audioData field of a mobile request.

    Accepts standard or URL-safe alphabets, embedded whitespace, missing
    padding, and an optional data-URL prefix ("data:audio/mpeg;base64,").

    Args:
        audio_data: Base64 text as sent by the client.
        max_bytes: Ceiling on the decoded size.

    Returns:
        Decoded recording bytes.

    Raises:
        MalformedUpload: If the field is missing, empty, or not valid base64.
        PayloadTooLarge: If the decoded size would exceed max_bytes.
    """
    if audio_data is None or not audio_data.strip():
        raise MalformedUpload("audioData is required")

    encoded = _WHITESPACE.sub("", _DATA_URL_PREFIX.sub("", audio_data.strip()))
    encoded += "=" * (-len(encoded) % 4)

    estimated = estimate_decoded_size(encoded)
    if estimated > max_bytes:
        raise PayloadTooLarge(max_bytes, estimated)

    altchars = b"-_" if ("-" in encoded or "_" in encoded) else None
    try:
        raw_bytes = base64.b64decode(encoded, altchars=altchars, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedUpload(f"audioData is not valid base64: {e}") from e

    if not raw_bytes:
        raise MalformedUpload("audioData decoded to an empty recording")

    logger.debug("Decoded base64 audio payload (%d bytes)", len(raw_bytes))
    return raw_bytes
