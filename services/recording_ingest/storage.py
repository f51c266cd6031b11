"""Call Recording Ingest - Object storage adapters.

Two ObjectStore implementations:
- S3ObjectStore: S3-compatible remote storage via boto3 put_object
- LocalObjectStore: atomic writes under config.RECORDINGS_DIR, served by the API

upload_recording() is the uploader stage: it builds a unique object name,
calls the store, and turns every provider failure into UploadFailed.
Nothing here retries; clients re-submit on UploadFailed.
"""

from __future__ import annotations

import logging
import time
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from callrec import config
from callrec.utils.atomic_io import atomic_write_bytes
from callrec.utils.hashing import short_digest
from callrec.utils.media import extension_for
from callrec.utils.paths import recording_object_path
from services.recording_ingest.errors import UploadFailed
from services.recording_ingest.normalizer import SourceEncoding

if TYPE_CHECKING:
    from services.recording_ingest.normalizer import RecordingPayload
    from services.recording_ingest.ports import ObjectStore

logger = logging.getLogger(__name__)

_SOURCE_TAGS = {
    SourceEncoding.MULTIPART: "web_call",
    SourceEncoding.BASE64_JSON: "mobile_call",
}


def _join_key(prefix: str | None, filename: str) -> str:
    prefix = (prefix or "").strip("/")
    return f"{prefix}/{filename}" if prefix else filename


class S3ObjectStore:
    """S3-compatible object store (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(
        self,
        client: Any,
        bucket: str,
        public_base_url: str | None = None,
        prefix: str | None = None,
    ):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None
        self.prefix = prefix

    @classmethod
    def from_config(cls) -> S3ObjectStore:
        """Build a store from CALLREC_S3_* settings.

        Raises:
            ValueError: If no bucket is configured.
        """
        if not config.S3_BUCKET:
            raise ValueError("CALLREC_S3_BUCKET must be set for the s3 storage backend")

        client = boto3.client(
            "s3",
            endpoint_url=config.S3_ENDPOINT_URL,
            region_name=config.S3_REGION,
            config=BotoConfig(
                connect_timeout=config.S3_CONNECT_TIMEOUT_SECONDS,
                read_timeout=config.S3_READ_TIMEOUT_SECONDS,
                retries={"max_attempts": 0},
                signature_version="s3v4",
            ),
        )
        return cls(
            client,
            bucket=config.S3_BUCKET,
            public_base_url=config.S3_PUBLIC_BASE_URL,
            prefix=config.STORAGE_PREFIX,
        )

    def object_url(self, key: str) -> str:
        """Public URL of an object key."""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        endpoint = self.client.meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{self.bucket}/{key}"

    def put(self, data: bytes, content_type: str, filename: str) -> str:
        """Upload bytes and return the object's public URL.

        Raises:
            ClientError, BotoCoreError: On provider or transport failure.
        """
        key = _join_key(self.prefix, filename)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        return self.object_url(key)


class LocalObjectStore:
    """Filesystem object store for single-host deployments and development."""

    def __init__(
        self,
        root: Path | None = None,
        base_url: str | None = None,
        prefix: str | None = None,
    ):
        self.root = Path(root) if root is not None else config.RECORDINGS_DIR
        self.base_url = (base_url or config.RECORDINGS_BASE_URL or "").rstrip("/")
        self.prefix = prefix if prefix is not None else config.STORAGE_PREFIX

    @classmethod
    def from_config(cls) -> LocalObjectStore:
        return cls()

    def put(self, data: bytes, content_type: str, filename: str) -> str:
        """Atomically write bytes and return the URL they are served under.

        Raises:
            OSError: If the write fails.
        """
        key = _join_key(self.prefix, filename)
        atomic_write_bytes(recording_object_path(key, self.root), data)
        return f"{self.base_url}/{key}"


def create_object_store(backend: str | None = None) -> ObjectStore:
    """Create the configured object store ("local" or "s3")."""
    backend = (backend or config.STORAGE_BACKEND).lower()
    if backend == "s3":
        return S3ObjectStore.from_config()
    if backend == "local":
        return LocalObjectStore.from_config()
    raise ValueError(f"Unknown storage backend: {backend!r}")


def build_object_name(payload: RecordingPayload, file_hash: str, lead_id: str) -> str:
    """Unique object name for a recording.

    Format: {web_call|mobile_call}_{lead_id}_{epoch_ms}_{hash8}_{nonce}.{ext}
    The nonce keeps two uploads of identical bytes on distinct objects.
    """
    tag = _SOURCE_TAGS[payload.source_encoding]
    ext = extension_for(payload.declared_media_type, payload.declared_filename)
    safe_lead = "".join(c if c.isalnum() or c in "-_" else "-" for c in lead_id)
    epoch_ms = int(time.time() * 1000)
    nonce = uuid.uuid4().hex[:8]
    return f"{tag}_{safe_lead}_{epoch_ms}_{short_digest(file_hash)}_{nonce}.{ext}"


def upload_recording(
    store: ObjectStore,
    payload: RecordingPayload,
    file_hash: str,
    lead_id: str,
) -> str:
    """Push a novel recording to object storage.

    Args:
        store: Object store collaborator.
        payload: Normalized recording.
        file_hash: Content digest (used in the object name).
        lead_id: Lead the recording belongs to (used in the object name).

    Returns:
        Public locator (URL) of the stored object.

    Raises:
        UploadFailed: On any storage-provider or transport error.
    """
    object_name = build_object_name(payload, file_hash, lead_id)
    started = time.monotonic()
    try:
        url = store.put(payload.raw_bytes, payload.declared_media_type, object_name)
    except ClientError as e:
        code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.warning("Object store rejected %s: %s", object_name, code)
        raise UploadFailed(f"storage provider error {code}") from e
    except (BotoCoreError, OSError) as e:
        logger.warning("Object store transport failure for %s: %s", object_name, e)
        raise UploadFailed(str(e)) from e
    except Exception as e:
        logger.exception("Unexpected object store failure for %s", object_name)
        raise UploadFailed(str(e)) from e

    logger.info(
        "Uploaded recording %s (%d bytes) in %.1f ms",
        object_name,
        payload.size,
        (time.monotonic() - started) * 1000,
    )
    return url
