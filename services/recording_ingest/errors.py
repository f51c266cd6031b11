"""Call Recording Ingest - Ingest error taxonomy.

Every failure the ingest pipeline surfaces to a caller is an IngestError
carrying an IngestErrorCode. CleanupFailed exists for logging only; it is
never raised out of the orchestrator.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum


class IngestErrorCode(StrEnum):
    """Error codes for the recording ingest pipeline."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    MALFORMED_UPLOAD = "MALFORMED_UPLOAD"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    LEAD_NOT_FOUND = "LEAD_NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    DUPLICATE_CONTENT = "DUPLICATE_CONTENT"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"
    CLEANUP_FAILED = "CLEANUP_FAILED"


class IngestError(Exception):
    """Base exception for ingest errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class ValidationError(IngestError):
    """Required call fields are missing or malformed."""

    def __init__(self, message: str = "leadId and callStatus required"):
        super().__init__(IngestErrorCode.VALIDATION_ERROR, message)


class MalformedUpload(IngestError):
    """Recording payload is absent, empty or not validly encoded."""

    def __init__(self, reason: str):
        super().__init__(IngestErrorCode.MALFORMED_UPLOAD, reason)


class PayloadTooLarge(IngestError):
    """Recording exceeds the configured size ceiling."""

    def __init__(self, limit: int, size: int | None = None):
        self.limit = limit
        self.size = size
        observed = f" (got at least {size} bytes)" if size is not None else ""
        super().__init__(
            IngestErrorCode.PAYLOAD_TOO_LARGE,
            f"Recording exceeds the {limit} byte limit{observed}",
        )


class LeadNotFound(IngestError):
    """Referenced lead does not exist."""

    def __init__(self, lead_id: str):
        self.lead_id = lead_id
        super().__init__(IngestErrorCode.LEAD_NOT_FOUND, f"Lead not found: {lead_id}")


class Forbidden(IngestError):
    """Caller may not log calls for the referenced lead."""

    def __init__(self, caller_id: str, lead_id: str):
        self.caller_id = caller_id
        self.lead_id = lead_id
        super().__init__(
            IngestErrorCode.FORBIDDEN,
            f"User {caller_id} is not allowed to log calls for lead {lead_id}",
        )


class DuplicateContent(IngestError):
    """Recording content is already stored on another call log."""

    def __init__(
        self,
        file_hash: str,
        existing_record_id: str,
        existing_uploaded_at: datetime,
        uploaded_by_caller: bool = True,
    ):
        self.file_hash = file_hash
        self.existing_record_id = existing_record_id
        self.existing_uploaded_at = existing_uploaded_at
        self.uploaded_by_caller = uploaded_by_caller
        super().__init__(
            IngestErrorCode.DUPLICATE_CONTENT,
            f"Content {file_hash} already stored on call log {existing_record_id}",
        )

    @property
    def details(self) -> str:
        """Caller-facing explanation for the duplicate response body."""
        if self.uploaded_by_caller:
            return "This audio file has already been uploaded. Please use a different file."
        return (
            "This audio file has already been uploaded by another user. "
            "Please use a different file."
        )


class UploadFailed(IngestError):
    """Object storage rejected or failed the upload."""

    def __init__(self, reason: str):
        super().__init__(IngestErrorCode.UPLOAD_FAILED, f"Recording upload failed: {reason}")


class PersistenceFailed(IngestError):
    """Call-log insert failed after the recording was uploaded."""

    def __init__(self, reason: str, recording_url: str | None = None):
        self.recording_url = recording_url
        super().__init__(
            IngestErrorCode.PERSISTENCE_FAILED, f"Failed to persist call log: {reason}"
        )


class CleanupFailed(IngestError):
    """A transient artifact could not be removed (logged, never surfaced)."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(IngestErrorCode.CLEANUP_FAILED, f"Cleanup failed for {path}: {reason}")
