"""Call Recording Ingest - Ingestion orchestrator.

Core ingest business logic:
- Field validation and lead authorization before any file processing
- Normalization of multipart / base64 JSON payloads
- Content hashing and duplicate resolution before upload
- Upload to object storage, then call-log insert
- Unconditional cleanup of buffered temp files

State progression of one attempt:
    received -> validated -> authorized -> normalized -> hashed
      -> {duplicate_rejected | uploading -> persisted} -> cleaned_up

Every path, including failures, ends in cleaned_up.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from callrec import config
from callrec.audit import AuditLogger, log_ingest_event
from callrec.utils.failpoints import maybe_fail
from callrec.utils.hashing import sha256_bytes
from services.recording_ingest.dedup import Duplicate, Novel, resolve_duplicate
from services.recording_ingest.errors import (
    CleanupFailed,
    DuplicateContent,
    Forbidden,
    IngestError,
    LeadNotFound,
    PersistenceFailed,
    ValidationError,
)
from services.recording_ingest.normalizer import RecordingSource, normalize
from services.recording_ingest.ports import DuplicateHashError, NewCallLog
from services.recording_ingest.storage import upload_recording

if TYPE_CHECKING:
    from callrec.models import CallLog
    from callrec.schemas import CallLogFields, CallQuality
    from services.recording_ingest.dedup import DuplicateVerdict
    from services.recording_ingest.ports import (
        CallLogRepository,
        LeadAuthorizer,
        ObjectStore,
        TempFileProvider,
    )

logger = logging.getLogger(__name__)


# --- Field Normalization ---

_OUTCOME_MAPPING = {
    "Follow-up": "Follow-up Required",
    "Follow up": "Follow-up Required",
    "Followup": "Follow-up Required",
    "Follow-up Required": "Follow-up Required",
    "Not Interested": "Not Interested",
    "Interested": "Interested",
    "Hot Lead": "Hot Lead",
    "Converted": "Converted",
    "Positive": "Positive",
    "Neutral": "Neutral",
    "Negative": "Negative",
}

_AUDIO_QUALITY_MAPPING = {"Good": "Clear"}


def normalize_outcome(outcome: str | None) -> str | None:
    """Map client outcome labels onto the stored vocabulary (unknown -> Neutral)."""
    if not outcome:
        return None
    return _OUTCOME_MAPPING.get(outcome.strip(), "Neutral")


def normalize_call_quality(call_quality: CallQuality | None) -> dict[str, Any] | None:
    """Serialize call quality for storage, mapping legacy audioQuality labels."""
    if call_quality is None:
        return None
    data = call_quality.model_dump(by_alias=True, exclude_none=True)
    audio_quality = data.get("audioQuality")
    if audio_quality in _AUDIO_QUALITY_MAPPING:
        data["audioQuality"] = _AUDIO_QUALITY_MAPPING[audio_quality]
    return data or None


# --- Request / State Types ---


class IngestState(StrEnum):
    """Lifecycle states of one ingestion attempt."""

    RECEIVED = "received"
    VALIDATED = "validated"
    AUTHORIZED = "authorized"
    NORMALIZED = "normalized"
    HASHED = "hashed"
    DUPLICATE_REJECTED = "duplicate_rejected"
    UPLOADING = "uploading"
    PERSISTED = "persisted"
    CLEANED_UP = "cleaned_up"


@dataclass(frozen=True)
class AuthorizationContext:
    """Who is asking, and for which lead. Evaluated once, never stored."""

    caller_id: str
    caller_role: str
    lead_id: str

    @property
    def is_elevated(self) -> bool:
        return self.caller_role.lower() in config.ELEVATED_ROLES


@dataclass
class IngestionRequest:
    """One call-log-with-recording submission."""

    caller_id: str
    caller_role: str
    fields: CallLogFields
    source: RecordingSource


@dataclass
class _IngestAttempt:
    """Bookkeeping for a single attempt: current state and owned temp files."""

    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: IngestState = IngestState.RECEIVED
    temp_paths: list[Path] = field(default_factory=list)

    def advance(self, state: IngestState) -> None:
        logger.debug("ingest %s: %s -> %s", self.attempt_id, self.state, state)
        self.state = state


# --- Stages ---


def validate_call_fields(fields: CallLogFields) -> None:
    """Require leadId and callStatus.

    Raises:
        ValidationError: If either is missing or blank.
    """
    if not (fields.lead_id or "").strip() or not (fields.call_status or "").strip():
        raise ValidationError()


def authorize(authorizer: LeadAuthorizer, context: AuthorizationContext) -> None:
    """Gate writes on lead ownership (or an elevated role).

    Raises:
        LeadNotFound: If the lead does not exist.
        Forbidden: If the caller neither owns the lead nor holds an elevated role.
    """
    if not authorizer.lead_exists(context.lead_id):
        raise LeadNotFound(context.lead_id)
    if context.is_elevated:
        return
    if not authorizer.is_lead_owned_by(context.lead_id, context.caller_id):
        raise Forbidden(context.caller_id, context.lead_id)


def _duplicate_error(verdict: Duplicate, caller_id: str) -> DuplicateContent:
    return DuplicateContent(
        file_hash=verdict.file_hash,
        existing_record_id=verdict.existing_record_id,
        existing_uploaded_at=verdict.existing_uploaded_at,
        uploaded_by_caller=verdict.existing_employee_id == caller_id,
    )


def _cleanup(
    attempt: _IngestAttempt,
    temp_files: TempFileProvider | None,
    audit: AuditLogger,
) -> None:
    """Remove every temp file the attempt owns. Never raises."""
    if temp_files is not None:
        for path in attempt.temp_paths:
            try:
                temp_files.remove_temp(path)
            except Exception as e:
                failure = CleanupFailed(str(path), str(e))
                logger.warning("%s", failure.message, exc_info=True)
                audit(
                    "cleanup_failed",
                    {"attempt_id": attempt.attempt_id, "path": str(path), "reason": str(e)},
                )
    attempt.temp_paths.clear()
    attempt.advance(IngestState.CLEANED_UP)


def _report_orphan(
    audit: AuditLogger,
    attempt: _IngestAttempt,
    recording_url: str,
    file_hash: str,
    request: IngestionRequest,
    reason: str,
) -> None:
    """Log an uploaded object that has no call log referencing it."""
    logger.error(
        "Orphaned recording object url=%s file_hash=%s lead_id=%s caller_id=%s reason=%s",
        recording_url,
        file_hash,
        request.fields.lead_id,
        request.caller_id,
        reason,
    )
    audit(
        "orphaned_object",
        {
            "attempt_id": attempt.attempt_id,
            "recording_url": recording_url,
            "file_hash": file_hash,
            "lead_id": request.fields.lead_id,
            "caller_id": request.caller_id,
            "reason": reason,
        },
    )


def build_new_call_log(
    request: IngestionRequest,
    recording_url: str,
    file_hash: str,
) -> NewCallLog:
    """Assemble the call-log insert from the submitted fields."""
    fields = request.fields
    return NewCallLog(
        lead_id=fields.lead_id,
        employee_id=request.caller_id,
        uploaded_by=request.caller_id,
        call_status=fields.call_status,
        notes=fields.notes,
        call_duration=fields.call_duration,
        outcome=normalize_outcome(fields.outcome),
        follow_up_required=fields.follow_up_required,
        follow_up_date=fields.follow_up_date,
        call_quality=normalize_call_quality(fields.call_quality),
        sim_card_id=fields.sim_card_id or None,
        recording_url=recording_url,
        recording_duration=fields.call_duration or None,
        file_hash=file_hash,
    )


# --- Orchestrator ---


def ingest_recording(
    request: IngestionRequest,
    *,
    repository: CallLogRepository,
    authorizer: LeadAuthorizer,
    object_store: ObjectStore,
    temp_files: TempFileProvider | None = None,
    audit: AuditLogger = log_ingest_event,
    max_bytes: int | None = None,
) -> CallLog:
    """Ingest one call recording and create its call log.

    Args:
        request: Caller identity, call fields and recording source.
        repository: Call-log persistence collaborator.
        authorizer: Lead ownership collaborator.
        object_store: Remote object storage collaborator.
        temp_files: Temp-file provider (needed for multipart sources).
        audit: Structured audit logger (masks sensitive fields).
        max_bytes: Recording size ceiling (defaults to config.MAX_RECORDING_BYTES).

    Returns:
        The persisted CallLog.

    Raises:
        ValidationError: leadId or callStatus missing.
        LeadNotFound: Referenced lead does not exist.
        Forbidden: Caller may not log calls for the lead.
        MalformedUpload: Recording missing, empty or badly encoded.
        PayloadTooLarge: Recording over the size ceiling.
        DuplicateContent: Identical recording already stored.
        UploadFailed: Object storage failure.
        PersistenceFailed: Call-log insert failed after the upload.
    """
    limit = max_bytes if max_bytes is not None else config.MAX_RECORDING_BYTES
    attempt = _IngestAttempt()

    try:
        validate_call_fields(request.fields)
        attempt.advance(IngestState.VALIDATED)

        context = AuthorizationContext(
            caller_id=request.caller_id,
            caller_role=request.caller_role,
            lead_id=request.fields.lead_id,
        )
        authorize(authorizer, context)
        attempt.advance(IngestState.AUTHORIZED)

        payload = normalize(
            request.source,
            max_bytes=limit,
            temp_files=temp_files,
            on_temp_created=attempt.temp_paths.append,
        )
        attempt.advance(IngestState.NORMALIZED)

        file_hash = sha256_bytes(payload.raw_bytes)
        attempt.advance(IngestState.HASHED)

        verdict = resolve_duplicate(repository, file_hash)
        if isinstance(verdict, Duplicate):
            attempt.advance(IngestState.DUPLICATE_REJECTED)
            audit(
                "duplicate_rejected",
                {
                    "attempt_id": attempt.attempt_id,
                    "caller_id": request.caller_id,
                    "lead_id": context.lead_id,
                    "file_hash": file_hash,
                    "existing_call_log_id": verdict.existing_record_id,
                },
            )
            raise _duplicate_error(verdict, request.caller_id)

        attempt.advance(IngestState.UPLOADING)
        recording_url = upload_recording(object_store, payload, file_hash, context.lead_id)

        maybe_fail("INGEST_AFTER_UPLOAD")

        record = build_new_call_log(request, recording_url, file_hash)
        try:
            log = repository.insert_call_log(record)
        except DuplicateHashError as e:
            # Lost the race against a concurrent ingest of the same bytes
            _report_orphan(
                audit, attempt, recording_url, file_hash, request, "duplicate hash on insert"
            )
            winner = resolve_duplicate(repository, file_hash)
            if isinstance(winner, Novel):
                raise PersistenceFailed(str(e), recording_url) from e
            attempt.advance(IngestState.DUPLICATE_REJECTED)
            raise _duplicate_error(winner, request.caller_id) from e
        except Exception as e:
            _report_orphan(audit, attempt, recording_url, file_hash, request, str(e))
            raise PersistenceFailed(str(e), recording_url) from e

        attempt.advance(IngestState.PERSISTED)
        audit(
            "recording_stored",
            {
                "attempt_id": attempt.attempt_id,
                "call_log_id": log.id,
                "caller_id": request.caller_id,
                "lead_id": context.lead_id,
                "file_hash": file_hash,
                "recording_url": recording_url,
                "size_bytes": payload.size,
                "source_encoding": str(payload.source_encoding),
            },
        )
        return log

    except IngestError as e:
        if attempt.state is not IngestState.DUPLICATE_REJECTED:
            audit(
                "ingest_failed",
                {
                    "attempt_id": attempt.attempt_id,
                    "caller_id": request.caller_id,
                    "lead_id": request.fields.lead_id,
                    "state": str(attempt.state),
                    "error_code": str(e.error_code),
                },
            )
        raise
    finally:
        _cleanup(attempt, temp_files, audit)


# --- Duplicate Pre-check ---


@dataclass(frozen=True)
class DuplicateCheckResult:
    """Outcome of hashing a recording without storing it."""

    file_hash: str
    verdict: DuplicateVerdict


def check_recording_duplicate(
    source: RecordingSource,
    *,
    repository: CallLogRepository,
    temp_files: TempFileProvider | None = None,
    audit: AuditLogger = log_ingest_event,
    max_bytes: int | None = None,
) -> DuplicateCheckResult:
    """Hash a recording and report whether it is already stored.

    Nothing is uploaded or persisted; buffered temp files are always removed.

    Raises:
        MalformedUpload, PayloadTooLarge.
    """
    limit = max_bytes if max_bytes is not None else config.MAX_RECORDING_BYTES
    attempt = _IngestAttempt()
    try:
        payload = normalize(
            source,
            max_bytes=limit,
            temp_files=temp_files,
            on_temp_created=attempt.temp_paths.append,
        )
        attempt.advance(IngestState.NORMALIZED)
        file_hash = sha256_bytes(payload.raw_bytes)
        attempt.advance(IngestState.HASHED)
        return DuplicateCheckResult(
            file_hash=file_hash, verdict=resolve_duplicate(repository, file_hash)
        )
    finally:
        _cleanup(attempt, temp_files, audit)
