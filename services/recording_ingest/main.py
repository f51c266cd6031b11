"""Call Recording Ingest - FastAPI application.

HTTP entry points for call-log-with-recording ingestion:
- POST /api/employee/call-log-with-recording  (multipart, web/desktop clients)
- POST /api/employee/call-log-mobile          (JSON + base64 audio, mobile clients)
- POST /api/employee/check-file-duplicate     (hash-only pre-check)

All ingest business logic lives in service.py; this module wires request
parsing, authentication, collaborators and error-to-status mapping.

Run with:
    uvicorn services.recording_ingest.main:app --reload  # dev server only
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

from callrec import config
from callrec.audit import AuditLogger, log_ingest_event
from callrec.db import init_db
from callrec.models import User
from callrec.schemas import (
    CallLogCreatedResponse,
    CallLogFields,
    CallLogResponse,
    DuplicateCheckResponse,
    DuplicateErrorResponse,
    ErrorResponse,
    ExistingCallLogSummary,
    MobileCallLogRequest,
)
from callrec.utils.atomic_io import cleanup_orphan_temp_files
from services.recording_ingest.auth import AuthenticationError, authenticate
from services.recording_ingest.dedup import Duplicate
from services.recording_ingest.errors import DuplicateContent, IngestError, IngestErrorCode
from services.recording_ingest.normalizer import Base64JsonSource, MultipartSource
from services.recording_ingest.ports import ObjectStore, TempFileProvider
from services.recording_ingest.repository import SqlCallLogRepository, SqlLeadAuthorizer
from services.recording_ingest.service import (
    IngestionRequest,
    check_recording_duplicate,
    ingest_recording,
)
from services.recording_ingest.storage import create_object_store
from services.recording_ingest.tempfiles import LocalTempFileProvider, cleanup_stale_uploads

logger = logging.getLogger(__name__)

API_PREFIX = "/api/employee"
MULTIPART_INGEST_PATH = f"{API_PREFIX}/call-log-with-recording"
MOBILE_INGEST_PATH = f"{API_PREFIX}/call-log-mobile"
DUPLICATE_CHECK_PATH = f"{API_PREFIX}/check-file-duplicate"

# Size-limited routes and whether each carries the recording base64-encoded
_SIZE_LIMITED_PATHS = {
    MULTIPART_INGEST_PATH: False,
    MOBILE_INGEST_PATH: True,
    DUPLICATE_CHECK_PATH: False,
}

MULTIPART_SUCCESS_MESSAGE = "Call log with recording saved successfully"
MOBILE_SUCCESS_MESSAGE = "Mobile call log with recording saved successfully"
MULTIPART_FAILURE_MESSAGE = "Failed to save call log with recording"
MOBILE_FAILURE_MESSAGE = "Failed to save mobile call log with recording"
DUPLICATE_CHECK_FAILURE_MESSAGE = "Failed to check file duplicate"

# --- Database Setup ---

# Module-level session factory (initialized on startup)
_session_factory = None


def get_session_factory():
    """Get the session factory.

    Raises:
        RuntimeError: If session factory not initialized (app lifespan not invoked).
    """
    global _session_factory
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. App lifespan not invoked?")
    return _session_factory


def get_db_session():
    """Dependency that provides a database session."""
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


# --- Collaborators ---

# Lazily created from config on first use
_object_store: ObjectStore | None = None


def get_object_store() -> ObjectStore:
    """Dependency that provides the configured object store."""
    global _object_store
    if _object_store is None:
        _object_store = create_object_store()
    return _object_store


def get_temp_files() -> TempFileProvider:
    """Dependency that provides the temp-file provider for multipart buffering."""
    return LocalTempFileProvider()


def get_audit_logger() -> AuditLogger:
    """Dependency that provides the audit event logger."""
    return log_ingest_event


def get_current_user(
    session: Annotated[Session, Depends(get_db_session)],
    authorization: Annotated[str | None, Header()] = None,
) -> User:
    """Dependency that resolves the authenticated caller (401 otherwise)."""
    return authenticate(session, authorization)


# --- Lifespan ---


def _configure_logging() -> None:
    """Configure root logging for the API process (no-op if already configured)."""
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _cleanup_stale_uploads_safe() -> None:
    """Clean up leftovers of a crashed process on startup (best-effort).

    Targets buffered uploads in the temp upload directory and interrupted
    atomic writes in the local recordings directory.
    """
    try:
        total_cleaned = cleanup_stale_uploads(config.UPLOAD_TMP_DIR)
        if config.RECORDINGS_DIR.exists():
            total_cleaned += cleanup_orphan_temp_files(config.RECORDINGS_DIR)
            for subdir in config.RECORDINGS_DIR.iterdir():
                if subdir.is_dir():
                    total_cleaned += cleanup_orphan_temp_files(subdir)
        if total_cleaned > 0:
            logger.info("Startup cleanup: removed %d orphan temp files", total_cleaned)
    except Exception:
        # Best-effort: never crash startup
        logger.warning("Startup cleanup failed (non-fatal)", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Initializes database on startup and cleans up orphan temp files.
    """
    _configure_logging()

    global _session_factory
    if _session_factory is None:
        _, _session_factory = init_db()

    _cleanup_stale_uploads_safe()

    yield


# --- FastAPI App ---


app = FastAPI(
    title="Call Recording Ingest API",
    description="Call log ingestion with deduplicated recording storage.",
    version="0.1.0",
    lifespan=lifespan,
)

if config.STORAGE_BACKEND == "local":
    app.mount(
        "/recordings",
        StaticFiles(directory=config.RECORDINGS_DIR, check_dir=False),
        name="recordings",
    )


@app.middleware("http")
async def reject_oversize_requests(request: Request, call_next):
    """Reject ingest requests whose declared body exceeds the ceiling.

    Runs before the body is read; chunked requests fall through to the
    byte-count checks in the normalizer.
    """
    if request.method == "POST" and request.url.path in _SIZE_LIMITED_PATHS:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit():
            limit = config.max_request_bytes(
                base64_encoded=_SIZE_LIMITED_PATHS[request.url.path]
            )
            if int(content_length) > limit:
                logger.info(
                    "Rejected %s: Content-Length %s exceeds %d",
                    request.url.path,
                    content_length,
                    limit,
                )
                return make_error_response(
                    IngestErrorCode.PAYLOAD_TOO_LARGE,
                    "Recording exceeds maximum size",
                    f"Request body of {content_length} bytes exceeds the {limit} byte limit",
                )
    return await call_next(request)


# --- Error Handling ---


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes.

    - VALIDATION_ERROR, MALFORMED_UPLOAD, DUPLICATE_CONTENT -> 400
    - FORBIDDEN -> 403
    - LEAD_NOT_FOUND -> 404
    - PAYLOAD_TOO_LARGE -> 413
    - UPLOAD_FAILED, PERSISTENCE_FAILED -> 500
    """
    if error_code in (
        IngestErrorCode.VALIDATION_ERROR,
        IngestErrorCode.MALFORMED_UPLOAD,
        IngestErrorCode.DUPLICATE_CONTENT,
    ):
        return 400
    if error_code == IngestErrorCode.FORBIDDEN:
        return 403
    if error_code == IngestErrorCode.LEAD_NOT_FOUND:
        return 404
    if error_code == IngestErrorCode.PAYLOAD_TOO_LARGE:
        return 413
    return 500


def make_error_response(error_code: str, error: str, details: str | None = None) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(error=error, details=details).model_dump(
            by_alias=True, exclude_none=True
        ),
    )


def ingest_error_response(e: IngestError, failure_message: str) -> JSONResponse:
    """Build the response body for an IngestError raised by an endpoint."""
    if isinstance(e, DuplicateContent):
        return JSONResponse(
            status_code=error_code_to_status(e.error_code),
            content=DuplicateErrorResponse(
                details=e.details,
                existing_call_log_id=e.existing_record_id,
                uploaded_at=e.existing_uploaded_at,
            ).model_dump(mode="json", by_alias=True),
        )
    if e.error_code == IngestErrorCode.VALIDATION_ERROR:
        return make_error_response(e.error_code, e.message)
    if e.error_code == IngestErrorCode.FORBIDDEN:
        return make_error_response(e.error_code, "Not allowed to log call for this lead")
    if e.error_code == IngestErrorCode.LEAD_NOT_FOUND:
        return make_error_response(e.error_code, "Lead not found")
    if e.error_code == IngestErrorCode.MALFORMED_UPLOAD:
        return make_error_response(e.error_code, "Invalid recording payload", e.message)
    if e.error_code == IngestErrorCode.PAYLOAD_TOO_LARGE:
        return make_error_response(e.error_code, "Recording exceeds maximum size", e.message)
    return make_error_response(e.error_code, failure_message, e.message)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(
        status_code=401,
        content=ErrorResponse(error=exc.message).model_dump(by_alias=True, exclude_none=True),
    )


def _created_response(log, message: str) -> JSONResponse:
    body = CallLogCreatedResponse(
        message=message,
        log=CallLogResponse.model_validate(log),
        recording_url=log.recording_url,
    )
    return JSONResponse(status_code=201, content=body.model_dump(mode="json", by_alias=True))


def _run_ingest(
    ingestion: IngestionRequest,
    session: Session,
    object_store: ObjectStore,
    temp_files: TempFileProvider | None,
    audit: AuditLogger,
    success_message: str,
    failure_message: str,
) -> JSONResponse:
    try:
        log = ingest_recording(
            ingestion,
            repository=SqlCallLogRepository(session),
            authorizer=SqlLeadAuthorizer(session),
            object_store=object_store,
            temp_files=temp_files,
            audit=audit,
        )
        return _created_response(log, success_message)
    except IngestError as e:
        return ingest_error_response(e, failure_message)
    except Exception:
        # Log full exception server-side, return generic message to client
        logger.exception("Unexpected error during recording ingest")
        return make_error_response(
            IngestErrorCode.PERSISTENCE_FAILED,
            failure_message,
            "An unexpected error occurred during ingest",
        )


# --- Endpoints ---

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Validation, malformed upload or duplicate"},
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Caller may not log calls for this lead"},
    404: {"model": ErrorResponse, "description": "Lead not found"},
    413: {"model": ErrorResponse, "description": "Recording exceeds maximum size"},
    500: {"model": ErrorResponse, "description": "Upload or persistence failed"},
}


def _multipart_call_fields(form_values: dict[str, str | None]) -> CallLogFields:
    """Validate multipart form fields into CallLogFields.

    Blank form values count as absent; callQuality arrives as a JSON string.

    Raises:
        ValueError: If a field has the wrong type or callQuality is not a
            JSON object (pydantic.ValidationError included).
    """
    values: dict[str, Any] = {k: v for k, v in form_values.items() if v not in (None, "")}
    call_quality = values.get("callQuality")
    if call_quality is not None:
        try:
            parsed = json.loads(call_quality)
        except json.JSONDecodeError as e:
            raise ValueError(f"callQuality is not valid JSON: {e.msg}") from e
        if not isinstance(parsed, dict):
            raise ValueError("callQuality must be a JSON object")
        values["callQuality"] = parsed
    return CallLogFields.model_validate(values)


@app.post(
    MULTIPART_INGEST_PATH,
    status_code=201,
    response_model=CallLogCreatedResponse,
    responses=_ERROR_RESPONSES,
    summary="Save a call log with a recording (multipart)",
    description="Web/desktop clients upload the recording as a multipart binary part.",
)
def create_call_log_with_recording(
    user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_db_session)],
    object_store: Annotated[ObjectStore, Depends(get_object_store)],
    temp_files: Annotated[TempFileProvider, Depends(get_temp_files)],
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
    recording: Annotated[UploadFile | None, File(description="Call recording")] = None,
    lead_id: Annotated[str | None, Form(alias="leadId")] = None,
    call_status: Annotated[str | None, Form(alias="callStatus")] = None,
    notes: Annotated[str | None, Form()] = None,
    call_duration: Annotated[str | None, Form(alias="callDuration")] = None,
    outcome: Annotated[str | None, Form()] = None,
    follow_up_required: Annotated[str | None, Form(alias="followUpRequired")] = None,
    follow_up_date: Annotated[str | None, Form(alias="followUpDate")] = None,
    call_quality: Annotated[str | None, Form(alias="callQuality")] = None,
    sim_card_id: Annotated[str | None, Form(alias="simCardId")] = None,
):
    """Save a call log and its multipart recording.

    Form fields mirror the mobile JSON body; callQuality is a JSON object string.
    """
    try:
        fields = _multipart_call_fields(
            {
                "leadId": lead_id,
                "callStatus": call_status,
                "notes": notes,
                "callDuration": call_duration,
                "outcome": outcome,
                "followUpRequired": follow_up_required,
                "followUpDate": follow_up_date,
                "callQuality": call_quality,
                "simCardId": sim_card_id,
            }
        )
    except ValueError as e:
        # pydantic.ValidationError is a ValueError
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(error="Invalid call log fields", details=str(e)).model_dump(
                by_alias=True, exclude_none=True
            ),
        )

    source = MultipartSource(
        stream=recording.file if recording is not None else None,
        filename=recording.filename if recording is not None else None,
        content_type=recording.content_type if recording is not None else None,
        declared_size=recording.size if recording is not None else None,
    )
    ingestion = IngestionRequest(
        caller_id=user.id, caller_role=user.role, fields=fields, source=source
    )
    return _run_ingest(
        ingestion,
        session,
        object_store,
        temp_files,
        audit,
        MULTIPART_SUCCESS_MESSAGE,
        MULTIPART_FAILURE_MESSAGE,
    )


@app.post(
    MOBILE_INGEST_PATH,
    status_code=201,
    response_model=CallLogCreatedResponse,
    responses=_ERROR_RESPONSES,
    summary="Save a call log with a recording (mobile JSON)",
    description="Mobile clients send the recording base64-encoded in audioData.",
)
def create_mobile_call_log(
    body: MobileCallLogRequest,
    user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_db_session)],
    object_store: Annotated[ObjectStore, Depends(get_object_store)],
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
):
    """Save a call log and its base64-encoded recording."""
    ingestion = IngestionRequest(
        caller_id=user.id,
        caller_role=user.role,
        fields=body,
        source=Base64JsonSource(body=body),
    )
    return _run_ingest(
        ingestion,
        session,
        object_store,
        None,
        audit,
        MOBILE_SUCCESS_MESSAGE,
        MOBILE_FAILURE_MESSAGE,
    )


@app.post(
    DUPLICATE_CHECK_PATH,
    response_model=DuplicateCheckResponse,
    responses={
        400: {"model": ErrorResponse, "description": "No recording provided"},
        401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
        413: {"model": ErrorResponse, "description": "Recording exceeds maximum size"},
        500: {"model": ErrorResponse, "description": "Duplicate check failed"},
    },
    summary="Check whether a recording was already uploaded",
    description="Hashes the recording and looks it up; nothing is stored.",
)
def check_file_duplicate(
    user: Annotated[User, Depends(get_current_user)],
    session: Annotated[Session, Depends(get_db_session)],
    temp_files: Annotated[TempFileProvider, Depends(get_temp_files)],
    audit: Annotated[AuditLogger, Depends(get_audit_logger)],
    recording: Annotated[UploadFile | None, File(description="Call recording")] = None,
):
    """Report whether a recording's content is already stored."""
    source = MultipartSource(
        stream=recording.file if recording is not None else None,
        filename=recording.filename if recording is not None else None,
        content_type=recording.content_type if recording is not None else None,
        declared_size=recording.size if recording is not None else None,
    )
    try:
        result = check_recording_duplicate(
            source,
            repository=SqlCallLogRepository(session),
            temp_files=temp_files,
            audit=audit,
        )
    except IngestError as e:
        return ingest_error_response(e, DUPLICATE_CHECK_FAILURE_MESSAGE)
    except Exception:
        logger.exception("Unexpected error during duplicate check by %s", user.id)
        return make_error_response(
            IngestErrorCode.PERSISTENCE_FAILED,
            DUPLICATE_CHECK_FAILURE_MESSAGE,
            "An unexpected error occurred during duplicate check",
        )

    verdict = result.verdict
    if isinstance(verdict, Duplicate):
        response = DuplicateCheckResponse(
            is_duplicate=True,
            file_hash=result.file_hash,
            message="This file has already been uploaded",
            existing_call_log=ExistingCallLogSummary(
                id=verdict.existing_record_id,
                uploaded_by=verdict.existing_employee_id,
                uploaded_at=verdict.existing_uploaded_at,
                lead=verdict.existing_lead_id,
            ),
        )
    else:
        response = DuplicateCheckResponse(
            is_duplicate=False,
            file_hash=result.file_hash,
            message="File is unique and can be uploaded",
        )
    return JSONResponse(
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True)
    )


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


# --- For testing: allow overriding collaborators ---


def override_session_factory(factory):
    """Override the session factory for testing."""
    global _session_factory
    _session_factory = factory


def override_object_store(store: ObjectStore | None) -> None:
    """Override the object store for testing (None re-reads config on next use)."""
    global _object_store
    _object_store = store
