"""Call Recording Ingest - Pydantic models for API validation.

Request and response models for the recording ingest endpoints. Wire names
are camelCase (what the web and mobile clients send); Python attributes are
snake_case.
"""

from datetime import datetime  # noqa: I001
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Request Models ---


class CallQuality(CamelModel):
    """Nested call-quality attributes reported by the client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    audio_quality: str | None = Field(default=None, description="Clear, Poor, Distorted, ...")
    connection_quality: str | None = Field(default=None, description="Connection rating")
    background_noise: str | None = Field(default=None, description="Background noise level")
    call_drops: int | None = Field(default=None, ge=0, description="Number of call drops")


class CallLogFields(CamelModel):
    """Structured call fields shared by both ingest transports.

    leadId and callStatus are optional at the schema level so that their
    absence is reported as a 400 validation error rather than a 422.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    lead_id: str | None = Field(default=None, description="Lead the call was made to")
    call_status: str | None = Field(default=None, description="Call status (e.g. completed)")
    notes: str | None = Field(default=None, description="Free-text call notes")
    call_duration: int | None = Field(default=None, ge=0, description="Call duration in seconds")
    outcome: str | None = Field(default=None, description="Call outcome label")
    follow_up_required: bool | None = Field(default=None, description="Follow-up flag")
    follow_up_date: datetime | None = Field(default=None, description="Follow-up date")
    call_quality: CallQuality | None = Field(default=None, description="Call quality attributes")
    sim_card_id: str | None = Field(default=None, description="SIM card used for the call")


class MobileCallLogRequest(CallLogFields):
    """JSON payload sent by mobile clients with base64-encoded audio."""

    audio_data: str | None = Field(default=None, description="Base64-encoded recording bytes")
    audio_format: str | None = Field(default=None, description="Declared media type or format")
    file_name: str | None = Field(default=None, description="Original recording filename")


# --- Response Models ---


class LeadSummary(CamelModel):
    """Lead fields embedded in a call-log response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    phone: str | None = None
    email: str | None = None
    status: str | None = None
    sector: str | None = None
    region: str | None = None


class EmployeeSummary(CamelModel):
    """Employee fields embedded in a call-log response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    name: str
    email: str


class SimCardSummary(CamelModel):
    """SIM card fields embedded in a call-log response."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    sim_number: str
    carrier: str | None = None


class CallLogResponse(CamelModel):
    """Serialized call log with its lead, employee and SIM card summaries."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    lead: LeadSummary
    employee: EmployeeSummary
    sim_card: SimCardSummary | None = None
    uploaded_by: str | None = None
    call_status: str
    notes: str | None = None
    call_duration: int | None = None
    outcome: str | None = None
    follow_up_required: bool | None = None
    follow_up_date: datetime | None = None
    call_quality: dict[str, Any] | None = None
    recording_url: str | None = None
    recording_duration: int | None = None
    file_hash: str | None = None
    call_start_time: datetime
    created_at: datetime
    updated_at: datetime


class CallLogCreatedResponse(CamelModel):
    """201 response for a stored recording."""

    message: str
    log: CallLogResponse
    recording_url: str | None = None


class ErrorResponse(CamelModel):
    """Generic error body: {error, details?}."""

    error: str
    details: str | None = None


class DuplicateErrorResponse(CamelModel):
    """400 body returned when the recording content is already stored."""

    error: str = "Duplicate file detected"
    details: str
    existing_call_log_id: str
    uploaded_at: datetime


class ExistingCallLogSummary(CamelModel):
    """Identity of the call log that already holds a recording."""

    id: str
    uploaded_by: str | None = None
    uploaded_at: datetime
    lead: str | None = None


class DuplicateCheckResponse(CamelModel):
    """Response of the duplicate pre-check endpoint."""

    is_duplicate: bool
    file_hash: str
    message: str
    existing_call_log: ExistingCallLogSummary | None = None


__all__ = [
    "CallQuality",
    "CallLogFields",
    "MobileCallLogRequest",
    "LeadSummary",
    "EmployeeSummary",
    "SimCardSummary",
    "CallLogResponse",
    "CallLogCreatedResponse",
    "ErrorResponse",
    "DuplicateErrorResponse",
    "ExistingCallLogSummary",
    "DuplicateCheckResponse",
]
