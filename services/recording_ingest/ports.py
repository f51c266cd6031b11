"""Call Recording Ingest - Collaborator ports.

Narrow interfaces the orchestrator depends on. Production implementations
live in repository.py, storage.py and tempfiles.py; tests use in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol

if TYPE_CHECKING:
    from callrec.models import CallLog


class DuplicateHashError(Exception):
    """Raised by a repository when an insert violates file-hash uniqueness."""

    def __init__(self, file_hash: str):
        self.file_hash = file_hash
        super().__init__(f"file_hash already stored: {file_hash}")


@dataclass(frozen=True)
class StoredRecording:
    """Identity of a call log that already holds a recording."""

    call_log_id: str
    employee_id: str
    lead_id: str
    uploaded_at: datetime


@dataclass
class NewCallLog:
    """Values for a call-log insert."""

    lead_id: str
    employee_id: str
    call_status: str
    uploaded_by: str
    notes: str | None = None
    call_duration: int | None = None
    outcome: str | None = None
    follow_up_required: bool | None = None
    follow_up_date: datetime | None = None
    call_quality: dict[str, Any] | None = None
    sim_card_id: str | None = None
    recording_url: str | None = None
    recording_duration: int | None = None
    file_hash: str | None = None


class CallLogRepository(Protocol):
    """Persistence: can look up by hash and insert call logs."""

    def find_by_hash(self, file_hash: str) -> StoredRecording | None: ...

    def insert_call_log(self, record: NewCallLog) -> CallLog:
        """Insert and commit; raise DuplicateHashError on a file_hash conflict."""
        ...


class LeadAuthorizer(Protocol):
    """Authorization: answers lead ownership questions."""

    def lead_exists(self, lead_id: str) -> bool: ...

    def is_lead_owned_by(self, lead_id: str, caller_id: str) -> bool: ...


class ObjectStore(Protocol):
    """Remote object storage: can put bytes and return a public locator."""

    def put(self, data: bytes, content_type: str, filename: str) -> str: ...


class TempFileProvider(Protocol):
    """Temporary buffering for multipart uploads."""

    def buffer_to_temp(self, stream: BinaryIO, max_bytes: int | None = None) -> Path:
        """Write the stream to a new temp file; raise PayloadTooLarge past max_bytes."""
        ...

    def remove_temp(self, path: Path) -> None: ...
