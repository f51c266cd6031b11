"""Call Recording Ingest - Duplicate resolution.

One indexed read against the call-log repository, performed before any
remote upload. The resolver never locks the digest; the unique index on
call_logs.file_hash catches the concurrent-insert race instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.recording_ingest.ports import CallLogRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Novel:
    """No stored recording has this digest."""

    file_hash: str


@dataclass(frozen=True)
class Duplicate:
    """A stored recording already has this digest."""

    file_hash: str
    existing_record_id: str
    existing_uploaded_at: datetime
    existing_employee_id: str
    existing_lead_id: str


DuplicateVerdict = Novel | Duplicate


def resolve_duplicate(repository: CallLogRepository, file_hash: str) -> DuplicateVerdict:
    """Decide whether a digest is already stored.

    Args:
        repository: Persistence collaborator with find_by_hash().
        file_hash: Content digest of the candidate recording.

    Returns:
        Duplicate with the existing record's identity, or Novel.
    """
    existing = repository.find_by_hash(file_hash)
    if existing is None:
        return Novel(file_hash=file_hash)

    logger.info(
        "Duplicate recording hash=%s matches call_log_id=%s", file_hash, existing.call_log_id
    )
    return Duplicate(
        file_hash=file_hash,
        existing_record_id=existing.call_log_id,
        existing_uploaded_at=existing.uploaded_at,
        existing_employee_id=existing.employee_id,
        existing_lead_id=existing.lead_id,
    )
