"""Call Recording Ingest - SQLAlchemy-backed collaborators.

SqlCallLogRepository and SqlLeadAuthorizer implement the persistence and
authorization ports over one request-scoped Session.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from callrec.models import CallLog, Lead
from services.recording_ingest.ports import DuplicateHashError, NewCallLog, StoredRecording

logger = logging.getLogger(__name__)


def generate_call_log_id() -> str:
    """Generate a unique call log ID.

    Uses UUID4 for uniqueness. Format: uuid4 hex (32 chars).
    """
    return uuid.uuid4().hex


class SqlCallLogRepository:
    """Call-log persistence over a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def find_by_hash(self, file_hash: str) -> StoredRecording | None:
        """Look up the call log holding a recording with this digest.

        Uses the unique index on call_logs.file_hash.
        """
        stmt = select(
            CallLog.id, CallLog.employee_id, CallLog.lead_id, CallLog.created_at
        ).where(CallLog.file_hash == file_hash)
        row = self.session.execute(stmt).first()
        if row is None:
            return None
        uploaded_at = row.created_at
        # SQLite returns naive datetimes; stored values are always UTC
        if uploaded_at.tzinfo is None:
            uploaded_at = uploaded_at.replace(tzinfo=UTC)
        return StoredRecording(
            call_log_id=row.id,
            employee_id=row.employee_id,
            lead_id=row.lead_id,
            uploaded_at=uploaded_at,
        )

    def insert_call_log(self, record: NewCallLog) -> CallLog:
        """Insert and commit a call log.

        Note:
            This function commits the session. On failure the session is
            rolled back before the exception propagates.

        Raises:
            DuplicateHashError: If another call log already holds record.file_hash.
            SQLAlchemyError: On any other database failure.
        """
        log = CallLog(
            id=generate_call_log_id(),
            lead_id=record.lead_id,
            employee_id=record.employee_id,
            uploaded_by=record.uploaded_by,
            sim_card_id=record.sim_card_id,
            call_status=record.call_status,
            notes=record.notes,
            call_duration=record.call_duration,
            outcome=record.outcome,
            follow_up_required=record.follow_up_required,
            follow_up_date=record.follow_up_date,
            call_quality=record.call_quality,
            recording_url=record.recording_url,
            recording_duration=record.recording_duration,
            file_hash=record.file_hash,
        )
        self.session.add(log)
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if record.file_hash and self.find_by_hash(record.file_hash) is not None:
                raise DuplicateHashError(record.file_hash) from e
            raise
        except Exception:
            self.session.rollback()
            raise
        return log


class SqlLeadAuthorizer:
    """Lead ownership checks over a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def _assignee(self, lead_id: str) -> tuple[bool, str | None]:
        row = self.session.execute(
            select(Lead.assigned_to).where(Lead.id == lead_id)
        ).first()
        if row is None:
            return False, None
        return True, row.assigned_to

    def lead_exists(self, lead_id: str) -> bool:
        exists, _ = self._assignee(lead_id)
        return exists

    def is_lead_owned_by(self, lead_id: str, caller_id: str) -> bool:
        exists, assigned_to = self._assignee(lead_id)
        return exists and assigned_to is not None and assigned_to == caller_id
