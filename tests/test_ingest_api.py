"""Tests for the recording ingest API endpoints."""

import base64
import logging
from datetime import datetime, timedelta
from unittest import mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from callrec import config
from callrec.models import CallLog
from callrec.utils.hashing import sha256_bytes
from services.recording_ingest.main import app, get_object_store
from services.recording_ingest.repository import SqlCallLogRepository
from tests.seed import (
    INACTIVE,
    LEAD_ID,
    MANAGER,
    OTHER_EMPLOYEE,
    OWNER,
    RECORDINGS_BASE_URL,
    SIM_CARD_ID,
    UNASSIGNED_LEAD_ID,
    auth_headers,
)

MULTIPART_PATH = "/api/employee/call-log-with-recording"
MOBILE_PATH = "/api/employee/call-log-mobile"
CHECK_PATH = "/api/employee/check-file-duplicate"


def post_multipart(
    test_client,
    token,
    recording,
    fields=None,
    filename="call.mp3",
    content_type="audio/mpeg",
):
    """POST a multipart ingest request (fields default to a valid lead/status)."""
    form = {"leadId": LEAD_ID, "callStatus": "completed"}
    form.update(fields or {})
    form = {k: v for k, v in form.items() if v is not None}
    files = {"recording": (filename, recording, content_type)} if recording is not None else None
    return test_client.post(MULTIPART_PATH, data=form, files=files, headers=auth_headers(token))


def post_mobile(test_client, token, recording, **overrides):
    """POST a mobile JSON ingest request with base64 audio."""
    body = {
        "leadId": LEAD_ID,
        "callStatus": "completed",
        "audioData": base64.b64encode(recording).decode("ascii") if recording else None,
        "audioFormat": "audio/mpeg",
        "fileName": "mobile.mp3",
    }
    body.update(overrides)
    body = {k: v for k, v in body.items() if v is not None}
    return test_client.post(MOBILE_PATH, json=body, headers=auth_headers(token))


def stored_objects(recordings_dir):
    if not recordings_dir.exists():
        return []
    return sorted(p for p in recordings_dir.rglob("*") if p.is_file())


def temp_files_left(upload_tmp_dir):
    if not upload_tmp_dir.exists():
        return []
    return sorted(upload_tmp_dir.iterdir())


class CapturingObjectStore:
    """Object store that records the content type and name of each put."""

    def __init__(self):
        self.puts = []

    def put(self, data, content_type, filename):
        self.puts.append((content_type, filename))
        return f"{RECORDINGS_BASE_URL}/{filename}"


def count_call_logs(SessionFactory):
    session = SessionFactory()
    try:
        return session.execute(select(func.count()).select_from(CallLog)).scalar()
    finally:
        session.close()


class TestHealthCheck:
    """Tests for health check endpoint."""

    def test_health_check(self, client):
        """Health check should return ok."""
        test_client, _ = client
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAuthentication:
    """Bearer credential is required on every ingest endpoint."""

    def test_missing_token_returns_401(self, client):
        test_client, _ = client
        response = test_client.post(MOBILE_PATH, json={"leadId": LEAD_ID})
        assert response.status_code == 401
        assert response.json() == {"error": "Access token required"}

    def test_unknown_token_returns_401(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_mobile(test_client, "not-a-real-token", sample_recording_bytes)
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token - user not found"}

    def test_inactive_user_returns_401(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_mobile(test_client, INACTIVE[2], sample_recording_bytes)
        assert response.status_code == 401
        assert response.json() == {"error": "Account is deactivated"}

    def test_non_bearer_scheme_rejected(self, client):
        test_client, _ = client
        response = test_client.post(
            CHECK_PATH,
            files={"recording": ("a.mp3", b"abc", "audio/mpeg")},
            headers={"Authorization": f"Basic {OWNER[2]}"},
        )
        assert response.status_code == 401


class TestMultipartIngest:
    """Tests for POST /api/employee/call-log-with-recording."""

    def test_unique_recording_is_stored(self, client, storage_dirs, sample_recording_bytes):
        """A 2 MB unique recording yields 201 with the digest of the exact bytes."""
        test_client, SessionFactory = client
        recordings_dir, upload_tmp_dir = storage_dirs

        response = post_multipart(test_client, OWNER[2], sample_recording_bytes)

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Call log with recording saved successfully"
        log = data["log"]
        assert log["fileHash"] == sha256_bytes(sample_recording_bytes)
        assert log["recordingUrl"] == data["recordingUrl"]
        assert data["recordingUrl"].startswith(f"{RECORDINGS_BASE_URL}/call-recordings/web_call_")
        assert data["recordingUrl"].endswith(".mp3")
        assert log["lead"]["id"] == LEAD_ID
        assert log["lead"]["name"] == "Acme Corp"
        assert log["lead"]["sector"] == "Retail"
        assert log["employee"]["id"] == OWNER[0]
        assert log["uploadedBy"] == OWNER[0]
        assert log["callStatus"] == "completed"

        objects = stored_objects(recordings_dir)
        assert len(objects) == 1
        assert objects[0].read_bytes() == sample_recording_bytes
        assert temp_files_left(upload_tmp_dir) == []

        session = SessionFactory()
        try:
            row = session.execute(select(CallLog).where(CallLog.id == log["id"])).scalar_one()
            assert row.file_hash == log["fileHash"]
            assert row.recording_url == data["recordingUrl"]
        finally:
            session.close()

    def test_call_fields_are_normalized(self, client, sample_recording_bytes):
        """Outcome aliases, legacy audio quality labels and duration are normalized."""
        test_client, _ = client

        response = post_multipart(
            test_client,
            OWNER[2],
            sample_recording_bytes,
            fields={
                "notes": "Discussed renewal",
                "callDuration": "95",
                "outcome": "Followup",
                "followUpRequired": "true",
                "followUpDate": "2026-11-01T10:00:00Z",
                "callQuality": '{"audioQuality": "Good", "callDrops": 0}',
                "simCardId": SIM_CARD_ID,
            },
        )

        assert response.status_code == 201
        log = response.json()["log"]
        assert log["outcome"] == "Follow-up Required"
        assert log["callQuality"] == {"audioQuality": "Clear", "callDrops": 0}
        assert log["callDuration"] == 95
        assert log["recordingDuration"] == 95
        assert log["followUpRequired"] is True
        assert log["notes"] == "Discussed renewal"
        assert log["simCard"]["simNumber"] == "9990001111"

    def test_unknown_outcome_becomes_neutral(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_multipart(
            test_client, OWNER[2], sample_recording_bytes, fields={"outcome": "Maybe later"}
        )
        assert response.status_code == 201
        assert response.json()["log"]["outcome"] == "Neutral"

    def test_non_audio_content_type_is_not_stored_as_declared(self, client):
        """A declared text/html part is stored and served as audio."""
        test_client, _ = client
        store = CapturingObjectStore()
        app.dependency_overrides[get_object_store] = lambda: store

        response = post_multipart(
            test_client,
            OWNER[2],
            b"<script>alert(1)</script>",
            filename="page.html",
            content_type="text/html",
        )

        assert response.status_code == 201
        ((content_type, filename),) = store.puts
        assert content_type == "audio/mpeg"
        assert filename.endswith(".mp3")

    def test_missing_recording_returns_400(self, client, storage_dirs):
        test_client, SessionFactory = client
        response = post_multipart(test_client, OWNER[2], None)

        assert response.status_code == 400
        assert response.json() == {
            "error": "Invalid recording payload",
            "details": "No recording file uploaded",
        }
        assert count_call_logs(SessionFactory) == 0

    def test_empty_recording_returns_400(self, client, storage_dirs):
        test_client, SessionFactory = client
        _, upload_tmp_dir = storage_dirs

        response = post_multipart(test_client, OWNER[2], b"")

        assert response.status_code == 400
        assert response.json()["details"] == "Recording file is empty"
        assert temp_files_left(upload_tmp_dir) == []

    def test_invalid_call_quality_returns_422(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_multipart(
            test_client, OWNER[2], sample_recording_bytes, fields={"callQuality": "{broken"}
        )
        assert response.status_code == 422
        assert response.json()["error"] == "Invalid call log fields"

    def test_missing_call_status_returns_400(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_multipart(
            test_client, OWNER[2], sample_recording_bytes, fields={"callStatus": None}
        )
        assert response.status_code == 400
        assert response.json() == {"error": "leadId and callStatus required"}


class TestMobileIngest:
    """Tests for POST /api/employee/call-log-mobile."""

    def test_mobile_recording_is_stored(self, client, storage_dirs, sample_recording_bytes):
        test_client, _ = client
        recordings_dir, _ = storage_dirs

        response = post_mobile(test_client, OWNER[2], sample_recording_bytes)

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Mobile call log with recording saved successfully"
        assert data["log"]["fileHash"] == sha256_bytes(sample_recording_bytes)
        assert "/call-recordings/mobile_call_" in data["recordingUrl"]
        objects = stored_objects(recordings_dir)
        assert [p.read_bytes() for p in objects] == [sample_recording_bytes]

    def test_data_url_prefix_is_accepted(self, client):
        test_client, _ = client
        audio = b"fake m4a bytes " * 64
        encoded = base64.b64encode(audio).decode("ascii")

        response = post_mobile(
            test_client,
            OWNER[2],
            None,
            audioData=f"data:audio/mp4;base64,{encoded}",
            audioFormat="m4a",
            fileName=None,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["log"]["fileHash"] == sha256_bytes(audio)
        assert data["recordingUrl"].endswith(".m4a")

    def test_missing_lead_id_returns_400_without_upload(
        self, client, storage_dirs, sample_recording_bytes
    ):
        """JSON upload missing leadId is rejected before anything is stored."""
        test_client, SessionFactory = client
        recordings_dir, _ = storage_dirs

        response = post_mobile(test_client, OWNER[2], sample_recording_bytes, leadId=None)

        assert response.status_code == 400
        assert response.json() == {"error": "leadId and callStatus required"}
        assert stored_objects(recordings_dir) == []
        assert count_call_logs(SessionFactory) == 0

    def test_invalid_base64_returns_400(self, client, storage_dirs):
        test_client, SessionFactory = client
        recordings_dir, _ = storage_dirs

        response = post_mobile(test_client, OWNER[2], None, audioData="not base64 !!!")

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid recording payload"
        assert data["details"].startswith("audioData is not valid base64")
        assert stored_objects(recordings_dir) == []

    def test_missing_audio_returns_400(self, client):
        test_client, _ = client
        response = post_mobile(test_client, OWNER[2], None)
        assert response.status_code == 400
        assert response.json()["details"] == "audioData is required"


class TestDuplicateDetection:
    """Identical bytes are stored once, regardless of transport."""

    def test_mobile_upload_of_same_bytes_is_rejected(
        self, client, storage_dirs, sample_recording_bytes
    ):
        """Base64 upload of bytes already stored via multipart returns the duplicate body."""
        test_client, SessionFactory = client
        recordings_dir, _ = storage_dirs

        first = post_multipart(test_client, OWNER[2], sample_recording_bytes)
        assert first.status_code == 201
        first_id = first.json()["log"]["id"]

        second = post_mobile(test_client, OWNER[2], sample_recording_bytes)

        assert second.status_code == 400
        data = second.json()
        assert set(data) == {"error", "details", "existingCallLogId", "uploadedAt"}
        assert data["error"] == "Duplicate file detected"
        assert data["details"] == (
            "This audio file has already been uploaded. Please use a different file."
        )
        assert data["existingCallLogId"] == first_id
        assert datetime.fromisoformat(data["uploadedAt"]).utcoffset() == timedelta(0)
        assert count_call_logs(SessionFactory) == 1
        assert len(stored_objects(recordings_dir)) == 1

    def test_duplicate_from_another_user_uses_distinct_wording(
        self, client, sample_recording_bytes
    ):
        test_client, _ = client

        assert post_mobile(test_client, OWNER[2], sample_recording_bytes).status_code == 201
        response = post_multipart(test_client, MANAGER[2], sample_recording_bytes)

        assert response.status_code == 400
        assert response.json()["details"] == (
            "This audio file has already been uploaded by another user. "
            "Please use a different file."
        )

    def test_different_bytes_are_both_stored(self, client, storage_dirs):
        test_client, SessionFactory = client
        recordings_dir, _ = storage_dirs

        assert post_multipart(test_client, OWNER[2], b"recording one").status_code == 201
        assert post_multipart(test_client, OWNER[2], b"recording two").status_code == 201

        assert count_call_logs(SessionFactory) == 2
        assert len(stored_objects(recordings_dir)) == 2


class TestAuthorization:
    """Lead ownership gates every write."""

    def test_non_owner_returns_403(self, client, storage_dirs, sample_recording_bytes):
        test_client, SessionFactory = client
        recordings_dir, upload_tmp_dir = storage_dirs

        response = post_multipart(test_client, OTHER_EMPLOYEE[2], sample_recording_bytes)

        assert response.status_code == 403
        assert response.json() == {"error": "Not allowed to log call for this lead"}
        assert stored_objects(recordings_dir) == []
        assert temp_files_left(upload_tmp_dir) == []
        assert count_call_logs(SessionFactory) == 0

    def test_manager_may_log_for_any_lead(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_mobile(
            test_client, MANAGER[2], sample_recording_bytes, leadId=UNASSIGNED_LEAD_ID
        )
        assert response.status_code == 201
        assert response.json()["log"]["employee"]["id"] == MANAGER[0]

    def test_unassigned_lead_is_forbidden_for_employee(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_mobile(
            test_client, OWNER[2], sample_recording_bytes, leadId=UNASSIGNED_LEAD_ID
        )
        assert response.status_code == 403

    def test_unknown_lead_returns_404(self, client, sample_recording_bytes):
        test_client, _ = client
        response = post_mobile(test_client, OWNER[2], sample_recording_bytes, leadId="nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Lead not found"}


class TestSizeLimits:
    """Oversize recordings are rejected before buffering completes."""

    @pytest.fixture
    def small_limit(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_RECORDING_BYTES", 1024)
        return 1024

    def test_oversize_multipart_returns_413(self, client, storage_dirs, small_limit):
        test_client, SessionFactory = client
        recordings_dir, upload_tmp_dir = storage_dirs

        response = post_multipart(test_client, OWNER[2], b"x" * 4096)

        assert response.status_code == 413
        assert response.json()["error"] == "Recording exceeds maximum size"
        assert count_call_logs(SessionFactory) == 0
        assert stored_objects(recordings_dir) == []
        assert temp_files_left(upload_tmp_dir) == []

    def test_oversize_mobile_returns_413(self, client, storage_dirs, small_limit):
        test_client, SessionFactory = client
        recordings_dir, _ = storage_dirs

        response = post_mobile(test_client, OWNER[2], b"x" * 4096)

        assert response.status_code == 413
        assert count_call_logs(SessionFactory) == 0
        assert stored_objects(recordings_dir) == []

    def test_content_length_checked_before_body(self, client, monkeypatch, small_limit):
        """Requests declaring a body over the ceiling never reach the endpoint."""
        test_client, _ = client
        monkeypatch.setattr(config, "REQUEST_OVERHEAD_BYTES", 0)

        with mock.patch("services.recording_ingest.main.ingest_recording") as ingest:
            response = post_mobile(test_client, OWNER[2], b"x" * 4096)

        assert response.status_code == 413
        assert response.json()["details"].startswith("Request body of")
        ingest.assert_not_called()

    def test_recording_at_limit_is_accepted(self, client, small_limit):
        test_client, _ = client
        response = post_multipart(test_client, OWNER[2], b"y" * 1024)
        assert response.status_code == 201

    def test_request_ceiling_depends_on_transport(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_RECORDING_BYTES", 3000)
        monkeypatch.setattr(config, "REQUEST_OVERHEAD_BYTES", 512)
        assert config.max_request_bytes() == 3512
        assert config.max_request_bytes(base64_encoded=True) == 4512

    def test_multipart_body_over_raw_ceiling_never_reaches_handler(self, client, monkeypatch):
        """A multipart body under the base64 ceiling but over the raw one is refused."""
        test_client, _ = client
        monkeypatch.setattr(config, "MAX_RECORDING_BYTES", 3000)
        monkeypatch.setattr(config, "REQUEST_OVERHEAD_BYTES", 512)

        with mock.patch("services.recording_ingest.main.ingest_recording") as ingest:
            response = post_multipart(test_client, OWNER[2], b"z" * 3400)

        assert response.status_code == 413
        assert response.json()["details"].endswith("exceeds the 3512 byte limit")
        ingest.assert_not_called()

    def test_duplicate_check_uses_raw_ceiling(self, client, monkeypatch):
        test_client, _ = client
        monkeypatch.setattr(config, "MAX_RECORDING_BYTES", 3000)
        monkeypatch.setattr(config, "REQUEST_OVERHEAD_BYTES", 512)

        with mock.patch("services.recording_ingest.main.check_recording_duplicate") as check:
            response = test_client.post(
                CHECK_PATH,
                files={"recording": ("a.mp3", b"z" * 3400, "audio/mpeg")},
                headers=auth_headers(OWNER[2]),
            )

        assert response.status_code == 413
        check.assert_not_called()

    def test_mobile_body_allows_base64_inflation(self, client, monkeypatch):
        """An encoded body larger than the raw ceiling is accepted when it decodes under it."""
        test_client, _ = client
        monkeypatch.setattr(config, "MAX_RECORDING_BYTES", 3000)
        monkeypatch.setattr(config, "REQUEST_OVERHEAD_BYTES", 512)

        response = post_mobile(test_client, OWNER[2], b"m" * 2900)

        assert response.status_code == 201


class FailingObjectStore:
    def put(self, data, content_type, filename):
        raise OSError("disk full")


class TestStorageFailures:
    """Upload and persistence failures map to the endpoint's 500 body."""

    def test_upload_failure_returns_500(self, client, storage_dirs, sample_recording_bytes):
        test_client, SessionFactory = client
        _, upload_tmp_dir = storage_dirs
        app.dependency_overrides[get_object_store] = FailingObjectStore

        response = post_multipart(test_client, OWNER[2], sample_recording_bytes)

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Failed to save call log with recording"
        assert "disk full" in data["details"]
        assert count_call_logs(SessionFactory) == 0
        assert temp_files_left(upload_tmp_dir) == []

    def test_persistence_failure_logs_orphan(
        self, client, storage_dirs, sample_recording_bytes, caplog
    ):
        test_client, SessionFactory = client
        recordings_dir, _ = storage_dirs

        with mock.patch.object(
            SqlCallLogRepository,
            "insert_call_log",
            side_effect=OperationalError("INSERT", {}, Exception("database is locked")),
        ):
            with caplog.at_level(logging.ERROR, logger="services.recording_ingest.service"):
                response = post_mobile(test_client, OWNER[2], sample_recording_bytes)

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to save mobile call log with recording"
        assert count_call_logs(SessionFactory) == 0

        # The uploaded object stays behind and is reported for reconciliation
        objects = stored_objects(recordings_dir)
        assert len(objects) == 1
        orphan_logs = [r for r in caplog.records if "Orphaned recording object" in r.getMessage()]
        assert len(orphan_logs) == 1
        assert sha256_bytes(sample_recording_bytes) in orphan_logs[0].getMessage()


class TestCheckFileDuplicate:
    """Tests for POST /api/employee/check-file-duplicate."""

    def test_unique_file(self, client, storage_dirs, sample_recording_bytes):
        test_client, SessionFactory = client
        recordings_dir, upload_tmp_dir = storage_dirs

        response = test_client.post(
            CHECK_PATH,
            files={"recording": ("call.mp3", sample_recording_bytes, "audio/mpeg")},
            headers=auth_headers(OWNER[2]),
        )

        assert response.status_code == 200
        assert response.json() == {
            "isDuplicate": False,
            "fileHash": sha256_bytes(sample_recording_bytes),
            "message": "File is unique and can be uploaded",
        }
        assert count_call_logs(SessionFactory) == 0
        assert stored_objects(recordings_dir) == []
        assert temp_files_left(upload_tmp_dir) == []

    def test_already_uploaded_file(self, client, sample_recording_bytes):
        test_client, _ = client
        created = post_multipart(test_client, OWNER[2], sample_recording_bytes)
        assert created.status_code == 201

        response = test_client.post(
            CHECK_PATH,
            files={"recording": ("again.mp3", sample_recording_bytes, "audio/mpeg")},
            headers=auth_headers(OTHER_EMPLOYEE[2]),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["isDuplicate"] is True
        assert data["message"] == "This file has already been uploaded"
        existing = data["existingCallLog"]
        assert existing["id"] == created.json()["log"]["id"]
        assert existing["uploadedBy"] == OWNER[0]
        assert existing["lead"] == LEAD_ID
        assert "uploadedAt" in existing

    def test_missing_file_returns_400(self, client):
        test_client, _ = client
        response = test_client.post(CHECK_PATH, headers=auth_headers(OWNER[2]))
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid recording payload"
