"""Call Recording Ingest - Configuration constants.

Module-level configuration with environment variable overrides.
No external config libraries. All paths are relative to the repository root by default.
"""

import os
from pathlib import Path

# Repository root (parent of callrec/)
REPO_ROOT = Path(__file__).parent.parent.resolve()

# Data directories
DATA_DIR = REPO_ROOT / "data"
RECORDINGS_DIR = DATA_DIR / "recordings"
UPLOAD_TMP_DIR = DATA_DIR / "tmp"

# Logs directory
LOGS_DIR = REPO_ROOT / "logs"

# Database path
DB_PATH = DATA_DIR / "callrec.db"


def _get_int_env(name: str, default: int) -> int:
    """Get a positive integer from the environment or use default.

    Non-numeric and non-positive values fall back to the default.

    Args:
        name: Environment variable name.
        default: Value used when the variable is unset or invalid.

    Returns:
        The configured positive integer.
    """
    env_val = os.environ.get(name)
    if env_val:
        try:
            value = int(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_str_env(name: str, default: str | None = None) -> str | None:
    """Get a stripped string from the environment, treating blanks as unset."""
    env_val = os.environ.get(name, "").strip()
    return env_val or default


# Maximum size of a single decoded recording (default: 50 MB)
# Override with CALLREC_MAX_RECORDING_BYTES
MAX_RECORDING_BYTES = _get_int_env("CALLREC_MAX_RECORDING_BYTES", 50 * 1024 * 1024)

# Slack allowed on top of the recording for form fields / JSON envelope
REQUEST_OVERHEAD_BYTES = 256 * 1024


def max_request_bytes(max_recording_bytes: int | None = None, base64_encoded: bool = False) -> int:
    """Largest acceptable request body for an ingest endpoint.

    Multipart bodies carry the recording verbatim. The mobile JSON body
    carries it base64-encoded, which inflates it by 4/3.

    Args:
        max_recording_bytes: Optional override of the decoded recording ceiling.
        base64_encoded: Whether the recording travels base64-encoded.

    Returns:
        Request body ceiling in bytes.
    """
    limit = max_recording_bytes if max_recording_bytes is not None else MAX_RECORDING_BYTES
    if base64_encoded:
        limit = ((limit + 2) // 3) * 4
    return limit + REQUEST_OVERHEAD_BYTES


# Object storage backend: "local" (filesystem) or "s3" (S3-compatible)
STORAGE_BACKEND = (_get_str_env("CALLREC_STORAGE_BACKEND", "local") or "local").lower()

# Key prefix ("folder") for stored recordings
STORAGE_PREFIX = _get_str_env("CALLREC_STORAGE_PREFIX", "call-recordings")

# Public base URL for recordings served by the local backend
RECORDINGS_BASE_URL = _get_str_env(
    "CALLREC_RECORDINGS_BASE_URL", "http://localhost:8000/recordings"
)

# S3-compatible backend settings
S3_BUCKET = _get_str_env("CALLREC_S3_BUCKET")
S3_ENDPOINT_URL = _get_str_env("CALLREC_S3_ENDPOINT_URL")
S3_REGION = _get_str_env("CALLREC_S3_REGION", "auto")
S3_PUBLIC_BASE_URL = _get_str_env("CALLREC_S3_PUBLIC_BASE_URL")
S3_CONNECT_TIMEOUT_SECONDS = _get_int_env("CALLREC_S3_CONNECT_TIMEOUT", 10)
S3_READ_TIMEOUT_SECONDS = _get_int_env("CALLREC_S3_READ_TIMEOUT", 60)

# Logging level for the API process
LOG_LEVEL = (_get_str_env("CALLREC_LOG_LEVEL", "INFO") or "INFO").upper()

# Roles allowed to log calls for leads assigned to someone else
ELEVATED_ROLES = frozenset({"admin", "manager"})
