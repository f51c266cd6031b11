"""Call Recording Ingest - Failpoint injection for resilience testing.

Provides deterministic crash injection for testing hard-failure scenarios
(e.g. a crash between the remote upload and the call-log insert).

Safety gate: Failpoints are only active when CALLREC_ENABLE_FAILPOINTS=1.
The default is a complete no-op.

Environment variables:
- CALLREC_ENABLE_FAILPOINTS: Set to "1" to enable failpoint system (default: disabled)
- CALLREC_FAILPOINT: Name of the failpoint to trigger (e.g., "INGEST_AFTER_UPLOAD")
- CALLREC_FAILPOINT_EXIT_CODE: Exit code to use when crashing (default: 42)
- CALLREC_FAILPOINT_ONCE: Set to "1" to only trigger once, then clear

Known failpoints:
- ATOMIC_WRITE_AFTER_TMP_WRITE
- ATOMIC_WRITE_AFTER_FSYNC_BEFORE_RENAME
- INGEST_AFTER_UPLOAD
"""

from __future__ import annotations

import os

_PREFIX = "FAILPOINT_"


def _normalize(name: str) -> str:
    name = name.upper()
    if name.startswith(_PREFIX):
        name = name[len(_PREFIX) :]
    return name


def is_failpoint_enabled() -> bool:
    """Check if the failpoint system is enabled.

    Returns:
        True if CALLREC_ENABLE_FAILPOINTS=1, False otherwise.
    """
    return os.environ.get("CALLREC_ENABLE_FAILPOINTS") == "1"


def get_active_failpoint() -> str | None:
    """Get the currently active failpoint name, if any.

    Returns:
        The failpoint name (without FAILPOINT_ prefix) or None.
    """
    if not is_failpoint_enabled():
        return None
    target = os.environ.get("CALLREC_FAILPOINT", "")
    if not target:
        return None
    return _normalize(target)


def maybe_fail(point: str) -> None:
    """Crash the process if the named failpoint is active.

    Uses os._exit() so that finally blocks and atexit handlers do not run,
    which is what a power failure or OOM kill looks like to the code under test.

    Args:
        point: The failpoint name to check (with or without FAILPOINT_ prefix).
    """
    active = get_active_failpoint()
    if active is None or active != _normalize(point):
        return

    try:
        exit_code = int(os.environ.get("CALLREC_FAILPOINT_EXIT_CODE", "42"))
    except ValueError:
        exit_code = 42

    if os.environ.get("CALLREC_FAILPOINT_ONCE") == "1":
        # Only affects the current process
        os.environ.pop("CALLREC_FAILPOINT", None)
        os.environ.pop("CALLREC_FAILPOINT_ONCE", None)

    os._exit(exit_code)
