"""Audit records for routing overrides made by pre-processors."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

UNKNOWN_SESSION = "unknown-session"


def _iso_now() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def write_audit_record(
    logs_dir: str | Path | None,
    prefix: str,
    *,
    reason: str,
    routed_to: str,
    original_model: Any,
    session_id: str | None,
) -> Path | None:
    """Write one JSON audit record and return its path.

    The file is named ``claudemitm-<prefix>-<session>-<timestamp>.log``.
    Failures are logged and swallowed; auditing never fails a request.
    """
    if not logs_dir:
        return None

    session = session_id or UNKNOWN_SESSION
    timestamp = _iso_now()
    file_stamp = timestamp.replace(":", "-").replace(".", "-")
    path = Path(logs_dir).expanduser() / f"claudemitm-{prefix}-{session}-{file_stamp}.log"
    record = {
        "routed": True,
        "reason": reason,
        "routedTo": routed_to,
        "originalModel": original_model,
        "timestamp": timestamp,
        "sessionId": session,
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2), encoding="utf-8")
    except OSError as e:
        logger.error("Failed to write audit log %s: %s", path, e)
        return None
    return path


def write_command_log(
    logs_dir: str | Path | None,
    command_text: str,
    *,
    session_id: str | None,
    project: str | None = None,
) -> Path | None:
    """Record an intercepted slash command as a small text log."""
    if not logs_dir:
        return None

    session = session_id or UNKNOWN_SESSION
    project = project or "unknown-project"
    timestamp = _iso_now()
    file_stamp = timestamp.replace(":", "-").replace(".", "-")
    path = Path(logs_dir).expanduser() / f"claudemitm-{session}-{project}-{file_stamp}.log"
    entry = (
        f"Command intercepted: {command_text or 'unknown command'}\n"
        f"Session ID: {session}\n"
        f"Project Folder: {project}\n"
        f"Timestamp: {timestamp}\n\n"
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(entry, encoding="utf-8")
    except OSError as e:
        logger.error("Failed to write command log %s: %s", path, e)
        return None
    return path
