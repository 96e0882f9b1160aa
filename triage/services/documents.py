"""
Support Triage Orchestrator
Investigation document store.

Each investigation owns one directory under ``INVESTIGATIONS_DIR`` named
after its ticket id:

    <id>/ticket-data.json          structured ticket data (phase 0)
    <id>/phase1-findings.md        research findings (phase 1)
    <id>/summary.md                investigation summary (phase 2)
    <id>/customer-response.md      customer-facing reply (phase 2)
    <id>/issue-draft.md            issue tracker draft, bugs only (phase 2)
    <id>/checkpoint-actions.json   operator decisions, append-only list
    <id>/activity-log.jsonl        phase event stream
    <id>/metrics.json              phase durations
    <id>/run-<N>/                  archived copies after a hard reset

Error policy:
    - Missing or empty documents read as None.
    - Unparseable JSON reads as None and is logged (phases degrade).
    - Other I/O errors propagate; snapshots and the action log rely on it.
    - Activity log and metrics writes are best-effort and never raise.
"""

import json
import logging
import os
import shutil
from datetime import datetime, timezone

from flask import current_app

from triage.models.investigation import (
    ACTIONS_FILE,
    ACTIVITY_FILE,
    ARCHIVED_FILES,
    METRICS_FILE,
    TRACKED_FILES,
)

logger = logging.getLogger(__name__)

# Files larger than this are not fed to the agent as local context.
LOCAL_CONTEXT_MAX_BYTES = 50_000


def investigation_dir(investigation_id, create=False):
    path = os.path.join(current_app.config["INVESTIGATIONS_DIR"], str(investigation_id))
    if create:
        os.makedirs(path, exist_ok=True)
    return path


def _path(investigation_id, filename):
    return os.path.join(investigation_dir(investigation_id), filename)


# ── Reading ──────────────────────────────────────────────────────────────────


def read_text(investigation_id, filename):
    """Return file content, or None when the file is missing or empty."""
    try:
        with open(_path(investigation_id, filename), encoding="utf-8") as fh:
            content = fh.read()
    except FileNotFoundError:
        return None
    return content if content else None


def read_json(investigation_id, filename):
    """Return parsed JSON, or None when missing, empty or unparseable."""
    raw = read_text(investigation_id, filename)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        logger.warning("Unparseable %s for investigation %s: %s", filename, investigation_id, exc)
        return None


def read_document(investigation_id, filename):
    """Read a tracked document in snapshot form (JSON parsed, text as-is)."""
    if filename.endswith(".json"):
        return read_json(investigation_id, filename)
    return read_text(investigation_id, filename)


def snapshot_files(investigation_id):
    """All tracked documents keyed by name; absent ones map to None."""
    return {name: read_document(investigation_id, name) for name in TRACKED_FILES}


def list_files(investigation_id):
    """Tracked documents with content and basic stat info for the dashboard."""
    files = []
    for name in TRACKED_FILES:
        path = _path(investigation_id, name)
        content = read_text(investigation_id, name)
        entry = {"name": name, "exists": content is not None, "content": content,
                 "size": 0, "modified_at": None}
        if content is not None:
            stat = os.stat(path)
            entry["size"] = stat.st_size
            entry["modified_at"] = datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat()
        files.append(entry)
    return files


def local_context_files(investigation_id):
    """Small top-level files in the investigation directory, as (name, content)."""
    root = investigation_dir(investigation_id)
    if not os.path.isdir(root):
        return []
    result = []
    for name in sorted(os.listdir(root)):
        if name in (ACTIVITY_FILE, METRICS_FILE):
            continue
        path = os.path.join(root, name)
        try:
            if not os.path.isfile(path) or os.path.getsize(path) > LOCAL_CONTEXT_MAX_BYTES:
                continue
            with open(path, encoding="utf-8") as fh:
                content = fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Skipping local context file %s: %s", path, exc)
            continue
        if content:
            result.append((name, content))
    return result


# ── Writing ──────────────────────────────────────────────────────────────────


def write_text(investigation_id, filename, content):
    investigation_dir(investigation_id, create=True)
    with open(_path(investigation_id, filename), "w", encoding="utf-8") as fh:
        fh.write(content or "")


def write_json(investigation_id, filename, data):
    write_text(investigation_id, filename, json.dumps(data, indent=2, default=str))


def write_document(investigation_id, filename, content):
    """Write a tracked document from snapshot form; None truncates the file."""
    if content is None:
        write_text(investigation_id, filename, "")
    elif filename.endswith(".json") and not isinstance(content, str):
        write_json(investigation_id, filename, content)
    else:
        write_text(investigation_id, filename, content)


def restore_files(investigation_id, files):
    for name in TRACKED_FILES:
        write_document(investigation_id, name, files.get(name))


def truncate(investigation_id, filename):
    path = _path(investigation_id, filename)
    if os.path.exists(path):
        with open(path, "w", encoding="utf-8"):
            pass


def append_checkpoint_action(investigation_id, entry):
    """Append to the durable operator action log. Errors propagate."""
    actions = read_json(investigation_id, ACTIONS_FILE)
    if not isinstance(actions, list):
        actions = []
    actions.append(entry)
    write_json(investigation_id, ACTIONS_FILE, actions)
    return actions


def archive_run(investigation_id, run_number):
    """Copy every archived document into ``run-<N>/``.

    Per-file failures are logged and skipped. Returns the names copied and
    the names that failed.
    """
    root = investigation_dir(investigation_id, create=True)
    archive = os.path.join(root, f"run-{run_number}")
    archived, failed = [], []
    try:
        os.makedirs(archive, exist_ok=True)
    except OSError as exc:
        logger.error("Cannot create archive %s: %s", archive, exc)
        return {"archive_dir": archive, "archived": archived, "failed": list(ARCHIVED_FILES)}

    for name in ARCHIVED_FILES:
        src = os.path.join(root, name)
        if not os.path.exists(src):
            continue
        try:
            shutil.copy2(src, os.path.join(archive, name))
            archived.append(name)
        except OSError as exc:
            logger.error("Error archiving %s for investigation %s: %s", name, investigation_id, exc)
            failed.append(name)
    return {"archive_dir": archive, "archived": archived, "failed": failed}


def clear_working_copies(investigation_id):
    """Truncate every archived document so the next run starts blank."""
    for name in ARCHIVED_FILES:
        try:
            truncate(investigation_id, name)
        except OSError as exc:
            logger.error("Error clearing %s for investigation %s: %s", name, investigation_id, exc)


# ── Activity log + metrics (best-effort) ─────────────────────────────────────


def append_activity(investigation_id, phase, event_type, message):
    """Append one JSONL event. Never raises."""
    entry = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "phase": phase,
        "type": event_type,
        "message": message,
    }
    try:
        investigation_dir(investigation_id, create=True)
        with open(_path(investigation_id, ACTIVITY_FILE), "a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry) + "\n")
    except OSError as exc:
        logger.warning("Activity write failed for investigation %s: %s", investigation_id, exc)


def read_activity(investigation_id, since=None):
    """Activity events in file order, optionally only those after ``since`` (ISO string)."""
    raw = read_text(investigation_id, ACTIVITY_FILE)
    if raw is None:
        return []
    events = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except ValueError:
            continue
        if since and event.get("ts", "") <= since:
            continue
        events.append(event)
    return events


def record_metrics(investigation_id, **values):
    """Merge values into metrics.json. Never raises."""
    try:
        metrics = read_json(investigation_id, METRICS_FILE)
        if not isinstance(metrics, dict):
            metrics = {}
        metrics.update(values)
        metrics["last_updated"] = datetime.now(timezone.utc).isoformat()
        write_json(investigation_id, METRICS_FILE, metrics)
    except OSError as exc:
        logger.warning("Metrics write failed for investigation %s: %s", investigation_id, exc)
