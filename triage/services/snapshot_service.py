"""
Support Triage Orchestrator
Snapshot store — versioned captures of an investigation.

A snapshot records the tracked investigation fields and every tracked
document (absent documents as None) under a per-investigation version
number that starts at 1 and never repeats. Each snapshot carries a short
diff summary against the version before it, computed once at creation.

Restores never delete history:
    rollback  — snapshot the current state, then overwrite fields and
                documents with the target's content (status → waiting)
    refocus   — snapshot the current state, then only pin the target as
                the anchor; later conversation items read as faded
"""

import logging

from sqlalchemy import func

from triage.core.exceptions import NotFoundError, ValidationError
from triage.models import db
from triage.models.investigation import (
    RESTORE_MODES,
    TRACKED_FIELDS,
    TRACKED_FILES,
    Investigation,
    InvestigationVersion,
)
from triage.services import conversation, documents
from triage.services.locks import investigation_lock

logger = logging.getLogger(__name__)


def _capture_fields(investigation):
    fields = investigation.tracked_fields()
    fields["anchor_version_id"] = investigation.anchor_version_id
    return fields


def changed_fields(old_fields, new_fields):
    return [name for name in TRACKED_FIELDS if old_fields.get(name) != new_fields.get(name)]


def changed_files(old_files, new_files):
    names = list(TRACKED_FILES)
    names += sorted((set(old_files) | set(new_files)) - set(TRACKED_FILES))
    return [name for name in names if old_files.get(name) != new_files.get(name)]


def compute_diff_summary(previous, fields, files):
    """Human-readable change summary against the previous version."""
    if previous is None:
        return "Initial snapshot"
    field_names = changed_fields(previous.field_snapshot or {}, fields)
    file_names = changed_files(previous.file_snapshot or {}, files)
    return (
        f"Changed fields: [{', '.join(field_names) or 'none'}]. "
        f"Changed files: [{', '.join(file_names) or 'none'}]"
    )


class SnapshotService:
    """Creates, lists, compares and restores investigation snapshots."""

    # ── Capture ───────────────────────────────────────────────────────

    @staticmethod
    def create(investigation, checkpoint, label, run_number=None, *, created_by="system"):
        """
        Capture the investigation's current state as a new version.

        Flushes but does not commit; the caller owns the transaction.
        Any I/O error while reading documents propagates.

        Returns the new InvestigationVersion.
        """
        with investigation_lock(investigation.id):
            fields = _capture_fields(investigation)
            files = documents.snapshot_files(investigation.id)

            max_number = db.session.query(func.max(InvestigationVersion.version_number)).filter(
                InvestigationVersion.investigation_id == investigation.id
            ).scalar() or 0
            previous = None
            if max_number:
                previous = InvestigationVersion.query.filter_by(
                    investigation_id=investigation.id, version_number=max_number
                ).first()

            version = InvestigationVersion(
                investigation_id=investigation.id,
                run_number=run_number or investigation.current_run_number,
                version_number=max_number + 1,
                label=label,
                checkpoint=checkpoint,
                field_snapshot=fields,
                file_snapshot=files,
                diff_summary=compute_diff_summary(previous, fields, files),
                created_by=created_by,
            )
            db.session.add(version)
            db.session.flush()
            investigation.current_version_id = version.id
            db.session.flush()

        logger.info(
            "Snapshot v%d created: %s", version.version_number, label,
            extra={"investigation_id": investigation.id, "run_number": version.run_number,
                   "checkpoint": checkpoint},
        )
        return version

    # ── Query ─────────────────────────────────────────────────────────

    @staticmethod
    def list_versions(investigation_id, run_number=None):
        q = InvestigationVersion.query.filter_by(investigation_id=investigation_id)
        if run_number is not None:
            q = q.filter_by(run_number=run_number)
        return q.order_by(InvestigationVersion.version_number.asc()).all()

    @staticmethod
    def get_version(investigation_id, version_id):
        """Return the version, or raise NotFoundError when it belongs elsewhere."""
        version = db.session.get(InvestigationVersion, version_id)
        if version is None or version.investigation_id != investigation_id:
            raise NotFoundError(resource="Version", resource_id=version_id)
        return version

    @staticmethod
    def diff(investigation_id, version_id_a, version_id_b):
        """Field-level and file-level differences between two versions."""
        a = SnapshotService.get_version(investigation_id, version_id_a)
        b = SnapshotService.get_version(investigation_id, version_id_b)
        fields_a, fields_b = a.field_snapshot or {}, b.field_snapshot or {}
        files_a, files_b = a.file_snapshot or {}, b.file_snapshot or {}

        fields = [
            {"field": name, "old_value": fields_a.get(name), "new_value": fields_b.get(name)}
            for name in changed_fields(fields_a, fields_b)
        ]
        files = changed_files(files_a, files_b)
        return {
            "version_a": a.to_dict(),
            "version_b": b.to_dict(),
            "changed_fields": fields,
            "changed_files": files,
            "summary": f"{len(fields)} field(s) changed, {len(files)} file(s) changed",
        }

    # ── Restore ───────────────────────────────────────────────────────

    @staticmethod
    def restore(investigation_id, version_id, mode):
        """
        Restore to a version in ``rollback`` or ``refocus`` mode.

        The pre-restore state is always captured first as a new version
        labelled "Restored to v<N>". Restores stay within the current run.

        Returns:
            {"new_version_id", "new_version_number", "message", "investigation"}
        """
        if mode not in RESTORE_MODES:
            raise ValidationError(
                f"Invalid restore mode: {mode}. Must be 'rollback' or 'refocus'",
                details={"mode": mode},
            )

        with investigation_lock(investigation_id):
            investigation = db.session.get(Investigation, investigation_id)
            if investigation is None:
                raise NotFoundError(resource="Investigation", resource_id=investigation_id)
            target = SnapshotService.get_version(investigation_id, version_id)
            target_number = target.version_number
            target_label = target.label or target.checkpoint

            new_version = SnapshotService.create(
                investigation,
                investigation.current_checkpoint,
                f"Restored to v{target_number}",
                investigation.current_run_number,
            )

            if mode == "rollback":
                fields = target.field_snapshot or {}
                for name in TRACKED_FIELDS:
                    if name in ("status", "current_checkpoint"):
                        continue
                    setattr(investigation, name, fields.get(name))
                investigation.status = "waiting"
                investigation.current_checkpoint = target.checkpoint
                investigation.error_message = None
                investigation.error_type = None
                investigation.resolved_at = None
                documents.restore_files(investigation_id, target.file_snapshot or {})
                content = f"Rolled back to version {target_number}: {target_label}"
                preview = f"Rolled back to v{target_number}"
                message = f"Rolled back to version {target_number}"
            else:
                investigation.anchor_version_id = target.id
                content = f"Re-focused investigation to version {target_number}: {target_label}"
                preview = f"Re-focused to v{target_number}"
                message = f"Re-focused to version {target_number}"

            conversation.log_item(
                investigation,
                "reset_marker",
                content,
                content_preview=preview,
                metadata={
                    "trigger": "restore",
                    "mode": mode,
                    "version_id": target.id,
                    "version_number": target_number,
                },
                version_id=new_version.id,
            )
            db.session.commit()

        logger.info(
            "Investigation restored (%s) to v%d", mode, target_number,
            extra={"investigation_id": investigation_id},
        )
        return {
            "new_version_id": new_version.id,
            "new_version_number": new_version.version_number,
            "message": message,
            "investigation": investigation.to_dict(),
        }
