"""
Support Triage Orchestrator
Conversation log service.

Append-only narrative of an investigation: phase events, agent results,
operator decisions, customer messages and reset markers. Items are
attributed to the run active when they are written and are ordered by
``(created_at, id)``.

Metadata is validated per item type against
``CONVERSATION_METADATA_SCHEMA`` so the external JSON shape stays stable.
Write errors propagate: the log is part of the audit trail.
"""

import logging

from triage.core.exceptions import ValidationError
from triage.models import db, ensure_utc
from triage.models.investigation import (
    CONTENT_PREVIEW_LENGTH,
    CONVERSATION_ITEM_TYPES,
    CONVERSATION_METADATA_SCHEMA,
    ConversationItem,
    InvestigationVersion,
)

logger = logging.getLogger(__name__)


def validate_metadata(item_type, metadata):
    """Check ``metadata`` against the schema registered for ``item_type``."""
    if item_type not in CONVERSATION_ITEM_TYPES:
        raise ValidationError(
            f"Unknown conversation item type: {item_type}",
            details={"type": item_type},
        )
    metadata = metadata or {}
    if not isinstance(metadata, dict):
        raise ValidationError("Conversation metadata must be an object")
    required, optional = CONVERSATION_METADATA_SCHEMA[item_type]
    missing = sorted(required - metadata.keys())
    unknown = sorted(metadata.keys() - required - optional)
    if missing or unknown:
        details = {}
        if missing:
            details["missing"] = missing
        if unknown:
            details["unknown"] = unknown
        raise ValidationError(f"Invalid metadata for {item_type} item", details=details)
    return metadata


def make_preview(content, limit=CONTENT_PREVIEW_LENGTH):
    return (content or "")[:limit]


def log_item(
    investigation,
    item_type,
    content,
    *,
    phase=None,
    actor_name="System",
    actor_role="system",
    content_preview=None,
    metadata=None,
    version_id=None,
    run_number=None,
):
    """Append one item to the log (flushed, not committed).

    ``run_number`` defaults to the investigation's current run.
    """
    metadata = validate_metadata(item_type, metadata)
    item = ConversationItem(
        investigation_id=investigation.id,
        run_number=run_number or investigation.current_run_number,
        item_type=item_type,
        phase=phase,
        actor_name=actor_name,
        actor_role=actor_role,
        content=content or "",
        content_preview=make_preview(content_preview if content_preview is not None else content),
        item_metadata=metadata or None,
        version_id=version_id,
    )
    db.session.add(item)
    db.session.flush()
    logger.debug(
        "Conversation item %s logged", item_type,
        extra={"investigation_id": investigation.id, "run_number": item.run_number},
    )
    return item


def list_items(investigation, run_number=None, since=None):
    """Items for an investigation (optionally one run), oldest first.

    Each dict carries ``is_faded``: True when an anchor version is set and
    the item was created after the anchor snapshot.
    """
    q = ConversationItem.query.filter_by(investigation_id=investigation.id)
    if run_number is not None:
        q = q.filter_by(run_number=run_number)
    if since is not None:
        q = q.filter(ConversationItem.created_at > since)
    items = q.order_by(ConversationItem.created_at.asc(), ConversationItem.id.asc()).all()

    anchor_at = None
    if investigation.anchor_version_id:
        anchor = db.session.get(InvestigationVersion, investigation.anchor_version_id)
        if anchor is not None:
            anchor_at = ensure_utc(anchor.created_at)

    result = []
    for item in items:
        d = item.to_dict()
        d["is_faded"] = bool(anchor_at and ensure_utc(item.created_at) > anchor_at)
        result.append(d)
    return result

