"""
Support Triage Orchestrator
Investigation domain models.

Models:
    - Investigation:       root entity for one support ticket under triage
    - InvestigationRun:    one attempt at investigating the ticket (run ledger)
    - InvestigationVersion: immutable snapshot of fields + tracked documents
    - ConversationItem:    append-only narrative log entry, scoped to a run
    - TicketResponse:      one parsed message from the external ticket thread
    - PhaseTask:           queued/running phase execution (one in flight per investigation)
    - DebounceTimer:       persisted "evaluate at" deadline for customer replies

Architecture:
    Investigation ──1:N──▶ InvestigationRun
    Investigation ──1:N──▶ InvestigationVersion
    Investigation ──1:N──▶ ConversationItem
    Investigation ──1:N──▶ TicketResponse
    Investigation ──1:N──▶ PhaseTask
    Investigation ──1:1──▶ DebounceTimer

Lifecycle states:
    Investigation:  running → waiting → (running → waiting)* → complete
                    any → paused (abort) | running → error (phase failure)
    Checkpoints:    checkpoint_1 → checkpoint_2 → checkpoint_3 → checkpoint_4
    Run:            running → complete | superseded
    PhaseTask:      queued → running → succeeded | failed | discarded
"""

from datetime import datetime, timezone

from triage.models import db, iso


# ── Constants ────────────────────────────────────────────────────────────────

INVESTIGATION_STATUSES = {"running", "waiting", "paused", "error", "complete"}

CLASSIFICATIONS = {
    "connector_bug", "product_bug", "feature_request",
    "documentation", "general_question", "skip",
}

PRIORITIES = {"P1", "P2", "P3", "P4"}

CP1 = "checkpoint_1_post_classification"
CP2 = "checkpoint_2_post_context_gathering"
CP3 = "checkpoint_3_investigation_validation"
CP4 = "checkpoint_4_solution_check"

CHECKPOINT_ORDER = [CP1, CP2, CP3, CP4]

# Actions that move an investigation forward one gate.
ADVANCE_ACTIONS = {"confirm", "continue", "approve"}
ABORT_ACTION = "abort"

RUN_TRIGGER_TYPES = {"manual", "new_response", "hard_reset"}
RUN_STATUSES = {"running", "complete", "superseded"}

PHASES = {"phase0", "phase1", "phase2"}
PHASE_TASK_STATUSES = {"queued", "running", "succeeded", "failed", "discarded"}
ACTIVE_TASK_STATUSES = {"queued", "running"}

# Phase launched when the operator advances past a checkpoint.
PHASE_AFTER_CHECKPOINT = {
    CP1: "phase1",
    CP2: "phase2",
}

# Checkpoint a completed phase unblocks.
PHASE_COMPLETES_AT = {
    "phase0": CP1,
    "phase1": CP2,
    "phase2": CP3,
}

# Phase owed when an investigation is manually retried at a checkpoint.
PHASE_FOR_RETRY = {
    None: "phase0",
    CP1: "phase0",
    CP2: "phase1",
    CP3: "phase2",
    CP4: None,
}

RESTORE_MODES = {"rollback", "refocus"}

# Investigation fields captured by snapshots and compared by diffs.
TRACKED_FIELDS = [
    "customer_name", "classification", "connector_name", "product_area",
    "priority", "suggested_priority", "status", "current_checkpoint",
]

# Fields an operator may edit directly.
EDITABLE_FIELDS = {
    "customer_name", "classification", "connector_name", "product_area",
    "priority", "ticket_title",
}

TICKET_DATA_FILE = "ticket-data.json"
FINDINGS_FILE = "phase1-findings.md"
SUMMARY_FILE = "summary.md"
CUSTOMER_RESPONSE_FILE = "customer-response.md"
ISSUE_DRAFT_FILE = "issue-draft.md"
ACTIONS_FILE = "checkpoint-actions.json"
ACTIVITY_FILE = "activity-log.jsonl"
METRICS_FILE = "metrics.json"

TRACKED_FILES = [
    TICKET_DATA_FILE, FINDINGS_FILE, SUMMARY_FILE,
    CUSTOMER_RESPONSE_FILE, ISSUE_DRAFT_FILE, ACTIONS_FILE,
]

# Everything copied into the run archive on hard reset.
ARCHIVED_FILES = TRACKED_FILES + [ACTIVITY_FILE, METRICS_FILE]


# ── Conversation items ───────────────────────────────────────────────────────

CONVERSATION_ITEM_TYPES = {
    "customer_message", "agent_message", "system_phase",
    "system_result", "human_decision", "reset_marker",
}

# Metadata keys per item type: (required, optional).
CONVERSATION_METADATA_SCHEMA = {
    "customer_message": (
        set(),
        {"source", "no_new_info", "ticket_response_id", "sequence_number", "debounce_reason"},
    ),
    "agent_message": (set(), {"source", "sources"}),
    "system_phase": ({"event"}, {"duration_ms", "error", "error_type", "task_id"}),
    "system_result": (
        set(),
        {"doc_type", "file", "sources", "classification", "priority",
         "connector_name", "product_area", "customer_name"},
    ),
    "human_decision": ({"action", "checkpoint"}, {"feedback"}),
    "reset_marker": (
        {"trigger"},
        {"previous_run", "new_run", "version_number", "version_id", "mode"},
    ),
}

CONTENT_PREVIEW_LENGTH = 120


def next_checkpoint(checkpoint):
    """Return the gate following ``checkpoint``, or None at the last one."""
    if checkpoint not in CHECKPOINT_ORDER:
        return None
    idx = CHECKPOINT_ORDER.index(checkpoint)
    if idx + 1 >= len(CHECKPOINT_ORDER):
        return None
    return CHECKPOINT_ORDER[idx + 1]


def validate_checkpoint(checkpoint):
    """Return True if ``checkpoint`` names one of the four gates."""
    return checkpoint in CHECKPOINT_ORDER


# ═════════════════════════════════════════════════════════════════════════════
# Investigation
# ═════════════════════════════════════════════════════════════════════════════


class Investigation(db.Model):
    """
    One support ticket under triage.

    The primary key is the external ticket id supplied by the caller.
    Rows are never deleted; a hard reset bumps ``current_run_number``
    and archives the working documents instead.
    """

    __tablename__ = "investigations"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('running','waiting','paused','error','complete')",
            name="ck_investigation_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=False,
                   comment="External ticket id")
    ticket_title = db.Column(db.String(500), nullable=True)

    # Classification
    customer_name = db.Column(db.String(200), nullable=True)
    classification = db.Column(db.String(30), nullable=True,
                               comment="connector_bug, product_bug, feature_request, ...")
    connector_name = db.Column(db.String(100), nullable=True)
    product_area = db.Column(db.String(100), nullable=True)
    priority = db.Column(db.String(2), nullable=True, comment="P1-P4")
    suggested_priority = db.Column(db.String(2), nullable=True)

    # Workflow
    status = db.Column(db.String(20), nullable=False, default="running")
    current_checkpoint = db.Column(db.String(50), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    error_type = db.Column(db.String(20), nullable=True, comment="auth, general")

    # Versioning (plain integers: versions reference investigations already)
    current_version_id = db.Column(db.Integer, nullable=True)
    anchor_version_id = db.Column(db.Integer, nullable=True)

    # Runs + replies
    current_run_number = db.Column(db.Integer, nullable=False, default=1)
    has_new_reply = db.Column(db.Boolean, nullable=False, default=False)
    new_reply_summary = db.Column(db.Text, nullable=True)
    last_customer_message_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_response_check_at = db.Column(db.DateTime(timezone=True), nullable=True)

    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    runs = db.relationship("InvestigationRun", backref="investigation", lazy="dynamic",
                           order_by="InvestigationRun.run_number")

    def tracked_fields(self):
        """Current values of the snapshot-tracked fields."""
        return {name: getattr(self, name) for name in TRACKED_FIELDS}

    def to_dict(self):
        return {
            "id": self.id,
            "ticket_title": self.ticket_title,
            "customer_name": self.customer_name,
            "classification": self.classification,
            "connector_name": self.connector_name,
            "product_area": self.product_area,
            "priority": self.priority,
            "suggested_priority": self.suggested_priority,
            "status": self.status,
            "current_checkpoint": self.current_checkpoint,
            "error_message": self.error_message,
            "error_type": self.error_type,
            "current_version_id": self.current_version_id,
            "anchor_version_id": self.anchor_version_id,
            "current_run_number": self.current_run_number,
            "has_new_reply": self.has_new_reply,
            "new_reply_summary": self.new_reply_summary,
            "last_customer_message_at": iso(self.last_customer_message_at),
            "last_response_check_at": iso(self.last_response_check_at),
            "resolved_at": iso(self.resolved_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Investigation {self.id} [{self.status}] {self.current_checkpoint}>"


# ═════════════════════════════════════════════════════════════════════════════
# Run ledger
# ═════════════════════════════════════════════════════════════════════════════


class InvestigationRun(db.Model):
    """
    One attempt at investigating a ticket.

    Exactly one run per investigation is not ``superseded``. Superseded
    runs are never written again.
    """

    __tablename__ = "investigation_runs"
    __table_args__ = (
        db.UniqueConstraint("investigation_id", "run_number", name="uq_run_investigation_number"),
        db.CheckConstraint(
            "status IN ('running','complete','superseded')",
            name="ck_run_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    investigation_id = db.Column(db.Integer, db.ForeignKey("investigations.id"),
                                 nullable=False, index=True)
    run_number = db.Column(db.Integer, nullable=False)
    trigger_type = db.Column(db.String(20), nullable=False, default="manual",
                             comment="manual, new_response, hard_reset")
    trigger_summary = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="running")
    current_checkpoint = db.Column(db.String(50), nullable=True)

    started_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "investigation_id": self.investigation_id,
            "run_number": self.run_number,
            "trigger_type": self.trigger_type,
            "trigger_summary": self.trigger_summary,
            "status": self.status,
            "current_checkpoint": self.current_checkpoint,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
        }

    def __repr__(self):
        return f"<InvestigationRun {self.investigation_id}#{self.run_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Snapshot store
# ═════════════════════════════════════════════════════════════════════════════


class InvestigationVersion(db.Model):
    """
    Immutable snapshot of an investigation.

    ``field_snapshot`` holds the tracked fields; ``file_snapshot`` maps each
    tracked document name to its content, or None when the file was absent.
    """

    __tablename__ = "investigation_versions"
    __table_args__ = (
        db.UniqueConstraint("investigation_id", "version_number",
                            name="uq_version_investigation_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    investigation_id = db.Column(db.Integer, db.ForeignKey("investigations.id"),
                                 nullable=False, index=True)
    run_number = db.Column(db.Integer, nullable=False, default=1)
    version_number = db.Column(db.Integer, nullable=False)
    label = db.Column(db.String(300), nullable=True)
    checkpoint = db.Column(db.String(50), nullable=True)
    field_snapshot = db.Column(db.JSON, nullable=False, default=dict)
    file_snapshot = db.Column(db.JSON, nullable=False, default=dict)
    diff_summary = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(50), nullable=False, default="system")
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self, include_content=False):
        d = {
            "id": self.id,
            "investigation_id": self.investigation_id,
            "run_number": self.run_number,
            "version_number": self.version_number,
            "label": self.label,
            "checkpoint": self.checkpoint,
            "diff_summary": self.diff_summary,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }
        if include_content:
            d["field_snapshot"] = self.field_snapshot
            d["file_snapshot"] = self.file_snapshot
        return d

    def __repr__(self):
        return f"<InvestigationVersion {self.investigation_id} v{self.version_number}>"


# ═════════════════════════════════════════════════════════════════════════════
# Conversation log
# ═════════════════════════════════════════════════════════════════════════════


class ConversationItem(db.Model):
    """Append-only narrative entry, attributed to the run active at creation."""

    __tablename__ = "conversation_items"
    __table_args__ = (
        db.Index("ix_conversation_investigation_run", "investigation_id", "run_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    investigation_id = db.Column(db.Integer, db.ForeignKey("investigations.id"),
                                 nullable=False, index=True)
    run_number = db.Column(db.Integer, nullable=False, default=1)
    item_type = db.Column("type", db.String(30), nullable=False)
    phase = db.Column(db.String(20), nullable=True)
    actor_name = db.Column(db.String(100), nullable=True)
    actor_role = db.Column(db.String(30), nullable=True)
    content = db.Column(db.Text, nullable=False, default="")
    content_preview = db.Column(db.String(CONTENT_PREVIEW_LENGTH), nullable=True)
    item_metadata = db.Column("metadata", db.JSON, nullable=True)
    version_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "investigation_id": self.investigation_id,
            "run_number": self.run_number,
            "type": self.item_type,
            "phase": self.phase,
            "actor_name": self.actor_name,
            "actor_role": self.actor_role,
            "content": self.content,
            "content_preview": self.content_preview,
            "metadata": self.item_metadata or {},
            "version_id": self.version_id,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<ConversationItem {self.investigation_id}#{self.run_number} {self.item_type}>"


# ═════════════════════════════════════════════════════════════════════════════
# Ticket thread responses
# ═════════════════════════════════════════════════════════════════════════════


class TicketResponse(db.Model):
    """One message parsed from the external ticket thread."""

    __tablename__ = "ticket_responses"
    __table_args__ = (
        db.UniqueConstraint("investigation_id", "sequence_number",
                            name="uq_response_investigation_sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    investigation_id = db.Column(db.Integer, db.ForeignKey("investigations.id"),
                                 nullable=False, index=True)
    sequence_number = db.Column(db.Integer, nullable=False)
    actor_role = db.Column(db.String(20), nullable=False, default="customer",
                           comment="customer, agent")
    actor_name = db.Column(db.String(200), nullable=True)
    content = db.Column(db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime(timezone=True), nullable=True,
                           comment="Message time as reported by the thread")
    fetched_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    triggered_reanalysis = db.Column(db.Boolean, nullable=False, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "investigation_id": self.investigation_id,
            "sequence_number": self.sequence_number,
            "actor_role": self.actor_role,
            "actor_name": self.actor_name,
            "content": self.content,
            "created_at": iso(self.created_at),
            "fetched_at": iso(self.fetched_at),
            "triggered_reanalysis": self.triggered_reanalysis,
        }

    def __repr__(self):
        return f"<TicketResponse {self.investigation_id}:{self.sequence_number} {self.actor_role}>"


# ═════════════════════════════════════════════════════════════════════════════
# Phase task queue
# ═════════════════════════════════════════════════════════════════════════════


class PhaseTask(db.Model):
    """
    One phase execution for an investigation.

    At most one task per investigation is ``queued`` or ``running``.
    A task whose run was superseded before it finished ends ``discarded``.
    """

    __tablename__ = "phase_tasks"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('queued','running','succeeded','failed','discarded')",
            name="ck_phase_task_status",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    investigation_id = db.Column(db.Integer, db.ForeignKey("investigations.id"),
                                 nullable=False, index=True)
    run_number = db.Column(db.Integer, nullable=False)
    phase = db.Column(db.String(20), nullable=False, comment="phase0, phase1, phase2")
    status = db.Column(db.String(20), nullable=False, default="queued")
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_active(self):
        return self.status in ACTIVE_TASK_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "investigation_id": self.investigation_id,
            "run_number": self.run_number,
            "phase": self.phase,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": iso(self.created_at),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
        }

    def __repr__(self):
        return f"<PhaseTask {self.id} {self.investigation_id}/{self.phase} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Debounce timers
# ═════════════════════════════════════════════════════════════════════════════


class DebounceTimer(db.Model):
    """Pending new-reply evaluation; the row exists only while the timer runs."""

    __tablename__ = "debounce_timers"

    id = db.Column(db.Integer, primary_key=True)
    investigation_id = db.Column(db.Integer, db.ForeignKey("investigations.id"),
                                 nullable=False, unique=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=False)
    due_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    pending_messages = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self):
        return {
            "investigation_id": self.investigation_id,
            "started_at": iso(self.started_at),
            "due_at": iso(self.due_at),
            "pending_messages": self.pending_messages,
        }

    def __repr__(self):
        return f"<DebounceTimer {self.investigation_id} due={self.due_at}>"
