"""
RFP Platform
RFP domain models.

Models:
    - RFP:        central aggregate; stage pipeline, milestones, timeline state
    - StageTask:  checklist item attached to one RFP stage

Architecture:
    Company ──1:N──▶ RFP ──1:N──▶ StageTask
    RFP ──1:N──▶ SupplierContact ──1:1──▶ SupplierResponse
    RFP ──1:N──▶ RfpTimelineEvent
    RFP ──1:N──▶ ActivityLog

Lifecycle (stage):
    INTAKE → QUALIFICATION → DISCOVERY → DRAFTING → PRICING_LEGAL_REVIEW
    → EXEC_REVIEW → SUBMISSION → DEBRIEF → ARCHIVED
    One-step backward moves between QUALIFICATION and EXEC_REVIEW are rework.
"""

import json
from datetime import datetime, timezone

from sqlalchemy.orm import validates

from rfp_platform.models import db
from rfp_platform.models.base import CompanyModel


# ── Constants ────────────────────────────────────────────────────────────────

STAGE_ORDER = [
    "INTAKE",
    "QUALIFICATION",
    "DISCOVERY",
    "DRAFTING",
    "PRICING_LEGAL_REVIEW",
    "EXEC_REVIEW",
    "SUBMISSION",
    "DEBRIEF",
    "ARCHIVED",
]
RFP_STAGES = set(STAGE_ORDER)

STAGE_LABELS = {
    "INTAKE": "Intake",
    "QUALIFICATION": "Qualification",
    "DISCOVERY": "Discovery",
    "DRAFTING": "Drafting",
    "PRICING_LEGAL_REVIEW": "Pricing & Legal Review",
    "EXEC_REVIEW": "Executive Review",
    "SUBMISSION": "Submission",
    "DEBRIEF": "Debrief",
    "ARCHIVED": "Archived",
}

RFP_STATUSES = {"draft", "published", "completed"}
RFP_PRIORITIES = {"LOW", "MEDIUM", "HIGH"}

# Allowed next stages.  Anything absent is rejected.
STAGE_TRANSITIONS = {
    "INTAKE":               ["QUALIFICATION"],
    "QUALIFICATION":        ["DISCOVERY", "INTAKE"],
    "DISCOVERY":            ["DRAFTING", "QUALIFICATION"],
    "DRAFTING":             ["PRICING_LEGAL_REVIEW", "DISCOVERY"],
    "PRICING_LEGAL_REVIEW": ["EXEC_REVIEW", "DRAFTING"],
    "EXEC_REVIEW":          ["SUBMISSION", "PRICING_LEGAL_REVIEW"],
    "SUBMISSION":           ["DEBRIEF"],
    "DEBRIEF":              ["ARCHIVED"],
    "ARCHIVED":             [],
}

MILESTONE_FIELDS = (
    "ask_questions_start",
    "ask_questions_end",
    "submission_start",
    "submission_end",
    "demo_window_start",
    "demo_window_end",
    "award_date",
)


def stage_index(stage):
    """Position of *stage* in the pipeline, or -1 for unknown names."""
    try:
        return STAGE_ORDER.index(stage)
    except ValueError:
        return -1


def normalize_task_title(title):
    """Comparison key for task titles (case and surrounding space insensitive)."""
    return (title or "").strip().lower()


def _iso(value):
    return value.isoformat() if value else None


def _loads(raw):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


# ═════════════════════════════════════════════════════════════════════════════
# RFP
# ═════════════════════════════════════════════════════════════════════════════


class RFP(CompanyModel):
    """
    Request-for-Proposal run by a buyer company.

    ``version`` is the optimistic row version; SQLAlchemy increments it on
    every UPDATE and raises StaleDataError when a concurrent writer got
    there first.
    """

    __tablename__ = "rfps"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Creator / owning buyer",
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(20), nullable=False, default="draft")
    priority = db.Column(db.String(10), nullable=False, default="MEDIUM")
    budget = db.Column(db.Float, nullable=True)

    # Stage pipeline
    stage = db.Column(db.String(30), nullable=False, default="INTAKE", index=True)
    entered_stage_at = db.Column(db.DateTime(timezone=True), nullable=True)
    stage_entered_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Legacy alias of entered_stage_at; entered_stage_at wins when both are set",
    )
    stage_sla_days = db.Column(db.Integer, nullable=True, comment="Per-RFP SLA override (days)")

    # Timeline milestones
    ask_questions_start = db.Column(db.DateTime(timezone=True), nullable=True)
    ask_questions_end = db.Column(db.DateTime(timezone=True), nullable=True)
    submission_start = db.Column(db.DateTime(timezone=True), nullable=True)
    submission_end = db.Column(db.DateTime(timezone=True), nullable=True)
    demo_window_start = db.Column(db.DateTime(timezone=True), nullable=True)
    demo_window_end = db.Column(db.DateTime(timezone=True), nullable=True)
    award_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Timeline engine state (versioned JSON records)
    timeline_config_json = db.Column(db.Text, nullable=True)
    timeline_state_json = db.Column(db.Text, nullable=True)
    submissions_locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Opportunity scoring
    opportunity_score = db.Column(db.Integer, nullable=True)
    opportunity_breakdown_json = db.Column(db.Text, nullable=True)

    # Archive
    is_archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_by_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    tasks = db.relationship(
        "StageTask", backref="rfp", lazy="dynamic",
        cascade="all, delete-orphan", order_by="StageTask.id",
    )
    supplier_contacts = db.relationship(
        "SupplierContact", backref="rfp", lazy="dynamic",
        cascade="all, delete-orphan", order_by="SupplierContact.id",
    )
    timeline_events = db.relationship(
        "RfpTimelineEvent", backref="rfp", lazy="dynamic",
        cascade="all, delete-orphan", order_by="RfpTimelineEvent.id",
    )

    @property
    def entered_at(self):
        """Stage entry timestamp, preferring the current column over the legacy one."""
        return self.entered_stage_at or self.stage_entered_at

    @property
    def timeline_state(self):
        return _loads(self.timeline_state_json)

    @property
    def opportunity_breakdown(self):
        return _loads(self.opportunity_breakdown_json)

    def to_dict(self):
        return {
            "id": self.id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "budget": self.budget,
            "stage": self.stage,
            "stage_label": STAGE_LABELS.get(self.stage, self.stage),
            "entered_stage_at": _iso(self.entered_at),
            "stage_sla_days": self.stage_sla_days,
            "milestones": {f: _iso(getattr(self, f)) for f in MILESTONE_FIELDS},
            "submissions_locked_at": _iso(self.submissions_locked_at),
            "opportunity_score": self.opportunity_score,
            "is_archived": self.is_archived,
            "archived_at": _iso(self.archived_at),
            "archived_by_id": self.archived_by_id,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RFP {self.id}: {self.title[:40]} [{self.stage}]>"


# ═════════════════════════════════════════════════════════════════════════════
# STAGE TASK
# ═════════════════════════════════════════════════════════════════════════════


class StageTask(db.Model):
    """
    Checklist item for one stage of one RFP.

    ``normalized_title`` backs the per-stage uniqueness rule used by
    stage-entry automation.  Tasks are never deleted automatically.
    """

    __tablename__ = "stage_tasks"
    __table_args__ = (
        db.UniqueConstraint("rfp_id", "stage", "normalized_title", name="uq_stage_task_title"),
        db.Index("idx_stage_task_rfp_stage", "rfp_id", "stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    rfp_id = db.Column(
        db.Integer, db.ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False,
    )
    stage = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    normalized_title = db.Column(db.String(300), nullable=False)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_automated = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @validates("title")
    def _sync_normalized_title(self, key, value):
        self.normalized_title = normalize_task_title(value)
        return value

    def set_completed(self, completed, now=None):
        self.completed = bool(completed)
        self.completed_at = (now or datetime.now(timezone.utc)) if self.completed else None

    def to_dict(self):
        return {
            "id": self.id,
            "rfp_id": self.rfp_id,
            "stage": self.stage,
            "title": self.title,
            "completed": self.completed,
            "completed_at": _iso(self.completed_at),
            "is_automated": self.is_automated,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<StageTask {self.id}: {self.stage} {self.title[:40]}>"
