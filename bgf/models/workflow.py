"""
BGF Dashboard
Approval workflow domain model.

Models:
    - RequestWorkflow: one row per request; current stage, per-stage
      assignees, dates, notes and the CEO/Patron dual-approval flags.
    - WorkflowComment: append-only discussion thread of a workflow.

Stage order:
    submission → hop_review → officer_assignment → officer_review →
    hop_final_review → director_review → executive_approval → completed

A rejection at executive approval is stored as ``completed`` with
``disposition = rejected``.

``version_id`` is SQLAlchemy's optimistic-lock counter: an UPDATE issued
from a stale snapshot matches zero rows and raises ``StaleDataError``.
"""

from datetime import UTC, datetime
from enum import StrEnum

from bgf.models import db


class WorkflowStage(StrEnum):
    SUBMISSION = "submission"
    HOP_REVIEW = "hop_review"
    OFFICER_ASSIGNMENT = "officer_assignment"
    OFFICER_REVIEW = "officer_review"
    HOP_FINAL_REVIEW = "hop_final_review"
    DIRECTOR_REVIEW = "director_review"
    EXECUTIVE_APPROVAL = "executive_approval"
    COMPLETED = "completed"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER = tuple(WorkflowStage)


class Disposition(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


def _now():
    return datetime.now(UTC)


class RequestWorkflow(db.Model):
    __tablename__ = "request_workflow"
    __table_args__ = (
        db.Index("idx_workflow_stage", "current_stage"),
        db.Index("idx_workflow_updated", "updated_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    current_stage = db.Column(
        db.Enum(WorkflowStage, native_enum=False, length=40, values_callable=_enum_values),
        nullable=False,
        default=WorkflowStage.SUBMISSION,
    )

    # Assignees, populated as their stage is reached
    head_of_programs_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    assistant_project_officer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    project_manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    director_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    ceo_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    patron_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Per-stage dates and notes
    submission_date = db.Column(db.DateTime(timezone=True), default=_now)
    hop_review_date = db.Column(db.DateTime(timezone=True), nullable=True)
    hop_review_notes = db.Column(db.Text, nullable=True)
    officer_assignment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    officer_review_date = db.Column(db.DateTime(timezone=True), nullable=True)
    officer_review_notes = db.Column(db.Text, nullable=True)
    hop_final_review_date = db.Column(db.DateTime(timezone=True), nullable=True)
    hop_final_review_notes = db.Column(db.Text, nullable=True)
    director_assignment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    director_review_date = db.Column(db.DateTime(timezone=True), nullable=True)
    director_review_notes = db.Column(db.Text, nullable=True)
    executive_approval_date = db.Column(db.DateTime(timezone=True), nullable=True)
    executive_approval_notes = db.Column(db.Text, nullable=True)

    # Dual approval
    ceo_approved = db.Column(db.Boolean, nullable=True)
    ceo_notes = db.Column(db.Text, nullable=True)
    patron_approved = db.Column(db.Boolean, nullable=True)
    patron_notes = db.Column(db.Text, nullable=True)

    completed = db.Column(db.Boolean, nullable=False, default=False)
    disposition = db.Column(
        db.Enum(Disposition, native_enum=False, length=20, values_callable=_enum_values),
        nullable=True,
    )

    version_id = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_now)
    updated_at = db.Column(db.DateTime(timezone=True), default=_now, onupdate=_now)

    __mapper_args__ = {"version_id_col": version_id}

    request = db.relationship("GrantRequest", back_populates="workflow")
    comments = db.relationship(
        "WorkflowComment",
        back_populates="workflow",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="WorkflowComment.created_at",
    )

    @property
    def officer_id(self) -> int | None:
        return self.assistant_project_officer_id or self.project_manager_id

    @property
    def officer_type(self) -> str | None:
        if self.assistant_project_officer_id is not None:
            return "assistant_project_officer"
        if self.project_manager_id is not None:
            return "project_manager"
        return None

    def to_dict(self):
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "request_id": self.request_id,
            "current_stage": self.current_stage.value if self.current_stage else None,
            "head_of_programs_id": self.head_of_programs_id,
            "assistant_project_officer_id": self.assistant_project_officer_id,
            "project_manager_id": self.project_manager_id,
            "officer_type": self.officer_type,
            "director_id": self.director_id,
            "ceo_id": self.ceo_id,
            "patron_id": self.patron_id,
            "submission_date": _iso(self.submission_date),
            "hop_review_date": _iso(self.hop_review_date),
            "hop_review_notes": self.hop_review_notes,
            "officer_assignment_date": _iso(self.officer_assignment_date),
            "officer_review_date": _iso(self.officer_review_date),
            "officer_review_notes": self.officer_review_notes,
            "hop_final_review_date": _iso(self.hop_final_review_date),
            "hop_final_review_notes": self.hop_final_review_notes,
            "director_assignment_date": _iso(self.director_assignment_date),
            "director_review_date": _iso(self.director_review_date),
            "director_review_notes": self.director_review_notes,
            "executive_approval_date": _iso(self.executive_approval_date),
            "executive_approval_notes": self.executive_approval_notes,
            "ceo_approved": self.ceo_approved,
            "ceo_notes": self.ceo_notes,
            "patron_approved": self.patron_approved,
            "patron_notes": self.patron_notes,
            "completed": self.completed,
            "disposition": self.disposition.value if self.disposition else None,
            "version": self.version_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<RequestWorkflow {self.id}: request={self.request_id} stage={self.current_stage}>"


class WorkflowComment(db.Model):
    """Append-only; no edit or delete."""

    __tablename__ = "workflow_comments"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("request_workflow.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    comment = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_now)

    workflow = db.relationship("RequestWorkflow", back_populates="comments")
    author = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "user_id": self.user_id,
            "user_name": self.author.full_name if self.author else None,
            "user_role": self.author.role.value if self.author and self.author.role else None,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WorkflowComment {self.id}: workflow={self.workflow_id}>"
