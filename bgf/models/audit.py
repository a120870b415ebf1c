"""
BGF Dashboard
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of workflow transitions.
"""

import json
from datetime import UTC, datetime

from bgf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = frozenset({"workflow", "request", "user"})

AUDIT_ACTIONS = frozenset({
    "workflow.initialize",
    "workflow.hop_initial_review",
    "workflow.assign_officer",
    "workflow.reassign_officer",
    "workflow.officer_review",
    "workflow.hop_final_review",
    "workflow.assign_director",
    "workflow.reassign_director",
    "workflow.director_review",
    "workflow.executive_approval",
    "workflow.assign_head_of_programs",
    "workflow.assign_executive",
    "request.update",
    "request.delete",
    "user.update",
})


class AuditLog(db.Model):
    """
    Immutable audit trail, one row per committed action.

    ``diff_json`` carries an old→new snapshot of every field the action
    changed.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(db.String(30), nullable=False, comment="workflow | request | user")
    entity_id = db.Column(db.String(36), nullable=False, comment="request id as string")

    action = db.Column(db.String(60), nullable=False, comment="workflow.assign_officer | …")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="NULL for system entries",
    )
    actor_role = db.Column(db.String(40), nullable=True)

    diff_json = db.Column(db.Text, default="{}", comment="JSON: {field: {old, new}}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "actor_role": self.actor_role,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: int | str,
    action: str,
    actor_user_id: int | None = None,
    actor_role: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Raises ``ValueError`` for an entity type or action outside the
    declared vocabulary. Returns the (flushed) AuditLog instance.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type!r}")
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")
    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        actor_role=str(actor_role) if actor_role is not None else None,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
