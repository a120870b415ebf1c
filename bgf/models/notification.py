"""
BGF Dashboard
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import UTC, datetime

from bgf.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = frozenset({"info", "success", "warning", "error"})


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(20), default="info")

    # Link to source entity
    related_entity_type = db.Column(db.String(30), default="request")
    related_entity_id = db.Column(db.Integer, nullable=True, index=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC),
                           onupdate=lambda: datetime.now(UTC))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(UTC)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "related_entity_type": self.related_entity_type,
            "related_entity_id": self.related_entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
