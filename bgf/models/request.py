"""
BGF Dashboard
Grant request domain model.

Models:
    - GrantRequest: a funding request submitted by an applicant.

``status`` is a denormalized mirror of the owning workflow's derived status.
Only the workflow engine writes it (see ``bgf.services.request_service.set_request_status``).
"""

from datetime import UTC, datetime
from enum import StrEnum

from bgf.models import db


class RequestType(StrEnum):
    SCHOLARSHIP = "scholarship"
    GRANT = "grant"
    HEALTH_WELLNESS = "health_wellness"
    FOOD_NUTRITION = "food_nutrition"
    WASH = "wash"
    DRR_SOCIAL_PROTECTION = "drr_social_protection"
    EDUCATION = "education"
    SDA_SUPPORT = "sda_support"


class RequestStatus(StrEnum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    OFFICER_REVIEWED = "officer_reviewed"
    HOP_REVIEWED = "hop_reviewed"
    DIRECTOR_REVIEWED = "director_reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class GrantRequest(db.Model):
    """
    A funding request.

    One-to-one with ``RequestWorkflow``; both rows are created in the same
    transaction by ``request_service.create_request``.
    """

    __tablename__ = "requests"

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(20), nullable=False, unique=True, comment="BGF-000001")
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    request_type = db.Column(
        db.Enum(RequestType, native_enum=False, length=40, values_callable=_enum_values),
        nullable=False,
    )
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    requester_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    status = db.Column(
        db.Enum(RequestStatus, native_enum=False, length=40, values_callable=_enum_values),
        nullable=False,
        default=RequestStatus.SUBMITTED,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    requester = db.relationship("User", foreign_keys=[requester_id], lazy="joined")
    workflow = db.relationship(
        "RequestWorkflow", back_populates="request", uselist=False, cascade="all, delete-orphan",
    )

    def to_dict(self, include_workflow=False):
        d = {
            "id": self.id,
            "ticket_number": self.ticket_number,
            "title": self.title,
            "description": self.description,
            "request_type": self.request_type.value if self.request_type else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "requester_id": self.requester_id,
            "requester_name": self.requester.full_name if self.requester else None,
            "status": self.status.value if self.status else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_workflow:
            d["workflow"] = self.workflow.to_dict() if self.workflow else None
        return d

    def __repr__(self):
        return f"<GrantRequest {self.id}: {self.ticket_number} [{self.status}]>"
