"""
BGF Dashboard
Identity domain model.

Models:
    - User: a person holding exactly one dashboard role.

The role is a closed enum; every authorization decision in the workflow
engine compares ``Role`` members, never free-form strings.
"""

from datetime import UTC, datetime
from enum import StrEnum

from bgf.models import db


class Role(StrEnum):
    ADMIN = "admin"
    ASSISTANT_PROJECT_OFFICER = "assistant_project_officer"
    PROJECT_MANAGER = "project_manager"
    HEAD_OF_PROGRAMS = "head_of_programs"
    DIRECTOR = "director"
    CEO = "ceo"
    PATRON = "patron"
    USER = "user"


# Officer roles that can be assigned to review a request
OFFICER_ROLES = frozenset({Role.ASSISTANT_PROJECT_OFFICER, Role.PROJECT_MANAGER})

# Executives who sign off the final dual approval
EXECUTIVE_ROLES = frozenset({Role.CEO, Role.PATRON})

# Everybody except applicants
STAFF_ROLES = frozenset(r for r in Role if r is not Role.USER)


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200), nullable=False)
    role = db.Column(
        db.Enum(Role, native_enum=False, length=40, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=Role.USER,
        index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    staff_access_code = db.Column(db.String(64), unique=True, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value if self.role else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
