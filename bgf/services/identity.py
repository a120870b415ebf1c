"""
Identity Lookup — resolves user ids to actors and finds role holders.

``find_one_by_role`` returns the *first* active holder (lowest id). The
dashboard assumes exactly one Head of Programs, CEO and Patron; when more
than one exists the others are never auto-assigned. This is a known
limitation, kept explicit rather than guessed around.
"""

import logging

from sqlalchemy import select

from bgf.auth import Actor
from bgf.core.exceptions import ConflictError, NotFoundError, ValidationError
from bgf.models import db
from bgf.models.audit import write_audit
from bgf.models.user import Role, User

logger = logging.getLogger(__name__)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def resolve_user(user_id: int) -> Actor:
    """Return ``Actor(id, role)`` for an active user or raise ``NotFoundError``."""
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(resource="User", resource_id=user_id)
    return Actor(id=user.id, role=user.role)


def find_one_by_role(role: Role) -> User | None:
    """First active holder of ``role`` ordered by id, or None."""
    return db.session.execute(
        select(User)
        .where(User.role == role, User.is_active.is_(True))
        .order_by(User.id)
        .limit(1)
    ).scalar_one_or_none()


def list_users(role: Role | None = None, active_only: bool = True) -> list[User]:
    stmt = select(User).order_by(User.full_name, User.id)
    if role is not None:
        stmt = stmt.where(User.role == role)
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    return list(db.session.execute(stmt).scalars())


def create_user(
    email: str,
    full_name: str,
    role: str | Role,
    staff_access_code: str | None = None,
) -> User:
    """Create and commit a user. Raises ``ValidationError`` / ``ConflictError``."""
    email = (email or "").strip().lower()
    full_name = (full_name or "").strip()
    errors = {}
    if not email or "@" not in email:
        errors["email"] = "A valid email is required"
    if not full_name:
        errors["full_name"] = "full_name is required"
    try:
        role = Role(role)
    except ValueError:
        errors["role"] = f"Must be one of: {', '.join(r.value for r in Role)}"
    if errors:
        raise ValidationError("Invalid user", details=errors)

    if db.session.execute(select(User.id).where(User.email == email)).first():
        raise ConflictError(resource="User", field="email", value=email)
    if staff_access_code:
        taken = db.session.execute(
            select(User.id).where(User.staff_access_code == staff_access_code)
        ).first()
        if taken:
            raise ConflictError(resource="User", field="staff_access_code", value="***")

    user = User(email=email, full_name=full_name, role=role, staff_access_code=staff_access_code or None)
    db.session.add(user)
    db.session.commit()
    logger.info("User created", extra={"actor_id": user.id, "actor_role": str(role)})
    return user


def update_user(user_id: int, actor: Actor, data: dict) -> User:
    """
    Apply a profile change and commit.

    ``full_name`` may be changed by the user themself or an admin; ``role``
    and ``is_active`` only by an admin. The blueprint enforces who may call.
    """
    user = get_user(user_id)
    errors = {}
    changes = {}

    if "full_name" in data:
        full_name = data["full_name"]
        full_name = full_name.strip() if isinstance(full_name, str) else ""
        if not full_name:
            errors["full_name"] = "full_name must be a non-empty string"
        else:
            changes["full_name"] = full_name
    if "role" in data:
        try:
            changes["role"] = Role(data["role"])
        except ValueError:
            errors["role"] = f"Must be one of: {', '.join(r.value for r in Role)}"
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            errors["is_active"] = "is_active must be a boolean"
        elif data["is_active"] is False and user.id == actor.id:
            errors["is_active"] = "You cannot deactivate your own account"
        else:
            changes["is_active"] = data["is_active"]
    if errors:
        raise ValidationError("Invalid user update", details=errors)

    diff = {}
    for key, value in changes.items():
        old = getattr(user, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(user, key, value)

    if diff:
        write_audit(
            entity_type="user",
            entity_id=user.id,
            action="user.update",
            actor_user_id=actor.id,
            actor_role=actor.role,
            diff=diff,
        )
    db.session.commit()
    if diff:
        logger.info("User %s updated: %s", user.id, ", ".join(diff), extra={"actor_id": actor.id})
    return user


def deactivate_user(user_id: int, actor: Actor) -> User:
    """Soft delete: the user keeps their history but can no longer log in or be assigned."""
    return update_user(user_id, actor, {"is_active": False})
