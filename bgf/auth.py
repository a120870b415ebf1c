"""
BGF Dashboard
Authorization helpers.

Provides:
    - Actor: the verified caller (id + role) taken from the JWT
    - current_actor(): the Actor of the current request
    - require_roles(): coarse role gate for an endpoint

Security model:
    - Endpoints declare the roles allowed to call them (401 without a valid
      token, 403 for any other role).
    - The workflow engine then checks that the specific actor id is the
      assignee recorded for the stage; that check is authoritative.
"""

import functools
import logging
from dataclasses import dataclass

from flask import g, request

from bgf.models.user import Role
from bgf.utils.errors import E, api_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller of a service operation."""

    id: int
    role: Role


def current_actor() -> Actor | None:
    return getattr(g, "actor", None)


def require_roles(*roles: Role):
    """
    Decorator: require an authenticated actor, optionally with one of ``roles``.

    Usage:
        @workflow_bp.route(...)
        @require_roles(Role.HEAD_OF_PROGRAMS)
        def assign_officer(request_id): ...

    With no arguments any authenticated actor is accepted.
    """
    allowed = frozenset(roles)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                message = getattr(g, "jwt_error", None) or "Authentication required"
                return api_error(E.UNAUTHENTICATED, message)

            if allowed and actor.role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access %s (allowed: %s)",
                    actor.role, request.path, ", ".join(sorted(allowed)),
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")

            return f(*args, **kwargs)
        return decorated
    return decorator
