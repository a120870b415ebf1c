"""
JWT Auth Middleware — parses the Bearer token and sets ``g.actor``.

The workflow engine never re-derives identity: the actor (id + role) taken
from a verified token here is what every service call receives.

Invalid or expired tokens leave ``g.actor`` unset; ``require_roles`` then
answers 401.
"""

import logging

import jwt as pyjwt
from flask import g, request

from bgf.auth import Actor
from bgf.models.user import Role
from bgf.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/staff-login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor = None
        g.jwt_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.actor = Actor(id=payload["sub"], role=Role(payload.get("role")))
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token expired"
        except (pyjwt.InvalidTokenError, ValueError) as exc:
            logger.info("Rejected bearer token on %s: %s", path, exc)
            g.jwt_error = "Invalid token"
