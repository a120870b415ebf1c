"""Uniform JSON error bodies.

Every error response has the shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty. Blueprints call ``api_error`` directly for
malformed input; engine exceptions go through ``workflow_error_response``
from the app-level handler.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes. Workflow codes equal ``WorkflowError.code`` of the matching exception."""

    # Malformed input (400) / business rule (422)
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_BUSINESS = "ERR_VALIDATION_BUSINESS"

    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Stage transition refusals
    INVALID_STAGE = "ERR_INVALID_STAGE"
    UNAUTHORIZED_ACTOR = "ERR_UNAUTHORIZED_ACTOR"
    INVALID_ASSIGNMENT = "ERR_INVALID_ASSIGNMENT"
    PERSISTENCE_CONFLICT = "ERR_PERSISTENCE_CONFLICT"

    INTERNAL = "ERR_INTERNAL"


STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_BUSINESS: 422,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INVALID_STAGE: 400,
    E.UNAUTHORIZED_ACTOR: 403,
    E.INVALID_ASSIGNMENT: 400,
    E.PERSISTENCE_CONFLICT: 409,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for a view to return. Unknown codes default to 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS.get(code, 400)


def workflow_error_response(exc):
    """Map a ``WorkflowError`` to its response, exposing the stage context it carries."""
    details = {}
    for attr in ("current_stage", "required_stage", "action", "target_id", "attempts"):
        value = getattr(exc, attr, None)
        if value is not None:
            details[attr] = str(value) if attr.endswith("_stage") else value
    return api_error(exc.code, str(exc), details=details)
