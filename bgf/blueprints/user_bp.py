"""
User Blueprint — staff directory used by the assignment pickers, plus
profile maintenance.

Endpoints:
    GET    /api/v1/users          ?role=project_manager   (staff only)
    POST   /api/v1/users          { email, full_name, role, staff_access_code }   (admin only)
    GET    /api/v1/users/<uid>    (staff, or the user themself)
    PUT    /api/v1/users/<uid>    { full_name, role, is_active }   (admin; self for full_name only)
    DELETE /api/v1/users/<uid>    (admin only; deactivates, never removes the row)
"""

from flask import Blueprint, jsonify, request

from bgf.auth import current_actor, require_roles
from bgf.models.user import STAFF_ROLES, Role
from bgf.services import identity
from bgf.utils.errors import E, api_error

user_bp = Blueprint("user_bp", __name__, url_prefix="/api/v1/users")

# Fields only an admin may change
_ADMIN_FIELDS = ("role", "is_active")


@user_bp.route("", methods=["GET"])
@require_roles(*STAFF_ROLES)
def list_users():
    role = request.args.get("role")
    if role:
        try:
            role = Role(role)
        except ValueError:
            return api_error(E.VALIDATION_INVALID, f"role must be one of: {', '.join(r.value for r in Role)}")
    users = identity.list_users(role or None)
    return jsonify({"items": [u.to_dict() for u in users], "total": len(users)})


@user_bp.route("", methods=["POST"])
@require_roles(Role.ADMIN)
def create_user():
    data = request.get_json(silent=True) or {}
    user = identity.create_user(
        email=data.get("email"),
        full_name=data.get("full_name"),
        role=data.get("role", Role.USER),
        staff_access_code=data.get("staff_access_code"),
    )
    return jsonify(user.to_dict()), 201


@user_bp.route("/<int:user_id>", methods=["GET"])
@require_roles()
def get_user(user_id):
    actor = current_actor()
    if actor.role is Role.USER and actor.id != user_id:
        return api_error(E.FORBIDDEN, "Insufficient permissions")
    return jsonify(identity.get_user(user_id).to_dict())


@user_bp.route("/<int:user_id>", methods=["PUT"])
@require_roles()
def update_user(user_id):
    actor = current_actor()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "JSON object body is required")
    if actor.role is not Role.ADMIN:
        if actor.id != user_id:
            return api_error(E.FORBIDDEN, "Not authorized to update this user")
        if any(field in data for field in _ADMIN_FIELDS):
            return api_error(E.FORBIDDEN, "Only an admin may change role or active status")
    user = identity.update_user(user_id, actor, data)
    return jsonify(user.to_dict())


@user_bp.route("/<int:user_id>", methods=["DELETE"])
@require_roles(Role.ADMIN)
def deactivate_user(user_id):
    user = identity.deactivate_user(user_id, current_actor())
    return jsonify({"message": "User deactivated", "user": user.to_dict()})
