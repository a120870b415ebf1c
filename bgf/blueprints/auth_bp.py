"""
Authentication Blueprint.

Endpoints:
    POST   /api/v1/auth/staff-login   { full_name, access_code }  → access token
    GET    /api/v1/auth/me
"""

from flask import Blueprint, jsonify, request

from bgf.auth import current_actor, require_roles
from bgf.services import identity
from bgf.services.staff_auth_service import InvalidCredentialsError, staff_login as _staff_login
from bgf.utils.errors import E, api_error

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/staff-login", methods=["POST"])
def staff_login():
    data = request.get_json(silent=True) or {}
    try:
        body = _staff_login(data.get("full_name"), data.get("access_code"))
    except InvalidCredentialsError as exc:
        return api_error(E.UNAUTHENTICATED, str(exc))
    return jsonify(body), 200


@auth_bp.route("/me", methods=["GET"])
@require_roles()
def me():
    return jsonify(identity.get_user(current_actor().id).to_dict())
