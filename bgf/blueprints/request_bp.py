"""
Grant Request Blueprint.

Endpoints:
    POST   /api/v1/requests                    { title, description, request_type, amount }
    GET    /api/v1/requests                    ?status=&request_type=
    GET    /api/v1/requests/<rid>
    GET    /api/v1/requests/ticket/<ticket>
    PUT    /api/v1/requests/<rid>              (requester only, while at submission)
    DELETE /api/v1/requests/<rid>              (requester at submission, admin at any stage)

Creating a request also creates its approval workflow.
"""

import logging

from flask import Blueprint, jsonify, request

from bgf.auth import current_actor, require_roles
from bgf.models.request import RequestStatus, RequestType
from bgf.services import request_service
from bgf.utils.errors import E, api_error

logger = logging.getLogger(__name__)

request_bp = Blueprint("request_bp", __name__, url_prefix="/api/v1/requests")


def _body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _visible_or_403(req):
    if not request_service.can_view(current_actor(), req):
        return api_error(E.FORBIDDEN, "Insufficient permissions")
    return None


@request_bp.route("", methods=["POST"])
@require_roles()
def create_request():
    data = _body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body is required")
    req = request_service.create_request(current_actor(), data)
    return jsonify(req.to_dict(include_workflow=True)), 201


@request_bp.route("", methods=["GET"])
@require_roles()
def list_requests():
    filters = {}
    for param, enum_cls in (("status", RequestStatus), ("request_type", RequestType)):
        raw = request.args.get(param)
        if raw:
            try:
                filters[param] = enum_cls(raw)
            except ValueError:
                return api_error(
                    E.VALIDATION_INVALID,
                    f"{param} must be one of: {', '.join(m.value for m in enum_cls)}",
                )
    items = request_service.list_requests(current_actor(), **filters)
    return jsonify({"items": [r.to_dict() for r in items], "total": len(items)})


@request_bp.route("/<int:request_id>", methods=["GET"])
@require_roles()
def get_request(request_id):
    req = request_service.get_request(request_id)
    err = _visible_or_403(req)
    if err:
        return err
    return jsonify(req.to_dict(include_workflow=True))


@request_bp.route("/ticket/<string:ticket_number>", methods=["GET"])
@require_roles()
def get_request_by_ticket(ticket_number):
    req = request_service.get_request_by_ticket(ticket_number)
    err = _visible_or_403(req)
    if err:
        return err
    return jsonify(req.to_dict(include_workflow=True))


@request_bp.route("/<int:request_id>", methods=["PUT"])
@require_roles()
def update_request(request_id):
    data = _body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "JSON object body is required")
    req = request_service.update_request(request_id, current_actor(), data)
    return jsonify(req.to_dict())


@request_bp.route("/<int:request_id>", methods=["DELETE"])
@require_roles()
def delete_request(request_id):
    request_service.delete_request(request_id, current_actor())
    return jsonify({"message": "Request deleted"}), 200
