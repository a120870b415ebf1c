"""
Notification Blueprint — the caller's own in-app inbox.

Endpoints:
    GET    /api/v1/notifications                 ?unread_only=true&limit=&offset=
    GET    /api/v1/notifications/unread-count
    POST   /api/v1/notifications/<nid>/read
    POST   /api/v1/notifications/read-all
    DELETE /api/v1/notifications/<nid>
"""

from flask import Blueprint, jsonify, request

from bgf.auth import current_actor, require_roles
from bgf.services.notification import NotificationService

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@require_roles()
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(max(request.args.get("limit", 50, type=int), 1), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_user(
        current_actor().id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/unread-count", methods=["GET"])
@require_roles()
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor().id)})


@notification_bp.route("/<int:nid>/read", methods=["POST"])
@require_roles()
def mark_read(nid):
    notif = NotificationService.mark_read(nid, current_actor().id)
    return jsonify(notif.to_dict())


@notification_bp.route("/read-all", methods=["POST"])
@require_roles()
def mark_all_read():
    count = NotificationService.mark_all_read(current_actor().id)
    return jsonify({"marked_read": count})


@notification_bp.route("/<int:nid>", methods=["DELETE"])
@require_roles()
def delete_notification(nid):
    NotificationService.delete(nid, current_actor().id)
    return jsonify({"message": "Notification deleted"})
