"""
BGF Dashboard
Notification Service.

Central service for dispatching and querying in-app notifications.

``dispatch`` is fire-and-forget: the workflow engine calls it *after* its
own transaction has committed, and a failed delivery is logged as a
``NotificationDispatchFailure`` without ever reaching the caller.
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select, update

from bgf.core.exceptions import NotFoundError, NotificationDispatchFailure
from bgf.models import db
from bgf.models.notification import NOTIFICATION_TYPES, Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def dispatch(user_id, title, message="", related_request_id=None, type="info"):
        """
        Best-effort delivery of one notification.

        Returns the committed Notification, or None when the recipient is
        unknown (unassigned stage) or delivery failed.
        """
        if user_id is None:
            return None
        try:
            return NotificationService._deliver(user_id, title, message, related_request_id, type)
        except Exception as exc:
            db.session.rollback()
            failure = NotificationDispatchFailure(user_id, title, exc)
            logger.warning(
                "%s", failure,
                exc_info=True,
                extra={"recipient_id": user_id, "grant_request_id": related_request_id},
            )
            return None

    @staticmethod
    def dispatch_many(messages):
        """Dispatch ``(user_id, title, message, related_request_id, type)`` tuples in order."""
        return [NotificationService.dispatch(*m) for m in messages]

    @staticmethod
    def _deliver(user_id, title, message, related_request_id, type):
        if type not in NOTIFICATION_TYPES:
            type = "info"
        notif = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            related_entity_type="request",
            related_entity_id=related_request_id,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a user, newest first.

        Returns:
            (items, total)
        """
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        total = db.session.execute(
            select(func.count()).select_from(stmt.subquery())
        ).scalar_one()
        items = db.session.execute(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
        ).scalars().all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        """Return count of unread notifications."""
        return db.session.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
        ).scalar_one()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification of ``user_id`` as read."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a user as read. Returns the count updated."""
        result = db.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True, read_at=datetime.now(UTC))
        )
        db.session.commit()
        return result.rowcount

    @staticmethod
    def delete(notification_id, user_id):
        """Delete a single notification of ``user_id``."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        db.session.delete(notif)
        db.session.commit()
