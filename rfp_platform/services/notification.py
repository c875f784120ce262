"""
RFP Platform
Notification Service.

Central service for creating and querying in-app notifications.
Timeline actions and automation reminders notify RFP owners through here.

Recipients: a notification either targets one user (``user_id``) or every
buyer of the company (``user_id`` NULL).  Methods flush; the caller commits.
"""

from datetime import datetime, timezone

from sqlalchemy import or_

from rfp_platform.models import db
from rfp_platform.models.notification import (
    NOTIFICATION_CATEGORIES,
    NOTIFICATION_SEVERITIES,
    Notification,
)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, company_id, title, message="", category="system", severity="info",
               user_id=None, rfp_id=None, session=None):
        """
        Create a single notification record.

        Unknown categories/severities fall back to ``system`` / ``info``.
        """
        session = session or db.session
        notif = Notification(
            company_id=company_id,
            user_id=user_id,
            rfp_id=rfp_id,
            title=title[:300],
            message=message,
            category=category if category in NOTIFICATION_CATEGORIES else "system",
            severity=severity if severity in NOTIFICATION_SEVERITIES else "info",
        )
        session.add(notif)
        session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def _visible_to(user):
        q = Notification.query.filter(Notification.company_id == user.company_id)
        if user.role == "buyer":
            return q.filter(or_(Notification.user_id == user.id, Notification.user_id.is_(None)))
        return q.filter(Notification.user_id == user.id)

    @staticmethod
    def list_for_user(user, rfp_id=None, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications visible to *user*, newest first.

        Returns:
            (items, total)
        """
        q = NotificationService._visible_to(user)
        if rfp_id:
            q = q.filter_by(rfp_id=rfp_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user):
        return NotificationService._visible_to(user).filter_by(is_read=False).count()

    @staticmethod
    def get_for_user(user, notification_id):
        return NotificationService._visible_to(user).filter(Notification.id == notification_id).first()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(user, notification_id):
        """Mark a single notification as read; None when not visible to *user*."""
        notif = NotificationService.get_for_user(user, notification_id)
        if notif and not notif.is_read:
            notif.mark_read()
            db.session.flush()
        return notif

    @staticmethod
    def mark_all_read(user):
        """Mark every unread notification visible to *user* as read.  Returns the count."""
        now = datetime.now(timezone.utc)
        items = NotificationService._visible_to(user).filter_by(is_read=False).all()
        for notif in items:
            notif.is_read = True
            notif.read_at = now
        db.session.flush()
        return len(items)
