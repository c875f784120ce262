"""
RFP Platform
Notification Blueprint — in-app notifications of the current user.

Endpoints:
    GET    /api/v1/notifications              — list (?unread_only, rfp_id, limit, offset)
    POST   /api/v1/notifications/<id>/read    — mark one read
    POST   /api/v1/notifications/read-all     — mark all read
"""

from flask import Blueprint, jsonify, request

from rfp_platform.blueprints import pagination_args
from rfp_platform.middleware.permission_required import current_session_user, require_session
from rfp_platform.services.notification import NotificationService
from rfp_platform.utils.errors import E, api_error
from rfp_platform.utils.helpers import db_commit_or_error

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
@require_session()
def list_notifications():
    user = current_session_user()
    limit, offset = pagination_args()
    items, total = NotificationService.list_for_user(
        user,
        rfp_id=request.args.get("rfp_id", type=int),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user),
    }), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@require_session()
def mark_notification_read(notification_id):
    notif = NotificationService.mark_read(current_session_user(), notification_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
@require_session()
def mark_all_notifications_read():
    count = NotificationService.mark_all_read(current_session_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"marked_read": count}), 200
