# offsite_api/blueprints/notifications.py
from flask import Blueprint, request

from offsite_api.common.auth import current_actor, requires_perms
from offsite_api.common.errors import NotFound
from offsite_api.common.http import ok
from offsite_api.common.paging import paginate
from offsite_api.services.notifications import list_for_user, mark_read

bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")


@bp.get("")
@requires_perms("notification.read")
def list_notifications():
    unread = (request.args.get("unread") or "").lower() in ("1", "true", "yes")
    items, meta = paginate(list_for_user(current_actor().user_id, unread_only=unread), lambda n: n.to_dict())
    return ok(items, **meta)


@bp.post("/<int:notification_id>/read")
@requires_perms("notification.read")
def read_notification(notification_id: int):
    n = mark_read(current_actor().user_id, notification_id)
    if n is None:
        raise NotFound(message="Notification not found")
    return ok(n.to_dict())
