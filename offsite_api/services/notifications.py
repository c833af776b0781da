# offsite_api/services/notifications.py
import logging
from datetime import datetime
from typing import Iterable, Optional

from offsite_api.extensions import db
from offsite_api.models.notification import Notification
from offsite_api.services.side_effects import best_effort

log = logging.getLogger(__name__)


def _persist(user_id: int, type_: str, title: str, message: str, data: Optional[dict]):
    n = Notification(user_id=user_id, type=type_, title=title, message=message, data=data or None)
    db.session.add(n)
    db.session.commit()
    return n


def notify(user_id: int, type_: str, title: str, message: str, data: Optional[dict] = None):
    """In-app notification; failures are logged and swallowed."""
    if not user_id:
        return None
    return best_effort(f"notify:{type_}", _persist, user_id, type_, title, message, data)


def notify_many(user_ids: Iterable[int], type_: str, title: str, message: str,
                data: Optional[dict] = None) -> int:
    sent = 0
    for uid in dict.fromkeys(u for u in user_ids if u):
        if notify(uid, type_, title, message, data) is not None:
            sent += 1
    return sent


def list_for_user(user_id: int, unread_only: bool = False):
    q = Notification.query.filter_by(user_id=user_id)
    if unread_only:
        q = q.filter_by(is_read=False)
    return q.order_by(Notification.created_at.desc(), Notification.id.desc())


def mark_read(user_id: int, notification_id: int) -> Optional[Notification]:
    n = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if not n:
        return None
    if not n.is_read:
        n.is_read = True
        n.read_at = datetime.utcnow()
        db.session.commit()
    return n
