import logging
import datetime
from sqlalchemy.exc import SQLAlchemyError
from simpus.core.models import Notification, User
from simpus.core.exceptions import NotificationNotFoundError, StorageError

logger = logging.getLogger(__name__)


class NotificationSink:
    """Per-user append-only message log.

    `create` is idempotent on (user_id, message): an identical message that
    is already stored, read or not, is never inserted twice. This is what
    keeps the daily sweep from piling up duplicate reminders.
    """

    def __init__(self, db, hub=None):
        self.db = db
        self.hub = hub

    def exists(self, user_id, message) -> bool:
        return self.db.query(Notification.id).filter(
            Notification.user_id == user_id,
            Notification.message == message
        ).first() is not None

    def create(self, user_id, message, now=None) -> bool:
        try:
            if self.exists(user_id, message):
                return False
            self.db.add(Notification(
                user_id=user_id,
                message=message,
                is_read=False,
                created_at=now or datetime.datetime.now()
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to create notification: {e}") from e
        if self.hub is not None:
            self.hub.send(user_id, message)
        return True

    def broadcast(self, message, now=None) -> int:
        user_ids = [uid for (uid,) in self.db.query(User.id).all()]
        return sum(1 for uid in user_ids if self.create(uid, message, now=now))

    def list(self, user_id):
        return self.db.query(Notification).filter(
            Notification.user_id == user_id
        ).order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def unread_count(self, user_id) -> int:
        return self.db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).count()

    def _get(self, notification_id, user_id=None):
        notification = self.db.get(Notification, notification_id)
        if notification is None or (user_id is not None and notification.user_id != user_id):
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    def mark_read(self, notification_id, user_id=None):
        notification = self._get(notification_id, user_id)
        try:
            notification.is_read = True
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to mark notification read: {e}") from e
        return notification

    def delete(self, notification_id, user_id=None):
        notification = self._get(notification_id, user_id)
        try:
            self.db.delete(notification)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to delete notification: {e}") from e
