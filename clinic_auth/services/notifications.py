"""Per-user notifications, written to the ``notifications`` collection."""

from typing import Callable, Iterable, List, Optional
import logging

from .. import domain
from ..domain import Notification
from .documents import DocumentStore, Document, SERVER_TIMESTAMP, Unsubscribe

logger = logging.getLogger(__name__)

COLLECTION = 'notifications'


def _to_notification(document: Document) -> Notification:
    notification: Notification = domain.from_dict(Notification, document.data)
    return notification._replace(notification_id=document.doc_id)


def _newest_first(documents: List[Document]) -> List[Notification]:
    documents = sorted(documents,
                       key=lambda doc: domain.sort_key_created(doc.data),
                       reverse=True)
    return [_to_notification(doc) for doc in documents]


class NotificationSink(object):
    """Creates, lists, and marks notifications."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def notify(self, user_id: str, message: str, type: str,
               related_user_id: Optional[str] = None) -> str:
        """Create an unread notification for ``user_id``; returns its ID."""
        data = {
            'user_id': user_id,
            'message': message,
            'type': type,
            'read': False,
            'created_at': SERVER_TIMESTAMP,
        }
        if related_user_id is not None:
            data['related_user_id'] = related_user_id
        return self.store.add(COLLECTION, data)

    def notify_all(self, user_ids: Iterable[str], message: str, type: str,
                   related_user_id: Optional[str] = None) -> List[str]:
        """Fan a message out to several users; returns the new IDs."""
        return [self.notify(user_id, message, type, related_user_id)
                for user_id in user_ids]

    def for_user(self, user_id: str) -> List[Notification]:
        """All of a user's notifications, newest first."""
        return _newest_first(
            self.store.query(COLLECTION, ('user_id', '==', user_id))
        )

    def watch(self, user_id: str,
              callback: Callable[[List[Notification]], None],
              on_error: Optional[Callable[[Exception], None]] = None) \
            -> Unsubscribe:
        """
        Listen for changes to a user's notifications (newest first).

        If the listener fails and no ``on_error`` is given, ``callback`` is
        called with an empty list.
        """
        def _on_error(e: Exception) -> None:
            logger.error('Notifications listener error: %s', e)
            if on_error is not None:
                on_error(e)
            else:
                callback([])

        return self.store.subscribe(
            COLLECTION, [('user_id', '==', user_id)],
            lambda documents: callback(_newest_first(documents)),
            _on_error
        )

    def mark_as_read(self, notification_id: str) -> None:
        """Mark a notification as read."""
        self.store.update(COLLECTION, notification_id, {'read': True})

    def unread_count(self, user_id: str) -> int:
        """Number of unread notifications for a user."""
        return len(self.store.query(COLLECTION, ('user_id', '==', user_id),
                                    ('read', '==', False)))
