"""Controllers for admin approval of accounts, and for notifications."""

from http import HTTPStatus
import logging

from werkzeug.exceptions import Forbidden, NotFound

from ..auth.lifecycle import AccountLifecycle
from ..domain import ResolvedSession, Status, to_jsonable
from ..exceptions import NoSuchDocument
from ..services.accounts import summary
from ..services.notifications import COLLECTION as NOTIFICATIONS
from . import ResponseData

logger = logging.getLogger(__name__)


def pending_accounts(lifecycle: AccountLifecycle) -> ResponseData:
    """Accounts waiting for approval, newest first."""
    pending = lifecycle.accounts.pending()
    return {'pending': [summary(account) for account in pending]}, \
        HTTPStatus.OK, {}


def _decide(lifecycle: AccountLifecycle, session: ResolvedSession, uid: str,
            approve: bool) -> ResponseData:
    account = lifecycle.accounts.get(uid)
    if account is None:
        raise NotFound(f'No such account: {uid}')
    if account.status != Status.PENDING:
        logger.debug('Account %s is already %s', uid, account.status)
        return {'uid': uid, 'status': account.status}, HTTPStatus.CONFLICT, {}
    try:
        if approve:
            lifecycle.accounts.approve(uid)
        else:
            lifecycle.accounts.reject(uid)
    except NoSuchDocument as e:
        raise NotFound(f'No such account: {uid}') from e
    status = Status.ACTIVE if approve else Status.REJECTED
    logger.info('Admin %s set account %s to %s', session.uid, uid, status)
    return {'uid': uid, 'status': status}, HTTPStatus.OK, {}


def approve(lifecycle: AccountLifecycle, session: ResolvedSession,
            uid: str) -> ResponseData:
    """Approve a pending account; its owner is notified."""
    return _decide(lifecycle, session, uid, True)


def reject(lifecycle: AccountLifecycle, session: ResolvedSession,
           uid: str) -> ResponseData:
    """Reject a pending account; its owner is notified."""
    return _decide(lifecycle, session, uid, False)


def notifications(lifecycle: AccountLifecycle, uid: str) -> ResponseData:
    """A user's notifications, newest first, and how many are unread."""
    items = lifecycle.notifier.for_user(uid)
    data = {
        'notifications': [to_jsonable(item) for item in items],
        'unread': len([item for item in items if not item.read]),
    }
    return data, HTTPStatus.OK, {}


def mark_read(lifecycle: AccountLifecycle, uid: str,
              notification_id: str) -> ResponseData:
    """Mark one of the user's notifications as read."""
    data = lifecycle.notifier.store.get(NOTIFICATIONS, notification_id)
    if data is None:
        raise NotFound(f'No such notification: {notification_id}')
    if data.get('user_id') != uid:
        raise Forbidden('Not your notification')
    lifecycle.notifier.mark_as_read(notification_id)
    return {'notification_id': notification_id, 'read': True}, \
        HTTPStatus.OK, {}
