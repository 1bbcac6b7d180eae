"""
Account profiles, stored in the ``users`` collection keyed by uid.

Also provides the admin side of the approval workflow: listing pending
accounts, and approving or rejecting them.
"""

from typing import Any, Callable, Dict, List, Optional
import logging

from .. import domain
from ..domain import Account, Notification, Role, Status
from ..exceptions import ProfileUpdateRefused
from .documents import DocumentStore, Document, SERVER_TIMESTAMP, Unsubscribe
from .notifications import NotificationSink

logger = logging.getLogger(__name__)

COLLECTION = 'users'

PATIENT_EDITABLE = frozenset(['name', 'phone', 'address'])
"""Profile fields that patients may change themselves."""

APPROVED_MESSAGE = 'Your account has been approved! You can now sign in.'
REJECTED_MESSAGE = ('Your registration request was not approved. Please '
                    'contact the administrator for details.')


def _to_account(document: Document) -> Account:
    data = dict(document.data)
    data.setdefault('uid', document.doc_id)
    account: Account = domain.from_dict(Account, data)
    return account


def _newest_first(documents: List[Document]) -> List[Account]:
    documents = sorted(documents,
                       key=lambda doc: domain.sort_key_created(doc.data),
                       reverse=True)
    return [_to_account(doc) for doc in documents]


class AccountStore(object):
    """Reads and writes :class:`.Account` documents."""

    def __init__(self, store: DocumentStore,
                 notifier: Optional[NotificationSink] = None) -> None:
        self.store = store
        self.notifier = notifier or NotificationSink(store)

    def get(self, uid: str) -> Optional[Account]:
        """Get an account by uid, or ``None`` if there is no profile."""
        data = self.store.get(COLLECTION, uid)
        if data is None:
            return None
        return _to_account(Document(uid, data))

    def create(self, account: Account) -> None:
        """Write a new account; ``created_at`` is set by the store."""
        data = domain.to_dict(account)
        data['created_at'] = SERVER_TIMESTAMP
        if data.get('specialization') is None:
            data.pop('specialization')
        self.store.set(COLLECTION, account.uid, data)
        logger.debug('Created %s account %s (%s)', account.role, account.uid,
                     account.status)

    def merge(self, uid: str, **fields: Any) -> None:
        """Upsert fields into an account, keeping the others."""
        self.store.set(COLLECTION, uid, fields, merge=True)

    def active_admins(self) -> List[Account]:
        """Accounts with role admin and status active."""
        return [_to_account(doc) for doc in self.store.query(
            COLLECTION, ('role', '==', Role.ADMIN),
            ('status', '==', Status.ACTIVE)
        )]

    def any_active_admin(self) -> bool:
        """Whether at least one active admin exists."""
        return len(self.active_admins()) > 0

    def doctors(self) -> List[Account]:
        """All doctor accounts, by name."""
        doctors = [_to_account(doc) for doc in self.store.query(
            COLLECTION, ('role', '==', Role.DOCTOR)
        )]
        return sorted(doctors, key=lambda account: account.name.lower())

    def update_patient_profile(self, uid: str, **changes: Any) -> None:
        """
        Apply a patient's own profile changes.

        Raises
        ------
        :class:`ProfileUpdateRefused`
            Raised if ``changes`` includes fields other than
            :data:`PATIENT_EDITABLE`.
        :class:`.NoSuchDocument`
            Raised if the account does not exist.

        """
        refused = set(changes) - PATIENT_EDITABLE
        if refused:
            raise ProfileUpdateRefused(
                f'Cannot change: {", ".join(sorted(refused))}'
            )
        self.store.update(COLLECTION, uid, changes)

    def pending(self) -> List[Account]:
        """Accounts awaiting approval, newest first."""
        return _newest_first(
            self.store.query(COLLECTION, ('status', '==', Status.PENDING))
        )

    def watch_pending(self, callback: Callable[[List[Account]], None],
                      on_error: Optional[Callable[[Exception], None]] = None) \
            -> Unsubscribe:
        """
        Listen for changes to the set of pending accounts (newest first).

        If the listener fails and no ``on_error`` is given, ``callback`` is
        called with an empty list.
        """
        def _on_error(e: Exception) -> None:
            logger.error('Pending users listener error: %s', e)
            if on_error is not None:
                on_error(e)
            else:
                callback([])

        return self.store.subscribe(
            COLLECTION, [('status', '==', Status.PENDING)],
            lambda documents: callback(_newest_first(documents)),
            _on_error
        )

    def approve(self, uid: str) -> None:
        """Activate an account, and tell its owner."""
        self._decide(uid, Status.ACTIVE, APPROVED_MESSAGE)

    def reject(self, uid: str) -> None:
        """Reject an account, and tell its owner."""
        self._decide(uid, Status.REJECTED, REJECTED_MESSAGE)

    def _decide(self, uid: str, status: str, message: str) -> None:
        self.store.update(COLLECTION, uid, {'status': status})
        logger.info('Account %s is now %s', uid, status)
        self.notifier.notify(uid, message, Notification.APPROVAL_RESULT)


def summary(account: Account) -> Dict[str, Any]:
    """Public fields of an account, for listings."""
    data: Dict[str, Any] = domain.to_jsonable(account)
    return data
