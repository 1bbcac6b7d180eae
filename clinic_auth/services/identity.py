"""
Identity provider: verifies credentials and tracks who is signed in.

The provider is the only component that knows about passwords. It issues a
stable ``uid`` for each identity, which the rest of the system uses as the
key for the identity's account.

:class:`IdentityProvider` is the interface seen by one client (one browser).
:class:`LocalIdentityProvider` implements it on top of a shared
:class:`CredentialRegistry`, and can carry its signed-in state between
requests as a signed token (see :attr:`LocalIdentityProvider.token`).
"""

from typing import Any, Callable, Dict, List, Optional
from base64 import b64encode, b64decode
from dataclasses import asdict, dataclass
import hashlib
import hmac
import logging
import re
import secrets
import time
import uuid

import jwt

from .. import domain
from ..exceptions import DocumentExists, ErrorKind, IdentityError, StoreError
from .documents import DocumentStore, InMemoryDocumentStore

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
COLLECTION = 'credentials'
HASH_ITERATIONS = 260000

IdentityCallback = Callable[[Optional[domain.Identity]], None]
Unsubscribe = Callable[[], None]


def hash_password(password: str) -> str:
    """Generate a salted hash of a password."""
    salt = secrets.token_bytes(16)
    hashed = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt,
                                 HASH_ITERATIONS)
    return b64encode(salt + hashed).decode('ascii')


def check_password(password: str, encrypted: str) -> bool:
    """Check a password against a hash from :func:`hash_password`."""
    decoded = b64decode(encrypted)
    salt, enc_hashed = decoded[:16], decoded[16:]
    pass_hashed = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'),
                                      salt, HASH_ITERATIONS)
    return hmac.compare_digest(pass_hashed, enc_hashed)


def normalize_email(email: Optional[str]) -> str:
    """Strip and lower-case an e-mail address."""
    return (email or '').strip().lower()


@dataclass
class Credential:
    """What the registry keeps for each identity."""

    uid: str
    email: str
    password_hash: str
    display_name: Optional[str] = None
    disabled: bool = False
    failures: int = 0
    locked_until: float = 0.0

    def to_identity(self) -> domain.Identity:
        return domain.Identity(uid=self.uid, email=self.email,
                               display_name=self.display_name)


class CredentialRegistry(object):
    """
    Shared store of credentials for :class:`LocalIdentityProvider`.

    Credentials are documents in the :data:`COLLECTION` collection of a
    :class:`.DocumentStore`, keyed by normalized e-mail address, so that they
    outlive the process and are shared by every worker using the same store.
    Unknown e-mail addresses and wrong passwords are reported identically, so
    that callers cannot discover registered addresses.

    Parameters
    ----------
    store : :class:`.DocumentStore`
        If not provided, credentials are kept in memory.
    min_password_length : int
    max_failures : int
        Consecutive bad passwords before the identity is locked.
    lockout_seconds : int

    """

    def __init__(self, store: Optional[DocumentStore] = None,
                 min_password_length: int = 6, max_failures: int = 5,
                 lockout_seconds: int = 300) -> None:
        self.store = store if store is not None else InMemoryDocumentStore()
        self.min_password_length = min_password_length
        self.max_failures = max_failures
        self.lockout_seconds = lockout_seconds

    def _by_email(self, email: str) -> Optional[Credential]:
        data = self.store.get(COLLECTION, email)
        return Credential(**data) if data is not None else None

    def _by_uid(self, uid: str) -> Optional[Credential]:
        found = self.store.query(COLLECTION, ('uid', '==', uid))
        return Credential(**found[0].data) if found else None

    def create(self, email: str, password: str,
               display_name: Optional[str] = None) -> domain.Identity:
        """
        Register a new identity.

        Raises
        ------
        :class:`IdentityError`
            With kind missing-email, invalid-email, missing-password,
            weak-password, or email-in-use.

        """
        email = normalize_email(email)
        if not email:
            raise IdentityError(ErrorKind.MISSING_EMAIL)
        if not EMAIL_PATTERN.match(email):
            raise IdentityError(ErrorKind.INVALID_EMAIL)
        if not password:
            raise IdentityError(ErrorKind.MISSING_PASSWORD)
        if len(password) < self.min_password_length:
            raise IdentityError(ErrorKind.WEAK_PASSWORD)
        credential = Credential(uid=uuid.uuid4().hex, email=email,
                                password_hash=hash_password(password),
                                display_name=display_name)
        try:
            self.store.create(COLLECTION, email, asdict(credential))
        except DocumentExists as e:
            raise IdentityError(ErrorKind.EMAIL_IN_USE) from e
        except StoreError as e:
            raise IdentityError(ErrorKind.NETWORK, str(e)) from e
        logger.debug('Created identity %s', credential.uid)
        return credential.to_identity()

    def verify(self, email: str, password: str) -> domain.Identity:
        """
        Check an e-mail address and password.

        Raises
        ------
        :class:`IdentityError`
            With kind missing-email, missing-password, invalid-credential,
            user-disabled, too-many-requests, or network (if the store
            cannot be reached).

        """
        email = normalize_email(email)
        if not email:
            raise IdentityError(ErrorKind.MISSING_EMAIL)
        if not password:
            raise IdentityError(ErrorKind.MISSING_PASSWORD)
        try:
            return self._verify(email, password)
        except StoreError as e:
            logger.error('Could not verify %s: %s', email, e)
            raise IdentityError(ErrorKind.NETWORK, str(e)) from e

    def _verify(self, email: str, password: str) -> domain.Identity:
        credential = self._by_email(email)
        if credential is None:
            logger.debug('No identity for %s', email)
            raise IdentityError(ErrorKind.INVALID_CREDENTIAL)
        if credential.locked_until > time.time():
            raise IdentityError(ErrorKind.TOO_MANY_REQUESTS)
        if not check_password(password, credential.password_hash):
            self._record_failure(email)
            raise IdentityError(ErrorKind.INVALID_CREDENTIAL)
        if credential.failures:
            self.store.update(COLLECTION, email, {'failures': 0})
        if credential.disabled:
            raise IdentityError(ErrorKind.USER_DISABLED)
        return credential.to_identity()

    def _record_failure(self, email: str) -> None:
        with self.store.atomic():
            credential = self._by_email(email)
            if credential is None:
                return
            failures = credential.failures + 1
            changes: Dict[str, Any] = {'failures': failures}
            if failures >= self.max_failures:
                logger.info('Locking identity %s after %i failures',
                            credential.uid, failures)
                changes = {'failures': 0,
                           'locked_until': time.time() + self.lockout_seconds}
            self.store.update(COLLECTION, email, changes)

    def get(self, uid: str) -> Optional[domain.Identity]:
        """Get an enabled identity by uid."""
        credential = self._by_uid(uid)
        if credential is None or credential.disabled:
            return None
        return credential.to_identity()

    def disable(self, uid: str) -> None:
        """Prevent an identity from signing in."""
        self._set_disabled(uid, True)

    def enable(self, uid: str) -> None:
        """Allow a disabled identity to sign in again."""
        self._set_disabled(uid, False)

    def _set_disabled(self, uid: str, disabled: bool) -> None:
        with self.store.atomic():
            credential = self._by_uid(uid)
            if credential is None:
                raise IdentityError(ErrorKind.USER_NOT_FOUND)
            self.store.update(COLLECTION, credential.email,
                              {'disabled': disabled})


class IdentityProvider(object):
    """
    One client's view of the identity service.

    Creating or authenticating an identity signs it in. Subclasses implement
    :meth:`create_identity` and :meth:`authenticate`, and call
    :meth:`_set_current` when the signed-in identity changes.
    """

    def __init__(self) -> None:
        self._current: Optional[domain.Identity] = None
        self._callbacks: List[IdentityCallback] = []

    @property
    def current(self) -> Optional[domain.Identity]:
        """The signed-in identity, if any."""
        return self._current

    def create_identity(self, email: str, password: str,
                        display_name: Optional[str] = None) \
            -> domain.Identity:
        """Register and sign in a new identity."""
        raise NotImplementedError('Implemented by subclasses')

    def authenticate(self, email: str, password: str) -> domain.Identity:
        """Verify credentials and sign the identity in."""
        raise NotImplementedError('Implemented by subclasses')

    def sign_out(self) -> None:
        """Sign out the current identity, if any."""
        self._set_current(None)

    def on_identity_change(self, callback: IdentityCallback) -> Unsubscribe:
        """
        Get notified of the signed-in identity.

        ``callback`` is called right away with the current identity (or
        ``None``), and again on every sign-in or sign-out until the returned
        function is called.
        """
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        callback(self._current)
        return unsubscribe

    def _set_current(self, identity: Optional[domain.Identity]) -> None:
        changed = identity != self._current
        self._current = identity
        if changed:
            for callback in list(self._callbacks):
                callback(identity)


class LocalIdentityProvider(IdentityProvider):
    """
    Identity provider backed by a :class:`CredentialRegistry`.

    Parameters
    ----------
    registry : :class:`CredentialRegistry`
    secret : str
        Used to sign and verify :attr:`token`.
    token : str
        A token previously obtained from :attr:`token`. If it is valid, the
        identity it names starts out signed in.
    duration : int
        Lifetime of issued tokens, in seconds.

    """

    def __init__(self, registry: CredentialRegistry, secret: str,
                 token: Optional[str] = None, duration: int = 36000) -> None:
        super(LocalIdentityProvider, self).__init__()
        self.registry = registry
        self._secret = secret
        self._duration = duration
        if token:
            self._current = self._restore(token)

    def create_identity(self, email: str, password: str,
                        display_name: Optional[str] = None) \
            -> domain.Identity:
        identity = self.registry.create(email, password, display_name)
        self._set_current(identity)
        return identity

    def authenticate(self, email: str, password: str) -> domain.Identity:
        identity = self.registry.verify(email, password)
        self._set_current(identity)
        return identity

    @property
    def token(self) -> Optional[str]:
        """Signed token for the current identity, or ``None``."""
        if self._current is None:
            return None
        payload = {
            'uid': self._current.uid,
            'email': self._current.email,
            'exp': int(time.time()) + self._duration,
        }
        if self._current.display_name:
            payload['name'] = self._current.display_name
        return jwt.encode(payload, self._secret, algorithm='HS256')

    def _restore(self, token: str) -> Optional[domain.Identity]:
        try:
            payload = jwt.decode(token, self._secret, algorithms=['HS256'])
        except jwt.exceptions.InvalidTokenError as e:
            logger.debug('Discarding identity token: %s', e)
            return None
        # The identity may have been disabled since the token was issued.
        return self.registry.get(payload.get('uid', ''))
