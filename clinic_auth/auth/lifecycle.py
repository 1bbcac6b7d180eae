"""
Account lifecycle and session resolution.

An identity that passes the identity provider is not yet an authorized
session: the account stored under its ``uid`` decides the role, and the
account status decides whether the identity may stay signed in at all.

+----------+---------------------+-------------------------------------+
| Role     | Status on register  | Becomes active when                 |
+==========+=====================+=====================================+
| patient  | active              | immediately                         |
+----------+---------------------+-------------------------------------+
| doctor   | pending             | an admin approves                   |
+----------+---------------------+-------------------------------------+
| admin    | pending, or active  | an admin approves; or no active     |
|          | if no admin is      | admin exists yet                    |
|          | active yet          |                                     |
+----------+---------------------+-------------------------------------+

Pending and rejected accounts never keep a signed-in identity: every path
that finds one signs it out before reporting the problem.
"""

from typing import Dict, List, NamedTuple, Optional
import hmac
import logging

from ..domain import Account, CurrentUser, Identity, Notification, \
    ResolvedSession, Role, Status
from ..exceptions import AccessRedirect, AccountPending, AccountRejected, \
    AuthenticationFailed, ErrorKind, IdentityError, RegistrationFailed, \
    StoreError
from ..services.accounts import AccountStore
from ..services.documents import DocumentStore, SERVER_TIMESTAMP
from ..services.identity import IdentityProvider, normalize_email
from ..services.notifications import NotificationSink
from .. import config
from . import errors

logger = logging.getLogger(__name__)

ACTIVE = Status.ACTIVE
PENDING = Status.PENDING


class BootstrapCredential(NamedTuple):
    """Out-of-band credential that creates or repairs an active admin."""

    email: str
    secret: str
    name: str = 'System Administrator'

    def matches(self, email: Optional[str], password: Optional[str]) -> bool:
        """Compare submitted credentials, in constant time."""
        email_ok = hmac.compare_digest(normalize_email(email).encode('utf-8'),
                                       normalize_email(self.email)
                                       .encode('utf-8'))
        secret_ok = hmac.compare_digest((password or '').encode('utf-8'),
                                        self.secret.encode('utf-8'))
        return email_ok and secret_ok


def bootstrap_from_config(email: Optional[str], secret: Optional[str],
                          name: Optional[str] = None) \
        -> Optional[BootstrapCredential]:
    """Build a :class:`BootstrapCredential`, or ``None`` if not provisioned."""
    if not email or not secret:
        return None
    return BootstrapCredential(email=email, secret=secret,
                               name=name or config.BOOTSTRAP_ADMIN_NAME)


def _connectivity_kind(exc: StoreError) -> ErrorKind:
    if exc.kind in (ErrorKind.CONNECTIVITY, ErrorKind.PERMISSION_DENIED):
        return exc.kind
    return ErrorKind.CONNECTIVITY


class AccountLifecycle(object):
    """
    Registers accounts, signs identities in and out, and guards pages.

    Parameters
    ----------
    identities : :class:`.IdentityProvider`
        The requesting client's view of the identity provider.
    store : :class:`.DocumentStore`
    notifier : :class:`.NotificationSink`
        Defaults to a sink on ``store``.
    bootstrap : :class:`BootstrapCredential`
        If provided, signing in with exactly this credential yields an active
        admin account. If ``None``, there is no such path.
    dashboards : dict
        Landing path for each role.
    login_path : str
        Where to send anyone who is not signed in.

    """

    def __init__(self, identities: IdentityProvider, store: DocumentStore,
                 notifier: Optional[NotificationSink] = None,
                 bootstrap: Optional[BootstrapCredential] = None,
                 dashboards: Optional[Dict[str, str]] = None,
                 login_path: str = config.LOGIN_PATH) -> None:
        self.identities = identities
        self.notifier = notifier or NotificationSink(store)
        self.accounts = AccountStore(store, self.notifier)
        self.bootstrap = bootstrap
        self.dashboards = dashboards or dict(config.ROLE_DASHBOARDS)
        self.login_path = login_path

    def dashboard_for(self, role: Optional[str]) -> str:
        """Landing path for ``role``; unknown roles go to the login page."""
        if role is None:
            return self.login_path
        return self.dashboards.get(role, self.login_path)

    # Registration.

    def register(self, name: str, email: str, password: str, role: str,
                 specialization: Optional[str] = None) -> str:
        """
        Create an identity and its account.

        Patients are active right away, and stay signed in. Doctors and
        admins are pending (but see the table in the module docstring); active
        admins are told about them, and the new identity is signed out.

        Parameters
        ----------
        name : str
        email : str
        password : str
        role : str
            One of :attr:`.Role.ALL`.
        specialization : str
            Kept for doctors only.

        Returns
        -------
        str
            ``active`` or ``pending``.

        Raises
        ------
        :class:`.RegistrationFailed`
            With a message that can be shown to the user.

        """
        if role not in Role.ALL:
            logger.debug('Refusing to register unknown role %s', role)
            raise RegistrationFailed(
                errors.message_for(ErrorKind.INVALID_ARGUMENT),
                ErrorKind.INVALID_ARGUMENT
            )
        try:
            identity = self.identities.create_identity(email, password, name)
        except IdentityError as e:
            logger.debug('Identity provider refused registration: %s', e.kind)
            raise RegistrationFailed(
                errors.message_for(e.kind, errors.REGISTRATION_FAILED), e.kind
            ) from e

        # From here on the new identity is signed in.
        try:
            status = self._initial_status(role)
            self.accounts.create(Account(
                uid=identity.uid,
                name=name,
                email=identity.email,
                role=role,
                status=status,
                specialization=specialization if role == Role.DOCTOR else None
            ))
        except StoreError as e:
            logger.error('Could not write account for %s: %s', identity.uid, e)
            self.identities.sign_out()
            kind = _connectivity_kind(e)
            raise RegistrationFailed(errors.message_for(kind), kind) from e
        except Exception as e:
            logger.exception('Registration failed for %s', identity.uid)
            self.identities.sign_out()
            raise RegistrationFailed(errors.REGISTRATION_FAILED) from e

        logger.info('Registered %s account %s (%s)', role, identity.uid, status)
        if status == PENDING:
            try:
                self._notify_admins(name, role, identity.uid)
            finally:
                self.identities.sign_out()
        return status

    def _initial_status(self, role: str) -> str:
        if role == Role.PATIENT:
            return ACTIVE
        if role == Role.ADMIN:
            # First admin is approved automatically; otherwise nobody could
            # approve anyone.
            try:
                if not self.accounts.any_active_admin():
                    logger.info('No active admin exists; activating new admin')
                    return ACTIVE
            except StoreError as e:
                logger.error('Could not check for active admins: %s', e)
        return PENDING

    def _notify_admins(self, name: str, role: str, uid: str) -> None:
        message = (f'New {role} registration request from {name}. '
                   'Please review and approve.')
        try:
            admins: List[Account] = self.accounts.active_admins()
            self.notifier.notify_all([admin.uid for admin in admins], message,
                                     Notification.APPROVAL_REQUEST,
                                     related_user_id=uid)
        except StoreError as e:
            # Registration has already succeeded.
            logger.warning('Could not notify admins about %s: %s', uid, e)
        except Exception:
            logger.exception('Failed to notify admins about %s', uid)

    # Sign in and out.

    def login(self, email: str, password: str) -> ResolvedSession:
        """
        Authenticate, and resolve the session from the stored account.

        If the identity has no account yet, an active patient account is
        created for it.

        Returns
        -------
        :class:`.ResolvedSession`

        Raises
        ------
        :class:`.AccountPending`
            Raised if an admin has not approved the account yet.
        :class:`.AccountRejected`
            Raised if an admin declined the account.
        :class:`.AuthenticationFailed`
            Raised for any other failure, with a message that can be shown to
            the user. The identity is signed out.

        """
        if self.bootstrap is not None and self.bootstrap.matches(email,
                                                                 password):
            return self._ensure_bootstrap_admin(self.bootstrap)

        identity = self._authenticate(email, password)
        try:
            return self._resolve(identity)
        except AuthenticationFailed:
            self.identities.sign_out()
            raise
        except StoreError as e:
            logger.error('Could not load account for %s: %s', identity.uid, e)
            self.identities.sign_out()
            kind = _connectivity_kind(e)
            raise AuthenticationFailed(errors.message_for(kind), kind) from e
        except Exception as e:
            logger.exception('Login failed for %s', identity.uid)
            self.identities.sign_out()
            raise AuthenticationFailed(errors.LOGIN_FAILED) from e

    def _authenticate(self, email: str, password: str) -> Identity:
        try:
            return self.identities.authenticate(email, password)
        except IdentityError as e:
            logger.debug('Authentication failed: %s', e.kind)
            raise AuthenticationFailed(
                errors.message_for(e.kind, errors.LOGIN_FAILED), e.kind
            ) from e

    def _resolve(self, identity: Identity) -> ResolvedSession:
        account = self.accounts.get(identity.uid)
        if account is None:
            name = identity.display_name or identity.email.split('@')[0]
            logger.info('No account for %s; creating a patient account',
                        identity.uid)
            self.accounts.create(Account(uid=identity.uid, name=name,
                                         email=identity.email,
                                         role=Role.PATIENT, status=ACTIVE))
            return ResolvedSession(uid=identity.uid, role=Role.PATIENT,
                                   name=name)
        if account.status == PENDING:
            raise AccountPending(errors.PENDING_MESSAGE,
                                 ErrorKind.ACCOUNT_PENDING)
        if account.status == Status.REJECTED:
            raise AccountRejected(errors.REJECTED_MESSAGE,
                                  ErrorKind.ACCOUNT_REJECTED)
        return ResolvedSession(uid=account.uid, role=account.role,
                               name=account.name)

    def _ensure_bootstrap_admin(self, bootstrap: BootstrapCredential) \
            -> ResolvedSession:
        """Sign in with the bootstrap credential, repairing the account."""
        try:
            self.identities.create_identity(bootstrap.email, bootstrap.secret,
                                            bootstrap.name)
        except IdentityError as e:
            if e.kind is not ErrorKind.EMAIL_IN_USE:
                raise AuthenticationFailed(
                    errors.message_for(e.kind, errors.LOGIN_FAILED), e.kind
                ) from e
        identity = self._authenticate(bootstrap.email, bootstrap.secret)
        try:
            fields = {
                'uid': identity.uid,
                'name': bootstrap.name,
                'email': identity.email,
                'role': Role.ADMIN,
                'status': ACTIVE,
            }
            if self.accounts.get(identity.uid) is None:
                fields.update({'phone': '', 'address': '',
                               'created_at': SERVER_TIMESTAMP})
            self.accounts.merge(identity.uid, **fields)
        except StoreError as e:
            logger.error('Could not activate bootstrap admin: %s', e)
            self.identities.sign_out()
            kind = _connectivity_kind(e)
            raise AuthenticationFailed(errors.message_for(kind), kind) from e
        logger.warning('Bootstrap admin %s signed in', identity.uid)
        return ResolvedSession(uid=identity.uid, role=Role.ADMIN,
                               name=bootstrap.name)

    def logout(self) -> str:
        """Sign out, and return the path to send the user to."""
        self.identities.sign_out()
        return self.login_path

    # Guards and lookups.

    def _first_identity(self) -> Optional[Identity]:
        delivered: List[Optional[Identity]] = []
        unsubscribe = self.identities.on_identity_change(delivered.append)
        unsubscribe()
        return delivered[0] if delivered else None

    def require_auth(self, allowed_role: str) -> ResolvedSession:
        """
        Admit the signed-in identity only if its account has ``allowed_role``.

        Returns
        -------
        :class:`.ResolvedSession`

        Raises
        ------
        :class:`.AccessRedirect`
            To the login page if nobody is signed in, the account cannot be
            loaded, or the account is not active (the identity is signed
            out); or to the account's own dashboard if its role differs.

        """
        identity = self._first_identity()
        if identity is None:
            raise AccessRedirect(self.login_path, ErrorKind.NOT_AUTHENTICATED)
        try:
            account = self.accounts.get(identity.uid)
        except StoreError as e:
            logger.error('Could not load account for %s: %s', identity.uid, e)
            raise AccessRedirect(self.login_path, _connectivity_kind(e),
                                 str(e)) from e
        if account is None:
            raise AccessRedirect(self.login_path, ErrorKind.PROFILE_NOT_FOUND)
        if account.status == PENDING:
            self.identities.sign_out()
            raise AccessRedirect(self.login_path, ErrorKind.ACCOUNT_PENDING)
        if account.status == Status.REJECTED:
            self.identities.sign_out()
            raise AccessRedirect(self.login_path, ErrorKind.ACCOUNT_REJECTED)
        if account.role != allowed_role:
            logger.debug('%s is a %s, not a %s', account.uid, account.role,
                         allowed_role)
            raise AccessRedirect(self.dashboard_for(account.role),
                                 ErrorKind.UNAUTHORIZED_ROLE)
        return ResolvedSession(uid=identity.uid, role=account.role,
                               name=account.name)

    def current_user(self) -> Optional[CurrentUser]:
        """The signed-in user and their role, or ``None``. Never raises."""
        try:
            identity = self._first_identity()
            if identity is None:
                return None
            account = self.accounts.get(identity.uid)
            if account is None:
                return None
            return CurrentUser(uid=identity.uid, email=identity.email,
                               role=account.role, name=account.name)
        except Exception as e:
            logger.warning('Could not determine current user: %s', e)
            return None
