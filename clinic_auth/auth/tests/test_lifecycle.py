"""Tests for :mod:`clinic_auth.auth.lifecycle`."""

from unittest import TestCase, mock
import os
import tempfile

from ...domain import Notification, Role, Status
from ...exceptions import AccessRedirect, AccountPending, AccountRejected, \
    AuthenticationFailed, ErrorKind, IdentityError, RegistrationFailed, \
    StoreError
from ...services.accounts import COLLECTION as USERS
from ...services.documents import InMemoryDocumentStore
from ...services.identity import CredentialRegistry, LocalIdentityProvider
from ...services.sqlstore import SQLDocumentStore
from .. import errors, lifecycle
from ..lifecycle import AccountLifecycle, BootstrapCredential

DASHBOARDS = {
    Role.PATIENT: '/patient/dashboard',
    Role.DOCTOR: '/doctor/dashboard',
    Role.ADMIN: '/admin/dashboard',
}


class LifecycleTestCase(TestCase):
    """Base: an empty registry and store, and one client."""

    bootstrap = None

    def setUp(self):
        """Create the registry, store, and resolver."""
        self.registry = CredentialRegistry()
        self.store = InMemoryDocumentStore()
        self.identities = LocalIdentityProvider(self.registry, 'foosecret')
        self.lifecycle = self._lifecycle(self.identities)

    def _lifecycle(self, identities):
        return AccountLifecycle(identities, self.store,
                                bootstrap=self.bootstrap,
                                dashboards=DASHBOARDS, login_path='/login')

    def _other_client(self):
        """A resolver for a different browser."""
        return self._lifecycle(LocalIdentityProvider(self.registry,
                                                     'foosecret'))

    def _status_of(self, email):
        [doc] = self.store.query(USERS, ('email', '==', email))
        return doc.data['status']


class TestRegister(LifecycleTestCase):
    """Registration of each role."""

    def test_patient(self):
        """Patients are active, stay signed in, and can log in again."""
        status = self.lifecycle.register('A Doe', 'a@x.com', 'secret1',
                                         Role.PATIENT)
        self.assertEqual(status, Status.ACTIVE)
        self.assertIsNotNone(self.identities.current)
        account = self.lifecycle.accounts.get(self.identities.current.uid)
        self.assertEqual(account.role, Role.PATIENT)
        self.assertEqual(account.status, Status.ACTIVE)
        self.assertEqual(account.name, 'A Doe')
        self.assertIsNone(account.specialization)

        self.lifecycle.logout()
        session = self.lifecycle.login('a@x.com', 'secret1')
        self.assertEqual(session.role, Role.PATIENT)
        self.assertEqual(session.uid, account.uid)
        self.assertEqual(session.name, 'A Doe')

    def test_first_admin_then_second(self):
        """The first admin is active; the next one waits for approval."""
        first = self.lifecycle.register('First', 'one@x.com', 'secret1',
                                        Role.ADMIN)
        self.assertEqual(first, Status.ACTIVE)
        self.assertIsNotNone(self.identities.current)

        second = self._other_client().register('Second', 'two@x.com',
                                               'secret2', Role.ADMIN)
        self.assertEqual(second, Status.PENDING)
        self.assertEqual(self._status_of('two@x.com'), Status.PENDING)

    def test_doctor_with_admins(self):
        """Doctors are pending; every active admin hears about them."""
        admin_one = self._other_client()
        admin_one.register('Admin One', 'one@x.com', 'secret1', Role.ADMIN)
        admin_two = self._other_client()
        admin_two.register('Admin Two', 'two@x.com', 'secret2', Role.ADMIN)
        admin_two.accounts.approve(
            self.store.query(USERS, ('email', '==', 'two@x.com'))[0].doc_id
        )
        self.assertEqual(len(self.lifecycle.accounts.active_admins()), 2)

        status = self.lifecycle.register('Dr Who', 'who@x.com', 'secret3',
                                         Role.DOCTOR, 'Time')
        self.assertEqual(status, Status.PENDING)
        self.assertIsNone(self.identities.current, 'Signed out')

        [doctor] = self.store.query(USERS, ('email', '==', 'who@x.com'))
        self.assertEqual(doctor.data['specialization'], 'Time')
        for admin in self.lifecycle.accounts.active_admins():
            requests = [
                n for n in self.lifecycle.notifier.for_user(admin.uid)
                if n.related_user_id == doctor.doc_id
            ]
            self.assertEqual(len(requests), 1)
            self.assertEqual(requests[0].type, Notification.APPROVAL_REQUEST)
            self.assertIn('Dr Who', requests[0].message)

        with self.assertRaises(AccountPending) as ctx:
            self.lifecycle.login('who@x.com', 'secret3')
        self.assertEqual(str(ctx.exception), errors.PENDING_MESSAGE)
        self.assertEqual(ctx.exception.kind, ErrorKind.ACCOUNT_PENDING)
        self.assertIsNone(self.identities.current, 'Signed out')

    def test_doctor_without_admins(self):
        """With no admin around, a doctor is still pending."""
        status = self.lifecycle.register('Dr No', 'no@x.com', 'secret1',
                                         Role.DOCTOR)
        self.assertEqual(status, Status.PENDING)
        self.assertEqual(len(self.store.query('notifications')), 0)

    def test_specialization_for_doctors_only(self):
        """Patients do not keep a specialization."""
        self.lifecycle.register('Pat', 'pat@x.com', 'secret1', Role.PATIENT,
                                'Cardiology')
        [doc] = self.store.query(USERS)
        self.assertNotIn('specialization', doc.data)

    def test_unknown_role(self):
        """Unknown roles are refused before an identity is created."""
        with self.assertRaises(RegistrationFailed) as ctx:
            self.lifecycle.register('Nurse', 'n@x.com', 'secret1', 'nurse')
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_ARGUMENT)
        with self.assertRaises(IdentityError):
            self.registry.verify('n@x.com', 'secret1')

    def test_email_in_use(self):
        """Provider errors are translated."""
        self.lifecycle.register('A', 'a@x.com', 'secret1', Role.PATIENT)
        with self.assertRaises(RegistrationFailed) as ctx:
            self._other_client().register('B', 'a@x.com', 'secret2',
                                          Role.PATIENT)
        self.assertEqual(ctx.exception.kind, ErrorKind.EMAIL_IN_USE)
        self.assertEqual(str(ctx.exception),
                         errors.MESSAGES[ErrorKind.EMAIL_IN_USE])

    def test_weak_password(self):
        """Weak passwords are refused with a friendly message."""
        with self.assertRaises(RegistrationFailed) as ctx:
            self.lifecycle.register('A', 'a@x.com', '123', Role.PATIENT)
        self.assertEqual(str(ctx.exception),
                         errors.MESSAGES[ErrorKind.WEAK_PASSWORD])

    def test_store_failure(self):
        """If the account cannot be written, the identity is signed out."""
        with mock.patch.object(self.store, '_write',
                               side_effect=StoreError('down')):
            with self.assertRaises(RegistrationFailed) as ctx:
                self.lifecycle.register('A', 'a@x.com', 'secret1',
                                        Role.PATIENT)
        self.assertEqual(ctx.exception.kind, ErrorKind.CONNECTIVITY)
        self.assertEqual(str(ctx.exception), errors.CONNECTIVITY_MESSAGE)
        self.assertIsInstance(ctx.exception.__cause__, StoreError)
        self.assertIsNone(self.identities.current)

    def test_admin_check_fails(self):
        """If active admins cannot be counted, a new admin is pending."""
        with mock.patch.object(self.lifecycle.accounts, 'any_active_admin',
                               side_effect=StoreError('down')):
            status = self.lifecycle.register('A', 'a@x.com', 'secret1',
                                             Role.ADMIN)
        self.assertEqual(status, Status.PENDING)
        self.assertIsNone(self.identities.current)

    def test_notification_failure(self):
        """Failing to notify admins does not fail the registration."""
        with mock.patch.object(self.lifecycle.notifier, 'notify_all',
                               side_effect=StoreError('down')):
            with self.assertLogs(lifecycle.__name__, 'WARNING'):
                status = self.lifecycle.register('Dr', 'd@x.com', 'secret1',
                                                 Role.DOCTOR)
        self.assertEqual(status, Status.PENDING)
        self.assertEqual(self._status_of('d@x.com'), Status.PENDING)
        self.assertIsNone(self.identities.current)

    def test_malformed_admin(self):
        """A broken admin record does not leave the registrant signed in."""
        self.store.set(USERS, 'a1', {'email': 'admin@x.com',
                                     'role': Role.ADMIN,
                                     'status': Status.ACTIVE})
        with self.assertLogs(lifecycle.__name__, 'ERROR'):
            status = self.lifecycle.register('Dr', 'd@x.com', 'secret1',
                                             Role.DOCTOR)
        self.assertEqual(status, Status.PENDING)
        self.assertEqual(self._status_of('d@x.com'), Status.PENDING)
        self.assertIsNone(self.identities.current)

    def test_unexpected_notification_error(self):
        """Any failure of the fan-out is logged, and the registrant is out."""
        with mock.patch.object(self.lifecycle.notifier, 'notify_all',
                               side_effect=TypeError('bad admin')):
            with self.assertLogs(lifecycle.__name__, 'ERROR'):
                status = self.lifecycle.register('Dr', 'd@x.com', 'secret1',
                                                 Role.DOCTOR)
        self.assertEqual(status, Status.PENDING)
        self.assertIsNone(self.identities.current)
        identity = self.registry.verify('d@x.com', 'secret1')
        account = self.lifecycle.accounts.get(identity.uid)
        self.assertEqual(account.status, Status.PENDING)



class TestRestart(TestCase):
    """Accounts and credentials outlive the process."""

    def setUp(self):
        """Keep everything in a SQLite file."""
        workdir = tempfile.TemporaryDirectory()
        self.addCleanup(workdir.cleanup)
        self.uri = f'sqlite:///{os.path.join(workdir.name, "clinic.db")}'

    def _start(self):
        store = SQLDocumentStore.from_uri(self.uri)
        self.addCleanup(store.engine.dispose)
        identities = LocalIdentityProvider(CredentialRegistry(store),
                                           'foosecret')
        return store, AccountLifecycle(identities, store,
                                       dashboards=DASHBOARDS,
                                       login_path='/login')

    def test_login_after_restart(self):
        """A patient signs in after a restart, and cannot register twice."""
        store, before = self._start()
        before.register('A Doe', 'a@x.com', 'secret1', Role.PATIENT)

        store, after = self._start()
        session = after.login('a@x.com', 'secret1')
        self.assertEqual(session.role, Role.PATIENT)
        self.assertEqual(session.name, 'A Doe')
        after.logout()
        with self.assertRaises(RegistrationFailed) as ctx:
            after.register('A Doe', 'a@x.com', 'secret2', Role.PATIENT)
        self.assertEqual(ctx.exception.kind, ErrorKind.EMAIL_IN_USE)
        self.assertEqual(
            len(store.query(USERS, ('email', '==', 'a@x.com'))), 1
        )


class TestLogin(LifecycleTestCase):
    """Resolving a session at sign-in."""

    def test_bad_credentials(self):
        """Provider errors are translated, and nobody is signed in."""
        self.lifecycle.register('A', 'a@x.com', 'secret1', Role.PATIENT)
        self.lifecycle.logout()
        with self.assertRaises(AuthenticationFailed) as ctx:
            self.lifecycle.login('a@x.com', 'wrongpass')
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CREDENTIAL)
        self.assertEqual(str(ctx.exception),
                         'Incorrect email or password. Please try again.')
        self.assertIsNone(self.identities.current)

    def test_missing_account(self):
        """An identity without an account becomes an active patient."""
        self.registry.create('zoe@x.com', 'secret1', 'Zoe')
        session = self.lifecycle.login('zoe@x.com', 'secret1')
        self.assertEqual(session.role, Role.PATIENT)
        self.assertEqual(session.name, 'Zoe')
        [doc] = self.store.query(USERS)
        self.assertEqual(doc.doc_id, session.uid)
        self.assertEqual(doc.data['status'], Status.ACTIVE)

        self.lifecycle.logout()
        self.lifecycle.login('zoe@x.com', 'secret1')
        self.assertEqual(len(self.store.query(USERS)), 1, 'Exactly one')

    def test_missing_account_without_name(self):
        """The name falls back to the local part of the e-mail address."""
        self.registry.create('quinn@x.com', 'secret1')
        session = self.lifecycle.login('quinn@x.com', 'secret1')
        self.assertEqual(session.name, 'quinn')

    def test_rejected(self):
        """Rejected accounts are signed out with their own message."""
        self.lifecycle.register('Dr', 'd@x.com', 'secret1', Role.DOCTOR)
        [doc] = self.store.query(USERS)
        self.lifecycle.accounts.reject(doc.doc_id)
        with self.assertRaises(AccountRejected) as ctx:
            self.lifecycle.login('d@x.com', 'secret1')
        self.assertEqual(str(ctx.exception), errors.REJECTED_MESSAGE)
        self.assertIsNone(self.identities.current)

    def test_approved(self):
        """Once approved, a doctor can sign in, and was told so."""
        self.lifecycle.register('Dr', 'd@x.com', 'secret1', Role.DOCTOR)
        [doc] = self.store.query(USERS)
        self.lifecycle.accounts.approve(doc.doc_id)
        session = self.lifecycle.login('d@x.com', 'secret1')
        self.assertEqual(session.role, Role.DOCTOR)
        [note] = self.lifecycle.notifier.for_user(doc.doc_id)
        self.assertEqual(note.type, Notification.APPROVAL_RESULT)

    def test_store_failure(self):
        """If the account cannot be read, the identity is signed out."""
        self.lifecycle.register('A', 'a@x.com', 'secret1', Role.PATIENT)
        self.lifecycle.logout()
        with mock.patch.object(self.store, '_read',
                               side_effect=StoreError('down')):
            with self.assertRaises(AuthenticationFailed) as ctx:
                self.lifecycle.login('a@x.com', 'secret1')
        self.assertEqual(str(ctx.exception), errors.CONNECTIVITY_MESSAGE)
        self.assertIsNone(self.identities.current)

    def test_unexpected_failure(self):
        """Anything else collapses to a generic message."""
        self.lifecycle.register('A', 'a@x.com', 'secret1', Role.PATIENT)
        self.lifecycle.logout()
        with mock.patch.object(self.lifecycle.accounts, 'get',
                               side_effect=KeyError('what')):
            with self.assertRaises(AuthenticationFailed) as ctx:
                self.lifecycle.login('a@x.com', 'secret1')
        self.assertEqual(str(ctx.exception), errors.LOGIN_FAILED)
        self.assertEqual(ctx.exception.kind, ErrorKind.UNKNOWN)
        self.assertIsNone(self.identities.current)

    def test_no_bootstrap(self):
        """Without a provisioned credential there is no special path."""
        with self.assertRaises(AuthenticationFailed) as ctx:
            self.lifecycle.login('root@clinic.test', 'bootstrap-secret')
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_CREDENTIAL)
        self.assertEqual(self.store.query(USERS), [])


class TestBootstrapLogin(LifecycleTestCase):
    """Signing in with the provisioned bootstrap credential."""

    bootstrap = BootstrapCredential('root@clinic.test', 'bootstrap-secret',
                                    'Root Admin')

    def test_creates_admin(self):
        """The first use creates an active admin."""
        session = self.lifecycle.login('root@clinic.test', 'bootstrap-secret')
        self.assertEqual(session.role, Role.ADMIN)
        self.assertEqual(session.name, 'Root Admin')
        account = self.lifecycle.accounts.get(session.uid)
        self.assertEqual(account.status, Status.ACTIVE)
        self.assertEqual(account.role, Role.ADMIN)
        self.assertIsNotNone(account.created_at)
        self.assertEqual(self.identities.current.uid, session.uid)

    def test_repairs_admin(self):
        """Later uses restore the account to an active admin."""
        first = self.lifecycle.login('root@clinic.test', 'bootstrap-secret')
        created = self.lifecycle.accounts.get(first.uid).created_at
        self.lifecycle.logout()
        self.store.update(USERS, first.uid, {'status': Status.REJECTED,
                                             'phone': '555-0100'})

        second = self.lifecycle.login('ROOT@clinic.test', 'bootstrap-secret')
        self.assertEqual(second.uid, first.uid)
        account = self.lifecycle.accounts.get(first.uid)
        self.assertEqual(account.status, Status.ACTIVE)
        self.assertEqual(account.phone, '555-0100')
        self.assertEqual(account.created_at, created)

    def test_wrong_secret(self):
        """A near miss goes through the normal path."""
        with self.assertRaises(AuthenticationFailed):
            self.lifecycle.login('root@clinic.test', 'bootstrap-secreT')
        self.assertEqual(self.store.query(USERS), [])

    def test_matches(self):
        """Both the address and the secret must match."""
        self.assertTrue(self.bootstrap.matches(' Root@Clinic.test',
                                               'bootstrap-secret'))
        self.assertFalse(self.bootstrap.matches('root@clinic.test', None))
        self.assertFalse(self.bootstrap.matches(None, 'bootstrap-secret'))

    def test_from_config(self):
        """Nothing is provisioned unless both values are set."""
        self.assertIsNone(lifecycle.bootstrap_from_config(None, 'x'))
        self.assertIsNone(lifecycle.bootstrap_from_config('a@x.com', ''))
        credential = lifecycle.bootstrap_from_config('a@x.com', 'x')
        self.assertEqual(credential.email, 'a@x.com')
        self.assertTrue(credential.name)


class TestRequireAuth(LifecycleTestCase):
    """Guarding pages by role."""

    def _patient(self):
        self.lifecycle.register('Pat', 'pat@x.com', 'secret1', Role.PATIENT)
        return self.identities.current.uid

    def assertRedirect(self, location, kind, role):
        with self.assertRaises(AccessRedirect) as ctx:
            self.lifecycle.require_auth(role)
        self.assertEqual(ctx.exception.location, location)
        self.assertEqual(ctx.exception.kind, kind)

    def test_not_signed_in(self):
        """Nobody signed in goes to the login page."""
        self.assertRedirect('/login', ErrorKind.NOT_AUTHENTICATED,
                            Role.PATIENT)

    def test_allowed(self):
        """The right role gets a session."""
        uid = self._patient()
        session = self.lifecycle.require_auth(Role.PATIENT)
        self.assertEqual(session.uid, uid)
        self.assertEqual(session.role, Role.PATIENT)
        self.assertEqual(session.name, 'Pat')

    def test_wrong_role(self):
        """A patient asking for the doctor pages goes to their own."""
        self._patient()
        self.assertRedirect('/patient/dashboard',
                            ErrorKind.UNAUTHORIZED_ROLE, Role.DOCTOR)
        self.assertRedirect('/patient/dashboard',
                            ErrorKind.UNAUTHORIZED_ROLE, Role.ADMIN)
        self.assertIsNotNone(self.identities.current)

    def test_unknown_role(self):
        """An account with an unknown role goes to the login page."""
        uid = self._patient()
        self.store.update(USERS, uid, {'role': 'nurse'})
        self.assertRedirect('/login', ErrorKind.UNAUTHORIZED_ROLE,
                            Role.PATIENT)

    def test_no_account(self):
        """An identity without an account goes to the login page."""
        self.registry.create('x@x.com', 'secret1')
        self.identities.authenticate('x@x.com', 'secret1')
        self.assertRedirect('/login', ErrorKind.PROFILE_NOT_FOUND,
                            Role.PATIENT)

    def test_store_failure(self):
        """If the account cannot be read, go to the login page."""
        self._patient()
        with mock.patch.object(self.store, '_read',
                               side_effect=StoreError('down')):
            self.assertRedirect('/login', ErrorKind.CONNECTIVITY,
                                Role.PATIENT)

    def test_pending_while_signed_in(self):
        """An account that is no longer active is signed out."""
        uid = self._patient()
        self.store.update(USERS, uid, {'status': Status.PENDING})
        self.assertRedirect('/login', ErrorKind.ACCOUNT_PENDING,
                            Role.PATIENT)
        self.assertIsNone(self.identities.current)

    def test_rejected_while_signed_in(self):
        """A rejected account is signed out."""
        uid = self._patient()
        self.lifecycle.accounts.reject(uid)
        self.assertRedirect('/login', ErrorKind.ACCOUNT_REJECTED,
                            Role.PATIENT)
        self.assertIsNone(self.identities.current)

    def test_does_not_keep_listening(self):
        """The guard unsubscribes from identity changes."""
        self._patient()
        with mock.patch.object(self.identities, 'on_identity_change') \
                as on_change:
            unsubscribe = mock.MagicMock()

            def _deliver(callback):
                callback(None)
                return unsubscribe
            on_change.side_effect = _deliver
            with self.assertRaises(AccessRedirect):
                self.lifecycle.require_auth(Role.PATIENT)
        self.assertEqual(unsubscribe.call_count, 1)


class TestCurrentUser(LifecycleTestCase):
    """Looking up the signed-in user never raises."""

    def test_signed_out(self):
        """Nobody signed in."""
        self.assertIsNone(self.lifecycle.current_user())

    def test_signed_in(self):
        """The identity and account are combined."""
        self.lifecycle.register('Pat', 'pat@x.com', 'secret1', Role.PATIENT)
        user = self.lifecycle.current_user()
        self.assertEqual(user.email, 'pat@x.com')
        self.assertEqual(user.role, Role.PATIENT)
        self.assertEqual(user.name, 'Pat')

    def test_no_account(self):
        """An identity without an account is not a user."""
        self.registry.create('x@x.com', 'secret1')
        self.identities.authenticate('x@x.com', 'secret1')
        self.assertIsNone(self.lifecycle.current_user())

    def test_store_failure(self):
        """Store failures yield ``None``."""
        self.lifecycle.register('Pat', 'pat@x.com', 'secret1', Role.PATIENT)
        with mock.patch.object(self.store, '_read',
                               side_effect=StoreError('down')):
            self.assertIsNone(self.lifecycle.current_user())
        with mock.patch.object(self.store, '_read',
                               side_effect=RuntimeError('odd')):
            self.assertIsNone(self.lifecycle.current_user())


class TestLogout(LifecycleTestCase):
    """Signing out."""

    def test_logout(self):
        """Logout signs out and points at the login page."""
        self.lifecycle.register('Pat', 'pat@x.com', 'secret1', Role.PATIENT)
        self.assertEqual(self.lifecycle.logout(), '/login')
        self.assertIsNone(self.identities.current)
        self.assertEqual(self.lifecycle.logout(), '/login')

    def test_dashboard_for(self):
        """Each role has a dashboard; anything else is the login page."""
        self.assertEqual(self.lifecycle.dashboard_for(Role.DOCTOR),
                         '/doctor/dashboard')
        self.assertEqual(self.lifecycle.dashboard_for('nurse'), '/login')
        self.assertEqual(self.lifecycle.dashboard_for(None), '/login')
