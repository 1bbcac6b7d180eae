"""Exceptions, and the error kinds that classify them."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """
    Classification of a failure, assigned once where the failure happens.

    Values match the codes used by the identity provider, so that a kind can
    be round-tripped through logs and API responses.
    """

    # Identity provider.
    INVALID_CREDENTIAL = 'invalid-credential'
    WRONG_PASSWORD = 'wrong-password'
    USER_NOT_FOUND = 'user-not-found'
    EMAIL_IN_USE = 'email-already-in-use'
    WEAK_PASSWORD = 'weak-password'
    INVALID_EMAIL = 'invalid-email'
    TOO_MANY_REQUESTS = 'too-many-requests'
    NETWORK = 'network-request-failed'
    USER_DISABLED = 'user-disabled'
    REQUIRES_RECENT_LOGIN = 'requires-recent-login'
    OPERATION_NOT_ALLOWED = 'operation-not-allowed'
    MISSING_PASSWORD = 'missing-password'
    MISSING_EMAIL = 'missing-email'

    # Document store and transport.
    CONNECTIVITY = 'connectivity'
    PERMISSION_DENIED = 'permission-denied'

    # Application policy.
    ACCOUNT_PENDING = 'account-pending'
    ACCOUNT_REJECTED = 'account-rejected'
    UNAUTHORIZED_ROLE = 'unauthorized-role'
    NOT_AUTHENTICATED = 'not-authenticated'
    PROFILE_NOT_FOUND = 'profile-not-found'

    INVALID_ARGUMENT = 'invalid-argument'
    UNKNOWN = 'unknown'


class IdentityError(RuntimeError):
    """The identity provider refused or failed an operation."""

    def __init__(self, kind: ErrorKind, message: str = '') -> None:
        self.kind = kind
        super(IdentityError, self).__init__(message or kind.value)


class StoreError(RuntimeError):
    """The document store could not complete an operation."""

    def __init__(self, message: str = '',
                 kind: ErrorKind = ErrorKind.CONNECTIVITY) -> None:
        self.kind = kind
        super(StoreError, self).__init__(message or kind.value)


class NoSuchDocument(StoreError):
    """A document was expected to exist, but does not."""

    def __init__(self, message: str = '') -> None:
        super(NoSuchDocument, self).__init__(message, ErrorKind.UNKNOWN)


class DocumentExists(StoreError):
    """A document was to be created, but its ID is already taken."""

    def __init__(self, message: str = '') -> None:
        super(DocumentExists, self).__init__(message, ErrorKind.UNKNOWN)


class AuthenticationFailed(RuntimeError):
    """
    An account operation failed; ``str(exc)`` is fit to show the user.

    Raised by :mod:`clinic_auth.auth.lifecycle`. The original cause, if any,
    is chained as ``__cause__``.
    """

    def __init__(self, message: str,
                 kind: ErrorKind = ErrorKind.UNKNOWN) -> None:
        self.kind = kind
        super(AuthenticationFailed, self).__init__(message)


class RegistrationFailed(AuthenticationFailed):
    """Failed to register a new account."""


class AccountPending(AuthenticationFailed):
    """The account has not been approved by an administrator yet."""


class AccountRejected(AuthenticationFailed):
    """An administrator declined the account."""


class AccessRedirect(RuntimeError):
    """
    The caller is not allowed on the requested page and must go elsewhere.

    Raised by route guards. Consumers are expected to redirect to
    :attr:`location` rather than display the error.
    """

    def __init__(self, location: str, kind: ErrorKind,
                 reason: Optional[str] = None) -> None:
        self.location = location
        self.kind = kind
        super(AccessRedirect, self).__init__(reason or kind.value)


class SchedulingConflict(RuntimeError):
    """The doctor already has an open appointment in that time slot."""


class ProfileUpdateRefused(RuntimeError):
    """A profile update touched fields that the owner may not change."""
