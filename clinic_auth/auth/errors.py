"""Translation of error kinds into messages that can be shown to users."""

from typing import Dict
import logging

from ..exceptions import ErrorKind

logger = logging.getLogger(__name__)

CONNECTIVITY_MESSAGE = ('Connection error. Please check your internet '
                        'connection and disable any ad blockers.')
PENDING_MESSAGE = ('Your account is pending admin approval. Please wait for '
                   'an administrator to review your request.')
REJECTED_MESSAGE = ('Your registration request was not approved. Please '
                    'contact the administrator.')

REGISTRATION_FAILED = 'Registration failed. Please try again.'
LOGIN_FAILED = 'Unable to sign in. Please try again later.'
GENERIC = 'Something went wrong. Please try again.'

MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_CREDENTIAL:
        'Incorrect email or password. Please try again.',
    ErrorKind.WRONG_PASSWORD: 'Incorrect password. Please try again.',
    ErrorKind.USER_NOT_FOUND: 'No account found with this email address.',
    ErrorKind.EMAIL_IN_USE:
        'An account with this email already exists. Try signing in instead.',
    ErrorKind.WEAK_PASSWORD:
        'Password is too weak. Please use at least 6 characters.',
    ErrorKind.INVALID_EMAIL: 'Please enter a valid email address.',
    ErrorKind.TOO_MANY_REQUESTS:
        'Too many attempts. Please wait a moment and try again.',
    ErrorKind.NETWORK: CONNECTIVITY_MESSAGE,
    ErrorKind.USER_DISABLED:
        'This account has been disabled. Please contact support.',
    ErrorKind.REQUIRES_RECENT_LOGIN:
        'Please sign in again to complete this action.',
    ErrorKind.OPERATION_NOT_ALLOWED:
        'This sign-in method is not enabled. Please contact support.',
    ErrorKind.MISSING_PASSWORD: 'Please enter your password.',
    ErrorKind.MISSING_EMAIL: 'Please enter your email address.',
    ErrorKind.CONNECTIVITY: CONNECTIVITY_MESSAGE,
    ErrorKind.PERMISSION_DENIED: CONNECTIVITY_MESSAGE,
    ErrorKind.ACCOUNT_PENDING: PENDING_MESSAGE,
    ErrorKind.ACCOUNT_REJECTED: REJECTED_MESSAGE,
    ErrorKind.UNAUTHORIZED_ROLE: 'You do not have access to this page.',
    ErrorKind.NOT_AUTHENTICATED: 'Please sign in to continue.',
    ErrorKind.PROFILE_NOT_FOUND: 'No profile was found for this account.',
    ErrorKind.INVALID_ARGUMENT: 'Please check the information you entered.',
}
"""One fixed message per kind. :attr:`ErrorKind.UNKNOWN` is left out."""


def message_for(kind: ErrorKind, fallback: str = GENERIC) -> str:
    """
    Get the user-facing message for an error kind.

    Parameters
    ----------
    kind : :class:`.ErrorKind`
    fallback : str
        Used for :attr:`ErrorKind.UNKNOWN` and any kind without a message.

    Returns
    -------
    str

    """
    return MESSAGES.get(kind, fallback)


def kind_of(exc: BaseException) -> ErrorKind:
    """The :class:`.ErrorKind` carried by an exception, or ``UNKNOWN``."""
    kind = getattr(exc, 'kind', None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.UNKNOWN
