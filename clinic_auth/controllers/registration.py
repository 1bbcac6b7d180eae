"""
Controller for registration.

Patients can use the site as soon as they register. Doctor and admin
registrations wait for an active admin to approve them, and the response
says so instead of redirecting.
"""

from http import HTTPStatus
import logging

from werkzeug.datastructures import MultiDict
from wtforms import Form, PasswordField, StringField
from wtforms.validators import AnyOf, DataRequired, Email, Length, Optional

from .. import config
from ..auth import errors
from ..auth.lifecycle import AccountLifecycle
from ..domain import Role, Status
from ..exceptions import ErrorKind, RegistrationFailed
from . import ResponseData

logger = logging.getLogger(__name__)

PENDING_NOTICE = ('Your registration has been submitted. An administrator '
                  'will review it, and you will be able to sign in once it '
                  'is approved.')


class RegistrationForm(Form):
    """Registration form."""

    name = StringField('Full name', validators=[DataRequired()])
    email = StringField('E-mail', validators=[
        DataRequired(errors.MESSAGES[ErrorKind.MISSING_EMAIL]),
        Email(errors.MESSAGES[ErrorKind.INVALID_EMAIL])
    ])
    password = PasswordField('Password', validators=[
        DataRequired(errors.MESSAGES[ErrorKind.MISSING_PASSWORD]),
        Length(min=config.MIN_PASSWORD_LENGTH,
               message=errors.MESSAGES[ErrorKind.WEAK_PASSWORD])
    ])
    role = StringField('Role', default=Role.PATIENT,
                       validators=[Optional(), AnyOf(Role.ALL)])
    specialization = StringField('Specialization', validators=[Optional()])


def register(method: str, form_data: MultiDict,
             lifecycle: AccountLifecycle) -> ResponseData:
    """
    Provide the registration form, or register a new account.

    Parameters
    ----------
    method : str
        ``GET`` or ``POST``.
    form_data : MultiDict
    lifecycle : :class:`.AccountLifecycle`

    Returns
    -------
    dict
    int
        303 (See Other) to the dashboard for an active account; 202 (Accepted)
        for an account that is awaiting approval.
    dict

    """
    if method == 'GET':
        return {'fields': list(RegistrationForm().data),
                'roles': list(Role.ALL)}, HTTPStatus.OK, {}

    form = RegistrationForm(form_data)
    if not form.validate():
        logger.debug('Registration form is invalid: %s', form.errors)
        return {'errors': form.errors}, HTTPStatus.BAD_REQUEST, {}

    role = form.role.data or Role.PATIENT
    try:
        status = lifecycle.register(form.name.data, form.email.data,
                                    form.password.data, role,
                                    form.specialization.data or None)
    except RegistrationFailed as e:
        logger.debug('Registration failed (%s)', e.kind.value)
        return {'error': str(e), 'kind': e.kind.value}, \
            HTTPStatus.BAD_REQUEST, {}

    if status == Status.ACTIVE:
        return {'status': status}, HTTPStatus.SEE_OTHER, \
            {'Location': lifecycle.dashboard_for(role)}
    return {'status': status, 'message': PENDING_NOTICE}, \
        HTTPStatus.ACCEPTED, {}
